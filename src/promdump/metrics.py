from prometheus_client import CollectorRegistry, Counter, Histogram, write_to_textfile

REGISTRY = CollectorRegistry()

# Archive Metrics
ARCHIVE_BYTES = Counter(
    'promdump_archive_bytes_total',
    'Compressed bytes written to the archive sink',
    registry=REGISTRY
)

ARCHIVE_FILES = Counter(
    'promdump_archive_files_total',
    'Number of filesystem entries written to the archive',
    ['type'],
    registry=REGISTRY
)

ARCHIVE_WALK_ERRORS = Counter(
    'promdump_archive_walk_errors_total',
    'Number of files or directories skipped during the walk',
    registry=REGISTRY
)

# Download Metrics
DOWNLOAD_DURATION = Histogram(
    'promdump_download_duration_seconds',
    'Time spent downloading artifacts',
    buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0),
    registry=REGISTRY
)

DOWNLOAD_CACHE_HITS = Counter(
    'promdump_download_cache_hits_total',
    'Artifact requests served from the local cache',
    registry=REGISTRY
)

CHECKSUM_FAILURES = Counter(
    'promdump_checksum_failures_total',
    'Downloaded artifacts rejected by checksum verification',
    registry=REGISTRY
)

# Remote Exec Metrics
EXEC_TOTAL = Counter(
    'promdump_exec_total',
    'Remote exec requests',
    ['command', 'status'],
    registry=REGISTRY
)

EXEC_DURATION = Histogram(
    'promdump_exec_duration_seconds',
    'Remote exec duration in seconds',
    ['command'],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 300.0),
    registry=REGISTRY
)


def export_metrics(path: str):
    """Write the current metric values for the node-exporter textfile collector."""
    if path:
        write_to_textfile(path, REGISTRY)
