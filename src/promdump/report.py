"""Human-readable TSDB metadata report."""

from tabulate import tabulate

from .models import CatalogSummary, format_time

MSG_NO_HEAD_BLOCK = "No head block found"
MSG_NO_PERSISTENT_BLOCKS = "No persistent blocks found"


def _section(title: str, rows) -> str:
    table = tabulate(rows, tablefmt='plain')
    return f"{title}\n{'-' * len(title)}\n{table}\n"


def format_report(summary: CatalogSummary) -> str:
    """Render the head and persistent block metadata of a catalog summary."""
    if summary.head is None:
        head = MSG_NO_HEAD_BLOCK + "\n"
    else:
        head = _section("Head Block Metadata", [
            ["Minimum time (UTC):", format_time(summary.head.min_time)],
            ["Maximum time (UTC):", format_time(summary.head.max_time)],
            ["Number of series", summary.head.series_count],
        ])

    if summary.block_count == 0:
        return f"{head}\n{MSG_NO_PERSISTENT_BLOCKS}\n"

    blocks = _section("Persistent Blocks Metadata", [
        ["Minimum time (UTC):", format_time(summary.earliest)],
        ["Maximum time (UTC):", format_time(summary.latest)],
        ["Total number of blocks", summary.block_count],
        ["Total number of samples", summary.total_samples],
        ["Total number of series", summary.total_series],
        ["Total size", summary.total_size_bytes],
    ])
    return f"{head}\n{blocks}"
