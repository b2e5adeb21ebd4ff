"""promdump dumps Prometheus TSDB blocks from a running pod."""

__version__ = "0.2.0"
