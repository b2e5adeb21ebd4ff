"""Logging setup for the promdump entrypoints."""
import logging
import sys


def setup_logging(debug: bool = False, level: str = "ERROR"):
    """Configure logging with consistent format.

    Logs go to stderr; stdout is reserved for the archive stream.
    """
    logging.basicConfig(
        level=logging.DEBUG if debug else getattr(logging, level.upper(), logging.ERROR),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        stream=sys.stderr,
        force=True,
    )
