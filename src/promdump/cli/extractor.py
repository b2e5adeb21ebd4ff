#!/usr/bin/env python3
"""
Extraction program run inside the Prometheus container.

Streams the head and the persistent blocks overlapping the requested window
to stdout as a tar+gzip archive, or prints the TSDB metadata with -meta.
"""

import argparse
import logging
import os
import sys
from typing import BinaryIO, List, Optional

from .. import __version__
from ..archive.archiver import Archiver
from ..errors import PromdumpError
from ..logging_config import setup_logging
from ..metrics import export_metrics
from ..models import NS_PER_SECOND, TimeRange, now_ns, validate_window
from ..report import format_report
from ..tsdb import BlockCatalog, select

logger = logging.getLogger(__name__)

DEFAULT_RANGE_NS = 2 * 60 * 60 * NS_PER_SECOND


def parse_args(argv: Optional[List[str]] = None):
    """Parse command line arguments."""
    now = now_ns()
    parser = argparse.ArgumentParser(
        prog='promdump',
        description='Dump Prometheus TSDB blocks as a tar+gzip stream',
        allow_abbrev=False,
    )
    parser.add_argument('-data-dir', dest='data_dir', default='/data',
                        help='path to the Prometheus data directory')
    parser.add_argument('-min-time', dest='min_time', type=int, default=now - DEFAULT_RANGE_NS,
                        help='lower bound of the timestamp range (in nanoseconds)')
    parser.add_argument('-max-time', dest='max_time', type=int, default=now,
                        help='upper bound of the timestamp range (in nanoseconds)')
    parser.add_argument('-meta', action='store_true',
                        help='print the Prometheus TSDB metadata')
    parser.add_argument('-debug', action='store_true',
                        help='run promdump in debug mode')
    parser.add_argument('-version', action='store_true',
                        help='print the version and exit')
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None, stdout: Optional[BinaryIO] = None) -> int:
    """Main entry point for the extraction program."""
    args = parse_args(argv)
    out = stdout if stdout is not None else sys.stdout.buffer

    if args.version:
        out.write(f"{__version__}\n".encode())
        out.flush()
        return 0

    setup_logging(args.debug, os.getenv('LOG_LEVEL', 'ERROR'))

    try:
        catalog = BlockCatalog(args.data_dir)
        if args.meta:
            out.write(format_report(catalog.summary()).encode())
        else:
            window = validate_window(TimeRange(args.min_time, args.max_time))
            _, blocks = catalog.enumerate()
            written = Archiver(include_head=True).stream(args.data_dir, select(blocks, window), out)
            logger.info(f"Operation completed: {written} bytes written")
        out.flush()
    except PromdumpError as e:
        logger.error(f"{e.code}: {e.message}")
        return 1
    finally:
        export_metrics(os.getenv('PROMDUMP_METRICS_FILE'))

    return 0


if __name__ == '__main__':
    sys.exit(main())
