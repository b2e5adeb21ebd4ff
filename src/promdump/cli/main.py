#!/usr/bin/env python3
"""
kubectl plugin that dumps, inspects and restores the TSDB of a Prometheus pod.

Examples:
    kubectl promdump -p <pod> -n <ns> --min-time "2021-01-01 00:00:00" \\
        --max-time "2021-04-02 16:59:00" > dump.tar.gz
    kubectl promdump meta -p <pod> -n <ns>
    kubectl promdump restore -p <pod> -n <ns> -t dump.tar.gz
"""

import argparse
import dataclasses
import logging
import os
import sys
from typing import List, Optional

from .. import __version__
from ..config import PromdumpConfig, load_config
from ..errors import ConfigurationError, PromdumpError
from ..k8s.executor import KubernetesExecutor, load_kube_config
from ..logging_config import setup_logging
from ..metrics import export_metrics
from ..models import NS_PER_SECOND, TimeRange, format_time, now_ns, parse_time, validate_window
from ..orchestrator import OperationContext, Orchestrator

logger = logging.getLogger(__name__)

DEFAULT_RANGE_NS = 60 * 60 * NS_PER_SECOND


def _add_target_args(parser: argparse.ArgumentParser, suppress: bool = False):
    """Options shared by every command.

    Subcommands register them with suppressed defaults so values given
    before the subcommand aren't overwritten.
    """
    def default(value):
        return argparse.SUPPRESS if suppress else value

    parser.add_argument('-p', '--pod', default=default(None),
                        help='Prometheus pod name')
    parser.add_argument('-n', '--namespace', default=default(None),
                        help='namespace of the Prometheus pod (env: PROMDUMP_NAMESPACE)')
    parser.add_argument('-c', '--container', default=default(None),
                        help='Prometheus container name (env: PROMDUMP_CONTAINER)')
    parser.add_argument('-d', '--data-dir', default=default(None),
                        help='Prometheus data directory (env: PROMDUMP_DATA_DIR)')
    parser.add_argument('--request-timeout', type=float, default=default(None),
                        help='seconds to wait for a single API request (env: PROMDUMP_REQUEST_TIMEOUT)')
    parser.add_argument('--context', default=default(None),
                        help='kubeconfig context to use')
    parser.add_argument('--force', action='store_true', default=default(False),
                        help='download the extraction program even if it is cached')
    parser.add_argument('--debug', action='store_true', default=default(False),
                        help='run promdump in debug mode')


def parse_args(argv: Optional[List[str]] = None):
    """Parse command line arguments."""
    now = now_ns()
    parser = argparse.ArgumentParser(
        prog='kubectl promdump',
        description='promdump dumps the head and persistent blocks of Prometheus',
    )
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
    _add_target_args(parser)
    parser.add_argument('--min-time', default=format_time(now - DEFAULT_RANGE_NS),
                        help='min time (UTC) of the samples (yyyy-mm-dd hh:mm:ss)')
    parser.add_argument('--max-time', default=format_time(now),
                        help='max time (UTC) of the samples (yyyy-mm-dd hh:mm:ss)')

    subparsers = parser.add_subparsers(dest='command', help='Command to execute')

    meta_parser = subparsers.add_parser('meta', help='Show the metadata of the Prometheus TSDB')
    _add_target_args(meta_parser, suppress=True)

    restore_parser = subparsers.add_parser('restore', help='Restore a data dump to a Prometheus instance')
    _add_target_args(restore_parser, suppress=True)
    restore_parser.add_argument('-t', '--dump-file', required=True,
                                help='path to the dump tar.gz file')

    return parser.parse_args(argv)


def build_config(args) -> PromdumpConfig:
    """Overlay command line options on the environment configuration."""
    config = load_config()
    overrides = {
        'namespace': args.namespace,
        'container': args.container,
        'data_dir': args.data_dir,
        'request_timeout': args.request_timeout,
    }
    overrides = {k: v for k, v in overrides.items() if v is not None}
    if args.force:
        overrides['force_download'] = True
    if args.debug:
        overrides['debug'] = True
    return dataclasses.replace(config, **overrides)


def run(args, config: PromdumpConfig):
    if not args.pod:
        raise ConfigurationError("a pod name is required (-p POD)")

    window = None
    if args.command is None:
        window = validate_window(TimeRange(parse_time(args.min_time), parse_time(args.max_time)))

    load_kube_config(args.context)
    context = OperationContext.build(config, args.pod, KubernetesExecutor())
    orchestrator = Orchestrator(context)

    err = sys.stderr.buffer
    if args.command == 'meta':
        orchestrator.meta(sys.stdout.buffer, err)
    elif args.command == 'restore':
        orchestrator.restore(args.dump_file, err)
    else:
        orchestrator.extract(window, sys.stdout.buffer, err)
    sys.stdout.buffer.flush()


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the kubectl plugin."""
    args = parse_args(argv)
    setup_logging(args.debug, os.getenv('LOG_LEVEL', 'ERROR'))

    try:
        run(args, build_config(args))
    except PromdumpError as e:
        logger.error(f"{e.code}: {e.message}")
        return 1
    except KeyboardInterrupt:
        logger.info("Operation stopped by user")
        return 1
    finally:
        export_metrics(os.getenv('PROMDUMP_METRICS_FILE'))

    return 0


if __name__ == '__main__':
    sys.exit(main())
