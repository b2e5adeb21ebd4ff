"""
Remote dump, metadata and restore operations.

Each operation runs against one OperationContext; nothing is shared between
operations.
"""

import io
import logging
import os
from dataclasses import dataclass
from typing import BinaryIO, Optional

import requests

from . import __version__
from .config import PromdumpConfig
from .download.distributor import ArtifactDistributor
from .errors import ConfigurationError, RemoteCommandError
from .k8s.channel import RemoteChannel
from .k8s.commands import Cleanup, Extract, Probe, Upload, Wipe
from .k8s.executor import RemoteExecutor
from .models import RemoteTarget, TimeRange

logger = logging.getLogger(__name__)


def _stream_size(f: BinaryIO) -> int:
    """Bytes left between the current position and the end of f."""
    position = f.tell()
    size = f.seek(0, os.SEEK_END) - position
    f.seek(position)
    return size


@dataclass
class OperationContext:
    """Everything a single operation needs."""
    config: PromdumpConfig
    target: RemoteTarget
    channel: RemoteChannel
    distributor: ArtifactDistributor

    @classmethod
    def build(cls, config: PromdumpConfig, pod_name: str, executor: RemoteExecutor,
              session: Optional[requests.Session] = None) -> "OperationContext":
        if not pod_name:
            raise ConfigurationError("a pod name is required")

        target = RemoteTarget(
            namespace=config.namespace,
            pod_name=pod_name,
            container_name=config.container,
            timeout=config.request_timeout,
        )
        return cls(
            config=config,
            target=target,
            channel=RemoteChannel(executor, target),
            distributor=ArtifactDistributor(config.cache_dir, config.request_timeout, session=session),
        )


class Orchestrator:
    """Sequences authorization, distribution and the remote commands."""

    def __init__(self, context: OperationContext):
        self.context = context

    def extract(self, window: TimeRange, out: BinaryIO, err: Optional[BinaryIO] = None):
        """Stream the archive of the blocks overlapping window into out."""
        config = self.context.config
        logger.info(f"Dumping blocks in {window} from {self.context.target}")
        self._run_extractor(
            Extract(config.extractor_path, config.data_dir, window=window, debug=config.debug),
            out, err,
        )

    def meta(self, out: BinaryIO, err: Optional[BinaryIO] = None):
        """Write the remote TSDB metadata report into out."""
        config = self.context.config
        self._run_extractor(
            Extract(config.extractor_path, config.data_dir, meta_only=True, debug=config.debug),
            out, err,
        )

    def restore(self, dump_file: str, err: Optional[BinaryIO] = None):
        """Replace the remote data directory with the contents of dump_file."""
        config = self.context.config
        channel = self.context.channel

        try:
            dump = open(dump_file, "rb")
        except OSError as e:
            raise ConfigurationError(f"can't open dump file {dump_file}: {str(e)}")

        with dump:
            channel.authorize()
            logger.info(f"Wiping {config.data_dir} in {self.context.target}")
            channel.exec(Wipe(config.data_dir), stderr=err)
            logger.info(f"Restoring {dump_file} to {self.context.target}")
            channel.exec(Upload(config.data_dir, _stream_size(dump)), stdin=dump, stderr=err,
                         timeout=config.transfer_timeout)

    def _run_extractor(self, command: Extract, out: BinaryIO, err: Optional[BinaryIO]):
        config = self.context.config
        channel = self.context.channel

        channel.authorize()

        cleanup_armed = False
        try:
            if not self._extractor_present():
                with self.context.distributor.fetch(
                    config.force_download, config.download_uri, config.checksum_uri
                ) as artifact:
                    cleanup_armed = True
                    channel.exec(Upload(config.data_dir, _stream_size(artifact)), stdin=artifact,
                                 stderr=err, timeout=config.transfer_timeout)

            channel.exec(command, stdout=out, stderr=err, timeout=config.transfer_timeout)
        finally:
            if cleanup_armed:
                self._cleanup(err)

    def _extractor_present(self) -> bool:
        """Probe for an extraction program of the matching version in the container."""
        output = io.BytesIO()
        try:
            self.context.channel.exec(Probe(self.context.config.extractor_path), stdout=output)
        except RemoteCommandError as e:
            logger.debug(f"No usable extraction program found: {str(e)}")
            return False

        version = output.getvalue().decode("utf-8", errors="replace").strip()
        if version != __version__:
            logger.info(f"Replacing extraction program version {version!r} with {__version__}")
            return False

        logger.info(f"Extraction program {__version__} already present; skipping upload")
        return True

    def _cleanup(self, err: Optional[BinaryIO]):
        path = self.context.config.extractor_path
        try:
            self.context.channel.exec(Cleanup(path), stderr=err)
        except Exception as e:
            logger.error(f"Failed to remove {path} from {self.context.target}: {str(e)}")
