"""
Streaming tar+gzip archiver for TSDB block directories.

The filesystem walk and the tar/gzip encoding run on a producer thread that
writes into a bounded pipe; the calling thread drains the pipe into the sink.
"""

import gzip
import logging
import os
import stat
import tarfile
import threading
from datetime import datetime, timezone
from typing import BinaryIO, Iterator, List, Sequence

from ..errors import ArchiveError, PartialWalkError
from ..metrics import ARCHIVE_BYTES, ARCHIVE_FILES, ARCHIVE_WALK_ERRORS
from ..models import ArchiveEntry, Block
from ..tsdb.head import CHUNKS_HEAD_DIR, WAL_DIR
from .pipe import DEFAULT_CAPACITY, PipeWriter, pipe

logger = logging.getLogger(__name__)

NO_DATA_MARKER = b"No persistent blocks found"
TIME_FORMAT_FILE = "%Y-%m-%d-%H%M%S"


def archive_name(now: datetime) -> str:
    return f"promdump-{now.strftime(TIME_FORMAT_FILE)}.tar.gz"


class Archiver:
    """Writes the file trees of selected blocks as a tar+gzip stream.

    Args:
        include_head: also archive the head chunks and write-ahead log
            directories, so the dump restores as a live TSDB
        capacity: number of chunks the pipe buffers between the threads
    """

    def __init__(self, include_head: bool = False, capacity: int = DEFAULT_CAPACITY):
        self.include_head = include_head
        self.capacity = capacity
        self.walk_errors: List[PartialWalkError] = []

    def stream(self, data_root: str, blocks: Sequence[Block], out: BinaryIO) -> int:
        """Stream the archive of blocks into out.

        Returns:
            int: number of bytes written to out

        Raises:
            ArchiveError: if the tar or gzip stream, or the sink, failed
        """
        self.walk_errors = []
        if not blocks:
            logger.info("No persistent blocks in range; writing no-data marker")
            out.write(NO_DATA_MARKER)
            out.flush()
            return len(NO_DATA_MARKER)

        data_root = os.path.abspath(data_root)
        dirs = self._source_dirs(data_root, blocks)

        reader, writer = pipe(self.capacity)
        producer = threading.Thread(
            target=self._produce,
            args=(data_root, dirs, writer),
            name="promdump-archiver",
            daemon=True,
        )
        producer.start()

        written = 0
        try:
            for chunk in reader:
                out.write(chunk)
                written += len(chunk)
            out.flush()
        except OSError as e:
            raise ArchiveError(f"failed to write archive to sink: {str(e)}")
        finally:
            # unblocks the producer if the sink failed
            reader.close()
            producer.join()

        ARCHIVE_BYTES.inc(written)
        logger.info(
            f"Archived {len(blocks)} blocks: {written} bytes written, "
            f"{len(self.walk_errors)} entries skipped"
        )
        return written

    def _source_dirs(self, data_root: str, blocks: Sequence[Block]) -> List[str]:
        dirs = []
        if self.include_head:
            for name in (CHUNKS_HEAD_DIR, WAL_DIR):
                path = os.path.join(data_root, name)
                if os.path.isdir(path):
                    dirs.append(path)

        for block in blocks:
            path = os.path.abspath(block.path)
            if os.path.commonpath([data_root, path]) != data_root:
                self._skip(path, f"block is outside the data directory {data_root}")
                continue
            dirs.append(path)
        return dirs

    def _produce(self, data_root: str, dirs: List[str], writer: PipeWriter):
        error = None
        try:
            self._write_archive(data_root, dirs, writer)
        except BrokenPipeError:
            logger.debug("Archive consumer stopped reading")
        except Exception as e:
            logger.error(f"Archive stream failed: {str(e)}")
            error = ArchiveError(f"archive stream failed: {str(e)}")
        finally:
            writer.close(error)

    def _write_archive(self, data_root: str, dirs: List[str], writer: PipeWriter):
        now = datetime.now(timezone.utc)
        with gzip.GzipFile(filename=archive_name(now), mode="wb",
                           fileobj=writer, mtime=int(now.timestamp())) as gz:
            with tarfile.open(fileobj=gz, mode="w|", format=tarfile.GNU_FORMAT) as tar:
                for top in dirs:
                    logger.debug(f"Archiving {top}")
                    for entry in self._walk(data_root, top):
                        self._add(tar, entry)

    def _walk(self, data_root: str, path: str) -> Iterator[ArchiveEntry]:
        """Depth-first walk yielding path and everything below it.

        Symlinks are reported, never followed.
        """
        try:
            st = os.lstat(path)
            link_target = os.readlink(path) if stat.S_ISLNK(st.st_mode) else None
        except OSError as e:
            self._skip(path, e)
            return

        if not (stat.S_ISDIR(st.st_mode) or stat.S_ISREG(st.st_mode) or link_target is not None):
            logger.debug(f"Skipping special file {path}")
            return

        name = os.path.relpath(path, data_root).replace(os.sep, "/")
        is_dir = stat.S_ISDIR(st.st_mode)
        yield ArchiveEntry(
            name=name,
            path=path,
            mode=st.st_mode,
            mtime=st.st_mtime,
            size=st.st_size if stat.S_ISREG(st.st_mode) else 0,
            is_dir=is_dir,
            link_target=link_target,
        )

        if not is_dir:
            return

        try:
            children = sorted(os.listdir(path))
        except OSError as e:
            self._skip(path, e)
            return

        for child in children:
            yield from self._walk(data_root, os.path.join(path, child))

    def _add(self, tar: tarfile.TarFile, entry: ArchiveEntry):
        info = entry.to_tarinfo()
        if entry.is_dir or entry.is_symlink:
            tar.addfile(info)
            ARCHIVE_FILES.labels(type="dir" if entry.is_dir else "symlink").inc()
            return

        # open before writing the header so an unreadable file leaves no trace
        try:
            f = open(entry.path, "rb")
        except OSError as e:
            self._skip(entry.path, e)
            return

        with f:
            try:
                info.size = os.fstat(f.fileno()).st_size
            except OSError as e:
                self._skip(entry.path, e)
                return
            tar.addfile(info, f)

        ARCHIVE_FILES.labels(type="file").inc()

    def _skip(self, path: str, reason):
        error = PartialWalkError(path, str(reason))
        logger.warning(str(error))
        self.walk_errors.append(error)
        ARCHIVE_WALK_ERRORS.inc()
