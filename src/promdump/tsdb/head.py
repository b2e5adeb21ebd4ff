"""
Head block time bounds.

The head is the open, not yet compacted block. It has no meta.json, so its
time range is recovered from the framing of the memory-mapped head chunk files
in ``chunks_head/``. Only the fixed-width chunk headers are read; chunk payloads
are skipped. When no chunk has been mapped yet, the write-ahead log segments
in ``wal/`` bound the head by their modification times.
"""

import logging
import os
import struct
from typing import Iterator, Optional, Tuple

from ..models import HeadSummary, ms_to_ns

logger = logging.getLogger(__name__)

CHUNKS_HEAD_DIR = "chunks_head"
WAL_DIR = "wal"

HEAD_CHUNKS_MAGIC = 0x0130BC91
HEAD_CHUNK_FILE_HEADER_SIZE = 8

# series ref (8) + mint (8) + maxt (8) + encoding (1)
_CHUNK_META = struct.Struct(">QqqB")
_CRC32_SIZE = 4
_ENCODING_NONE = 0


def _read_uvarint(f) -> Optional[int]:
    result = 0
    shift = 0
    while True:
        b = f.read(1)
        if not b:
            return None
        value = b[0]
        result |= (value & 0x7F) << shift
        if not value & 0x80:
            return result
        shift += 7
        if shift > 63:
            return None


def iter_chunk_ranges(path: str) -> Iterator[Tuple[int, int]]:
    """Yield (mint, maxt) in milliseconds for every chunk in a head chunk file."""
    with open(path, "rb") as f:
        header = f.read(HEAD_CHUNK_FILE_HEADER_SIZE)
        if len(header) < HEAD_CHUNK_FILE_HEADER_SIZE:
            return
        magic = struct.unpack(">I", header[:4])[0]
        if magic != HEAD_CHUNKS_MAGIC:
            logger.warning(f"Skipping {path}: invalid head chunk magic {magic:#x}")
            return

        while True:
            raw = f.read(_CHUNK_META.size)
            if len(raw) < _CHUNK_META.size:
                return
            _, mint, maxt, encoding = _CHUNK_META.unpack(raw)
            # the tail of a preallocated file is zero-filled
            if encoding == _ENCODING_NONE:
                return

            length = _read_uvarint(f)
            if length is None:
                return

            yield mint, maxt
            f.seek(length + _CRC32_SIZE, os.SEEK_CUR)


def _range_from_chunks(data_root: str) -> Optional[Tuple[int, int]]:
    chunks_dir = os.path.join(data_root, CHUNKS_HEAD_DIR)
    if not os.path.isdir(chunks_dir):
        return None

    min_time = max_time = None
    for name in sorted(os.listdir(chunks_dir)):
        path = os.path.join(chunks_dir, name)
        if not name.isdigit() or not os.path.isfile(path):
            continue
        try:
            for mint, maxt in iter_chunk_ranges(path):
                min_time = mint if min_time is None else min(min_time, mint)
                max_time = maxt if max_time is None else max(max_time, maxt)
        except OSError as e:
            logger.warning(f"Failed to read head chunk file {path}: {str(e)}")

    if min_time is None:
        return None
    return ms_to_ns(min_time), ms_to_ns(max_time)


def _range_from_wal(data_root: str) -> Optional[Tuple[int, int]]:
    wal_dir = os.path.join(data_root, WAL_DIR)
    if not os.path.isdir(wal_dir):
        return None

    mtimes = []
    for name in os.listdir(wal_dir):
        path = os.path.join(wal_dir, name)
        if name.isdigit() and os.path.isfile(path):
            mtimes.append(os.stat(path).st_mtime_ns)

    if not mtimes:
        return None
    return min(mtimes), max(mtimes)


def read_head_summary(data_root: str) -> Optional[HeadSummary]:
    """Return the head block time bounds, or None if there is no head."""
    bounds = _range_from_chunks(data_root)
    source = CHUNKS_HEAD_DIR
    if bounds is None:
        bounds = _range_from_wal(data_root)
        source = WAL_DIR

    if bounds is None:
        logger.debug(f"No head block found in {data_root}")
        return None

    logger.debug(f"Head block bounds read from {source}: {bounds[0]} - {bounds[1]}")
    return HeadSummary(min_time=bounds[0], max_time=bounds[1])
