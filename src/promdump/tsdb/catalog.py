"""
Read-only catalog of the persistent blocks in a Prometheus data directory.
"""

import json
import logging
import os
import re
from typing import List, Optional, Tuple

from ..errors import CatalogError
from ..models import Block, CatalogSummary, HeadSummary, ms_to_ns
from .head import read_head_summary

logger = logging.getLogger(__name__)

META_FILENAME = "meta.json"

# Block directories are named by their ULID (Crockford base32)
BLOCK_DIR_PATTERN = re.compile(r"^[0-9A-HJKMNP-TV-Z]{26}$")


def is_block_dir(name: str) -> bool:
    return bool(BLOCK_DIR_PATTERN.match(name))


def _dir_size(path: str) -> int:
    total = 0
    for root, _, files in os.walk(path):
        for name in files:
            try:
                total += os.lstat(os.path.join(root, name)).st_size
            except OSError as e:
                logger.debug(f"Can't stat {name} in {root}: {str(e)}")
    return total


class BlockCatalog:
    """Enumerates the blocks of a TSDB data directory without decoding samples."""

    def __init__(self, data_root: str):
        self.data_root = os.path.abspath(data_root)

    def enumerate(self) -> Tuple[Optional[HeadSummary], List[Block]]:
        """Return the head summary and the persistent blocks in ULID order.

        Raises:
            CatalogError: if the data directory can't be opened.
        """
        logger.info(f"Accessing tsdb at {self.data_root}")
        if not os.path.isdir(self.data_root):
            raise CatalogError(f"data directory {self.data_root} doesn't exist or isn't a directory")

        try:
            names = sorted(os.listdir(self.data_root))
        except OSError as e:
            raise CatalogError(f"can't open data directory {self.data_root}: {str(e)}")

        blocks = []
        for name in names:
            path = os.path.join(self.data_root, name)
            if not is_block_dir(name) or not os.path.isdir(path):
                continue

            block = self._read_block(path)
            if block is not None:
                blocks.append(block)

        head = read_head_summary(self.data_root)
        logger.info(f"Found {len(blocks)} persistent blocks in {self.data_root}")
        return head, blocks

    def summary(self) -> CatalogSummary:
        head, blocks = self.enumerate()
        return CatalogSummary.from_blocks(blocks, head)

    def _read_block(self, path: str) -> Optional[Block]:
        """Read a block's meta.json; malformed blocks are logged and skipped."""
        meta_path = os.path.join(path, META_FILENAME)
        try:
            with open(meta_path, "r") as f:
                meta = json.load(f)

            min_time = ms_to_ns(meta["minTime"])
            max_time = ms_to_ns(meta["maxTime"])
            stats = meta.get("stats") or {}
            sample_count = int(stats.get("numSamples", 0))
            series_count = int(stats.get("numSeries", 0))
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning(f"Skipping malformed block {path}: {str(e)}")
            return None

        if min_time > max_time:
            logger.warning(f"Skipping block {path}: minTime is after maxTime")
            return None

        return Block(
            path=path,
            min_time=min_time,
            max_time=max_time,
            size_bytes=_dir_size(path),
            sample_count=sample_count,
            series_count=series_count,
        )
