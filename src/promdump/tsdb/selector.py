"""Time-window selection over catalogued blocks."""

import logging
from typing import Iterable, List

from ..models import Block, TimeRange

logger = logging.getLogger(__name__)


def overlaps(block: Block, window: TimeRange) -> bool:
    """Inclusive-boundary overlap between a block and a window.

    Partially covered blocks are selected because they still hold samples
    inside the window.
    """
    return (
        window.start == block.min_time
        or window.end == block.max_time
        or block.min_time < window.end < block.max_time
        or block.min_time < window.start < block.max_time
        or (window.start < block.min_time and block.max_time < window.end)
    )


def select(blocks: Iterable[Block], window: TimeRange) -> List[Block]:
    """Return the blocks overlapping window, in catalog order.

    An empty list means there is no data in range; it is not an error.
    """
    selected = [block for block in blocks if overlaps(block, window)]
    logger.info(f"Selected {len(selected)} blocks in window {window}")
    return selected
