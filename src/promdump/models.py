"""Data models shared by the catalog, archiver and transport layers.

All timestamps are integer nanoseconds since the Unix epoch, UTC.
"""

import calendar
import stat
import tarfile
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional

from .errors import ConfigurationError

NS_PER_MS = 1_000_000
NS_PER_SECOND = 1_000_000_000

TIME_FORMAT = "%Y-%m-%d %H:%M:%S"


def ms_to_ns(ms: int) -> int:
    """Convert a millisecond timestamp (as stored by Prometheus) to ns."""
    return int(ms) * NS_PER_MS


def now_ns() -> int:
    return time.time_ns()


def parse_time(value: str) -> int:
    """Parse a 'YYYY-MM-DD HH:MM:SS' UTC string into a ns timestamp."""
    try:
        parsed = datetime.strptime(value, TIME_FORMAT)
    except ValueError as e:
        raise ConfigurationError(f"invalid time {value!r}: {str(e)}")
    return calendar.timegm(parsed.timetuple()) * NS_PER_SECOND


def to_datetime(ns: int) -> datetime:
    seconds, remainder = divmod(ns, NS_PER_SECOND)
    return datetime.fromtimestamp(seconds, tz=timezone.utc).replace(
        microsecond=remainder // 1000
    )


def format_time(ns: int) -> str:
    return to_datetime(ns).strftime(TIME_FORMAT)


@dataclass(frozen=True)
class TimeRange:
    """Requested [start, end] window."""
    start: int
    end: int

    def __str__(self):
        return f"[{format_time(self.start)}, {format_time(self.end)}]"


def validate_window(window: TimeRange, now: Optional[int] = None) -> TimeRange:
    """Reject windows that are inverted or reach into the future."""
    if window.start > window.end:
        raise ConfigurationError(
            f"min time ({window.start}) cannot exceed max time ({window.end})"
        )

    now = now_ns() if now is None else now
    if window.start > now:
        raise ConfigurationError(f"min time ({window.start}) cannot exceed now ({now})")
    if window.end > now:
        raise ConfigurationError(f"max time ({window.end}) cannot exceed now ({now})")

    return window


@dataclass(frozen=True)
class Block:
    """A persistent TSDB block as declared by its meta.json."""
    path: str
    min_time: int
    max_time: int
    size_bytes: int = 0
    sample_count: int = 0
    series_count: int = 0

    @property
    def ulid(self) -> str:
        return self.path.rstrip("/").rsplit("/", 1)[-1]


@dataclass(frozen=True)
class HeadSummary:
    """Time bounds of the open head block.

    The head has no persisted statistics, so series_count stays 0.
    """
    min_time: int
    max_time: int
    series_count: int = 0


@dataclass
class CatalogSummary:
    """Aggregate statistics over the persistent blocks."""
    block_count: int = 0
    total_samples: int = 0
    total_series: int = 0
    total_size_bytes: int = 0
    earliest: Optional[int] = None
    latest: Optional[int] = None
    head: Optional[HeadSummary] = None

    @classmethod
    def from_blocks(cls, blocks: List[Block], head: Optional[HeadSummary] = None) -> "CatalogSummary":
        if not blocks:
            return cls(head=head)

        return cls(
            block_count=len(blocks),
            total_samples=sum(b.sample_count for b in blocks),
            total_series=sum(b.series_count for b in blocks),
            total_size_bytes=sum(b.size_bytes for b in blocks),
            earliest=min(b.min_time for b in blocks),
            latest=max(b.max_time for b in blocks),
            head=head,
        )


@dataclass(frozen=True)
class ArchiveEntry:
    """A filesystem node about to be written to the tar stream."""
    name: str
    path: str
    mode: int
    mtime: float
    size: int = 0
    is_dir: bool = False
    link_target: Optional[str] = None

    @property
    def is_symlink(self) -> bool:
        return self.link_target is not None

    def to_tarinfo(self) -> tarfile.TarInfo:
        info = tarfile.TarInfo(self.name)
        info.mode = stat.S_IMODE(self.mode)
        info.mtime = int(self.mtime)
        if self.is_dir:
            info.type = tarfile.DIRTYPE
        elif self.is_symlink:
            info.type = tarfile.SYMTYPE
            info.linkname = self.link_target
        else:
            info.type = tarfile.REGTYPE
            info.size = self.size
        return info


@dataclass
class CachedArtifact:
    """Location of a downloaded artifact in the local cache."""
    remote_uri: str
    local_path: str
    checksum_uri: str = ""


@dataclass
class RemoteTarget:
    """The container the remote commands are executed in."""
    namespace: str
    pod_name: str
    container_name: str
    timeout: float = 10.0

    def __str__(self):
        return f"{self.namespace}/{self.pod_name}/{self.container_name}"
