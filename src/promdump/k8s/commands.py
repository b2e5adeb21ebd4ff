"""
Commands promdump runs inside the target container.

Each command is a small immutable value; it is reduced to an argument vector
only when handed to the transport.
"""

import shlex
from dataclasses import dataclass
from typing import List, Optional

from ..models import TimeRange


@dataclass(frozen=True)
class Upload:
    """Unpack a gzip'd tarball read from stdin into data_dir.

    The exec stream can't signal end of input, so when size is known only
    that many bytes are passed on to tar, letting the command exit.
    """
    data_dir: str
    size: Optional[int] = None
    name = "upload"

    def argv(self) -> List[str]:
        if self.size is None:
            return ["tar", "-C", self.data_dir, "-xzf", "-"]
        return ["sh", "-c", f"head -c {int(self.size)} | tar -C {shlex.quote(self.data_dir)} -xzf -"]


@dataclass(frozen=True)
class Extract:
    """Run the extraction program, streaming its output to stdout."""
    extractor_path: str
    data_dir: str
    window: Optional[TimeRange] = None
    meta_only: bool = False
    debug: bool = False
    name = "extract"

    def argv(self) -> List[str]:
        if self.meta_only:
            args = [self.extractor_path, "-meta"]
        else:
            if self.window is None:
                raise ValueError("a time window is required unless meta_only is set")
            args = [self.extractor_path,
                    "-min-time", str(self.window.start),
                    "-max-time", str(self.window.end)]
        args += ["-data-dir", self.data_dir]
        if self.debug:
            args.append("-debug")
        return args


@dataclass(frozen=True)
class Cleanup:
    """Remove the uploaded extraction program. Safe to repeat."""
    extractor_path: str
    name = "cleanup"

    def argv(self) -> List[str]:
        return ["rm", "-f", self.extractor_path]


@dataclass(frozen=True)
class Probe:
    """Ask an already present extraction program for its version."""
    extractor_path: str
    name = "probe"

    def argv(self) -> List[str]:
        return [self.extractor_path, "-version"]


@dataclass(frozen=True)
class Wipe:
    """Delete the contents of data_dir before a restore."""
    data_dir: str
    name = "wipe"

    def argv(self) -> List[str]:
        target = self.data_dir.rstrip("/")
        if not target:
            raise ValueError("refusing to wipe the root directory")
        target = shlex.quote(target)
        return ["sh", "-c", f"rm -rf {target}/*"]
