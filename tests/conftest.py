"""Global test configuration and fixtures."""
import calendar
import json
import os
import struct
import sys
from datetime import datetime

import pytest

# Add src to Python path for imports
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, os.path.join(PROJECT_ROOT, "src"))

from promdump.k8s.executor import AccessReview, RemoteExecutor  # noqa: E402
from promdump.tsdb.head import HEAD_CHUNKS_MAGIC  # noqa: E402

# Block ULIDs, in catalog (lexical) order
BLOCK_TWO_ULID = "01F2A9Q8JQ8GH7W2XJ5TCEWN0S"
BLOCK_ONE_ULID = "01F2ZS4D6GC5CBDWGQ4CMQHZ4R"


def to_ms(value: str) -> int:
    """Convert a 'YYYY-MM-DD HH:MM:SS' UTC string to epoch milliseconds."""
    parsed = datetime.strptime(value, "%Y-%m-%d %H:%M:%S")
    return calendar.timegm(parsed.timetuple()) * 1000


def _uvarint(value: int) -> bytes:
    out = bytearray()
    while value >= 0x80:
        out.append((value & 0x7F) | 0x80)
        value >>= 7
    out.append(value)
    return bytes(out)


class TSDBBuilder:
    """Lays out a Prometheus data directory on disk."""

    def __init__(self, root):
        self.root = str(root)
        os.makedirs(self.root, exist_ok=True)

    def add_block(self, ulid, min_ms, max_ms, num_samples=0, num_series=0, files=None):
        path = os.path.join(self.root, ulid)
        os.makedirs(os.path.join(path, "chunks"), exist_ok=True)
        meta = {
            "ulid": ulid,
            "minTime": min_ms,
            "maxTime": max_ms,
            "stats": {"numSamples": num_samples, "numSeries": num_series},
            "version": 1,
        }
        with open(os.path.join(path, "meta.json"), "w") as f:
            json.dump(meta, f)

        files = files if files is not None else {"chunks/000001": b"chunk-data", "index": b"index-data"}
        for name, content in files.items():
            with open(os.path.join(path, name), "wb") as f:
                f.write(content)
        return path

    def add_head_chunks(self, ranges, name="000001"):
        """Write a head chunk file holding one chunk per (mint, maxt) range in ms."""
        chunks_dir = os.path.join(self.root, "chunks_head")
        os.makedirs(chunks_dir, exist_ok=True)

        data = bytearray(struct.pack(">I", HEAD_CHUNKS_MAGIC) + b"\x01\x00\x00\x00")
        for i, (mint, maxt) in enumerate(ranges):
            payload = b"\x00" * (10 + i)
            data += struct.pack(">QqqB", i + 1, mint, maxt, 1)
            data += _uvarint(len(payload)) + payload + b"\x00\x00\x00\x00"
        # zero-filled tail of a preallocated file
        data += b"\x00" * 64

        path = os.path.join(chunks_dir, name)
        with open(path, "wb") as f:
            f.write(bytes(data))
        return path

    def add_wal_segment(self, name="00000000", mtime_ns=None):
        wal_dir = os.path.join(self.root, "wal")
        os.makedirs(wal_dir, exist_ok=True)
        path = os.path.join(wal_dir, name)
        with open(path, "wb") as f:
            f.write(b"wal-record")
        if mtime_ns is not None:
            os.utime(path, ns=(mtime_ns, mtime_ns))
        return path


@pytest.fixture
def tsdb(tmp_path):
    """Empty TSDB data directory builder."""
    return TSDBBuilder(tmp_path / "data")


@pytest.fixture
def two_block_tsdb(tsdb):
    """Data directory holding two blocks, one in March and one in April 2021."""
    tsdb.add_block(BLOCK_ONE_ULID, to_ms("2021-04-01 18:52:31"), to_ms("2021-04-01 20:52:31"),
                   num_samples=1000, num_series=10)
    tsdb.add_block(BLOCK_TWO_ULID, to_ms("2021-03-30 01:05:00"), to_ms("2021-03-30 03:05:00"),
                   num_samples=500, num_series=5)
    return tsdb


class FakeExecutor(RemoteExecutor):
    """In-memory executor recording every review and exec request."""

    def __init__(self, allowed=True, reason=""):
        self.allowed = allowed
        self.reason = reason
        self.reviews = []
        self.calls = []
        self.stdin_data = []
        self.responses = []

    def respond(self, token, stdout=b"", error=None):
        """Make commands mentioning token write stdout or raise error.

        token is matched against the argv elements and the words of each one,
        so it also finds programs run through sh -c.
        """
        self.responses.append((token, stdout, error))

    def review_access(self, namespace, timeout):
        self.reviews.append(namespace)
        return AccessReview(allowed=self.allowed, reason=self.reason)

    def stream(self, target, argv, stdin=None, stdout=None, stderr=None, tty=False, timeout=None):
        self.calls.append(list(argv))
        self.stdin_data.append(stdin.read() if stdin is not None else None)

        for token, output, error in self.responses:
            if token in argv or any(token in arg.split() for arg in argv):
                if output and stdout is not None:
                    stdout.write(output)
                if error is not None:
                    raise error
                return

    def commands(self):
        """Names of the programs run, in order."""
        return [argv[0] for argv in self.calls]


@pytest.fixture
def fake_executor():
    return FakeExecutor()
