"""
In-memory pipe connecting the archive producer thread to its consumer.

The pipe holds at most ``capacity`` chunks. A writer blocks while the pipe is
full and a reader blocks while it is empty, so a slow sink throttles the
filesystem walk instead of letting the archive accumulate in memory.
"""

import threading
from collections import deque
from typing import Optional, Tuple

DEFAULT_CAPACITY = 4


class _Pipe:
    def __init__(self, capacity: int):
        if capacity < 1:
            raise ValueError("pipe capacity must be at least 1")
        self.capacity = capacity
        self.chunks = deque()
        self.cond = threading.Condition()
        self.write_closed = False
        self.write_error: Optional[BaseException] = None
        self.read_closed = False


class PipeWriter:
    """Write side of the pipe. Usable as the fileobj of a GzipFile."""

    def __init__(self, pipe: _Pipe):
        self._pipe = pipe

    def writable(self) -> bool:
        return True

    def write(self, data) -> int:
        size = len(data)
        if not size:
            return 0

        pipe = self._pipe
        with pipe.cond:
            while len(pipe.chunks) >= pipe.capacity and not pipe.read_closed:
                pipe.cond.wait()
            if pipe.read_closed:
                raise BrokenPipeError("read side of the pipe is closed")
            if pipe.write_closed:
                raise ValueError("write to a closed pipe")
            pipe.chunks.append(bytes(data))
            pipe.cond.notify_all()
        return size

    def flush(self):
        pass

    def close(self, error: Optional[BaseException] = None):
        """Signal end of stream. A non-None error is raised on the read side."""
        pipe = self._pipe
        with pipe.cond:
            if pipe.write_closed:
                return
            pipe.write_closed = True
            pipe.write_error = error
            pipe.cond.notify_all()

    @property
    def closed(self) -> bool:
        return self._pipe.write_closed


class PipeReader:
    """Read side of the pipe."""

    def __init__(self, pipe: _Pipe):
        self._pipe = pipe

    def read(self, timeout: Optional[float] = None) -> bytes:
        """Return the next chunk, or b'' once the writer has closed the pipe.

        Raises the error the writer closed the pipe with, after all buffered
        chunks have been consumed.
        """
        pipe = self._pipe
        with pipe.cond:
            while not pipe.chunks and not pipe.write_closed:
                if not pipe.cond.wait(timeout):
                    raise TimeoutError("timed out waiting for pipe data")
            if pipe.chunks:
                chunk = pipe.chunks.popleft()
                pipe.cond.notify_all()
                return chunk
            if pipe.write_error is not None:
                raise pipe.write_error
            return b""

    def __iter__(self):
        while True:
            chunk = self.read()
            if not chunk:
                return
            yield chunk

    def close(self):
        """Stop reading; pending and future writes fail with BrokenPipeError."""
        pipe = self._pipe
        with pipe.cond:
            pipe.read_closed = True
            pipe.chunks.clear()
            pipe.cond.notify_all()


def pipe(capacity: int = DEFAULT_CAPACITY) -> Tuple[PipeReader, PipeWriter]:
    """Create a connected (reader, writer) pair."""
    shared = _Pipe(capacity)
    return PipeReader(shared), PipeWriter(shared)
