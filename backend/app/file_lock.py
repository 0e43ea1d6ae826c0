from __future__ import annotations

import fcntl
import os
import time
from pathlib import Path


class FileLock:
    """Advisory exclusive lock on ``<path>.lock``, usable as a context manager."""

    def __init__(self, path: Path, timeout: float = 5.0, poll_interval: float = 0.05) -> None:
        self.lock_path = Path(str(path) + ".lock")
        self.timeout = timeout
        self.poll_interval = poll_interval
        self._fd: int | None = None

    def acquire(self) -> None:
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(self.lock_path, os.O_RDWR | os.O_CREAT, 0o644)
        deadline = time.monotonic() + self.timeout
        while True:
            try:
                fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
            except BlockingIOError:
                if time.monotonic() >= deadline:
                    os.close(fd)
                    raise TimeoutError(f"Could not lock {self.lock_path} within {self.timeout}s")
                time.sleep(self.poll_interval)
                continue
            self._fd = fd
            return

    def release(self) -> None:
        if self._fd is None:
            return
        try:
            fcntl.flock(self._fd, fcntl.LOCK_UN)
        finally:
            os.close(self._fd)
            self._fd = None

    def __enter__(self) -> FileLock:
        self.acquire()
        return self

    def __exit__(self, *exc_info) -> None:
        self.release()
