"""
Advisory file locks (POSIX flock).

Heartbeat cycles and snapshot writes each take a lock so that two daemon
instances on one host cannot interleave audit appends or half-write the
feed file. The lock is released when the file descriptor closes, including
on process death.
"""

import os
import fcntl
import logging
from contextlib import contextmanager
from pathlib import Path

from .errors import LockBusy

logger = logging.getLogger("cxau.lock")


@contextmanager
def advisory_lock(path: Path, blocking: bool = True):
    """
    Hold an exclusive lock on `path` for the duration of the block.

    Non-blocking mode raises LockBusy immediately if another process
    holds the lock.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd = os.open(str(path), os.O_RDWR | os.O_CREAT, 0o600)
    try:
        flags = fcntl.LOCK_EX if blocking else fcntl.LOCK_EX | fcntl.LOCK_NB
        try:
            fcntl.flock(fd, flags)
        except BlockingIOError:
            raise LockBusy(f"lock held by another process: {path}")
        os.ftruncate(fd, 0)
        os.write(fd, str(os.getpid()).encode())
        logger.debug(f"Lock acquired: {path}")
        try:
            yield path
        finally:
            fcntl.flock(fd, fcntl.LOCK_UN)
    finally:
        os.close(fd)
