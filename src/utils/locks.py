"""
Inter-process file locks.

A lock is a sibling file created with O_CREAT | O_EXCL; whoever creates it
holds the lock until the file is removed. Works across uvicorn workers
sharing one data directory.

The holder's PID is written into the file. A waiter that finds the lock held
by a process that no longer exists (or an unreadable lock older than
``stale_after_seconds``) removes it and tries again.
"""

import os
import time
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Generator, Optional, Union

from src.utils.logger import get_logger

logger = get_logger(__name__)

LOCK_TIMEOUT_SECONDS = 10.0
LOCK_POLL_INTERVAL = 0.01
LOCK_STALE_AFTER_SECONDS = 60.0


def _read_pid(path: Path) -> Optional[int]:
    try:
        raw = path.read_text(encoding="utf-8").strip()
    except (FileNotFoundError, UnicodeDecodeError):
        return None
    return int(raw) if raw.isdigit() else None


def pid_alive(pid: int) -> bool:
    """Best-effort liveness check; unknown means alive"""
    if pid <= 0:
        return False
    if os.name == "nt":
        # Signal 0 is CTRL_C_EVENT on Windows; rely on the age threshold there
        return True
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


def _break_if_stale(lock_path: Path, stale_after_seconds: float) -> bool:
    """Remove ``lock_path`` if its holder is gone. Returns True if removed."""
    try:
        before = os.stat(lock_path)
    except FileNotFoundError:
        return False
    pid = _read_pid(lock_path)
    if pid is not None:
        if pid_alive(pid):
            return False
    elif time.time() - before.st_mtime < stale_after_seconds:
        # Possibly a holder between create and write
        return False

    # Move it aside first so a lock created meanwhile by someone else is never deleted
    grave = lock_path.with_name(f"{lock_path.name}.{uuid.uuid4().hex}.stale")
    try:
        os.rename(lock_path, grave)
    except FileNotFoundError:
        return False
    moved = os.stat(grave)
    if (moved.st_ino, moved.st_dev) != (before.st_ino, before.st_dev):
        # Took a fresh lock by mistake: put it back
        try:
            os.link(grave, lock_path)
        except FileExistsError:
            logger.warning("Could not restore lock file", path=str(lock_path))
        grave.unlink()
        return False

    grave.unlink()
    logger.warning("Removed stale lock file", path=str(lock_path), holder_pid=pid)
    return True


@contextmanager
def file_lock(
    path: Union[str, Path],
    timeout_seconds: float = LOCK_TIMEOUT_SECONDS,
    poll_interval: float = LOCK_POLL_INTERVAL,
    stale_after_seconds: float = LOCK_STALE_AFTER_SECONDS,
) -> Generator[None, None, None]:
    """
    Hold the lock file at ``path`` for the duration of the block.
    Blocks until acquired; raises TimeoutError after ``timeout_seconds``.
    """
    lock_path = Path(path)
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    deadline = time.monotonic() + timeout_seconds

    while True:
        try:
            fd = os.open(str(lock_path), os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            if _break_if_stale(lock_path, stale_after_seconds):
                continue
            if time.monotonic() >= deadline:
                raise TimeoutError(f"Could not acquire lock {lock_path} within {timeout_seconds}s")
            time.sleep(poll_interval)
            continue
        try:
            os.write(fd, str(os.getpid()).encode())
        finally:
            os.close(fd)
        break

    try:
        yield
    finally:
        try:
            lock_path.unlink()
        except FileNotFoundError:
            pass
