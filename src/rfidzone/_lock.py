"""PID lock file preventing two gateways from serving the same zone."""

from __future__ import annotations

import contextlib
import fcntl
import logging
import os
from pathlib import Path
from typing import Any

from rfidzone.exceptions import RfidLockError

_logger = logging.getLogger(__name__)


def _pid_alive(pid: int) -> bool:
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists but belongs to another user.
        return True
    return True


def _read_pid(path: Path) -> int | None:
    try:
        text = path.read_text(encoding="utf-8").strip()
    except OSError:
        return None
    try:
        return int(text)
    except ValueError:
        return None


def _flock_held(path: Path) -> bool:
    """Whether another open file description holds an ``flock`` on *path*."""
    try:
        fd = os.open(path, os.O_RDONLY)
    except FileNotFoundError:
        return False
    try:
        fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
    except BlockingIOError:
        return True
    finally:
        os.close(fd)
    return False


class InstanceLock:
    """Advisory, PID-based exclusive lock.

    The lock file is created with ``O_CREAT | O_EXCL`` and holds the
    owner's PID; the open descriptor additionally carries an ``flock``.
    A contender first probes that ``flock``: if it is held the lock is
    live, whatever the file says. Otherwise a lock whose recorded PID is
    no longer running (or unreadable) is stale and is cleared once before
    retrying.
    """

    def __init__(self, path: str | os.PathLike[str]) -> None:
        self._path = Path(path)
        self._fd: int | None = None

    @classmethod
    def for_zone(cls, zone: str, kind: str, lock_dir: str | os.PathLike[str]) -> InstanceLock:
        return cls(Path(lock_dir) / f"rfid-{zone.lower()}-{kind}.lock")

    @property
    def path(self) -> Path:
        return self._path

    @property
    def held(self) -> bool:
        return self._fd is not None

    def _create(self) -> int:
        fd = os.open(self._path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o644)
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
            os.write(fd, str(os.getpid()).encode("ascii"))
            os.fsync(fd)
        except OSError:
            os.close(fd)
            with contextlib.suppress(OSError):
                self._path.unlink()
            raise
        return fd

    def acquire(self) -> InstanceLock:
        """Take the lock or raise :class:`RfidLockError` if a live process holds it."""
        if self._fd is not None:
            return self
        try:
            self._fd = self._create()
            return self
        except FileExistsError:
            pass

        pid = _read_pid(self._path)
        if _flock_held(self._path):
            raise RfidLockError(
                f"Lock {self._path} is held by another process (pid={pid})",
                pid=pid,
                path=str(self._path),
            )
        if pid is not None and _pid_alive(pid):
            raise RfidLockError(
                f"Lock {self._path} is held by running process pid={pid}",
                pid=pid,
                path=str(self._path),
            )

        _logger.info("Clearing stale lock %s (pid=%s)", self._path, pid)
        with contextlib.suppress(FileNotFoundError):
            self._path.unlink()
        try:
            self._fd = self._create()
        except FileExistsError as exc:
            raise RfidLockError(
                f"Lock {self._path} was re-acquired by another process",
                pid=_read_pid(self._path),
                path=str(self._path),
            ) from exc
        return self

    def release(self) -> None:
        """Close and delete the lock file. Safe to call repeatedly."""
        fd = self._fd
        self._fd = None
        if fd is None:
            return
        with contextlib.suppress(OSError):
            os.close(fd)
        with contextlib.suppress(FileNotFoundError):
            self._path.unlink()

    def __enter__(self) -> InstanceLock:
        return self.acquire()

    def __exit__(self, *exc: Any) -> None:
        self.release()
