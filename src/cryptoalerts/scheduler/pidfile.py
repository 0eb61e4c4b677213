"""Single-instance guard for ``cryptoalerts alert watch``.

Two foreground monitors over one store would evaluate every alert twice per
interval, so the second one refuses to start while the first is alive.
"""

from __future__ import annotations

import atexit
import logging
import os
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)


class MonitorAlreadyRunning(RuntimeError):
    def __init__(self, pid: int):
        super().__init__(f"Monitor already running (pid={pid})")
        self.pid = pid


def _pid_is_running(pid: int) -> bool:
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists, owned by someone else.
        return True
    except OSError:
        return False
    return True


def read_pid(path: Path) -> int | None:
    try:
        return int(path.read_text(encoding="utf-8").strip())
    except (OSError, ValueError):
        return None


def running_pid(path: Path) -> int | None:
    """Pid of a live monitor holding the file, if any."""
    pid = read_pid(path)
    if pid is not None and _pid_is_running(pid):
        return pid
    return None


@dataclass(frozen=True)
class PidFile:
    path: Path
    pid: int

    def remove(self) -> None:
        """Delete the file, but only while it still names this process."""
        if read_pid(self.path) != self.pid:
            return
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning("could not remove pid file %s: %s", self.path, e)

    def __enter__(self) -> PidFile:
        return self

    def __exit__(self, *exc) -> None:
        self.remove()


def acquire_pid_file(path: Path) -> PidFile:
    """Claim ``path`` for this process.

    Raises MonitorAlreadyRunning when a live process holds it; a file left
    behind by a dead process is taken over.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    pid = os.getpid()
    try:
        fd = os.open(str(path), os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
    except FileExistsError:
        holder = read_pid(path)
        if holder is not None and _pid_is_running(holder):
            raise MonitorAlreadyRunning(holder) from None
        logger.info("taking over stale pid file %s (pid=%s)", path, holder)
        path.write_text(str(pid), encoding="utf-8")
    else:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(str(pid))

    pidfile = PidFile(path=path, pid=pid)
    atexit.register(pidfile.remove)
    return pidfile
