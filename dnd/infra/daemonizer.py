# dnd/infra/daemonizer.py
"""
Detach the current process from its terminal.

Runs before the event loop exists; the caller reconfigures logging afterwards
(the console handler is gone for good, the file handler is reopened).
"""
from __future__ import annotations

import os

from dnd.core.errors import DaemonizeFailed
from dnd.infra.logging_config import close_logging, get_logger
from dnd.infra.pid_lock import ProcessLock

logger = get_logger(__name__)

_FALLBACK_MAXFD = 1024


def _max_fd() -> int:
    try:
        maxfd = os.sysconf("SC_OPEN_MAX")
    except (ValueError, OSError):
        return _FALLBACK_MAXFD
    return maxfd if maxfd > 0 else _FALLBACK_MAXFD


def daemonize(lock: ProcessLock, *, umask: int = 0, workdir: str = "/") -> int:
    """
    Fork, start a new session and point stdio at /dev/null.

    The parent exits with status 0; only the child returns, with its pid
    already written to ``lock``.

    Raises:
        DaemonizeFailed: fork() or setsid() failed
        LockWriteFailed: the child cannot record its pid
    """
    logger.debug("Detaching from terminal")
    close_logging()

    try:
        pid = os.fork()
    except OSError as exc:
        raise DaemonizeFailed(f"Cannot fork: {exc}") from exc
    if pid > 0:
        os._exit(0)

    try:
        os.setsid()
    except OSError as exc:
        raise DaemonizeFailed(f"Cannot start a new session: {exc}") from exc

    os.chdir(workdir)
    os.umask(umask)

    lock.rebind(os.getpid())

    os.closerange(0, _max_fd())
    devnull = os.open(os.devnull, os.O_RDWR)  # lowest free fd: 0
    if devnull != 0:
        os.dup2(devnull, 0)
    os.dup2(0, 1)
    os.dup2(0, 2)

    return os.getpid()
