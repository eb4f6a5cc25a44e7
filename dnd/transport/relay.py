# dnd/transport/relay.py
"""
Relay transport: hand a spool file to a peer's queue.

The default implementation shells out to an scp-compatible binary and copies
the file to the same absolute path on the peer, where the peer's daemon picks
it up from its own queue.  Success means exit status 0; nothing else about
delivery is known.

Usage:
    relay = ScpRelay(settings.scp_path, settings.scp_options)
    status = await relay.send(path, "node-b")
"""
from __future__ import annotations

import abc
import asyncio
import shlex
from pathlib import Path
from typing import Sequence

from dnd.infra.logging_config import get_logger

logger = get_logger(__name__)

# Same status a shell reports for a missing binary
EXIT_NOT_FOUND = 127


class RelayTransport(abc.ABC):
    """Abstract base class for relay transports"""

    @property
    @abc.abstractmethod
    def name(self) -> str:
        """Transport name for logging/metrics"""
        pass

    @abc.abstractmethod
    async def send(self, path: Path, host: str) -> int:
        """
        Copy ``path`` to ``host`` under the same absolute path.

        Returns:
            Exit status of the transfer, 0 on success
        """
        pass


class ScpRelay(RelayTransport):
    """Relay through an external scp-like copy tool."""

    def __init__(self, scp_path: str = "/usr/bin/scp", options: Sequence[str] = ("-q", "-p")):
        self.scp_path = scp_path
        self.options = list(options)

    @property
    def name(self) -> str:
        return "scp"

    def build_argv(self, path: Path, host: str) -> list[str]:
        # The remote side of an scp target is expanded by the peer's shell
        return [self.scp_path, *self.options, str(path), f"{host}:{shlex.quote(str(path))}"]

    async def send(self, path: Path, host: str) -> int:
        argv = self.build_argv(path, host)
        logger.debug(f"Relaying: {' '.join(argv)}")
        try:
            proc = await asyncio.create_subprocess_exec(*argv)
        except OSError as exc:
            logger.error(f"Cannot run relay tool {self.scp_path}: {exc}")
            return EXIT_NOT_FOUND

        try:
            returncode = await proc.wait()
        except asyncio.CancelledError:
            if proc.returncode is None:
                proc.kill()
                await proc.wait()
            raise

        # Killed by a signal: report it shell-style
        return 128 - returncode if returncode < 0 else returncode
