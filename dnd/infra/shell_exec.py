# dnd/infra/shell_exec.py
"""
Local execution of record commands through the system shell.

Commands are opaque strings; nothing is quoted or split here.  Children
inherit the daemon's stdio (``/dev/null`` once detached).
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Iterable

from dnd.infra.logging_config import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class CommandResult:
    """
    exit_code:  shell-style status (128 + signal when killed)
    error_code: raw wait status (exit << 8, or the signal number)
    """
    exit_code: int
    error_code: int
    command: str

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    def describe(self) -> str:
        return f"[ ret: {self.exit_code}, err: {self.error_code}, cmd: {self.command} ]"


def result_from_returncode(command: str, returncode: int) -> CommandResult:
    """Map an asyncio returncode (negative = killed by signal) to a CommandResult."""
    if returncode < 0:
        sig = -returncode
        return CommandResult(exit_code=128 + sig, error_code=sig, command=command)
    return CommandResult(exit_code=returncode, error_code=returncode << 8, command=command)


async def run_command(command: str) -> CommandResult:
    """
    Run one command via ``/bin/sh -c`` and wait for it.

    Cancelling the awaiting task kills the child before re-raising.
    """
    logger.debug(f"Executing: {command}")
    try:
        proc = await asyncio.create_subprocess_shell(command)
    except OSError as exc:
        logger.error(f"Cannot spawn shell for {command!r}: {exc}")
        return CommandResult(exit_code=127, error_code=127 << 8, command=command)

    try:
        returncode = await proc.wait()
    except asyncio.CancelledError:
        if proc.returncode is None:
            proc.kill()
            await proc.wait()
        raise

    return result_from_returncode(command, returncode)


async def run_commands(commands: Iterable[str]) -> list[CommandResult]:
    """Run commands strictly in order; a failing command does not stop the rest."""
    results = []
    for command in commands:
        results.append(await run_command(command))
    return results


def commands_succeeded(results: list[CommandResult]) -> bool:
    """Success iff the exit codes sum to zero (an empty list succeeds)."""
    return sum(r.exit_code for r in results) == 0


def format_failure(results: list[CommandResult]) -> str:
    triples = ", ".join(r.describe() for r in results)
    return f"Local execution failed. Return codes from system call: {triples}"
