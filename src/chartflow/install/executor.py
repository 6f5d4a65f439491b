"""Async command execution for helm, git and kubectl."""

from __future__ import annotations

import asyncio
import os
from dataclasses import dataclass
from typing import Dict, Optional, Sequence

import structlog

from chartflow.core.errors import CommandError, ProviderError

logger = structlog.get_logger()


@dataclass
class CommandResult:
    """Captured output of one command."""

    args: Sequence[str]
    returncode: int = 0
    stdout: str = ""
    stderr: str = ""
    skipped: bool = False


class CommandExecutor:
    """Runs external commands; in dry-run mode commands are only logged."""

    def __init__(self, dry_run: bool = False, verbose: bool = False) -> None:
        self.dry_run = dry_run
        self.verbose = verbose

    async def run(
        self,
        *args: str,
        check: bool = True,
        env: Optional[Dict[str, str]] = None,
        cwd: Optional[str] = None,
        mutating: bool = True,
    ) -> CommandResult:
        """Run a command and capture its output.

        Read-only commands (``mutating=False``) still run in dry-run mode.
        ``env`` is added to the inherited environment and never logged. If the
        awaiting task is cancelled the child process is killed and reaped.
        """
        display = " ".join(args)
        if self.dry_run and mutating:
            logger.info("command_skipped", command=display, dry_run=True)
            return CommandResult(args=args, skipped=True)

        if self.verbose:
            logger.info("command_started", command=display)

        try:
            proc = await asyncio.create_subprocess_exec(
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env={**os.environ, **env} if env else None,
                cwd=cwd,
            )
        except FileNotFoundError as exc:
            raise ProviderError(f"{args[0]} not found in PATH", details={"command": args[0]}) from exc

        try:
            stdout, stderr = await proc.communicate()
        except asyncio.CancelledError:
            await _kill(proc, display)
            raise

        result = CommandResult(
            args=args,
            returncode=proc.returncode if proc.returncode is not None else -1,
            stdout=stdout.decode(errors="replace"),
            stderr=stderr.decode(errors="replace"),
        )

        if check and result.returncode != 0:
            logger.debug(
                "command_failed",
                command=display,
                returncode=result.returncode,
                stderr=result.stderr.strip()[-500:],
            )
            raise CommandError(list(args), result.returncode, result.stderr)
        return result


async def _kill(proc: asyncio.subprocess.Process, display: str) -> None:
    if proc.returncode is not None:
        return
    try:
        proc.kill()
    except ProcessLookupError:
        return
    await proc.wait()
    logger.info("command_killed", command=display, pid=proc.pid)
