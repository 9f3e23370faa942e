from __future__ import annotations

import asyncio
import contextlib
import subprocess
from typing import Sequence

from tubely.core.logging import get_logger


class ToolRunner:
    """Runs external media tools as asyncio subprocesses with a concurrency ceiling.

    A semaphore slot is held until the child has exited, so the ceiling counts
    live processes. If the awaiting task is cancelled or the timeout expires the
    child is killed and reaped before the slot is released. Failures to start
    the binary (``OSError``) and ``subprocess.TimeoutExpired`` propagate to the
    caller; a non-zero exit status does not raise.
    """

    def __init__(self, *, max_concurrency: int = 4, timeout_s: float | None = None):
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.max_concurrency = max_concurrency
        self.timeout_s = timeout_s
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self.logger = get_logger(component="tool_runner")

    async def run(self, command: Sequence[str]) -> subprocess.CompletedProcess[str]:
        async with self._semaphore:
            return await self.execute(list(command))

    async def execute(self, command: list[str]) -> subprocess.CompletedProcess[str]:
        self.logger.debug("tool_run", command=command)
        process = await asyncio.create_subprocess_exec(
            *command,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout_s)
        except asyncio.TimeoutError as exc:
            await self._kill(process, command, reason="timeout")
            raise subprocess.TimeoutExpired(command, self.timeout_s) from exc
        except asyncio.CancelledError:
            await self._kill(process, command, reason="cancelled")
            raise

        proc = subprocess.CompletedProcess(
            command,
            process.returncode,
            stdout=stdout.decode("utf-8", errors="replace"),
            stderr=stderr.decode("utf-8", errors="replace"),
        )
        if proc.returncode != 0:
            self.logger.warning("tool_exit_nonzero", command=command, returncode=proc.returncode, stderr=proc.stderr.strip())
        return proc

    async def _kill(self, process: asyncio.subprocess.Process, command: list[str], *, reason: str) -> None:
        if process.returncode is None:
            with contextlib.suppress(ProcessLookupError):
                process.kill()
        # Reap even when the caller is being cancelled again.
        await asyncio.shield(process.wait())
        self.logger.warning("tool_killed", command=command, reason=reason)


__all__ = ["ToolRunner"]
