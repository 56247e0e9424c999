"""Agent subprocess transport.

Launches an ACP agent and talks newline-delimited JSON-RPC over its
stdin/stdout. Stderr is logged at debug level.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import os
from collections.abc import Callable, Sequence
from typing import Any

from .base import TransportClosedError

logger = logging.getLogger(__name__)

STOP_TIMEOUT = 5.0
# Agents can emit large single-line frames (file contents in tool calls)
STREAM_LIMIT = 16 * 1024 * 1024


class AgentProcessTransport:
    """One agent subprocess.

    Args:
        command: Program and arguments
        cwd: Working directory for the agent process
        env: Extra environment variables (merged over ``os.environ``)
        on_message: Called with each decoded JSON object from stdout
        on_close: Called once with the exit code when stdout reaches EOF
    """

    def __init__(
        self,
        command: Sequence[str],
        *,
        cwd: str | None = None,
        env: dict[str, str] | None = None,
        on_message: Callable[[Any], Any] | None = None,
        on_close: Callable[[int | None], Any] | None = None,
    ) -> None:
        if not command:
            raise ValueError("Agent command must not be empty")
        self.command = list(command)
        self.cwd = cwd
        self.env = env
        self.on_message = on_message
        self.on_close = on_close

        self._process: asyncio.subprocess.Process | None = None
        self._stdout_task: asyncio.Task[None] | None = None
        self._stderr_task: asyncio.Task[None] | None = None
        self._closed = asyncio.Event()

    @property
    def is_running(self) -> bool:
        return self._process is not None and self._process.returncode is None

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process else None

    async def start(self) -> None:
        if self._process is not None:
            return

        env = {**os.environ, **self.env} if self.env else None
        self._process = await asyncio.create_subprocess_exec(
            *self.command,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=self.cwd,
            env=env,
            limit=STREAM_LIMIT,
        )
        self._stdout_task = asyncio.create_task(self._read_stdout())
        self._stderr_task = asyncio.create_task(self._read_stderr())
        logger.info(f"Launched agent: {' '.join(self.command)} (pid={self._process.pid})")

    def send(self, payload: str) -> None:
        """Write one frame to the agent's stdin. ``payload`` must end with a newline."""
        if not self.is_running or self._process is None or self._process.stdin is None:
            raise TransportClosedError("Agent process not running")
        if self._process.stdin.is_closing():
            raise TransportClosedError("Agent stdin is closed")
        self._process.stdin.write(payload.encode("utf-8"))

    async def wait_closed(self) -> None:
        await self._closed.wait()

    async def stop(self) -> None:
        """Terminate the agent, killing it if it ignores SIGTERM."""
        process = self._process
        if process is None:
            return

        if process.stdin and not process.stdin.is_closing():
            process.stdin.close()

        if process.returncode is None:
            process.terminate()
            try:
                await asyncio.wait_for(process.wait(), timeout=STOP_TIMEOUT)
            except TimeoutError:
                logger.warning(f"Agent ignored SIGTERM, killing (pid={process.pid})")
                process.kill()
                await process.wait()

        for task in (self._stdout_task, self._stderr_task):
            if task is not None and not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task

        logger.info(f"Agent terminated (pid={process.pid}, code={process.returncode})")

    async def _read_stdout(self) -> None:
        process = self._process
        if process is None or process.stdout is None:
            return
        stdout = process.stdout
        try:
            while True:
                line = await stdout.readline()
                if not line:
                    break
                self._dispatch_line(line)
        finally:
            returncode = None
            if process.returncode is None:
                with contextlib.suppress(TimeoutError):
                    returncode = await asyncio.wait_for(process.wait(), timeout=1.0)
            else:
                returncode = process.returncode
            self._closed.set()
            if self.on_close is not None:
                try:
                    self.on_close(returncode)
                except Exception as e:
                    logger.exception(f"on_close callback failed: {e}")

    def _dispatch_line(self, raw: bytes) -> None:
        line = raw.decode("utf-8", errors="replace").strip()
        if not line:
            return
        if not line.startswith("{"):
            logger.debug(f"Skipping non-JSON agent line: {line[:80]}")
            return
        try:
            message = json.loads(line)
        except json.JSONDecodeError as e:
            logger.debug(f"Failed to parse agent line: {e} (line: {line[:80]})")
            return
        if self.on_message is None:
            return
        try:
            self.on_message(message)
        except Exception as e:
            logger.exception(f"Agent message handler failed: {e}")

    async def _read_stderr(self) -> None:
        if self._process is None or self._process.stderr is None:
            return
        while True:
            line = await self._process.stderr.readline()
            if not line:
                break
            logger.debug(f"[agent stderr] {line.decode('utf-8', errors='replace').rstrip()}")
