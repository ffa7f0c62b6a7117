"""Execution environment port.

The analysis agent runs inside a sandbox that streams its stdout and stderr
back as text chunks. The lifecycle controller only needs three things from
it: start a command, wait for its exit code, and terminate it by reference.
"""

from __future__ import annotations

import asyncio
import codecs
import logging
import os
import signal
from abc import ABC, abstractmethod
from typing import Awaitable, Callable

from beetle_core.errors import SandboxError

logger = logging.getLogger(__name__)

StreamCallback = Callable[[str], Awaitable[None]]

_REF_PREFIX = "local-"
_READ_SIZE = 4096


class ExecutionHandle(ABC):
    sandbox_ref: str

    @abstractmethod
    async def wait(self) -> int:
        """Wait for the command to exit and all output to be delivered."""


class BaseSandbox(ABC):
    @abstractmethod
    async def run(
        self,
        command: str,
        on_stdout: StreamCallback,
        on_stderr: StreamCallback,
        env: dict[str, str] | None = None,
    ) -> ExecutionHandle:
        """Start ``command`` and stream its output to the callbacks."""

    @abstractmethod
    async def kill(self, sandbox_ref: str) -> None:
        """Terminate a running sandbox. Raises SandboxError on failure."""


async def _pump(stream: asyncio.StreamReader, callback: StreamCallback) -> None:
    # Chunks may split multi-byte characters; the incremental decoder holds them back.
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    while True:
        data = await stream.read(_READ_SIZE)
        if not data:
            break
        text = decoder.decode(data)
        if text:
            await _deliver(callback, text)
    tail = decoder.decode(b"", final=True)
    if tail:
        await _deliver(callback, tail)


async def _deliver(callback: StreamCallback, text: str) -> None:
    try:
        await callback(text)
    except Exception as e:
        logger.error("Output callback failed: %s", e)


class _LocalExecution(ExecutionHandle):
    def __init__(self, sandbox_ref: str, process, pumps: list[asyncio.Task], on_exit: Callable[[], None]):
        self.sandbox_ref = sandbox_ref
        self._process = process
        self._pumps = pumps
        self._on_exit = on_exit

    async def wait(self) -> int:
        try:
            returncode = await self._process.wait()
            await asyncio.gather(*self._pumps)
        finally:
            self._on_exit()
        return returncode


class LocalProcessSandbox(BaseSandbox):
    """Runs the agent as a local shell command in its own process group.

    ``kill`` signals the whole group so child processes spawned by the agent
    go down with it. A reference from another process (``local-<pid>``) can
    be killed as well, which is what ``beetle stop`` relies on.
    """

    def __init__(self, cwd: str | None = None, env: dict[str, str] | None = None):
        self.cwd = cwd
        self.env = env
        self._processes: dict[str, asyncio.subprocess.Process] = {}

    async def run(
        self,
        command: str,
        on_stdout: StreamCallback,
        on_stderr: StreamCallback,
        env: dict[str, str] | None = None,
    ) -> ExecutionHandle:
        merged_env = {**os.environ, **(self.env or {}), **(env or {})}
        try:
            process = await asyncio.create_subprocess_shell(
                command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self.cwd,
                env=merged_env,
                start_new_session=True,
            )
        except OSError as e:
            raise SandboxError(f"Could not start analysis command: {e}") from e

        sandbox_ref = f"{_REF_PREFIX}{process.pid}"
        self._processes[sandbox_ref] = process
        logger.info("Started sandbox %s: %s", sandbox_ref, command)
        pumps = [
            asyncio.create_task(_pump(process.stdout, on_stdout)),
            asyncio.create_task(_pump(process.stderr, on_stderr)),
        ]
        return _LocalExecution(sandbox_ref, process, pumps, lambda: self._processes.pop(sandbox_ref, None))

    async def kill(self, sandbox_ref: str) -> None:
        process = self._processes.get(sandbox_ref)
        if process is not None and process.returncode is not None:
            return
        pid = process.pid if process is not None else _pid_from_ref(sandbox_ref)
        try:
            os.killpg(pid, signal.SIGTERM)
        except ProcessLookupError:
            logger.info("Sandbox %s already exited", sandbox_ref)
        except OSError as e:
            raise SandboxError(f"Could not terminate sandbox {sandbox_ref!r}: {e}") from e


def _pid_from_ref(sandbox_ref: str) -> int:
    if not sandbox_ref.startswith(_REF_PREFIX):
        raise SandboxError(f"Unknown sandbox reference {sandbox_ref!r}")
    try:
        return int(sandbox_ref[len(_REF_PREFIX) :])
    except ValueError:
        raise SandboxError(f"Unknown sandbox reference {sandbox_ref!r}")
