from __future__ import annotations

import asyncio
import codecs
import contextlib
import sys
import time
from collections import deque
from typing import Callable, Dict, Optional

import psutil
import structlog

from ..protocol.framing import FilteredChunk, OutputStreamFilter
from ..protocol.messages import ReadyStatus
from .constants import PS1, PS2

logger = structlog.get_logger()

OutputCallback = Callable[[str, FilteredChunk], None]


class TargetError(RuntimeError):
    """The target process cannot take input."""

    pass


class ReplProcess:
    """One console subprocess acting as the target of a session.

    Readiness is derived from the output stream: every line sent is echoed
    after a prompt, so the process is ready once each sent line has shown up
    behind a prompt and the output ends with a fresh primary prompt.
    """

    def __init__(
        self,
        session_name: str,
        python_path: str = sys.executable,
        on_output: Optional[OutputCallback] = None,
    ) -> None:
        self.session_name = session_name
        self._python_path = python_path
        self._on_output = on_output
        self._process: asyncio.subprocess.Process | None = None
        self._pump_task: asyncio.Task[None] | None = None
        self._filter = OutputStreamFilter()
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._partial = ""
        self._unanswered: deque[str] = deque()
        self._ready_event = asyncio.Event()

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid if self._process else None

    @property
    def is_alive(self) -> bool:
        return self._process is not None and self._process.returncode is None

    @property
    def output_filter(self) -> OutputStreamFilter:
        return self._filter

    async def start(self, timeout: float = 10.0) -> None:
        """Spawn the console and wait for its first prompt."""
        if self._process is not None:
            raise RuntimeError(f"Session {self.session_name} already started")

        self._process = await asyncio.create_subprocess_exec(
            self._python_path,
            "-u",
            "-m",
            "evalqueue.target.console",
            self.session_name,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
        )
        self._pump_task = asyncio.create_task(self._pump())

        try:
            await asyncio.wait_for(self._ready_event.wait(), timeout=timeout)
        except asyncio.TimeoutError as err:
            await self.stop()
            raise TargetError(f"Session {self.session_name} failed to become ready") from err

        logger.info("Target process started", session=self.session_name, pid=self.pid)

    def ready_status(self) -> ReadyStatus:
        if not self.is_alive:
            return ReadyStatus.DEAD
        if not self._unanswered and self._partial.endswith(PS1):
            return ReadyStatus.READY
        return ReadyStatus.BUSY

    async def send_text(self, text: str) -> None:
        if not self.is_alive or self._process is None or self._process.stdin is None:
            raise TargetError(f"Session {self.session_name} is not running")

        if not text.endswith("\n"):
            text += "\n"
        self._unanswered.extend(text.splitlines())
        self._process.stdin.write(text.encode("utf-8"))
        await self._process.stdin.drain()

    async def _pump(self) -> None:
        assert self._process is not None and self._process.stdout is not None
        stdout = self._process.stdout
        while True:
            data = await stdout.read(8192)
            if not data:
                break
            self._handle_output(self._decoder.decode(data))
        logger.debug("Target output closed", session=self.session_name)

    def _handle_output(self, text: str) -> None:
        chunk = self._filter.feed(text)

        lines = (self._partial + text).split("\n")
        self._partial = lines.pop()
        for line in lines:
            # Output written without a trailing newline shares a line with the
            # next prompt and echo
            if self._unanswered and line.rstrip("\r").endswith(
                (PS1 + self._unanswered[0], PS2 + self._unanswered[0])
            ):
                self._unanswered.popleft()
        if self._partial.endswith(PS1):
            self._ready_event.set()

        if self._on_output is not None:
            try:
                self._on_output(self.session_name, chunk)
            except Exception as e:
                logger.warning("Output callback error", session=self.session_name, error=str(e))
        elif not chunk.suppress:
            logger.debug("Target output", session=self.session_name, data=chunk.data)

    async def stop(self, timeout: float = 5.0) -> None:
        """Close stdin, then terminate the console and anything it spawned."""
        process = self._process
        if process is None:
            return

        if process.returncode is None:
            with contextlib.suppress(psutil.NoSuchProcess):
                for child in psutil.Process(process.pid).children(recursive=True):
                    with contextlib.suppress(psutil.NoSuchProcess):
                        child.terminate()

            if process.stdin is not None:
                process.stdin.close()
            try:
                await asyncio.wait_for(process.wait(), timeout=timeout)
            except asyncio.TimeoutError:
                process.kill()
                await process.wait()

        if self._pump_task:
            self._pump_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._pump_task
            self._pump_task = None

        logger.info("Target process stopped", session=self.session_name)


class ReplProcessDriver:
    """Target driver keeping one ``ReplProcess`` per session name."""

    def __init__(
        self,
        python_path: str = sys.executable,
        on_output: Optional[OutputCallback] = None,
        startup_timeout: float = 10.0,
    ) -> None:
        self._python_path = python_path
        self._on_output = on_output
        self._startup_timeout = startup_timeout
        self._processes: Dict[str, ReplProcess] = {}

    def get(self, session: str) -> Optional[ReplProcess]:
        return self._processes.get(session)

    async def start_session(self, session: str) -> ReplProcess:
        process = self._processes.get(session)
        if process is not None and process.is_alive:
            return process

        started = time.monotonic()
        process = ReplProcess(session, self._python_path, self._on_output)
        await process.start(timeout=self._startup_timeout)
        self._processes[session] = process
        logger.debug(
            "Session target ready",
            session=session,
            startup_time=time.monotonic() - started,
        )
        return process

    async def stop_session(self, session: str) -> None:
        process = self._processes.pop(session, None)
        if process is not None:
            await process.stop()

    async def shutdown(self) -> None:
        for session in list(self._processes):
            await self.stop_session(session)

    async def send_text(self, text: str, session: str) -> None:
        process = self._processes.get(session)
        if process is None:
            raise TargetError(f"No target process for session {session}")
        await process.send_text(text)

    def ready_status(self, session: str) -> ReadyStatus:
        process = self._processes.get(session)
        if process is None:
            return ReadyStatus.DEAD
        return process.ready_status()
