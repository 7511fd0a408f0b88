"""Completion detection for evaluation result files.

Two strategies resolve to "the result is available at this path":

- ``wait_for_result`` polls the file until it is non-empty or a timeout
  elapses. The synchronous path uses it.
- ``FileWatcher`` registers a filesystem change watch (watchfiles) and calls
  back once the file has been written. The dispatcher uses it for queued
  evaluations.

Result files are created empty and written once by the target, so
"non-empty" and "modified" are both reliable completion signals.
"""

from __future__ import annotations

import asyncio
import time
from pathlib import Path
from typing import Callable, Optional

import structlog
from watchfiles import awatch

from ..protocol.payload import result_available

logger = structlog.get_logger()


async def wait_for_result(
    path: Path | str,
    timeout: float,
    interval: float = 0.05,
) -> bool:
    """Poll ``path`` until it is non-empty.

    Args:
        path: Result file
        timeout: Seconds to wait before giving up
        interval: Seconds between checks

    Returns:
        True once the file is non-empty, False after the timeout
    """
    deadline = time.monotonic() + timeout
    while True:
        if result_available(path):
            return True
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            logger.warning("Result wait timed out", path=str(path), timeout=timeout)
            return False
        await asyncio.sleep(min(interval, remaining))


class FileWatch:
    """A one-shot watch on a single result file."""

    def __init__(
        self,
        path: Path,
        on_change: Callable[[Path], None],
        debounce_ms: int = 50,
        rust_timeout_ms: int = 500,
    ) -> None:
        self._path = path
        self._on_change = on_change
        self._debounce_ms = debounce_ms
        self._rust_timeout_ms = rust_timeout_ms
        self._stop = asyncio.Event()
        self._fired = False
        self._task: Optional[asyncio.Task[None]] = None

    @property
    def path(self) -> Path:
        return self._path

    @property
    def closed(self) -> bool:
        return self._stop.is_set()

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._run())
            self._task.add_done_callback(self._done)

    def close(self) -> None:
        """Stop watching. Safe to call more than once."""
        if self._stop.is_set():
            return
        self._stop.set()
        if self._task and not self._task.done():
            self._task.cancel()

    def _fire(self) -> None:
        if self._fired or self._stop.is_set():
            return
        self._fired = True
        self._on_change(self._path)

    async def _run(self) -> None:
        # A write that lands before the watcher is set up produces no event;
        # the empty batches yielded on rust timeout re-check the file.
        async for _ in awatch(
            self._path,
            watch_filter=None,
            debounce=self._debounce_ms,
            step=10,
            stop_event=self._stop,
            rust_timeout=self._rust_timeout_ms,
            yield_on_timeout=True,
        ):
            if result_available(self._path):
                self._fire()
                return

    def _done(self, task: asyncio.Task[None]) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc:
            logger.warning("File watch failed", path=str(self._path), error=str(exc))


class FileWatcher:
    """Creates ``FileWatch`` instances with shared tuning."""

    def __init__(self, debounce_ms: int = 50, rust_timeout_ms: int = 500) -> None:
        self._debounce_ms = debounce_ms
        self._rust_timeout_ms = rust_timeout_ms

    def register(self, path: Path | str, on_change: Callable[[Path], None]) -> FileWatch:
        """Watch ``path`` and call ``on_change`` once it has been written.

        Must be called from a running event loop.
        """
        watch = FileWatch(
            Path(path),
            on_change,
            debounce_ms=self._debounce_ms,
            rust_timeout_ms=self._rust_timeout_ms,
        )
        watch.start()
        logger.debug("Registered file watch", path=str(path))
        return watch
