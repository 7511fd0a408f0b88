"""Collaborators the evaluation core talks to but does not implement."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Protocol

from .messages import EvaluationOptions, ReadyStatus


class TargetDriver(Protocol):
    """Access to the target processes, one per session name."""

    async def send_text(self, text: str, session: str) -> None:
        """Submit text to the session's input stream (fire and forget)."""
        ...

    def ready_status(self, session: str) -> ReadyStatus: ...


class ResultSink(Protocol):
    """Caller/document layer receiving results of queued evaluations."""

    def deliver(self, caller_context: Any, result: str, options: EvaluationOptions) -> None: ...

    def anchor_is_valid(self, caller_context: Any, anchor_start: Any, anchor_end: Any) -> bool:
        """Whether the request region still exists and matches."""
        ...


class WatchHandle(Protocol):
    def close(self) -> None: ...


class Watcher(Protocol):
    """Registers change notifications on result files."""

    def register(self, path: Path, on_change: Callable[[Path], None]) -> WatchHandle: ...
