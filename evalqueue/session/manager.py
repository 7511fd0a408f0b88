from __future__ import annotations

import asyncio
import time
from pathlib import Path
from typing import Any, Optional

import structlog

from ..protocol.interfaces import ResultSink, TargetDriver, Watcher
from ..protocol.messages import NO_SESSION, Evaluation, EvaluationOptions, ReadyStatus
from ..protocol.payload import (
    build_payload,
    check_recognized_errors,
    create_exchange_file,
    read_result,
)
from .config import QueueConfig
from .dispatcher import Dispatcher
from .queue import DispatchState, SessionRegistry
from .waiter import FileWatcher, wait_for_result

logger = structlog.get_logger()

SUBMITTED_PREFIX = "Submitted"


class EvaluationManager:
    """Entry point for evaluating code in named target sessions.

    Queued evaluations go through the per-session dispatcher and are delivered
    to ``sink``; blocking evaluations bypass the queue and return their result
    directly.

    Raises ValueError on construction if ``config.recognized_errors`` names
    anything but builtin exception classes.
    """

    def __init__(
        self,
        target: TargetDriver,
        sink: ResultSink,
        config: Optional[QueueConfig] = None,
        watcher: Optional[Watcher] = None,
    ) -> None:
        self._config = config or QueueConfig()
        check_recognized_errors(self._config.recognized_errors)
        self._target = target
        self._registry = SessionRegistry()
        self._dispatcher = Dispatcher(
            self._registry,
            target,
            sink,
            watcher
            or FileWatcher(
                debounce_ms=self._config.watch_debounce_ms,
                rust_timeout_ms=self._config.watch_rust_timeout_ms,
            ),
            self._config,
        )

    @property
    def config(self) -> QueueConfig:
        return self._config

    @property
    def registry(self) -> SessionRegistry:
        return self._registry

    def resolve_session(self, session_name: Optional[str], options: EvaluationOptions) -> str:
        if session_name:
            return session_name
        if options.session and options.session != NO_SESSION:
            return options.session
        return self._config.default_session

    def create_evaluation(
        self,
        caller_context: Any,
        session_name: Optional[str],
        body: str,
        options: Optional[EvaluationOptions] = None,
        *,
        is_async: bool = True,
        anchor_start: Any = None,
        anchor_end: Any = None,
    ) -> Evaluation:
        """Persist the body to a fresh source file and build the evaluation record."""
        options = options or EvaluationOptions()
        source_path = create_exchange_file(self._config.exchange_dir, ".py", body)
        result_path = create_exchange_file(self._config.exchange_dir, ".out")
        return Evaluation(
            is_async=is_async,
            caller_context=caller_context,
            session_name=self.resolve_session(session_name, options),
            options=options,
            source_path=source_path,
            result_path=result_path,
            anchor_start=anchor_start,
            anchor_end=anchor_end,
        )

    async def evaluate(
        self,
        caller_context: Any,
        session_name: Optional[str],
        body: str,
        options: Optional[EvaluationOptions] = None,
        *,
        blocking: bool = False,
        anchor_start: Any = None,
        anchor_end: Any = None,
    ) -> str:
        """Evaluate ``body`` in a session.

        Args:
            caller_context: Opaque handle passed back to the sink on delivery
            session_name: Target session; falls back to ``options.session`` and
                then to the configured default
            body: Code to run
            options: Evaluation options
            blocking: Return the result directly instead of queueing. Callers
                set this when they need the value to keep going, e.g. while
                resolving a reference from inside another evaluation.
            anchor_start: Start of the request region in the caller's document
            anchor_end: End of the request region

        Returns:
            The result text when blocking, otherwise ``"Submitted <id>"``
        """
        evaluation = self.create_evaluation(
            caller_context,
            session_name,
            body,
            options,
            is_async=not blocking,
            anchor_start=anchor_start,
            anchor_end=anchor_end,
        )

        if not evaluation.is_async:
            payload = build_payload(
                evaluation.id,
                evaluation.options,
                evaluation.source_path,
                evaluation.result_path,
                self._config.recognized_errors,
            )
            return await self.evaluate_blocking(
                evaluation.session_name, payload, evaluation.result_path
            )

        self._dispatcher.submit(evaluation)
        return f"{SUBMITTED_PREFIX} {evaluation.short_id}"

    async def evaluate_blocking(
        self,
        session: str,
        payload: str,
        result_path: Path | str,
    ) -> str:
        """Send ``payload`` directly to the session and wait for its result.

        Bypasses the session queue. Gives up with an empty result when the
        target does not become ready within ``sync_timeout``, or the result
        does not appear within another ``sync_timeout``.
        """
        deadline = time.monotonic() + self._config.sync_timeout
        while self._target.ready_status(session) != ReadyStatus.READY:
            if time.monotonic() >= deadline:
                logger.warning("Session never became ready", session=session)
                return ""
            await asyncio.sleep(self._config.ready_interval)

        try:
            await self._target.send_text(payload, session)
        except Exception as e:
            logger.error("Failed to send blocking evaluation", session=session, error=str(e))
            return ""

        if not await wait_for_result(
            result_path, self._config.sync_timeout, self._config.poll_interval
        ):
            return ""
        return read_result(result_path)

    def abort(self, session: str) -> int:
        """Drop pending evaluations of ``session``; returns how many were dropped."""
        return self._dispatcher.abort(session)

    def is_empty(self, session: str) -> bool:
        state = self._registry.get(session)
        return state is None or state.queue.is_empty()

    def pending(self, session: str) -> int:
        state = self._registry.get(session)
        return 0 if state is None else len(state.queue)

    def active_watches(self, session: str) -> int:
        state = self._registry.get(session)
        return 0 if state is None else len(state.active_watches)

    def state(self, session: str) -> DispatchState:
        state = self._registry.get(session)
        return DispatchState.IDLE if state is None else state.state

    async def close_session(self, session: str) -> None:
        await self._dispatcher.close(session)

    async def shutdown(self) -> None:
        await self._dispatcher.shutdown()
