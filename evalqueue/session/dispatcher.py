from __future__ import annotations

import asyncio
import contextlib
from pathlib import Path
from typing import Optional

import structlog

from ..protocol.interfaces import ResultSink, TargetDriver, Watcher, WatchHandle
from ..protocol.messages import Evaluation, ReadyStatus
from ..protocol.payload import build_payload, read_result, suppress_long_lines
from .config import QueueConfig
from .queue import DispatchState, SessionQueueState, SessionRegistry

logger = structlog.get_logger()


class _Completion:
    """Watch handle paired with the future it resolves.

    The future resolves exactly once: True when the result file was written,
    False when the watch was retired first (abort, stall, teardown).
    """

    def __init__(self, future: asyncio.Future[bool]) -> None:
        self.future = future
        self.watch: Optional[WatchHandle] = None

    def signal(self, path: Path) -> None:
        if not self.future.done():
            self.future.set_result(True)

    def close(self) -> None:
        if self.watch is not None:
            self.watch.close()
            self.watch = None
        if not self.future.done():
            self.future.set_result(False)


class Dispatcher:
    """Runs one dispatch loop per session, submitting queue heads in order.

    Per session the loop goes Idle -> WaitingReady -> InFlight and back. A head
    is only submitted when the target reports READY; while it is in flight the
    loop waits on the head's completion future. On completion the result is
    delivered (if the caller's anchor is still valid), the watch retired and
    the head popped before the next head is considered.
    """

    def __init__(
        self,
        registry: SessionRegistry,
        target: TargetDriver,
        sink: ResultSink,
        watcher: Watcher,
        config: Optional[QueueConfig] = None,
    ) -> None:
        self._registry = registry
        self._target = target
        self._sink = sink
        self._watcher = watcher
        self._config = config or QueueConfig()

    def submit(self, evaluation: Evaluation) -> SessionQueueState:
        """Append an evaluation to its session queue and wake the session loop."""
        state = self._registry.get_or_create(evaluation.session_name)
        state.queue.enqueue(evaluation)
        logger.debug(
            "Evaluation queued",
            session=state.name,
            evaluation_id=evaluation.short_id,
            queue_length=len(state.queue),
        )
        self._ensure_running(state)
        state.wakeup.set()
        return state

    def abort(self, session: str) -> int:
        """Drop all pending evaluations of a session.

        An evaluation already sent to the target keeps running there; its
        completion is ignored because its watch is retired here.
        """
        state = self._registry.get(session)
        if state is None:
            return 0
        dropped = state.queue.clear()
        retired = state.retire_all_watches()
        logger.info("Session queue aborted", session=session, dropped=dropped, retired=retired)
        return dropped

    async def close(self, session: str) -> None:
        """Stop the session loop and forget its queue."""
        state = self._registry.remove(session)
        if state is None:
            return
        state.queue.clear()
        state.retire_all_watches()
        if state.task:
            state.task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await state.task
            state.task = None
        state.state = DispatchState.IDLE
        logger.debug("Session dispatcher closed", session=session)

    async def shutdown(self) -> None:
        for name in self._registry.names():
            await self.close(name)

    def _ensure_running(self, state: SessionQueueState) -> None:
        if state.task is not None and not state.task.done():
            return
        state.task = asyncio.create_task(self._run(state))

        def _done(task: asyncio.Task[None]) -> None:
            if task.cancelled():
                return
            exc = task.exception()
            if exc:
                logger.error("Dispatch loop failed", session=state.name, error=str(exc))

        state.task.add_done_callback(_done)

    async def _run(self, state: SessionQueueState) -> None:
        while True:
            head = state.queue.peek_head()
            if head is None:
                state.state = DispatchState.IDLE
                state.wakeup.clear()
                await state.wakeup.wait()
                continue

            if self._target.ready_status(state.name) != ReadyStatus.READY:
                state.state = DispatchState.WAITING_READY
                await asyncio.sleep(self._config.retry_delay)
                continue

            await self._dispatch(state, head)

    async def _dispatch(self, state: SessionQueueState, head: Evaluation) -> None:
        payload = build_payload(
            head.id,
            head.options,
            head.source_path,
            head.result_path,
            self._config.recognized_errors,
        )

        loop = asyncio.get_running_loop()
        completion = _Completion(loop.create_future())

        # Watch before sending so a fast target cannot finish unobserved
        completion.watch = self._watcher.register(head.result_path, completion.signal)
        state.active_watches[head.id] = completion

        try:
            await self._target.send_text(payload, state.name)
        except Exception as e:
            logger.error(
                "Failed to send evaluation",
                session=state.name,
                evaluation_id=head.short_id,
                error=str(e),
            )
            state.retire_watch(head.id)
            state.state = DispatchState.WAITING_READY
            await asyncio.sleep(self._config.retry_delay)
            return

        state.state = DispatchState.IN_FLIGHT
        logger.debug("Evaluation submitted", session=state.name, evaluation_id=head.short_id)

        stalled = False
        try:
            if self._config.watch_timeout is None:
                await completion.future
            else:
                await asyncio.wait_for(
                    asyncio.shield(completion.future), timeout=self._config.watch_timeout
                )
        except asyncio.TimeoutError:
            stalled = True

        state.retire_watch(head.id)

        # Aborted or torn down while in flight, possibly after the result was
        # written; the evaluation no longer has a queue entry to complete
        if state.queue.peek_head() is not head:
            logger.debug("Ignoring retired evaluation", session=state.name, evaluation_id=head.short_id)
            return

        state.queue.dequeue_head()

        if stalled:
            logger.warning(
                "Evaluation stalled",
                session=state.name,
                evaluation_id=head.short_id,
                timeout=self._config.watch_timeout,
            )
            self._deliver(head, "")
        else:
            self._deliver(head, read_result(head.result_path))

        state.state = (
            DispatchState.IDLE if state.queue.is_empty() else DispatchState.WAITING_READY
        )

    def _deliver(self, evaluation: Evaluation, result: str) -> None:
        try:
            if not self._sink.anchor_is_valid(
                evaluation.caller_context, evaluation.anchor_start, evaluation.anchor_end
            ):
                logger.info(
                    "Skipping delivery for stale request",
                    session=evaluation.session_name,
                    evaluation_id=evaluation.short_id,
                )
                return
            text = suppress_long_lines(result, self._config.max_line_length)
            self._sink.deliver(evaluation.caller_context, text, evaluation.options)
        except Exception as e:
            logger.warning(
                "Result delivery failed",
                session=evaluation.session_name,
                evaluation_id=evaluation.short_id,
                error=str(e),
            )
