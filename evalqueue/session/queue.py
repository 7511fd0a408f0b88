from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterator, Optional

import structlog

from ..protocol.interfaces import WatchHandle
from ..protocol.messages import Evaluation

logger = structlog.get_logger()


class DispatchState(str, Enum):
    """Dispatcher states for one session."""

    IDLE = "idle"
    WAITING_READY = "waiting_ready"
    IN_FLIGHT = "in_flight"


class SessionQueue:
    """Strict FIFO of pending evaluations for one session."""

    def __init__(self) -> None:
        self._items: deque[Evaluation] = deque()

    def enqueue(self, evaluation: Evaluation) -> None:
        self._items.append(evaluation)

    def dequeue_head(self) -> Optional[Evaluation]:
        """Remove and return the head, or None if the queue is empty."""
        if not self._items:
            return None
        return self._items.popleft()

    def peek_head(self) -> Optional[Evaluation]:
        if not self._items:
            return None
        return self._items[0]

    def is_empty(self) -> bool:
        return not self._items

    def clear(self) -> int:
        """Drop every entry without notifying anyone; returns how many were dropped."""
        dropped = len(self._items)
        self._items.clear()
        return dropped

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[Evaluation]:
        return iter(list(self._items))


@dataclass
class SessionQueueState:
    """Queue, watch table and dispatcher bookkeeping for one session.

    An id is in ``active_watches`` only while its evaluation is the submitted,
    not yet completed head of ``queue``.
    """

    name: str
    queue: SessionQueue = field(default_factory=SessionQueue)
    active_watches: Dict[str, WatchHandle] = field(default_factory=dict)
    state: DispatchState = DispatchState.IDLE
    wakeup: asyncio.Event = field(default_factory=asyncio.Event)
    task: Optional[asyncio.Task[None]] = None

    def retire_watch(self, evaluation_id: str) -> bool:
        """Close and forget the watch of an evaluation.

        Returns False if no watch was registered, which makes duplicate
        completion signals harmless.
        """
        handle = self.active_watches.pop(evaluation_id, None)
        if handle is None:
            return False
        handle.close()
        return True

    def retire_all_watches(self) -> int:
        retired = 0
        for evaluation_id in list(self.active_watches):
            if self.retire_watch(evaluation_id):
                retired += 1
        return retired


class SessionRegistry:
    """Maps session names to their queue state; entries are created lazily."""

    def __init__(self) -> None:
        self._sessions: Dict[str, SessionQueueState] = {}

    def get(self, name: str) -> Optional[SessionQueueState]:
        return self._sessions.get(name)

    def get_or_create(self, name: str) -> SessionQueueState:
        state = self._sessions.get(name)
        if state is None:
            state = SessionQueueState(name=name)
            self._sessions[name] = state
            logger.debug("Created session queue", session=name)
        return state

    def remove(self, name: str) -> Optional[SessionQueueState]:
        return self._sessions.pop(name, None)

    def names(self) -> list[str]:
        return list(self._sessions)

    def __contains__(self, name: object) -> bool:
        return name in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)
