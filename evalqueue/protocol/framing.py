from __future__ import annotations

from dataclasses import dataclass

import structlog

from .payload import BEGIN_SENTINEL, END_SENTINEL

logger = structlog.get_logger()


@dataclass(slots=True)
class FilteredChunk:
    """A chunk of target output plus whether it belongs to echoed payload."""

    data: str
    suppress: bool


class OutputStreamFilter:
    """Stateful sentinel scanner over a target's live output stream.

    Chunks are never modified. A chunk is flagged ``suppress`` when any part of
    it lies between a begin and an end sentinel; the display layer decides what
    to do with the flag.

    Sentinels may be split across chunk boundaries: the last
    ``len(longest sentinel) - 1`` characters of the previous chunk are kept and
    searched together with the next chunk.
    """

    def __init__(
        self,
        begin: str = BEGIN_SENTINEL,
        end: str = END_SENTINEL,
    ) -> None:
        self._begin = begin
        self._end = end
        self._keep = max(len(begin), len(end)) - 1
        self._tail = ""
        self._active = False

    @property
    def suppress_active(self) -> bool:
        return self._active

    def feed(self, data: str) -> FilteredChunk:
        """Scan one chunk and return it with its suppression flag."""
        window = self._tail + data
        offset = len(self._tail)
        was_active = self._active
        touched = was_active

        # Only markers that end inside the new chunk count; ones wholly in the
        # tail were seen with the previous chunk.
        events: list[tuple[int, bool]] = []
        for marker, state in ((self._begin, True), (self._end, False)):
            start = window.find(marker)
            while start != -1:
                if start + len(marker) > offset:
                    events.append((start, state))
                start = window.find(marker, start + 1)

        for _, state in sorted(events):
            touched = True
            self._active = state

        if self._active != was_active:
            logger.debug("Output suppression toggled", suppress=self._active)

        self._tail = window[-self._keep:] if self._keep else ""
        return FilteredChunk(data=data, suppress=touched)

    def reset(self) -> None:
        self._tail = ""
        self._active = False
