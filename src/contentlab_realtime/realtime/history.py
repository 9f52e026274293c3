"""Bounded event history."""

from collections import deque
from typing import Deque, Iterator, Optional

from contentlab_realtime.schemas.events import Event


class EventHistory:
    """FIFO buffer of events, newest last, never longer than its cap."""

    def __init__(self, cap: int):
        if cap < 1:
            raise ValueError("history cap must be at least 1")
        self._events: Deque[Event] = deque(maxlen=cap)

    @property
    def cap(self) -> int:
        return self._events.maxlen

    def append(self, event: Event) -> None:
        # deque(maxlen=...) drops the oldest entry when full
        self._events.append(event)

    def clear(self) -> None:
        self._events.clear()

    def latest(self) -> Optional[Event]:
        return self._events[-1] if self._events else None

    def snapshot(self) -> tuple[Event, ...]:
        return tuple(self._events)

    def of_kind(self, kind: str, competitor_id: Optional[str] = None) -> tuple[Event, ...]:
        """Events of one kind, optionally narrowed to a single competitor."""
        return tuple(
            e for e in self._events
            if e.kind == kind
            and (competitor_id is None or getattr(e.payload, "competitor_id", None) == competitor_id)
        )

    def __len__(self) -> int:
        return len(self._events)

    def __iter__(self) -> Iterator[Event]:
        return iter(self.snapshot())
