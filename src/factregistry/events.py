"""
Registry Event Records

One record per successful page registration and one per successful
aggregation. Records are immutable and kept in order of emission.
"""

from dataclasses import dataclass
from typing import List, Union


@dataclass(frozen=True)
class MemoryPageRegistered:
    """A new memory page was committed."""
    index: int
    page_hash: bytes
    product: int
    size: int
    fact: bytes


@dataclass(frozen=True)
class StatementRegistered:
    """An aggregate statement fact was registered."""
    aggregate_fact: bytes
    task_count: int


Event = Union[MemoryPageRegistered, StatementRegistered]


class EventLog:
    """Append-only list of events."""

    def __init__(self):
        self._events: List[Event] = []

    def emit(self, event: Event) -> None:
        self._events.append(event)

    def __iter__(self):
        return iter(list(self._events))

    def __len__(self) -> int:
        return len(self._events)

    def __getitem__(self, index: int) -> Event:
        return self._events[index]

    def of_type(self, kind: type) -> List[Event]:
        return [e for e in self._events if isinstance(e, kind)]
