"""In-memory collection of events aggregated from all loaded calendars."""
import logging
from typing import Iterable, List, Tuple

from engine.models import Event

logger = logging.getLogger(__name__)


class EventCorpus:
    """
    Append-only collection of events.

    Events are kept in insertion order and never deduplicated; the same
    title appearing in several calendars yields several entries. The
    corpus is built once at startup and only read afterwards.
    """

    def __init__(self):
        self._events: List[Event] = []

    def add_calendar(self, events: Iterable[Event]) -> None:
        """
        Append every event of one parsed calendar.

        Args:
            events: Events extracted from a calendar source
        """
        added = 0
        for event in events:
            self._events.append(event)
            added += 1
        logger.debug(f"Added {added} events to corpus ({len(self._events)} total)")

    def all_events(self) -> Tuple[Event, ...]:
        """Return a read-only view of the corpus in insertion order."""
        return tuple(self._events)

    def __len__(self) -> int:
        return len(self._events)
