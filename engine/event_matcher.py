"""Matcher selecting the soonest upcoming event for a search term."""
import logging
from datetime import datetime
from typing import Optional

from engine.event_corpus import EventCorpus
from engine.models import Match

logger = logging.getLogger(__name__)


class EventMatcher:
    """Finds the next future event whose title contains a search term."""

    def __init__(self, corpus: EventCorpus):
        """
        Initialize the matcher.

        Args:
            corpus: Event corpus to search
        """
        self.corpus = corpus

    def find_next(self, query: str, now: datetime) -> Optional[Match]:
        """
        Find the soonest event at or after ``now`` whose title contains ``query``.

        Matching is a case-insensitive substring test. Events without a
        start, and events starting before ``now``, are never candidates.
        When several candidates share the earliest start, the first one in
        corpus order wins.

        Args:
            query: Free-text search term
            now: Reference instant (timezone-aware UTC)

        Returns:
            Match for the selected event, or None if nothing qualifies
        """
        needle = query.lower()
        best = None

        for event in self.corpus.all_events():
            if needle not in event.title.lower():
                continue
            if event.start is None:
                continue
            if event.start < now:
                continue
            # Strict comparison keeps the first-seen event on ties
            if best is None or event.start < best.start:
                best = event

        if best is None:
            logger.debug(f"No upcoming event matches '{query}'")
            return None

        return Match(title=best.title, start=best.start)
