"""Loader for iCalendar (.ics) files and feeds."""
import logging
import time
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Iterable, List, Optional, Union

import requests
from icalendar import BrokenCalendarProperty, Calendar

from engine.event_corpus import EventCorpus
from engine.models import Event

logger = logging.getLogger(__name__)


class IcsCalendarLoader:
    """Loads calendar events from local .ics files and remote .ics feeds."""

    EXTENSION = ".ics"
    MAX_RETRIES = 3
    BASE_DELAY = 1  # seconds

    def __init__(self, timeout: int = 30):
        """
        Initialize the calendar loader.

        Args:
            timeout: HTTP request timeout in seconds for remote feeds (default: 30)
        """
        self.timeout = timeout

    def load_corpus(
        self,
        cal_dir: Optional[Union[str, Path]],
        cal_urls: Iterable[str] = ()
    ) -> EventCorpus:
        """
        Build an event corpus from every calendar in a directory and feed list.

        Args:
            cal_dir: Directory scanned (non-recursively) for .ics files, or None
            cal_urls: URLs of remote .ics feeds

        Returns:
            EventCorpus with the events of every calendar that could be parsed

        Raises:
            OSError: If the calendar directory cannot be read
        """
        corpus = EventCorpus()

        if cal_dir is not None:
            for path in self.find_calendar_files(cal_dir):
                corpus.add_calendar(self.load_file(path))

        for url in cal_urls:
            corpus.add_calendar(self.load_url(url))

        logger.info(f"Loaded {len(corpus)} events into corpus")
        return corpus

    def find_calendar_files(self, cal_dir: Union[str, Path]) -> List[Path]:
        """
        List the .ics files directly inside a directory.

        Sub-directories are not descended into.

        Args:
            cal_dir: Directory to scan

        Returns:
            Sorted list of calendar file paths

        Raises:
            OSError: If the directory cannot be read
        """
        files = [
            path for path in Path(cal_dir).iterdir()
            if path.is_file() and path.suffix == self.EXTENSION
        ]
        logger.info(f"Found {len(files)} calendar files in {cal_dir}")
        return sorted(files)

    def load_file(self, path: Union[str, Path]) -> List[Event]:
        """
        Read and parse a calendar file.

        Read or parse failures are logged and yield no events.

        Args:
            path: Path of the .ics file

        Returns:
            List of Event objects
        """
        try:
            content = Path(path).read_bytes()
            events = self.parse_calendar(content, source=str(path))
        except Exception as e:
            logger.warning(
                f"Could not parse calendar: [file=\"{path}\", parse error=\"{e}\"]",
                extra={'source': str(path), 'error_type': type(e).__name__}
            )
            return []

        logger.info(
            f"Loaded {len(events)} events from {path}",
            extra={'source': str(path), 'events': len(events)}
        )
        return events

    def load_url(self, url: str) -> List[Event]:
        """
        Fetch and parse a remote calendar feed.

        Failures are logged and yield no events.

        Args:
            url: URL of the .ics feed

        Returns:
            List of Event objects
        """
        try:
            content = self.fetch_url(url)
            events = self.parse_calendar(content, source=url)
        except Exception as e:
            logger.warning(
                f"Could not load calendar feed: [url=\"{url}\", error=\"{e}\"]",
                extra={'source': url, 'error_type': type(e).__name__}
            )
            return []

        logger.info(
            f"Loaded {len(events)} events from {url}",
            extra={'source': url, 'events': len(events)}
        )
        return events

    def fetch_url(self, url: str) -> bytes:
        """
        Download a calendar feed with retry logic.

        Args:
            url: URL of the .ics feed

        Returns:
            Raw feed content

        Raises:
            requests.RequestException: If all retry attempts fail
        """
        for attempt in range(self.MAX_RETRIES):
            try:
                logger.info(
                    f"Fetching calendar feed {url} "
                    f"(attempt {attempt + 1}/{self.MAX_RETRIES})"
                )
                response = requests.get(url, timeout=self.timeout)
                response.raise_for_status()
                return response.content

            except requests.RequestException as e:
                if attempt < self.MAX_RETRIES - 1:
                    delay = self.BASE_DELAY * (2 ** attempt)
                    logger.warning(
                        f"Request failed (attempt {attempt + 1}/{self.MAX_RETRIES}): {e}. "
                        f"Retrying in {delay} seconds..."
                    )
                    time.sleep(delay)
                else:
                    logger.error(
                        f"All {self.MAX_RETRIES} retry attempts failed. Last error: {e}"
                    )
                    raise

    def parse_calendar(self, content: Union[str, bytes], source: str = "<memory>") -> List[Event]:
        """
        Extract events from iCalendar content.

        A single document may hold several VCALENDAR components; events of
        all of them are returned. VEVENTs without a SUMMARY are skipped.

        Args:
            content: iCalendar text
            source: Identifier of the content used in log messages

        Returns:
            List of Event objects in document order

        Raises:
            ValueError: If the content is not valid iCalendar
        """
        events = []

        for calendar in Calendar.from_ical(content, multiple=True):
            for component in calendar.walk('VEVENT'):
                summary = component.get('SUMMARY')
                if summary is None:
                    logger.debug(f"Skipping event without summary in {source}")
                    continue

                title = str(summary)
                start = self._parse_start(component.get('DTSTART'))
                if start is None:
                    logger.debug(f"Event '{title}' in {source} has no usable start")

                events.append(Event(title=title, start=start))

        return events

    def _parse_start(self, prop) -> Optional[datetime]:
        """
        Convert a DTSTART property to a UTC instant.

        Naive date-times are taken as UTC, all-day dates as midnight UTC.

        Args:
            prop: DTSTART property value as decoded by icalendar, or None

        Returns:
            Timezone-aware UTC datetime, or None if there is no usable value
        """
        if prop is None:
            return None

        if isinstance(prop, list):
            if not prop:
                return None
            prop = prop[0]

        try:
            dt = prop.dt
        except (AttributeError, BrokenCalendarProperty, ValueError) as e:
            logger.debug(f"Unusable DTSTART value: {e}")
            return None

        if isinstance(dt, datetime):
            if dt.tzinfo is None:
                return dt.replace(tzinfo=timezone.utc)
            return dt.astimezone(timezone.utc)

        if isinstance(dt, date):
            return datetime(dt.year, dt.month, dt.day, tzinfo=timezone.utc)

        return None
