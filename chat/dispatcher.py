"""Dispatch loop turning chat commands into countdown replies."""
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from chat.connection import ChatConnection, TransportError
from engine.duration_formatter import format_duration
from engine.event_matcher import EventMatcher
from engine.models import ChatMessage

logger = logging.getLogger(__name__)

# The chat throttles senders faster than 300ms
SEND_DELAY_SECONDS = 0.5


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class QueryDispatcher:
    """
    Reads chat messages, answers "<command> <query>" with the time left
    until the next matching event, and stays silent otherwise.
    """

    def __init__(
        self,
        connection: ChatConnection,
        matcher: EventMatcher,
        command: str = "whenis",
        send_delay: float = SEND_DELAY_SECONDS,
        clock: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], None] = time.sleep
    ):
        """
        Initialize the dispatcher.

        Args:
            connection: Chat transport to read from and reply through
            matcher: Matcher over the loaded event corpus
            command: Command keyword that triggers a lookup
            send_delay: Fixed pause in seconds before each reply
            clock: Source of the current UTC instant
            sleep: Function used for the pre-send pause
        """
        self.connection = connection
        self.matcher = matcher
        self.command = command
        self.send_delay = send_delay
        self.clock = clock
        self.sleep = sleep
        self._running = False

    @property
    def prefix(self) -> str:
        return f"{self.command} "

    def handle_message(self, message: ChatMessage) -> Optional[str]:
        """
        Compute the reply for one message.

        Args:
            message: Inbound chat message

        Returns:
            Reply text, or None when the message is not a command or nothing matches
        """
        if not message.data.startswith(self.prefix):
            return None

        query = message.data[len(self.prefix):]
        now = self.clock()
        match = self.matcher.find_next(query, now)

        if match is None:
            logger.info(f"No match for '{query}'", extra={'query': query})
            return None

        span = max(match.start - now, timedelta(0))
        reply = f"{format_duration(span)} until {match.title}"
        logger.info(f"Answering '{query}': {reply}", extra={'query': query})
        return reply

    def process(self, message: ChatMessage) -> None:
        """
        Handle one message and send the reply, if any.

        Send failures are logged and the reply is dropped.

        Args:
            message: Inbound chat message
        """
        reply = self.handle_message(message)
        if reply is None:
            return

        self.sleep(self.send_delay)

        try:
            self.connection.send(reply)
        except TransportError as e:
            logger.error(
                f"Error while sending: {e}",
                extra={'error_type': type(e).__name__}
            )

    def run(self) -> None:
        """Process messages until stop() is called."""
        self._running = True
        logger.info(f"Listening for '{self.prefix}' commands")

        while self._running:
            try:
                message = self.connection.read_message()
            except TransportError as e:
                logger.error(
                    f"Error: {e}",
                    extra={'error_type': type(e).__name__}
                )
                continue

            try:
                self.process(message)
            except Exception as e:
                logger.error(
                    f"Failed to process message '{message.data}': {e}",
                    extra={'error_type': type(e).__name__},
                    exc_info=True
                )

        logger.info("Dispatch loop stopped")

    def stop(self) -> None:
        """End the loop after the current message."""
        self._running = False
