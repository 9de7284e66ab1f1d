"""Unit tests for QueryDispatcher."""
import logging
from datetime import datetime, timedelta, timezone
from unittest.mock import Mock

import pytest

from chat.connection import TransportError
from chat.dispatcher import SEND_DELAY_SECONDS, QueryDispatcher
from engine.event_corpus import EventCorpus
from engine.event_matcher import EventMatcher
from engine.models import ChatMessage, Event

NOW = datetime(2023, 3, 4, 13, 0, tzinfo=timezone.utc)
QUALI = "⏱️ FORMULA 1 GULF AIR BAHRAIN GRAND PRIX 2023 - Qualifying"
RACE = "🏁 FORMULA 1 GULF AIR BAHRAIN GRAND PRIX 2023 - Race"


@pytest.fixture
def matcher():
    """Create matcher over a small race weekend."""
    corpus = EventCorpus()
    corpus.add_calendar([
        Event(title=QUALI, start=NOW + timedelta(hours=2)),
        Event(title=RACE, start=NOW + timedelta(days=1, hours=2, minutes=30)),
    ])
    return EventMatcher(corpus)


@pytest.fixture
def mock_connection():
    """Create a mock chat connection."""
    return Mock()


@pytest.fixture
def mock_sleep():
    """Create a mock sleep function."""
    return Mock()


@pytest.fixture
def dispatcher(mock_connection, matcher, mock_sleep):
    """Create dispatcher with a frozen clock."""
    return QueryDispatcher(
        mock_connection,
        matcher,
        clock=lambda: NOW,
        sleep=mock_sleep
    )


class TestHandleMessage:
    """Test cases for computing replies."""

    def test_reply_for_match(self, dispatcher):
        """Test that a command gets the countdown to the next match."""
        reply = dispatcher.handle_message(ChatMessage(data="whenis quali"))

        assert reply == f"2 Hours until {QUALI}"

    def test_reply_with_days_hours_and_minutes(self, dispatcher):
        """Test formatting of a longer countdown."""
        reply = dispatcher.handle_message(ChatMessage(data="whenis race"))

        assert reply == f"1 Days 2 Hours and 30 Minutes until {RACE}"

    def test_non_command_is_ignored(self, dispatcher):
        """Test that ordinary chat gets no reply."""
        assert dispatcher.handle_message(ChatMessage(data="when is quali?")) is None
        assert dispatcher.handle_message(ChatMessage(data="quali whenis")) is None

    def test_command_without_separator_is_ignored(self, dispatcher):
        """Test that the bare keyword or a longer word is not a command."""
        assert dispatcher.handle_message(ChatMessage(data="whenis")) is None
        assert dispatcher.handle_message(ChatMessage(data="whenisquali")) is None

    def test_no_match_is_silent(self, dispatcher):
        """Test that an unknown event gets no reply."""
        assert dispatcher.handle_message(ChatMessage(data="whenis monaco")) is None

    def test_query_is_taken_verbatim(self, mock_connection, mock_sleep):
        """Test that only one separator is stripped from the query."""
        matcher = Mock()
        matcher.find_next.return_value = None
        dispatcher = QueryDispatcher(mock_connection, matcher, clock=lambda: NOW, sleep=mock_sleep)

        dispatcher.handle_message(ChatMessage(data="whenis  Sprint Shootout "))

        matcher.find_next.assert_called_once_with(" Sprint Shootout ", NOW)

    def test_custom_command(self, mock_connection, matcher, mock_sleep):
        """Test that the command keyword is configurable."""
        dispatcher = QueryDispatcher(
            mock_connection, matcher, command="!next", clock=lambda: NOW, sleep=mock_sleep
        )

        assert dispatcher.handle_message(ChatMessage(data="whenis quali")) is None
        assert dispatcher.handle_message(ChatMessage(data="!next quali")) == f"2 Hours until {QUALI}"

    def test_event_starting_now(self, mock_connection, mock_sleep):
        """Test the countdown for an event starting this instant."""
        corpus = EventCorpus()
        corpus.add_calendar([Event(title="Race", start=NOW)])
        dispatcher = QueryDispatcher(
            mock_connection, EventMatcher(corpus), clock=lambda: NOW, sleep=mock_sleep
        )

        assert dispatcher.handle_message(ChatMessage(data="whenis race")) == "0 Minutes until Race"

    def test_negative_span_is_clamped(self, mock_connection, mock_sleep):
        """Test that a match in the past is rendered as zero minutes."""
        matcher = Mock()
        matcher.find_next.return_value = Mock(title="Race", start=NOW - timedelta(minutes=5))
        dispatcher = QueryDispatcher(mock_connection, matcher, clock=lambda: NOW, sleep=mock_sleep)

        assert dispatcher.handle_message(ChatMessage(data="whenis race")) == "0 Minutes until Race"


class TestProcess:
    """Test cases for handling one message end to end."""

    def test_reply_is_sent_after_delay(self, dispatcher, mock_connection, mock_sleep):
        """Test that a reply is paced and sent once."""
        dispatcher.process(ChatMessage(data="whenis quali"))

        mock_sleep.assert_called_once_with(SEND_DELAY_SECONDS)
        mock_connection.send.assert_called_once_with(f"2 Hours until {QUALI}")

    def test_no_reply_no_delay(self, dispatcher, mock_connection, mock_sleep):
        """Test that silence skips both delay and send."""
        dispatcher.process(ChatMessage(data="hello chat"))
        dispatcher.process(ChatMessage(data="whenis monaco"))

        mock_sleep.assert_not_called()
        mock_connection.send.assert_not_called()

    def test_send_failure_is_logged(self, dispatcher, mock_connection, caplog):
        """Test that a failed send is logged and dropped."""
        mock_connection.send.side_effect = TransportError("socket closed")

        with caplog.at_level(logging.ERROR, logger="chat.dispatcher"):
            dispatcher.process(ChatMessage(data="whenis quali"))

        assert mock_connection.send.call_count == 1
        assert any("Error while sending" in record.message for record in caplog.records)


class TestRun:
    """Test cases for the dispatch loop."""

    def _feed(self, dispatcher, mock_connection, inbox):
        """Make read_message return inbox items and stop after the last one."""
        def read_message():
            item = inbox.pop(0)
            if not inbox:
                dispatcher.stop()
            if isinstance(item, Exception):
                raise item
            return item
        mock_connection.read_message.side_effect = read_message

    def test_loop_answers_commands(self, dispatcher, mock_connection):
        """Test that every command in the stream is answered in order."""
        self._feed(dispatcher, mock_connection, [
            ChatMessage(data="whenis quali"),
            ChatMessage(data="nice weather"),
            ChatMessage(data="whenis race"),
        ])

        dispatcher.run()

        sent = [c.args[0] for c in mock_connection.send.call_args_list]
        assert sent == [
            f"2 Hours until {QUALI}",
            f"1 Days 2 Hours and 30 Minutes until {RACE}",
        ]

    def test_receive_error_does_not_stop_loop(self, dispatcher, mock_connection, caplog):
        """Test that a receive failure is logged and the loop continues."""
        self._feed(dispatcher, mock_connection, [
            TransportError("connection reset"),
            ChatMessage(data="whenis quali"),
        ])

        with caplog.at_level(logging.ERROR, logger="chat.dispatcher"):
            dispatcher.run()

        mock_connection.send.assert_called_once_with(f"2 Hours until {QUALI}")
        assert any("connection reset" in record.message for record in caplog.records)

    def test_send_error_does_not_stop_loop(self, dispatcher, mock_connection):
        """Test that the loop keeps going after a failed send."""
        mock_connection.send.side_effect = [TransportError("socket closed"), None]
        self._feed(dispatcher, mock_connection, [
            ChatMessage(data="whenis quali"),
            ChatMessage(data="whenis race"),
        ])

        dispatcher.run()

        assert mock_connection.send.call_count == 2

    def test_unexpected_error_returns_to_idle(self, mock_connection, mock_sleep):
        """Test that a failure while processing one message is contained."""
        matcher = Mock()
        matcher.find_next.side_effect = [RuntimeError("boom"), None]
        dispatcher = QueryDispatcher(mock_connection, matcher, clock=lambda: NOW, sleep=mock_sleep)
        self._feed(dispatcher, mock_connection, [
            ChatMessage(data="whenis quali"),
            ChatMessage(data="whenis race"),
        ])

        dispatcher.run()

        assert matcher.find_next.call_count == 2
        mock_connection.send.assert_not_called()
