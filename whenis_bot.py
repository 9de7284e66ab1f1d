"""Entry point for the whenis chat bot."""
import argparse
import json
import logging
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from calendar_source.ics_loader import IcsCalendarLoader
from chat.connection import ChatConnection, TransportError
from chat.dispatcher import SEND_DELAY_SECONDS, QueryDispatcher
from engine.event_matcher import EventMatcher

# Structured fields copied from ``extra`` into the JSON log line
LOG_EXTRA_FIELDS = ('source', 'events', 'query', 'environment', 'error_type')


# Configure JSON logging
class JsonFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            'timestamp': self.formatTime(record),
            'level': record.levelname,
            'message': record.getMessage(),
            'logger': record.name
        }

        for key in LOG_EXTRA_FIELDS:
            if hasattr(record, key):
                log_data[key] = getattr(record, key)

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data)


def setup_logging(log_level: str = 'INFO') -> None:
    """
    Configure logging with JSON formatter.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
    """
    root_logger = logging.getLogger()

    # Remove existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root_logger.addHandler(handler)

    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))


@dataclass
class BotConfig:
    """Startup configuration."""
    cookie_file: str
    dev: bool = False
    cal_dir: str = 'cals'
    cal_urls: List[str] = field(default_factory=list)
    command: str = 'whenis'
    log_level: str = 'INFO'
    send_delay: float = SEND_DELAY_SECONDS


def parse_args(argv: Optional[List[str]] = None) -> BotConfig:
    """
    Build the configuration from the command line and environment.

    Environment variables provide defaults that command line options override.

    Args:
        argv: Command line arguments, defaults to sys.argv[1:]

    Returns:
        BotConfig
    """
    parser = argparse.ArgumentParser(
        prog='whenis',
        description='Chat bot answering "whenis <event>" with the time left until it starts.'
    )
    parser.add_argument(
        '--cookie',
        default=os.environ.get('WHENIS_COOKIE'),
        required='WHENIS_COOKIE' not in os.environ,
        help='Location of the file containing the cookie for the bot to use'
    )
    parser.add_argument(
        '--dev',
        action=argparse.BooleanOptionalAction,
        default=os.environ.get('WHENIS_DEV', '') in ('1', 'true', 'yes'),
        help='Use the dev environment (chat2.strims.gg); --no-dev overrides WHENIS_DEV'
    )
    parser.add_argument(
        '--cal-dir',
        default=os.environ.get('WHENIS_CAL_DIR', 'cals'),
        help='Directory to look for .ics calendars in'
    )
    parser.add_argument(
        '--cal-url',
        action='append',
        default=[],
        help='URL of a remote .ics calendar feed (repeatable)'
    )
    parser.add_argument(
        '--command',
        default='whenis',
        help='Command keyword the bot answers to'
    )
    parser.add_argument(
        '--log-level',
        default=os.environ.get('LOG_LEVEL', 'INFO'),
        help='Logging level (DEBUG, INFO, WARNING, ERROR)'
    )
    parser.add_argument(
        '--send-delay',
        type=float,
        default=SEND_DELAY_SECONDS,
        help='Pause in seconds before each reply'
    )
    args = parser.parse_args(argv)

    return BotConfig(
        cookie_file=args.cookie,
        dev=args.dev,
        cal_dir=args.cal_dir,
        cal_urls=args.cal_url,
        command=args.command,
        log_level=args.log_level,
        send_delay=args.send_delay
    )


def read_token(cookie_file: str) -> str:
    """
    Read the chat token from a file.

    Raises:
        OSError: If the file cannot be read
    """
    return Path(cookie_file).read_text(encoding='utf-8').strip()


def main(argv: Optional[List[str]] = None) -> int:
    """
    Start the bot.

    Args:
        argv: Command line arguments, defaults to sys.argv[1:]

    Returns:
        Process exit code
    """
    config = parse_args(argv)

    setup_logging(config.log_level)
    logger = logging.getLogger(__name__)

    environment = 'dev' if config.dev else 'production'
    logger.info(
        f"Running in {environment} environment",
        extra={'environment': environment}
    )

    try:
        token = read_token(config.cookie_file)
    except OSError as e:
        logger.error(
            f"Could not read cookie file {config.cookie_file}: {e}",
            extra={'error_type': type(e).__name__}
        )
        return 1

    loader = IcsCalendarLoader()
    try:
        corpus = loader.load_corpus(config.cal_dir, config.cal_urls)
    except OSError as e:
        logger.error(
            f"Could not read calendar directory {config.cal_dir}: {e}",
            extra={'error_type': type(e).__name__}
        )
        return 1

    connection = ChatConnection.for_environment(token, dev=config.dev)
    try:
        connection.connect()
    except TransportError as e:
        logger.error(
            f"Could not connect to chat: {e}",
            extra={'error_type': type(e).__name__}
        )
        return 1

    dispatcher = QueryDispatcher(
        connection,
        EventMatcher(corpus),
        command=config.command,
        send_delay=config.send_delay
    )

    try:
        dispatcher.run()
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
    finally:
        connection.close()

    return 0


if __name__ == '__main__':
    sys.exit(main())
