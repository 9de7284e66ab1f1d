"""Websocket connection to the strims.gg chat."""
import json
import logging
import time
from typing import Any, Optional, Tuple

import websocket

from engine.models import ChatMessage

logger = logging.getLogger(__name__)


class TransportError(Exception):
    """Raised when the chat connection cannot receive or deliver a message."""


class ChatConnection:
    """
    Client for the strims.gg chat websocket.

    Frames on the wire are ``"<TYPE> <json payload>"``. Only ``MSG`` frames
    are surfaced to callers; ``PING`` is answered and other frame types
    are skipped.
    """

    PROD_URL = "wss://chat.strims.gg/ws"
    DEV_URL = "wss://chat2.strims.gg/ws"
    MAX_RETRIES = 3
    BASE_DELAY = 1  # seconds

    def __init__(self, token: str, url: str = PROD_URL, timeout: Optional[int] = None):
        """
        Initialize the chat connection.

        Args:
            token: Authentication token sent as the ``jwt`` cookie
            url: Websocket endpoint
            timeout: Socket timeout in seconds, None to block indefinitely
        """
        self.token = token
        self.url = url
        self.timeout = timeout
        self._ws = None

    @classmethod
    def for_environment(cls, token: str, dev: bool = False) -> 'ChatConnection':
        """Create a connection to the production or the dev chat."""
        return cls(token, url=cls.DEV_URL if dev else cls.PROD_URL)

    @property
    def connected(self) -> bool:
        return self._ws is not None

    def connect(self) -> None:
        """
        Open the websocket with retry logic.

        Raises:
            TransportError: If all retry attempts fail
        """
        for attempt in range(self.MAX_RETRIES):
            try:
                logger.info(
                    f"Connecting to {self.url} (attempt {attempt + 1}/{self.MAX_RETRIES})"
                )
                self._ws = websocket.create_connection(
                    self.url,
                    timeout=self.timeout,
                    cookie=f"jwt={self.token}"
                )
                logger.info(f"Connected to {self.url}")
                return

            except (websocket.WebSocketException, OSError) as e:
                if attempt < self.MAX_RETRIES - 1:
                    delay = self.BASE_DELAY * (2 ** attempt)
                    logger.warning(
                        f"Connection failed (attempt {attempt + 1}/{self.MAX_RETRIES}): {e}. "
                        f"Retrying in {delay} seconds..."
                    )
                    time.sleep(delay)
                else:
                    logger.error(
                        f"All {self.MAX_RETRIES} connection attempts failed. Last error: {e}"
                    )
                    raise TransportError(f"Could not connect to {self.url}: {e}") from e

    def read_message(self) -> ChatMessage:
        """
        Block until the next chat message arrives.

        A dropped socket is discarded and reopened on the next call.

        Returns:
            The next ChatMessage

        Raises:
            TransportError: If the socket fails or the server reports an error
        """
        if self._ws is None:
            self.connect()

        while True:
            try:
                frame = self._ws.recv()
            except (websocket.WebSocketException, OSError) as e:
                self._drop()
                raise TransportError(f"Error while reading: {e}") from e

            if isinstance(frame, bytes):
                frame = frame.decode('utf-8', 'replace')

            kind, payload = self.parse_frame(frame)

            if kind == 'MSG':
                if not isinstance(payload, dict) or not isinstance(payload.get('data'), str):
                    logger.warning(f"Ignoring malformed MSG frame: {frame!r}")
                    continue
                return ChatMessage(
                    data=payload['data'],
                    nick=payload.get('nick'),
                    timestamp=payload.get('timestamp')
                )
            if kind == 'PING':
                self._write("PONG" if payload is None else f"PONG {json.dumps(payload)}")
                continue
            if kind == 'ERR':
                raise TransportError(f"Chat server error: {payload}")

            logger.debug(f"Skipping {kind} frame")

    def send(self, text: str) -> None:
        """
        Post a message to the chat.

        Args:
            text: Message text

        Raises:
            TransportError: If the message could not be written
        """
        self._write(f"MSG {json.dumps({'data': text})}")

    def close(self) -> None:
        """Close the websocket if it is open."""
        if self._ws is not None:
            try:
                self._ws.close()
            finally:
                self._ws = None
            logger.info(f"Closed connection to {self.url}")

    @staticmethod
    def parse_frame(frame: str) -> Tuple[str, Any]:
        """
        Split a raw frame into its type and decoded payload.

        Args:
            frame: Raw websocket frame, e.g. 'MSG {"data": "hi"}'

        Returns:
            Tuple of (frame type, payload); payload is None when absent or not JSON
        """
        kind, _, raw = frame.partition(' ')
        if not raw:
            return kind, None
        try:
            return kind, json.loads(raw)
        except json.JSONDecodeError:
            logger.warning(f"Could not decode {kind} payload: {raw!r}")
            return kind, None

    def _write(self, frame: str) -> None:
        if self._ws is None:
            raise TransportError("Not connected")
        try:
            self._ws.send(frame)
        except (websocket.WebSocketException, OSError) as e:
            self._drop()
            raise TransportError(f"Error while sending: {e}") from e

    def _drop(self) -> None:
        ws, self._ws = self._ws, None
        try:
            ws.close()
        except (websocket.WebSocketException, OSError) as e:
            logger.debug(f"Error while closing dropped socket: {e}")
