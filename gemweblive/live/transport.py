"""Bidirectional message channel used by live sessions."""

import threading
from abc import ABC, abstractmethod
from typing import Optional, Union
import structlog
from websockets.exceptions import ConnectionClosed, ConnectionClosedOK
from websockets.sync.client import ClientConnection, connect

from .errors import TransportOpenFailed


logger = structlog.get_logger()


NORMAL_CLOSURE = 1000
INTERNAL_ERROR = 1011
LIVE_HOST = "generativelanguage.googleapis.com"


def live_endpoint(api_key: str, api_version: str = "v1beta", host: str = LIVE_HOST) -> str:
    """URL of the bidirectional generate-content endpoint."""
    return (
        f"wss://{host}/ws/google.ai.generativelanguage.{api_version}"
        f".GenerativeService.BidiGenerateContent?key={api_key}"
    )


class TransportListener(ABC):
    """Receives transport events."""

    @abstractmethod
    def on_open(self) -> None:
        """The channel is open and may carry frames."""

    @abstractmethod
    def on_message(self, frame: Union[str, bytes]) -> None:
        """A text or binary frame arrived."""

    @abstractmethod
    def on_closing(self, code: int, reason: str) -> None:
        """The peer closed the channel."""

    @abstractmethod
    def on_failure(self, cause: BaseException) -> None:
        """The channel failed."""


class Transport(ABC):
    """Abstract message channel."""

    @abstractmethod
    def open(self, listener: TransportListener) -> None:
        """Start connecting; events are delivered to the listener."""

    @abstractmethod
    def send(self, frame: Union[str, bytes]) -> bool:
        """Send a frame. Returns False when the channel cannot take it."""

    @abstractmethod
    def close(self, code: int = NORMAL_CLOSURE, reason: str = "") -> None:
        """Close the channel."""

    @property
    @abstractmethod
    def is_open(self) -> bool:
        """Whether frames can currently be sent."""


class WebSocketTransport(Transport):
    """
    WebSocket channel built on the websockets sync client.

    Connecting and reading happen on a daemon worker thread, which reports
    events to the listener in the order they occur.
    """

    def __init__(
        self,
        url: str,
        open_timeout: float = 10.0,
        close_timeout: float = 5.0,
        max_size: Optional[int] = 16 * 1024 * 1024,
    ):
        self.url = url
        self.open_timeout = open_timeout
        self.close_timeout = close_timeout
        self.max_size = max_size
        self.connection: Optional[ClientConnection] = None
        self.listener: Optional[TransportListener] = None
        self.reader_thread: Optional[threading.Thread] = None
        self._closed_locally = threading.Event()
        self._lock = threading.Lock()

    @property
    def is_open(self) -> bool:
        return self.connection is not None and not self._closed_locally.is_set()

    def open(self, listener: TransportListener) -> None:
        """Connect on a worker thread."""
        if self.reader_thread is not None:
            raise RuntimeError("Transport already opened")
        self.listener = listener
        self.reader_thread = threading.Thread(
            target=self._run, daemon=True, name="WebSocket-Reader"
        )
        self.reader_thread.start()

    def _run(self) -> None:
        try:
            connection = connect(
                self.url,
                open_timeout=self.open_timeout,
                close_timeout=self.close_timeout,
                max_size=self.max_size,
            )
        except Exception as e:
            logger.error("WebSocket connection failed", error=str(e))
            self.listener.on_failure(TransportOpenFailed(str(e)))
            return

        with self._lock:
            if self._closed_locally.is_set():
                connection.close()
                return
            self.connection = connection

        logger.info("WebSocket connected")
        self.listener.on_open()
        self._read_loop(connection)

    def _read_loop(self, connection: ClientConnection) -> None:
        try:
            for frame in connection:
                self.listener.on_message(frame)
        except ConnectionClosedOK as e:
            self._report_close(e)
            return
        except ConnectionClosed as e:
            if self._closed_locally.is_set():
                return
            logger.warning("WebSocket closed abnormally", error=str(e))
            self.listener.on_failure(e)
            return
        except Exception as e:
            if not self._closed_locally.is_set():
                logger.error("WebSocket read failed", error=str(e))
                self.listener.on_failure(e)
            return

        # Iteration ends cleanly only on a normal close
        self._report_close(None)

    def _report_close(self, error: Optional[ConnectionClosed]) -> None:
        if self._closed_locally.is_set():
            return
        code, reason = NORMAL_CLOSURE, ""
        received = getattr(error, "rcvd", None) if error else None
        if received is None and self.connection is not None:
            received = getattr(self.connection.protocol, "close_rcvd", None)
        if received is not None:
            code, reason = received.code, received.reason
        logger.info("WebSocket closed by server", code=code, reason=reason)
        self.listener.on_closing(code, reason)

    def send(self, frame: Union[str, bytes]) -> bool:
        """Send a frame on the open connection."""
        if not self.is_open:
            return False
        try:
            self.connection.send(frame)
            return True
        except ConnectionClosed as e:
            logger.warning("Send on closed WebSocket", error=str(e))
            return False

    def close(self, code: int = NORMAL_CLOSURE, reason: str = "") -> None:
        """Close the connection and stop reporting events."""
        with self._lock:
            if self._closed_locally.is_set():
                return
            self._closed_locally.set()
            connection = self.connection

        if connection is not None:
            try:
                connection.close(code=code, reason=reason)
            except Exception as e:
                logger.warning("Error closing WebSocket", error=str(e))

        if (
            self.reader_thread is not None
            and self.reader_thread is not threading.current_thread()
        ):
            self.reader_thread.join(timeout=self.close_timeout)
