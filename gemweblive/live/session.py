"""Connection and setup state machine for one live session."""

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Deque, Optional, Tuple, Union
from uuid import uuid4
import structlog

from .config_builder import SessionConfig
from .errors import (
    LiveError,
    SendBeforeReady,
    ServerError,
    SetupRejected,
    TransportOpenFailed,
)
from .messages import (
    MalformedMessage,
    MessageKind,
    ServerMessage,
    client_text_message,
    parse_server_message,
    realtime_audio_message,
)
from .transport import INTERNAL_ERROR, NORMAL_CLOSURE, Transport, TransportListener


logger = structlog.get_logger()


GRACEFUL_CLOSE_CODES = (NORMAL_CLOSURE, 1001)


class SessionState(Enum):
    """Lifecycle of one connection attempt."""

    IDLE = "idle"
    OPENING = "opening"
    AWAITING_SETUP_ACK = "awaiting_setup_ack"
    READY = "ready"
    CLOSING = "closing"
    CLOSED = "closed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionState.CLOSED, SessionState.FAILED)


@dataclass
class SessionHandlers:
    """Caller callbacks. Every handler is optional."""

    on_ready: Optional[Callable[[], None]] = None
    on_message: Optional[Callable[[ServerMessage], None]] = None
    on_failure: Optional[Callable[[LiveError], None]] = None
    on_closed: Optional[Callable[[int, str], None]] = None
    on_error: Optional[Callable[[ServerError], None]] = None


@dataclass
class SessionStats:
    """Counters for one session."""

    frames_sent: int = 0
    frames_dropped: int = 0
    messages_received: int = 0
    malformed_messages: int = 0
    setup_latency_ms: Optional[float] = None


class LiveSession(TransportListener):
    """
    One logical session against the live endpoint.

    The session sends its SessionConfig as soon as the transport opens and
    only forwards caller data once the server has acknowledged it. Events
    are processed one at a time: an event raised while a handler is running
    (from a transport thread or from inside a caller callback) is queued and
    handled after the current one completes.
    """

    def __init__(
        self,
        transport: Transport,
        config: SessionConfig,
        handlers: Optional[SessionHandlers] = None,
        session_id: Optional[str] = None,
        frame_log: Optional[logging.Logger] = None,
    ):
        self.transport = transport
        self.config = config
        self.handlers = handlers or SessionHandlers()
        self.session_id = session_id or uuid4().hex[:12]
        self.frame_log = frame_log
        self.stats = SessionStats()
        self.log = logger.bind(session_id=self.session_id)

        self._state = SessionState.IDLE
        self._events: Deque[Tuple[Callable[..., None], Tuple[Any, ...]]] = deque()
        self._events_lock = threading.Lock()
        self._draining = False
        self._transport_released = False
        self._opened_at: Optional[float] = None

    @property
    def state(self) -> SessionState:
        return self._state

    def is_ready(self) -> bool:
        return self._state is SessionState.READY

    # Caller operations

    def open(self) -> None:
        """Start connecting the transport."""
        self._post(self._handle_open_requested)

    def send(self, audio: bytes, strict: bool = False) -> bool:
        """
        Forward an audio chunk if the session is ready.

        Returns:
            True if the frame was handed to the transport

        Raises:
            SendBeforeReady: only when ``strict`` is set and the session is not ready
        """
        return self._transmit(lambda: realtime_audio_message(audio), strict)

    def send_text(self, text: str, strict: bool = False) -> bool:
        """Forward a user text turn if the session is ready."""
        return self._transmit(lambda: client_text_message(text), strict)

    def send_frame(self, frame: Union[str, bytes], strict: bool = False) -> bool:
        """Forward an already encoded frame if the session is ready."""
        return self._transmit(lambda: frame, strict)

    def close(self) -> None:
        """Close the session. Safe to call more than once."""
        self._post(self._handle_close_requested)

    # Transport events

    def on_open(self) -> None:
        self._post(self._handle_transport_open)

    def on_message(self, frame: Union[str, bytes]) -> None:
        self._post(self._handle_transport_message, frame)

    def on_closing(self, code: int, reason: str) -> None:
        self._post(self._handle_transport_closing, code, reason)

    def on_failure(self, cause: BaseException) -> None:
        self._post(self._handle_transport_failure, cause)

    # Event queue

    def _post(self, handler: Callable[..., None], *args: Any) -> None:
        with self._events_lock:
            self._events.append((handler, args))
            if self._draining:
                return
            self._draining = True

        try:
            while True:
                with self._events_lock:
                    if not self._events:
                        self._draining = False
                        return
                    handler, args = self._events.popleft()
                try:
                    handler(*args)
                except Exception as e:
                    self.log.error(
                        "Unhandled error in session event",
                        handler=handler.__name__,
                        error=str(e),
                        exc_info=True,
                    )
        except BaseException:
            # Leave the queue drainable by the next event
            with self._events_lock:
                self._draining = False
            raise

    def _set_state(self, state: SessionState) -> None:
        self.log.debug(
            "Session state change", from_state=self._state.value, to_state=state.value
        )
        self._state = state

    def _notify(self, name: str, *args: Any) -> None:
        callback = getattr(self.handlers, name)
        if callback is None:
            return
        try:
            callback(*args)
        except Exception as e:
            self.log.error("Session handler raised", handler=name, error=str(e), exc_info=True)

    # Handlers

    def _handle_open_requested(self) -> None:
        if self._state is not SessionState.IDLE:
            self.log.warning("Session already opened", state=self._state.value)
            return

        self._set_state(SessionState.OPENING)
        self._opened_at = time.time()
        self.log.info("Opening session", model=self.config.model, resumes=self.config.resumes)
        try:
            self.transport.open(self)
        except Exception as e:
            self._fail(TransportOpenFailed(str(e)))

    def _handle_transport_open(self) -> None:
        if self._state is not SessionState.OPENING:
            self.log.debug("Ignoring transport open", state=self._state.value)
            return

        self._set_state(SessionState.AWAITING_SETUP_ACK)
        setup = self.config.to_json()
        self._log_frame("OUT", setup)
        if not self.transport.send(setup):
            self._fail(TransportOpenFailed("Transport rejected the setup message"))
            return
        self.stats.frames_sent += 1

    def _handle_transport_message(self, frame: Union[str, bytes]) -> None:
        if self._state.is_terminal or self._state is SessionState.CLOSING:
            return

        self.stats.messages_received += 1
        self._log_frame("IN", frame)
        try:
            message = parse_server_message(frame)
        except MalformedMessage as e:
            self.stats.malformed_messages += 1
            self.log.warning("Malformed server message", error=str(e))
            return

        if message.kind is MessageKind.SETUP_COMPLETE:
            self._handle_setup_complete()
        elif message.kind is MessageKind.ERROR:
            self._handle_server_error(message)
        elif self._state is SessionState.READY:
            self._notify("on_message", message)
        else:
            self.log.warning("Dropping content received before setup completed")

    def _handle_setup_complete(self) -> None:
        if self._state is not SessionState.AWAITING_SETUP_ACK:
            self.log.debug("Ignoring repeated setup acknowledgement", state=self._state.value)
            return

        self._set_state(SessionState.READY)
        if self._opened_at is not None:
            self.stats.setup_latency_ms = (time.time() - self._opened_at) * 1000
        self.log.info("Server setup complete", setup_latency_ms=self.stats.setup_latency_ms)
        self._notify("on_ready")

    def _handle_server_error(self, message: ServerMessage) -> None:
        if self._state is SessionState.READY:
            self.log.error("Server error", error=message.error_message, code=message.error_code)
            self._notify(
                "on_error",
                ServerError(
                    message.error_message,
                    code=message.error_code,
                    status=message.error_status,
                ),
            )
        else:
            self._fail(SetupRejected(message.error_message))

    def _handle_transport_closing(self, code: int, reason: str) -> None:
        if self._state.is_terminal:
            return

        if code in GRACEFUL_CLOSE_CODES:
            self.log.info("Server closed session", code=code, reason=reason)
            self._set_state(SessionState.CLOSING)
            self._release_transport(code, reason)
            self._set_state(SessionState.CLOSED)
            self._notify("on_closed", code, reason)
            return

        detail = f"Connection closed with code {code}" + (f": {reason}" if reason else "")
        self._fail(self._error_for_state(detail))

    def _handle_transport_failure(self, cause: BaseException) -> None:
        if self._state.is_terminal:
            return
        if isinstance(cause, LiveError):
            error = cause
        else:
            error = self._error_for_state(str(cause) or type(cause).__name__)
            error.__cause__ = cause
        self._fail(error)

    def _handle_close_requested(self) -> None:
        if self._state.is_terminal:
            return
        if self._state is SessionState.IDLE:
            self._set_state(SessionState.CLOSED)
            return

        self.log.info("Closing session", state=self._state.value)
        self._set_state(SessionState.CLOSING)
        self._release_transport(NORMAL_CLOSURE, "Normal closure")
        self._set_state(SessionState.CLOSED)
        self._notify("on_closed", NORMAL_CLOSURE, "Normal closure")

    # Helpers

    def _error_for_state(self, detail: str) -> LiveError:
        if self._state is SessionState.OPENING:
            return TransportOpenFailed(detail)
        if self._state is SessionState.AWAITING_SETUP_ACK:
            return SetupRejected(detail)
        return ServerError(detail)

    def _fail(self, error: LiveError) -> None:
        self.log.error("Session failed", error=str(error), error_type=type(error).__name__)
        self._set_state(SessionState.FAILED)
        self._release_transport(INTERNAL_ERROR, "Session failed")
        self._notify("on_failure", error)

    def _release_transport(self, code: int, reason: str) -> None:
        if self._transport_released:
            return
        self._transport_released = True
        try:
            self.transport.close(code, reason)
        except Exception as e:
            self.log.warning("Error releasing transport", error=str(e))

    def _transmit(self, build_frame: Callable[[], Union[str, bytes]], strict: bool) -> bool:
        state = self._state
        if state is not SessionState.READY:
            self.stats.frames_dropped += 1
            self.log.debug("Dropping frame, session not ready", state=state.value)
            if strict:
                raise SendBeforeReady(state.value)
            return False

        frame = build_frame()
        self._log_frame("OUT", frame)
        if not self.transport.send(frame):
            self.stats.frames_dropped += 1
            return False
        self.stats.frames_sent += 1
        return True

    def _log_frame(self, direction: str, frame: Union[str, bytes]) -> None:
        if self.frame_log is None:
            return
        if isinstance(frame, (bytes, bytearray)):
            frame = frame.decode("utf-8", errors="replace")
        self.frame_log.debug("%s %s", direction, frame)
