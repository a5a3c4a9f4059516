"""Caller-facing client for the live API."""

import logging
import os
from dataclasses import replace
from typing import Any, Callable, Mapping, Optional
import structlog

from ..models.capabilities import ModelCapabilities
from .config_builder import ConfigBuilder
from .messages import ServerMessage
from .session import LiveSession, SessionHandlers, SessionState
from .transport import LIVE_HOST, Transport, WebSocketTransport, live_endpoint


logger = structlog.get_logger()


class LiveClient:
    """
    Connects live sessions and tracks the latest resumption handle.

    Only one session is live at a time: connecting again closes the previous
    session first.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        api_version: str = "v1beta",
        host: str = LIVE_HOST,
        config_builder: Optional[ConfigBuilder] = None,
        transport_factory: Optional[Callable[[], Transport]] = None,
        frame_log_factory: Optional[Callable[[str], logging.Logger]] = None,
        on_resumption_handle: Optional[Callable[[str], None]] = None,
    ):
        self.api_key = api_key
        self.api_version = api_version
        self.host = host
        self.config_builder = config_builder or ConfigBuilder()
        self.transport_factory = transport_factory or self._websocket_transport
        self.frame_log_factory = frame_log_factory
        self.on_resumption_handle = on_resumption_handle
        self.session: Optional[LiveSession] = None
        self.resumption_handle: Optional[str] = None

    def _websocket_transport(self) -> Transport:
        api_key = self.api_key or os.getenv("GOOGLE_API_KEY")
        if not api_key:
            raise ValueError("GOOGLE_API_KEY environment variable not set")
        return WebSocketTransport(live_endpoint(api_key, self.api_version, self.host))

    @property
    def state(self) -> SessionState:
        if self.session is None:
            return SessionState.IDLE
        return self.session.state

    def is_ready(self) -> bool:
        return self.session is not None and self.session.is_ready()

    def connect(
        self,
        capabilities: ModelCapabilities,
        resumption_handle: Optional[str] = None,
        overrides: Optional[Mapping[str, Any]] = None,
        handlers: Optional[SessionHandlers] = None,
    ) -> LiveSession:
        """
        Build the setup payload and open a new session.

        Raises:
            InvalidCapabilities: if the model descriptor is inconsistent
            ValueError: if no API key is available for the default transport
        """
        if self.session is not None and not self.session.state.is_terminal:
            logger.info("Closing previous session before reconnecting")
            self.session.close()

        if resumption_handle is None:
            resumption_handle = self.resumption_handle
        config = self.config_builder.build(capabilities, resumption_handle, overrides)

        handlers = handlers or SessionHandlers()
        caller_on_message = handlers.on_message

        def on_message(message: ServerMessage) -> None:
            self._track_resumption(message)
            if caller_on_message:
                caller_on_message(message)

        transport = self.transport_factory()
        session = LiveSession(transport, config, replace(handlers, on_message=on_message))
        if self.frame_log_factory:
            session.frame_log = self.frame_log_factory(session.session_id)

        logger.info(
            "Connecting live session",
            session_id=session.session_id,
            model=capabilities.model_id,
            resumes=config.resumes,
        )
        self.session = session
        session.open()
        return session

    def _track_resumption(self, message: ServerMessage) -> None:
        if not (message.resumable and message.new_handle):
            return
        if message.new_handle == self.resumption_handle:
            return
        self.resumption_handle = message.new_handle
        logger.info("Session handle updated")
        if self.on_resumption_handle:
            self.on_resumption_handle(message.new_handle)

    def forget_resumption(self) -> None:
        """Start the next session fresh."""
        self.resumption_handle = None

    def send(self, audio_frame: bytes) -> bool:
        """Forward an audio chunk; dropped unless the session is ready."""
        if self.session is None:
            return False
        return self.session.send(audio_frame)

    def send_text(self, text: str, strict: bool = False) -> bool:
        """Forward a user text turn; dropped unless the session is ready."""
        if self.session is None:
            return False
        return self.session.send_text(text, strict=strict)

    def disconnect(self) -> None:
        """Close the current session, if any."""
        if self.session is not None:
            self.session.close()

    def get_status(self) -> dict:
        """Get current status of the client."""
        session = self.session
        return {
            "state": self.state.value,
            "session_id": session.session_id if session else None,
            "has_resumption_handle": self.resumption_handle is not None,
            "frames_sent": session.stats.frames_sent if session else 0,
            "frames_dropped": session.stats.frames_dropped if session else 0,
        }
