"""
Conversation orchestration: microphone -> live session -> speaker and transcript.
"""

import threading
from datetime import datetime
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional
import structlog

from ..audio.player import AudioPlayer
from ..config.settings import Settings, settings as default_settings
from ..live.client import LiveClient
from ..live.errors import LiveError, ServerError, SetupRejected
from ..live.messages import ServerMessage
from ..live.session import LiveSession, SessionHandlers
from ..metrics.collector import MetricsCollector
from ..models.capabilities import ModelCapabilities
from ..models.catalog import ModelCatalog, catalog as default_catalog
from ..state.session_store import SessionRecord, SessionStore
from ..utils.logging import close_frame_log, open_frame_log
from .transcript import TranscriptBuffer, TranscriptEntry


logger = structlog.get_logger()


@dataclass
class ConversationConfig:
    """Configuration for one conversation run."""

    model_id: Optional[str] = None  # settings.live.model when unset
    resume: bool = True
    enable_microphone: bool = True
    enable_playback: bool = True
    enable_metrics: bool = True
    frame_log: bool = False


class ConversationManager:
    """
    Runs one live conversation.

    Connects a session for the selected model, starts the microphone once
    the server has acknowledged the setup, plays model audio, keeps the
    transcript, and persists the latest resumption handle so the next run
    can continue the same context.
    """

    def __init__(
        self,
        config: ConversationConfig,
        settings: Optional[Settings] = None,
        catalog: Optional[ModelCatalog] = None,
        client: Optional[LiveClient] = None,
        store: Optional[SessionStore] = None,
        player: Optional[AudioPlayer] = None,
        microphone_factory: Optional[Callable[[Callable[[bytes], None]], Any]] = None,
        metrics_collector: Optional[MetricsCollector] = None,
        on_entry: Optional[Callable[[TranscriptEntry], None]] = None,
    ):
        self.config = config
        self.settings = settings or default_settings
        self.catalog = catalog or default_catalog
        self.model: ModelCapabilities = self.catalog.get(
            config.model_id or self.settings.live.model
        )

        self.store = store or SessionStore()
        self.client = client or LiveClient(
            api_key=self.settings.api_key,
            api_version=self.settings.live.api_version,
            host=self.settings.live.host,
        )
        self.client.on_resumption_handle = self._save_handle
        if config.frame_log or self.settings.logging.frame_log:
            self.client.frame_log_factory = open_frame_log

        self.player = player
        if self.player is None and config.enable_playback and self.model.audio_output:
            self.player = AudioPlayer(sample_rate=self.settings.audio.output_sample_rate)

        self.microphone_factory = microphone_factory or self._default_microphone
        self.microphone = None

        self.metrics_collector = (
            metrics_collector or MetricsCollector()
        ) if config.enable_metrics else None

        self.transcript = TranscriptBuffer(
            audio_output=self.model.audio_output, on_entry=self._on_entry
        )
        self.on_entry = on_entry

        self.session: Optional[LiveSession] = None
        self.record: Optional[SessionRecord] = None
        self.last_error: Optional[LiveError] = None
        self.resumed = False
        self.is_running = False
        self._settled = threading.Event()
        self._stopped = False

    def _default_microphone(self, on_chunk: Callable[[bytes], None]):
        # sounddevice needs PortAudio, load it only when a microphone is used
        from ..audio.capture import MicrophoneCapture

        return MicrophoneCapture(
            on_chunk=on_chunk,
            sample_rate=self.settings.audio.input_sample_rate,
            channels=self.settings.audio.channels,
            block_duration=self.settings.audio.block_duration,
        )

    def start(self) -> LiveSession:
        """Connect the live session."""
        if not self.model.is_live:
            raise ValueError(f"Model {self.model.model_id} has no live API")

        logger.info("Starting conversation", model=self.model.model_id)

        handle = None
        if self.config.resume and self.settings.live.resume_sessions:
            handle = self.store.load_handle(self.model.model_id)
        if handle is None:
            self.client.forget_resumption()
        self.resumed = handle is not None

        if self.player is not None:
            self.player.initialize()

        self.is_running = True
        self._settled.clear()
        self._stopped = False
        self.session = self.client.connect(
            self.model,
            resumption_handle=handle,
            overrides=self.settings.session_overrides(),
            handlers=SessionHandlers(
                on_ready=self._on_ready,
                on_message=self._on_message,
                on_failure=self._on_failure,
                on_closed=self._on_closed,
                on_error=self._on_server_error,
            ),
        )

        self.record = self.store.create_record(
            self.session.session_id, self.model.model_id, resumed=self.resumed
        )
        if self.metrics_collector:
            self.metrics_collector.start_session(self.session.session_id, self.model.model_id)
        return self.session

    def wait_until_ready(self, timeout: Optional[float] = None) -> bool:
        """Block until the session is ready or has ended."""
        if timeout is None:
            timeout = self.settings.timeouts.setup_timeout
        if not self._settled.wait(timeout):
            logger.warning("Timed out waiting for setup acknowledgement", timeout=timeout)
            return False
        return self.client.is_ready()

    def send_text(self, text: str) -> bool:
        """
        Send a typed user turn.

        Raises:
            SendBeforeReady: if the session has not been acknowledged yet
        """
        sent = self.client.send_text(text, strict=True)
        if sent and self.metrics_collector:
            self.metrics_collector.mark_user_speech()
        return sent

    # Session callbacks

    def _on_ready(self) -> None:
        logger.info("Live session ready", model=self.model.model_id)
        self._settled.set()
        if self.config.enable_microphone and self.model.audio_input:
            try:
                self.microphone = self.microphone_factory(self.client.send)
                self.microphone.start()
            except Exception as e:
                logger.error("Microphone unavailable", error=str(e))
                if self.metrics_collector:
                    self.metrics_collector.record_error("microphone", str(e))
                self.microphone = None

    def _on_message(self, message: ServerMessage) -> None:
        if message.go_away_time_left:
            logger.warning("Server will close the connection", time_left=message.go_away_time_left)

        if message.interrupted and self.player is not None:
            self.player.interrupt()

        if self.metrics_collector:
            if message.input_transcription and message.input_transcription.strip():
                self.metrics_collector.mark_user_speech()
            if message.audio_parts or message.text_parts or message.output_transcription:
                self.metrics_collector.mark_model_output()
            if message.turn_complete:
                self.metrics_collector.record_turn()
            if message.interrupted:
                self.metrics_collector.record_interruption()

        if self.player is not None:
            for audio in message.audio_parts:
                self.player.play_audio(audio.data)

        self.transcript.process(message)

    def _on_server_error(self, error: ServerError) -> None:
        logger.error("Live server error", error=str(error))
        if self.metrics_collector:
            self.metrics_collector.record_error("server", str(error), {"code": error.code})

    def _on_failure(self, error: LiveError) -> None:
        logger.error("Live session failed", error=str(error), error_type=type(error).__name__)
        self.last_error = error
        self.is_running = False
        if self.metrics_collector:
            self.metrics_collector.record_error("session", str(error))
        if isinstance(error, SetupRejected) and self.resumed:
            # A stale handle would fail every retry
            self.store.clear_handle(self.model.model_id)
        self._settled.set()

    def _on_closed(self, code: int, reason: str) -> None:
        logger.info("Live session closed", code=code, reason=reason)
        self.is_running = False
        self._settled.set()

    def _on_entry(self, entry: TranscriptEntry) -> None:
        if self.record is not None:
            self.record.add_entry(entry.to_dict())
        if self.on_entry:
            self.on_entry(entry)

    def _save_handle(self, handle: str) -> None:
        try:
            self.store.save_handle(self.model.model_id, handle)
        except OSError as e:
            logger.error("Failed to save resumption handle", error=str(e))

    def stop(self) -> None:
        """Stop the conversation and persist its state."""
        if self._stopped:
            return
        self._stopped = True
        logger.info("Stopping conversation")
        self.is_running = False

        if self.microphone is not None:
            self.microphone.stop()
            self.microphone = None

        self.client.disconnect()

        if self.player is not None:
            self.player.stop()

        self.transcript.flush()

        session = self.session
        if session is not None and session.frame_log is not None:
            close_frame_log(session.frame_log)

        if self.metrics_collector:
            self.metrics_collector.end_session(session.stats if session else None)
            self.metrics_collector.save_metrics()

        if self.record is not None:
            self.record.ended_at = datetime.now().isoformat()
            self.record.metadata["final_state"] = self.client.state.value
            if self.last_error is not None:
                self.record.metadata["error"] = str(self.last_error)
            try:
                self.store.save_record(self.record)
            except OSError:
                logger.warning("Session transcript not saved")

        logger.info("Conversation stopped")

    def get_status(self) -> Dict[str, Any]:
        """Get current status of the conversation."""
        return {
            "is_running": self.is_running,
            "model": self.model.model_id,
            "client": self.client.get_status(),
            "microphone": self.microphone.get_status() if self.microphone else None,
            "player": self.player.get_status() if self.player else None,
            "transcript_entries": len(self.transcript.entries),
            "pending_output": self.transcript.pending_output,
        }
