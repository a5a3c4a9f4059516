"""Transcript assembly from streaming server content."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional

from ..live.messages import ServerMessage


@dataclass
class TranscriptEntry:
    """One line of the conversation."""

    text: str
    is_user: bool
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat())

    def to_dict(self) -> dict:
        return {
            "role": "user" if self.is_user else "assistant",
            "content": self.text,
            "timestamp": self.timestamp,
        }


class TranscriptBuffer:
    """
    Builds transcript entries from inbound messages.

    Output transcription arrives in fragments and is held until the user
    speaks again or the model finishes its turn; input transcription is
    recorded as soon as it is non-blank.
    """

    def __init__(
        self,
        audio_output: bool = True,
        on_entry: Optional[Callable[[TranscriptEntry], None]] = None,
    ):
        self.audio_output = audio_output
        self.on_entry = on_entry
        self.entries: List[TranscriptEntry] = []
        self._pending_output: List[str] = []

    @property
    def pending_output(self) -> str:
        return "".join(self._pending_output)

    def process(self, message: ServerMessage) -> None:
        """Apply one content message."""
        if message.output_transcription:
            self._pending_output.append(message.output_transcription)

        if message.input_transcription and message.input_transcription.strip():
            self.flush()
            self._add(message.input_transcription.strip(), is_user=True)

        # Text-only models reply with text parts instead of a transcription
        if not self.audio_output:
            for text in message.text_parts:
                if text.strip():
                    self._add(text.strip(), is_user=False)

        if message.turn_complete or message.interrupted:
            self.flush()

    def flush(self) -> None:
        """Record any pending model output as one entry."""
        text = self.pending_output.strip()
        self._pending_output.clear()
        if text:
            self._add(text, is_user=False)

    def _add(self, text: str, is_user: bool) -> None:
        entry = TranscriptEntry(text=text, is_user=is_user)
        self.entries.append(entry)
        if self.on_entry:
            self.on_entry(entry)

    def to_list(self) -> List[dict]:
        return [entry.to_dict() for entry in self.entries]
