"""Inbound message classification and outbound message construction."""

import base64
import binascii
import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union
import structlog


logger = structlog.get_logger()


AUDIO_INPUT_SAMPLE_RATE = 16000
AUDIO_OUTPUT_SAMPLE_RATE = 24000


class MessageKind(Enum):
    """How the session treats an inbound message."""

    SETUP_COMPLETE = "setup_complete"
    ERROR = "error"
    CONTENT = "content"


class MalformedMessage(ValueError):
    """An inbound frame that is not a JSON object."""


@dataclass
class InlineAudio:
    """Audio chunk carried in a model turn part."""

    data: bytes
    mime_type: str = f"audio/pcm;rate={AUDIO_OUTPUT_SAMPLE_RATE}"


@dataclass
class ServerMessage:
    """Parsed inbound frame."""

    kind: MessageKind
    raw: Dict[str, Any]
    error_message: Optional[str] = None
    error_code: Optional[int] = None
    error_status: Optional[str] = None
    input_transcription: Optional[str] = None
    output_transcription: Optional[str] = None
    text_parts: List[str] = field(default_factory=list)
    audio_parts: List[InlineAudio] = field(default_factory=list)
    turn_complete: bool = False
    interrupted: bool = False
    new_handle: Optional[str] = None
    resumable: bool = False
    go_away_time_left: Optional[str] = None

    @property
    def is_setup_complete(self) -> bool:
        return self.kind is MessageKind.SETUP_COMPLETE

    @property
    def is_error(self) -> bool:
        return self.kind is MessageKind.ERROR


def _decode_frame(frame: Union[str, bytes]) -> Dict[str, Any]:
    if isinstance(frame, (bytes, bytearray)):
        try:
            frame = frame.decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedMessage(f"Binary frame is not UTF-8: {e}") from e
    try:
        data = json.loads(frame)
    except json.JSONDecodeError as e:
        raise MalformedMessage(f"Frame is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise MalformedMessage("Frame is not a JSON object")
    return data


def _transcription_text(container: Dict[str, Any], key: str) -> Optional[str]:
    value = container.get(key)
    if isinstance(value, dict) and isinstance(value.get("text"), str):
        return value["text"]
    return None


def _model_turn_parts(content: Dict[str, Any]) -> List[Dict[str, Any]]:
    model_turn = content.get("modelTurn")
    parts = model_turn.get("parts") if isinstance(model_turn, dict) else None
    if parts is None:
        parts = content.get("parts")
    if not isinstance(parts, list):
        return []
    return [part for part in parts if isinstance(part, dict)]


def _inline_audio(inline: Any) -> Optional[InlineAudio]:
    if not isinstance(inline, dict) or not isinstance(inline.get("data"), str):
        return None
    try:
        data = base64.b64decode(inline["data"], validate=True)
    except (binascii.Error, ValueError):
        logger.warning("Skipping inline data that is not valid base64")
        return None
    if not data:
        return None
    mime_type = inline.get("mimeType") or inline.get("mime_type")
    return InlineAudio(
        data=data,
        mime_type=mime_type if isinstance(mime_type, str) else InlineAudio.mime_type,
    )


def parse_server_message(frame: Union[str, bytes]) -> ServerMessage:
    """
    Classify an inbound frame.

    A frame carrying ``setupComplete`` is the setup acknowledgement; one
    carrying an ``error`` object is an error; everything else is content and
    keeps its raw dict for the application.

    Raises:
        MalformedMessage: if the frame is not a JSON object
    """
    data = _decode_frame(frame)

    # The server acknowledges with an empty object; an explicit false is not an ack
    ack = data.get("setupComplete", None)
    if ack is not None and ack is not False:
        return ServerMessage(kind=MessageKind.SETUP_COMPLETE, raw=data)

    error = data.get("error")
    if isinstance(error, dict):
        return ServerMessage(
            kind=MessageKind.ERROR,
            raw=data,
            error_message=str(error.get("message") or "Unknown server error"),
            error_code=error.get("code"),
            error_status=error.get("status"),
        )
    if isinstance(error, str):
        return ServerMessage(kind=MessageKind.ERROR, raw=data, error_message=error)

    message = ServerMessage(kind=MessageKind.CONTENT, raw=data)
    content = data.get("serverContent")
    if not isinstance(content, dict):
        content = {}

    message.input_transcription = _transcription_text(
        data, "inputTranscription"
    ) or _transcription_text(content, "inputTranscription")
    message.output_transcription = _transcription_text(
        data, "outputTranscription"
    ) or _transcription_text(content, "outputTranscription")

    for part in _model_turn_parts(content):
        if isinstance(part.get("text"), str):
            message.text_parts.append(part["text"])
        audio = _inline_audio(part.get("inlineData"))
        if audio is not None:
            message.audio_parts.append(audio)

    message.turn_complete = content.get("turnComplete") is True
    message.interrupted = content.get("interrupted") is True

    update = data.get("sessionResumptionUpdate")
    if isinstance(update, dict):
        message.new_handle = update.get("newHandle")
        message.resumable = bool(update.get("resumable", False))

    go_away = data.get("goAway")
    if isinstance(go_away, dict):
        message.go_away_time_left = go_away.get("timeLeft")

    return message


def realtime_audio_message(
    audio: bytes, sample_rate: int = AUDIO_INPUT_SAMPLE_RATE
) -> str:
    """Wrap a PCM chunk in a realtime input message."""
    return json.dumps(
        {
            "realtimeInput": {
                "audio": {
                    "data": base64.b64encode(audio).decode("ascii"),
                    "mimeType": f"audio/pcm;rate={sample_rate}",
                }
            }
        }
    )


def client_text_message(text: str, turn_complete: bool = True) -> str:
    """Wrap user text in a client content turn."""
    return json.dumps(
        {
            "clientContent": {
                "turns": [{"role": "user", "parts": [{"text": text}]}],
                "turnComplete": turn_complete,
            }
        },
        ensure_ascii=False,
    )
