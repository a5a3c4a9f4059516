"""Assembly of the setup message sent at the start of a live session."""

import json
import re
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple
import structlog

from ..models.capabilities import ModelCapabilities
from .errors import InvalidCapabilities


logger = structlog.get_logger()


HARM_CATEGORIES = (
    "HARM_CATEGORY_HARASSMENT",
    "HARM_CATEGORY_HATE_SPEECH",
    "HARM_CATEGORY_SEXUALLY_EXPLICIT",
    "HARM_CATEGORY_DANGEROUS_CONTENT",
)
DEFAULT_SAFETY_THRESHOLD = "BLOCK_NONE"

# Lets the server choose the thinking budget
DYNAMIC_THINKING_BUDGET = -1

DEFAULT_SYSTEM_INSTRUCTION = (
    "You are a real-time interpreter.\n\n"
    "Translate what the user says into the other language of the conversation "
    "and speak only the translation.\n\n"
    "Keep the speaker's tone and do not add commentary."
)

_PARAGRAPH_BREAK = re.compile(r"\n{2,}")


def split_system_instruction(text: str) -> List[str]:
    """Split instruction text into parts at blank-line boundaries."""
    segments = (segment.strip() for segment in _PARAGRAPH_BREAK.split(text))
    return [segment for segment in segments if segment]


def _freeze(value: Any) -> Any:
    if isinstance(value, dict):
        return MappingProxyType({k: _freeze(v) for k, v in value.items()})
    if isinstance(value, list):
        return tuple(_freeze(v) for v in value)
    return value


def _thaw(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {k: _thaw(v) for k, v in value.items()}
    if isinstance(value, tuple):
        return [_thaw(v) for v in value]
    return value


@dataclass(frozen=True)
class SessionConfig:
    """
    Setup payload for one session.

    Optional fields are None when the model does not declare the matching
    capability. ``session_resumption`` is always present: ``{"handle": ...}``
    to resume, ``{}`` to start fresh.
    """

    model: str
    session_resumption: Mapping[str, Any]
    safety_settings: Optional[Tuple[Mapping[str, str], ...]] = None
    thinking_config: Optional[Mapping[str, Any]] = None
    system_instruction: Optional[Mapping[str, Any]] = None
    input_audio_transcription: Optional[Mapping[str, Any]] = None
    output_audio_transcription: Optional[Mapping[str, Any]] = None
    context_window_compression: Optional[Mapping[str, Any]] = None
    generation_config: Optional[Mapping[str, Any]] = None
    realtime_input_config: Optional[Mapping[str, Any]] = None

    _WIRE_NAMES = (
        ("model", "model"),
        ("safety_settings", "safetySettings"),
        ("thinking_config", "thinkingConfig"),
        ("system_instruction", "systemInstruction"),
        ("input_audio_transcription", "inputAudioTranscription"),
        ("output_audio_transcription", "outputAudioTranscription"),
        ("context_window_compression", "contextWindowCompression"),
        ("generation_config", "generationConfig"),
        ("realtime_input_config", "realtimeInputConfig"),
        ("session_resumption", "sessionResumption"),
    )

    @property
    def resumes(self) -> bool:
        """Whether this config continues a prior session."""
        return "handle" in self.session_resumption

    def present_fields(self) -> List[str]:
        """Wire names of the fields included in the payload."""
        return [
            wire for attr, wire in self._WIRE_NAMES if getattr(self, attr) is not None
        ]

    def to_payload(self) -> Dict[str, Any]:
        """Return the setup message as plain dicts and lists."""
        setup = {}
        for attr, wire in self._WIRE_NAMES:
            value = getattr(self, attr)
            if value is not None:
                setup[wire] = _thaw(value)
        return {"setup": setup}

    def to_json(self) -> str:
        return json.dumps(self.to_payload(), ensure_ascii=False)


class ConfigBuilder:
    """
    Builds a SessionConfig from a model's capabilities.

    Supported overrides:
        system_instruction: instruction text, split into parts at blank lines
        thinking_budget: numeric thinking budget
        safety_threshold: threshold applied to every harm category
        vad_silence_ms: silence before the server ends the user's turn
        voice_name, language_code: speech config for audio output
        affective_dialog, proactive_audio: set False to opt out
    """

    def __init__(self, default_system_instruction: str = DEFAULT_SYSTEM_INSTRUCTION):
        self.default_system_instruction = default_system_instruction

    def build(
        self,
        capabilities: ModelCapabilities,
        resumption_handle: Optional[str] = None,
        overrides: Optional[Mapping[str, Any]] = None,
    ) -> SessionConfig:
        """Assemble the setup payload for one connection attempt."""
        overrides = dict(overrides or {})
        self._check_prerequisites(capabilities)

        fields: Dict[str, Any] = {
            "model": f"models/{capabilities.model_id}",
            "session_resumption": (
                {"handle": resumption_handle} if resumption_handle else {}
            ),
        }

        if capabilities.supports_safety_settings:
            threshold = overrides.get("safety_threshold", DEFAULT_SAFETY_THRESHOLD)
            fields["safety_settings"] = [
                {"category": category, "threshold": threshold}
                for category in HARM_CATEGORIES
            ]

        if capabilities.supports_thinking_config:
            budget = overrides.get("thinking_budget")
            fields["thinking_config"] = {
                "thinkingBudget": (
                    int(budget) if budget is not None else DYNAMIC_THINKING_BUDGET
                )
            }

        if capabilities.supports_system_instruction:
            # Blank text never produces an empty instruction block
            parts = (
                split_system_instruction(overrides.get("system_instruction") or "")
                or split_system_instruction(self.default_system_instruction or "")
                or split_system_instruction(DEFAULT_SYSTEM_INSTRUCTION)
            )
            fields["system_instruction"] = {"parts": [{"text": part} for part in parts]}

        if capabilities.is_live:
            if capabilities.supports_input_transcription:
                fields["input_audio_transcription"] = {}
            if capabilities.supports_output_transcription:
                fields["output_audio_transcription"] = {}
            if capabilities.supports_context_compression:
                fields["context_window_compression"] = {"slidingWindow": {}}

            generation_config = self._generation_config(capabilities, overrides)
            if generation_config:
                fields["generation_config"] = generation_config

            silence_ms = overrides.get("vad_silence_ms")
            if silence_ms is not None and capabilities.audio_input:
                fields["realtime_input_config"] = {
                    "automaticActivityDetection": {
                        "silenceDurationMs": int(silence_ms)
                    }
                }

        config = SessionConfig(**{k: _freeze(v) for k, v in fields.items()})
        logger.debug(
            "Built session config",
            model=capabilities.model_id,
            fields=config.present_fields(),
            resumes=config.resumes,
        )
        return config

    def _generation_config(
        self, capabilities: ModelCapabilities, overrides: Dict[str, Any]
    ) -> Dict[str, Any]:
        config: Dict[str, Any] = {
            "responseModalities": sorted(
                m.value.upper() for m in capabilities.output_modalities
            )
        }

        if capabilities.audio_output:
            speech_config = {}
            if overrides.get("voice_name"):
                speech_config["voiceConfig"] = {
                    "prebuiltVoiceConfig": {"voiceName": overrides["voice_name"]}
                }
            if overrides.get("language_code"):
                speech_config["languageCode"] = overrides["language_code"]
            if speech_config:
                config["speechConfig"] = speech_config

        if capabilities.native_audio:
            if capabilities.supports_affective_dialog and overrides.get(
                "affective_dialog", True
            ):
                config["enableAffectiveDialog"] = True
            if capabilities.supports_proactivity and overrides.get(
                "proactive_audio", True
            ):
                config["proactivity"] = {"proactiveAudio": True}

        return config

    def _check_prerequisites(self, capabilities: ModelCapabilities) -> None:
        issues = capabilities.dependency_issues()
        if issues:
            logger.error(
                "Inconsistent model capabilities",
                model=capabilities.model_id,
                issues=issues,
            )
            raise InvalidCapabilities("; ".join(issues))


_default_builder = ConfigBuilder()


def build_session_config(
    capabilities: ModelCapabilities,
    resumption_handle: Optional[str] = None,
    overrides: Optional[Mapping[str, Any]] = None,
) -> SessionConfig:
    """Build a SessionConfig with the default instruction text."""
    return _default_builder.build(capabilities, resumption_handle, overrides)
