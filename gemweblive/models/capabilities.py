"""Model capability descriptors."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, List, Optional

from ..live.errors import InvalidCapabilities


class Modality(str, Enum):
    """Input/output modality of a model."""

    TEXT = "text"
    AUDIO = "audio"
    IMAGE = "image"
    VIDEO = "video"

    @classmethod
    def parse(cls, value: str) -> "Modality":
        """Parse a modality name from a descriptor file."""
        normalized = value.strip().lower()
        # Descriptor files use the plural form for images
        if normalized == "images":
            normalized = "image"
        try:
            return cls(normalized)
        except ValueError:
            raise ValueError(f"Unknown modality: {value}") from None


@dataclass(frozen=True)
class ModelParameter:
    """
    Blueprint for a single configurable generation parameter.

    Only the fields relevant to the parameter are populated, e.g. a
    temperature carries ``range`` and ``default`` while topK only carries
    ``fixed``.
    """

    range: Optional[tuple] = None
    default: Any = None
    fixed: Any = None
    max: Optional[int] = None
    options: Optional[tuple] = None
    type: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ModelParameter":
        """Create a parameter from its descriptor entry."""
        range_value = data.get("range")
        options = data.get("options")
        return cls(
            range=tuple(range_value) if isinstance(range_value, list) else None,
            default=data.get("default"),
            fixed=data.get("fixed"),
            max=data.get("max"),
            options=tuple(options) if isinstance(options, list) else None,
            type=data.get("type"),
        )

    def resolve(self, user_value: Any = None) -> Any:
        """Pick the value to send: user value, then default, then fixed."""
        if user_value is not None:
            return user_value
        if self.default is not None:
            return self.default
        return self.fixed


@dataclass(frozen=True)
class ModelCapabilities:
    """
    Immutable descriptor of one model and the optional configuration
    features it accepts.

    Instances validate their own flag combinations, so a descriptor that
    enables a dependent feature without its prerequisite never reaches the
    config builder.
    """

    model_id: str
    display_name: str = ""
    input_modalities: FrozenSet[Modality] = frozenset({Modality.AUDIO})
    output_modalities: FrozenSet[Modality] = frozenset({Modality.AUDIO})
    is_live: bool = True
    native_audio: bool = False
    supports_system_instruction: bool = False
    supports_thinking_config: bool = False
    supports_safety_settings: bool = False
    supports_input_transcription: bool = False
    supports_output_transcription: bool = False
    supports_context_compression: bool = False
    supports_affective_dialog: bool = False
    supports_proactivity: bool = False
    parameters: Dict[str, ModelParameter] = field(default_factory=dict, compare=False)

    def __post_init__(self):
        if not self.model_id:
            raise InvalidCapabilities("Model identifier must not be empty")
        # Accept plain iterables and coerce them to frozensets
        object.__setattr__(
            self, "input_modalities", frozenset(self.input_modalities)
        )
        object.__setattr__(
            self, "output_modalities", frozenset(self.output_modalities)
        )
        for issue in self.dependency_issues():
            raise InvalidCapabilities(issue)

    @property
    def name(self) -> str:
        """Display name, falling back to the identifier."""
        return self.display_name or self.model_id

    @property
    def audio_input(self) -> bool:
        return Modality.AUDIO in self.input_modalities

    @property
    def audio_output(self) -> bool:
        return Modality.AUDIO in self.output_modalities

    def dependency_issues(self) -> List[str]:
        """Return a description of every flag enabled without its prerequisite."""
        issues = []
        if self.supports_affective_dialog and not self.native_audio:
            issues.append("Affective dialog requires a native audio model")
        if self.supports_proactivity and not self.native_audio:
            issues.append("Proactivity requires a native audio model")
        if self.native_audio and not self.audio_output:
            issues.append("Native audio model must declare audio output")
        if self.supports_input_transcription and not self.audio_input:
            issues.append("Input transcription requires audio input")
        if self.supports_output_transcription and not self.audio_output:
            issues.append("Output transcription requires audio output")
        return issues

    @classmethod
    def from_dict(
        cls,
        data: Dict[str, Any],
        inputs: Optional[Iterable[str]] = None,
        outputs: Optional[Iterable[str]] = None,
    ) -> "ModelCapabilities":
        """
        Build capabilities from a descriptor entry.

        Args:
            data: Model entry, keyed like the descriptor file (``code``,
                ``name``, ``live_api``, ``supports`` and ``parameters``)
            inputs: Group-level input modalities, overriding the entry's own
            outputs: Group-level output modalities, overriding the entry's own
        """
        model_id = data.get("code") or data.get("model_id")
        if not model_id:
            raise ValueError("Model entry is missing 'code'")

        inputs = inputs if inputs is not None else data.get("inputs", ["audio"])
        outputs = outputs if outputs is not None else data.get("outputs", ["audio"])
        supports = data.get("supports", {})
        native_audio = data.get("native_audio")
        if native_audio is None:
            native_audio = is_native_audio_id(model_id)

        return cls(
            model_id=model_id,
            display_name=data.get("name", ""),
            input_modalities=frozenset(Modality.parse(m) for m in inputs),
            output_modalities=frozenset(Modality.parse(m) for m in outputs),
            is_live=bool(data.get("live_api", False)),
            native_audio=bool(native_audio),
            supports_system_instruction=bool(supports.get("system_instruction", False)),
            supports_thinking_config=bool(supports.get("thinking_config", False)),
            supports_safety_settings=bool(supports.get("safety_settings", False)),
            supports_input_transcription=bool(supports.get("input_transcription", False)),
            supports_output_transcription=bool(supports.get("output_transcription", False)),
            supports_context_compression=bool(supports.get("context_compression", False)),
            supports_affective_dialog=bool(supports.get("affective_dialog", False)),
            supports_proactivity=bool(supports.get("proactivity", False)),
            parameters={
                key: ModelParameter.from_dict(value)
                for key, value in data.get("parameters", {}).items()
                if isinstance(value, dict)
            },
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a descriptor entry."""
        return {
            "code": self.model_id,
            "name": self.display_name,
            "inputs": sorted(m.value for m in self.input_modalities),
            "outputs": sorted(m.value for m in self.output_modalities),
            "live_api": self.is_live,
            "native_audio": self.native_audio,
            "supports": {
                "system_instruction": self.supports_system_instruction,
                "thinking_config": self.supports_thinking_config,
                "safety_settings": self.supports_safety_settings,
                "input_transcription": self.supports_input_transcription,
                "output_transcription": self.supports_output_transcription,
                "context_compression": self.supports_context_compression,
                "affective_dialog": self.supports_affective_dialog,
                "proactivity": self.supports_proactivity,
            },
        }


def is_native_audio_id(model_id: str) -> bool:
    """Naming convention used by descriptors that predate the native_audio flag."""
    return "native-audio" in model_id or "native_audio" in model_id
