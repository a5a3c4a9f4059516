"""Model catalogue for built-in and file-described models."""

import json
from pathlib import Path
from typing import Dict, List, Optional, Union
import structlog

from .capabilities import ModelCapabilities, Modality


logger = structlog.get_logger()


BUILTIN_MODELS = [
    ModelCapabilities(
        model_id="gemini-live-2.5-flash-preview",
        display_name="Live (Audio In / Audio Out)",
        input_modalities=frozenset({Modality.AUDIO}),
        output_modalities=frozenset({Modality.AUDIO}),
        is_live=True,
        supports_system_instruction=True,
        supports_safety_settings=True,
        supports_input_transcription=True,
        supports_output_transcription=True,
        supports_context_compression=True,
    ),
    ModelCapabilities(
        model_id="gemini-2.5-flash-native-audio-preview-09-2025",
        display_name="Native Audio (Audio In / Audio Out)",
        input_modalities=frozenset({Modality.AUDIO}),
        output_modalities=frozenset({Modality.AUDIO}),
        is_live=True,
        native_audio=True,
        supports_system_instruction=True,
        supports_thinking_config=True,
        supports_input_transcription=True,
        supports_output_transcription=True,
        supports_context_compression=True,
        supports_affective_dialog=True,
        supports_proactivity=True,
    ),
    ModelCapabilities(
        model_id="gemini-2.0-flash-live-001",
        display_name="Assistant (Audio In / Text Out)",
        input_modalities=frozenset({Modality.AUDIO}),
        output_modalities=frozenset({Modality.TEXT}),
        is_live=True,
        supports_system_instruction=True,
        supports_safety_settings=True,
        supports_input_transcription=True,
        supports_context_compression=True,
    ),
    ModelCapabilities(
        model_id="gemini-2.5-flash",
        display_name="Transcribe (Text In / Text Out)",
        input_modalities=frozenset({Modality.TEXT}),
        output_modalities=frozenset({Modality.TEXT}),
        is_live=False,
        supports_system_instruction=True,
        supports_thinking_config=True,
        supports_safety_settings=True,
    ),
]


class ModelCatalog:
    """Registry of known models, keyed by identifier."""

    def __init__(self, models: Optional[List[ModelCapabilities]] = None):
        self._models: Dict[str, ModelCapabilities] = {}
        for model in models or []:
            self.register(model)

    def register(self, model: ModelCapabilities) -> None:
        """Register a model, replacing any entry with the same identifier."""
        if model.model_id in self._models:
            logger.debug("Replacing model descriptor", model=model.model_id)
        self._models[model.model_id] = model

    def get(self, model_id: str) -> ModelCapabilities:
        """Get a model by identifier."""
        if model_id not in self._models:
            raise ValueError(f"Unknown model: {model_id}")
        return self._models[model_id]

    def list_models(self, live_only: bool = False) -> List[ModelCapabilities]:
        """List registered models in registration order."""
        models = list(self._models.values())
        if live_only:
            models = [m for m in models if m.is_live]
        return models

    def list_ids(self) -> List[str]:
        return list(self._models.keys())

    def __contains__(self, model_id: str) -> bool:
        return model_id in self._models

    def __len__(self) -> int:
        return len(self._models)

    def load_file(self, path: Union[str, Path]) -> List[ModelCapabilities]:
        """
        Load models from a descriptor file and register them.

        The file groups models by modality::

            {"input_output_groups": [
                {"inputs": ["audio"], "outputs": ["text"], "models": [...]}
            ]}

        Group-level inputs and outputs are injected into each model entry.

        Returns:
            The models loaded from the file
        """
        path = Path(path)
        try:
            with open(path, "r") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error("Failed to read model descriptor file", file=str(path), error=str(e))
            raise

        loaded = []
        for group in data.get("input_output_groups", []):
            inputs = group.get("inputs", [])
            outputs = group.get("outputs", [])
            for entry in group.get("models", []):
                model = ModelCapabilities.from_dict(entry, inputs=inputs, outputs=outputs)
                self.register(model)
                loaded.append(model)

        logger.info("Loaded model descriptors", file=str(path), count=len(loaded))
        return loaded


catalog = ModelCatalog(BUILTIN_MODELS)
