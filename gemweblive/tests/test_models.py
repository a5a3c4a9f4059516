"""Tests for model capabilities and the model catalogue."""

import json
import tempfile
import pytest
from pathlib import Path

from ..live.errors import InvalidCapabilities
from ..models.capabilities import ModelCapabilities, ModelParameter, Modality
from ..models.catalog import BUILTIN_MODELS, ModelCatalog


DESCRIPTOR = {
    "input_output_groups": [
        {
            "inputs": ["audio"],
            "outputs": ["text"],
            "models": [
                {
                    "code": "gemini-2.0-flash-live-001",
                    "name": "Assistant",
                    "live_api": True,
                    "supports": {"system_instruction": True, "input_transcription": True},
                }
            ],
        },
        {
            "inputs": ["text", "images"],
            "outputs": ["text"],
            "models": [
                {
                    "code": "gemini-2.5-pro",
                    "name": "Pro",
                    "supports": {"thinking_config": True},
                    "parameters": {
                        "temperature": {"range": [0, 2], "default": 1.0},
                        "topK": {"fixed": 64},
                    },
                }
            ],
        },
    ]
}


class TestModelCapabilities:
    """Test cases for ModelCapabilities."""

    def test_defaults(self):
        """Test a minimal descriptor."""
        model = ModelCapabilities(model_id="m")
        assert model.audio_input and model.audio_output
        assert model.is_live
        assert model.name == "m"
        assert model.dependency_issues() == []

    def test_modalities_coerced_to_frozenset(self):
        """Test that plain sets are frozen."""
        model = ModelCapabilities(model_id="m", input_modalities={Modality.TEXT})
        assert isinstance(model.input_modalities, frozenset)
        assert not model.audio_input

    def test_immutable(self):
        """Test that descriptors cannot be changed."""
        model = ModelCapabilities(model_id="m")
        with pytest.raises(Exception):
            model.is_live = False

    @pytest.mark.parametrize("kwargs, message", [
        ({"supports_affective_dialog": True}, "Affective dialog"),
        ({"supports_proactivity": True}, "Proactivity"),
        ({"native_audio": True, "output_modalities": {Modality.TEXT}}, "audio output"),
        ({"supports_input_transcription": True, "input_modalities": {Modality.TEXT}}, "audio input"),
        ({"supports_output_transcription": True, "output_modalities": {Modality.TEXT}}, "audio output"),
    ])
    def test_dependency_rules(self, kwargs, message):
        """Test that a dependent flag without its prerequisite is rejected."""
        with pytest.raises(InvalidCapabilities, match=message):
            ModelCapabilities(model_id="m", **kwargs)

    def test_empty_identifier(self):
        """Test that an empty identifier is rejected."""
        with pytest.raises(InvalidCapabilities):
            ModelCapabilities(model_id="")

    def test_from_dict_infers_native_audio(self):
        """Test the naming convention for descriptors without a native_audio key."""
        model = ModelCapabilities.from_dict(
            {
                "code": "gemini-2.5-flash-native-audio-preview",
                "live_api": True,
                "supports": {"affective_dialog": True},
            },
            inputs=["audio"],
            outputs=["audio"],
        )
        assert model.native_audio
        assert model.supports_affective_dialog

    def test_to_dict_round_trip(self):
        """Test that a built-in descriptor survives conversion."""
        original = BUILTIN_MODELS[1]
        restored = ModelCapabilities.from_dict(original.to_dict())
        assert restored == original

    def test_unknown_modality(self):
        """Test that unknown modality names are rejected."""
        with pytest.raises(ValueError, match="Unknown modality"):
            ModelCapabilities.from_dict({"code": "m"}, inputs=["smell"], outputs=["text"])


class TestModelParameter:
    """Test cases for ModelParameter."""

    def test_resolve_order(self):
        """Test user value, then default, then fixed."""
        assert ModelParameter(default=1.0, fixed=2.0).resolve(0.5) == 0.5
        assert ModelParameter(default=1.0, fixed=2.0).resolve() == 1.0
        assert ModelParameter(fixed=64).resolve() == 64
        assert ModelParameter().resolve() is None

    def test_from_dict(self):
        """Test parsing a parameter entry."""
        parameter = ModelParameter.from_dict({"range": [0, 2], "default": 1.0})
        assert parameter.range == (0, 2)
        assert parameter.default == 1.0


class TestModelCatalog:
    """Test cases for ModelCatalog."""

    def test_builtin_models(self):
        """Test the built-in catalogue."""
        catalog = ModelCatalog(BUILTIN_MODELS)
        assert len(catalog) == len(BUILTIN_MODELS)
        assert "gemini-live-2.5-flash-preview" in catalog
        assert all(m.is_live for m in catalog.list_models(live_only=True))
        assert not catalog.get("gemini-2.5-flash").is_live

    def test_unknown_model(self):
        """Test looking up an unknown identifier."""
        with pytest.raises(ValueError, match="Unknown model"):
            ModelCatalog().get("missing")

    def test_register_replaces(self):
        """Test that registering an identifier again replaces the entry."""
        catalog = ModelCatalog([ModelCapabilities(model_id="m")])
        catalog.register(ModelCapabilities(model_id="m", is_live=False))
        assert len(catalog) == 1
        assert not catalog.get("m").is_live

    def test_load_file(self):
        """Test loading a grouped descriptor file."""
        with tempfile.TemporaryDirectory() as tmp_dir:
            path = Path(tmp_dir) / "models.json"
            path.write_text(json.dumps(DESCRIPTOR))

            catalog = ModelCatalog()
            loaded = catalog.load_file(path)

        assert [m.model_id for m in loaded] == ["gemini-2.0-flash-live-001", "gemini-2.5-pro"]

        assistant = catalog.get("gemini-2.0-flash-live-001")
        assert assistant.is_live
        assert assistant.input_modalities == {Modality.AUDIO}
        assert assistant.output_modalities == {Modality.TEXT}
        assert assistant.supports_input_transcription

        pro = catalog.get("gemini-2.5-pro")
        assert not pro.is_live
        assert pro.input_modalities == {Modality.TEXT, Modality.IMAGE}
        assert pro.parameters["topK"].fixed == 64

    def test_load_invalid_file(self):
        """Test that unreadable descriptor files raise."""
        with tempfile.TemporaryDirectory() as tmp_dir:
            path = Path(tmp_dir) / "models.json"
            path.write_text("{not json")
            with pytest.raises(ValueError):
                ModelCatalog().load_file(path)
