"""Tests for the command line interface."""

import json
import tempfile
import pytest
from pathlib import Path
from unittest.mock import Mock, patch
from click.testing import CliRunner

from ..cli.main import cli
from ..live.errors import SendBeforeReady
from ..models.catalog import BUILTIN_MODELS
from ..rest.client import RestResponse


class TestStartCommand:
    """Test cases for the start command."""

    def setup_method(self):
        """Set up test fixtures."""
        self.runner = CliRunner()

    @pytest.fixture
    def mock_manager(self):
        """Mock conversation manager that is ready immediately."""
        manager = Mock()
        manager.model = BUILTIN_MODELS[0]
        manager.wait_until_ready.return_value = True
        manager.is_running = False
        manager.last_error = None
        manager.metrics_collector = None
        with patch("gemweblive.cli.main.ConversationManager", return_value=manager) as cls, \
                patch("gemweblive.cli.main.setup_logging"), \
                patch("gemweblive.cli.main.cleanup_old_logs"), \
                patch("gemweblive.cli.main.signal.signal"):
            manager.factory = cls
            yield manager

    def test_start_and_stop(self, mock_manager):
        """Test a session that ends on its own."""
        result = self.runner.invoke(cli, ["start", "--model", "gemini-live-2.5-flash-preview"])

        assert result.exit_code == 0, result.output
        assert "Model: gemini-live-2.5-flash-preview" in result.output
        assert "Goodbye" in result.output
        mock_manager.start.assert_called_once()
        mock_manager.stop.assert_called_once()

        config = mock_manager.factory.call_args[0][0]
        assert config.model_id == "gemini-live-2.5-flash-preview"
        assert config.resume is True
        assert config.enable_microphone is True

    def test_fresh_text_only(self, mock_manager):
        """Test typed input with a fresh session."""
        mock_manager.is_running = True
        result = self.runner.invoke(cli, ["start", "--fresh", "--text-only"], input="Hello\n\nBye\n")

        assert result.exit_code == 0, result.output
        config = mock_manager.factory.call_args[0][0]
        assert config.resume is False
        assert config.enable_microphone is False
        assert [c.args[0] for c in mock_manager.send_text.call_args_list] == ["Hello", "Bye"]

    def test_text_before_ready(self, mock_manager):
        """Test that a refused message is reported and the loop continues."""
        mock_manager.is_running = True
        mock_manager.send_text.side_effect = [SendBeforeReady("opening"), True]
        result = self.runner.invoke(cli, ["start", "--text-only"], input="one\ntwo\n")

        assert result.exit_code == 0, result.output
        assert "not ready" in result.output
        assert mock_manager.send_text.call_count == 2

    def test_not_ready(self, mock_manager):
        """Test a session that never becomes ready."""
        mock_manager.wait_until_ready.return_value = False
        mock_manager.last_error = Exception("Invalid handle")
        result = self.runner.invoke(cli, ["start"])

        assert result.exit_code != 0
        assert "Invalid handle" in result.output
        mock_manager.stop.assert_called_once()

    def test_unknown_model(self, mock_manager):
        """Test that unknown models are rejected by the option."""
        result = self.runner.invoke(cli, ["start", "--model", "nope"])

        assert result.exit_code == 2
        assert "Unknown model 'nope'" in result.output
        mock_manager.start.assert_not_called()


class TestInfoCommands:
    """Test cases for models, setup-payload, metrics and sessions."""

    def setup_method(self):
        """Set up test fixtures."""
        self.runner = CliRunner()

    def test_models(self):
        """Test listing built-in models."""
        result = self.runner.invoke(cli, ["models"])

        assert result.exit_code == 0
        for model in BUILTIN_MODELS:
            assert model.model_id in result.output
        assert "native-audio" in result.output

    def test_models_json_live_only(self):
        """Test JSON output filtered to live models."""
        result = self.runner.invoke(cli, ["models", "--json", "--live-only"])

        assert result.exit_code == 0
        models = json.loads(result.output)
        assert models and all(m["live_api"] for m in models)

    def test_models_file(self):
        """Test that a descriptor file adds models."""
        descriptor = {"input_output_groups": [{
            "inputs": ["audio"], "outputs": ["audio"],
            "models": [{"code": "custom-live-model", "live_api": True}],
        }]}
        with tempfile.TemporaryDirectory() as tmp_dir:
            path = Path(tmp_dir) / "models.json"
            path.write_text(json.dumps(descriptor))
            result = self.runner.invoke(cli, ["models", "--models-file", str(path)])

        assert result.exit_code == 0, result.output
        assert "custom-live-model" in result.output

    def test_setup_payload(self):
        """Test printing the setup message for a model."""
        result = self.runner.invoke(
            cli,
            ["setup-payload", "--model", "gemini-2.5-flash-native-audio-preview-09-2025",
             "--handle", "h1"],
        )

        assert result.exit_code == 0, result.output
        setup = json.loads(result.output)["setup"]
        assert setup["model"] == "models/gemini-2.5-flash-native-audio-preview-09-2025"
        assert setup["sessionResumption"] == {"handle": "h1"}
        assert setup["generationConfig"]["enableAffectiveDialog"] is True

    def test_setup_payload_requires_model(self):
        """Test that the model option is required."""
        result = self.runner.invoke(cli, ["setup-payload"])
        assert result.exit_code == 2

    def test_metrics_empty(self):
        """Test the metrics report with no data."""
        collector = Mock()
        collector.generate_report.return_value = {"period_days": 7, "total_sessions": 0}
        with patch("gemweblive.cli.main.MetricsCollector", return_value=collector):
            result = self.runner.invoke(cli, ["metrics"])

        assert result.exit_code == 0
        assert "No data available" in result.output

    def test_sessions(self):
        """Test listing saved sessions."""
        store = Mock()
        store.list_records.return_value = [
            {"id": "abc", "model_id": "m", "created_at": "2025-01-01", "message_count": 3}
        ]
        with patch("gemweblive.cli.main.SessionStore", return_value=store):
            result = self.runner.invoke(cli, ["sessions"])

        assert result.exit_code == 0
        assert "abc" in result.output
        assert "3 messages" in result.output

    def test_sessions_clear_handle(self):
        """Test forgetting a stored handle."""
        store = Mock()
        with patch("gemweblive.cli.main.SessionStore", return_value=store):
            result = self.runner.invoke(cli, ["sessions", "--clear-handle", "m"])

        assert result.exit_code == 0
        store.clear_handle.assert_called_once_with("m")


class TestAskCommand:
    """Test cases for the ask command."""

    def setup_method(self):
        """Set up test fixtures."""
        self.runner = CliRunner()

    @pytest.fixture
    def mock_rest_client(self):
        client = Mock()
        client.stream.return_value = [
            RestResponse(text="Hello"),
            RestResponse(text=" there!"),
            RestResponse(text="", is_final=True, full_text="Hello there!"),
        ]
        client.generate.return_value = "Hello there!"
        with patch("gemweblive.cli.main.RestClient", return_value=client) as cls:
            client.factory = cls
            yield client

    def test_stream(self, mock_rest_client):
        """Test a streamed reply."""
        result = self.runner.invoke(cli, ["ask", "--input", "Hi"])

        assert result.exit_code == 0, result.output
        assert "Hello there!" in result.output
        mock_rest_client.initialize.assert_called_once()
        mock_rest_client.stream.assert_called_once_with("Hi")
        mock_rest_client.stop.assert_called_once()

    def test_no_stream_with_temperature(self, mock_rest_client):
        """Test a complete reply with a user setting."""
        result = self.runner.invoke(
            cli, ["ask", "-i", "Hi", "--no-stream", "--temperature", "0.3"]
        )

        assert result.exit_code == 0, result.output
        assert "Hello there!" in result.output
        assert mock_rest_client.factory.call_args.kwargs["user_settings"] == {"temperature": 0.3}

    def test_missing_key(self, mock_rest_client):
        """Test that configuration errors are shown to the user."""
        mock_rest_client.initialize.side_effect = ValueError("GOOGLE_API_KEY environment variable not set")
        result = self.runner.invoke(cli, ["ask", "-i", "Hi"])

        assert result.exit_code == 1
        assert "GOOGLE_API_KEY" in result.output
        mock_rest_client.stop.assert_called_once()
