"""Tests for session persistence, metrics collection, settings and logging."""

import json
import logging
import os
import tempfile
import time
import pytest
from pathlib import Path
from unittest.mock import patch

from ..config.settings import Settings
from ..live.session import SessionStats
from ..metrics.collector import MetricsCollector
from ..state.session_store import SessionRecord, SessionStore
from ..utils.logging import (
    JsonFormatter,
    cleanup_old_logs,
    close_frame_log,
    open_frame_log,
    setup_logging,
)


class TestSessionStore:
    """Test resumption handle and transcript persistence."""

    def test_handle_round_trip(self):
        """Test saving, loading and clearing a handle."""
        with tempfile.TemporaryDirectory() as tmp_dir:
            store = SessionStore(tmp_dir)
            assert store.load_handle("model-a") is None

            store.save_handle("model-a", "h1")
            store.save_handle("model-b", "h2")
            store.save_handle("model-a", "h3")

            reopened = SessionStore(tmp_dir)
            assert reopened.load_handle("model-a") == "h3"
            assert reopened.load_handle("model-b") == "h2"

            reopened.clear_handle("model-a")
            assert reopened.load_handle("model-a") is None
            assert reopened.load_handle("model-b") == "h2"

    def test_corrupt_handles_file(self):
        """Test that an unreadable handles file counts as no handle."""
        with tempfile.TemporaryDirectory() as tmp_dir:
            store = SessionStore(tmp_dir)
            store.handles_path.write_text("{broken")
            assert store.load_handle("model-a") is None

            store.save_handle("model-a", "h1")
            assert store.load_handle("model-a") == "h1"

    def test_record_save_load(self):
        """Test saving and loading a session transcript."""
        with tempfile.TemporaryDirectory() as tmp_dir:
            store = SessionStore(tmp_dir)
            record = store.create_record("abc123", "model-a", resumed=True)
            record.add_entry({"role": "user", "content": "Hallo"})
            record.add_entry({"role": "assistant", "content": "Hello"})
            record.metadata["final_state"] = "closed"
            store.save_record(record)

            loaded = store.load_record("abc123")
            assert loaded is not None
            assert loaded.model_id == "model-a"
            assert loaded.resumed
            assert [m["content"] for m in loaded.messages] == ["Hallo", "Hello"]
            assert loaded.metadata == {"final_state": "closed"}

            assert store.load_record("missing") is None

    def test_list_records(self):
        """Test listing saved sessions newest first."""
        with tempfile.TemporaryDirectory() as tmp_dir:
            store = SessionStore(tmp_dir)
            first = SessionRecord("first", "model-a")
            first.created_at = "2025-01-01T10:00:00"
            second = SessionRecord("second", "model-a")
            second.created_at = "2025-01-02T10:00:00"
            second.add_entry({"role": "user", "content": "Hi"})
            store.save_record(first)
            store.save_record(second)

            records = store.list_records()
            assert [r["id"] for r in records] == ["second", "first"]
            assert records[0]["message_count"] == 1

    def test_list_records_empty(self):
        """Test listing with no saved sessions."""
        with tempfile.TemporaryDirectory() as tmp_dir:
            assert SessionStore(tmp_dir).list_records() == []


class TestMetricsCollector:
    """Test metrics collection."""

    def test_session_counters(self):
        """Test folding session stats into the metrics."""
        with tempfile.TemporaryDirectory() as tmp_dir:
            collector = MetricsCollector(tmp_dir)
            collector.start_session("s1", "model-a")
            collector.record_turn()
            collector.record_interruption()
            collector.record_error("server", "Quota", {"code": 429})
            collector.end_session(
                SessionStats(frames_sent=10, frames_dropped=2, messages_received=5,
                             malformed_messages=1, setup_latency_ms=120.0)
            )

            summary = collector.get_summary()
            assert summary["turns"] == 1
            assert summary["interruptions"] == 1
            assert summary["frames_sent"] == 10
            assert summary["frames_dropped"] == 2
            assert summary["malformed_messages"] == 1
            assert summary["setup_latency_ms"]["avg"] == 120.0
            assert summary["total_errors"] == 1

    def test_response_latency(self):
        """Test that only the first output after user speech is timed."""
        with tempfile.TemporaryDirectory() as tmp_dir:
            collector = MetricsCollector(tmp_dir)
            collector.start_session("s1", "model-a")

            collector.mark_model_output()  # no speech yet
            collector.mark_user_speech()
            time.sleep(0.01)
            collector.mark_model_output()
            collector.mark_model_output()

            latencies = collector.current_session.response_latencies
            assert len(latencies) == 1
            assert latencies[0] >= 10

    def test_no_session(self):
        """Test calls without an active session."""
        with tempfile.TemporaryDirectory() as tmp_dir:
            collector = MetricsCollector(tmp_dir)
            collector.record_turn()
            collector.end_session()
            assert collector.get_summary() == {"error": "No active session"}
            assert collector.save_metrics() is None

    def test_save_and_report(self):
        """Test that saved sessions are aggregated in the report."""
        with tempfile.TemporaryDirectory() as tmp_dir:
            collector = MetricsCollector(tmp_dir)
            for session_id, latency in (("s1", 100.0), ("s2", 200.0)):
                collector.start_session(session_id, "model-a")
                collector.record_turn()
                collector.end_session(SessionStats(frames_sent=9, frames_dropped=1,
                                                   setup_latency_ms=latency))
                path = collector.save_metrics()
                assert path is not None and path.exists()

            report = collector.generate_report(days=1)
            assert report["total_sessions"] == 2
            assert report["total_turns"] == 2
            assert report["setup_latency_ms"]["samples"] == 2
            assert report["setup_latency_ms"]["avg"] == 150.0
            assert report["drop_rate"] == pytest.approx(0.1)

    def test_empty_report(self):
        """Test the report with no saved sessions."""
        with tempfile.TemporaryDirectory() as tmp_dir:
            report = MetricsCollector(tmp_dir).generate_report()
            assert report["total_sessions"] == 0


class TestSettings:
    """Test configuration management."""

    def test_default_settings(self):
        """Test default settings initialization."""
        with patch.dict("os.environ", {}, clear=True):
            settings = Settings(load_env_file=False)

        assert settings.api_key is None
        assert settings.live.model == "gemini-live-2.5-flash-preview"
        assert settings.live.vad_silence_ms == 800
        assert settings.audio.input_sample_rate == 16000
        assert settings.audio.output_sample_rate == 24000
        assert settings.validate() == ["GOOGLE_API_KEY is not set"]

    def test_environment_variable_override(self):
        """Test environment variable overrides."""
        with patch.dict("os.environ", {
            "GEMINI_API_KEY": "key",
            "GEMINI_LIVE_MODEL": "gemini-2.0-flash-live-001",
            "VAD_SILENCE_MS": "500",
            "RESUME_SESSIONS": "false",
            "LOG_FRAMES": "true",
        }, clear=True):
            settings = Settings(load_env_file=False)

        assert settings.api_key == "key"
        assert settings.live.model == "gemini-2.0-flash-live-001"
        assert settings.live.vad_silence_ms == 500
        assert settings.live.resume_sessions is False
        assert settings.logging.frame_log is True

    def test_invalid_environment_value_ignored(self):
        """Test that a non-numeric override keeps the default."""
        with patch.dict("os.environ", {"VAD_SILENCE_MS": "soon"}, clear=True):
            settings = Settings(load_env_file=False)
        assert settings.live.vad_silence_ms == 800

    def test_config_file_loading(self):
        """Test loading settings from config file."""
        config_data = {
            "live": {"model": "gemini-2.0-flash-live-001", "voice_name": "Puck"},
            "audio": {"channels": 2},
        }

        with tempfile.NamedTemporaryFile(mode='w', suffix='.json', delete=False) as f:
            json.dump(config_data, f)
            config_file = f.name

        try:
            with patch.dict("os.environ", {}, clear=True):
                settings = Settings(config_file=config_file, load_env_file=False)

            assert settings.live.model == "gemini-2.0-flash-live-001"
            assert settings.live.voice_name == "Puck"
            assert settings.audio.channels == 2
        finally:
            Path(config_file).unlink()

    def test_save_config_file(self):
        """Test that saved settings never contain the API key."""
        with tempfile.TemporaryDirectory() as tmp_dir:
            config_file = Path(tmp_dir) / "settings.json"
            with patch.dict("os.environ", {"GOOGLE_API_KEY": "secret"}, clear=True):
                settings = Settings(load_env_file=False)
            settings.live.vad_silence_ms = 1200
            settings.save_to_file(config_file)

            saved = config_file.read_text()
            assert "secret" not in saved
            assert json.loads(saved)["live"]["vad_silence_ms"] == 1200

    def test_session_overrides(self):
        """Test that unset values are left out of the builder overrides."""
        with patch.dict("os.environ", {}, clear=True):
            settings = Settings(load_env_file=False)
        overrides = settings.session_overrides()

        assert overrides["vad_silence_ms"] == 800
        assert overrides["safety_threshold"] == "BLOCK_NONE"
        assert "voice_name" not in overrides
        assert "thinking_budget" not in overrides

    def test_settings_validation(self):
        """Test settings validation."""
        with patch.dict("os.environ", {"GOOGLE_API_KEY": "key"}, clear=True):
            settings = Settings(load_env_file=False)
        assert settings.validate() == []

        settings.audio.input_sample_rate = 12345
        settings.live.api_version = "v2"
        settings.timeouts.setup_timeout = 0
        assert len(settings.validate()) == 3


class TestLogging:
    """Test logging configuration."""

    def test_json_formatter(self):
        """Test JSON log formatter."""
        formatter = JsonFormatter()
        record = logging.LogRecord(
            name="test_logger",
            level=logging.INFO,
            pathname="test.py",
            lineno=10,
            msg="Test message",
            args=(),
            exc_info=None
        )
        record.session_id = "abc"

        log_data = json.loads(formatter.format(record))

        assert log_data["level"] == "INFO"
        assert log_data["logger"] == "test_logger"
        assert log_data["message"] == "Test message"
        assert log_data["attributes"] == {"session_id": "abc"}
        assert log_data["timestamp"].endswith("Z")

    def test_setup_logging_file(self):
        """Test that file logging creates a log file."""
        with tempfile.TemporaryDirectory() as tmp_dir:
            log_path = setup_logging(debug=True, log_file=True, log_dir=tmp_dir)

            assert log_path is not None
            assert log_path.parent == Path(tmp_dir)
            assert log_path.name.startswith("live_")

            for handler in logging.getLogger().handlers[:]:
                logging.getLogger().removeHandler(handler)
                handler.close()

    def test_frame_log(self):
        """Test that the frame log writes to its own file and does not propagate."""
        with tempfile.TemporaryDirectory() as tmp_dir:
            frame_log = open_frame_log("sess1", log_dir=tmp_dir)
            frame_log.debug("%s %s", "OUT", '{"setup": {}}')
            close_frame_log(frame_log)

            files = list(Path(tmp_dir).glob("frames_sess1_*.log"))
            assert len(files) == 1
            content = files[0].read_text()
            assert 'OUT {"setup": {}}' in content
            assert not frame_log.propagate
            assert frame_log.handlers == []

    def test_cleanup_old_logs(self):
        """Test removal of log files older than the retention period."""
        with tempfile.TemporaryDirectory() as tmp_dir:
            old_file = Path(tmp_dir) / "live_old.log"
            new_file = Path(tmp_dir) / "live_new.log"
            old_file.write_text("old")
            new_file.write_text("new")
            old_time = time.time() - 10 * 24 * 60 * 60
            os.utime(old_file, (old_time, old_time))

            assert cleanup_old_logs(tmp_dir, keep_days=7) == 1
            assert not old_file.exists()
            assert new_file.exists()
