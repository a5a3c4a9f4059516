"""Configuration settings for the live client."""

import os
from pathlib import Path
from typing import Optional, Dict, Any, Union
from dataclasses import dataclass, asdict
import json
import structlog
from dotenv import load_dotenv
import threading

from ..live.config_builder import DEFAULT_SYSTEM_INSTRUCTION


logger = structlog.get_logger()


@dataclass
class SystemPrompts:
    """System instruction sent to models that accept one."""
    default: str = DEFAULT_SYSTEM_INSTRUCTION


@dataclass
class LiveSettings:
    """Live API connection and session settings."""
    api_version: str = "v1beta"
    host: str = "generativelanguage.googleapis.com"
    model: str = "gemini-live-2.5-flash-preview"
    models_file: Optional[str] = None
    vad_silence_ms: Optional[int] = 800
    voice_name: Optional[str] = None
    language_code: Optional[str] = None
    thinking_budget: Optional[int] = None
    safety_threshold: str = "BLOCK_NONE"
    resume_sessions: bool = True


@dataclass
class AudioSettings:
    """Audio configuration settings."""
    input_sample_rate: int = 16000
    output_sample_rate: int = 24000
    channels: int = 1
    block_duration: float = 0.1  # seconds


@dataclass
class TimeoutSettings:
    """Timeout settings for the transport and handshake."""
    open_timeout: float = 10.0  # seconds
    close_timeout: float = 5.0  # seconds
    setup_timeout: float = 15.0  # seconds


@dataclass
class LoggingSettings:
    """Logging configuration settings."""
    level: str = "INFO"
    format: str = "json"
    file_enabled: bool = True
    file_rotation_mb: int = 10
    file_backup_count: int = 7
    frame_log: bool = False


# Environment variable -> (section, attribute, type)
ENV_OVERRIDES = {
    "GEMINI_API_VERSION": ("live", "api_version", str),
    "GEMINI_LIVE_HOST": ("live", "host", str),
    "GEMINI_LIVE_MODEL": ("live", "model", str),
    "GEMINI_MODELS_FILE": ("live", "models_file", str),
    "VAD_SILENCE_MS": ("live", "vad_silence_ms", int),
    "GEMINI_VOICE_NAME": ("live", "voice_name", str),
    "GEMINI_LANGUAGE_CODE": ("live", "language_code", str),
    "GEMINI_THINKING_BUDGET": ("live", "thinking_budget", int),
    "GEMINI_SAFETY_THRESHOLD": ("live", "safety_threshold", str),
    "RESUME_SESSIONS": ("live", "resume_sessions", bool),
    "AUDIO_INPUT_SAMPLE_RATE": ("audio", "input_sample_rate", int),
    "AUDIO_OUTPUT_SAMPLE_RATE": ("audio", "output_sample_rate", int),
    "AUDIO_CHANNELS": ("audio", "channels", int),
    "WS_OPEN_TIMEOUT": ("timeouts", "open_timeout", float),
    "SETUP_TIMEOUT": ("timeouts", "setup_timeout", float),
    "LOG_LEVEL": ("logging", "level", str),
    "LOG_FORMAT": ("logging", "format", str),
    "LOG_FILE_ENABLED": ("logging", "file_enabled", bool),
    "LOG_FRAMES": ("logging", "frame_log", bool),
}


class Settings:
    """Main settings class for the live client."""

    SECTIONS = ("system_prompts", "live", "audio", "timeouts", "logging")

    def __init__(self, config_file: Optional[Union[str, Path]] = None,
                 load_env_file: bool = True):
        self.config_file = Path(config_file) if config_file else None
        self._lock = threading.RLock()
        self._env_loaded = not load_env_file

        self.api_key: Optional[str] = None
        self.system_prompts = SystemPrompts()
        self.live = LiveSettings()
        self.audio = AudioSettings()
        self.timeouts = TimeoutSettings()
        self.logging = LoggingSettings()

        # Load .env file first
        self._load_env_file()

        if self.config_file and self.config_file.exists():
            self.load_from_file()

        # Environment wins over the file
        self.load_from_env()

    def _load_env_file(self) -> None:
        """Load environment variables from the nearest .env file."""
        if not self._env_loaded:
            current_dir = Path.cwd()
            for parent in [current_dir] + list(current_dir.parents):
                env_file = parent / ".env"
                if env_file.exists():
                    load_dotenv(env_file)
                    logger.debug("Loaded .env file", path=str(env_file))
                    break
            self._env_loaded = True

    def load_from_file(self) -> None:
        """Load settings from the JSON configuration file."""
        if not self.config_file or not self.config_file.exists():
            return

        try:
            with self._lock:
                with open(self.config_file, 'r') as f:
                    config = json.load(f)

                for section_name in self.SECTIONS:
                    section_config = config.get(section_name)
                    if not isinstance(section_config, dict):
                        continue
                    section = getattr(self, section_name)
                    for key, value in section_config.items():
                        if hasattr(section, key):
                            setattr(section, key, value)
                        else:
                            logger.warning("Unknown setting ignored",
                                           section=section_name, key=key)

                logger.info("Loaded settings from file", file=str(self.config_file))

        except (OSError, json.JSONDecodeError) as e:
            logger.error("Failed to load settings from file",
                         file=str(self.config_file),
                         error=str(e))

    def load_from_env(self) -> None:
        """Load settings from environment variables."""
        with self._lock:
            self.api_key = os.getenv("GOOGLE_API_KEY") or os.getenv("GEMINI_API_KEY")

            if os.getenv("SYSTEM_PROMPT_DEFAULT"):
                self.system_prompts.default = os.getenv("SYSTEM_PROMPT_DEFAULT")

            for env_name, (section_name, key, value_type) in ENV_OVERRIDES.items():
                raw = os.getenv(env_name)
                if raw is None or raw == "":
                    continue
                try:
                    if value_type is bool:
                        value = raw.lower() == "true"
                    else:
                        value = value_type(raw)
                except ValueError:
                    logger.warning("Invalid environment override", name=env_name, value=raw)
                    continue
                setattr(getattr(self, section_name), key, value)

    def save_to_file(self, file_path: Optional[Union[str, Path]] = None) -> None:
        """Save current settings to file. The API key is never written."""
        save_path = Path(file_path) if file_path else self.config_file
        if not save_path:
            raise ValueError("No file path provided")

        try:
            with self._lock:
                save_path.parent.mkdir(parents=True, exist_ok=True)
                with open(save_path, 'w') as f:
                    json.dump(self.to_dict(), f, indent=2, ensure_ascii=False)

                logger.info("Saved settings to file", file=str(save_path))

        except OSError as e:
            logger.error("Failed to save settings to file",
                         file=str(save_path), error=str(e))
            raise

    def session_overrides(self) -> Dict[str, Any]:
        """Overrides passed to the config builder for each session."""
        overrides = {
            "system_instruction": self.system_prompts.default,
            "safety_threshold": self.live.safety_threshold,
            "vad_silence_ms": self.live.vad_silence_ms,
            "voice_name": self.live.voice_name,
            "language_code": self.live.language_code,
            "thinking_budget": self.live.thinking_budget,
        }
        return {key: value for key, value in overrides.items() if value is not None}

    def reload(self) -> None:
        """Reload settings from file and environment."""
        with self._lock:
            if self.config_file and self.config_file.exists():
                self.load_from_file()
            self.load_from_env()
            logger.info("Settings reloaded")

    def validate(self) -> list[str]:
        """Validate current settings and return list of issues."""
        issues = []

        if not self.api_key:
            issues.append("GOOGLE_API_KEY is not set")

        if self.audio.input_sample_rate not in [8000, 16000, 24000, 44100, 48000]:
            issues.append(f"Invalid input sample rate: {self.audio.input_sample_rate}")
        if self.audio.output_sample_rate not in [16000, 24000, 44100, 48000]:
            issues.append(f"Invalid output sample rate: {self.audio.output_sample_rate}")
        if self.audio.channels not in [1, 2]:
            issues.append(f"Invalid channels: {self.audio.channels}")

        if self.live.vad_silence_ms is not None and self.live.vad_silence_ms < 0:
            issues.append(f"Invalid VAD silence: {self.live.vad_silence_ms}")
        if self.live.api_version not in ["v1alpha", "v1beta"]:
            issues.append(f"Unknown API version: {self.live.api_version}")

        if self.timeouts.open_timeout <= 0:
            issues.append(f"Invalid open timeout: {self.timeouts.open_timeout}")
        if self.timeouts.setup_timeout <= 0:
            issues.append(f"Invalid setup timeout: {self.timeouts.setup_timeout}")

        if self.logging.level not in ["DEBUG", "INFO", "WARNING", "ERROR"]:
            issues.append(f"Invalid log level: {self.logging.level}")

        return issues

    def to_dict(self) -> Dict[str, Any]:
        """Convert settings to dictionary for serialization."""
        return {name: asdict(getattr(self, name)) for name in self.SECTIONS}


# Global settings instance
settings = Settings()
