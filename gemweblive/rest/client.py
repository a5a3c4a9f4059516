"""Text generation for models without live API support."""

import os
import re
import time
from dataclasses import dataclass
from typing import Any, Dict, Iterator, Mapping, Optional
import google.generativeai as genai
import structlog

from ..live.config_builder import DEFAULT_SAFETY_THRESHOLD, HARM_CATEGORIES
from ..models.capabilities import ModelCapabilities


logger = structlog.get_logger()


_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


def build_generation_config(
    model: ModelCapabilities, user_settings: Optional[Mapping[str, Any]] = None
) -> Dict[str, Any]:
    """
    Pick a value for each parameter the model allows.

    A user setting wins, then the parameter's default, then its fixed
    value. Settings for parameters the model does not declare are ignored.
    """
    user_settings = user_settings or {}
    config: Dict[str, Any] = {}
    for name, parameter in model.parameters.items():
        value = parameter.resolve(user_settings.get(name))
        if value is not None:
            config[name] = value

    ignored = sorted(set(user_settings) - set(model.parameters))
    if ignored:
        logger.debug("Ignoring unsupported settings", model=model.model_id, settings=ignored)
    return config


def _snake_case(name: str) -> str:
    return _CAMEL_BOUNDARY.sub("_", name).lower()


@dataclass
class RestResponse:
    """A chunk of a generated reply."""
    text: str
    is_final: bool = False
    full_text: Optional[str] = None
    finish_reason: Optional[str] = None


class RestClient:
    """
    Request/response client for text models, used when the selected model
    has no live endpoint.
    """

    def __init__(
        self,
        model: ModelCapabilities,
        system_instruction: Optional[str] = None,
        user_settings: Optional[Mapping[str, Any]] = None,
        api_key: Optional[str] = None,
        max_retries: int = 3,
    ):
        self.model_info = model
        self.system_instruction = system_instruction
        self.user_settings = dict(user_settings or {})
        self.api_key = api_key
        self.max_retries = max_retries
        self.model: Optional[genai.GenerativeModel] = None

    def initialize(self) -> None:
        """Configure the API client and create the model."""
        logger.info("Initializing REST client", model=self.model_info.model_id)

        api_key = self.api_key or os.getenv("GOOGLE_API_KEY")
        if not api_key:
            raise ValueError("GOOGLE_API_KEY environment variable not set")

        genai.configure(api_key=api_key)

        kwargs: Dict[str, Any] = {"model_name": self.model_info.model_id}
        if self.system_instruction and self.model_info.supports_system_instruction:
            kwargs["system_instruction"] = self.system_instruction
        generation_config = build_generation_config(self.model_info, self.user_settings)
        if generation_config:
            kwargs["generation_config"] = {
                _snake_case(key): value for key, value in generation_config.items()
            }
        if self.model_info.supports_safety_settings:
            kwargs["safety_settings"] = [
                {"category": category, "threshold": DEFAULT_SAFETY_THRESHOLD}
                for category in HARM_CATEGORIES
            ]

        try:
            self.model = genai.GenerativeModel(**kwargs)
        except Exception as e:
            logger.error("Failed to initialize REST client", error=str(e))
            raise

    def generate(self, text: str) -> str:
        """Generate a complete reply."""
        reply = ""
        for chunk in self.stream(text):
            if chunk.is_final:
                reply = chunk.full_text or ""
        return reply

    def stream(self, text: str) -> Iterator[RestResponse]:
        """Stream a reply, retrying failed requests with exponential backoff."""
        if self.model is None:
            raise RuntimeError("REST client not initialized")

        for attempt in range(self.max_retries):
            full_text = ""
            finish_reason = None
            try:
                for chunk in self.model.generate_content(text, stream=True):
                    try:
                        chunk_text = chunk.text
                    except ValueError:
                        # Chunks without parts, e.g. a blocked candidate
                        chunk_text = ""
                    candidates = getattr(chunk, "candidates", None) or []
                    if candidates and getattr(candidates[0], "finish_reason", None):
                        finish_reason = str(candidates[0].finish_reason)
                    if chunk_text:
                        full_text += chunk_text
                        yield RestResponse(text=chunk_text)
                yield RestResponse(
                    text="", is_final=True, full_text=full_text, finish_reason=finish_reason
                )
                return
            except Exception as e:
                logger.warning(f"REST attempt {attempt + 1} failed", error=str(e))
                if full_text or attempt == self.max_retries - 1:
                    # Partial output was already yielded; retrying would repeat it
                    logger.error("REST generation failed", error=str(e))
                    raise

                wait_time = 2**attempt
                logger.info(f"Retrying REST request in {wait_time}s", attempt=attempt + 1)
                time.sleep(wait_time)

    def stop(self) -> None:
        """Release the model."""
        self.model = None

    def get_status(self) -> dict:
        return {
            "model": self.model_info.model_id,
            "initialized": self.model is not None,
        }
