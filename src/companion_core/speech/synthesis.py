"""Text-to-speech clients."""

from __future__ import annotations

import json
import logging

from companion_core.config import AppConfig, is_configured
from companion_core.http_client import ServiceError, request_bytes


logger = logging.getLogger(__name__)


class ElevenLabsSynthesizer:
    mock = False

    def __init__(self, config: AppConfig) -> None:
        section = config.elevenlabs
        self._base_url = section.base_url.rstrip("/")
        self._api_key = section.api_key or ""
        self._voice_id = section.voice_id
        self._model_id = section.model_id
        self._timeout = section.timeout_seconds
        self._voice_settings = {"stability": section.stability, "similarity_boost": section.similarity_boost}

    def synthesize(self, text: str, voice_id: str | None = None) -> bytes | None:
        """Return MPEG audio bytes for text."""
        payload = {"text": text, "model_id": self._model_id, "voice_settings": self._voice_settings}
        _, audio = request_bytes(
            "elevenlabs",
            f"{self._base_url}/text-to-speech/{voice_id or self._voice_id}",
            headers={
                "Accept": "audio/mpeg",
                "Content-Type": "application/json",
                "xi-api-key": self._api_key,
            },
            data=json.dumps(payload).encode("utf-8"),
            timeout=self._timeout,
        )
        if not audio:
            raise ServiceError("elevenlabs", "empty_response", "speech synthesis returned no audio")
        return audio


class MockSynthesizer:
    mock = True

    def synthesize(self, text: str, voice_id: str | None = None) -> bytes | None:
        _ = (text, voice_id)
        return None


def build_synthesizer(config: AppConfig) -> ElevenLabsSynthesizer | MockSynthesizer:
    if is_configured(config.elevenlabs.api_key):
        return ElevenLabsSynthesizer(config)
    logger.warning("elevenlabs: API key not configured; text-to-speech is disabled")
    return MockSynthesizer()
