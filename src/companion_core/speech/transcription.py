"""Speech-to-text clients."""

from __future__ import annotations

import json
import logging
from pathlib import Path

from companion_core.config import AppConfig, is_configured
from companion_core.http_client import ServiceError, multipart_payload, request_bytes


logger = logging.getLogger(__name__)

MOCK_TRANSCRIPTION = "This is a mock transcription since the OpenAI API key is not configured."


class WhisperTranscriber:
    mock = False

    def __init__(self, config: AppConfig) -> None:
        self._base_url = config.openai.base_url.rstrip("/")
        self._api_key = config.openai.api_key or ""
        self._model = config.openai.transcription_model
        self._timeout = config.openai.timeout_seconds

    def transcribe(self, audio: bytes, filename: str = "recording.webm") -> str:
        body, boundary = multipart_payload({"model": self._model}, "file", filename, audio)
        _, raw = request_bytes(
            "openai",
            f"{self._base_url}/audio/transcriptions",
            headers={
                "Authorization": f"Bearer {self._api_key}",
                "Content-Type": f"multipart/form-data; boundary={boundary}",
            },
            data=body,
            timeout=self._timeout,
        )
        try:
            payload = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise ServiceError("openai", "invalid_response", f"transcription response is not JSON: {exc}") from exc
        text = payload.get("text") if isinstance(payload, dict) else None
        return str(text or "").strip()


class MockTranscriber:
    mock = True

    def transcribe(self, audio: bytes, filename: str = "recording.webm") -> str:
        logger.debug("openai: mock transcription for %s (%s bytes)", filename, len(audio))
        return MOCK_TRANSCRIPTION


def build_transcriber(config: AppConfig) -> WhisperTranscriber | MockTranscriber:
    if is_configured(config.openai.api_key):
        return WhisperTranscriber(config)
    logger.warning("openai: API key not configured; using mock transcription")
    return MockTranscriber()


def read_audio_file(path: str) -> tuple[bytes, str]:
    audio_path = Path(path)
    return audio_path.read_bytes(), audio_path.name
