"""Chat completion clients."""

from __future__ import annotations

import logging

from companion_core.config import AppConfig, is_configured
from companion_core.http_client import ServiceError, request_json


logger = logging.getLogger(__name__)

MOCK_COMPLETION = (
    "I'm your AI companion, but my responses are currently limited because the OpenAI API key "
    "is not configured. Once configured, I'll be able to respond properly to your messages!"
)


class OpenAIChatClient:
    """Synchronous OpenAI /chat/completions client."""

    mock = False

    def __init__(self, config: AppConfig) -> None:
        self._base_url = config.openai.base_url.rstrip("/")
        self._api_key = config.openai.api_key or ""
        self._model = config.openai.chat_model
        self._timeout = config.openai.timeout_seconds
        self._temperature = config.openai.temperature
        self._max_tokens = config.openai.max_tokens

    def check_reachable(self, timeout_seconds: int = 3) -> tuple[bool, str]:
        try:
            request_json(
                "openai",
                f"{self._base_url}/models",
                method="GET",
                headers={"Authorization": f"Bearer {self._api_key}"},
                timeout=timeout_seconds,
            )
        except ServiceError as exc:
            return False, exc.code
        return True, "ok"

    def complete(self, messages: list[dict[str, str]]) -> str:
        """Return the reply text; raise ServiceError when the call fails or comes back empty."""
        payload = {
            "model": self._model,
            "messages": messages,
            "temperature": self._temperature,
            "max_tokens": self._max_tokens,
        }
        body = request_json(
            "openai",
            f"{self._base_url}/chat/completions",
            payload,
            headers={"Authorization": f"Bearer {self._api_key}"},
            timeout=self._timeout,
        )
        choices = body.get("choices") if isinstance(body, dict) else None
        if not isinstance(choices, list) or not choices:
            raise ServiceError("openai", "invalid_response", "completion response has no choices")
        message = choices[0].get("message") if isinstance(choices[0], dict) else None
        if not isinstance(message, dict):
            raise ServiceError("openai", "invalid_response", "completion choice has no message")
        content = message.get("content")
        if isinstance(content, str) and content.strip():
            return content.strip()
        raise ServiceError("openai", "empty_response", "completion returned no content")


class MockChatClient:
    """Offline stand-in used when no OpenAI key is configured."""

    mock = True

    def check_reachable(self, timeout_seconds: int = 3) -> tuple[bool, str]:
        _ = timeout_seconds
        return True, "mock"

    def complete(self, messages: list[dict[str, str]]) -> str:
        logger.debug("openai: mock completion for %s messages", len(messages))
        return MOCK_COMPLETION


def build_chat_client(config: AppConfig) -> OpenAIChatClient | MockChatClient:
    if is_configured(config.openai.api_key):
        return OpenAIChatClient(config)
    logger.warning("openai: API key not configured; using mock completions")
    return MockChatClient()
