"""Text embedding clients used for memory storage and retrieval."""

from __future__ import annotations

import logging
import math

from companion_core.config import AppConfig, is_configured
from companion_core.http_client import ServiceError, request_json


logger = logging.getLogger(__name__)


class OpenAIEmbeddingClient:
    """OpenAI /embeddings client."""

    mock = False

    def __init__(self, config: AppConfig) -> None:
        self._base_url = config.openai.base_url.rstrip("/")
        self._api_key = config.openai.api_key or ""
        self._model = config.openai.embedding_model
        self._timeout = config.openai.timeout_seconds
        self.dimension = config.openai.embedding_dim

    def embed(self, text: str) -> list[float]:
        body = request_json(
            "openai",
            f"{self._base_url}/embeddings",
            {"model": self._model, "input": text},
            headers={"Authorization": f"Bearer {self._api_key}"},
            timeout=self._timeout,
        )
        data = body.get("data") if isinstance(body, dict) else None
        if not isinstance(data, list) or not data or not isinstance(data[0], dict):
            raise ServiceError("openai", "invalid_response", "embedding response has no data")
        vector = data[0].get("embedding")
        if not isinstance(vector, list) or not vector:
            raise ServiceError("openai", "invalid_response", "embedding response has no vector")
        try:
            return [float(value) for value in vector]
        except (TypeError, ValueError) as exc:
            raise ServiceError("openai", "invalid_response", f"embedding vector is not numeric: {exc}") from exc


class MockEmbeddingClient:
    """Zero vectors: deterministic, and never similar to anything."""

    mock = True

    def __init__(self, dimension: int = 1536) -> None:
        self.dimension = dimension

    def embed(self, text: str) -> list[float]:
        _ = text
        return [0.0] * self.dimension


def build_embedding_client(config: AppConfig) -> OpenAIEmbeddingClient | MockEmbeddingClient:
    if is_configured(config.openai.api_key):
        return OpenAIEmbeddingClient(config)
    logger.warning("openai: API key not configured; using zero-vector embeddings")
    return MockEmbeddingClient(config.openai.embedding_dim)


def cosine_similarity(left: list[float], right: list[float]) -> float:
    """Cosine similarity; 0.0 when either vector has zero norm or lengths differ."""
    if len(left) != len(right) or not left:
        return 0.0
    dot = sum(a * b for a, b in zip(left, right))
    left_norm = math.sqrt(sum(a * a for a in left))
    right_norm = math.sqrt(sum(b * b for b in right))
    if left_norm <= 0.0 or right_norm <= 0.0:
        return 0.0
    return dot / (left_norm * right_norm)
