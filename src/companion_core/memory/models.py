"""Memory models."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


MESSAGE_ROLES = ("user", "assistant", "system")
MEMORY_SOURCES = ("conversation", "summary", "core_memory", "emotion_pattern")
MEMORY_TYPES = ("episodic", "summary", "fact", "pattern")


@dataclass(frozen=True, slots=True)
class Message:
    id: str
    role: str
    content: str
    timestamp: str

    @classmethod
    def create(cls, role: str, content: str) -> Message:
        if role not in MESSAGE_ROLES:
            raise ValueError(f"unknown message role: {role}")
        return cls(id=str(uuid.uuid4()), role=role, content=content, timestamp=now_iso_local())

    def as_chat(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass(frozen=True, slots=True)
class MemoryRecord:
    user_id: str
    text: str
    embedding: list[float] = field(default_factory=list)
    source: str = "conversation"
    memory_type: str = "episodic"
    emotional_impact: float = 0.0
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: str = field(default_factory=lambda: now_iso_local())
    similarity: float | None = None

    def __post_init__(self) -> None:
        if self.source not in MEMORY_SOURCES:
            raise ValueError(f"unknown memory source: {self.source}")
        if self.memory_type not in MEMORY_TYPES:
            raise ValueError(f"unknown memory type: {self.memory_type}")
        if not -1.0 <= self.emotional_impact <= 1.0:
            raise ValueError(f"emotional_impact out of range: {self.emotional_impact}")

    def to_row(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "embedding": list(self.embedding),
            "text": self.text,
            "source": self.source,
            "timestamp": self.timestamp,
            "emotional_impact": self.emotional_impact,
            "memory_type": self.memory_type,
        }

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> MemoryRecord:
        embedding = row.get("embedding") or []
        if isinstance(embedding, str):
            # pgvector columns come back as "[0.1,0.2,...]" text
            embedding = [float(v) for v in embedding.strip("[]").split(",") if v.strip()]
        similarity = row.get("similarity")
        return cls(
            id=str(row.get("id", "")) or str(uuid.uuid4()),
            user_id=str(row.get("user_id", "")),
            text=str(row.get("text", "")),
            embedding=[float(v) for v in embedding],
            source=str(row.get("source") or "conversation"),
            memory_type=str(row.get("memory_type") or "episodic"),
            emotional_impact=max(-1.0, min(1.0, float(row.get("emotional_impact") or 0.0))),
            timestamp=str(row.get("timestamp") or now_iso_local()),
            similarity=None if similarity is None else float(similarity),
        )


def now_iso_local() -> str:
    """Return machine-local ISO8601 timestamp with offset."""
    return datetime.now().astimezone().isoformat(timespec="seconds")
