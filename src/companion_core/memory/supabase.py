"""Hosted relational/vector store over the Supabase REST interface."""

from __future__ import annotations

import logging
import urllib.parse

from companion_core.config import AppConfig, is_configured
from companion_core.http_client import ServiceError, request_json
from .models import MemoryRecord, now_iso_local
from .store import LocalStore


logger = logging.getLogger(__name__)


def _to_memories(rows: list[dict]) -> list[MemoryRecord]:
    try:
        return [MemoryRecord.from_row(row) for row in rows]
    except (TypeError, ValueError) as exc:
        raise ServiceError("supabase", "invalid_response", f"memory row is malformed: {exc}") from exc


class SupabaseStore:
    """PostgREST tables: users, conversations, memory_embeddings, engagement_metrics; RPC match_memories."""

    mock = False

    def __init__(self, config: AppConfig) -> None:
        self._base_url = str(config.supabase.url).rstrip("/")
        self._key = str(config.supabase.anon_key)
        self._timeout = config.supabase.timeout_seconds

    def initialize(self) -> None:
        return None

    def _headers(self, prefer: str | None = None) -> dict[str, str]:
        headers = {"apikey": self._key, "Authorization": f"Bearer {self._key}"}
        if prefer:
            headers["Prefer"] = prefer
        return headers

    def _url(self, table: str, query: dict[str, str] | None = None) -> str:
        url = f"{self._base_url}/rest/v1/{table}"
        if query:
            url = f"{url}?{urllib.parse.urlencode(query)}"
        return url

    def create_user(self, user_id: str) -> None:
        row = {
            "id": user_id,
            "created_at": now_iso_local(),
            "personality_settings": {},
            "emotional_state": {"attention": 1.0, "connection": 1.0, "growth": 1.0, "play": 1.0},
        }
        request_json(
            "supabase",
            self._url("users"),
            [row],
            headers=self._headers("resolution=ignore-duplicates,return=minimal"),
            timeout=self._timeout,
        )

    def insert_conversation(self, user_id: str, role: str, text: str) -> None:
        row = {"user_id": user_id, "timestamp": now_iso_local(), "role": role, "text": text, "importance_marker": 0}
        request_json("supabase", self._url("conversations"), [row], headers=self._headers("return=minimal"), timeout=self._timeout)

    def update_emotional_state(self, user_id: str, state: dict[str, float]) -> None:
        request_json(
            "supabase",
            self._url("users", {"id": f"eq.{user_id}"}),
            {"emotional_state": dict(state)},
            method="PATCH",
            headers=self._headers("return=minimal"),
            timeout=self._timeout,
        )

    def insert_memory(self, memory: MemoryRecord) -> None:
        row = memory.to_row()
        row.pop("id")
        request_json("supabase", self._url("memory_embeddings"), [row], headers=self._headers("return=minimal"), timeout=self._timeout)

    def match_memories(self, user_id: str, embedding: list[float], threshold: float = 0.5, count: int = 5) -> list[MemoryRecord]:
        payload = {
            "query_embedding": embedding,
            "match_threshold": threshold,
            "match_count": count,
            "p_user_id": user_id,
        }
        rows = request_json("supabase", self._url("rpc/match_memories"), payload, headers=self._headers(), timeout=self._timeout)
        if rows is None:
            return []
        if not isinstance(rows, list):
            raise ServiceError("supabase", "invalid_response", "match_memories did not return a list")
        return _to_memories([{"user_id": user_id, **row} for row in rows if isinstance(row, dict)])[:count]

    def list_memories(self, user_id: str, limit: int = 8) -> list[MemoryRecord]:
        query = {
            "select": "*",
            "user_id": f"eq.{user_id}",
            "order": "emotional_impact.desc",
            "limit": str(limit),
        }
        rows = request_json("supabase", self._url("memory_embeddings", query), method="GET", headers=self._headers(), timeout=self._timeout)
        if not isinstance(rows, list):
            return []
        return _to_memories([row for row in rows if isinstance(row, dict)])

    def upsert_engagement(self, user_id: str, streak_count: int) -> None:
        row = {"user_id": user_id, "last_interaction": now_iso_local(), "streak_count": streak_count}
        request_json(
            "supabase",
            self._url("engagement_metrics", {"on_conflict": "user_id"}),
            [row],
            headers=self._headers("resolution=merge-duplicates,return=minimal"),
            timeout=self._timeout,
        )


def build_store(config: AppConfig) -> SupabaseStore | LocalStore:
    if is_configured(config.supabase.url) and is_configured(config.supabase.anon_key):
        return SupabaseStore(config)
    logger.warning("supabase: not configured; persisting to %s", config.paths.data_root)
    return LocalStore(config.paths.data_root)
