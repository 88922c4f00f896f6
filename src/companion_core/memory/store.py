"""File-backed stores: offline persistence rows and client-local key/value settings."""

from __future__ import annotations

import json
import logging
import os
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

from companion_core.llm.embeddings import cosine_similarity
from .models import MemoryRecord, now_iso_local


logger = logging.getLogger(__name__)


@dataclass(slots=True)
class LockHandle:
    target_path: str
    lock_path: str


class FileLockTimeoutError(TimeoutError):
    """Timeout while acquiring a file lock, with structured details."""

    def __init__(self, lock_path: str, timeout_seconds: int, attempts: int) -> None:
        self.error = {
            "code": "lock_timeout",
            "message": f"Timed out waiting for lock: {lock_path}",
            "lock_path": lock_path,
            "timeout_seconds": timeout_seconds,
            "attempts": attempts,
        }
        super().__init__(json.dumps(self.error))


def _pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
        return True
    except OSError:
        return False


def _lock_is_stale(lock_path: Path, stale_after_seconds: int) -> bool:
    try:
        payload = json.loads(lock_path.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return True
    if not isinstance(payload, dict) or not isinstance(payload.get("pid"), int):
        return True
    created = payload.get("created_ts")
    age = time.time() - float(created) if isinstance(created, (int, float)) else stale_after_seconds + 1
    return (not _pid_alive(int(payload["pid"]))) or age > stale_after_seconds


def acquire_file_lock(target_path: str, timeout_seconds: int = 10, stale_after_seconds: int = 1800) -> LockHandle:
    """Acquire an exclusive file lock with stale lock reclaim."""
    lock_path = Path(f"{target_path}.lock")
    started = time.monotonic()
    attempt = 0
    while True:
        try:
            fd = os.open(str(lock_path), os.O_CREAT | os.O_EXCL | os.O_WRONLY)
            payload = {"pid": os.getpid(), "created_ts": time.time(), "created_at": now_iso_local()}
            os.write(fd, json.dumps(payload).encode("utf-8"))
            os.close(fd)
            return LockHandle(target_path=target_path, lock_path=str(lock_path))
        except FileExistsError:
            if _lock_is_stale(lock_path, stale_after_seconds):
                try:
                    lock_path.unlink(missing_ok=True)
                except OSError:
                    pass
            if time.monotonic() - started >= timeout_seconds:
                raise FileLockTimeoutError(str(lock_path), timeout_seconds=timeout_seconds, attempts=attempt)
            attempt += 1
            time.sleep(min(1.0, 0.05 * attempt))


def release_file_lock(handle: LockHandle) -> None:
    """Release lock file."""
    Path(handle.lock_path).unlink(missing_ok=True)


def _atomic_write_json(path: Path, payload: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, temp_path = tempfile.mkstemp(prefix=f"{path.name}.", suffix=".tmp", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as file_handle:
            json.dump(payload, file_handle, indent=2)
        os.replace(temp_path, path)
    finally:
        if os.path.exists(temp_path):
            os.unlink(temp_path)


def _read_json(path: Path, default: Any) -> Any:
    if not path.exists():
        return default
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError:
        logger.warning("store: corrupt JSON file %s; using default", path)
        return default


def _read_jsonl(path: Path) -> list[dict[str, Any]]:
    rows: list[dict[str, Any]] = []
    if not path.exists():
        return rows
    for line in path.read_text(encoding="utf-8").splitlines():
        if not line.strip():
            continue
        try:
            raw = json.loads(line)
        except json.JSONDecodeError:
            continue
        if isinstance(raw, dict):
            rows.append(raw)
    return rows


def _append_jsonl(path: Path, row: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    lock = acquire_file_lock(str(path))
    try:
        with path.open("a", encoding="utf-8") as handle:
            handle.write(json.dumps(row) + "\n")
    finally:
        release_file_lock(lock)


class LocalStore:
    """Offline persistence under the data root, mirroring the hosted tables."""

    mock = True

    def __init__(self, data_root: str) -> None:
        self.root = Path(data_root) / "store"
        self.users_path = self.root / "users.json"
        self.conversations_path = self.root / "conversations.jsonl"
        self.memories_path = self.root / "memory_embeddings.jsonl"
        self.engagement_path = self.root / "engagement_metrics.json"

    def initialize(self) -> None:
        self.root.mkdir(parents=True, exist_ok=True)

    def _update_json(self, path: Path, default: Any, mutate: Callable[[Any], None]) -> None:
        self.root.mkdir(parents=True, exist_ok=True)
        lock = acquire_file_lock(str(path))
        try:
            payload = _read_json(path, default)
            mutate(payload)
            _atomic_write_json(path, payload)
        finally:
            release_file_lock(lock)

    def create_user(self, user_id: str) -> None:
        def _mutate(users: dict[str, Any]) -> None:
            users.setdefault(
                user_id,
                {
                    "id": user_id,
                    "created_at": now_iso_local(),
                    "personality_settings": {},
                    "emotional_state": {"attention": 1.0, "connection": 1.0, "growth": 1.0, "play": 1.0},
                },
            )

        self._update_json(self.users_path, {}, _mutate)

    def load_user(self, user_id: str) -> dict[str, Any] | None:
        return _read_json(self.users_path, {}).get(user_id)

    def insert_conversation(self, user_id: str, role: str, text: str) -> None:
        _append_jsonl(
            self.conversations_path,
            {"user_id": user_id, "timestamp": now_iso_local(), "role": role, "text": text, "importance_marker": 0},
        )

    def load_conversations(self, user_id: str) -> list[dict[str, Any]]:
        return [row for row in _read_jsonl(self.conversations_path) if row.get("user_id") == user_id]

    def update_emotional_state(self, user_id: str, state: dict[str, float]) -> None:
        def _mutate(users: dict[str, Any]) -> None:
            row = users.setdefault(user_id, {"id": user_id, "created_at": now_iso_local(), "personality_settings": {}})
            row["emotional_state"] = dict(state)

        self._update_json(self.users_path, {}, _mutate)

    def insert_memory(self, memory: MemoryRecord) -> None:
        _append_jsonl(self.memories_path, memory.to_row())

    def match_memories(self, user_id: str, embedding: list[float], threshold: float = 0.5, count: int = 5) -> list[MemoryRecord]:
        scored: list[tuple[float, dict[str, Any]]] = []
        for row in _read_jsonl(self.memories_path):
            if row.get("user_id") != user_id:
                continue
            similarity = cosine_similarity(embedding, [float(v) for v in row.get("embedding") or []])
            if similarity > threshold:
                scored.append((similarity, row))
        scored.sort(key=lambda item: item[0], reverse=True)
        return [MemoryRecord.from_row({**row, "similarity": sim}) for sim, row in scored[: max(0, count)]]

    def list_memories(self, user_id: str, limit: int = 8) -> list[MemoryRecord]:
        rows = [row for row in _read_jsonl(self.memories_path) if row.get("user_id") == user_id]
        rows.sort(key=lambda row: float(row.get("emotional_impact") or 0.0), reverse=True)
        return [MemoryRecord.from_row(row) for row in rows[: max(0, limit)]]

    def upsert_engagement(self, user_id: str, streak_count: int) -> None:
        def _mutate(rows: dict[str, Any]) -> None:
            rows[user_id] = {"user_id": user_id, "last_interaction": now_iso_local(), "streak_count": streak_count}

        self._update_json(self.engagement_path, {}, _mutate)


class LocalKeyValueStore:
    """String key/value settings persisted to one JSON file, read on startup and written on every change."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._values: dict[str, str] = {}
        self.reload()

    def reload(self) -> None:
        raw = _read_json(self.path, {})
        self._values = {str(k): str(v) for k, v in raw.items()} if isinstance(raw, dict) else {}

    def get(self, key: str, default: str | None = None) -> str | None:
        return self._values.get(key, default)

    def get_int(self, key: str, default: int = 0) -> int:
        raw = self._values.get(key)
        if raw is None:
            return default
        try:
            return int(raw)
        except ValueError:
            logger.warning("local storage: %s is not an integer (%r); using %s", key, raw, default)
            return default

    def set(self, key: str, value: object) -> None:
        self.set_many({key: value})

    def set_many(self, values: dict[str, object]) -> None:
        self._values.update({key: str(value) for key, value in values.items()})
        self.path.parent.mkdir(parents=True, exist_ok=True)
        lock = acquire_file_lock(str(self.path))
        try:
            _atomic_write_json(self.path, self._values)
        finally:
            release_file_lock(lock)
