from __future__ import annotations

import json
from pathlib import Path

import pytest

from companion_core.llm.embeddings import cosine_similarity
from companion_core.memory.models import MemoryRecord, Message
from companion_core.memory.store import FileLockTimeoutError, LocalKeyValueStore, LocalStore, acquire_file_lock, release_file_lock


def _memory(user_id: str, text: str, embedding: list[float], impact: float = 0.0) -> MemoryRecord:
    return MemoryRecord(user_id=user_id, text=text, embedding=embedding, emotional_impact=impact)


def test_match_memories_ranks_filters_and_limits(tmp_path: Path) -> None:
    store = LocalStore(str(tmp_path))
    store.initialize()
    store.insert_memory(_memory("u1", "exact", [1.0, 0.0, 0.0]))
    store.insert_memory(_memory("u1", "close", [0.9, 0.1, 0.0]))
    store.insert_memory(_memory("u1", "orthogonal", [0.0, 1.0, 0.0]))
    store.insert_memory(_memory("u2", "someone else", [1.0, 0.0, 0.0]))

    matches = store.match_memories("u1", [1.0, 0.0, 0.0], threshold=0.5, count=5)
    assert [m.text for m in matches] == ["exact", "close"]
    assert matches[0].similarity == pytest.approx(1.0)
    assert matches[0].similarity >= matches[1].similarity

    limited = store.match_memories("u1", [1.0, 0.0, 0.0], threshold=0.5, count=1)
    assert [m.text for m in limited] == ["exact"]


def test_zero_vector_never_matches(tmp_path: Path) -> None:
    store = LocalStore(str(tmp_path))
    store.insert_memory(_memory("u1", "blank", [0.0, 0.0, 0.0]))
    assert store.match_memories("u1", [0.0, 0.0, 0.0], threshold=0.0) == []
    assert cosine_similarity([0.0, 0.0], [1.0, 0.0]) == 0.0
    assert cosine_similarity([1.0], [1.0, 0.0]) == 0.0


def test_list_memories_orders_by_impact(tmp_path: Path) -> None:
    store = LocalStore(str(tmp_path))
    store.insert_memory(_memory("u1", "meh", [1.0], impact=0.1))
    store.insert_memory(_memory("u1", "best day", [1.0], impact=0.9))
    store.insert_memory(_memory("u1", "rough", [1.0], impact=-0.4))
    assert [m.text for m in store.list_memories("u1")] == ["best day", "meh", "rough"]
    assert [m.text for m in store.list_memories("u1", limit=1)] == ["best day"]


def test_users_and_conversations_rows(tmp_path: Path) -> None:
    store = LocalStore(str(tmp_path))
    store.create_user("u1")
    store.update_emotional_state("u1", {"attention": 0.6, "connection": 0.52, "growth": 0.51, "play": 0.5})
    store.create_user("u1")
    assert store.load_user("u1")["emotional_state"]["attention"] == 0.6

    store.insert_conversation("u1", "user", "hello")
    store.insert_conversation("u2", "user", "other")
    rows = store.load_conversations("u1")
    assert [(r["role"], r["text"]) for r in rows] == [("user", "hello")]

    store.upsert_engagement("u1", 2)
    store.upsert_engagement("u1", 3)
    metrics = json.loads(store.engagement_path.read_text(encoding="utf-8"))
    assert metrics["u1"]["streak_count"] == 3


def test_memory_record_validation_and_rows() -> None:
    with pytest.raises(ValueError):
        MemoryRecord(user_id="u1", text="x", source="activity")
    with pytest.raises(ValueError):
        MemoryRecord(user_id="u1", text="x", emotional_impact=1.5)
    row = {"id": "m1", "user_id": "u1", "text": "t", "embedding": "[0.5,0.25]", "emotional_impact": 3, "similarity": 0.8}
    record = MemoryRecord.from_row(row)
    assert record.embedding == [0.5, 0.25]
    assert record.emotional_impact == 1.0
    assert record.similarity == 0.8
    assert MemoryRecord.from_row(record.to_row()).text == "t"


def test_message_roles() -> None:
    assert Message.create("user", "hi").as_chat() == {"role": "user", "content": "hi"}
    with pytest.raises(ValueError):
        Message.create("tool", "nope")


def test_key_value_store_persists_strings(tmp_path: Path) -> None:
    path = tmp_path / "local_storage.json"
    storage = LocalKeyValueStore(path)
    storage.set_many({"currentStreak": 3, "lastLogin": "2024-03-01"})
    reloaded = LocalKeyValueStore(path)
    assert reloaded.get("currentStreak") == "3"
    assert reloaded.get_int("currentStreak") == 3
    assert reloaded.get("lastLogin") == "2024-03-01"
    assert json.loads(path.read_text(encoding="utf-8")) == {"currentStreak": "3", "lastLogin": "2024-03-01"}


def test_key_value_store_bad_int_uses_default(tmp_path: Path, caplog) -> None:
    path = tmp_path / "local_storage.json"
    path.write_text(json.dumps({"currentStreak": "lots"}), encoding="utf-8")
    storage = LocalKeyValueStore(path)
    assert storage.get_int("currentStreak", 0) == 0
    assert "not an integer" in caplog.text


def test_key_value_store_survives_corrupt_file(tmp_path: Path) -> None:
    path = tmp_path / "local_storage.json"
    path.write_text("{not json", encoding="utf-8")
    storage = LocalKeyValueStore(path)
    assert storage.get("currentStreak") is None
    assert storage.get_int("currentStreak", 0) == 0


def test_lock_timeout_when_held(tmp_path: Path) -> None:
    target = str(tmp_path / "users.json")
    handle = acquire_file_lock(target)
    try:
        with pytest.raises(FileLockTimeoutError) as exc:
            acquire_file_lock(target, timeout_seconds=1, stale_after_seconds=9999)
        assert exc.value.error["code"] == "lock_timeout"
    finally:
        release_file_lock(handle)


def test_stale_lock_reclaimed(tmp_path: Path) -> None:
    target = tmp_path / "users.json"
    lock_path = Path(f"{target}.lock")
    lock_path.write_text(json.dumps({"created_at": "2000-01-01T00:00:00+00:00"}), encoding="utf-8")
    handle = acquire_file_lock(str(target), timeout_seconds=1, stale_after_seconds=1)
    release_file_lock(handle)
    assert not lock_path.exists()
