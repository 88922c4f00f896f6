from __future__ import annotations

import json
import urllib.error

import pytest

import companion_core.http_client as http_client
import companion_core.llm.client as llm_client
import companion_core.llm.embeddings as embeddings
import companion_core.memory.supabase as supabase
import companion_core.speech.synthesis as synthesis
import companion_core.speech.transcription as transcription
from companion_core.config import read_config_snapshot
from companion_core.http_client import ServiceError, multipart_payload, request_json
from companion_core.memory.models import MemoryRecord


def _config(**overrides: str):
    snapshot = read_config_snapshot(
        "dev",
        {
            "openai.api_key": "sk-test",
            "elevenlabs.api_key": "xi-test",
            "supabase.url": "https://abc.supabase.co",
            "supabase.anon_key": "anon-test",
            **overrides,
        },
    )
    assert snapshot.effective_config is not None, snapshot.issues
    return snapshot.effective_config


def test_chat_completion_payload_and_reply(monkeypatch) -> None:
    captured: dict[str, object] = {}

    def _fake_request_json(service, url, payload=None, **kwargs):
        captured.update({"service": service, "url": url, "payload": payload, **kwargs})
        return {"choices": [{"message": {"role": "assistant", "content": "  Oh, hi!  "}}]}

    monkeypatch.setattr(llm_client, "request_json", _fake_request_json)
    client = llm_client.OpenAIChatClient(_config())
    reply = client.complete([{"role": "user", "content": "hello"}])

    assert reply == "Oh, hi!"
    assert captured["url"] == "https://api.openai.com/v1/chat/completions"
    assert captured["payload"] == {
        "model": "gpt-4o",
        "messages": [{"role": "user", "content": "hello"}],
        "temperature": 0.7,
        "max_tokens": 1000,
    }
    assert captured["headers"] == {"Authorization": "Bearer sk-test"}


@pytest.mark.parametrize(
    ("body", "code"),
    [
        ({"choices": []}, "invalid_response"),
        ({"choices": [{"message": {"content": ""}}]}, "empty_response"),
        (None, "invalid_response"),
        ({"choices": [{"message": None}]}, "invalid_response"),
        ({"choices": ["text"]}, "invalid_response"),
    ],
)
def test_chat_completion_rejects_unusable_bodies(monkeypatch, body, code) -> None:
    monkeypatch.setattr(llm_client, "request_json", lambda *args, **kwargs: body)
    client = llm_client.OpenAIChatClient(_config())
    with pytest.raises(ServiceError) as exc:
        client.complete([{"role": "user", "content": "hello"}])
    assert exc.value.code == code


def test_check_reachable_reports_error_code(monkeypatch) -> None:
    def _fail(*args, **kwargs):
        raise ServiceError("openai", "transport_error", "down")

    monkeypatch.setattr(llm_client, "request_json", _fail)
    assert llm_client.OpenAIChatClient(_config()).check_reachable() == (False, "transport_error")


def test_embedding_request(monkeypatch) -> None:
    captured: dict[str, object] = {}

    def _fake_request_json(service, url, payload=None, **kwargs):
        captured.update({"url": url, "payload": payload})
        return {"data": [{"embedding": [0.1, 0.2, 0.3]}]}

    monkeypatch.setattr(embeddings, "request_json", _fake_request_json)
    vector = embeddings.OpenAIEmbeddingClient(_config()).embed("I like tea")
    assert vector == [0.1, 0.2, 0.3]
    assert captured["url"] == "https://api.openai.com/v1/embeddings"
    assert captured["payload"] == {"model": "text-embedding-3-small", "input": "I like tea"}


def test_mock_embedding_is_zero_vector() -> None:
    vector = embeddings.MockEmbeddingClient(4).embed("anything")
    assert vector == [0.0, 0.0, 0.0, 0.0]


def test_whisper_upload(monkeypatch) -> None:
    captured: dict[str, object] = {}

    def _fake_request_bytes(service, url, **kwargs):
        captured.update({"url": url, **kwargs})
        return 200, json.dumps({"text": " hello from the mic \n"}).encode("utf-8")

    monkeypatch.setattr(transcription, "request_bytes", _fake_request_bytes)
    text = transcription.WhisperTranscriber(_config()).transcribe(b"RIFFdata", "clip.wav")

    assert text == "hello from the mic"
    assert captured["url"] == "https://api.openai.com/v1/audio/transcriptions"
    assert captured["headers"]["Content-Type"].startswith("multipart/form-data; boundary=")
    body = captured["data"]
    assert b'name="model"' in body
    assert b"whisper-1" in body
    assert b'filename="clip.wav"' in body
    assert b"RIFFdata" in body


def test_whisper_non_json_is_service_error(monkeypatch) -> None:
    monkeypatch.setattr(transcription, "request_bytes", lambda *args, **kwargs: (200, b"<html>"))
    with pytest.raises(ServiceError) as exc:
        transcription.WhisperTranscriber(_config()).transcribe(b"x")
    assert exc.value.code == "invalid_response"


def test_elevenlabs_request(monkeypatch) -> None:
    captured: dict[str, object] = {}

    def _fake_request_bytes(service, url, **kwargs):
        captured.update({"service": service, "url": url, **kwargs})
        return 200, b"ID3audio"

    monkeypatch.setattr(synthesis, "request_bytes", _fake_request_bytes)
    audio = synthesis.ElevenLabsSynthesizer(_config()).synthesize("Hello!")

    assert audio == b"ID3audio"
    assert captured["url"] == "https://api.elevenlabs.io/v1/text-to-speech/EXAVITQu4vr4xnSDxMaL"
    assert captured["headers"]["xi-api-key"] == "xi-test"
    assert captured["headers"]["Accept"] == "audio/mpeg"
    assert json.loads(captured["data"]) == {
        "text": "Hello!",
        "model_id": "eleven_monolingual_v1",
        "voice_settings": {"stability": 0.5, "similarity_boost": 0.75},
    }


def test_elevenlabs_empty_audio_is_error(monkeypatch) -> None:
    monkeypatch.setattr(synthesis, "request_bytes", lambda *args, **kwargs: (200, b""))
    with pytest.raises(ServiceError) as exc:
        synthesis.ElevenLabsSynthesizer(_config()).synthesize("Hello!")
    assert exc.value.code == "empty_response"


def test_supabase_match_memories_rpc(monkeypatch) -> None:
    captured: dict[str, object] = {}

    def _fake_request_json(service, url, payload=None, **kwargs):
        captured.update({"url": url, "payload": payload, **kwargs})
        return [{"id": "m1", "text": "Likes tea", "similarity": 0.91, "embedding": "[1,0]", "emotional_impact": 0.4}]

    monkeypatch.setattr(supabase, "request_json", _fake_request_json)
    store = supabase.SupabaseStore(_config())
    matches = store.match_memories("u1", [1.0, 0.0], threshold=0.5, count=5)

    assert captured["url"] == "https://abc.supabase.co/rest/v1/rpc/match_memories"
    assert captured["payload"] == {"query_embedding": [1.0, 0.0], "match_threshold": 0.5, "match_count": 5, "p_user_id": "u1"}
    assert captured["headers"]["apikey"] == "anon-test"
    assert captured["headers"]["Authorization"] == "Bearer anon-test"
    assert len(matches) == 1
    assert matches[0].user_id == "u1"
    assert matches[0].similarity == 0.91


def test_supabase_rejects_non_list_rpc_result(monkeypatch) -> None:
    monkeypatch.setattr(supabase, "request_json", lambda *args, **kwargs: {"message": "oops"})
    with pytest.raises(ServiceError):
        supabase.SupabaseStore(_config()).match_memories("u1", [1.0])


def test_supabase_writes(monkeypatch) -> None:
    calls: list[dict[str, object]] = []

    def _fake_request_json(service, url, payload=None, **kwargs):
        calls.append({"url": url, "payload": payload, **kwargs})
        return None

    monkeypatch.setattr(supabase, "request_json", _fake_request_json)
    store = supabase.SupabaseStore(_config())
    store.update_emotional_state("u1", {"attention": 0.6, "connection": 0.5, "growth": 0.5, "play": 0.5})
    store.insert_memory(MemoryRecord(user_id="u1", text="t", embedding=[0.1]))
    store.upsert_engagement("u1", 3)

    patch, memory, engagement = calls
    assert patch["method"] == "PATCH"
    assert patch["url"] == "https://abc.supabase.co/rest/v1/users?id=eq.u1"
    assert patch["payload"] == {"emotional_state": {"attention": 0.6, "connection": 0.5, "growth": 0.5, "play": 0.5}}
    assert "id" not in memory["payload"][0]
    assert memory["payload"][0]["memory_type"] == "episodic"
    assert engagement["url"] == "https://abc.supabase.co/rest/v1/engagement_metrics?on_conflict=user_id"
    assert "merge-duplicates" in engagement["headers"]["Prefer"]


def test_transport_failure_becomes_service_error(monkeypatch) -> None:
    def _refuse(*args, **kwargs):
        raise urllib.error.URLError("connection refused")

    monkeypatch.setattr(http_client.urllib.request, "urlopen", _refuse)
    with pytest.raises(ServiceError) as exc:
        request_json("openai", "https://api.openai.com/v1/models", method="GET")
    assert exc.value.error["service"] == "openai"
    assert exc.value.code == "transport_error"
    assert exc.value.error["status"] is None


def test_multipart_payload_layout() -> None:
    body, boundary = multipart_payload({"model": "whisper-1"}, "file", "a.webm", b"\x00\x01")
    assert body.startswith(f"--{boundary}\r\n".encode())
    assert body.endswith(f"--{boundary}--\r\n".encode())
    assert b'name="file"; filename="a.webm"' in body


@pytest.mark.parametrize(
    "body",
    [{"data": [{"embedding": [None, 1.0]}]}, {"data": [{"embedding": ["x", 1.0]}]}, {"data": [{"embedding": None}]}, {"data": "nope"}],
)
def test_embedding_rejects_malformed_vectors(monkeypatch, body) -> None:
    monkeypatch.setattr(embeddings, "request_json", lambda *args, **kwargs: body)
    with pytest.raises(ServiceError) as exc:
        embeddings.OpenAIEmbeddingClient(_config()).embed("I like tea")
    assert exc.value.code == "invalid_response"


@pytest.mark.parametrize(
    "row",
    [
        {"id": "m1", "text": "t", "similarity": {"value": 0.9}},
        {"id": "m1", "text": "t", "emotional_impact": {"value": 0.4}},
        {"id": "m1", "text": "t", "embedding": "[a,b]"},
    ],
)
def test_supabase_malformed_memory_rows_are_service_errors(monkeypatch, row) -> None:
    monkeypatch.setattr(supabase, "request_json", lambda *args, **kwargs: [row])
    store = supabase.SupabaseStore(_config())
    with pytest.raises(ServiceError) as exc:
        store.match_memories("u1", [1.0])
    assert exc.value.code == "invalid_response"
    with pytest.raises(ServiceError):
        store.list_memories("u1")
