from __future__ import annotations

import os
from pathlib import Path

import pytest

from companion_core.config import read_config_snapshot
from companion_core.http_client import ServiceError
from companion_core.orchestrator import build_context


_CREDENTIAL_ENV = ("OPENAI_API_KEY", "ELEVENLABS_API_KEY", "SUPABASE_URL", "SUPABASE_ANON_KEY")


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch) -> None:
    for name in list(os.environ):
        if name in _CREDENTIAL_ENV or name.startswith("COMPANION_"):
            monkeypatch.delenv(name, raising=False)


class FakeChat:
    mock = False

    def __init__(self, reply: str = "Oh, I love hearing about your day!", fail: bool = False) -> None:
        self.reply = reply
        self.fail = fail
        self.calls: list[list[dict[str, str]]] = []

    def check_reachable(self, timeout_seconds: int = 3) -> tuple[bool, str]:
        return True, "ok"

    def complete(self, messages: list[dict[str, str]]) -> str:
        self.calls.append(messages)
        if self.fail:
            raise ServiceError("openai", "transport_error", "connection refused")
        return self.reply


class FakeEmbeddings:
    mock = False

    def __init__(self, vector: list[float] | None = None, fail: bool = False) -> None:
        self.vector = vector or [1.0, 0.0, 0.0]
        self.fail = fail
        self.dimension = len(self.vector)
        self.calls: list[str] = []

    def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        if self.fail:
            raise ServiceError("openai", "http_error", "rate limited", status=429)
        return list(self.vector)


class FakeSynthesizer:
    mock = False

    def __init__(self, audio: bytes | None = b"ID3fake-mp3", fail: bool = False) -> None:
        self.audio = audio
        self.fail = fail
        self.calls: list[str] = []

    def synthesize(self, text: str, voice_id: str | None = None) -> bytes | None:
        self.calls.append(text)
        if self.fail:
            raise ServiceError("elevenlabs", "http_error", "quota exceeded", status=401)
        return self.audio


@pytest.fixture
def make_context(tmp_path: Path):
    def _make(**overrides: str):
        cli_overrides = {
            "paths.data_root": str(tmp_path / "data"),
            "audio.output_dir": str(tmp_path / "data" / "audio"),
            **overrides,
        }
        snapshot = read_config_snapshot("dev", cli_overrides)
        assert snapshot.effective_config is not None, snapshot.issues
        return build_context(snapshot.effective_config, snapshot)

    return _make
