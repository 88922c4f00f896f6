"""Configuration loading and validation."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any


_PLACEHOLDER_VALUES = {
    "",
    "your_openai_api_key",
    "your_elevenlabs_api_key",
    "your_supabase_anon_key",
    "https://example.supabase.co",
}


@dataclass(slots=True)
class AppSection:
    env: str


@dataclass(slots=True)
class PathsSection:
    data_root: str
    log_dir: str


@dataclass(slots=True)
class OpenAISection:
    api_key: str | None
    base_url: str
    chat_model: str
    embedding_model: str
    transcription_model: str
    timeout_seconds: int
    temperature: float = 0.7
    max_tokens: int = 1000
    embedding_dim: int = 1536


@dataclass(slots=True)
class ElevenLabsSection:
    api_key: str | None
    base_url: str
    voice_id: str
    model_id: str
    timeout_seconds: int
    stability: float = 0.5
    similarity_boost: float = 0.75


@dataclass(slots=True)
class SupabaseSection:
    url: str | None
    anon_key: str | None
    timeout_seconds: int
    match_threshold: float = 0.5
    match_count: int = 5


@dataclass(slots=True)
class AudioSection:
    output_dir: str
    player_command: str | None = None


@dataclass(slots=True)
class CompanionSection:
    initial_state: dict[str, float]
    history_window: int = 10
    memory_length_threshold: int = 100
    max_games_per_day: int = 5


@dataclass(slots=True)
class LoggingSection:
    level: str


@dataclass(slots=True)
class AppConfig:
    app: AppSection
    paths: PathsSection
    openai: OpenAISection
    elevenlabs: ElevenLabsSection
    supabase: SupabaseSection
    companion: CompanionSection
    logging: LoggingSection
    audio: AudioSection = field(default_factory=lambda: AudioSection(output_dir="./data/audio", player_command=None))


@dataclass(slots=True)
class ConfigSnapshot:
    path: str
    exists: bool
    valid: bool
    issues: list[str]
    warnings: list[str]
    effective_config: AppConfig | None
    effective_raw: dict[str, Any] | None = None


def is_configured(value: str | None) -> bool:
    """True when a credential is present and not one of the sample placeholders."""
    if value is None:
        return False
    return value.strip() not in _PLACEHOLDER_VALUES


def _repo_root() -> Path:
    return Path(__file__).resolve().parents[2]


def _default_config_path(env: str) -> Path:
    return _repo_root() / "config" / f"{env}.json"


def _local_config_path() -> Path:
    return _repo_root() / "config" / "local.json"


def _deep_update(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    out = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(out.get(key), dict):
            out[key] = _deep_update(out[key], value)
        else:
            out[key] = value
    return out


def _parse_override_value(raw: str) -> Any:
    lowered = raw.strip().lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    if lowered == "null":
        return None
    try:
        if "." in raw:
            return float(raw)
        return int(raw)
    except ValueError:
        return raw


def _set_path(target: dict[str, Any], dotted: str, value: Any) -> None:
    parts = [p for p in dotted.split(".") if p]
    node: dict[str, Any] = target
    for part in parts[:-1]:
        current = node.get(part)
        if not isinstance(current, dict):
            current = {}
            node[part] = current
        node = current
    if parts:
        node[parts[-1]] = value


# Secrets stay strings even when they look numeric.
_STRING_PATHS = {
    "openai.api_key",
    "elevenlabs.api_key",
    "elevenlabs.voice_id",
    "supabase.url",
    "supabase.anon_key",
}


def _env_overrides() -> dict[str, Any]:
    mapping = {
        "OPENAI_API_KEY": "openai.api_key",
        "ELEVENLABS_API_KEY": "elevenlabs.api_key",
        "SUPABASE_URL": "supabase.url",
        "SUPABASE_ANON_KEY": "supabase.anon_key",
        "COMPANION_OPENAI_API_KEY": "openai.api_key",
        "COMPANION_OPENAI_BASE_URL": "openai.base_url",
        "COMPANION_OPENAI_CHAT_MODEL": "openai.chat_model",
        "COMPANION_ELEVENLABS_API_KEY": "elevenlabs.api_key",
        "COMPANION_ELEVENLABS_VOICE_ID": "elevenlabs.voice_id",
        "COMPANION_SUPABASE_URL": "supabase.url",
        "COMPANION_SUPABASE_ANON_KEY": "supabase.anon_key",
        "COMPANION_DATA_PATH": "paths.data_root",
        "COMPANION_AUDIO_PLAYER": "audio.player_command",
        "COMPANION_LOG_LEVEL": "logging.level",
    }
    out: dict[str, Any] = {}
    for env_name, cfg_path in mapping.items():
        raw = os.getenv(env_name)
        if raw is None:
            continue
        value = raw if cfg_path in _STRING_PATHS else _parse_override_value(raw)
        _set_path(out, cfg_path, value)
    return out


def _validate(raw: dict[str, Any]) -> tuple[list[str], list[str]]:
    issues: list[str] = []
    warnings: list[str] = []
    top_required = {"app", "paths", "openai", "elevenlabs", "supabase", "companion", "logging"}
    top_optional = {"audio"}
    top_unknown = set(raw.keys()) - top_required - top_optional
    if top_unknown:
        issues.append(f"Unknown top-level keys: {', '.join(sorted(top_unknown))}")
    for key in sorted(top_required):
        if key not in raw:
            issues.append(f"Missing required section: {key}")

    openai = raw.get("openai", {})
    if isinstance(openai, dict):
        for key in ("chat_model", "embedding_model", "transcription_model"):
            if not str(openai.get(key, "")).strip():
                issues.append(f"openai.{key} is required and cannot be empty")
        if not isinstance(openai.get("timeout_seconds"), int):
            issues.append("openai.timeout_seconds must be an integer")
        if not isinstance(openai.get("temperature", 0.7), (int, float)):
            issues.append("openai.temperature must be a number")
        dim = openai.get("embedding_dim", 1536)
        if not isinstance(dim, int) or dim < 1:
            issues.append("openai.embedding_dim must be a positive integer")
        if not is_configured(openai.get("api_key")):
            warnings.append("openai.api_key is not configured; transcription, completion and embeddings run in mock mode")
    else:
        issues.append("openai must be an object")

    eleven = raw.get("elevenlabs", {})
    if isinstance(eleven, dict):
        if not str(eleven.get("voice_id", "")).strip():
            issues.append("elevenlabs.voice_id is required and cannot be empty")
        if not isinstance(eleven.get("timeout_seconds"), int):
            issues.append("elevenlabs.timeout_seconds must be an integer")
        if not is_configured(eleven.get("api_key")):
            warnings.append("elevenlabs.api_key is not configured; speech synthesis is disabled")
    else:
        issues.append("elevenlabs must be an object")

    supabase = raw.get("supabase", {})
    if isinstance(supabase, dict):
        if not isinstance(supabase.get("timeout_seconds"), int):
            issues.append("supabase.timeout_seconds must be an integer")
        threshold = supabase.get("match_threshold", 0.5)
        if not isinstance(threshold, (int, float)) or not 0.0 <= float(threshold) <= 1.0:
            issues.append("supabase.match_threshold must be a number between 0 and 1")
        count = supabase.get("match_count", 5)
        if not isinstance(count, int) or count < 1 or count > 50:
            issues.append("supabase.match_count must be an integer between 1 and 50")
        if not (is_configured(supabase.get("url")) and is_configured(supabase.get("anon_key"))):
            warnings.append("supabase url/anon_key is not configured; persistence uses the local data root")
    else:
        issues.append("supabase must be an object")

    companion = raw.get("companion", {})
    if isinstance(companion, dict):
        initial = companion.get("initial_state", {})
        if not isinstance(initial, dict):
            issues.append("companion.initial_state must be an object")
        else:
            for name in ("attention", "connection", "growth", "play"):
                value = initial.get(name, 0.5)
                if not isinstance(value, (int, float)) or not 0.0 <= float(value) <= 1.0:
                    issues.append(f"companion.initial_state.{name} must be a number between 0 and 1")
        for key in ("history_window", "memory_length_threshold", "max_games_per_day"):
            value = companion.get(key)
            if value is not None and (not isinstance(value, int) or value < 0):
                issues.append(f"companion.{key} must be a non-negative integer")
    else:
        issues.append("companion must be an object")

    audio = raw.get("audio", {})
    if not isinstance(audio, dict):
        issues.append("audio must be an object when provided")

    return issues, warnings


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _to_config(raw: dict[str, Any]) -> AppConfig:
    openai = raw["openai"]
    eleven = raw["elevenlabs"]
    supabase = raw["supabase"]
    companion = raw["companion"]
    audio_raw = raw.get("audio", {}) if isinstance(raw.get("audio", {}), dict) else {}
    initial = companion.get("initial_state", {})
    data_root = str(raw["paths"]["data_root"])

    return AppConfig(
        app=AppSection(env=str(raw["app"]["env"])),
        paths=PathsSection(data_root=data_root, log_dir=str(raw["paths"]["log_dir"])),
        openai=OpenAISection(
            api_key=_optional_str(openai.get("api_key")),
            base_url=str(openai.get("base_url", "https://api.openai.com/v1")),
            chat_model=str(openai["chat_model"]),
            embedding_model=str(openai["embedding_model"]),
            transcription_model=str(openai["transcription_model"]),
            timeout_seconds=int(openai["timeout_seconds"]),
            temperature=float(openai.get("temperature", 0.7)),
            max_tokens=int(openai.get("max_tokens", 1000)),
            embedding_dim=int(openai.get("embedding_dim", 1536)),
        ),
        elevenlabs=ElevenLabsSection(
            api_key=_optional_str(eleven.get("api_key")),
            base_url=str(eleven.get("base_url", "https://api.elevenlabs.io/v1")),
            voice_id=str(eleven["voice_id"]),
            model_id=str(eleven.get("model_id", "eleven_monolingual_v1")),
            timeout_seconds=int(eleven["timeout_seconds"]),
            stability=float(eleven.get("stability", 0.5)),
            similarity_boost=float(eleven.get("similarity_boost", 0.75)),
        ),
        supabase=SupabaseSection(
            url=_optional_str(supabase.get("url")),
            anon_key=_optional_str(supabase.get("anon_key")),
            timeout_seconds=int(supabase["timeout_seconds"]),
            match_threshold=float(supabase.get("match_threshold", 0.5)),
            match_count=int(supabase.get("match_count", 5)),
        ),
        companion=CompanionSection(
            initial_state={name: float(initial.get(name, 0.5)) for name in ("attention", "connection", "growth", "play")},
            history_window=int(companion.get("history_window", 10)),
            memory_length_threshold=int(companion.get("memory_length_threshold", 100)),
            max_games_per_day=int(companion.get("max_games_per_day", 5)),
        ),
        logging=LoggingSection(level=str(raw["logging"]["level"])),
        audio=AudioSection(
            output_dir=str(audio_raw.get("output_dir") or str(Path(data_root) / "audio")),
            player_command=_optional_str(audio_raw.get("player_command")),
        ),
    )


def _bootstrap_config(env: str) -> AppConfig:
    """Minimal runtime-safe config used when file config is invalid."""
    return AppConfig(
        app=AppSection(env=env),
        paths=PathsSection(data_root="./data", log_dir="data/logs"),
        openai=OpenAISection(
            api_key=None,
            base_url="https://api.openai.com/v1",
            chat_model="gpt-4o",
            embedding_model="text-embedding-3-small",
            transcription_model="whisper-1",
            timeout_seconds=30,
        ),
        elevenlabs=ElevenLabsSection(
            api_key=None,
            base_url="https://api.elevenlabs.io/v1",
            voice_id="EXAVITQu4vr4xnSDxMaL",
            model_id="eleven_monolingual_v1",
            timeout_seconds=30,
        ),
        supabase=SupabaseSection(url=None, anon_key=None, timeout_seconds=10),
        companion=CompanionSection(initial_state={"attention": 0.5, "connection": 0.5, "growth": 0.5, "play": 0.5}),
        logging=LoggingSection(level="info"),
        audio=AudioSection(output_dir="./data/audio", player_command=None),
    )


def _invalid_snapshot(path: Path, exists: bool, issues: list[str]) -> ConfigSnapshot:
    return ConfigSnapshot(
        path=str(path),
        exists=exists,
        valid=False,
        issues=issues,
        warnings=[],
        effective_config=None,
        effective_raw=None,
    )


def read_config_snapshot(env: str, cli_overrides: dict[str, str] | None = None) -> ConfigSnapshot:
    """Read config file and return validity snapshot."""
    path = _default_config_path(env)
    warnings: list[str] = []
    if not path.exists():
        return _invalid_snapshot(path, False, [f"Config file does not exist: {path}"])

    try:
        file_raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        return _invalid_snapshot(path, True, [f"Failed to parse config JSON: {exc}"])
    if not isinstance(file_raw, dict):
        return _invalid_snapshot(path, True, ["Top-level config must be an object"])

    merged = dict(file_raw)
    local_path = _local_config_path()
    if local_path.exists():
        try:
            local_raw = json.loads(local_path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            return _invalid_snapshot(path, True, [f"Failed to parse local config JSON ({local_path}): {exc}"])
        if not isinstance(local_raw, dict):
            return _invalid_snapshot(path, True, [f"Local config must be a JSON object: {local_path}"])
        merged = _deep_update(merged, local_raw)
        warnings.append(f"Applied local config overrides from {local_path}")
    merged = _deep_update(merged, _env_overrides())
    if cli_overrides:
        cli_tree: dict[str, Any] = {}
        for key, value in cli_overrides.items():
            parsed = value if key in _STRING_PATHS else _parse_override_value(value)
            _set_path(cli_tree, key, parsed)
        merged = _deep_update(merged, cli_tree)

    issues, validation_warnings = _validate(merged)
    warnings.extend(validation_warnings)
    if issues:
        return ConfigSnapshot(
            path=str(path),
            exists=True,
            valid=False,
            issues=issues,
            warnings=warnings,
            effective_config=None,
            effective_raw=None,
        )
    return ConfigSnapshot(
        path=str(path),
        exists=True,
        valid=True,
        issues=[],
        warnings=warnings,
        effective_config=_to_config(merged),
        effective_raw=merged,
    )


def ensure_runtime_config(snapshot: ConfigSnapshot, env: str) -> AppConfig:
    """Return valid runtime config; fallback to bootstrap config when snapshot invalid."""
    if snapshot.effective_config is not None:
        return snapshot.effective_config
    return _bootstrap_config(env)


def redacted_raw(raw: dict[str, Any]) -> dict[str, Any]:
    """Copy of a raw config tree with credential values masked."""
    out = json.loads(json.dumps(raw))
    for dotted in ("openai.api_key", "elevenlabs.api_key", "supabase.anon_key"):
        section, key = dotted.split(".")
        node = out.get(section)
        if isinstance(node, dict) and node.get(key):
            node[key] = "***"
    return out
