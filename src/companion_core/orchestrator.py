"""Core orchestration."""

from __future__ import annotations

import logging
import random
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

from companion_core.config import AppConfig, ConfigSnapshot
from companion_core.engagement.streak import KEY_USER_ID, EngagementTracker, achievement_for_score
from companion_core.http_client import ServiceError
from companion_core.llm.client import MockChatClient, OpenAIChatClient, build_chat_client
from companion_core.llm.embeddings import MockEmbeddingClient, OpenAIEmbeddingClient, build_embedding_client
from companion_core.memory.models import MemoryRecord
from companion_core.memory.store import LocalKeyValueStore, LocalStore
from companion_core.memory.supabase import SupabaseStore, build_store
from companion_core.prompting.composer import build_messages, load_persona
from companion_core.speech.playback import AudioClipSlot
from companion_core.speech.synthesis import ElevenLabsSynthesizer, MockSynthesizer, build_synthesizer
from companion_core.speech.transcription import MockTranscriber, WhisperTranscriber, build_transcriber, read_audio_file
from companion_core.state.emotions import EmotionalState, apply_conversation_turn, apply_game_completion, play_increase
from companion_core.state.session import CompanionSession


logger = logging.getLogger(__name__)

FALLBACK_REPLY = "I'm having trouble understanding right now. Can we try again?"
GAME_MEMORY_IMPACT = 0.7

_PLACEHOLDER_TOPICS = ("feelings", "work", "games", "memories", "future plans", "day-to-day activities")


@dataclass(slots=True)
class AppContext:
    config: AppConfig
    config_snapshot: ConfigSnapshot
    session: CompanionSession
    store: SupabaseStore | LocalStore
    chat: OpenAIChatClient | MockChatClient
    embeddings: OpenAIEmbeddingClient | MockEmbeddingClient
    transcriber: WhisperTranscriber | MockTranscriber
    synthesizer: ElevenLabsSynthesizer | MockSynthesizer
    audio: AudioClipSlot
    local_storage: LocalKeyValueStore
    engagement: EngagementTracker
    rng: random.Random = field(default_factory=random.Random)


@dataclass(slots=True)
class TurnResult:
    accepted: bool
    reply: str
    emotional_state: EmotionalState
    fallback: bool = False
    memory_created: bool = False
    audio_path: str | None = None


@dataclass(slots=True)
class GameResult:
    accepted: bool
    emotional_state: EmotionalState
    play_increase: float = 0.0
    games_played_today: int = 0
    achievement: tuple[str, str] | None = None


def _best_effort(label: str, fn: Callable[..., Any], *args: Any) -> bool:
    """Run a fire-and-forget side effect; failures are logged, never raised."""
    try:
        fn(*args)
    except (ServiceError, OSError, ValueError) as exc:
        logger.error("%s failed: %s", label, exc)
        return False
    return True


def _ensure_user_id(storage: LocalKeyValueStore) -> tuple[str, bool]:
    existing = storage.get(KEY_USER_ID)
    if existing:
        return existing, False
    user_id = str(uuid.uuid4())
    storage.set(KEY_USER_ID, user_id)
    return user_id, True


def build_context(config: AppConfig, snapshot: ConfigSnapshot, rng: random.Random | None = None) -> AppContext:
    local_storage = LocalKeyValueStore(Path(config.paths.data_root) / "local_storage.json")
    user_id, created = _ensure_user_id(local_storage)

    store = build_store(config)
    store.initialize()
    if created:
        _best_effort("create user", store.create_user, user_id)

    engagement = EngagementTracker(local_storage, max_games_per_day=config.companion.max_games_per_day)
    streak = engagement.check_in()
    if streak.changed:
        _best_effort("record engagement", store.upsert_engagement, user_id, streak.current_streak)

    session = CompanionSession(
        user_id=user_id,
        persona=load_persona(),
        emotional_state=EmotionalState.from_dict(config.companion.initial_state),
    )
    return AppContext(
        config=config,
        config_snapshot=snapshot,
        session=session,
        store=store,
        chat=build_chat_client(config),
        embeddings=build_embedding_client(config),
        transcriber=build_transcriber(config),
        synthesizer=build_synthesizer(config),
        audio=AudioClipSlot(config.audio.output_dir, config.audio.player_command),
        local_storage=local_storage,
        engagement=engagement,
        rng=rng or random.Random(),
    )


def estimate_topic(message: str, rng: random.Random) -> str:
    """Placeholder topic label; stands in for real topic extraction."""
    _ = message
    return rng.choice(_PLACEHOLDER_TOPICS)


def estimate_emotional_impact(message: str, rng: random.Random) -> float:
    """Placeholder impact in [0, 0.8); stands in for sentiment analysis."""
    _ = message
    return rng.random() * 0.8


def conversation_memory_text(user_message: str, topic: str) -> str:
    return f'User: "{user_message[:50]}..." - AI responded about {topic}'


def game_memory_text(game_name: str, score: int) -> str:
    return f"User played {game_name} and scored {score} points. They seemed to enjoy the activity."


def _relevant_memories(context: AppContext, user_message: str) -> list[MemoryRecord]:
    try:
        embedding = context.embeddings.embed(user_message)
    except ServiceError as exc:
        logger.error("memory search skipped, embedding failed: %s", exc)
        return []
    if not any(embedding):
        logger.debug("memory search skipped for zero embedding")
        return []
    try:
        return context.store.match_memories(
            context.session.user_id,
            embedding,
            context.config.supabase.match_threshold,
            context.config.supabase.match_count,
        )
    except (ServiceError, OSError, ValueError) as exc:
        logger.error("memory search failed: %s", exc)
        return []


def _store_memory(context: AppContext, text: str, *, source: str, memory_type: str, impact: float) -> bool:
    try:
        embedding = context.embeddings.embed(text)
    except ServiceError as exc:
        logger.error("memory not stored, embedding failed: %s", exc)
        return False
    memory = MemoryRecord(
        user_id=context.session.user_id,
        text=text,
        embedding=embedding,
        source=source,
        memory_type=memory_type,
        emotional_impact=impact,
    )
    return _best_effort("store memory", context.store.insert_memory, memory)


def _speak(context: AppContext, reply: str) -> str | None:
    context.session.set_activity("speaking")
    try:
        audio = context.synthesizer.synthesize(reply)
    except ServiceError as exc:
        logger.error("speech synthesis failed: %s", exc)
        return None
    if not audio:
        return None
    try:
        path = context.audio.store(audio)
    except OSError as exc:
        logger.error("could not write reply audio: %s", exc)
        return None
    context.audio.play(path)
    return str(path)


def handle_user_message(context: AppContext, user_message: str) -> TurnResult:
    """Run one conversation turn and return the reply with the resulting emotional state."""
    session = context.session
    if not user_message.strip():
        return TurnResult(accepted=False, reply="", emotional_state=session.emotional_state)
    if not session.try_begin_turn():
        logger.info("turn rejected: another turn is still in flight")
        return TurnResult(accepted=False, reply="", emotional_state=session.emotional_state)

    try:
        session.set_activity("listening")
        user_id = session.user_id
        history = session.recent_turns(context.config.companion.history_window)
        session.append("user", user_message)
        _best_effort("save user message", context.store.insert_conversation, user_id, "user", user_message)

        memories = _relevant_memories(context, user_message)
        session.set_activity("thinking")
        messages = build_messages(session.system_prompt(), session.emotional_state, memories, history, user_message)
        try:
            reply = context.chat.complete(messages)
        except ServiceError as exc:
            logger.error("completion failed: %s", exc)
            session.append("assistant", FALLBACK_REPLY)
            return TurnResult(accepted=True, reply=FALLBACK_REPLY, emotional_state=session.emotional_state, fallback=True)

        session.emotional_state = apply_conversation_turn(session.emotional_state, user_message)
        session.append("assistant", reply)
        _best_effort("save assistant message", context.store.insert_conversation, user_id, "assistant", reply)
        _best_effort("save emotional state", context.store.update_emotional_state, user_id, session.emotional_state.as_dict())

        memory_created = False
        if len(user_message) + len(reply) > context.config.companion.memory_length_threshold:
            memory_created = _store_memory(
                context,
                conversation_memory_text(user_message, estimate_topic(user_message, context.rng)),
                source="conversation",
                memory_type="episodic",
                impact=estimate_emotional_impact(user_message, context.rng),
            )

        audio_path = _speak(context, reply)
        return TurnResult(
            accepted=True,
            reply=reply,
            emotional_state=session.emotional_state,
            memory_created=memory_created,
            audio_path=audio_path,
        )
    finally:
        session.end_turn()


def handle_voice_message(context: AppContext, audio_path: str) -> TurnResult:
    """Transcribe a recorded clip and run it as a turn."""
    state = context.session.emotional_state
    try:
        audio, filename = read_audio_file(audio_path)
    except OSError as exc:
        logger.error("could not read audio file %s: %s", audio_path, exc)
        return TurnResult(accepted=False, reply="", emotional_state=state)
    try:
        transcript = context.transcriber.transcribe(audio, filename)
    except ServiceError as exc:
        logger.error("transcription failed: %s", exc)
        return TurnResult(accepted=False, reply="", emotional_state=state)
    return handle_user_message(context, transcript)


def handle_game_completion(context: AppContext, game_name: str, score: int) -> GameResult:
    """Apply a finished mini-game to the play need and record it."""
    session = context.session
    if not context.engagement.can_play():
        logger.info("game result ignored: daily limit of %s reached", context.engagement.max_games_per_day)
        return GameResult(
            accepted=False,
            emotional_state=session.emotional_state,
            games_played_today=context.engagement.games_played_today(),
        )

    played = context.engagement.record_game()
    increase = play_increase(score)
    session.emotional_state = apply_game_completion(session.emotional_state, score)
    user_id = session.user_id
    _best_effort("save emotional state", context.store.update_emotional_state, user_id, session.emotional_state.as_dict())
    _store_memory(context, game_memory_text(game_name, score), source="conversation", memory_type="fact", impact=GAME_MEMORY_IMPACT)
    return GameResult(
        accepted=True,
        emotional_state=session.emotional_state,
        play_increase=increase,
        games_played_today=played,
        achievement=achievement_for_score(score),
    )


def reset_conversation(context: AppContext) -> None:
    context.session.reset_conversation()


def list_memories(context: AppContext, limit: int = 8) -> list[MemoryRecord]:
    try:
        return context.store.list_memories(context.session.user_id, limit)
    except (ServiceError, OSError, ValueError) as exc:
        logger.error("could not list memories: %s", exc)
        return []


def _adapter_modes(context: AppContext) -> dict[str, str]:
    return {
        "completion": "mock" if context.chat.mock else "openai",
        "embeddings": "mock" if context.embeddings.mock else "openai",
        "transcription": "mock" if context.transcriber.mock else "openai",
        "speech": "disabled" if context.synthesizer.mock else "elevenlabs",
        "store": "local" if context.store.mock else "supabase",
    }


def health_summary_quick(context: AppContext) -> str:
    """Quick health summary string."""
    modes = _adapter_modes(context)
    return "; ".join(
        [f"config={'ok' if context.config_snapshot.valid else 'invalid'}"]
        + [f"{name}={mode}" for name, mode in modes.items()]
    )


def diagnostics(context: AppContext, deep: bool = False) -> dict[str, Any]:
    """Detailed diagnostics dictionary."""
    completion: dict[str, Any] = {"checked": False}
    if deep:
        ok, detail = context.chat.check_reachable(timeout_seconds=10)
        completion = {"checked": True, "ok": ok, "detail": detail}
    return {
        "config_valid": context.config_snapshot.valid,
        "config_issues": context.config_snapshot.issues,
        "config_warnings": context.config_snapshot.warnings,
        "data_root": context.config.paths.data_root,
        "user_id": context.session.user_id,
        "adapters": _adapter_modes(context),
        "completion_probe": completion,
        "engagement": {
            "current_streak": context.engagement.current_streak,
            "days_active": context.engagement.days_active,
            "games_played_today": context.engagement.games_played_today(),
        },
        "deep": deep,
    }
