"""CLI REPL interface."""

from __future__ import annotations

import json
import shlex
from dataclasses import asdict
from typing import Callable

from companion_core.config import redacted_raw
from companion_core.orchestrator import (
    AppContext,
    TurnResult,
    diagnostics,
    handle_game_completion,
    handle_user_message,
    handle_voice_message,
    health_summary_quick,
    list_memories,
    reset_conversation,
)
from companion_core.state.emotions import FIELDS, emotion_level, overall_mood


RESTRICTED_ALLOWED_PREFIXES = {
    "/help",
    "/exit",
    "/health",
    "/status",
    "/admin config",
    "/admin diagnostics",
}


def _is_allowed_restricted(line: str) -> bool:
    normalized = line.strip().lower()
    return any(normalized.startswith(prefix) for prefix in RESTRICTED_ALLOWED_PREFIXES)


def _print_help() -> None:
    print("Commands:")
    print("/help")
    print("/exit")
    print("/status")
    print("/streak")
    print("/memories [--limit N]")
    print("/history [N]")
    print("/voice <audio_file>")
    print("/game <name> <score>")
    print("/reset")
    print("/health")
    print("/admin config [--effective]|diagnostics [--deep]")
    print("Anything else is sent to your companion.")


def _bar(value: float, width: int = 10) -> str:
    filled = round(value * width)
    return "#" * filled + "." * (width - filled)


def _print_reply(result: TurnResult) -> None:
    if not result.accepted:
        return
    print(result.reply)
    if result.memory_created:
        print("(memory collected)")
    if result.audio_path:
        print(f"(audio: {result.audio_path})")


def _handle_status(context: AppContext) -> None:
    state = context.session.emotional_state
    print(f"Mood: {overall_mood(state)} ({context.session.activity})")
    for name in FIELDS:
        value = getattr(state, name)
        print(f"  {name:<10} [{_bar(value)}] {value:.2f} {emotion_level(value)}")


def _handle_streak(context: AppContext) -> None:
    tracker = context.engagement
    strip = "".join("*" if active else "-" for active in tracker.week_strip())
    print(f"Current streak: {tracker.current_streak} day(s)")
    print(f"Days active: {tracker.days_active}")
    print(f"Last 7 days: {strip}")
    print(f"Games played today: {tracker.games_played_today()}/{tracker.max_games_per_day}")


def _parse_limit(tokens: list[str], default: int) -> int:
    lowered = [token.lower() for token in tokens]
    if "--limit" not in lowered:
        return default
    try:
        idx = lowered.index("--limit")
        if idx + 1 < len(tokens):
            return max(1, int(tokens[idx + 1]))
    except (ValueError, TypeError):
        return default
    return default


def _impact_label(impact: float) -> str:
    if impact > 0.7:
        return "cherished"
    if impact > 0.3:
        return "warm"
    if impact > 0:
        return "light"
    if impact > -0.5:
        return "uneasy"
    return "painful"


def _handle_memories(context: AppContext, tokens: list[str]) -> None:
    memories = list_memories(context, limit=_parse_limit(tokens[1:], default=8))
    if not memories:
        print("No memories collected yet.")
        return
    for memory in memories:
        print(f"- [{_impact_label(memory.emotional_impact)}] {memory.text} ({memory.timestamp[:10]})")


def _handle_history(context: AppContext, tokens: list[str]) -> None:
    count = 10
    if len(tokens) > 1:
        try:
            count = max(1, int(tokens[1]))
        except ValueError:
            print("Usage: /history [N]")
            return
    for message in context.session.recent_turns(count):
        print(f"{message.role}: {message.content}")


def _handle_voice(context: AppContext, tokens: list[str]) -> None:
    if len(tokens) < 2:
        print("Usage: /voice <audio_file>")
        return
    _print_reply(handle_voice_message(context, tokens[1]))


def _handle_game(context: AppContext, tokens: list[str]) -> None:
    if len(tokens) < 3:
        print("Usage: /game <name> <score>")
        return
    try:
        score = int(tokens[-1])
    except ValueError:
        print("Score must be an integer.")
        return
    name = " ".join(tokens[1:-1])
    result = handle_game_completion(context, name, score)
    if not result.accepted:
        print("You've played all available games for today. Come back tomorrow for more!")
        return
    print(f"Play need +{result.play_increase:.2f} (now {result.emotional_state.play:.2f})")
    print(f"Games played today: {result.games_played_today}/{context.engagement.max_games_per_day}")
    if result.achievement:
        title, description = result.achievement
        print(f"Achievement unlocked: {title} {description}")


def _handle_reset(context: AppContext) -> None:
    reset_conversation(context)
    print(context.session.messages[-1].content)


def _handle_health(context: AppContext) -> None:
    print(health_summary_quick(context))


def _handle_admin(context: AppContext, tokens: list[str]) -> None:
    if len(tokens) < 2:
        print("Usage: /admin config [--effective]|diagnostics [--deep]")
        return
    sub = tokens[1].lower()
    if sub == "config":
        payload: dict[str, object] = {
            "path": context.config_snapshot.path,
            "valid": context.config_snapshot.valid,
            "issues": context.config_snapshot.issues,
            "warnings": context.config_snapshot.warnings,
        }
        if any(token.lower() == "--effective" for token in tokens[2:]):
            if context.config_snapshot.effective_raw is not None:
                payload["effective_config"] = redacted_raw(context.config_snapshot.effective_raw)
                payload["effective_source"] = "snapshot_merged"
            else:
                payload["effective_config"] = redacted_raw(asdict(context.config))
                payload["effective_source"] = "runtime_fallback"
        print(json.dumps(payload, indent=2))
    elif sub == "diagnostics":
        deep = any(token.lower() == "--deep" for token in tokens[2:])
        print(json.dumps(diagnostics(context, deep=deep), indent=2))
    else:
        print("Unknown admin subcommand.")


def _handlers(context: AppContext) -> dict[str, Callable[[list[str]], None]]:
    return {
        "/help": lambda _: _print_help(),
        "/status": lambda _: _handle_status(context),
        "/streak": lambda _: _handle_streak(context),
        "/memories": lambda tokens: _handle_memories(context, tokens),
        "/history": lambda tokens: _handle_history(context, tokens),
        "/voice": lambda tokens: _handle_voice(context, tokens),
        "/game": lambda tokens: _handle_game(context, tokens),
        "/reset": lambda _: _handle_reset(context),
        "/health": lambda _: _handle_health(context),
        "/admin": lambda tokens: _handle_admin(context, tokens),
    }


def execute_single_command(context: AppContext, command_line: str) -> int:
    line = command_line.strip()
    if not line:
        print("Empty command.")
        return 2
    if not line.startswith("/"):
        result = handle_user_message(context, line)
        _print_reply(result)
        return 0 if result.accepted else 1
    try:
        tokens = shlex.split(line)
    except ValueError as exc:
        print(f"Parse error: {exc}")
        return 2
    handler = _handlers(context).get(tokens[0].lower())
    if handler is None:
        print("Unknown command. Use /help.")
        return 2
    handler(tokens)
    return 0


def run_cli(context: AppContext) -> None:
    """Run CLI REPL."""
    print(context.session.messages[-1].content)
    print("Type /help for commands.")
    if not context.config_snapshot.valid:
        print("Config invalid. Entering diagnostics-only mode.")
        for issue in context.config_snapshot.issues:
            print(f"- {issue}")

    handlers = _handlers(context)
    try:
        while True:
            raw = input("> ").strip()
            if not raw:
                continue
            if raw.lower() == "/exit":
                break
            if not context.config_snapshot.valid and not _is_allowed_restricted(raw):
                print("Config invalid. Command blocked. Allowed: /health, /status, /admin config|diagnostics, /help, /exit")
                continue

            if raw.startswith("/"):
                try:
                    tokens = shlex.split(raw)
                except ValueError as exc:
                    print(f"Parse error: {exc}")
                    continue
                if not tokens:
                    continue
                handler = handlers.get(tokens[0].lower())
                if not handler:
                    print("Unknown command. Use /help.")
                    continue
                handler(tokens)
                continue

            _print_reply(handle_user_message(context, raw))
    except (KeyboardInterrupt, EOFError):
        print("\nExiting...")
    finally:
        context.audio.release()
