"""Prompt composer using packaged templates."""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Iterable

from companion_core.memory.models import MemoryRecord, Message
from companion_core.state.emotions import FIELDS, EmotionalState, emotion_level, overall_mood


logger = logging.getLogger(__name__)


_TEMPLATE_FILES = {
    "persona": "persona.md",
    "emotional_state": "emotional_state.md",
    "memories": "memories.md",
}


def _template_root() -> Path:
    return Path(__file__).resolve().parent / "templates"


def _read_template(name: str) -> str:
    path = _template_root() / _TEMPLATE_FILES[name]
    if not path.exists():
        logger.warning("prompt template missing: %s", path)
        return ""
    return path.read_text(encoding="utf-8")


def _render(template_text: str, values: dict[str, str]) -> str:
    rendered = template_text
    for key, value in values.items():
        rendered = rendered.replace(f"{{{{{key}}}}}", value)
    return rendered.strip()


def load_persona() -> str:
    return _read_template("persona").strip()


def render_emotional_state(state: EmotionalState) -> str:
    lines = [
        f"- {name.capitalize()}: {getattr(state, name):.2f} ({emotion_level(getattr(state, name))})"
        for name in FIELDS
    ]
    return _render(
        _read_template("emotional_state"),
        {"state_lines": "\n".join(lines), "overall_mood": overall_mood(state)},
    )


def _memory_date(timestamp: str) -> str:
    try:
        return datetime.fromisoformat(timestamp).date().isoformat()
    except ValueError:
        return timestamp[:10]


def render_memories(memories: Iterable[MemoryRecord]) -> str:
    lines = [f"- {memory.text} ({_memory_date(memory.timestamp)})" for memory in memories]
    if not lines:
        return ""
    return _render(_read_template("memories"), {"memory_lines": "\n".join(lines)})


def build_messages(
    persona: str,
    state: EmotionalState,
    memories: list[MemoryRecord],
    history: list[Message],
    user_message: str,
) -> list[dict[str, str]]:
    """Chat-completion message list: persona, state summary, memories, recent turns, then the new input."""
    messages = [
        {"role": "system", "content": persona},
        {"role": "system", "content": render_emotional_state(state)},
    ]
    memory_block = render_memories(memories)
    if memory_block:
        messages.append({"role": "system", "content": memory_block})
    messages.extend(m.as_chat() for m in history if m.role != "system")
    messages.append({"role": "user", "content": user_message})
    return messages
