"""Companion session state owned by the orchestrator and read by the views."""

from __future__ import annotations

import threading

from companion_core.memory.models import Message
from companion_core.state.emotions import EmotionalState


GREETING = (
    "Hi there! I'm your GPTamagotchi companion. I'm here to chat, play games, "
    "and get to know you better over time. What would you like to talk about today?"
)
FRESH_START = "Let's start fresh! How can I help you today?"

ACTIVITIES = ("idle", "listening", "thinking", "speaking")


class CompanionSession:
    """Message log, emotional state and turn bookkeeping for one user."""

    def __init__(self, user_id: str, persona: str, emotional_state: EmotionalState | None = None) -> None:
        self.user_id = user_id
        self.emotional_state = emotional_state or EmotionalState()
        self.activity = "idle"
        self._messages: list[Message] = [
            Message.create("system", persona),
            Message.create("assistant", GREETING),
        ]
        self._turn_lock = threading.Lock()

    @property
    def messages(self) -> tuple[Message, ...]:
        return tuple(self._messages)

    @property
    def processing(self) -> bool:
        return self._turn_lock.locked()

    def try_begin_turn(self) -> bool:
        return self._turn_lock.acquire(blocking=False)

    def end_turn(self) -> None:
        self.activity = "idle"
        if self._turn_lock.locked():
            self._turn_lock.release()

    def set_activity(self, activity: str) -> None:
        if activity not in ACTIVITIES:
            raise ValueError(f"unknown activity: {activity}")
        self.activity = activity

    def append(self, role: str, content: str) -> Message:
        message = Message.create(role, content)
        self._messages.append(message)
        return message

    def system_prompt(self) -> str:
        for message in self._messages:
            if message.role == "system":
                return message.content
        return ""

    def recent_turns(self, window: int) -> list[Message]:
        """Most recent non-system messages, oldest first."""
        turns = [m for m in self._messages if m.role != "system"]
        if window <= 0:
            return []
        return turns[-window:]

    def reset_conversation(self) -> None:
        system = [m for m in self._messages if m.role == "system"][:1]
        self._messages = [*system, Message.create("assistant", FRESH_START)]
