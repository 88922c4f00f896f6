"""Emotional state and the reducers that move it."""

from __future__ import annotations

from dataclasses import asdict, dataclass, replace


FIELDS = ("attention", "connection", "growth", "play")

ATTENTION_PER_TURN = 0.1
CONNECTION_LONG_MESSAGE = 0.05
CONNECTION_SHORT_MESSAGE = 0.02
LONG_MESSAGE_CHARS = 50
GROWTH_PER_TURN = 0.01
PLAY_PER_POINT = 0.01
MAX_PLAY_PER_GAME = 0.3


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


@dataclass(frozen=True, slots=True)
class EmotionalState:
    attention: float = 0.5
    connection: float = 0.5
    growth: float = 0.5
    play: float = 0.5

    def __post_init__(self) -> None:
        for name in FIELDS:
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{name} must be within [0, 1], got {value}")

    @classmethod
    def from_dict(cls, raw: dict[str, float]) -> EmotionalState:
        return cls(**{name: clamp(float(raw.get(name, 0.5))) for name in FIELDS})

    def as_dict(self) -> dict[str, float]:
        return asdict(self)


def apply_conversation_turn(state: EmotionalState, user_message: str) -> EmotionalState:
    """State after one completed conversation turn. Play is untouched."""
    if len(user_message) > LONG_MESSAGE_CHARS:
        connection_gain = CONNECTION_LONG_MESSAGE
    else:
        connection_gain = CONNECTION_SHORT_MESSAGE
    return replace(
        state,
        attention=clamp(state.attention + ATTENTION_PER_TURN),
        connection=clamp(state.connection + connection_gain),
        growth=clamp(state.growth + GROWTH_PER_TURN),
    )


def play_increase(score: int | float) -> float:
    return max(0.0, min(MAX_PLAY_PER_GAME, score * PLAY_PER_POINT))


def apply_game_completion(state: EmotionalState, score: int | float) -> EmotionalState:
    return replace(state, play=clamp(state.play + play_increase(score)))


def emotion_level(value: float) -> str:
    if value > 0.8:
        return "excellent"
    if value > 0.6:
        return "good"
    if value > 0.4:
        return "neutral"
    if value > 0.2:
        return "low"
    return "very low"


def overall_mood(state: EmotionalState) -> str:
    average = sum(getattr(state, name) for name in FIELDS) / len(FIELDS)
    if average > 0.8:
        return "very happy"
    if average > 0.6:
        return "happy"
    if average > 0.4:
        return "content"
    if average > 0.2:
        return "sad"
    return "very sad"
