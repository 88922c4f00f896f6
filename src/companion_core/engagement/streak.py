"""Daily streak and game-play counters kept in client-local storage."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime

from companion_core.memory.store import LocalKeyValueStore


KEY_USER_ID = "companionUserId"
KEY_LAST_LOGIN = "lastLogin"
KEY_STREAK = "currentStreak"
KEY_DAYS_ACTIVE = "daysActive"
KEY_GAMES_TODAY = "gamesPlayedToday"
KEY_GAMES_DATE = "gamesPlayedDate"


@dataclass(frozen=True, slots=True)
class StreakUpdate:
    last_login: date
    current_streak: int
    days_active: int
    changed: bool


def _as_day(value: date | datetime) -> date:
    # local date truncation: time of day never affects the difference
    if isinstance(value, datetime):
        return value.date()
    return value


def update_streak(
    today: date | datetime,
    last_login: date | datetime | None,
    current_streak: int,
    days_active: int,
) -> StreakUpdate:
    """Advance the counters for a check-in on `today`."""
    day = _as_day(today)
    if last_login is None:
        return StreakUpdate(last_login=day, current_streak=1, days_active=1, changed=True)
    gap = (day - _as_day(last_login)).days
    if gap <= 0:
        return StreakUpdate(last_login=_as_day(last_login), current_streak=current_streak, days_active=days_active, changed=False)
    if gap == 1:
        return StreakUpdate(last_login=day, current_streak=current_streak + 1, days_active=days_active + 1, changed=True)
    return StreakUpdate(last_login=day, current_streak=1, days_active=days_active + 1, changed=True)


def _parse_day(raw: str | None) -> date | None:
    if not raw:
        return None
    try:
        return datetime.fromisoformat(raw).date()
    except ValueError:
        return None


class EngagementTracker:
    def __init__(self, storage: LocalKeyValueStore, max_games_per_day: int = 5) -> None:
        self.storage = storage
        self.max_games_per_day = max_games_per_day

    @property
    def last_login(self) -> date | None:
        return _parse_day(self.storage.get(KEY_LAST_LOGIN))

    @property
    def current_streak(self) -> int:
        return self.storage.get_int(KEY_STREAK, 0)

    @property
    def days_active(self) -> int:
        return self.storage.get_int(KEY_DAYS_ACTIVE, 0)

    def check_in(self, today: date | None = None) -> StreakUpdate:
        day = today or date.today()
        update = update_streak(day, self.last_login, self.current_streak, self.days_active)
        if update.changed:
            self.storage.set_many(
                {
                    KEY_LAST_LOGIN: update.last_login.isoformat(),
                    KEY_STREAK: update.current_streak,
                    KEY_DAYS_ACTIVE: update.days_active,
                }
            )
        self._roll_game_counter(day)
        return update

    def _roll_game_counter(self, day: date) -> None:
        if _parse_day(self.storage.get(KEY_GAMES_DATE)) != day:
            self.storage.set_many({KEY_GAMES_TODAY: 0, KEY_GAMES_DATE: day.isoformat()})

    def games_played_today(self, today: date | None = None) -> int:
        day = today or date.today()
        if _parse_day(self.storage.get(KEY_GAMES_DATE)) != day:
            return 0
        return self.storage.get_int(KEY_GAMES_TODAY, 0)

    def can_play(self, today: date | None = None) -> bool:
        return self.games_played_today(today) < self.max_games_per_day

    def record_game(self, today: date | None = None) -> int:
        day = today or date.today()
        played = self.games_played_today(day) + 1
        self.storage.set_many({KEY_GAMES_TODAY: played, KEY_GAMES_DATE: day.isoformat()})
        return played

    def week_strip(self, today: date | None = None) -> list[bool]:
        """Activity for the last seven days, oldest first; the last entry is today."""
        day = today or date.today()
        last = self.last_login
        if last is None:
            return [False] * 7
        strip: list[bool] = []
        for offset in range(6, -1, -1):
            shown = date.fromordinal(day.toordinal() - offset)
            # inside the streak that ends on the last login
            strip.append(0 <= (last - shown).days < self.current_streak)
        return strip


def achievement_for_score(score: int) -> tuple[str, str] | None:
    if score >= 20:
        return "Bubble Master!", f"You popped {score} bubbles! Your companion feels extremely playful now."
    if score >= 10:
        return "Bubble Enthusiast", f"You popped {score} bubbles! Your companion is enjoying playtime."
    return None
