"""Local audio output for synthesized replies."""

from __future__ import annotations

import logging
import shlex
import subprocess
import uuid
from pathlib import Path


logger = logging.getLogger(__name__)


class AudioClipSlot:
    """Holds at most one reply clip on disk; the previous clip is removed before a new one is written."""

    def __init__(self, output_dir: str, player_command: str | None = None) -> None:
        self.output_dir = Path(output_dir)
        self._player_command = player_command
        self._current: Path | None = None

    @property
    def current(self) -> Path | None:
        return self._current

    def release(self) -> None:
        if self._current is None:
            return
        try:
            self._current.unlink(missing_ok=True)
        except OSError as exc:
            logger.warning("audio: could not remove previous clip %s: %s", self._current, exc)
        self._current = None

    def store(self, audio: bytes, suffix: str = ".mp3") -> Path:
        self.release()
        self.output_dir.mkdir(parents=True, exist_ok=True)
        path = self.output_dir / f"reply-{uuid.uuid4().hex}{suffix}"
        path.write_bytes(audio)
        self._current = path
        return path

    def play(self, path: Path) -> bool:
        """Run the configured player on path; False when no player is set or it fails."""
        if not self._player_command:
            return False
        command = [*shlex.split(self._player_command), str(path)]
        try:
            proc = subprocess.run(command, capture_output=True, timeout=300, check=False)  # noqa: S603
        except (OSError, subprocess.TimeoutExpired) as exc:
            logger.error("audio: player failed command=%s error=%s", command[0], exc)
            return False
        if proc.returncode != 0:
            logger.error("audio: player exited rc=%s stderr=%s", proc.returncode, proc.stderr[:300])
            return False
        return True
