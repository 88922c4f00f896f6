"""Application entrypoint."""

from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path

from companion_core.config import ensure_runtime_config, read_config_snapshot
from companion_core.interfaces.cli import execute_single_command, run_cli
from companion_core.orchestrator import build_context


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="GPTamagotchi companion CLI")
    parser.add_argument("--env", choices=["dev", "prod"], default="dev")
    parser.add_argument("--data-path", default=None)
    parser.add_argument("--chat-model", default=None)
    parser.add_argument("--voice-id", default=None)
    parser.add_argument("--audio-player", default=None)
    parser.add_argument("--set", dest="overrides", action="append", default=[], metavar="KEY=VALUE")
    parser.add_argument("command", nargs=argparse.REMAINDER)
    return parser.parse_args(argv)


def _load_dotenv(path: Path) -> None:
    """Load .env key/value pairs into process env without overriding existing env vars."""
    if not path.exists():
        return
    for line in path.read_text(encoding="utf-8").splitlines():
        raw = line.strip()
        if not raw or raw.startswith("#") or "=" not in raw:
            continue
        key, value = raw.split("=", 1)
        key = key.strip()
        value = value.strip()
        if not key:
            continue
        if value and ((value[0] == value[-1]) and value[0] in {'"', "'"}):
            value = value[1:-1]
        os.environ.setdefault(key, value)


def configure_logging(level: str, log_dir: str | None = None) -> None:
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_dir:
        Path(log_dir).mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(Path(log_dir) / "companion.log", encoding="utf-8"))
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        handlers=handlers,
        force=True,
    )
    # console stays quiet apart from warnings; the log file gets everything
    handlers[0].setLevel(logging.WARNING)


def _collect_overrides(args: argparse.Namespace) -> dict[str, str]:
    overrides: dict[str, str] = {}
    if args.data_path:
        overrides["paths.data_root"] = str(args.data_path)
    if args.chat_model:
        overrides["openai.chat_model"] = str(args.chat_model)
    if args.voice_id:
        overrides["elevenlabs.voice_id"] = str(args.voice_id)
    if args.audio_player:
        overrides["audio.player_command"] = str(args.audio_player)
    for item in args.overrides:
        if "=" not in item:
            continue
        key, value = item.split("=", 1)
        overrides[key.strip()] = value.strip()
    return overrides


def main(argv: list[str] | None = None) -> int:
    _load_dotenv(Path(".env"))
    args = parse_args(argv)

    snapshot = read_config_snapshot(env=args.env, cli_overrides=_collect_overrides(args))
    if snapshot.effective_config is None:
        print("Config is invalid. CLI will run in diagnostics-only mode.")
        for issue in snapshot.issues:
            print(f"- {issue}")

    runtime_config = ensure_runtime_config(snapshot, env=args.env)
    configure_logging(runtime_config.logging.level, runtime_config.paths.log_dir)
    context = build_context(config=runtime_config, snapshot=snapshot)

    if args.command:
        command_line = " ".join(args.command).strip()
        return execute_single_command(context, command_line)

    run_cli(context)
    return 0


if __name__ == "__main__":
    sys.exit(main())
