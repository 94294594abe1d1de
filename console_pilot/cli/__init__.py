"""CLI entrypoint for running Console Pilot sessions."""

from __future__ import annotations

import argparse
import logging
import sys
import time
from pathlib import Path
from typing import Any

from console_pilot.cli.helpers import (
    _configure_logging,
    _create_backend,
    _resolve_game_id,
    build_engine,
)
from console_pilot.cli.options import HistoryAction, LogFormat, build_arg_parser
from console_pilot.config.loader import Config, ConfigManager, load_config
from console_pilot.config.secrets import load_environment_secrets
from console_pilot.core.loop import DecisionLoopEngine
from console_pilot.emulators.pyboy_engine import PyBoyEngine
from console_pilot.memory.outcomes import SQLiteOutcomeStore
from console_pilot.models.actions import GameSession, compute_game_id

logger = logging.getLogger(__name__)

_JOIN_POLL_SECONDS = 0.5
_SHUTDOWN_TIMEOUT_SECONDS = 5.0


def _create_emulator(rom_path: str) -> PyBoyEngine:
    """Create the emulator for a ROM (patchable in tests)."""
    return PyBoyEngine(rom_path)


def _load_cli_config(args: argparse.Namespace) -> Config:
    """Load config and fold CLI overrides into it."""
    manager = ConfigManager(load_config(getattr(args, "config", None)))
    updates: dict[str, Any] = {}
    if getattr(args, "provider", None):
        updates.setdefault("llm", {})["provider"] = args.provider
    if getattr(args, "model", None):
        updates.setdefault("llm", {})["model"] = args.model
    if getattr(args, "max_actions", None) is not None:
        updates["loop"] = {"max_actions": args.max_actions}
    if updates:
        return manager.update(updates)
    return manager.config


def _apply_logging(args: argparse.Namespace, config: Config) -> None:
    _configure_logging(
        level=str(config.logging.level),
        log_format=str(getattr(args, "log_format", None) or config.logging.format),
        log_file=config.logging.file,
    )


def _print_run_summary(engine: DecisionLoopEngine, store: SQLiteOutcomeStore, session: GameSession) -> None:
    metrics = engine.metrics.get_metrics()
    print(f"Game: {session.display_title} ({session.game_id[:12]})")
    print(
        f"Actions: {metrics.actions_total} "
        f"({metrics.actions_successful} changed the screen, "
        f"{metrics.action_success_rate:.0%})"
    )
    print(
        f"Inference: {metrics.inference_calls} calls, "
        f"{metrics.invalid_responses} invalid, "
        f"{metrics.rate_limit_events} rate limited, "
        f"{metrics.tokens_total} tokens"
    )
    print(f"History: {store.summarize(session.game_id)}")
    if engine.fatal_error is not None:
        print(f"Stopped with error: {engine.fatal_error}")


def run_command(args: argparse.Namespace) -> int:
    """Execute the `run` command."""
    if args.command != "run":
        raise ValueError(f"Unsupported command: {args.command}")

    config = _load_cli_config(args)
    _apply_logging(args, config)

    backend = _create_backend(config)
    store = SQLiteOutcomeStore(config.memory.database_path, batch_size=config.memory.batch_size)
    try:
        with _create_emulator(args.rom) as emulator:
            session = GameSession(
                game_id=compute_game_id(Path(args.rom).read_bytes()),
                title=args.title or getattr(emulator, "title", None) or Path(args.rom).stem,
            )
            engine = build_engine(config, emulator, backend, store)
            _wait_for_ready(emulator, config.loop.readiness_poll_ms)
            engine.start(session)
            try:
                while not engine.join(timeout=_JOIN_POLL_SECONDS):
                    pass
            except KeyboardInterrupt:
                logger.info("[LOOP] Interrupted; stopping")
                engine.stop()
                engine.join(timeout=_SHUTDOWN_TIMEOUT_SECONDS)

            _print_run_summary(engine, store, session)
            return 1 if engine.fatal_error is not None else 0
    finally:
        store.close()


def _wait_for_ready(emulator: Any, poll_ms: int, attempts: int = 30) -> None:
    """Give the emulator time to boot before the loop checks readiness."""
    for _ in range(attempts):
        if emulator.is_ready():
            return
        time.sleep(poll_ms / 1000)
    logger.warning("[BOOT] Emulator still not ready; starting loop anyway")


def rom_id_command(args: argparse.Namespace) -> int:
    """Execute the `rom-id` command."""
    print(compute_game_id(Path(args.path).read_bytes()))
    return 0


def history_command(args: argparse.Namespace) -> int:
    """Execute the `history` command."""
    if args.command != "history":
        raise ValueError(f"Unsupported command: {args.command}")

    config = _load_cli_config(args)
    _apply_logging(args, config)
    action = HistoryAction(args.action)

    with SQLiteOutcomeStore(config.memory.database_path, batch_size=config.memory.batch_size) as store:
        if action is HistoryAction.LIST:
            for game_id in store.game_ids():
                print(f"{game_id}  {store.count(game_id)} actions")
            return 0

        game_id = _resolve_game_id(args)

        if action is HistoryAction.SUMMARY:
            last_played = store.last_played(game_id)
            print(f"Game: {game_id}")
            print(f"Actions: {store.count(game_id)}")
            print(f"Last played: {last_played.isoformat() if last_played else 'never'}")
            print(f"Outcomes: {store.summarize(game_id)}")
            notes = store.get_strategy_notes(game_id)
            if notes:
                print(f"Notes: {notes}")
            return 0

        if action is HistoryAction.CLEAR:
            removed = store.clear(game_id)
            print(f"Cleared {removed} actions for {game_id}")
            return 0

        if action is HistoryAction.EXPORT:
            if not args.output:
                raise ValueError("history export needs --output")
            exported = store.export_to_json(game_id, args.output)
            print(f"Exported {exported} actions to {args.output}")
            return 0

        if args.notes is not None:
            store.set_strategy_notes(game_id, args.notes)
            print("Notes updated")
        else:
            print(store.get_strategy_notes(game_id) or "(no notes)")
        return 0


def main(argv: list[str] | None = None) -> int:
    """CLI entrypoint function."""
    parser = build_arg_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 1

    # Configure a sane bootstrap logger before config loading.
    _configure_logging(
        level="INFO",
        log_format=str(getattr(args, "log_format", None) or LogFormat.READABLE.value),
    )

    try:
        if args.command == "run":
            load_environment_secrets(strict=False)
            return run_command(args)
        if args.command == "rom-id":
            return rom_id_command(args)
        if args.command == "history":
            return history_command(args)
        raise ValueError(f"Unsupported command: {args.command}")
    except Exception as exc:
        logger.error("[BOOT] CLI execution failed: %s", exc)
        return 1


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
