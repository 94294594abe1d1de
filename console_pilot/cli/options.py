"""CLI option models and parser helpers."""

from __future__ import annotations

import argparse
from enum import StrEnum


class LogFormat(StrEnum):
    """CLI log formatter mode."""

    READABLE = "readable"
    JSON = "json"


class HistoryAction(StrEnum):
    """Operations on stored outcome history."""

    LIST = "list"
    SUMMARY = "summary"
    CLEAR = "clear"
    EXPORT = "export"
    NOTES = "notes"


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--config", type=str, default=None, help="Path to a YAML config file")
    parser.add_argument(
        "--log-format",
        type=str,
        default=None,
        choices=[fmt.value for fmt in LogFormat],
        help="Terminal log format (defaults to the config value)",
    )


def build_arg_parser() -> argparse.ArgumentParser:
    """Build CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="console-pilot",
        description="Let a language model play a handheld console game",
    )
    subparsers = parser.add_subparsers(dest="command")

    run_parser = subparsers.add_parser("run", help="Play a ROM with the decision loop")
    run_parser.add_argument("--rom", type=str, required=True, help="Path to the ROM file")
    run_parser.add_argument(
        "--max-actions",
        type=int,
        default=None,
        help="Stop after this many executed actions (default: run until Ctrl-C)",
    )
    run_parser.add_argument("--title", type=str, default=None, help="Game title used in prompts")
    run_parser.add_argument("--model", type=str, default=None, help="Model override")
    run_parser.add_argument(
        "--provider",
        type=str,
        default=None,
        choices=["openrouter", "openai", "lmstudio", "ollama", "anthropic"],
        help="Provider override",
    )
    _add_common_arguments(run_parser)

    rom_id_parser = subparsers.add_parser("rom-id", help="Print the game id of a ROM")
    rom_id_parser.add_argument("path", type=str, help="Path to the ROM file")

    history_parser = subparsers.add_parser("history", help="Inspect or clear stored outcomes")
    history_parser.add_argument(
        "action",
        type=str,
        choices=[action.value for action in HistoryAction],
        help="History operation",
    )
    target = history_parser.add_mutually_exclusive_group()
    target.add_argument("--game-id", type=str, default=None, help="Game id (SHA-256 of the ROM)")
    target.add_argument("--rom", type=str, default=None, help="ROM file to derive the game id from")
    history_parser.add_argument("--output", type=str, default=None, help="Export destination")
    history_parser.add_argument("--set", dest="notes", type=str, default=None, help="Replace strategy notes")
    _add_common_arguments(history_parser)

    return parser
