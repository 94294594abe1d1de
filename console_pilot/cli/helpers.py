"""Shared helper utilities for CLI commands."""

from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path

from console_pilot.config.loader import Config
from console_pilot.core.backoff import BackoffConfig
from console_pilot.core.evaluator import EvaluatorConfig
from console_pilot.core.loop import DecisionLoopEngine, LoopConfig
from console_pilot.core.metrics import MetricsCollector
from console_pilot.core.prompts import PromptBuilder, PromptConfig
from console_pilot.inference.providers import create_backend
from console_pilot.interfaces.emulator import EmulationEngine
from console_pilot.interfaces.inference import InferenceBackend
from console_pilot.interfaces.memory import OutcomeStore
from console_pilot.models.actions import ActionVocabulary, compute_game_id
from console_pilot.observer.events import LoopEventChannel

from console_pilot.cli.options import LogFormat

logger = logging.getLogger(__name__)


class _JSONLogFormatter(logging.Formatter):
    """Compact JSON formatter for machine-readable logs."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        return json.dumps(payload, separators=(",", ":"), ensure_ascii=True)


def _configure_logging(
    level: str = "INFO",
    log_format: str = LogFormat.READABLE.value,
    log_file: str | None = None,
) -> None:
    """Configure process-wide logging."""
    resolved_level = getattr(logging, level.upper(), logging.INFO)
    root = logging.getLogger()
    root.handlers = [h for h in root.handlers if not getattr(h, "_consolepilot_handler", False)]

    if log_format == LogFormat.JSON.value:
        formatter: logging.Formatter = _JSONLogFormatter(datefmt="%Y-%m-%dT%H:%M:%S")
    else:
        formatter = logging.Formatter(
            fmt="%(asctime)s | %(levelname)s | %(message)s",
            datefmt="%H:%M:%S",
        )

    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))

    for handler in handlers:
        handler._consolepilot_handler = True  # type: ignore[attr-defined]
        handler.setFormatter(formatter)
        root.addHandler(handler)
    root.setLevel(resolved_level)

    # Third-party HTTP transport logs are noisy at INFO during loop execution.
    for name in ("httpx", "httpcore", "openai", "anthropic"):
        logging.getLogger(name).setLevel(logging.WARNING)


def _resolve_game_id(args: argparse.Namespace) -> str:
    """Game id from ``--game-id`` or ``--rom``."""
    if getattr(args, "game_id", None):
        return str(args.game_id)
    if getattr(args, "rom", None):
        return compute_game_id(Path(args.rom).read_bytes())
    raise ValueError("Pass --game-id or --rom")


def _create_backend(config: Config) -> InferenceBackend:
    """Create the configured backend with its API key from the environment."""
    return create_backend(config.llm, api_key=config.llm.api_key())


def build_engine(
    config: Config,
    emulator: EmulationEngine,
    backend: InferenceBackend,
    store: OutcomeStore,
    *,
    events: LoopEventChannel | None = None,
    metrics: MetricsCollector | None = None,
) -> DecisionLoopEngine:
    """Wire a DecisionLoopEngine from configuration.

    Args:
        config: Loaded configuration.
        emulator: Emulation engine to drive.
        backend: Inference backend.
        store: Outcome store.
        events: Optional event channel.
        metrics: Optional metrics collector.

    Returns:
        A ready, idle engine.
    """
    prompt_builder = PromptBuilder(
        PromptConfig(
            model=config.llm.model,
            temperature=config.llm.temperature,
            max_tokens=config.llm.max_tokens,
            vision_failure_threshold=config.llm.vision_failure_threshold,
            vocabulary=ActionVocabulary(config.actions.buttons),
        )
    )
    loop_config = LoopConfig(
        max_consecutive_errors=config.loop.max_consecutive_errors,
        readiness_poll_ms=config.loop.readiness_poll_ms,
        vision=config.llm.vision,
        max_actions=config.loop.max_actions,
        repeat_threshold=config.guard.repeat_threshold,
        saturation_threshold=config.guard.saturation_threshold,
    )
    return DecisionLoopEngine(
        emulator,
        backend,
        store,
        prompt_builder=prompt_builder,
        config=loop_config,
        backoff_config=BackoffConfig(**config.backoff.model_dump()),
        evaluator_config=EvaluatorConfig(**config.evaluator.model_dump()),
        events=events,
        metrics=metrics,
    )
