"""Core decision loop: pacing, prompting, parsing, acting and measuring."""

from console_pilot.core.backoff import EXHAUSTED, BackoffConfig, BackoffController, BackoffState
from console_pilot.core.evaluator import (
    EvaluatorConfig,
    FrameUnavailableError,
    OutcomeEvaluator,
    compute_pixel_delta,
)
from console_pilot.core.loop import (
    CycleOutcome,
    DecisionLoopEngine,
    InvalidTransitionError,
    LoopConfig,
    LoopFatalError,
    LoopState,
    PreconditionError,
)
from console_pilot.core.metrics import LoopMetrics, MetricsCollector
from console_pilot.core.parser import ResponseParser
from console_pilot.core.prompts import PromptBuilder, PromptConfig, is_vision_model
from console_pilot.core.repetition import DecisionContext, RepetitionGuard

__all__ = [
    "EXHAUSTED",
    "BackoffConfig",
    "BackoffController",
    "BackoffState",
    "CycleOutcome",
    "DecisionContext",
    "DecisionLoopEngine",
    "EvaluatorConfig",
    "FrameUnavailableError",
    "InvalidTransitionError",
    "LoopConfig",
    "LoopFatalError",
    "LoopMetrics",
    "LoopState",
    "MetricsCollector",
    "OutcomeEvaluator",
    "PreconditionError",
    "PromptBuilder",
    "PromptConfig",
    "RepetitionGuard",
    "ResponseParser",
    "compute_pixel_delta",
    "is_vision_model",
]
