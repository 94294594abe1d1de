"""Decision loop engine.

This module provides the DecisionLoopEngine that drives a language model
to play a console game one button at a time:

- Pace requests with the BackoffController
- Capture the screen and build a request with the PromptBuilder
- Call the inference backend, retrying rate limits
- Parse the reply into a button with the ResponseParser
- Press the button and measure its effect with the OutcomeEvaluator
- Record the outcome in the OutcomeStore and the RepetitionGuard

The loop is an explicit state machine (idle, thinking, acting, cooling)
running on a background thread. ``stop()`` is fire-and-forget: it flips a
flag and every wait in the loop wakes up immediately.

Example:
    >>> from console_pilot.core.loop import DecisionLoopEngine
    >>> from console_pilot.models.actions import GameSession
    >>>
    >>> engine = DecisionLoopEngine(emulator, backend, store)
    >>> engine.start(GameSession.from_rom("tetris.gb"))
    >>> # ... later ...
    >>> engine.stop()
    >>> engine.join(timeout=5.0)
"""

from __future__ import annotations

import logging
import random
import signal
import threading
import time
from dataclasses import dataclass, field
from enum import StrEnum

from console_pilot.core.backoff import BackoffConfig, BackoffController, BackoffState
from console_pilot.core.evaluator import EvaluatorConfig, FrameUnavailableError, OutcomeEvaluator
from console_pilot.core.metrics import MetricsCollector
from console_pilot.core.parser import ResponseParser
from console_pilot.core.prompts import PromptBuilder, PromptConfig, is_vision_model
from console_pilot.core.repetition import DecisionContext, RepetitionGuard
from console_pilot.inference.retry import RetryingInference
from console_pilot.interfaces.emulator import EmulationEngine
from console_pilot.interfaces.inference import (
    AuthenticationError,
    InferenceBackend,
    RateLimitExhausted,
    RetryCancelled,
)
from console_pilot.interfaces.memory import OutcomeStore
from console_pilot.models.actions import GameSession
from console_pilot.observer.events import EventKind, LoopEventChannel

logger = logging.getLogger(__name__)


class LoopState(StrEnum):
    """Possible states of the decision loop."""

    IDLE = "idle"
    THINKING = "thinking"
    ACTING = "acting"
    COOLING = "cooling"


class CycleOutcome(StrEnum):
    """How a single cycle ended."""

    ACTED = "acted"
    INVALID = "invalid"
    SKIPPED = "skipped"
    EXHAUSTED = "exhausted"
    ERROR = "error"
    FATAL = "fatal"
    STOPPED = "stopped"


# Any state may also move to IDLE (stop or fatal error).
_TRANSITIONS: dict[LoopState, frozenset[LoopState]] = {
    LoopState.IDLE: frozenset({LoopState.THINKING}),
    LoopState.THINKING: frozenset({LoopState.ACTING, LoopState.COOLING, LoopState.IDLE}),
    LoopState.ACTING: frozenset({LoopState.THINKING, LoopState.COOLING, LoopState.IDLE}),
    LoopState.COOLING: frozenset({LoopState.THINKING, LoopState.IDLE}),
}


class PreconditionError(Exception):
    """The loop cannot start: emulator not ready, no actions, or no game id."""

    pass


class InvalidTransitionError(Exception):
    """A state change not allowed by the transition table."""

    def __init__(self, old_state: LoopState, new_state: LoopState) -> None:
        super().__init__(f"Illegal loop transition: {old_state.value} -> {new_state.value}")
        self.old_state = old_state
        self.new_state = new_state


class LoopFatalError(Exception):
    """Error that stopped the loop.

    Attributes:
        cause: The underlying exception.
    """

    def __init__(self, message: str, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.cause = cause

    @property
    def is_authentication(self) -> bool:
        """Whether the loop stopped because the backend rejected the credentials."""
        return isinstance(self.cause, AuthenticationError)


@dataclass
class LoopConfig:
    """Configuration for the decision loop.

    Attributes:
        max_consecutive_errors: Consecutive non-rate-limit failures before
            the loop stops itself.
        readiness_poll_ms: Wait between emulator readiness checks.
        vision: Send frames to the model. None guesses from the model name.
        max_actions: Stop after this many executed actions (None = forever).
        repeat_threshold: Same action in a row before advice is given.
        saturation_threshold: Action count that wipes the repetition window.
        enable_signal_handlers: Whether to stop on SIGINT/SIGTERM.
    """

    max_consecutive_errors: int = 5
    readiness_poll_ms: int = 1000
    vision: bool | None = None
    max_actions: int | None = None
    repeat_threshold: int = 2
    saturation_threshold: int = 8
    enable_signal_handlers: bool = False

    def __post_init__(self) -> None:
        if self.max_consecutive_errors < 1:
            raise ValueError("max_consecutive_errors must be >= 1")
        if self.readiness_poll_ms < 0:
            raise ValueError("readiness_poll_ms must be >= 0")
        if self.max_actions is not None and self.max_actions < 1:
            raise ValueError("max_actions must be >= 1 or None")


@dataclass
class _Run:
    """Everything owned by one start/stop session of the loop."""

    session: GameSession
    stop_event: threading.Event
    backoff: BackoffController
    guard: RepetitionGuard
    inference: RetryingInference | None = None
    consecutive_errors: int = 0
    actions_executed: int = 0
    thread: threading.Thread | None = field(default=None, repr=False)


class DecisionLoopEngine:
    """Runs the observe, ask, act, measure cycle for one game at a time.

    A fresh BackoffController and RepetitionGuard are created on every
    ``start()``, so pacing and repetition state never leak between runs
    or games.

    Attributes:
        state: Current loop state.
        fatal_error: Error that stopped the last run, if any.
        events: Channel the loop publishes status events to.
        metrics: Metrics collector.
    """

    def __init__(
        self,
        emulator: EmulationEngine,
        backend: InferenceBackend,
        store: OutcomeStore,
        prompt_builder: PromptBuilder | None = None,
        parser: ResponseParser | None = None,
        config: LoopConfig | None = None,
        backoff_config: BackoffConfig | None = None,
        evaluator_config: EvaluatorConfig | None = None,
        events: LoopEventChannel | None = None,
        metrics: MetricsCollector | None = None,
        rng: random.Random | None = None,
    ) -> None:
        """Initialize the engine.

        Args:
            emulator: Emulation engine to drive.
            backend: Inference backend to ask for decisions.
            store: Outcome history store.
            prompt_builder: Request builder. Its vocabulary is the action
                vocabulary for the whole loop.
            parser: Response parser. Built from the prompt vocabulary if None.
            config: Loop configuration. Uses defaults if None.
            backoff_config: Pacing configuration for each run.
            evaluator_config: Button hold and settle timing.
            events: Event channel. Creates a new one if None.
            metrics: Metrics collector. Creates a new one if None.
            rng: Random source for retry jitter.
        """
        self._emulator = emulator
        self._backend = backend
        self._store = store
        self._prompt_builder = prompt_builder or PromptBuilder(PromptConfig())
        self._vocabulary = self._prompt_builder.config.vocabulary
        self._parser = parser or ResponseParser(self._vocabulary)
        self._config = config or LoopConfig()
        self._backoff_config = backoff_config or BackoffConfig()
        self._evaluator_config = evaluator_config or EvaluatorConfig()
        self._events = events or LoopEventChannel()
        self._metrics = metrics or MetricsCollector()
        self._rng = rng

        self._state = LoopState.IDLE
        self._state_lock = threading.Lock()
        self._run: _Run | None = None
        self.fatal_error: LoopFatalError | None = None

        vision = self._config.vision
        self._vision_capable = (
            is_vision_model(self._prompt_builder.config.model) if vision is None else vision
        )

        logger.debug(
            f"DecisionLoopEngine initialized: model={self._prompt_builder.config.model}, "
            f"vision={self._vision_capable}"
        )

    @property
    def state(self) -> LoopState:
        """Get the current loop state."""
        with self._state_lock:
            return self._state

    @property
    def events(self) -> LoopEventChannel:
        """Get the event channel."""
        return self._events

    @property
    def metrics(self) -> MetricsCollector:
        """Get the metrics collector."""
        return self._metrics

    @property
    def vision_capable(self) -> bool:
        """Whether requests may carry the screen image."""
        return self._vision_capable

    @property
    def session(self) -> GameSession | None:
        """Session of the current or last run."""
        run = self._run
        return run.session if run else None

    @property
    def backoff_state(self) -> BackoffState | None:
        """Pacing state of the current or last run."""
        run = self._run
        return run.backoff.state if run else None

    @property
    def decision_context(self) -> DecisionContext | None:
        """Repetition context of the current or last run."""
        run = self._run
        return run.guard.context if run else None

    def is_running(self) -> bool:
        """Check whether a run is active (any state but idle)."""
        return self.state is not LoopState.IDLE

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self, session: GameSession, blocking: bool = False) -> None:
        """Start playing a game.

        Args:
            session: Game to play.
            blocking: If True, runs in the current thread until stopped.
                     If False, runs in a background thread.

        Raises:
            PreconditionError: If the emulator is not ready, the action
                vocabulary is empty, or the session has no game id. The
                loop stays idle.
            RuntimeError: If the loop is already running.
        """
        if self.is_running():
            raise RuntimeError(f"Loop is already {self.state.value}")

        previous = self._run
        if previous and previous.thread and previous.thread.is_alive():
            previous.thread.join(timeout=1.0)
            if previous.thread.is_alive():
                raise RuntimeError("Previous run is still shutting down")

        run = self._prepare_run(session)

        if self._config.enable_signal_handlers:
            self._install_signal_handlers()

        if blocking:
            self._run_loop(run)
            return

        run.thread = threading.Thread(
            target=self._run_loop,
            args=(run,),
            name="DecisionLoop",
            daemon=True,
        )
        run.thread.start()
        logger.info(f"Decision loop started for {session.display_title}")

    def stop(self) -> None:
        """Stop the loop.

        Safe to call from any thread, any number of times. Returns without
        waiting for the loop thread; use ``join()`` to wait. A button press
        in flight finishes its full hold and settle, and its outcome is
        recorded, before the loop thread exits.
        """
        run = self._run
        if run is None:
            return
        run.stop_event.set()
        with self._state_lock:
            old_state = self._state
            self._state = LoopState.IDLE
        if old_state is not LoopState.IDLE:
            self._on_state_changed(old_state, LoopState.IDLE)
            logger.info("Decision loop stop requested")

    def join(self, timeout: float | None = None) -> bool:
        """Wait for the loop thread to exit.

        Args:
            timeout: Maximum seconds to wait.

        Returns:
            True if no loop thread is alive afterwards.
        """
        run = self._run
        if run is None or run.thread is None:
            return True
        run.thread.join(timeout=timeout)
        return not run.thread.is_alive()

    def run_cycle(self, session: GameSession | None = None) -> CycleOutcome:
        """Run a single cycle in the current thread.

        Useful for stepping through a game or for tests. The first call
        prepares a run like ``start()``; later calls reuse its pacing and
        repetition state until ``stop()`` or a new session is given.

        Args:
            session: Game to play. Defaults to the session of the last run.

        Returns:
            How the cycle ended.

        Raises:
            RuntimeError: If the background loop is running.
            PreconditionError: If the run cannot be prepared.
        """
        if self.is_running():
            raise RuntimeError("Cannot run_cycle while loop is running")

        run = self._run
        if session is not None or run is None or run.stop_event.is_set() or run.thread is not None:
            if session is None:
                if run is None:
                    raise PreconditionError("No game session given")
                session = run.session
            run = self._prepare_run(session)
        else:
            self._transition(run, LoopState.THINKING)

        outcome = self._run_cycle_safely(run)
        with self._state_lock:
            old_state = self._state
            self._state = LoopState.IDLE
        if old_state is not LoopState.IDLE:
            self._on_state_changed(old_state, LoopState.IDLE)
        return outcome

    def _check_preconditions(self, session: GameSession) -> None:
        if not session.game_id:
            raise PreconditionError("Session has no game id")
        if not self._vocabulary:
            raise PreconditionError("Action vocabulary is empty")
        try:
            ready = self._emulator.is_ready()
        except Exception as e:
            raise PreconditionError(f"Emulator readiness check failed: {e}") from e
        if not ready:
            raise PreconditionError("Emulator is not ready")

    def _prepare_run(self, session: GameSession) -> _Run:
        self._check_preconditions(session)

        stop_event = threading.Event()
        backoff = BackoffController(self._backoff_config, self._rng)
        guard = RepetitionGuard(
            self._vocabulary,
            max_consecutive=self._config.repeat_threshold,
            saturation=self._config.saturation_threshold,
        )
        run = _Run(session=session, stop_event=stop_event, backoff=backoff, guard=guard)
        run.inference = RetryingInference(
            self._backend,
            backoff,
            wait=lambda seconds: self._cool_down(run, seconds),
            on_rate_limited=lambda delay_ms, vision: self._on_rate_limited(delay_ms, vision),
        )

        self.fatal_error = None
        self._run = run
        self._metrics.start()
        self._transition(run, LoopState.THINKING)
        return run

    def _install_signal_handlers(self) -> None:
        """Install signal handlers for graceful shutdown."""

        def signal_handler(signum: int, _frame: object) -> None:
            sig_name = signal.Signals(signum).name
            logger.info(f"Received {sig_name}, stopping loop...")
            self.stop()

        try:
            signal.signal(signal.SIGINT, signal_handler)
            signal.signal(signal.SIGTERM, signal_handler)
            logger.debug("Signal handlers installed")
        except ValueError:
            # Can only set handlers in main thread
            logger.debug("Could not install signal handlers (not main thread)")

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    def _transition(self, run: _Run, new_state: LoopState) -> bool:
        """Move to ``new_state`` on behalf of ``run``.

        Returns:
            False if the run was stopped or replaced, in which case the
            state is left alone and the caller must wind down.

        Raises:
            InvalidTransitionError: If the table forbids the move.
        """
        with self._state_lock:
            if run is not self._run:
                return False
            if run.stop_event.is_set() and new_state is not LoopState.IDLE:
                return False
            old_state = self._state
            if old_state is new_state:
                return True
            if new_state is not LoopState.IDLE and new_state not in _TRANSITIONS[old_state]:
                raise InvalidTransitionError(old_state, new_state)
            self._state = new_state

        self._on_state_changed(old_state, new_state)
        return True

    def _on_state_changed(self, old_state: LoopState, new_state: LoopState) -> None:
        logger.info(f"Loop state: {old_state.value} -> {new_state.value}")
        self._events.publish(EventKind.STATE, old=old_state.value, new=new_state.value)

    def _cool_down(self, run: _Run, seconds: float) -> bool:
        """Wait in the cooling state. Returns True if interrupted."""
        if not self._transition(run, LoopState.COOLING):
            return True
        if run.stop_event.wait(seconds):
            return True
        return not self._transition(run, LoopState.THINKING)

    def _on_rate_limited(self, delay_ms: int, vision: bool) -> None:
        self._metrics.record_rate_limit()
        self._events.publish(EventKind.RATE_LIMITED, retry_in_ms=delay_ms, vision=vision)

    # ------------------------------------------------------------------
    # Loop body
    # ------------------------------------------------------------------

    def _run_loop(self, run: _Run) -> None:
        """Main loop execution (runs in thread)."""
        logger.info("Decision loop running")
        try:
            while not run.stop_event.is_set():
                outcome = self._run_cycle_safely(run)
                if outcome in (CycleOutcome.FATAL, CycleOutcome.STOPPED):
                    break
                limit = self._config.max_actions
                if limit is not None and run.actions_executed >= limit:
                    logger.info(f"Reached {limit} executed actions, stopping")
                    break
        finally:
            run.stop_event.set()
            with self._state_lock:
                current = run is self._run
                old_state = self._state
                if current:
                    self._state = LoopState.IDLE
            if current and old_state is not LoopState.IDLE:
                self._on_state_changed(old_state, LoopState.IDLE)
            logger.info("Decision loop exited")

    def _run_cycle_safely(self, run: _Run) -> CycleOutcome:
        """Run one cycle, turning every failure into a state change."""
        cycle_start = time.time()
        try:
            outcome = self._cycle(run)
        except RetryCancelled:
            outcome = CycleOutcome.STOPPED
        except RateLimitExhausted as e:
            logger.warning(f"{e}")
            self._metrics.record_exhausted()
            self._events.publish(EventKind.EXHAUSTED, next_delay_ms=run.backoff.next_delay())
            self._transition(run, LoopState.COOLING)
            outcome = CycleOutcome.EXHAUSTED
        except AuthenticationError as e:
            self._fail(run, LoopFatalError(f"Authentication failed: {e}", cause=e))
            outcome = CycleOutcome.FATAL
        except FrameUnavailableError as e:
            self._skip(run, str(e))
            self._transition(run, LoopState.THINKING)
            outcome = CycleOutcome.SKIPPED
        except InvalidTransitionError as e:
            self._fail(run, LoopFatalError(str(e), cause=e))
            outcome = CycleOutcome.FATAL
        except Exception as e:
            outcome = self._handle_error(run, e)

        if outcome not in (CycleOutcome.STOPPED, CycleOutcome.SKIPPED):
            self._metrics.record_cycle((time.time() - cycle_start) * 1000)
        return outcome

    def _handle_error(self, run: _Run, error: Exception) -> CycleOutcome:
        """Count a non-rate-limit failure toward the fatal ceiling."""
        run.consecutive_errors += 1
        ceiling = self._config.max_consecutive_errors
        logger.warning(
            f"Cycle failed ({run.consecutive_errors}/{ceiling}): {type(error).__name__}: {error}"
        )

        if run.consecutive_errors >= ceiling:
            self._fail(
                run,
                LoopFatalError(f"{ceiling} consecutive errors, last: {error}", cause=error),
            )
            return CycleOutcome.FATAL

        self._metrics.record_error(type(error).__name__, recovered=True)
        self._events.publish(
            EventKind.ERROR,
            error=type(error).__name__,
            message=str(error),
            consecutive=run.consecutive_errors,
        )
        self._transition(run, LoopState.COOLING)
        return CycleOutcome.ERROR

    def _fail(self, run: _Run, error: LoopFatalError) -> None:
        """Stop the run with a fatal error."""
        logger.error(f"Fatal error: {error}")
        cause = error.cause or error
        self._metrics.record_error(type(cause).__name__, recovered=False)
        if run is self._run:
            self.fatal_error = error
        self._events.publish(
            EventKind.FATAL,
            error=type(cause).__name__,
            message=str(error),
            authentication=error.is_authentication,
        )
        run.stop_event.set()
        with self._state_lock:
            current = run is self._run
            old_state = self._state
            if current:
                self._state = LoopState.IDLE
        if current and old_state is not LoopState.IDLE:
            self._on_state_changed(old_state, LoopState.IDLE)

    def _skip(self, run: _Run, reason: str) -> None:
        self._metrics.record_skipped_cycle(reason)
        self._events.publish(EventKind.CYCLE_SKIPPED, reason=reason)

    def _cycle(self, run: _Run) -> CycleOutcome:
        """One pass of: wait, look, ask, act, record."""
        stop_event = run.stop_event
        if stop_event.is_set():
            return CycleOutcome.STOPPED

        # 1. Readiness
        if not self._emulator.is_ready():
            logger.debug("Emulator not ready, waiting")
            self._skip(run, "emulator not ready")
            stop_event.wait(self._config.readiness_poll_ms / 1000)
            return CycleOutcome.STOPPED if stop_event.is_set() else CycleOutcome.SKIPPED

        # 2. Pacing; after a failure this wait happens in the cooling state
        delay_ms = run.backoff.next_delay()
        if stop_event.wait(delay_ms / 1000):
            return CycleOutcome.STOPPED
        if not self._transition(run, LoopState.THINKING):
            return CycleOutcome.STOPPED

        # 3. Look and ask
        frame = self._emulator.get_screen_frame()
        if frame is None:
            self._skip(run, "no frame")
            return CycleOutcome.SKIPPED

        guard = run.guard
        guard.maybe_reset()
        advice = guard.should_warn()
        if advice:
            self._events.publish(EventKind.ADVICE, text=advice)

        request = self._prompt_builder.build(
            frame,
            run.session,
            guard.context,
            self._store.summarize(run.session.game_id),
            self._vision_capable,
            advice=advice,
            vision_failures=run.backoff.state.consecutive_vision_failures,
        )

        if stop_event.is_set():
            return CycleOutcome.STOPPED

        assert run.inference is not None
        inference_start = time.time()
        response = run.inference.complete(request)
        usage = response.usage
        self._metrics.record_inference(
            (time.time() - inference_start) * 1000,
            vision=request.has_image,
            prompt_tokens=usage.prompt_tokens if usage else 0,
            completion_tokens=usage.completion_tokens if usage else 0,
        )

        # 4. Parse
        decision = self._parser.parse(response.text)
        if not decision:
            self._metrics.record_invalid_response()
            self._events.publish(EventKind.CYCLE_SKIPPED, reason=decision.reason)
            run.consecutive_errors = 0
            return CycleOutcome.INVALID

        self._events.publish(
            EventKind.DECISION,
            action=decision.action_id,
            observation=decision.observation,
            reasoning=decision.reasoning,
        )

        # 5. Act. Last cancellation checkpoint until the press has settled.
        if stop_event.is_set() or not self._transition(run, LoopState.ACTING):
            return CycleOutcome.STOPPED

        evaluator = OutcomeEvaluator(self._emulator, self._evaluator_config)
        action_start = time.time()
        record = evaluator.execute(
            decision.action_id,
            game_id=run.session.game_id,
            observation=decision.observation,
            reasoning=decision.reasoning,
            raw_output=response.text,
        )
        action_ms = (time.time() - action_start) * 1000

        self._store.append(record)
        guard.record(record.action_id)
        run.actions_executed += 1
        run.consecutive_errors = 0

        self._metrics.record_action(record.success, action_ms)
        self._events.publish(
            EventKind.ACTION,
            action=record.action_id,
            pixel_delta=record.pixel_delta,
            success=record.success,
        )
        logger.info(
            f"Action #{run.actions_executed}: {record.action_id} "
            f"({'changed' if record.success else 'no change'}, delta={record.pixel_delta})"
        )

        if stop_event.is_set():
            return CycleOutcome.STOPPED
        self._transition(run, LoopState.THINKING)
        return CycleOutcome.ACTED
