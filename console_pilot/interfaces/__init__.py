"""Interface definitions for the external collaborators of the decision loop.

The loop depends only on these interfaces so emulators, inference
services and history stores can be swapped and mocked.
"""

from console_pilot.interfaces.emulator import EmulationEngine, EmulatorError, PixelBuffer
from console_pilot.interfaces.inference import (
    AuthenticationError,
    InferenceBackend,
    InferenceError,
    InferenceRequest,
    InferenceResponse,
    RateLimited,
    RateLimitExhausted,
    RetryCancelled,
    TokenUsage,
    TransientBackendError,
)
from console_pilot.interfaces.memory import NO_DATA_DIGEST, OutcomeStore, format_digest

__all__ = [
    "NO_DATA_DIGEST",
    "AuthenticationError",
    "EmulationEngine",
    "EmulatorError",
    "InferenceBackend",
    "InferenceError",
    "InferenceRequest",
    "InferenceResponse",
    "OutcomeStore",
    "PixelBuffer",
    "RateLimitExhausted",
    "RateLimited",
    "RetryCancelled",
    "TokenUsage",
    "TransientBackendError",
    "format_digest",
]
