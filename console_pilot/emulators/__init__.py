"""Emulation engine implementations."""

from console_pilot.emulators.pyboy_engine import PyBoyEngine

__all__ = ["PyBoyEngine"]
