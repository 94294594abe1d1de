"""Console Pilot: a language model playing handheld console games.

The decision loop captures the screen, asks a model which button to
press, presses it, and remembers whether the screen changed.
"""

__version__ = "0.1.0"
