"""Module execution entrypoint for `python -m console_pilot.cli`."""

from __future__ import annotations

import sys

from console_pilot.cli import main

if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
