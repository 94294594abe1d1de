"""Prompt templates for the decision loop.

Prompt versions are tracked so logged requests can be matched to the
wording that produced them.
"""

from __future__ import annotations

# Prompt version for tracking
PROMPT_VERSION = "1.0.0"

SYSTEM_PROMPT = """You are an AI playing a handheld console game by pressing one button at a time.

Each turn you receive the current game state and choose exactly one button.
Favor buttons that make visible progress. If a button had no visible effect
several times, try a different one.

Always answer in the exact labeled format requested."""

VISION_PROMPT_TEMPLATE = """You are an AI playing "{title}" on a handheld console emulator. You can see the current game screen in the image below.

Available buttons: {buttons}

Game Context:
- Game: {title}
- Last decision: {last_action}
- Decision history: {history}
- Button success history (screen changed / attempts): {stats}{advice}

NAVIGATION RULES:
- On a title screen or menu, START or A usually advances.
- Use the direction buttons to move through menus, then A to confirm.
- If a button did not change the screen, try a different one.

RESPONSE FORMAT:
OBSERVATION: [Describe exactly what you see - text, graphics, menus, etc.]
REASONING: [Explain why you are choosing this button]
DECISION: [One button name from the available buttons]

Look at the game screen and determine which button to press next."""

TEXT_PROMPT_TEMPLATE = """You are an AI playing "{title}" on a handheld console emulator. Based on the screen analysis below, decide which button to press next.

Available buttons: {buttons}

Current Screen Analysis:
{analysis}

Game Context:
- Game: {title}
- Last decision: {last_action}
- Decision history: {history}
- Button success history (screen changed / attempts): {stats}{advice}

RESPONSE FORMAT:
REASONING: [Explain why you are choosing this button based on the game state]
DECISION: [One button name from the available buttons]

Respond with your reasoning and decision."""

# Title keywords mapped to genre hints for text-only requests.
GENRE_HINTS: tuple[tuple[tuple[str, ...], str], ...] = (
    (
        ("tetris",),
        "This is Tetris - look for falling pieces and try to complete lines.\n"
        "Use A/B to rotate, LEFT/RIGHT to move, DOWN to drop faster.",
    ),
    (
        ("mario", "land"),
        "This is a platformer - use LEFT/RIGHT to move, A/B to jump.",
    ),
    (
        ("pokemon", "zelda"),
        "This is an RPG - use arrows to move, A to interact, START for menu.",
    ),
)
