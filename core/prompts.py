"""Utility helpers for prompting user input."""

from __future__ import annotations


def prompt_choice(prompt: str, count: int) -> int | None:
    """Prompt for a 1-based choice among ``count`` options.

    Args:
        prompt: Prompt text displayed to the user.
        count: Number of available options.

    Returns:
        The chosen 1-based index, or None when the user submits empty input.
    """
    while True:
        raw = input(f"{prompt} [1-{count}, empty to cancel]: ").strip()
        if not raw:
            return None
        if raw.isdigit() and 1 <= int(raw) <= count:
            return int(raw)
        print(f"Enter a number between 1 and {count}.")
