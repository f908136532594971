"""Token estimation used for rate limiting and context pruning."""

from __future__ import annotations

from typing import Protocol


class TokenEstimator(Protocol):
    def estimate(self, text: str | None) -> int: ...


class CharacterRatioEstimator:
    """Approximates tokens as one per ``chars_per_token`` characters, rounded up."""

    def __init__(self, chars_per_token: int = 4) -> None:
        if chars_per_token < 1:
            raise ValueError("chars_per_token must be at least 1")
        self.chars_per_token = chars_per_token

    def estimate(self, text: str | None) -> int:
        if not text:
            return 0
        return -(-len(text) // self.chars_per_token)
