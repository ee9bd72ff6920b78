"""
Purpose: Exponential backoff schedule for reconnecting subscriptions.
What it does:
1s, 2s, 4s ... capped at 30s, for at most 8 attempts; reset() after a
successful delivery starts the schedule over.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional


@dataclass
class Backoff:
    initial_s: float = 1.0
    multiplier: float = 2.0
    max_delay_s: float = 30.0
    max_attempts: int = 8
    attempts: int = field(default=0, init=False)

    def __post_init__(self):
        if self.initial_s <= 0 or self.max_delay_s < self.initial_s:
            raise ValueError("backoff delays must satisfy 0 < initial_s <= max_delay_s")
        if self.multiplier < 1:
            raise ValueError("multiplier must be >= 1")
        if self.max_attempts <= 0:
            raise ValueError("max_attempts must be > 0")

    @property
    def exhausted(self) -> bool:
        return self.attempts >= self.max_attempts

    def next_delay(self) -> Optional[float]:
        """
        Delay before the next attempt, or None when attempts are used up.
        """
        if self.exhausted:
            return None
        delay = min(self.initial_s * (self.multiplier ** self.attempts), self.max_delay_s)
        self.attempts += 1
        return delay

    def reset(self) -> None:
        self.attempts = 0
