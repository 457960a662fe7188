"""Retry pacing rules for transient failures and rate limits."""

from __future__ import annotations

from dataclasses import dataclass

from config import QueueConfig


@dataclass(frozen=True)
class BackoffPolicy:
    """Delay rules applied between dequeues.

    The first failure after a success waits longer than the ones that follow
    it: a fresh failure may be an outage, a repeat is treated as a short blip.
    """

    base_delay_ms: int = 2000
    first_failure_delay_ms: int = 30000
    repeat_failure_delay_ms: int = 10000
    default_rate_limit_seconds: int = 60
    min_rate_limit_seconds: int = 0

    @classmethod
    def from_config(cls, cfg: QueueConfig) -> "BackoffPolicy":
        return cls(
            base_delay_ms=cfg.base_delay_ms,
            first_failure_delay_ms=cfg.first_failure_delay_ms,
            repeat_failure_delay_ms=cfg.repeat_failure_delay_ms,
            default_rate_limit_seconds=cfg.default_rate_limit_seconds,
            min_rate_limit_seconds=cfg.min_rate_limit_seconds,
        )

    def escalate(self, current_delay_ms: int) -> int:
        """Delay to use after another consecutive transient failure."""
        if current_delay_ms == self.base_delay_ms:
            return self.first_failure_delay_ms
        return self.repeat_failure_delay_ms

    def rate_limit_seconds(self, retry_after: int) -> int:
        """Pause length for a rate-limit response."""
        seconds = retry_after if retry_after > 0 else self.default_rate_limit_seconds
        return max(seconds, self.min_rate_limit_seconds)
