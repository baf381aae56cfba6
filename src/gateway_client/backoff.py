"""Bounded reconnection schedule."""

from typing import Optional, Sequence


class ReconnectPolicy:
    """
    Fixed-schedule reconnection policy.

    Each attempt waits for the next delay in the schedule. Once the schedule
    is used up the policy is exhausted and stays so until ``reset()``.
    """

    def __init__(self, delays: Sequence[float]):
        """
        Args:
            delays: Seconds to wait before each attempt. Its length is the
                maximum number of attempts.
        """
        self._delays = [max(0.0, float(d)) for d in delays]
        self._attempts = 0

    @property
    def attempts(self) -> int:
        """Number of attempts handed out since the last reset."""
        return self._attempts

    @property
    def max_attempts(self) -> int:
        return len(self._delays)

    @property
    def exhausted(self) -> bool:
        """Check whether every attempt in the schedule has been used."""
        return self._attempts >= len(self._delays)

    def next_delay(self) -> Optional[float]:
        """
        Claim the next attempt.

        Returns:
            Seconds to wait before the attempt, or None if exhausted.
        """
        if self.exhausted:
            return None
        delay = self._delays[self._attempts]
        self._attempts += 1
        return delay

    def reset(self) -> None:
        """Restore the full attempt budget."""
        self._attempts = 0
