"""
Request Tokens

Per-cell generation counters used to discard stale asynchronous completions.
Every load or navigation request takes a new token for its cell; when the
request resumes after an await it checks that its token is still the latest
one before applying any result.

Inputs:
    - Cell ids of issued requests

Outputs:
    - Monotonic integer tokens per cell
    - Currency checks for in-flight completions

Requirements:
    - typing (standard library)
"""

from typing import Dict


class GenerationTracker:
    """Issues monotonically increasing tokens per key and answers "is this still current?"."""

    def __init__(self):
        self._generations: Dict[str, int] = {}

    def next(self, key: str) -> int:
        """
        Issue a new token for a key, invalidating all earlier ones.

        Args:
            key: Cell id

        Returns:
            The new token
        """
        token = self._generations.get(key, 0) + 1
        self._generations[key] = token
        return token

    def current(self, key: str) -> int:
        """Latest token issued for a key (0 if none)."""
        return self._generations.get(key, 0)

    def is_current(self, key: str, token: int) -> bool:
        """True if token is the latest one issued for key."""
        return self._generations.get(key, 0) == token

    def invalidate(self, key: str) -> None:
        """Invalidate every outstanding token for a key without issuing a new request."""
        self.next(key)

    def invalidate_all(self) -> None:
        """Invalidate outstanding tokens for every key."""
        for key in list(self._generations):
            self._generations[key] += 1
