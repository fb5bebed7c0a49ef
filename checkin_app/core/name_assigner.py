"""Utility for assigning anonymous display names to students in the answer feed."""

from __future__ import annotations

from collections import deque
import random
from threading import Lock

from checkin_app.constants.checkin_constants import GUEST_ALIAS_NAMES


class NameAssigner:
    """Hands out shuffled, non-repeating aliases and remembers them per student.

    Once the pool is exhausted it is reshuffled, so aliases only repeat after
    every name has been used once.
    """

    def __init__(self, names: list[str], seed: int | None = None):
        cleaned = [name.strip() for name in names if name.strip()]
        if not cleaned:
            raise ValueError("Name list cannot be empty.")
        self._names = cleaned
        self._pool: deque[str] = deque()
        self._assigned: dict[str, str] = {}
        self._lock = Lock()
        self._rng = random.Random(seed)
        self._refill_pool()

    @classmethod
    def from_default_names(cls, seed: int | None = None) -> "NameAssigner":
        return cls(list(GUEST_ALIAS_NAMES), seed=seed)

    def alias_for(self, student_id: str) -> str:
        with self._lock:
            alias = self._assigned.get(student_id)
            if alias is None:
                if not self._pool:
                    self._refill_pool()
                alias = self._pool.popleft()
                self._assigned[student_id] = alias
            return alias

    def reset_cycle(self) -> None:
        """Forget every assignment and reshuffle all names for a fresh cycle."""
        with self._lock:
            self._assigned.clear()
            self._pool.clear()
            self._refill_pool()

    def _refill_pool(self) -> None:
        shuffled = list(self._names)
        self._rng.shuffle(shuffled)
        self._pool.extend(shuffled)
