"""
Single-flight guard: at most one running job per source ID.
"""

from typing import List, Set


class SingleFlight:
    """In-process keyed guard.

    Acquisition is a plain set operation with no suspension point, so two
    tasks on the same event loop can never both hold a key.
    """

    def __init__(self):
        self._active: Set[str] = set()

    def try_acquire(self, key: str) -> bool:
        if key in self._active:
            return False
        self._active.add(key)
        return True

    def release(self, key: str) -> None:
        self._active.discard(key)

    def is_active(self, key: str) -> bool:
        return key in self._active

    def active_keys(self) -> List[str]:
        return sorted(self._active)

    def __len__(self) -> int:
        return len(self._active)
