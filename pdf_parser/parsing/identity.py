from __future__ import annotations

import itertools


class IdAllocator:
    """
    Hands out parser ids: 0, 1, 2, ... in call order, never reused.

    The id doubles as the eviction index seed of the binary buffer cache.
    """

    def __init__(self, start: int = 0):
        self._counter = itertools.count(start)

    def next_id(self) -> int:
        return next(self._counter)
