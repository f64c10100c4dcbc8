from __future__ import annotations

from dataclasses import dataclass, field
from functools import lru_cache

from .buffer_cache import MAX_BIN_BUFFER_COUNT, BinaryBufferCache
from .identity import IdAllocator


@dataclass
class ParserServices:
    """
    Process-scoped state shared by parser instances: the id allocator and the
    binary buffer cache. Pass one instance to every parser that should share them.
    """

    ids: IdAllocator = field(default_factory=IdAllocator)
    cache: BinaryBufferCache = field(default_factory=BinaryBufferCache)

    @classmethod
    def create(cls, max_cache_entries: int = MAX_BIN_BUFFER_COUNT) -> "ParserServices":
        return cls(ids=IdAllocator(), cache=BinaryBufferCache(max_entries=max_cache_entries))


@lru_cache(maxsize=1)
def _process_ids() -> IdAllocator:
    return IdAllocator()


@lru_cache(maxsize=None)
def _shared_services(max_cache_entries: int) -> ParserServices:
    return ParserServices(ids=_process_ids(), cache=BinaryBufferCache(max_entries=max_cache_entries))


def default_services(max_cache_entries: int = MAX_BIN_BUFFER_COUNT) -> ParserServices:
    """
    Process-wide services for a cache bound, created on first access and kept
    for the process lifetime. All of them draw parser ids from one allocator.
    """
    return _shared_services(int(max_cache_entries))
