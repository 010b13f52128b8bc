"""Bounded session → journey id cache injected into the dispatcher."""

from __future__ import annotations

import logging
from collections import OrderedDict
from typing import Optional

LOGGER = logging.getLogger(__name__)

DEFAULT_CACHE_SIZE = 256


class JourneyCache:
    """Least-recently-used map from session id to journey id.

    A miss is never an error: callers fall back to the store and ``put`` the
    answer back.
    """

    def __init__(self, maxsize: int = DEFAULT_CACHE_SIZE) -> None:
        if maxsize < 1:
            raise ValueError("JourneyCache maxsize must be at least 1")
        self.maxsize = maxsize
        self._entries: OrderedDict[str, str] = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._entries

    def get(self, session_id: str) -> Optional[str]:
        journey_id = self._entries.get(session_id)
        if journey_id is not None:
            self._entries.move_to_end(session_id)
        return journey_id

    def put(self, session_id: str, journey_id: str) -> None:
        self._entries[session_id] = journey_id
        self._entries.move_to_end(session_id)
        while len(self._entries) > self.maxsize:
            evicted, _ = self._entries.popitem(last=False)
            LOGGER.debug("Evicted journey cache entry for session %s", evicted)

    def invalidate(self, session_id: str) -> None:
        self._entries.pop(session_id, None)

    def clear(self) -> None:
        self._entries.clear()


__all__ = ["DEFAULT_CACHE_SIZE", "JourneyCache"]
