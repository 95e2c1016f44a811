from __future__ import annotations

import asyncio
import logging
import os
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional, Tuple
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from trip_composer.schemas import BookingOptionCacheEntry

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("[%(levelname)s] %(name)s: %(message)s"))
    logger.addHandler(handler)
_level = os.getenv("TRIP_COMPOSER_LOG_LEVEL", "INFO").upper()
logger.setLevel(getattr(logging, _level, logging.INFO))
logger.propagate = False

Fetcher = Callable[[str], Awaitable[Dict[str, Any]]]
CacheKey = Tuple[str, str]

# Query parameters that carry credentials rather than identify the property.
_CREDENTIAL_PARAMS = {"api_key"}


def link_identity(detail_link: str) -> str:
    """Identity of a property-details link with credential parameters removed."""
    link = (detail_link or "").strip()
    try:
        parts = urlsplit(link)
    except ValueError:
        return link
    if not parts.query:
        return link
    query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k not in _CREDENTIAL_PARAMS]
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(query), parts.fragment))


class BookingOptionCache:
    """Memoizes hotel booking-option detail payloads per ``(hotel_id, link)``.

    Entries never expire on their own; callers own staleness through
    :meth:`invalidate` and :meth:`clear`. Failed fetches are never stored, so
    the next request retries. With ``coalesce`` enabled, concurrent misses for
    the same key await a single fetch.
    """

    def __init__(self, *, coalesce: bool = True):
        self.coalesce = coalesce
        self._entries: Dict[CacheKey, BookingOptionCacheEntry] = {}
        self._in_flight: Dict[CacheKey, asyncio.Task] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        if not isinstance(key, tuple) or len(key) != 2:
            return False
        return self._key(*key) in self._entries

    def get(self, hotel_id: str, detail_link: str) -> Optional[BookingOptionCacheEntry]:
        entry = self._entries.get(self._key(hotel_id, detail_link))
        if entry is None:
            return None
        return entry.model_copy(update={"cached": True}, deep=True)

    def put(self, hotel_id: str, detail_link: str, payload: Dict[str, Any]) -> BookingOptionCacheEntry:
        entry = BookingOptionCacheEntry(
            hotel_id=hotel_id,
            detail_link=detail_link,
            payload=dict(payload or {}),
            fetched_at=datetime.now(timezone.utc),
            cached=False,
        )
        self._entries[self._key(hotel_id, detail_link)] = entry
        return entry.model_copy(deep=True)

    def load(self, entries: Iterable[BookingOptionCacheEntry]) -> int:
        """Seed the cache with previously fetched entries, keeping ``fetched_at``."""
        count = 0
        for entry in entries:
            stored = entry.model_copy(update={"cached": False}, deep=True)
            self._entries[self._key(entry.hotel_id, entry.detail_link)] = stored
            count += 1
        if count:
            logger.info("Loaded %d booking option cache entries", count)
        return count

    def invalidate(self, hotel_id: str, detail_link: str) -> bool:
        return self._entries.pop(self._key(hotel_id, detail_link), None) is not None

    def clear(self) -> None:
        self._entries.clear()

    async def get_booking_options(
        self,
        hotel_id: str,
        detail_link: str,
        fetch: Fetcher,
    ) -> BookingOptionCacheEntry:
        """Return the cached entry, or fetch, store and return a fresh one."""
        hit = self.get(hotel_id, detail_link)
        if hit is not None:
            logger.debug("Booking options cache hit for hotel %s", hotel_id)
            return hit

        if not self.coalesce:
            return await self._fetch_and_store(hotel_id, detail_link, fetch)

        key = self._key(hotel_id, detail_link)
        task = self._in_flight.get(key)
        if task is None or task.done():
            task = asyncio.ensure_future(self._fetch_and_store(hotel_id, detail_link, fetch))
            self._in_flight[key] = task
            task.add_done_callback(lambda done, key=key: self._forget(key, done))
        else:
            logger.debug("Joining in-flight booking options fetch for hotel %s", hotel_id)
        entry = await asyncio.shield(task)
        return entry.model_copy(deep=True)

    def _forget(self, key: CacheKey, task: asyncio.Task) -> None:
        if self._in_flight.get(key) is task:
            del self._in_flight[key]
        if not task.cancelled():
            # mark failures retrieved even when every waiter was cancelled
            task.exception()

    async def _fetch_and_store(
        self,
        hotel_id: str,
        detail_link: str,
        fetch: Fetcher,
    ) -> BookingOptionCacheEntry:
        logger.info("Booking options cache miss for hotel %s; fetching details", hotel_id)
        try:
            payload = await fetch(detail_link)
        except Exception:
            logger.warning("Booking options fetch failed for hotel %s", hotel_id, exc_info=True)
            raise
        return self.put(hotel_id, detail_link, payload)

    @staticmethod
    def _key(hotel_id: str, detail_link: str) -> CacheKey:
        return (str(hotel_id), link_identity(detail_link))
