"""
In-memory property credential cache with TTL.

Enrichment resolves the API key of every reservation's property; caching it
avoids one database query per reservation. Each entry expires after the
configured TTL so rotated keys are eventually picked up.
"""

from datetime import datetime, timedelta
from functools import lru_cache
from typing import Callable, Optional

from sync_wubook.metrics import credential_cache_hits, credential_cache_misses
from sync_wubook.utils.datetime import utc_now


class CredentialCache:
    """
    In-memory API key cache with time-to-live (TTL) expiration.

    Attributes:
        ttl: Time-to-live for cached keys
        _cache: Internal storage mapping property_id to (api_key, expires_at) tuples

    Example:
        >>> cache = CredentialCache(ttl_seconds=3600)
        >>> cache.set("106", "key-abc")
        >>> cache.get("106")
        'key-abc'
    """

    def __init__(self, ttl_seconds: int = 3600):
        self.ttl = timedelta(seconds=ttl_seconds)
        self._cache: dict[str, tuple[str, datetime]] = {}

    def get(self, property_id: str) -> Optional[str]:
        """
        Get cached key if not expired.

        Args:
            property_id: Property ID

        Returns:
            Cached API key if found and not expired, None otherwise
        """
        if property_id in self._cache:
            api_key, expires_at = self._cache[property_id]
            if utc_now() < expires_at:
                return api_key
            # Expired - remove from cache
            del self._cache[property_id]
        return None

    def set(self, property_id: str, api_key: str) -> None:
        self._cache[property_id] = (api_key, utc_now() + self.ttl)

    def get_or_load(
        self, property_id: str, loader: Callable[[str], Optional[str]]
    ) -> Optional[str]:
        """
        Return the cached key, loading and caching it on a miss.

        Missing keys are not cached, so a property configured later is
        picked up on the next call.

        Args:
            property_id: Property ID
            loader: Called with the property id on a miss

        Returns:
            The API key, or None if the property has none
        """
        api_key = self.get(property_id)
        if api_key is not None:
            credential_cache_hits.inc()
            return api_key
        credential_cache_misses.inc()
        api_key = loader(property_id)
        if api_key:
            self.set(property_id, api_key)
        return api_key

    def invalidate(self, property_id: str) -> None:
        self._cache.pop(property_id, None)

    def clear(self) -> None:
        """
        Clear all cached keys.

        Useful for testing or emergency cache invalidation.
        """
        self._cache.clear()

    def size(self) -> int:
        return len(self._cache)


@lru_cache
def get_credential_cache(ttl_seconds: int) -> CredentialCache:
    """Process-wide cache shared by enrichment runs configured with the same TTL."""
    return CredentialCache(ttl_seconds=ttl_seconds)
