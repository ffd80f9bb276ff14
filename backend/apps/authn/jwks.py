"""
JWKS (JSON Web Key Set) fetching and caching for Keycloak JWT validation.
"""
import logging
import threading
import time
from typing import Any, Dict, Optional

import httpx
from django.conf import settings

logger = logging.getLogger(__name__)

# Minimum seconds between refetches triggered by an unknown kid
ROTATION_DEBOUNCE = 5


class JWKSCache:
    """
    Thread-safe JWKS cache with TTL and a refetch on key rotation.

    Token validation runs in worker threads (sync_to_async), hence the lock.
    """

    def __init__(self, jwks_url: str, cache_ttl: int = 600, transport: Optional[httpx.BaseTransport] = None):
        self._jwks_url = jwks_url
        self._cache_ttl = cache_ttl
        self._transport = transport
        self._keys: Dict[str, Dict[str, Any]] = {}
        self._last_fetch: float = 0
        self._lock = threading.RLock()

    def _fetch_jwks(self) -> Dict[str, Dict[str, Any]]:
        """Fetch JWKS from Keycloak, keyed by kid."""
        try:
            logger.debug(f"Fetching JWKS from {self._jwks_url}")
            with httpx.Client(timeout=10.0, transport=self._transport) as client:
                response = client.get(self._jwks_url)
                response.raise_for_status()
                jwks = response.json()
        except httpx.HTTPError as e:
            logger.error(f"Failed to fetch JWKS: {e}")
            raise

        keys = {key['kid']: key for key in jwks.get('keys', []) if key.get('kid')}
        logger.info(f"Fetched {len(keys)} keys from JWKS endpoint")
        return keys

    def _is_cache_valid(self) -> bool:
        return (time.time() - self._last_fetch) < self._cache_ttl

    def get_key(self, kid: str) -> Optional[Dict[str, Any]]:
        """
        Get a public key by its key ID (kid).

        If the kid is unknown and the cache was not just refreshed, refetch
        once in case Keycloak rotated its keys.

        Returns:
            The JWK dict if found, None otherwise
        """
        with self._lock:
            if not self._keys or not self._is_cache_valid():
                self._keys = self._fetch_jwks()
                self._last_fetch = time.time()

            if kid in self._keys:
                return self._keys[kid]

            if (time.time() - self._last_fetch) > ROTATION_DEBOUNCE:
                logger.info(f"Key {kid} not found, refetching JWKS for potential key rotation")
                self._keys = self._fetch_jwks()
                self._last_fetch = time.time()

                if kid in self._keys:
                    return self._keys[kid]

            logger.warning(f"Key {kid} not found in JWKS")
            return None

    def clear(self):
        with self._lock:
            self._keys = {}
            self._last_fetch = 0


_jwks_cache: Optional[JWKSCache] = None


def get_jwks_cache() -> JWKSCache:
    """Get the process-wide JWKS cache."""
    global _jwks_cache
    if _jwks_cache is None:
        _jwks_cache = JWKSCache(
            jwks_url=settings.KC_JWKS_URL,
            cache_ttl=settings.KC_JWKS_CACHE_TTL
        )
    return _jwks_cache
