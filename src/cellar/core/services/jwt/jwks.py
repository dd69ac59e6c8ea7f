from abc import ABC, abstractmethod
from typing import Any

import httpx
from cachetools import TTLCache
from loguru import logger

from src.cellar.core.errors import AuthError, UnexpectedError
from src.cellar.runtime.config.config_data import OIDCProviderConfig


class JWKSCache(ABC):
    @abstractmethod
    def get_jwks(self, jwks_uri: str) -> dict[str, Any]:
        """Return the cached JWKS for ``jwks_uri`` or an empty dict."""
        raise NotImplementedError

    @abstractmethod
    def set_jwks(self, jwks_uri: str, jwks: dict[str, Any]) -> None:
        raise NotImplementedError

    @abstractmethod
    def clear_jwks_cache(self) -> None:
        raise NotImplementedError


class JWKSCacheInMemory(JWKSCache):
    def __init__(self, ttl: int = 3600, maxsize: int = 10) -> None:
        self._cache: TTLCache[str, dict[str, Any]] = TTLCache(maxsize=maxsize, ttl=ttl)

    def get_jwks(self, jwks_uri: str) -> dict[str, Any]:
        return self._cache.get(jwks_uri, {})

    def set_jwks(self, jwks_uri: str, jwks: dict[str, Any]) -> None:
        self._cache[jwks_uri] = jwks

    def clear_jwks_cache(self) -> None:
        self._cache.clear()


class JwksService:
    """Fetches and caches identity provider signing keys.

    The HTTP client is owned by the service: construct it at startup and call
    :meth:`aclose` on shutdown.
    """

    def __init__(
        self,
        cache: JWKSCache,
        client: httpx.AsyncClient | None = None,
        timeout: float = 5.0,
    ) -> None:
        self._cache = cache
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def fetch_jwks(
        self, provider: OIDCProviderConfig, *, force_refresh: bool = False
    ) -> dict[str, Any]:
        jwks_url = provider.jwks_uri

        if not jwks_url:
            raise AuthError("Issuer has no JWKS URI configured")

        if not force_refresh:
            jwks = self._cache.get_jwks(jwks_url)
            if jwks:
                return jwks

        try:
            resp = await self._client.get(jwks_url)
            resp.raise_for_status()
            jwks = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.bind(jwks_uri=jwks_url, alert=True).error("Failed to fetch JWKS: {}", exc)
            raise UnexpectedError() from exc

        self._cache.set_jwks(jwks_url, jwks)
        logger.debug("Fetched JWKS from {} ({} keys)", jwks_url, len(jwks.get("keys", [])))
        return jwks

    def clear(self) -> None:
        self._cache.clear_jwks_cache()

    async def aclose(self) -> None:
        self.clear()
        await self._client.aclose()
