"""Cached, observable reads and invalidating mutations on top of the API client.

Reads go through a :class:`QueryCache` keyed by entity and parameters. Each
read moves its key through ``pending`` then ``success`` or ``error`` and
every transition is pushed to subscribers. Mutations invalidate all cached
reads of their entity, so the next read fetches fresh data. A read that was
already in flight when a mutation completed is neither shared with later
readers nor written to the cache; it fetches again.
"""

from __future__ import annotations

import asyncio
import time
from collections import defaultdict
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import Any, Generic, Literal, TypeVar

from cachetools import TTLCache
from loguru import logger

from src.cellar.client.api_client import ApiError, CellarApiClient

T = TypeVar("T")

QueryStatus = Literal["pending", "success", "error"]
QueryKey = tuple[str, tuple[tuple[str, Any], ...]]
Subscriber = Callable[[QueryKey, "QueryState[Any] | None"], None]


@dataclass(frozen=True)
class QueryState(Generic[T]):
    status: QueryStatus
    data: T | None = None
    error: ApiError | None = None
    updated_at: float = field(default_factory=time.time)

    @property
    def is_pending(self) -> bool:
        return self.status == "pending"

    @property
    def is_success(self) -> bool:
        return self.status == "success"

    @property
    def is_error(self) -> bool:
        return self.status == "error"


def _freeze(value: Any) -> Any:
    if isinstance(value, Mapping):
        return tuple(sorted((k, _freeze(v)) for k, v in value.items()))
    if isinstance(value, (list, tuple, set, frozenset)):
        return tuple(_freeze(v) for v in value)
    return value


def query_key(entity: str, params: Mapping[str, Any]) -> QueryKey:
    """Order-independent key; ``None`` params are dropped."""
    return entity, tuple(sorted((k, _freeze(v)) for k, v in params.items() if v is not None))


class QueryCache:
    """TTL-bound query states with per-key subscribers.

    Subscribers receive ``(key, state)`` on every transition and
    ``(key, None)`` when the key is invalidated.
    """

    def __init__(self, ttl: float = 30.0, maxsize: int = 512, timer: Callable[[], float] = time.monotonic):
        self._states: TTLCache[QueryKey, QueryState[Any]] = TTLCache(maxsize=maxsize, ttl=ttl, timer=timer)
        self._subscribers: dict[QueryKey, list[Subscriber]] = defaultdict(list)
        self._generations: dict[str, int] = defaultdict(int)

    def get(self, key: QueryKey) -> QueryState[Any] | None:
        return self._states.get(key)

    def generation(self, entity: str) -> int:
        """Counter bumped by every :meth:`invalidate` of ``entity``."""
        return self._generations[entity]

    def set(self, key: QueryKey, state: QueryState[Any]) -> None:
        self._states[key] = state
        self._notify(key, state)

    def subscribe(self, key: QueryKey, callback: Subscriber) -> Callable[[], None]:
        """Register ``callback`` for ``key``; returns the unsubscribe function."""
        self._subscribers[key].append(callback)

        def unsubscribe() -> None:
            callbacks = self._subscribers.get(key, [])
            if callback in callbacks:
                callbacks.remove(callback)
            if not callbacks:
                self._subscribers.pop(key, None)

        return unsubscribe

    def invalidate(self, entity: str) -> int:
        """Drop every cached read of ``entity``; returns how many were dropped."""
        self._generations[entity] += 1
        keys = [key for key in list(self._states.keys()) if key[0] == entity]
        for key in keys:
            self._states.pop(key, None)
            self._notify(key, None)
        logger.bind(entity=entity, dropped=len(keys)).debug("query cache invalidated")
        return len(keys)

    def _notify(self, key: QueryKey, state: QueryState[Any] | None) -> None:
        for callback in list(self._subscribers.get(key, ())):
            try:
                callback(key, state)
            except Exception:
                logger.exception("Query subscriber failed for {}", key)


class ResourceHooks:
    """Read and mutate one entity through the API with caching.

    Concurrent reads of the same key share a single request.
    """

    def __init__(self, client: CellarApiClient, cache: QueryCache, entity: str, route: str | None = None):
        self._client = client
        self._cache = cache
        self._entity = entity
        self._route = route or f"{entity}s"
        self._inflight: dict[QueryKey, asyncio.Task[QueryState[Any]]] = {}

    @property
    def cache(self) -> QueryCache:
        return self._cache

    def list_key(self, **params: Any) -> QueryKey:
        return query_key(self._entity, {"op": "list", **params})

    def item_key(self, item_id: str) -> QueryKey:
        return query_key(self._entity, {"op": "item", "id": item_id})

    async def use_list(self, *, refresh: bool = False, **params: Any) -> QueryState[dict[str, Any]]:
        return await self._read(
            self.list_key(**params), lambda: self._client.list(self._route, **params), refresh
        )

    async def use_item(self, item_id: str, *, refresh: bool = False) -> QueryState[dict[str, Any]]:
        return await self._read(
            self.item_key(item_id), lambda: self._client.get(self._route, item_id), refresh
        )

    async def _read(
        self, key: QueryKey, fetch: Callable[[], Awaitable[Any]], refresh: bool
    ) -> QueryState[Any]:
        cached = self._cache.get(key)
        if cached is not None and cached.is_success and not refresh:
            return cached

        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._fetch(key, fetch, cached))
            self._inflight[key] = task
            task.add_done_callback(lambda done: self._forget(key, done))
        return await asyncio.shield(task)

    def _forget(self, key: QueryKey, task: asyncio.Task[QueryState[Any]]) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]

    async def _fetch(
        self, key: QueryKey, fetch: Callable[[], Awaitable[Any]], previous: QueryState[Any] | None
    ) -> QueryState[Any]:
        # Keep showing the last good data while refetching
        stale = previous.data if previous is not None else None
        while True:
            generation = self._cache.generation(self._entity)
            self._cache.set(key, QueryState("pending", data=stale))
            try:
                data = await fetch()
            except ApiError as exc:
                state: QueryState[Any] = QueryState("error", data=stale, error=exc)
            else:
                state = QueryState("success", data=data)
            if self._cache.generation(self._entity) == generation:
                self._cache.set(key, state)
                return state
            # A mutation landed while this request was out; its answer may predate it
            logger.bind(entity=self._entity).debug("discarding read that raced a mutation")
            stale = None

    # -- mutations -----------------------------------------------------

    def _invalidate(self) -> None:
        self._inflight.clear()
        self._cache.invalidate(self._entity)

    async def create(self, data: Mapping[str, Any]) -> dict[str, Any]:
        created = await self._client.create(self._route, data)
        self._invalidate()
        return created

    async def update(self, item_id: str, data: Mapping[str, Any]) -> dict[str, Any]:
        updated = await self._client.update(self._route, item_id, data)
        self._invalidate()
        # Readers of this item see the server's version without another round trip
        self._cache.set(self.item_key(item_id), QueryState("success", data=updated))
        return updated

    async def replace(self, item_id: str, data: Mapping[str, Any]) -> dict[str, Any]:
        replaced = await self._client.replace(self._route, item_id, data)
        self._invalidate()
        self._cache.set(self.item_key(item_id), QueryState("success", data=replaced))
        return replaced

    async def delete(self, item_id: str) -> None:
        await self._client.delete(self._route, item_id)
        self._invalidate()

    async def import_file(self, filename: str, content: bytes, *, dry_run: bool = False) -> dict[str, Any]:
        report = await self._client.import_products(filename, content, dry_run=dry_run)
        if not dry_run:
            self._invalidate()
        return report
