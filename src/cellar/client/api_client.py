"""Async HTTP client for the cellar API."""

from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

import httpx
from loguru import logger

from src.cellar.core.errors import FieldViolation

TokenProvider = Callable[[], "str | None | Awaitable[str | None]"]


class ApiError(Exception):
    """A non-2xx response (or a transport failure, with ``status_code`` 0)."""

    def __init__(
        self,
        status_code: int,
        message: str,
        fields: list[FieldViolation] | None = None,
        request_id: str | None = None,
    ) -> None:
        super().__init__(f"{status_code}: {message}")
        self.status_code = status_code
        self.message = message
        self.fields = fields or []
        self.request_id = request_id

    @classmethod
    def from_response(cls, response: httpx.Response) -> ApiError:
        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}
        fields = [
            FieldViolation(
                field=str(item.get("field", "")),
                message=str(item.get("message", "")),
                reason=item.get("reason", "invalid_value"),
            )
            for item in body.get("fields") or []
            if isinstance(item, dict)
        ]
        return cls(
            response.status_code,
            str(body.get("error") or response.reason_phrase or "Request failed"),
            fields,
            body.get("request_id") or response.headers.get("X-Request-ID"),
        )


class CellarApiClient:
    """Typed access to every API endpoint.

    Owns its ``httpx.AsyncClient``; use ``async with`` or call :meth:`aclose`.
    ``token_provider`` is called before each request and may be sync or async.
    """

    def __init__(
        self,
        base_url: str,
        token_provider: TokenProvider | None = None,
        *,
        api_prefix: str = "/api/v1",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._token_provider = token_provider
        self._prefix = api_prefix.rstrip("/")
        self._client = httpx.AsyncClient(base_url=base_url, timeout=timeout, transport=transport)

    async def __aenter__(self) -> CellarApiClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _headers(self) -> dict[str, str]:
        if self._token_provider is None:
            return {}
        token = self._token_provider()
        if inspect.isawaitable(token):
            token = await token
        return {"Authorization": f"Bearer {token}"} if token else {}

    async def _send(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._client.request(
                method, f"{self._prefix}{path}", headers=await self._headers(), **kwargs
            )
        except httpx.HTTPError as exc:
            logger.bind(method=method, path=path).warning("API request failed: {}", exc)
            raise ApiError(0, f"Request failed: {exc}") from exc
        if response.is_error:
            raise ApiError.from_response(response)
        return response

    async def _json(self, method: str, path: str, **kwargs: Any) -> Any:
        response = await self._send(method, path, **kwargs)
        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    # -- resources -----------------------------------------------------

    async def list(self, route: str, **params: Any) -> dict[str, Any]:
        query = {k: v for k, v in params.items() if v is not None}
        return await self._json("GET", f"/{route}", params=query)

    async def get(self, route: str, item_id: str) -> dict[str, Any]:
        return await self._json("GET", f"/{route}/{item_id}")

    async def create(self, route: str, data: Mapping[str, Any]) -> dict[str, Any]:
        return await self._json("POST", f"/{route}", json=dict(data))

    async def update(self, route: str, item_id: str, data: Mapping[str, Any]) -> dict[str, Any]:
        return await self._json("PATCH", f"/{route}/{item_id}", json=dict(data))

    async def replace(self, route: str, item_id: str, data: Mapping[str, Any]) -> dict[str, Any]:
        return await self._json("PUT", f"/{route}/{item_id}", json=dict(data))

    async def delete(self, route: str, item_id: str) -> None:
        await self._send("DELETE", f"/{route}/{item_id}")

    # -- files ---------------------------------------------------------

    async def import_products(
        self,
        filename: str,
        content: bytes,
        *,
        dry_run: bool = False,
        content_type: str = "application/octet-stream",
    ) -> dict[str, Any]:
        return await self._json(
            "POST",
            "/products/import",
            params={"dry_run": str(dry_run).lower()},
            files={"file": (filename, content, content_type)},
        )

    async def upload_image(self, filename: str, content: bytes, content_type: str) -> dict[str, Any]:
        return await self._json(
            "POST", "/uploads/images", files={"file": (filename, content, content_type)}
        )

    async def attach_image(
        self, product_id: str, filename: str, content: bytes, content_type: str
    ) -> dict[str, Any]:
        return await self._json(
            "POST",
            f"/products/{product_id}/image",
            files={"file": (filename, content, content_type)},
        )

    async def download(self, reference: str) -> bytes:
        response = await self._send("GET", f"/uploads/{reference}")
        return response.content
