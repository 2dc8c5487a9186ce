"""HTTP key-value storage adapter."""

from __future__ import annotations

from typing import Any, cast

from synq.exceptions import StorageError


class AsyncHttpStorage:
    """Async storage backed by a remote key-value HTTP service.

    Endpoints (all ``POST``, JSON bodies):

    - ``/v1/storage/read``   ``{"key"}`` -> ``{"value": ... | null}``
    - ``/v1/storage/write``  ``{"key", "value"}``
    - ``/v1/storage/delete`` ``{"key"}``
    """

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str,
        namespace: str | None = None,
        timeout: float = 30.0,
    ) -> None:
        import httpx

        self._namespace = namespace
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers={
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            },
            timeout=timeout,
        )

    def _body(self, key: str, **extra: Any) -> dict[str, Any]:
        body: dict[str, Any] = {"key": key, **extra}
        if self._namespace is not None:
            body["namespace"] = self._namespace
        return body

    async def _request(self, operation: str, body: dict[str, Any]) -> dict[str, Any]:
        """Make a POST request to the storage API."""
        import httpx

        try:
            response = await self._client.post(f"/v1/storage/{operation}", json=body)
        except httpx.HTTPError as e:
            raise StorageError(operation, body["key"], e) from e
        if not response.is_success:
            try:
                error = response.json().get("error", "Request failed")
            except Exception:
                error = f"HTTP {response.status_code}"
            raise StorageError(operation, body["key"], RuntimeError(error))
        if not response.content:
            return {}
        return cast(dict[str, Any], response.json())

    async def read(self, key: str) -> Any | None:
        """Read the value stored under key."""
        data = await self._request("read", self._body(key))
        return data.get("value")

    async def write(self, key: str, value: Any) -> None:
        """Store a value."""
        await self._request("write", self._body(key, value=value))

    async def delete(self, key: str) -> None:
        """Delete a value."""
        await self._request("delete", self._body(key))

    async def disconnect(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()
