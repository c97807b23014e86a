"""Async REST transport for the project-management backend."""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, TypeVar

import aiohttp
from pydantic import BaseModel, ValidationError

ModelT = TypeVar("ModelT", bound=BaseModel)


class ApiError(RuntimeError):
    """Raised when the backend rejects a request."""

    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class ApiUnavailableError(ApiError):
    """Raised when the backend cannot be reached."""


class ApiPayloadError(ApiError):
    """Raised when a backend reply does not match the expected shape."""


def parse_reply(model: type[ModelT], data: Any, *, path: str) -> ModelT:
    """Validate one reply item, reporting a malformed payload as ``ApiPayloadError``."""

    try:
        return model.model_validate(data)
    except ValidationError as exc:
        first = exc.errors()[0] if exc.errors() else {}
        location = ".".join(str(part) for part in first.get("loc", ()))
        detail = f"{location}: {first.get('msg', exc)}" if location else str(first.get("msg", exc))
        raise ApiPayloadError(f"Malformed reply from {path}: {detail}") from exc


@dataclass(slots=True)
class ApiResult:
    """Holds the outcome of a backend call."""

    method: str
    path: str
    status: int
    payload: Any

    @property
    def ok(self) -> bool:
        if not 200 <= self.status < 300:
            return False
        if isinstance(self.payload, dict):
            return self.payload.get("success", True) is not False
        return True

    @property
    def data(self) -> Any:
        if isinstance(self.payload, dict) and "data" in self.payload:
            return self.payload["data"]
        return self.payload

    @property
    def message(self) -> str:
        if isinstance(self.payload, dict):
            for key in ("error", "message"):
                value = self.payload.get(key)
                if value:
                    return str(value)
        return f"HTTP {self.status}"


def _clean_params(params: Mapping[str, Any] | None) -> dict[str, str]:
    cleaned: dict[str, str] = {}
    for key, value in (params or {}).items():
        if value is None or value == "":
            continue
        cleaned[key] = str(value)
    return cleaned


class ApiClient:
    """Issue JSON requests against the backend's ``/api`` root."""

    def __init__(
        self,
        base_url: str,
        *,
        token: str | None = None,
        timeout: float = 10.0,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._token = token
        self._timeout = aiohttp.ClientTimeout(total=timeout)

    @property
    def base_url(self) -> str:
        return self._base_url

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    def url_for(self, path: str) -> str:
        return f"{self._base_url}/{path.lstrip('/')}"

    async def get(self, path: str, *, params: Mapping[str, Any] | None = None) -> ApiResult:
        return await self.request("GET", path, params=params)

    async def post(self, path: str, payload: Mapping[str, Any]) -> ApiResult:
        return await self.request("POST", path, payload=payload)

    async def put(self, path: str, payload: Mapping[str, Any]) -> ApiResult:
        return await self.request("PUT", path, payload=payload)

    async def delete(self, path: str) -> ApiResult:
        return await self.request("DELETE", path)

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: Mapping[str, Any] | None = None,
        payload: Mapping[str, Any] | None = None,
    ) -> ApiResult:
        """Send a request and raise ``ApiError`` unless the backend reports success."""

        result = await self._request(method, path, params=_clean_params(params), payload=payload)
        if not result.ok:
            raise ApiError(f"{method} {path} failed: {result.message}", status=result.status)
        return result

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, str],
        payload: Mapping[str, Any] | None,
    ) -> ApiResult:
        try:
            async with aiohttp.ClientSession(timeout=self._timeout, headers=self._headers()) as session:
                async with session.request(
                    method,
                    self.url_for(path),
                    params=params or None,
                    json=dict(payload) if payload is not None else None,
                ) as response:
                    text = await response.text()
                    return ApiResult(
                        method=method,
                        path=path,
                        status=response.status,
                        payload=_decode(text),
                    )
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise ApiUnavailableError(f"{method} {path} unreachable: {exc}") from exc


def _decode(text: str) -> Any:
    if not text:
        return None
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return {"success": False, "message": text[:200]}


class FakeApiClient(ApiClient):
    """Test double that answers from queued responses and records calls."""

    def __init__(self, responses: Iterable[ApiResult | Exception] | None = None) -> None:  # type: ignore[override]
        super().__init__("http://fake.invalid/api")
        self._responses = list(responses or [])
        self._routes: dict[tuple[str, str], list[ApiResult | Exception]] = {}
        self._calls: list[dict[str, Any]] = []

    def route(self, method: str, path: str, *responses: ApiResult | Exception | Any) -> None:
        """Queue responses for a specific method and path.

        Plain values are wrapped as successful ``{"success": true, "data": value}`` payloads.
        """

        queue = self._routes.setdefault((method.upper(), path), [])
        for response in responses:
            if isinstance(response, (ApiResult, Exception)):
                queue.append(response)
            else:
                queue.append(
                    ApiResult(
                        method=method.upper(),
                        path=path,
                        status=200,
                        payload={"success": True, "data": response},
                    )
                )

    async def _request(  # type: ignore[override]
        self,
        method: str,
        path: str,
        *,
        params: dict[str, str],
        payload: Mapping[str, Any] | None,
    ) -> ApiResult:
        self._calls.append(
            {"method": method, "path": path, "params": params, "payload": dict(payload or {})}
        )
        queue = self._routes.get((method, path))
        if queue:
            response = queue[0] if len(queue) == 1 else queue.pop(0)
        elif self._responses:
            response = self._responses.pop(0)
        else:
            response = ApiResult(method=method, path=path, status=200, payload={"success": True, "data": None})
        if isinstance(response, Exception):
            raise response
        return response

    @property
    def calls(self) -> list[dict[str, Any]]:
        return self._calls

    def calls_to(self, method: str, path: str) -> list[dict[str, Any]]:
        return [call for call in self._calls if call["method"] == method and call["path"] == path]


def api_failure(method: str, path: str, message: str, *, status: int = 400) -> ApiResult:
    """Build a rejected response, as the backend returns for validation errors."""

    return ApiResult(
        method=method,
        path=path,
        status=status,
        payload={"success": False, "error": message},
    )


@dataclass(slots=True)
class Page:
    """A page of list results."""

    items: list[Any]
    page: int = 1
    limit: int = 20
    total: int = 0
    total_pages: int = 1


__all__ = [
    "ApiClient",
    "ApiError",
    "ApiPayloadError",
    "ApiResult",
    "ApiUnavailableError",
    "FakeApiClient",
    "Page",
    "api_failure",
    "parse_reply",
]
