from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncGenerator, Mapping, Sequence, TypeAlias

import httpx

from intune_assignments.auth.types import TokenProvider
from intune_assignments.graph.errors import (
    AuthenticationError,
    GraphAPIError,
    GraphErrorCategory,
    NotFoundError,
    PermanentRemoteError,
    PermissionError,
    RateLimitError,
    RequestTimeoutError,
    TransientRemoteError,
)
from intune_assignments.graph.requests import GraphRequest
from intune_assignments.utils.cancellation import CancellationToken
from intune_assignments.utils.logging import get_logger


logger = get_logger(__name__)

GRAPH_HOST = "https://graph.microsoft.com"


class GraphAPIVersion(str, Enum):
    V1 = "v1.0"
    BETA = "beta"


ApiVersionInput: TypeAlias = GraphAPIVersion | str | None


def _coerce_api_version(value: GraphAPIVersion | str) -> str:
    """Normalise API version inputs to canonical string values."""

    if isinstance(value, GraphAPIVersion):
        return value.value
    lowered = value.strip().lower()
    if lowered in {"v1", "v1.0", "1.0", "ga"}:
        return GraphAPIVersion.V1.value
    if lowered == "beta":
        return GraphAPIVersion.BETA.value
    return value.strip()


def _prepare_relative_path(path: str) -> tuple[str, str | None]:
    """Return a leading-slash path without version plus any embedded version."""

    trimmed = path.strip()
    if trimmed.startswith(GRAPH_HOST):
        trimmed = trimmed[len(GRAPH_HOST) :]
    if not trimmed.startswith("/"):
        trimmed = "/" + trimmed

    version: str | None = None
    for prefix, mapped in (
        ("/beta", GraphAPIVersion.BETA.value),
        ("/v1.0", GraphAPIVersion.V1.value),
    ):
        if trimmed == prefix or trimmed.startswith(f"{prefix}/"):
            version = mapped
            trimmed = trimmed[len(prefix) :] or "/"
            break

    if trimmed != "/" and trimmed.endswith("/"):
        trimmed = trimmed.rstrip("/")
    return trimmed, version


@dataclass(slots=True)
class GraphClientConfig:
    scopes: Sequence[str]
    user_agent: str = "IntuneAssignments-Python"
    api_version: GraphAPIVersion | str = GraphAPIVersion.V1
    page_size: int = 100
    default_timeout: float = 60.0
    connect_timeout: float = 10.0
    extra_headers: Mapping[str, str] = field(default_factory=dict)


class GraphClient:
    """Thin async Microsoft Graph transport.

    Authenticates each request with a bearer token from the injected
    provider and maps failed responses onto ``GraphAPIError`` subclasses.
    Throttling and retries are left to the caller so that bulk workers can
    coordinate them through a shared rate limiter.
    """

    def __init__(
        self,
        token_provider: TokenProvider,
        config: GraphClientConfig,
        *,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._token_provider = token_provider
        self._config = config
        self._default_api_version = _coerce_api_version(config.api_version)
        self._http_client = http_client
        self._owns_client = http_client is None

    @property
    def default_api_version(self) -> str:
        return self._default_api_version

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: Any | None = None,
        headers: dict[str, str] | None = None,
        api_version: ApiVersionInput = None,
        timeout: float | None = None,
        cancellation_token: CancellationToken | None = None,
    ) -> httpx.Response:
        if cancellation_token is not None:
            cancellation_token.raise_if_cancelled()
        client = self._get_http_client()
        url = self._absolute_url(path, api_version=api_version)
        request_timeout = httpx.Timeout(
            timeout or self._config.default_timeout,
            connect=self._config.connect_timeout,
        )
        start = time.perf_counter()
        try:
            response = await client.request(
                method,
                url,
                params=params,
                json=json_body,
                headers=self._build_headers(headers),
                timeout=request_timeout,
            )
        except httpx.TimeoutException as exc:
            logger.warning("Graph request timed out", method=method, url=url)
            raise RequestTimeoutError(inner_error=exc) from exc
        except httpx.RequestError as exc:
            logger.warning("Graph request failed", method=method, url=url, error=str(exc))
            raise GraphAPIError(
                message=f"Network error communicating with Microsoft Graph: {exc}",
                category=GraphErrorCategory.NETWORK,
                inner_error=exc,
            ) from exc

        duration_ms = round((time.perf_counter() - start) * 1000, 2)
        if response.status_code >= 400:
            error = map_response_to_error(response)
            logger.debug(
                "Graph request",
                method=method,
                url=url,
                status_code=response.status_code,
                duration_ms=duration_ms,
                success=False,
                category=error.category.value,
            )
            raise error

        logger.debug(
            "Graph request",
            method=method,
            url=url,
            status_code=response.status_code,
            duration_ms=duration_ms,
            success=True,
        )
        return response

    async def request_json(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: Any | None = None,
        headers: dict[str, str] | None = None,
        api_version: ApiVersionInput = None,
        timeout: float | None = None,
        cancellation_token: CancellationToken | None = None,
    ) -> dict[str, Any]:
        response = await self.request(
            method,
            path,
            params=params,
            json_body=json_body,
            headers=headers,
            api_version=api_version,
            timeout=timeout,
            cancellation_token=cancellation_token,
        )
        if response.status_code == 204 or not response.content:
            return {}
        return response.json()

    async def send(
        self,
        request: GraphRequest,
        *,
        timeout: float | None = None,
        cancellation_token: CancellationToken | None = None,
    ) -> dict[str, Any]:
        return await self.request_json(
            request.method,
            request.url,
            params=request.params,
            json_body=request.body,
            headers=request.headers,
            api_version=request.api_version,
            timeout=timeout,
            cancellation_token=cancellation_token,
        )

    async def iter_collection(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        page_size: int | None = None,
        api_version: ApiVersionInput = None,
        timeout: float | None = None,
        cancellation_token: CancellationToken | None = None,
    ) -> AsyncGenerator[dict[str, Any], None]:
        next_url = self._absolute_url(path, api_version=api_version)
        query: dict[str, Any] | None = dict(params or {})
        if page_size is None:
            page_size = self._config.page_size
        if query is not None and "$top" not in query and page_size:
            query["$top"] = page_size

        while next_url:
            if cancellation_token:
                cancellation_token.raise_if_cancelled()
            payload = await self.request_json(
                method,
                next_url,
                params=query,
                headers=headers,
                timeout=timeout,
                cancellation_token=cancellation_token,
            )
            value = payload.get("value")
            if isinstance(value, list):
                for item in value:
                    if isinstance(item, dict):
                        yield item
            else:
                yield payload
                break
            next_link = payload.get("@odata.nextLink")
            if not next_link:
                break
            next_url = next_link
            # nextLink already embeds the query string
            query = None

    async def close(self) -> None:
        if self._http_client is not None and self._owns_client:
            await self._http_client.aclose()
        self._http_client = None

    # ------------------------------------------------------------- Internals

    def _build_headers(self, headers: dict[str, str] | None) -> dict[str, str]:
        token = self._token_provider(self._config.scopes)
        merged = dict(self._config.extra_headers)
        merged.update(headers or {})
        merged["Authorization"] = f"Bearer {token.token}"
        return merged

    def _get_http_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                headers={"User-Agent": self._config.user_agent},
                timeout=httpx.Timeout(
                    self._config.default_timeout,
                    connect=self._config.connect_timeout,
                ),
            )
            self._owns_client = True
        return self._http_client

    def _absolute_url(self, path: str, api_version: ApiVersionInput = None) -> str:
        if path.startswith("http://") or path.startswith("https://"):
            if not path.startswith(GRAPH_HOST):
                return path
        relative, embedded = _prepare_relative_path(path)
        explicit = api_version or embedded
        version = (
            _coerce_api_version(explicit) if explicit else self._default_api_version
        )
        return f"{GRAPH_HOST}/{version}{relative}"


def map_response_to_error(response: httpx.Response) -> GraphAPIError:
    status = response.status_code
    retry_after = response.headers.get("Retry-After")
    body: Any = {}
    try:
        body = response.json()
    except (json.JSONDecodeError, ValueError):
        body = {}

    error_info = body.get("error") if isinstance(body, dict) else None
    code = None
    message = None
    if isinstance(error_info, dict):
        code = error_info.get("code")
        message = error_info.get("message")

    message = message or response.text or f"Graph request failed with status {status}"

    error: GraphAPIError
    if status == 401:
        error = AuthenticationError(message=message)
    elif status == 403:
        error = PermissionError(message=message)
    elif status == 404:
        error = NotFoundError(message=message)
    elif status == 429:
        error = RateLimitError(message=message, retry_after=retry_after)
    elif status in {408, 504}:
        error = RequestTimeoutError(message=message)
        error.status_code = status
    elif 500 <= status <= 599:
        error = TransientRemoteError(message=message, status_code=status)
    elif status == 409:
        error = PermanentRemoteError(
            message=message, status_code=status, category=GraphErrorCategory.CONFLICT
        )
    elif 400 <= status <= 499:
        error = PermanentRemoteError(message=message, status_code=status)
    else:
        error = GraphAPIError(message=message, status_code=status)

    if isinstance(code, str):
        error.code = code
    if retry_after and error.retry_after is None:
        error.retry_after = retry_after
    return error


__all__ = [
    "ApiVersionInput",
    "GraphAPIVersion",
    "GraphClient",
    "GraphClientConfig",
    "map_response_to_error",
]
