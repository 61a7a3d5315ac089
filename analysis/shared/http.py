"""
Network client abstraction for provider calls.

The price pipeline depends only on "an authenticated HTTP client capable
of GET/POST with a deadline". Request signing is an injected collaborator.
"""

import asyncio
import json
from abc import ABC, abstractmethod
from typing import Any, Callable, Mapping, Optional
from urllib.parse import urlencode

import aiohttp

from .errors import (
    AuthenticationError,
    MalformedPayloadError,
    PermanentProviderError,
    ProviderTimeoutError,
    RateLimitedError,
    TransientProviderError,
)
from .logger import AgentLogger

# (method, request_path_with_query, body) -> headers
RequestSigner = Callable[[str, str, str], Mapping[str, str]]


def raise_for_status(status: int, provider: str, detail: str = "") -> None:
    """Map an HTTP status onto the provider error taxonomy."""
    if 200 <= status < 300:
        return
    message = f"HTTP {status}" + (f": {detail[:200]}" if detail else "")
    if status == 429:
        raise RateLimitedError(message, provider=provider, status=status)
    if status in (401, 403):
        raise AuthenticationError(message, provider=provider, status=status)
    if status >= 500 or status == 408:
        raise TransientProviderError(message, provider=provider, status=status)
    raise PermanentProviderError(message, provider=provider, status=status)


class HttpClient(ABC):
    """JSON-over-HTTP client used by provider sources."""

    provider: str = ""

    @abstractmethod
    async def get(self, path: str, params: Optional[Mapping[str, str]] = None) -> Any:
        """GET ``path`` and return the decoded JSON body."""

    @abstractmethod
    async def post(self, path: str, body: Any) -> Any:
        """POST ``body`` as JSON to ``path`` and return the decoded JSON body."""

    async def close(self) -> None:
        """Release network resources."""


class AiohttpClient(HttpClient):
    """
    aiohttp-backed client with a per-request deadline.

    Owns its session unless one is injected. Errors are raised from the
    shared taxonomy so callers never see aiohttp exception types.
    """

    def __init__(
        self,
        base_url: str,
        provider: str,
        signer: Optional[RequestSigner] = None,
        timeout_s: float = 30.0,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.logger = AgentLogger("SHARED-HTTP").bind(provider=provider)
        self.base_url = base_url.rstrip("/")
        self.provider = provider
        self.signer = signer
        self.timeout = aiohttp.ClientTimeout(total=timeout_s)
        self._session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()

    def _headers(self, method: str, request_path: str, body: str) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.signer is not None:
            headers.update(self.signer(method, request_path, body))
        return headers

    async def get(self, path: str, params: Optional[Mapping[str, str]] = None) -> Any:
        request_path = f"{path}?{urlencode(params)}" if params else path
        return await self._request("GET", request_path, "")

    async def post(self, path: str, body: Any) -> Any:
        return await self._request("POST", path, json.dumps(body, separators=(",", ":")))

    async def _request(self, method: str, request_path: str, body: str) -> Any:
        session = await self._get_session()
        url = f"{self.base_url}{request_path}"
        headers = self._headers(method, request_path, body)

        self.logger.debug("Provider request", method=method, path=request_path)
        try:
            async with session.request(
                method,
                url,
                data=body or None,
                headers=headers,
                timeout=self.timeout,
            ) as resp:
                text = await resp.text()
                raise_for_status(resp.status, self.provider, text)
        except asyncio.TimeoutError as e:
            raise ProviderTimeoutError(
                f"{method} {request_path} timed out", provider=self.provider
            ) from e
        except aiohttp.ClientError as e:
            raise TransientProviderError(
                f"{method} {request_path} failed: {e}", provider=self.provider
            ) from e

        try:
            return json.loads(text)
        except ValueError as e:
            raise MalformedPayloadError(
                f"Undecodable JSON from {request_path}", provider=self.provider
            ) from e
