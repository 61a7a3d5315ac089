"""
In-process fakes for agent tests: a virtual clock and a scripted HTTP client.
"""

import asyncio
import inspect
from typing import Any, Optional

from shared.errors import PermanentProviderError
from shared.http import HttpClient


class FakeClock:
    """Monotonic clock that only moves when slept on or advanced."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += max(0.0, seconds)
        await asyncio.sleep(0)


def ok(data: list) -> dict:
    """Successful {code, msg, data} envelope."""
    return {"code": "0", "msg": "", "data": data}


def price_item(chain_index: str, address: str, price: float, **extra: Any) -> dict:
    """One on-chain price entry in wire format."""
    item = {
        "chainIndex": chain_index,
        "tokenContractAddress": address,
        "price": str(price),
        "time": "1716892020000",
    }
    item.update(extra)
    return item


def ticker(inst_id: str, last: float, vol_ccy_24h: float = 0.0) -> dict:
    """One spot ticker in wire format."""
    return {
        "instId": inst_id,
        "last": str(last),
        "bidPx": str(last),
        "askPx": str(last),
        "vol24h": "0",
        "volCcy24h": str(vol_ccy_24h),
        "ts": "1716892020000",
    }


class FakeHttpClient(HttpClient):
    """
    Scripted client. Each (method, path) route holds a response, a list of
    responses consumed in order (the last one repeats), or a handler called
    with the request body / params. Exceptions are raised, coroutines are
    awaited. Every call is recorded in ``calls``.
    """

    def __init__(self, provider: str = "fake"):
        self.provider = provider
        self.calls: list[tuple[str, str, Any]] = []
        self.closed = False
        self._routes: dict[tuple[str, str], Any] = {}

    def route(self, method: str, path: str, response: Any) -> "FakeHttpClient":
        self._routes[(method.upper(), path)] = response
        return self

    def calls_to(self, method: str, path: Optional[str] = None) -> list[Any]:
        """Bodies / params of recorded calls matching ``method`` and ``path``."""
        return [
            arg for m, p, arg in self.calls
            if m == method.upper() and (path is None or p == path)
        ]

    async def get(self, path: str, params=None) -> Any:
        return await self._dispatch("GET", path, dict(params or {}))

    async def post(self, path: str, body: Any) -> Any:
        return await self._dispatch("POST", path, body)

    async def close(self) -> None:
        self.closed = True

    async def _dispatch(self, method: str, path: str, arg: Any) -> Any:
        self.calls.append((method, path, arg))
        await asyncio.sleep(0)

        if (method, path) not in self._routes:
            raise PermanentProviderError(
                f"No route for {method} {path}", provider=self.provider, status=404
            )

        response = self._routes[(method, path)]
        if isinstance(response, list):
            response = response.pop(0) if len(response) > 1 else response[0]

        if isinstance(response, BaseException):
            raise response
        if callable(response):
            response = response(arg)
            if inspect.isawaitable(response):
                response = await response
            if isinstance(response, BaseException):
                raise response
        return response
