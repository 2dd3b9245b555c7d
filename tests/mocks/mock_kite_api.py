"""
Mock Kite Connect API for testing.
Replays canned HTTP responses through httpx.MockTransport; no network access.
"""

import asyncio
import json
from datetime import datetime, timezone
from typing import List
from urllib.parse import parse_qsl

import httpx

from services.api.rate_limiter import RateLimiter

API_KEY = "test_key"
API_SECRET = "test_secret"
NOW = datetime(2024, 1, 15, 10, 0, tzinfo=timezone.utc)

INSTRUMENTS_HEADER = (
    "instrument_token,exchange_token,tradingsymbol,name,last_price,expiry,"
    "strike,tick_size,lot_size,instrument_type,segment,exchange"
)


def instrument_row(n: int, lot_size: str = "1", symbol: str = None) -> str:
    symbol = symbol or f"SYM{n}"
    return f"{1000 + n},{n},{symbol},Company {n},0,,0,0.05,{lot_size},EQ,NSE,NSE"


def instruments_csv(count: int = 3, bad_row: int = None) -> str:
    rows = [INSTRUMENTS_HEADER]
    for n in range(1, count + 1):
        rows.append(instrument_row(n, lot_size="abc" if n == bad_row else "1"))
    return "\n".join(rows) + "\n"


class FakeClock:
    """Monotonic clock whose sleep advances time instead of waiting."""

    def __init__(self, start: float = 0.0):
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)


class CountingLimiter(RateLimiter):
    """Generous limiter that records how often a slot was requested."""

    def __init__(self):
        super().__init__(capacity=1000, refill_per_second=1000.0)
        self.acquired = 0

    async def acquire(self, timeout=None) -> None:
        self.acquired += 1
        await super().acquire(timeout)


class Recorder:
    """MockTransport handler that records requests and replays queued responses.

    A queued item may be an ``httpx.Response``, an exception to raise, or a
    callable taking the request.
    """

    def __init__(self, *responses):
        self.requests: List[httpx.Request] = []
        self._responses = list(responses)

    def queue(self, *responses) -> None:
        self._responses.extend(responses)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if not self._responses:
            raise AssertionError(f"unexpected request {request.method} {request.url}")
        response = self._responses.pop(0)
        if isinstance(response, Exception):
            raise response
        if callable(response):
            return response(request)
        return response


def envelope(data, status_code: int = 200) -> httpx.Response:
    return httpx.Response(status_code, json={"status": "success", "data": data})


def error_response(status_code: int, message: str, error_type: str = "InputException") -> httpx.Response:
    return httpx.Response(
        status_code,
        json={"status": "error", "message": message, "error_type": error_type},
    )


def form_of(request: httpx.Request) -> dict:
    """Decode a form-encoded request body to a flat dict."""
    return dict(parse_qsl(request.content.decode("utf-8")))


def json_field(request: httpx.Request, name: str):
    return json.loads(form_of(request)[name])
