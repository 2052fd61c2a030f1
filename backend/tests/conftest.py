"""
Pytest configuration and fixtures for techaudit tests.
"""
from datetime import datetime, timezone
from typing import Callable
from unittest.mock import AsyncMock

import httpx
import pytest

from techaudit.integrations.http import Fetcher

from tests.fixtures.sample_pages import (
    SAMPLE_ROBOTS_TXT,
    SAMPLE_URLSET_XML,
    WELL_FORMED_PAGE_HTML,
)


class FixedClock:
    """Clock pinned to one instant."""

    def __init__(self, instant: datetime):
        self.instant = instant

    def now(self) -> datetime:
        return self.instant


def _route_key(url: str) -> str:
    return url.rstrip("/")


def build_handler(routes: dict, default_status: int = 404) -> Callable[[httpx.Request], httpx.Response]:
    """
    MockTransport handler from a route table.

    Keys are "URL" or "METHOD URL". Values are a status code, a
    (status, headers, body) tuple, a callable taking the request, or an
    exception instance to raise.
    """
    table = {}
    for key, value in routes.items():
        method, _, url = key.partition(" ") if " " in key else ("", "", key)
        table[(method.upper(), _route_key(url))] = value

    def handler(request: httpx.Request) -> httpx.Response:
        url = _route_key(str(request.url))
        route = table.get((request.method, url), table.get(("", url)))
        if route is None:
            return httpx.Response(default_status)
        if isinstance(route, Exception):
            raise route
        if callable(route):
            return route(request)
        if isinstance(route, int):
            return httpx.Response(route)
        status, headers, body = route
        return httpx.Response(status, headers=headers, content=body)

    return handler


@pytest.fixture
def make_fetcher():
    """Build a Fetcher whose requests are answered from a route table."""
    def _make(routes: dict, default_status: int = 404, **kwargs) -> Fetcher:
        client = httpx.AsyncClient(transport=httpx.MockTransport(build_handler(routes, default_status)))
        return Fetcher(client=client, **kwargs)
    return _make


@pytest.fixture
def fixed_clock() -> FixedClock:
    return FixedClock(datetime(2026, 1, 10, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def mock_redis():
    """Mock Redis client for cache tests."""
    mock = AsyncMock()
    mock.get = AsyncMock(return_value=None)
    mock.set = AsyncMock(return_value=True)
    mock.close = AsyncMock()
    return mock


@pytest.fixture
def sample_html_page() -> str:
    return WELL_FORMED_PAGE_HTML


@pytest.fixture
def sample_robots_txt() -> str:
    return SAMPLE_ROBOTS_TXT


@pytest.fixture
def sample_urlset() -> bytes:
    return SAMPLE_URLSET_XML
