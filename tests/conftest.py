from __future__ import annotations

from typing import Any, Callable, Optional

import httpx
import pytest

from m365_harvest.api.client import ApiClient
from m365_harvest.harvest.harvester import Endpoint

BASE_URL = "https://api.example.test/things"


class FakeClock:
    """Monotonic clock that only moves when something sleeps on it."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class PagedServer:
    """Offset/limit collection endpoint backed by a list."""

    def __init__(
        self,
        items: list[dict[str, Any]],
        max_page: Optional[int] = None,
        reported_total: Optional[int] = None,
        fail_on_call: Optional[int] = None,
    ) -> None:
        self.items = items
        self.max_page = max_page
        self.reported_total = reported_total
        self.fail_on_call = fail_on_call
        self.offsets: list[int] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        offset = int(request.url.params["offset"])
        limit = int(request.url.params["limit"])
        self.offsets.append(offset)
        if self.fail_on_call == len(self.offsets):
            return httpx.Response(503, json={"error": {"message": "Service unavailable"}})
        size = min(limit, self.max_page) if self.max_page else limit
        total = len(self.items) if self.reported_total is None else self.reported_total
        return httpx.Response(
            200, json={"items": self.items[offset:offset + size], "totalCount": total}
        )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_client() -> Callable[..., ApiClient]:
    def factory(handler: Callable[[httpx.Request], httpx.Response], **kwargs: Any) -> ApiClient:
        return ApiClient(transport=httpx.MockTransport(handler), **kwargs)
    return factory


@pytest.fixture
def endpoint() -> Endpoint:
    return Endpoint(
        url=BASE_URL,
        page_size=10,
        offset_param="offset",
        limit_param="limit",
        items_key="items",
        total_key="totalCount",
    )


@pytest.fixture
def items() -> list[dict[str, Any]]:
    return [{"id": f"item-{i:02d}", "n": i} for i in range(25)]
