"""
Paginated, rate-limited harvesting of a remote collection endpoint.
Yields one record at a time; nothing is buffered beyond the current page.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Iterator, Mapping, Optional

from ..api.client import ApiClient, TransportError
from ..config import MAX_PAGES_PER_ENDPOINT
from .ratelimit import RateLimiter
from .schema import RawRecord, RecordSchema, freeze

logger = logging.getLogger("m365_harvest.harvest")

RecordPredicate = Callable[[RawRecord], bool]


@dataclass(frozen=True)
class Endpoint:
    """Where and how to page through a collection."""
    url: str
    page_size: int
    offset_param: str = "$skip"
    limit_param: str = "$top"
    items_key: str = "value"
    total_key: Optional[str] = None      # None: stop only on an empty page
    params: Mapping[str, Any] = field(default_factory=dict)

    def page_params(self, offset: int) -> dict[str, Any]:
        return {**self.params, self.offset_param: offset, self.limit_param: self.page_size}


class Harvester:
    """
    Offset-paged collector.

    The offset advances by the number of items the server actually returned,
    so a short page neither skips nor repeats records. Iteration stops when
    the offset reaches the reported total, when a page comes back empty, or
    at the max_pages safety cap. Any page failure propagates; records
    already yielded stay with the consumer.
    """

    def __init__(
        self,
        client: ApiClient,
        endpoint: Endpoint,
        rate_limiter: Optional[RateLimiter] = None,
        schema: Optional[RecordSchema] = None,
        predicate: Optional[RecordPredicate] = None,
        max_pages: int = MAX_PAGES_PER_ENDPOINT,
    ):
        if endpoint.page_size < 1:
            raise ValueError("page_size must be at least 1")
        self.client = client
        self.endpoint = endpoint
        self.rate_limiter = rate_limiter
        self.schema = schema
        self.predicate = predicate
        self.max_pages = max_pages
        self.pages_fetched = 0
        self.records_yielded = 0
        self.records_filtered = 0

    def __iter__(self) -> Iterator[RawRecord]:
        return self.harvest()

    def harvest(self) -> Iterator[RawRecord]:
        """Stream every record of the collection, starting from offset 0."""
        self.pages_fetched = 0
        self.records_yielded = 0
        self.records_filtered = 0
        ep = self.endpoint
        offset = 0
        total: Optional[int] = None

        while self.pages_fetched < self.max_pages:
            if self.rate_limiter is not None:
                self.rate_limiter.acquire()

            body = self.client.get(ep.url, params=ep.page_params(offset))
            self.pages_fetched += 1
            items, total = self._read_page(body)

            for item in items:
                record = self._to_record(item)
                if self.predicate is not None and not self.predicate(record):
                    self.records_filtered += 1
                    continue
                self.records_yielded += 1
                yield record

            if not items:
                logger.debug(f"Empty page at offset {offset} for {ep.url}; stopping")
                break
            offset += len(items)
            if total is not None and offset >= total:
                break
        else:
            logger.warning(
                f"Pagination safety cap reached ({self.max_pages} pages) for endpoint: {ep.url}"
            )

        logger.info(
            f"Harvested {self.records_yielded} records from {ep.url} "
            f"({self.pages_fetched} pages, {self.records_filtered} filtered, total={total})"
        )

    def _to_record(self, item: Any) -> RawRecord:
        if self.schema is not None:
            return self.schema.project(item)
        if not isinstance(item, Mapping):
            raise TransportError(
                None, f"Malformed page: item is {type(item).__name__}, not an object", self.endpoint.url
            )
        return freeze(item)

    def _read_page(self, body: dict) -> tuple[list, Optional[int]]:
        ep = self.endpoint
        items = body.get(ep.items_key)
        if not isinstance(items, list):
            raise TransportError(None, f"Malformed page: '{ep.items_key}' is not a list", ep.url)

        if ep.total_key is None:
            return items, None
        total = body.get(ep.total_key)
        if isinstance(total, bool) or not isinstance(total, int):
            raise TransportError(None, f"Malformed page: '{ep.total_key}' is not an integer", ep.url)
        return items, total


def published_after(field_name: str, threshold: datetime) -> RecordPredicate:
    """Keep records whose timestamp field is strictly later than threshold."""
    limit = _as_utc(threshold)

    def predicate(record: RawRecord) -> bool:
        value = record.get(field_name)
        if not isinstance(value, datetime):
            return False
        return _as_utc(value) > limit

    return predicate


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
