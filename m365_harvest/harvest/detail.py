"""
Per-item detail calls (e.g. vulnerabilities of one device).

Each parent record triggers one request. A fixed delay separates successive
calls to stay under server-side throttling. A failed lookup is logged and
that parent is skipped; the run carries on.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Iterable, Iterator, Optional

from ..api.client import ApiClient, TransportError
from ..config import DETAIL_DELAY_SECONDS
from .schema import RawRecord, RecordSchema, SchemaError, freeze

logger = logging.getLogger("m365_harvest.harvest.detail")


class DetailFetcher:
    def __init__(
        self,
        client: ApiClient,
        url_for: Callable[[RawRecord], str],
        schema: Optional[RecordSchema] = None,
        items_key: str = "value",
        delay_seconds: float = DETAIL_DELAY_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.client = client
        self.url_for = url_for
        self.schema = schema
        self.items_key = items_key
        self.delay_seconds = delay_seconds
        self._sleep = sleep
        self.calls = 0
        self.errors: list[str] = []

    def fetch(self, record: RawRecord) -> list[RawRecord]:
        """One detail lookup. Raises TransportError / SchemaError."""
        url = self.url_for(record)
        body = self.client.get(url)
        items = body.get(self.items_key)
        if not isinstance(items, list):
            raise TransportError(None, f"Malformed detail body: '{self.items_key}' is not a list", url)
        if self.schema is not None:
            return [self.schema.project(item) for item in items]
        for item in items:
            if not isinstance(item, dict):
                raise TransportError(None, "Malformed detail body: item is not an object", url)
        return [freeze(item) for item in items]

    def fetch_all(self, records: Iterable[RawRecord]) -> Iterator[tuple[RawRecord, list[RawRecord]]]:
        """Yield (parent, details) pairs, skipping parents whose lookup fails."""
        for record in records:
            if self.calls and self.delay_seconds > 0:
                self._sleep(self.delay_seconds)
            self.calls += 1
            try:
                details = self.fetch(record)
            except (TransportError, SchemaError) as e:
                message = f"Detail lookup failed for {record.get('id', '<unknown>')}: {e}"
                self.errors.append(message)
                logger.warning(message)
                continue
            yield record, details

        if self.errors:
            logger.warning(f"{len(self.errors)} of {self.calls} detail lookups failed")
