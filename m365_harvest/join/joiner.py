"""
Joiner — attaches reference matches to harvested records.

Every candidate address in a record contributes either each reference entry
it matches or the NO_MATCH sentinel. Two output shapes:

  enrich   one output record per input record; scopes and labels of all
           contributions joined into single delimited cells
  explode  one output record per (record, candidate, match), with the
           candidate in its own column (used to sort machines by subnet)
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, Iterable, Iterator, Mapping, Optional

from ..config import MULTI_VALUE_DELIMITER, NO_MATCH_LABEL
from ..harvest.schema import SchemaError
from .ipv4 import extract_candidates, parse_scope
from .reference import NO_MATCH, ReferenceEntry, ReferenceTable

logger = logging.getLogger("m365_harvest.join")

EnrichedRecord = Mapping[str, Any]


class JoinMode(str, Enum):
    ENRICH = "enrich"
    EXPLODE = "explode"


class MatchStrategy(str, Enum):
    MASKED = "masked"
    PREFIX = "prefix"


class Joiner:
    def __init__(
        self,
        table: ReferenceTable,
        candidate_field: str,
        mode: JoinMode = JoinMode.ENRICH,
        strategy: MatchStrategy = MatchStrategy.MASKED,
        drop_empty: bool = False,
        candidate_key: Optional[str] = None,
        delimiter: str = MULTI_VALUE_DELIMITER,
        candidate_column: str = "Candidate",
        scope_column: str = "MatchedScope",
        label_column: str = "MatchedName",
    ):
        self.table = table
        self.candidate_field = candidate_field
        self.mode = JoinMode(mode)
        self.strategy = MatchStrategy(strategy)
        self.drop_empty = drop_empty
        self.candidate_key = candidate_key
        self.delimiter = delimiter
        self.candidate_column = candidate_column
        self.scope_column = scope_column
        self.label_column = label_column
        self.records_in = 0
        self.records_out = 0
        self.unmatched_candidates = 0

    def match(self, candidate: str) -> list[ReferenceEntry]:
        """All entries matching one candidate, or [NO_MATCH]."""
        if self.strategy is MatchStrategy.MASKED:
            matches = self.table.match_masked(candidate)
        else:
            matches = self.table.match_prefix(candidate)
        if not matches:
            self.unmatched_candidates += 1
            return [NO_MATCH]
        return matches

    @property
    def output_columns(self) -> list[str]:
        if self.mode is JoinMode.EXPLODE:
            return [self.candidate_column, self.scope_column, self.label_column]
        return [self.scope_column, self.label_column]

    def check_fields(self, fields: Iterable[str], source: str = "record") -> None:
        """
        Fail on a field set the join cannot use: the candidate field must be
        present and no output column may shadow an input field.
        """
        fields = set(fields)
        if self.candidate_field not in fields:
            raise SchemaError(self.candidate_field, f"candidate field not present in {source}")
        for column in self.output_columns:
            if column in fields:
                raise SchemaError(column, f"output column already present in {source}")

    def contributions(self, record: Mapping[str, Any]) -> list[tuple[str, ReferenceEntry]]:
        """(candidate, entry) pairs for one record, in candidate order. None means no candidates."""
        self.check_fields(record.keys())
        candidates = extract_candidates(record[self.candidate_field], self.candidate_key)
        return [(c, entry) for c in candidates for entry in self.match(c)]

    def join(self, records: Iterable[Mapping[str, Any]]) -> Iterator[EnrichedRecord]:
        for record in records:
            self.records_in += 1
            for enriched in self.join_one(record):
                self.records_out += 1
                yield enriched

    def join_one(self, record: Mapping[str, Any]) -> list[EnrichedRecord]:
        pairs = self.contributions(record)
        if not pairs and self.drop_empty:
            return []

        base = flatten_record(record, self.delimiter)
        if self.mode is JoinMode.ENRICH:
            return [_freeze({
                **base,
                self.scope_column: self.delimiter.join(e.scope for _, e in pairs),
                self.label_column: self.delimiter.join(e.label for _, e in pairs),
            })]

        if not pairs:
            pairs = [("", None)]
        return [
            _freeze({
                **base,
                self.candidate_column: candidate,
                self.scope_column: entry.scope if entry else "",
                self.label_column: entry.label if entry else "",
            })
            for candidate, entry in pairs
        ]


def flatten_record(record: Mapping[str, Any], delimiter: str = MULTI_VALUE_DELIMITER) -> dict[str, Any]:
    """Scalar-only copy of a record, ready for a CSV cell each."""
    return {k: to_scalar(v, delimiter) for k, v in record.items()}


def to_scalar(value: Any, delimiter: str = MULTI_VALUE_DELIMITER) -> Any:
    if value is None:
        return ""
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (list, tuple)):
        if all(isinstance(v, (str, int, float)) for v in value):
            return delimiter.join(str(v) for v in value)
        return json.dumps(value, default=str)
    if isinstance(value, Mapping):
        return json.dumps(dict(value), default=str)
    return value


def sort_records(
    records: Iterable[EnrichedRecord],
    field: str,
    delimiter: str = MULTI_VALUE_DELIMITER,
) -> list[EnrichedRecord]:
    """
    Stable sort on one column. Address / CIDR values sort numerically by
    the first delimited value, other text after them lexically, and
    "No Match" / blanks last.
    """
    def sort_key(record: EnrichedRecord):
        value = str(record.get(field, ""))
        if not value or value == NO_MATCH_LABEL:
            return (2, 0, value)
        try:
            network, _ = parse_scope(value.split(delimiter)[0].strip())
            return (0, network, value)
        except ValueError:
            return (1, 0, value)

    return sorted(records, key=sort_key)


def _freeze(values: dict[str, Any]) -> EnrichedRecord:
    return MappingProxyType(values)
