"""
Reference table: subnet -> label lookup loaded from a local CSV.
Loaded once, before harvesting starts, and read-only afterwards.
"""

from __future__ import annotations

import csv
import logging
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Iterable, Mapping, Optional

from ..config import DEFAULT_MASK_LENGTH, NO_MATCH_LABEL
from .ipv4 import (
    int_to_ip,
    ip_to_int,
    mask_for,
    network_from_prefix,
    parse_scope,
    prefix_for,
    prefix_match,
)

logger = logging.getLogger("m365_harvest.join.reference")


class ReferenceLoadError(Exception):
    """Raised when the reference table is missing or malformed."""
    pass


@dataclass(frozen=True)
class ReferenceEntry:
    prefix: str          # "10.120.26."; empty when the mask is not octet-aligned
    scope: str           # "10.120.26.0/24"
    label: str
    network: int
    mask_length: int
    extra: Mapping[str, str] = field(default_factory=dict, compare=False)

    def contains(self, address: int) -> bool:
        mask = mask_for(self.mask_length)
        return (address & mask) == (self.network & mask)


NO_MATCH = ReferenceEntry(
    prefix="", scope=NO_MATCH_LABEL, label=NO_MATCH_LABEL, network=0, mask_length=32
)


class ReferenceTable:
    def __init__(self, entries: Iterable[ReferenceEntry]):
        self.entries: tuple[ReferenceEntry, ...] = tuple(entries)

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self):
        return iter(self.entries)

    def match_masked(self, candidate: str) -> list[ReferenceEntry]:
        try:
            address = ip_to_int(candidate)
        except ValueError:
            logger.debug(f"Unparseable candidate address: {candidate!r}")
            return []
        return [e for e in self.entries if e.contains(address)]

    def match_prefix(self, candidate: str) -> list[ReferenceEntry]:
        return [e for e in self.entries if prefix_match(candidate, e.prefix)]

    @classmethod
    def from_rows(
        cls,
        rows: Iterable[Mapping[str, str]],
        prefix_column: str = "Prefix",
        scope_column: str = "Scope",
        label_column: str = "Name",
        mask_length: Optional[int] = DEFAULT_MASK_LENGTH,
        source: str = "<rows>",
    ) -> "ReferenceTable":
        """
        Build a table from dict rows.

        mask_length applies to every entry when given. With None, each
        entry's length comes from its scope's CIDR suffix, then from the
        number of octets in its prefix, then the /24 default.
        """
        if mask_length is not None:
            mask_for(mask_length)

        entries = []
        for line, row in enumerate(rows, start=2):
            label = (row.get(label_column) or "").strip()
            scope_text = (row.get(scope_column) or "").strip()
            prefix_text = (row.get(prefix_column) or "").strip()
            if not scope_text and not prefix_text:
                raise ReferenceLoadError(f"{source}:{line}: row has neither prefix nor scope")
            try:
                entries.append(
                    _build_entry(row, label, scope_text, prefix_text, mask_length,
                                 (prefix_column, scope_column, label_column))
                )
            except ValueError as e:
                raise ReferenceLoadError(f"{source}:{line}: {e}") from e

        if not entries:
            raise ReferenceLoadError(f"{source}: reference table has no entries")
        logger.info(f"Loaded {len(entries)} reference entries from {source}")
        return cls(entries)

    @classmethod
    def load(
        cls,
        path: str | Path,
        prefix_column: str = "Prefix",
        scope_column: str = "Scope",
        label_column: str = "Name",
        mask_length: Optional[int] = DEFAULT_MASK_LENGTH,
        delimiter: str = ",",
    ) -> "ReferenceTable":
        path = Path(path)
        try:
            with open(path, "r", newline="", encoding="utf-8-sig") as fh:
                reader = csv.DictReader(fh, delimiter=delimiter)
                columns = reader.fieldnames or []
                if label_column not in columns:
                    raise ReferenceLoadError(f"{path}: missing label column '{label_column}'")
                if prefix_column not in columns and scope_column not in columns:
                    raise ReferenceLoadError(
                        f"{path}: needs a '{prefix_column}' or '{scope_column}' column"
                    )
                rows = list(reader)
        except OSError as e:
            raise ReferenceLoadError(f"Cannot read reference table {path}: {e}") from e
        except csv.Error as e:
            raise ReferenceLoadError(f"{path}: {e}") from e

        return cls.from_rows(
            rows,
            prefix_column=prefix_column,
            scope_column=scope_column,
            label_column=label_column,
            mask_length=mask_length,
            source=str(path),
        )


def _build_entry(
    row: Mapping[str, str],
    label: str,
    scope_text: str,
    prefix_text: str,
    mask_length: Optional[int],
    known_columns: tuple[str, str, str],
) -> ReferenceEntry:
    if scope_text:
        network, length = parse_scope(scope_text)
        if length is None and prefix_text:
            length = network_from_prefix(prefix_text)[1]
    else:
        network, length = network_from_prefix(prefix_text)

    if mask_length is not None:
        length = mask_length
    elif length is None:
        length = DEFAULT_MASK_LENGTH

    network &= mask_for(length)
    if not prefix_text and length % 8 == 0:
        prefix_text = prefix_for(network, length)

    extra = {k: v for k, v in row.items() if k not in known_columns and k is not None}
    return ReferenceEntry(
        prefix=prefix_text,
        scope=scope_text or f"{int_to_ip(network)}/{length}",
        label=label,
        network=network,
        mask_length=length,
        extra=MappingProxyType(extra),
    )
