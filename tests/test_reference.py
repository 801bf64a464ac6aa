from __future__ import annotations

from pathlib import Path

import pytest

from m365_harvest.join.ipv4 import ip_to_int
from m365_harvest.join.reference import NO_MATCH, ReferenceLoadError, ReferenceTable


def write(path: Path, text: str, encoding: str = "utf-8") -> Path:
    path.write_text(text, encoding=encoding)
    return path


def test_loads_prefix_scope_and_label(tmp_path: Path) -> None:
    path = write(
        tmp_path / "boundaries.csv",
        "Prefix,Scope,Name,Site\n"
        "10.120.26.,10.120.26.0/24,SCCM Production,HQ\n"
        "10.120.27.,10.120.27.0/24,SCCM Test,Lab\n",
    )

    table = ReferenceTable.load(path)

    assert len(table) == 2
    entry = table.entries[0]
    assert entry.prefix == "10.120.26."
    assert entry.scope == "10.120.26.0/24"
    assert entry.label == "SCCM Production"
    assert entry.mask_length == 24
    assert entry.network == ip_to_int("10.120.26.0")
    assert entry.extra["Site"] == "HQ"


def test_prefix_derived_from_scope_and_scope_from_prefix(tmp_path: Path) -> None:
    scopes = write(tmp_path / "scopes.csv", "Scope,Name\n10.1.2.0/24,Branch\n")
    prefixes = write(tmp_path / "prefixes.csv", "Prefix,Name\n10.1.3.,Branch 2\n")

    assert ReferenceTable.load(scopes).entries[0].prefix == "10.1.2."
    assert ReferenceTable.load(prefixes).entries[0].scope == "10.1.3.0/24"


def test_explicit_mask_length_overrides_every_entry(tmp_path: Path) -> None:
    path = write(tmp_path / "b.csv", "Scope,Name\n10.120.16.0/24,Campus\n")

    table = ReferenceTable.load(path, mask_length=20)

    entry = table.entries[0]
    assert entry.mask_length == 20
    assert entry.prefix == ""
    assert table.match_masked("10.120.26.55") == [entry]
    assert table.match_prefix("10.120.26.55") == []


def test_mask_length_none_uses_cidr_suffix(tmp_path: Path) -> None:
    path = write(
        tmp_path / "b.csv",
        "Scope,Name\n10.120.0.0/16,Campus\n10.120.26.0,Production\n",
    )

    table = ReferenceTable.load(path, mask_length=None)

    assert [e.mask_length for e in table] == [16, 24]
    assert table.entries[0].prefix == "10.120."


def test_custom_columns_and_bom(tmp_path: Path) -> None:
    path = write(
        tmp_path / "b.csv",
        "Subnet;Description\n10.5.5.0/24;Servers\n",
        encoding="utf-8-sig",
    )

    table = ReferenceTable.load(path, scope_column="Subnet", label_column="Description", delimiter=";")

    assert table.entries[0].label == "Servers"


def test_masked_and_prefix_matching() -> None:
    table = ReferenceTable.from_rows([
        {"Prefix": "10.120.26.", "Scope": "10.120.26.0/24", "Name": "SCCM Production"},
    ])

    assert [e.label for e in table.match_masked("10.120.26.55")] == ["SCCM Production"]
    assert table.match_masked("10.120.27.1") == []
    assert table.match_masked("garbage") == []
    assert [e.label for e in table.match_prefix("10.120.26.55")] == ["SCCM Production"]


def test_no_match_sentinel() -> None:
    assert NO_MATCH.label == "No Match"
    assert NO_MATCH.scope == "No Match"


def test_missing_file(tmp_path: Path) -> None:
    with pytest.raises(ReferenceLoadError):
        ReferenceTable.load(tmp_path / "absent.csv")


def test_missing_label_column(tmp_path: Path) -> None:
    path = write(tmp_path / "b.csv", "Prefix,Scope\n10.1.1.,10.1.1.0/24\n")

    with pytest.raises(ReferenceLoadError, match="label column"):
        ReferenceTable.load(path)


def test_missing_prefix_and_scope_columns(tmp_path: Path) -> None:
    path = write(tmp_path / "b.csv", "Name,Site\nX,Y\n")

    with pytest.raises(ReferenceLoadError):
        ReferenceTable.load(path)


def test_bad_address_reports_line(tmp_path: Path) -> None:
    path = write(
        tmp_path / "b.csv",
        "Scope,Name\n10.1.1.0/24,Good\n10.1.999.0/24,Bad\n",
    )

    with pytest.raises(ReferenceLoadError, match=r"b\.csv:3"):
        ReferenceTable.load(path)


def test_row_without_prefix_or_scope(tmp_path: Path) -> None:
    path = write(tmp_path / "b.csv", "Prefix,Scope,Name\n,,Orphan\n")

    with pytest.raises(ReferenceLoadError):
        ReferenceTable.load(path)


def test_empty_table(tmp_path: Path) -> None:
    path = write(tmp_path / "b.csv", "Prefix,Scope,Name\n")

    with pytest.raises(ReferenceLoadError, match="no entries"):
        ReferenceTable.load(path)
