"""
Endpoint presets and record schemas for the collections this toolkit reads.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from ..config import (
    DEFENDER_API_BASE,
    DEFENDER_PAGE_SIZE,
    NVD_CVE_URL,
    NVD_PAGE_SIZE,
)
from .harvester import Endpoint
from .schema import RawRecord, RecordSchema, SchemaField


# ─── Defender for Endpoint ───────────────────────────────────────────────────

MACHINE_SCHEMA = RecordSchema(
    SchemaField("id"),
    SchemaField("computerDnsName", required=False),
    SchemaField("osPlatform", required=False),
    SchemaField("osVersion", required=False),
    SchemaField("healthStatus", required=False),
    SchemaField("riskScore", required=False),
    SchemaField("exposureLevel", required=False),
    SchemaField("lastIpAddress", required=False),
    SchemaField("lastExternalIpAddress", required=False),
    SchemaField("ipAddresses", list, required=False),
    SchemaField("lastSeen", datetime, required=False),
)

VULNERABILITY_SCHEMA = RecordSchema(
    SchemaField("id"),
    SchemaField("name", required=False),
    SchemaField("severity", required=False),
    SchemaField("cvssV3", float, required=False),
    SchemaField("exploitVerified", bool, required=False),
    SchemaField("publishedOn", datetime, required=False),
)


def defender_machines(page_size: Optional[int] = None) -> Endpoint:
    return Endpoint(
        url=f"{DEFENDER_API_BASE}/machines",
        page_size=page_size or DEFENDER_PAGE_SIZE,
        offset_param="$skip",
        limit_param="$top",
        items_key="value",
    )


def machine_vulnerabilities_url(machine_id: str) -> str:
    return f"{DEFENDER_API_BASE}/machines/{machine_id}/vulnerabilities"


# ─── NVD CVE 2.0 ─────────────────────────────────────────────────────────────

CVE_SCHEMA = RecordSchema(
    SchemaField("id", source="cve.id"),
    SchemaField("published", datetime, source="cve.published"),
    SchemaField("lastModified", datetime, required=False, source="cve.lastModified"),
    SchemaField("vulnStatus", required=False, source="cve.vulnStatus"),
    SchemaField("descriptions", list, required=False, source="cve.descriptions"),
)


def nvd_cves(page_size: Optional[int] = None) -> Endpoint:
    return Endpoint(
        url=NVD_CVE_URL,
        page_size=page_size or NVD_PAGE_SIZE,
        offset_param="startIndex",
        limit_param="resultsPerPage",
        items_key="vulnerabilities",
        total_key="totalResults",
    )


def cve_row(record: RawRecord) -> dict[str, Any]:
    """Export shape for a CVE: the English description replaces the list."""
    description = ""
    for entry in record.get("descriptions") or []:
        if isinstance(entry, dict) and entry.get("lang") == "en":
            description = entry.get("value", "")
            break
    return {
        "id": record["id"],
        "published": record["published"],
        "lastModified": record["lastModified"],
        "vulnStatus": record["vulnStatus"],
        "description": description,
    }
