"""
Configuration module for the M365 harvesting toolkit.
Defines tunable parameters, remote endpoints, and operational settings.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from typing import Optional


# ─── Remote Endpoints ────────────────────────────────────────────────────────

DEFENDER_API_BASE = "https://api.securitycenter.microsoft.com/api"
DEFENDER_SCOPE = "https://api.securitycenter.microsoft.com/.default"
NVD_CVE_URL = "https://services.nvd.nist.gov/rest/json/cves/2.0"
AUTHORITY_TEMPLATE = "https://login.microsoftonline.com/{tenant_id}"

# HTTP
REQUEST_TIMEOUT_SECONDS = 60.0
CONNECT_TIMEOUT_SECONDS = 30.0


# ─── Rate Limiting ───────────────────────────────────────────────────────────

NVD_MAX_REQUESTS_WITH_KEY = 50    # NVD public limit with an API key
NVD_MAX_REQUESTS_NO_KEY = 5       # NVD public limit without a key
NVD_WINDOW_SECONDS = 30.0
DEFENDER_MAX_REQUESTS = 100       # Defender machine API: 100 calls/minute
DEFENDER_WINDOW_SECONDS = 60.0
DETAIL_DELAY_SECONDS = 1.0        # Fixed pause between per-item detail calls


# ─── Pagination ──────────────────────────────────────────────────────────────

DEFENDER_PAGE_SIZE = 10000        # Defender $top maximum
NVD_PAGE_SIZE = 2000              # NVD resultsPerPage maximum
MAX_PAGES_PER_ENDPOINT = 10000    # Safety cap on pagination loops
DEFAULT_MIN_PUBLISHED = "2005-12-31"


# ─── Join / Export ───────────────────────────────────────────────────────────

DEFAULT_MASK_LENGTH = 24
NO_MATCH_LABEL = "No Match"
MULTI_VALUE_DELIMITER = ", "
CSV_DELIMITER = ","
CSV_ENCODING = "utf-8"


@dataclass
class AuthConfig:
    """Token acquisition settings. Secrets fall back to environment variables."""
    mode: str = "certificate"      # "certificate" or "token"
    tenant_id: str = ""
    client_id: str = ""
    certificate_path: str = ""     # Path to base64-encoded PFX
    certificate_password: str = ""
    access_token: str = ""         # Pre-issued bearer token ("token" mode)
    scopes: list[str] = field(default_factory=lambda: [DEFENDER_SCOPE])

    def __post_init__(self):
        self.tenant_id = self.tenant_id or os.environ.get("M365_TENANT_ID", "")
        self.client_id = self.client_id or os.environ.get("M365_CLIENT_ID", "")
        self.certificate_path = self.certificate_path or os.environ.get("M365_CERT_PATH", "")
        self.certificate_password = (
            self.certificate_password or os.environ.get("M365_CERT_PASSWORD", "")
        )
        self.access_token = self.access_token or os.environ.get("M365_ACCESS_TOKEN", "")


@dataclass
class RateLimitConfig:
    """At most max_requests calls per window_seconds."""
    max_requests: int = DEFENDER_MAX_REQUESTS
    window_seconds: float = DEFENDER_WINDOW_SECONDS


@dataclass
class HarvestConfig:
    """Controls for paginated collection and detail calls."""
    page_size: Optional[int] = None          # None = preset default
    max_pages: int = MAX_PAGES_PER_ENDPOINT
    detail_delay_seconds: float = DETAIL_DELAY_SECONDS
    min_published: str = DEFAULT_MIN_PUBLISHED
    nvd_api_key: str = ""
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)

    def __post_init__(self):
        self.nvd_api_key = self.nvd_api_key or os.environ.get("NVD_API_KEY", "")


@dataclass
class JoinConfig:
    """Reference-table join behaviour."""
    reference_path: str = ""
    prefix_column: str = "Prefix"
    scope_column: str = "Scope"
    label_column: str = "Name"
    mask_length: Optional[int] = DEFAULT_MASK_LENGTH   # None = per-entry CIDR suffix
    mode: str = "enrich"          # "enrich" or "explode"
    strategy: str = "masked"      # "masked" or "prefix"
    drop_empty: bool = False
    delimiter: str = MULTI_VALUE_DELIMITER


@dataclass
class ExportConfig:
    """Output sink settings."""
    output_path: str = ""
    mode: str = "overwrite"       # "overwrite" or "append"
    ceiling: Optional[int] = None
    delimiter: str = CSV_DELIMITER
    encoding: str = CSV_ENCODING


# ─── Master Configuration ───────────────────────────────────────────────────

@dataclass
class EngineConfig:
    """Top-level configuration for a harvesting run."""
    auth: AuthConfig = field(default_factory=AuthConfig)
    harvest: HarvestConfig = field(default_factory=HarvestConfig)
    join: JoinConfig = field(default_factory=JoinConfig)
    export: ExportConfig = field(default_factory=ExportConfig)
    verbose: bool = False

    @classmethod
    def from_file(cls, path: str) -> "EngineConfig":
        """Load configuration from a JSON file."""
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        config = cls()
        for section in ("auth", "harvest", "join", "export"):
            target = getattr(config, section)
            for k, v in data.get(section, {}).items():
                if k == "rate_limit" and isinstance(v, dict):
                    config.harvest.rate_limit = RateLimitConfig(**v)
                elif hasattr(target, k):
                    setattr(target, k, v)
        config.verbose = data.get("verbose", False)
        return config
