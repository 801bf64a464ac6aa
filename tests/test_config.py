from __future__ import annotations

import json
from pathlib import Path

import pytest

from m365_harvest.config import (
    DEFAULT_MASK_LENGTH,
    DEFENDER_SCOPE,
    AuthConfig,
    EngineConfig,
    HarvestConfig,
)

ENV_VARS = [
    "M365_TENANT_ID",
    "M365_CLIENT_ID",
    "M365_CERT_PATH",
    "M365_CERT_PASSWORD",
    "M365_ACCESS_TOKEN",
    "NVD_API_KEY",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch) -> None:
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def test_defaults() -> None:
    config = EngineConfig()

    assert config.auth.mode == "certificate"
    assert config.auth.scopes == [DEFENDER_SCOPE]
    assert config.harvest.page_size is None
    assert config.harvest.rate_limit.max_requests == 100
    assert config.harvest.rate_limit.window_seconds == 60.0
    assert config.join.mask_length == DEFAULT_MASK_LENGTH
    assert config.join.mode == "enrich"
    assert config.join.strategy == "masked"
    assert config.export.mode == "overwrite"
    assert config.export.ceiling is None
    assert config.verbose is False


def test_secrets_fall_back_to_environment(monkeypatch) -> None:
    monkeypatch.setenv("M365_TENANT_ID", "tenant-from-env")
    monkeypatch.setenv("M365_ACCESS_TOKEN", "token-from-env")
    monkeypatch.setenv("NVD_API_KEY", "nvd-from-env")

    auth = AuthConfig(client_id="explicit-client")

    assert auth.tenant_id == "tenant-from-env"
    assert auth.client_id == "explicit-client"
    assert auth.access_token == "token-from-env"
    assert HarvestConfig().nvd_api_key == "nvd-from-env"


def test_explicit_values_win_over_environment(monkeypatch) -> None:
    monkeypatch.setenv("M365_TENANT_ID", "tenant-from-env")

    assert AuthConfig(tenant_id="explicit").tenant_id == "explicit"


def test_from_file(tmp_path: Path) -> None:
    path = tmp_path / "config.json"
    path.write_text(json.dumps({
        "auth": {"mode": "token", "access_token": "abc", "unknown_key": 1},
        "harvest": {
            "page_size": 500,
            "detail_delay_seconds": 0,
            "rate_limit": {"max_requests": 10, "window_seconds": 5},
        },
        "join": {"reference_path": "subnets.csv", "mask_length": None, "mode": "explode"},
        "export": {"ceiling": 1000, "mode": "append"},
        "verbose": True,
    }), encoding="utf-8")

    config = EngineConfig.from_file(str(path))

    assert config.auth.mode == "token"
    assert config.auth.access_token == "abc"
    assert not hasattr(config.auth, "unknown_key")
    assert config.harvest.page_size == 500
    assert config.harvest.detail_delay_seconds == 0
    assert config.harvest.rate_limit.max_requests == 10
    assert config.harvest.rate_limit.window_seconds == 5
    assert config.join.reference_path == "subnets.csv"
    assert config.join.mask_length is None
    assert config.join.mode == "explode"
    assert config.export.ceiling == 1000
    assert config.export.mode == "append"
    assert config.verbose is True


def test_from_file_with_missing_sections(tmp_path: Path) -> None:
    path = tmp_path / "config.json"
    path.write_text("{}", encoding="utf-8")

    config = EngineConfig.from_file(str(path))

    assert config.export.delimiter == ","
    assert config.harvest.max_pages == 10000
