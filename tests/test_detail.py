from __future__ import annotations

import httpx

from m365_harvest.harvest.detail import DetailFetcher
from m365_harvest.harvest.schema import freeze
from m365_harvest.harvest.sources import VULNERABILITY_SCHEMA, machine_vulnerabilities_url

VULNS = {
    "m1": [{"id": "CVE-2024-0001", "severity": "High", "cvssV3": 8.1}],
    "m3": [{"id": "CVE-2023-1111", "severity": "Low"}, {"id": "CVE-2022-2222"}],
}


def defender(request: httpx.Request) -> httpx.Response:
    machine_id = request.url.path.split("/")[-2]
    if machine_id not in VULNS:
        return httpx.Response(404, json={"error": {"message": "Machine not found"}})
    return httpx.Response(200, json={"value": VULNS[machine_id]})


def test_failed_lookup_is_skipped_and_run_continues(make_client, clock) -> None:
    machines = [freeze({"id": m}) for m in ("m1", "m2", "m3")]

    with make_client(defender) as client:
        fetcher = DetailFetcher(
            client,
            lambda m: machine_vulnerabilities_url(m["id"]),
            schema=VULNERABILITY_SCHEMA,
            sleep=clock.sleep,
        )
        results = list(fetcher.fetch_all(machines))

    assert [m["id"] for m, _ in results] == ["m1", "m3"]
    assert [v["id"] for v in results[1][1]] == ["CVE-2023-1111", "CVE-2022-2222"]
    assert results[0][1][0]["cvssV3"] == 8.1
    assert fetcher.calls == 3
    assert len(fetcher.errors) == 1
    assert "m2" in fetcher.errors[0]


def test_fixed_delay_between_successive_calls(make_client, clock) -> None:
    machines = [freeze({"id": m}) for m in ("m1", "m3")]

    with make_client(defender) as client:
        fetcher = DetailFetcher(
            client,
            lambda m: machine_vulnerabilities_url(m["id"]),
            delay_seconds=1.0,
            sleep=clock.sleep,
        )
        list(fetcher.fetch_all(machines))

    assert clock.sleeps == [1.0]


def test_schema_failure_is_skipped_like_transport_failure(make_client, clock) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"value": [{"severity": "High"}]})

    with make_client(handler) as client:
        fetcher = DetailFetcher(
            client,
            lambda m: machine_vulnerabilities_url(m["id"]),
            schema=VULNERABILITY_SCHEMA,
            sleep=clock.sleep,
        )
        results = list(fetcher.fetch_all([freeze({"id": "m1"})]))

    assert results == []
    assert len(fetcher.errors) == 1
