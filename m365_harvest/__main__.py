"""
M365 Harvest — command-line entry point.

Usage:
    python -m m365_harvest cves --after 2005-12-31 -o cves.csv --ceiling 50000
    python -m m365_harvest devices -o devices.csv --subnets boundaries.csv --sort
    python -m m365_harvest devices -o vulns.csv --with-vulnerabilities --token "$TOKEN"
    python -m m365_harvest subnets --input computers.csv --subnets boundaries.csv -o by_subnet.csv

Every command runs harvest -> join -> export in a single thread and exits
non-zero on the first unrecovered error.
"""

from __future__ import annotations

import argparse
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable, Iterator, Optional

from .api.client import ApiClient, TransportError
from .auth.authenticator import Authenticator, AuthenticationError
from .config import (
    EngineConfig,
    NVD_MAX_REQUESTS_NO_KEY,
    NVD_MAX_REQUESTS_WITH_KEY,
    NVD_WINDOW_SECONDS,
)
from .harvest import DetailFetcher, Harvester, RateLimiter, SchemaError, published_after
from .harvest.sources import (
    CVE_SCHEMA,
    MACHINE_SCHEMA,
    VULNERABILITY_SCHEMA,
    cve_row,
    defender_machines,
    machine_vulnerabilities_url,
    nvd_cves,
)
from .join import Joiner, JoinMode, MatchStrategy, ReferenceLoadError, ReferenceTable
from .join.joiner import flatten_record, sort_records
from .reporting import ExportMode, ShapeMismatch, export_csv, load_csv

logger = logging.getLogger("m365_harvest")


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--config", "-c", type=Path, help="Path to JSON configuration file")
    common.add_argument("--output", "-o", type=Path, required=True, help="Output CSV path")
    common.add_argument("--ceiling", type=int, default=None,
                        help="Maximum rows per file; files are suffixed _1, _2, ...")
    common.add_argument("--append", action="store_true", help="Append to existing output")
    common.add_argument("--delimiter", default=None, help="Output delimiter (default: ',')")
    common.add_argument("--page-size", type=int, default=None, help="Override page size")
    common.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    join_opts = argparse.ArgumentParser(add_help=False)
    join_opts.add_argument("--subnets", type=Path, help="Subnet reference table CSV")
    join_opts.add_argument("--strategy", choices=["masked", "prefix"], default=None,
                           help="Address matching: masked integer test or string prefix")
    join_opts.add_argument("--mask-length", type=int, default=None,
                           help="Mask length applied to every reference entry (default: 24)")
    join_opts.add_argument("--mask-from-scope", action="store_true",
                           help="Take each entry's mask length from its CIDR scope")
    join_opts.add_argument("--drop-empty", action="store_true",
                           help="Drop records that carry no address")
    join_opts.add_argument("--sort", action="store_true", help="Sort output by matched subnet")

    parser = argparse.ArgumentParser(
        prog="m365_harvest",
        description="Paginated M365 / Defender / NVD harvesting with subnet enrichment",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    cves = sub.add_parser("cves", parents=[common], help="Export CVEs from the NVD feed")
    cves.add_argument("--after", default=None,
                      help="Keep CVEs published after this date (default: 2005-12-31)")
    cves.add_argument("--api-key", default=None, help="NVD API key (or NVD_API_KEY)")

    devices = sub.add_parser("devices", parents=[common, join_opts],
                             help="Export Defender for Endpoint machines")
    devices.add_argument("--with-vulnerabilities", action="store_true",
                         help="One row per machine vulnerability (one detail call per machine)")
    devices.add_argument("--address-field", default="lastIpAddress",
                         help="Machine field holding candidate addresses")
    devices.add_argument("--join-mode", choices=["enrich", "explode"], default=None)
    devices.add_argument("--token", default=None, help="Pre-issued bearer token")
    devices.add_argument("--tenant-id", default=None)
    devices.add_argument("--client-id", default=None)
    devices.add_argument("--cert-path", default=None, help="Base64-encoded PFX certificate")

    subnets = sub.add_parser("subnets", parents=[common, join_opts],
                             help="Join a local computer inventory against subnets")
    subnets.add_argument("--input", "-i", type=Path, required=True,
                         help="Computer inventory CSV")
    subnets.add_argument("--address-field", default="IPv4Address",
                         help="Inventory column holding addresses")
    subnets.add_argument("--join-mode", choices=["enrich", "explode"], default="explode")

    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> EngineConfig:
    """Build engine configuration from a config file and CLI overrides."""
    if args.config:
        config = EngineConfig.from_file(str(args.config))
    else:
        config = EngineConfig()

    config.verbose = config.verbose or args.verbose
    config.export.output_path = str(args.output)
    if args.append:
        config.export.mode = "append"
    if args.ceiling is not None:
        config.export.ceiling = args.ceiling
    if args.delimiter:
        config.export.delimiter = args.delimiter
    if args.page_size is not None:
        config.harvest.page_size = args.page_size

    if args.command == "cves":
        if args.after:
            config.harvest.min_published = args.after
        if args.api_key:
            config.harvest.nvd_api_key = args.api_key

    if args.command in ("devices", "subnets"):
        if args.subnets:
            config.join.reference_path = str(args.subnets)
        if args.strategy:
            config.join.strategy = args.strategy
        if args.mask_from_scope:
            config.join.mask_length = None
        elif args.mask_length is not None:
            config.join.mask_length = args.mask_length
        if args.join_mode:
            config.join.mode = args.join_mode
        config.join.drop_empty = config.join.drop_empty or args.drop_empty

    if args.command == "devices":
        if args.token:
            config.auth.mode = "token"
            config.auth.access_token = args.token
        config.auth.tenant_id = args.tenant_id or config.auth.tenant_id
        config.auth.client_id = args.client_id or config.auth.client_id
        config.auth.certificate_path = args.cert_path or config.auth.certificate_path
        if config.auth.access_token and not config.auth.certificate_path:
            config.auth.mode = "token"

    return config


def build_joiner(config: EngineConfig, candidate_field: str) -> Joiner:
    """Load the reference table (before any harvesting) and wrap it in a Joiner."""
    j = config.join
    table = ReferenceTable.load(
        j.reference_path,
        prefix_column=j.prefix_column,
        scope_column=j.scope_column,
        label_column=j.label_column,
        mask_length=j.mask_length,
    )
    return Joiner(
        table,
        candidate_field=candidate_field,
        mode=JoinMode(j.mode),
        strategy=MatchStrategy(j.strategy),
        drop_empty=j.drop_empty,
        delimiter=j.delimiter,
    )


def export(config: EngineConfig, records: Iterable[Any]) -> list[Path]:
    e = config.export
    return export_csv(
        records,
        e.output_path,
        mode=ExportMode(e.mode),
        ceiling=e.ceiling,
        delimiter=e.delimiter,
        encoding=e.encoding,
    )


def run_cves(config: EngineConfig) -> list[Path]:
    h = config.harvest
    threshold = datetime.fromisoformat(h.min_published)
    if h.nvd_api_key:
        limiter = RateLimiter(NVD_MAX_REQUESTS_WITH_KEY, NVD_WINDOW_SECONDS)
        headers = {"apiKey": h.nvd_api_key}
    else:
        logger.warning("No NVD API key; limited to 5 requests per 30 seconds")
        limiter = RateLimiter(NVD_MAX_REQUESTS_NO_KEY, NVD_WINDOW_SECONDS)
        headers = None

    with ApiClient(headers=headers) as client:
        harvester = Harvester(
            client,
            nvd_cves(h.page_size),
            rate_limiter=limiter,
            schema=CVE_SCHEMA,
            predicate=published_after("published", threshold),
            max_pages=h.max_pages,
        )
        rows = (flatten_record(cve_row(r)) for r in harvester)
        return export(config, rows)


def run_devices(
    config: EngineConfig,
    address_field: str,
    with_vulnerabilities: bool = False,
    sort: bool = False,
) -> list[Path]:
    h = config.harvest
    joiner = build_joiner(config, address_field) if config.join.reference_path else None
    fields = list(MACHINE_SCHEMA.field_names)
    if with_vulnerabilities:
        fields += vulnerability_columns()
    if joiner is not None:
        joiner.check_fields(fields, "Defender machine records")
    elif sort and address_field not in fields:
        raise SchemaError(address_field, "sort field not present in Defender machine records")
    limiter = RateLimiter(h.rate_limit.max_requests, h.rate_limit.window_seconds)

    with ApiClient(token_supplier=Authenticator(config.auth)) as client:
        machines = Harvester(
            client,
            defender_machines(h.page_size),
            rate_limiter=limiter,
            schema=MACHINE_SCHEMA,
            max_pages=h.max_pages,
        )
        records: Iterable[Any] = machines
        if with_vulnerabilities:
            fetcher = DetailFetcher(
                client,
                lambda machine: machine_vulnerabilities_url(machine["id"]),
                schema=VULNERABILITY_SCHEMA,
                delay_seconds=h.detail_delay_seconds,
            )
            records = vulnerability_rows(fetcher.fetch_all(machines))

        if joiner is not None:
            records = joiner.join(records)
            sort_field = joiner.scope_column
        else:
            records = (flatten_record(r, config.join.delimiter) for r in records)
            sort_field = address_field
        if sort:
            records = sort_records(records, sort_field, config.join.delimiter)
        return export(config, records)


def vulnerability_columns() -> list[str]:
    return [f"vulnerability_{name}" for name in VULNERABILITY_SCHEMA.field_names]


def vulnerability_rows(pairs: Iterable[tuple[Any, list[Any]]]) -> Iterator[dict[str, Any]]:
    """One row per (machine, vulnerability); machines without any keep one blank row."""
    columns = vulnerability_columns()
    for machine, vulnerabilities in pairs:
        for vuln in vulnerabilities or [None]:
            row = dict(machine)
            for column, name in zip(columns, VULNERABILITY_SCHEMA.field_names):
                row[column] = vuln[name] if vuln is not None else None
            yield row


def run_subnets(config: EngineConfig, input_path: Path, address_field: str, sort: bool = False) -> list[Path]:
    if not config.join.reference_path:
        raise ReferenceLoadError("The subnets command needs --subnets (a reference table)")
    joiner = build_joiner(config, address_field)
    rows = load_csv(input_path)
    logger.info(f"Loaded {len(rows)} inventory rows from {input_path}")
    if rows:
        joiner.check_fields(rows[0].keys(), str(input_path))

    records: Iterable[Any] = joiner.join(rows)
    if sort:
        records = sort_records(records, joiner.scope_column, joiner.delimiter)
    files = export(config, records)
    logger.info(
        f"{joiner.records_in} records in, {joiner.records_out} out, "
        f"{joiner.unmatched_candidates} unmatched addresses"
    )
    return files


def main(argv: Optional[list[str]] = None) -> int:
    args = parse_args(argv)
    config = build_config(args)

    logging.basicConfig(
        level=logging.DEBUG if config.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    try:
        if args.command == "cves":
            files = run_cves(config)
        elif args.command == "devices":
            files = run_devices(
                config,
                address_field=args.address_field,
                with_vulnerabilities=args.with_vulnerabilities,
                sort=args.sort,
            )
        else:
            files = run_subnets(config, args.input, args.address_field, sort=args.sort)
    except (
        AuthenticationError,
        ReferenceLoadError,
        TransportError,
        SchemaError,
        ShapeMismatch,
        OSError,
        ValueError,
    ) as e:
        logger.error(f"{args.command} failed: {type(e).__name__}: {e}")
        return 1

    for p in files:
        print(f"  📊 CSV:        {p}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
