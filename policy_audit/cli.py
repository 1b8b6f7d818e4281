# Copyright (c) 2025-2026 OptimNow. All Rights Reserved.
# Licensed under the Apache License, Version 2.0.
# See LICENSE file in the project root for full license information.

"""
Command line entry point for the policy audit engine.

Usage:
    policy-audit --required-tag Environment --required-tag Owner
    policy-audit --policy policies/audit_policy.json --remediate --export
    policy-audit --snapshot inventory.json --format json

Exit codes:
    0  run completed (findings do not change the exit code)
    1  account enumeration failed, no report was produced
    2  invalid configuration
"""

import argparse
import asyncio
import logging
import sys

from pydantic import AliasChoices, ValidationError

from . import __version__
from .clients.inventory_client import InventoryClient
from .clients.snapshot_client import SnapshotError, SnapshotInventoryClient
from .config import Settings
from .models.policy import AuditPolicy
from .models.report import ReportFormat, ScanReport
from .services.policy_service import PolicyNotFoundError, PolicyService, PolicyValidationError
from .services.report_service import ReportService
from .services.scan_orchestrator import ScanAbortedError, ScanOrchestrator
from .utils.correlation import RunIdFilter, generate_run_id, reset_run_id, set_run_id

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_SCAN_ABORTED = 1
EXIT_CONFIG_ERROR = 2

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(run_id)s] %(message)s"


def configure_logging(log_level: str) -> None:
    """
    Configure logging for the application.

    Logs go to stderr so that stdout carries only the report.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
    """
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stderr)
    handler.addFilter(RunIdFilter())

    logging.basicConfig(
        level=numeric_level,
        format=LOG_FORMAT,
        handlers=[handler],
    )

    # The Azure SDK logs every HTTP request at INFO
    logging.getLogger("azure").setLevel(max(numeric_level, logging.WARNING))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="policy-audit",
        description="Audit Azure subscriptions against tag, OS support and NSG coverage policies",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    # Policy selection
    parser.add_argument("--policy", metavar="PATH", help="Audit policy JSON file")
    parser.add_argument(
        "--required-tag",
        action="append",
        metavar="NAME",
        help="Tag every resource must carry (repeatable)",
    )
    parser.add_argument(
        "--deny-os",
        action="append",
        metavar="URN",
        help="End-of-support image as publisher:offer:sku (repeatable)",
    )
    parser.add_argument(
        "--no-network-check",
        action="store_true",
        help="Do not check NSG coverage of VM network interfaces",
    )

    # Inventory source
    parser.add_argument(
        "--snapshot", metavar="PATH", help="Audit a JSON inventory snapshot instead of Azure"
    )
    parser.add_argument(
        "--account",
        action="append",
        metavar="ID",
        help="Only scan this subscription id (repeatable)",
    )

    # Actions
    parser.add_argument(
        "--remediate",
        action="store_true",
        help="Add missing required tags with empty values",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="With --remediate, report planned tag writes without applying them",
    )
    parser.add_argument(
        "--export",
        nargs="?",
        const=True,
        default=None,
        metavar="PATH",
        help="Write a CSV export (optionally to PATH)",
    )

    # Output
    parser.add_argument(
        "--format",
        choices=[ReportFormat.MARKDOWN.value, ReportFormat.JSON.value],
        default=ReportFormat.MARKDOWN.value,
        help="Report format printed to stdout",
    )
    parser.add_argument("--log-level", help="Logging level (DEBUG, INFO, WARNING, ERROR)")
    return parser


def load_settings(args: argparse.Namespace) -> Settings:
    """
    Build settings from the environment, overridden by command line flags.

    Raises:
        ValidationError: If a value is invalid
    """
    overrides: dict = {}
    if args.policy:
        overrides["policy_path"] = args.policy
    if args.required_tag:
        overrides["required_tags"] = args.required_tag
    if args.deny_os:
        overrides["os_denylist"] = args.deny_os
    if args.no_network_check:
        overrides["network_protection_enabled"] = False
    if args.snapshot:
        overrides["inventory_snapshot_path"] = args.snapshot
    if args.account:
        overrides["account_filter"] = args.account
    if args.remediate:
        overrides["remediation_enabled"] = True
    if args.dry_run:
        overrides["remediation_dry_run"] = True
    if args.export is not None:
        overrides["export_enabled"] = True
        if isinstance(args.export, str):
            overrides["export_path"] = args.export
    if args.log_level:
        overrides["log_level"] = args.log_level

    # Keyed by env alias so init values shadow environment values
    return Settings(**{_env_key(name): value for name, value in overrides.items()})


def _env_key(field_name: str) -> str:
    alias = Settings.model_fields[field_name].validation_alias
    if isinstance(alias, AliasChoices):
        return str(alias.choices[0])
    return alias or field_name


def build_client(config: Settings) -> InventoryClient:
    """
    Create the inventory client for the configured source.

    Raises:
        SnapshotError: If the snapshot cannot be loaded
    """
    if config.inventory_snapshot_path:
        persist = config.remediation_enabled and not config.remediation_dry_run
        return SnapshotInventoryClient.from_file(config.inventory_snapshot_path, persist=persist)

    from .clients.azure_client import AzureInventoryClient

    return AzureInventoryClient(
        tenant_id=config.azure_tenant_id,
        client_id=config.azure_client_id,
        client_secret=config.azure_client_secret,
    )


async def run_audit(client: InventoryClient, policy: AuditPolicy, config: Settings) -> ScanReport:
    """Run one scan and always release the client."""
    orchestrator = ScanOrchestrator(
        client,
        policy,
        remediation_enabled=config.remediation_enabled,
        dry_run=config.remediation_dry_run,
        max_concurrent_accounts=config.max_concurrent_accounts,
        max_concurrent_remediations=config.max_concurrent_remediations,
        api_timeout_seconds=config.api_timeout_seconds,
        account_filter=config.account_filter,
    )
    try:
        return await orchestrator.run()
    finally:
        await client.close()


def main(argv: list[str] | None = None) -> int:
    """Main entry point; returns the process exit code."""
    args = build_parser().parse_args(argv)

    try:
        config = load_settings(args)
    except ValidationError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    configure_logging(config.log_level)

    try:
        policy = PolicyService().resolve(config)
    except (PolicyNotFoundError, PolicyValidationError) as e:
        logger.error(str(e))
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    try:
        client = build_client(config)
    except SnapshotError as e:
        logger.error(str(e))
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    token = set_run_id(generate_run_id())
    try:
        report = asyncio.run(run_audit(client, policy, config))
    except ScanAbortedError as e:
        print(f"Scan aborted: {e}", file=sys.stderr)
        return EXIT_SCAN_ABORTED
    finally:
        reset_run_id(token)

    report_service = ReportService()
    print(report_service.format_report(report, ReportFormat(args.format)))

    if config.export_enabled:
        rows = report_service.write_export(report, config.export_path)
        print(f"Exported {rows} rows to {config.export_path}", file=sys.stderr)

    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
