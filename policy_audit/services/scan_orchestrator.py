# Copyright (c) 2025-2026 OptimNow. All Rights Reserved.
# Licensed under the Apache License, Version 2.0.
# See LICENSE file in the project root for full license information.

"""Scan orchestrator for auditing every account of an inventory.

This module provides the ScanOrchestrator class that enumerates accounts,
scans them in parallel with bounded concurrency, evaluates every resource
against the policy, optionally remediates missing tags and hands the
merged results to the report builder.

Failure isolation:
- Account enumeration failure aborts the run (ScanAbortedError).
- Resource enumeration failure skips that account only.
- NSG enumeration failure turns that account's network protection
  results into ERROR; other rules still run.
"""

import asyncio
import logging
import time
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone

from ..clients.inventory_client import InventoryClient, InventoryError
from ..models.compliance import ComplianceResult
from ..models.enums import RemediationStatus, RuleKind, ScanState, Verdict
from ..models.policy import AuditPolicy
from ..models.remediation import RemediationRecord
from ..models.report import ScanReport
from ..models.resource import Account, NetworkAssociationFacts, Resource
from ..utils.correlation import generate_run_id, get_run_id, reset_run_id, set_run_id
from ..utils.error_sanitization import describe_error
from .aggregator import ClassificationAggregator
from .evaluator import evaluate_resource, unevaluable_results
from .remediation_service import RemediationService
from .report_service import ReportService

logger = logging.getLogger(__name__)

STAGE_RESOURCES = "resources"
STAGE_NETWORK_SECURITY_GROUPS = "network_security_groups"
STAGE_SCAN = "scan"

# Allowed state transitions
TRANSITIONS: dict[ScanState, frozenset[ScanState]] = {
    ScanState.INIT: frozenset([ScanState.ENUMERATING_ACCOUNTS]),
    ScanState.ENUMERATING_ACCOUNTS: frozenset([ScanState.SCANNING_ACCOUNTS, ScanState.FAILED]),
    ScanState.SCANNING_ACCOUNTS: frozenset([ScanState.REPORTING]),
    ScanState.REPORTING: frozenset([ScanState.DONE]),
    ScanState.DONE: frozenset(),
    ScanState.FAILED: frozenset(),
}


class ScanAbortedError(Exception):
    """Raised when account enumeration fails and the run cannot proceed.

    No partial results are produced in this case.
    """

    def __init__(self, message: str, error_code: str | None = None):
        super().__init__(message)
        self.error_code = error_code


@dataclass
class AccountScan:
    """Everything one account contributed to the run."""

    account: Account
    aggregator: ClassificationAggregator = field(default_factory=ClassificationAggregator)
    resource_count: int = 0
    remediations: list[RemediationRecord] = field(default_factory=list)
    scan_duration_ms: int = 0


class ScanOrchestrator:
    """
    Drives one audit run over an inventory client.

    Accounts are scanned concurrently (bounded by ``max_concurrent_accounts``)
    and each account collects its results locally. The per-account results
    are merged in enumeration order only after every account task has
    finished, so the report never observes a half-scanned account.
    """

    def __init__(
        self,
        client: InventoryClient,
        policy: AuditPolicy,
        report_service: ReportService | None = None,
        remediation_enabled: bool = False,
        dry_run: bool = False,
        max_concurrent_accounts: int = 4,
        max_concurrent_remediations: int = 8,
        api_timeout_seconds: float = 60.0,
        account_filter: list[str] | None = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            client: Inventory client used for every external call
            policy: Audit policy whose rules are evaluated in order
            report_service: Report builder (a default one is created if None)
            remediation_enabled: Add missing required tags after evaluation
            dry_run: Plan remediation without writing
            max_concurrent_accounts: Accounts scanned in parallel
            max_concurrent_remediations: Tag writes in flight per account
            api_timeout_seconds: Timeout applied to each inventory call
            account_filter: Only scan these account ids (None or empty means all)
        """
        if max_concurrent_accounts < 1 or max_concurrent_remediations < 1:
            raise ValueError("concurrency limits must be at least 1")

        self.client = client
        self.policy = policy
        self.report_service = report_service or ReportService()
        self.remediation_enabled = remediation_enabled
        self.max_concurrent_accounts = max_concurrent_accounts
        self.max_concurrent_remediations = max_concurrent_remediations
        self.api_timeout_seconds = api_timeout_seconds
        self.account_filter = list(account_filter or [])
        self.remediation_service = RemediationService(
            client, timeout_seconds=api_timeout_seconds, dry_run=dry_run
        )

        self.state = ScanState.INIT
        self.state_history: list[ScanState] = [ScanState.INIT]

    def _transition(self, new_state: ScanState) -> None:
        if new_state not in TRANSITIONS[self.state]:
            raise RuntimeError(f"Invalid scan state transition {self.state.value} -> {new_state.value}")
        logger.debug(f"Scan state {self.state.value} -> {new_state.value}")
        self.state = new_state
        self.state_history.append(new_state)

    async def run(self) -> ScanReport:
        """
        Execute the audit run.

        Returns:
            ScanReport with per-rule and per-account counts, findings,
            account failures and remediation records

        Raises:
            ScanAbortedError: If accounts cannot be enumerated
            RuntimeError: If the orchestrator has already run
        """
        if self.state != ScanState.INIT:
            raise RuntimeError("ScanOrchestrator.run() can only be called once")

        token = None
        run_id = get_run_id()
        if not run_id:
            run_id = generate_run_id()
            token = set_run_id(run_id)

        try:
            return await self._run(run_id)
        finally:
            if token is not None:
                reset_run_id(token)

    async def _run(self, run_id: str) -> ScanReport:
        started_at = datetime.now(timezone.utc)
        start_time = time.time()

        self._transition(ScanState.ENUMERATING_ACCOUNTS)
        accounts = await self._enumerate_accounts()

        self._transition(ScanState.SCANNING_ACCOUNTS)
        logger.info(
            f"Scanning {len(accounts)} accounts with {len(self.policy.rules)} rules "
            f"(concurrency={self.max_concurrent_accounts}, remediation={self.remediation_enabled})"
        )
        scans = await self._scan_accounts_parallel(accounts)

        self._transition(ScanState.REPORTING)
        aggregator = ClassificationAggregator()
        remediations: list[RemediationRecord] = []
        for scan in scans:
            aggregator.merge(scan.aggregator)
            remediations.extend(scan.remediations)

        report = self.report_service.build_report(
            aggregator=aggregator,
            policy=self.policy,
            accounts=accounts,
            resource_counts={scan.account.account_id: scan.resource_count for scan in scans},
            remediations=remediations,
            run_id=run_id,
            started_at=started_at,
            remediation_enabled=self.remediation_enabled,
        )

        self._transition(ScanState.DONE)
        report.state = ScanState.DONE

        duration = time.time() - start_time
        logger.info(
            f"Scan complete in {duration:.2f}s: {report.total_resources} resources, "
            f"{len(report.non_compliant)} non-compliant, {len(report.errors)} errors, "
            f"{report.account_error_count} account failures"
        )
        return report

    async def _enumerate_accounts(self) -> list[Account]:
        try:
            accounts = await asyncio.wait_for(
                self.client.list_accounts(), timeout=self.api_timeout_seconds
            )
        except asyncio.TimeoutError as e:
            self._transition(ScanState.FAILED)
            message = f"Account enumeration timed out after {self.api_timeout_seconds}s"
            logger.error(message)
            raise ScanAbortedError(message, error_code="Timeout") from e
        except InventoryError as e:
            self._transition(ScanState.FAILED)
            message = f"Account enumeration failed: {describe_error(e)}"
            logger.error(message)
            raise ScanAbortedError(message, error_code=e.error_code) from e

        logger.info(f"Enumerated {len(accounts)} accounts")
        return self._apply_account_filter(accounts)

    def _apply_account_filter(self, accounts: list[Account]) -> list[Account]:
        """Restrict accounts to the configured filter, keeping enumeration order."""
        if not self.account_filter:
            return accounts

        wanted = set(self.account_filter)
        filtered = [a for a in accounts if a.account_id in wanted]
        unknown = wanted - {a.account_id for a in accounts}
        if unknown:
            logger.warning(f"Account filter entries not found in inventory: {sorted(unknown)}")
        logger.info(f"Account filter applied: scanning {len(filtered)} of {len(accounts)} accounts")
        return filtered

    async def _scan_accounts_parallel(self, accounts: list[Account]) -> list[AccountScan]:
        """
        Scan accounts in parallel with concurrency control.

        Returns:
            One AccountScan per account, in the order the accounts were given
        """
        semaphore = asyncio.Semaphore(self.max_concurrent_accounts)

        async def scan_with_semaphore(account: Account) -> AccountScan:
            async with semaphore:
                return await self._scan_account(account)

        tasks = [scan_with_semaphore(account) for account in accounts]

        # return_exceptions=True so one broken account cannot cancel the others
        results = await asyncio.gather(*tasks, return_exceptions=True)

        scans: list[AccountScan] = []
        for account, result in zip(accounts, results):
            if isinstance(result, BaseException) and not isinstance(result, Exception):
                raise result
            if isinstance(result, Exception):
                detail = describe_error(result)
                logger.error(f"Account {account.account_id} scan failed with exception: {detail}")
                scan = AccountScan(account=account)
                scan.aggregator.record_account_failure(
                    account.account_id,
                    STAGE_SCAN,
                    detail,
                    display_name=account.display_name,
                )
                scans.append(scan)
            else:
                scans.append(result)
        return scans

    async def _scan_account(self, account: Account) -> AccountScan:
        """Enumerate, evaluate and optionally remediate one account."""
        start_time = time.time()
        scan = AccountScan(account=account)
        account_id = account.account_id

        try:
            resources = await asyncio.wait_for(
                self.client.list_resources(account), timeout=self.api_timeout_seconds
            )
        except (InventoryError, asyncio.TimeoutError) as e:
            detail = self._failure_detail(e, "Resource enumeration")
            logger.warning(f"Skipping account {account_id}: resource enumeration failed: {detail}")
            scan.aggregator.record_account_failure(
                account_id, STAGE_RESOURCES, detail, display_name=account.display_name
            )
            return scan

        facts = await self._fetch_network_facts(account, scan.aggregator)

        # The same id listed twice cannot be judged; every copy becomes ERROR
        # and the id is counted once
        occurrences = Counter(r.resource_id for r in resources)
        duplicates = {rid for rid, n in occurrences.items() if n > 1}
        if duplicates:
            logger.warning(
                f"Account {account_id}: {len(duplicates)} resource ids listed more than once, "
                f"reported as errors: {sorted(duplicates)}"
            )

        scan.resource_count = len(occurrences)
        pending: list[tuple[Resource, list[str]]] = []
        reported: set[str] = set()

        for resource in resources:
            if not resource.account_id:
                resource.account_id = account_id
            if resource.resource_id in duplicates:
                if resource.resource_id not in reported:
                    reported.add(resource.resource_id)
                    scan.aggregator.extend(
                        unevaluable_results(
                            self.policy.rules, resource, "resource id listed more than once"
                        )
                    )
                continue

            results = evaluate_resource(self.policy.rules, resource, facts)
            scan.aggregator.extend(results)

            for result in results:
                if result.verdict == Verdict.ERROR:
                    logger.warning(
                        f"Could not evaluate {resource.resource_id} against "
                        f"{result.rule_name}: {result.message}"
                    )

            if self.remediation_enabled:
                missing = self._missing_tags(results)
                if missing:
                    pending.append((resource, missing))

        if pending:
            scan.remediations = await self._remediate_parallel(pending)

        scan.scan_duration_ms = int((time.time() - start_time) * 1000)
        logger.info(
            f"Account {account_id}: {scan.resource_count} resources evaluated "
            f"in {scan.scan_duration_ms}ms"
        )
        return scan

    async def _fetch_network_facts(
        self, account: Account, aggregator: ClassificationAggregator
    ) -> NetworkAssociationFacts | None:
        """
        Build NSG association facts for an account.

        Returns None when no network rule is configured or the NSG listing
        failed; in the latter case a non-fatal account failure is recorded.
        """
        if not self.policy.requires_network_facts:
            return None

        try:
            nsgs = await asyncio.wait_for(
                self.client.list_network_security_groups(account),
                timeout=self.api_timeout_seconds,
            )
        except (InventoryError, asyncio.TimeoutError) as e:
            detail = self._failure_detail(e, "NSG enumeration")
            logger.warning(
                f"Account {account.account_id}: NSG enumeration failed, "
                f"network protection results will be errors: {detail}"
            )
            aggregator.record_account_failure(
                account.account_id,
                STAGE_NETWORK_SECURITY_GROUPS,
                detail,
                display_name=account.display_name,
                fatal_for_account=False,
            )
            return None

        return NetworkAssociationFacts.from_security_groups(nsgs)

    async def _remediate_parallel(
        self, pending: list[tuple[Resource, list[str]]]
    ) -> list[RemediationRecord]:
        semaphore = asyncio.Semaphore(self.max_concurrent_remediations)

        async def remediate_with_semaphore(resource: Resource, missing: list[str]) -> RemediationRecord:
            async with semaphore:
                return await self.remediation_service.remediate(resource, missing)

        results = await asyncio.gather(
            *(remediate_with_semaphore(resource, missing) for resource, missing in pending),
            return_exceptions=True,
        )

        records: list[RemediationRecord] = []
        for (resource, _), result in zip(pending, results):
            if isinstance(result, Exception):
                records.append(
                    RemediationRecord(
                        account_id=resource.account_id,
                        resource_id=resource.resource_id,
                        status=RemediationStatus.FAILED,
                        success=False,
                        error_detail=describe_error(result),
                    )
                )
            else:
                records.append(result)
        return records

    @staticmethod
    def _missing_tags(results: list[ComplianceResult]) -> list[str]:
        """Union of missing tags over the tag presence violations of one resource."""
        missing: list[str] = []
        for result in results:
            if result.rule_kind == RuleKind.TAG_PRESENCE and result.verdict == Verdict.NON_COMPLIANT:
                for tag in result.missing_detail:
                    if tag not in missing:
                        missing.append(tag)
        return missing

    def _failure_detail(self, exc: BaseException, action: str) -> str:
        if isinstance(exc, asyncio.TimeoutError):
            return f"TimeoutError: {action} timed out after {self.api_timeout_seconds}s"
        return describe_error(exc)
