# Copyright (c) 2025-2026 OptimNow. All Rights Reserved.
# Licensed under the Apache License, Version 2.0.
# See LICENSE file in the project root for full license information.

"""Scan report data models."""

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field

from .compliance import ComplianceResult
from .enums import RuleKind, ScanState
from .remediation import RemediationRecord


class ReportFormat(str, Enum):
    """Supported report output formats."""

    JSON = "json"
    CSV = "csv"
    MARKDOWN = "markdown"


class RuleSummary(BaseModel):
    """Verdict counts for one rule, per account or across the run."""

    rule_name: str = Field(..., description="Name of the rule")
    rule_kind: RuleKind = Field(..., description="Kind of the rule")
    compliant: int = Field(0, ge=0, description="Definitively compliant resources")
    non_compliant: int = Field(0, ge=0, description="Definitively non-compliant resources")
    not_applicable: int = Field(0, ge=0, description="Resources the rule does not apply to")
    error: int = Field(0, ge=0, description="Resources that could not be evaluated")

    @property
    def evaluated(self) -> int:
        return self.compliant + self.non_compliant

    @property
    def total(self) -> int:
        return self.compliant + self.non_compliant + self.not_applicable + self.error

    @property
    def compliance_score(self) -> float:
        """
        Ratio of compliant to definitively evaluated resources.

        Returns 1.0 when nothing could be evaluated.
        """
        if self.evaluated == 0:
            return 1.0
        return self.compliant / self.evaluated


class AccountFailure(BaseModel):
    """An account-level failure recorded during a scan."""

    account_id: str = Field(..., description="Subscription that failed")
    display_name: str = Field("", description="Subscription display name")
    stage: str = Field(..., description="What failed: resources or network_security_groups")
    error: str = Field(..., description="Sanitized error detail")
    fatal_for_account: bool = Field(
        True, description="True when the account contributed no results at all"
    )


class AccountSummary(BaseModel):
    """Compliance summary for a single account."""

    account_id: str = Field(..., description="Subscription id")
    display_name: str = Field("", description="Subscription display name")
    scanned: bool = Field(True, description="False when resource enumeration failed")
    total_resources: int = Field(0, ge=0, description="Resources enumerated in this account")
    rules: dict[str, RuleSummary] = Field(
        default_factory=dict, description="Per-rule counts keyed by rule name"
    )


class ScanReport(BaseModel):
    """Aggregated output of one audit run."""

    run_id: str = Field("", description="Correlation id of the run")
    state: ScanState = Field(ScanState.DONE, description="Final state of the run")
    started_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the run started",
    )
    finished_at: datetime | None = Field(None, description="When the run finished")
    total_accounts: int = Field(0, ge=0, description="Accounts enumerated")
    scanned_accounts: int = Field(0, ge=0, description="Accounts whose resources were enumerated")
    total_resources: int = Field(0, ge=0, description="Resources enumerated across all accounts")
    rules: dict[str, RuleSummary] = Field(
        default_factory=dict, description="Run-wide per-rule counts keyed by rule name"
    )
    accounts: list[AccountSummary] = Field(
        default_factory=list, description="Per-account summaries in enumeration order"
    )
    account_failures: list[AccountFailure] = Field(
        default_factory=list, description="Account-level failures"
    )
    non_compliant: list[ComplianceResult] = Field(
        default_factory=list, description="Definitively non-compliant results"
    )
    errors: list[ComplianceResult] = Field(
        default_factory=list, description="Results that could not be evaluated"
    )
    remediation_enabled: bool = Field(False, description="Whether remediation ran")
    remediations: list[RemediationRecord] = Field(
        default_factory=list, description="Remediation outcomes"
    )

    @property
    def account_error_count(self) -> int:
        return len(self.account_failures)

    @property
    def failed_remediations(self) -> list[RemediationRecord]:
        return [r for r in self.remediations if not r.success]
