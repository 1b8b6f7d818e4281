# Copyright (c) 2025-2026 OptimNow. All Rights Reserved.
# Licensed under the Apache License, Version 2.0.
# See LICENSE file in the project root for full license information.

"""Report generation service."""

import csv
import io
import json
import logging
from datetime import datetime, timezone
from pathlib import Path

from ..models.policy import AuditPolicy
from ..models.remediation import RemediationRecord
from ..models.report import (
    AccountSummary,
    ReportFormat,
    RuleSummary,
    ScanReport,
)
from ..models.resource import Account
from .aggregator import ClassificationAggregator

logger = logging.getLogger(__name__)

# Columns of the flat CSV export
EXPORT_COLUMNS = [
    "account_id",
    "resource_id",
    "resource_type",
    "rule_name",
    "rule_kind",
    "verdict",
    "missing_detail",
    "message",
]

REMEDIATION_ROW_KIND = "tag_remediation"


class ReportService:
    """
    Service for building and formatting scan reports.

    Turns aggregated classification results into a ScanReport with:
    - Per-rule verdict counts and compliance scores
    - Per-account summaries and account failures
    - Non-compliant and could-not-evaluate findings
    - Remediation outcomes
    and renders it as JSON, CSV or Markdown.
    """

    def build_report(
        self,
        aggregator: ClassificationAggregator,
        policy: AuditPolicy,
        accounts: list[Account],
        resource_counts: dict[str, int] | None = None,
        remediations: list[RemediationRecord] | None = None,
        run_id: str = "",
        started_at: datetime | None = None,
        remediation_enabled: bool = False,
    ) -> ScanReport:
        """
        Build a ScanReport from aggregated results.

        Every policy rule gets a summary entry, even if no result was
        recorded for it, so the report always lists the full policy.

        Args:
            aggregator: Aggregated results and account failures of the run
            policy: Policy that was evaluated (defines rule order)
            accounts: Scanned accounts in enumeration order
            resource_counts: Resources enumerated per account id
            remediations: Remediation records of the run
            run_id: Correlation id of the run
            started_at: When the run started
            remediation_enabled: Whether remediation was requested

        Returns:
            ScanReport
        """
        resource_counts = resource_counts or {}
        failures = aggregator.account_failures
        unscanned = {f.account_id for f in failures if f.fatal_for_account}

        account_summaries = []
        for account in accounts:
            account_summaries.append(
                AccountSummary(
                    account_id=account.account_id,
                    display_name=account.display_name,
                    scanned=account.account_id not in unscanned,
                    total_resources=resource_counts.get(account.account_id, 0),
                    rules=self._rule_summaries(
                        policy, aggregator.account_summaries(account.account_id)
                    ),
                )
            )

        report_kwargs = {}
        if started_at is not None:
            report_kwargs["started_at"] = started_at

        report = ScanReport(
            run_id=run_id,
            finished_at=datetime.now(timezone.utc),
            total_accounts=len(accounts),
            scanned_accounts=sum(1 for s in account_summaries if s.scanned),
            total_resources=sum(resource_counts.get(a.account_id, 0) for a in accounts),
            rules=self._rule_summaries(policy, aggregator.rule_summaries()),
            accounts=account_summaries,
            account_failures=failures,
            non_compliant=aggregator.non_compliant,
            errors=aggregator.errors,
            remediation_enabled=remediation_enabled,
            remediations=list(remediations or []),
            **report_kwargs,
        )

        logger.info(
            f"Report built for {report.total_accounts} accounts and "
            f"{report.total_resources} resources"
        )
        return report

    @staticmethod
    def _rule_summaries(
        policy: AuditPolicy, recorded: dict[str, RuleSummary]
    ) -> dict[str, RuleSummary]:
        """Summaries for every policy rule in policy order, zero-filled."""
        summaries: dict[str, RuleSummary] = {}
        for rule in policy.rules:
            summaries[rule.name] = recorded.get(rule.name) or RuleSummary(
                rule_name=rule.name, rule_kind=rule.kind
            )
        return summaries

    def export_records(self, report: ScanReport) -> list[dict[str, str]]:
        """
        Flatten a report into export rows.

        One row per non-compliant result, per error result and per
        remediation record. Missing detail is joined with ", ".
        """
        rows: list[dict[str, str]] = []
        resource_types: dict[str, str] = {}

        for result in report.non_compliant + report.errors:
            resource_types[result.resource_id] = result.resource_type
            rows.append(
                {
                    "account_id": result.account_id,
                    "resource_id": result.resource_id,
                    "resource_type": result.resource_type,
                    "rule_name": result.rule_name,
                    "rule_kind": result.rule_kind.value,
                    "verdict": result.verdict.value,
                    "missing_detail": ", ".join(result.missing_detail),
                    "message": result.message,
                }
            )

        for record in report.remediations:
            rows.append(
                {
                    "account_id": record.account_id,
                    "resource_id": record.resource_id,
                    "resource_type": resource_types.get(record.resource_id, ""),
                    "rule_name": "",
                    "rule_kind": REMEDIATION_ROW_KIND,
                    "verdict": record.status.value,
                    "missing_detail": ", ".join(record.tags_added),
                    "message": record.error_detail or "",
                }
            )

        return rows

    def format_report(self, report: ScanReport, format: ReportFormat) -> str:
        """
        Format a scan report in the specified output format.

        Args:
            report: ScanReport to format
            format: Output format (JSON, CSV, or Markdown)

        Returns:
            Formatted report as a string
        """
        if format == ReportFormat.JSON:
            return self._format_as_json(report)
        elif format == ReportFormat.CSV:
            return self._format_as_csv(report)
        elif format == ReportFormat.MARKDOWN:
            return self._format_as_markdown(report)
        else:
            raise ValueError(f"Unsupported report format: {format}")

    def write_export(self, report: ScanReport, path: str | Path) -> int:
        """
        Write the flat CSV export to a file.

        Returns:
            Number of data rows written
        """
        path = Path(path)
        if path.parent and not path.parent.exists():
            path.parent.mkdir(parents=True, exist_ok=True)

        content = self._format_as_csv(report)
        with open(path, "w", encoding="utf-8", newline="") as f:
            f.write(content)

        row_count = len(self.export_records(report))
        logger.info(f"Exported {row_count} rows to {path}")
        return row_count

    def _format_as_json(self, report: ScanReport) -> str:
        report_dict = report.model_dump(mode="json")
        report_dict["summary"] = {
            name: {
                "evaluated": summary.evaluated,
                "compliance_score": round(summary.compliance_score, 4),
            }
            for name, summary in report.rules.items()
        }
        return json.dumps(report_dict, indent=2)

    def _format_as_csv(self, report: ScanReport) -> str:
        output = io.StringIO()
        writer = csv.DictWriter(output, fieldnames=EXPORT_COLUMNS)
        writer.writeheader()
        for row in self.export_records(report):
            writer.writerow(row)
        return output.getvalue()

    def _format_as_markdown(self, report: ScanReport) -> str:
        """
        Format report as Markdown.

        Sections: summary, per-rule table, accounts, account failures,
        findings, errors and remediation.
        """
        lines = []

        # Title
        lines.append("# Policy Audit Report")
        lines.append("")
        lines.append(f"**Run:** {report.run_id or '-'}")
        lines.append(f"**Started:** {report.started_at.strftime('%Y-%m-%d %H:%M:%S UTC')}")
        if report.finished_at:
            lines.append(f"**Finished:** {report.finished_at.strftime('%Y-%m-%d %H:%M:%S UTC')}")
        lines.append("")

        # Summary section
        lines.append("## Summary")
        lines.append("")
        lines.append(f"- **Accounts:** {report.scanned_accounts}/{report.total_accounts} scanned")
        lines.append(f"- **Total Resources:** {report.total_resources}")
        lines.append(f"- **Non-Compliant Findings:** {len(report.non_compliant)}")
        lines.append(f"- **Could Not Evaluate:** {len(report.errors)}")
        lines.append(f"- **Account Errors:** {report.account_error_count}")
        lines.append("")

        # Rules
        if report.rules:
            lines.append("## Rules")
            lines.append("")
            lines.append(
                "| Rule | Kind | Compliant | Non-Compliant | Not Applicable | Error | Score |"
            )
            lines.append(
                "|------|------|-----------|---------------|----------------|-------|-------|"
            )
            for summary in report.rules.values():
                lines.append(
                    f"| {summary.rule_name} | {summary.rule_kind.value} | {summary.compliant} | "
                    f"{summary.non_compliant} | {summary.not_applicable} | {summary.error} | "
                    f"{summary.compliance_score:.1%} |"
                )
            lines.append("")

        # Accounts
        if report.accounts:
            lines.append("## Accounts")
            lines.append("")
            lines.append("| Account | Name | Scanned | Resources |")
            lines.append("|---------|------|---------|-----------|")
            for account in report.accounts:
                scanned = "yes" if account.scanned else "no"
                lines.append(
                    f"| {account.account_id} | {account.display_name} | {scanned} | "
                    f"{account.total_resources} |"
                )
            lines.append("")

        if report.account_failures:
            lines.append("## Account Failures")
            lines.append("")
            for failure in report.account_failures:
                scope = "account skipped" if failure.fatal_for_account else "partial"
                lines.append(
                    f"- `{failure.account_id}` ({failure.stage}, {scope}): {failure.error}"
                )
            lines.append("")

        if report.non_compliant:
            lines.append("## Non-Compliant Resources")
            lines.append("")
            lines.append("| Resource | Rule | Detail |")
            lines.append("|----------|------|--------|")
            for result in report.non_compliant:
                lines.append(
                    f"| {result.resource_id} | {result.rule_name} | "
                    f"{', '.join(result.missing_detail)} |"
                )
            lines.append("")

        if report.errors:
            lines.append("## Could Not Evaluate")
            lines.append("")
            lines.append("| Resource | Rule | Reason |")
            lines.append("|----------|------|--------|")
            for result in report.errors:
                lines.append(f"| {result.resource_id} | {result.rule_name} | {result.message} |")
            lines.append("")

        if report.remediation_enabled:
            lines.append("## Remediation")
            lines.append("")
            if report.remediations:
                lines.append(
                    f"{len(report.failed_remediations)} of {len(report.remediations)} "
                    "tag remediations failed."
                )
                lines.append("")
            else:
                lines.append("No tag remediation was needed.")
            for record in report.remediations:
                tags = ", ".join(record.tags_added) or "-"
                line = f"- `{record.resource_id}`: {record.status.value} ({tags})"
                if record.error_detail:
                    line += f" {record.error_detail}"
                lines.append(line)
            lines.append("")

        return "\n".join(lines)
