"""Data models for the policy audit engine."""

from .enums import RemediationStatus, RuleKind, ScanState, Verdict
from .resource import (
    Account,
    ImageReference,
    NetworkAssociationFacts,
    NetworkProfile,
    NetworkSecurityGroup,
    Resource,
)
from .policy import (
    AuditPolicy,
    NetworkProtectionRule,
    OSSupportRule,
    PolicyRule,
    TagPresenceRule,
)
from .compliance import ComplianceResult
from .remediation import RemediationRecord
from .report import (
    AccountFailure,
    AccountSummary,
    ReportFormat,
    RuleSummary,
    ScanReport,
)

__all__ = [
    "RemediationStatus",
    "RuleKind",
    "ScanState",
    "Verdict",
    "Account",
    "ImageReference",
    "NetworkAssociationFacts",
    "NetworkProfile",
    "NetworkSecurityGroup",
    "Resource",
    "AuditPolicy",
    "NetworkProtectionRule",
    "OSSupportRule",
    "PolicyRule",
    "TagPresenceRule",
    "ComplianceResult",
    "RemediationRecord",
    "AccountFailure",
    "AccountSummary",
    "ReportFormat",
    "RuleSummary",
    "ScanReport",
]
