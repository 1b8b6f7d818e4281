"""Enumerations for rule kinds, verdicts and scan states."""

from enum import Enum


class RuleKind(str, Enum):
    """Kinds of compliance rules the evaluator understands."""

    TAG_PRESENCE = "tag_presence"
    OS_SUPPORT = "os_support"
    NETWORK_PROTECTION = "network_protection"


class Verdict(str, Enum):
    """Outcome of evaluating one resource against one rule."""

    COMPLIANT = "compliant"
    NON_COMPLIANT = "non_compliant"
    NOT_APPLICABLE = "not_applicable"
    ERROR = "error"


class RemediationStatus(str, Enum):
    """Outcome of a remediation attempt."""

    APPLIED = "applied"
    SKIPPED = "skipped"
    PLANNED = "planned"
    FAILED = "failed"


class ScanState(str, Enum):
    """Lifecycle states of a scan run."""

    INIT = "init"
    ENUMERATING_ACCOUNTS = "enumerating_accounts"
    SCANNING_ACCOUNTS = "scanning_accounts"
    REPORTING = "reporting"
    DONE = "done"
    FAILED = "failed"
