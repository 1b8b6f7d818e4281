"""Service layer for the policy audit engine."""

from .policy_service import PolicyNotFoundError, PolicyService, PolicyValidationError
from .evaluator import evaluate, evaluate_resource, normalize_image_urn
from .aggregator import ClassificationAggregator
from .remediation_service import RemediationService, merge_missing_tags
from .report_service import ReportService
from .scan_orchestrator import ScanAbortedError, ScanOrchestrator

__all__ = [
    "PolicyNotFoundError",
    "PolicyService",
    "PolicyValidationError",
    "evaluate",
    "evaluate_resource",
    "normalize_image_urn",
    "ClassificationAggregator",
    "RemediationService",
    "merge_missing_tags",
    "ReportService",
    "ScanAbortedError",
    "ScanOrchestrator",
]
