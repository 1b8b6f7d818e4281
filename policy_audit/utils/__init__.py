"""Utility modules for the policy audit engine."""

from .correlation import RunIdFilter, generate_run_id, get_run_id, set_run_id
from .error_sanitization import describe_error, redact_sensitive_info
from .resource_id import get_resource_group, get_subscription, parse_resource_id

__all__ = [
    "RunIdFilter",
    "generate_run_id",
    "get_run_id",
    "set_run_id",
    "describe_error",
    "redact_sensitive_info",
    "get_resource_group",
    "get_subscription",
    "parse_resource_id",
]
