# Copyright (c) 2025-2026 OptimNow. All Rights Reserved.
# Licensed under the Apache License, Version 2.0.
# See LICENSE file in the project root for full license information.

"""Policy evaluation.

Pure functions that turn one (rule, resource) pair into a single
ComplianceResult. Nothing here performs I/O or raises for resource
content; a resource that cannot be judged yields an ERROR verdict.
All string comparisons are exact and case-sensitive.
"""

from typing import Iterable

from ..models.compliance import ComplianceResult
from ..models.enums import RuleKind, Verdict
from ..models.policy import NetworkProtectionRule, OSSupportRule, PolicyRule, TagPresenceRule
from ..models.resource import ImageReference, NetworkAssociationFacts, Resource


def normalize_image_urn(image: ImageReference) -> str:
    """Build ``publisher:offer:sku``; missing parts become empty, version is dropped."""
    return ":".join([image.publisher or "", image.offer or "", image.sku or ""])


def missing_tags(required: Iterable[str], tags: dict[str, str]) -> list[str]:
    """Required tag names absent from ``tags``, in required order."""
    return [tag for tag in required if tag not in tags]


def _result(
    rule: PolicyRule,
    resource: Resource,
    verdict: Verdict,
    message: str,
    detail: list[str] | None = None,
) -> ComplianceResult:
    return ComplianceResult(
        account_id=resource.account_id,
        resource_id=resource.resource_id,
        resource_type=resource.resource_type,
        rule_name=rule.name,
        rule_kind=RuleKind(rule.kind),
        verdict=verdict,
        missing_detail=detail or [],
        message=message,
    )


def _evaluate_tags(rule: TagPresenceRule, resource: Resource) -> ComplianceResult:
    missing = missing_tags(rule.required_tags, resource.tags)
    if missing:
        return _result(
            rule,
            resource,
            Verdict.NON_COMPLIANT,
            f"missing required tags: {', '.join(missing)}",
            missing,
        )
    return _result(rule, resource, Verdict.COMPLIANT, "all required tags present")


def _evaluate_os(rule: OSSupportRule, resource: Resource) -> ComplianceResult:
    if resource.image_reference is None:
        return _result(rule, resource, Verdict.NOT_APPLICABLE, "resource has no image reference")

    urn = normalize_image_urn(resource.image_reference)
    if urn in rule.denylist:
        return _result(
            rule, resource, Verdict.NON_COMPLIANT, f"image {urn} is past end of support", [urn]
        )
    return _result(rule, resource, Verdict.COMPLIANT, f"image {urn} is supported")


def _evaluate_network(
    rule: NetworkProtectionRule, resource: Resource, facts: NetworkAssociationFacts | None
) -> ComplianceResult:
    if facts is None:
        return _result(rule, resource, Verdict.ERROR, "network association facts unavailable")

    profile = resource.network_profile
    if profile is None or not profile.nic_id:
        return _result(rule, resource, Verdict.ERROR, "resource has no network interface")

    if profile.nic_id in facts.protected_nic_ids:
        return _result(rule, resource, Verdict.COMPLIANT, "network interface is protected by an NSG")
    if profile.subnet_id and profile.subnet_id in facts.protected_subnet_ids:
        return _result(rule, resource, Verdict.COMPLIANT, "subnet is protected by an NSG")

    return _result(
        rule,
        resource,
        Verdict.NON_COMPLIANT,
        "neither network interface nor subnet is associated with an NSG",
        [profile.nic_id],
    )


def evaluate(
    rule: PolicyRule, resource: Resource, facts: NetworkAssociationFacts | None = None
) -> ComplianceResult:
    """
    Evaluate one resource against one rule.

    Args:
        rule: TagPresenceRule, OSSupportRule or NetworkProtectionRule
        resource: Resource to evaluate
        facts: NSG association facts of the resource's account. Only used by
            network protection rules; None means the facts could not be fetched.

    Returns:
        Exactly one ComplianceResult

    Raises:
        TypeError: If the rule is of an unknown kind
    """
    if not rule.applies_to_resource(resource.resource_type):
        return _result(
            rule,
            resource,
            Verdict.NOT_APPLICABLE,
            f"rule does not apply to {resource.resource_type}",
        )

    if isinstance(rule, TagPresenceRule):
        return _evaluate_tags(rule, resource)
    if isinstance(rule, OSSupportRule):
        return _evaluate_os(rule, resource)
    if isinstance(rule, NetworkProtectionRule):
        return _evaluate_network(rule, resource, facts)
    raise TypeError(f"Unsupported rule type: {type(rule).__name__}")


def evaluate_resource(
    rules: Iterable[PolicyRule], resource: Resource, facts: NetworkAssociationFacts | None = None
) -> list[ComplianceResult]:
    """Evaluate a resource against every rule, in policy order."""
    return [evaluate(rule, resource, facts) for rule in rules]


def unevaluable_results(
    rules: Iterable[PolicyRule], resource: Resource, message: str
) -> list[ComplianceResult]:
    """
    ERROR results for every rule that applies to the resource.

    Used when the resource data itself cannot be trusted, e.g. when the
    inventory lists the same resource id more than once.
    """
    results = []
    for rule in rules:
        if rule.applies_to_resource(resource.resource_type):
            results.append(_result(rule, resource, Verdict.ERROR, message))
        else:
            results.append(
                _result(
                    rule,
                    resource,
                    Verdict.NOT_APPLICABLE,
                    f"rule does not apply to {resource.resource_type}",
                )
            )
    return results
