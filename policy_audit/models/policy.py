# Copyright (c) 2025-2026 OptimNow. All Rights Reserved.
# Licensed under the Apache License, Version 2.0.
# See LICENSE file in the project root for full license information.

"""Compliance policy data models."""

from datetime import datetime, timezone
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .enums import RuleKind


def split_urn(urn: str) -> tuple[str, str, str]:
    """Split a ``publisher:offer:sku`` string, rejecting any other arity."""
    parts = urn.split(":")
    if len(parts) != 3:
        raise ValueError(
            f"OS denylist entry '{urn}' must have the form publisher:offer:sku "
            "(version is never part of the entry)"
        )
    return parts[0], parts[1], parts[2]


class _RuleBase(BaseModel):
    """Fields shared by every rule."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1, description="Unique rule name")
    description: str = Field("", description="What this rule enforces")
    applies_to: list[str] | None = Field(
        None,
        description="Resource types this rule applies to. None or empty list means ALL resource types.",
    )

    def applies_to_resource(self, resource_type: str) -> bool:
        """Check whether this rule applies to a resource type (exact match)."""
        if not self.applies_to:
            return True
        return resource_type in self.applies_to


class TagPresenceRule(_RuleBase):
    """Resource must carry every tag in ``required_tags``."""

    kind: Literal["tag_presence"] = "tag_presence"
    required_tags: list[str] = Field(..., min_length=1, description="Tag names that must be present")

    @field_validator("required_tags")
    @classmethod
    def validate_required_tags(cls, v: list[str]) -> list[str]:
        cleaned: list[str] = []
        for tag in v:
            tag = tag.strip()
            if not tag:
                raise ValueError("required tag names must be non-empty")
            if tag not in cleaned:
                cleaned.append(tag)
        return cleaned


class OSSupportRule(_RuleBase):
    """Resource image must not be on the end-of-support denylist."""

    kind: Literal["os_support"] = "os_support"
    denylist: list[str] = Field(
        default_factory=list, description="Denylisted image URNs without version (publisher:offer:sku)"
    )

    @field_validator("denylist")
    @classmethod
    def validate_denylist(cls, v: list[str]) -> list[str]:
        cleaned: list[str] = []
        for urn in v:
            urn = urn.strip()
            split_urn(urn)
            if urn not in cleaned:
                cleaned.append(urn)
        return cleaned


class NetworkProtectionRule(_RuleBase):
    """Resource NIC or subnet must be associated with a network security group."""

    kind: Literal["network_protection"] = "network_protection"


PolicyRule = Annotated[
    Union[TagPresenceRule, OSSupportRule, NetworkProtectionRule],
    Field(discriminator="kind"),
]


class AuditPolicy(BaseModel):
    """Complete audit policy configuration."""

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "version": "1.0",
                "rules": [
                    {
                        "kind": "tag_presence",
                        "name": "required-tags",
                        "required_tags": ["Environment", "Owner", "CostCenter"],
                    },
                    {
                        "kind": "os_support",
                        "name": "os-end-of-support",
                        "denylist": ["Canonical:UbuntuServer:18.04-LTS"],
                        "applies_to": ["Microsoft.Compute/virtualMachines"],
                    },
                    {
                        "kind": "network_protection",
                        "name": "nsg-coverage",
                        "applies_to": ["Microsoft.Compute/virtualMachines"],
                    },
                ],
            }
        }
    )

    version: str = Field("1.0", description="Version of the policy")
    last_updated: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="Timestamp when policy was last updated",
    )
    rules: list[PolicyRule] = Field(default_factory=list, description="Rules evaluated in order")

    @model_validator(mode="after")
    def validate_unique_names(self) -> "AuditPolicy":
        seen: set[str] = set()
        for rule in self.rules:
            if rule.name in seen:
                raise ValueError(f"duplicate rule name: {rule.name}")
            seen.add(rule.name)
        return self

    def rules_of_kind(self, kind: RuleKind) -> list:
        return [rule for rule in self.rules if rule.kind == kind]

    @property
    def requires_network_facts(self) -> bool:
        """True when any rule needs NSG association facts."""
        return bool(self.rules_of_kind(RuleKind.NETWORK_PROTECTION))
