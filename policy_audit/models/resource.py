# Copyright (c) 2025-2026 OptimNow. All Rights Reserved.
# Licensed under the Apache License, Version 2.0.
# See LICENSE file in the project root for full license information.

"""Inventory data models: accounts, resources and NSG association facts."""

from typing import Any, Iterable

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ..utils.resource_id import get_resource_group


class Account(BaseModel):
    """A subscription (billing/management scope) holding resources."""

    account_id: str = Field(..., description="Subscription identifier")
    display_name: str = Field("", description="Human readable subscription name")
    state: str | None = Field(None, description="Subscription state as reported by the API")


class ImageReference(BaseModel):
    """OS image a virtual machine was created from."""

    publisher: str | None = Field(None, description="Image publisher (e.g., Canonical)")
    offer: str | None = Field(None, description="Image offer (e.g., UbuntuServer)")
    sku: str | None = Field(None, description="Image SKU (e.g., 18.04-LTS)")
    version: str | None = Field(None, description="Image version, ignored by OS policies")


class NetworkProfile(BaseModel):
    """Primary network attachment of a resource."""

    nic_id: str | None = Field(None, description="Primary network interface id")
    subnet_id: str | None = Field(None, description="Subnet the primary NIC is attached to")


def _extract_tags(raw: Any) -> dict[str, str]:
    """
    Normalize a tag payload into a dictionary.

    Accepts a mapping, or a list of ``{"key"|"name"|"Key": ..., "value"|"Value": ...}``
    pairs. Later duplicates overwrite earlier ones.
    """
    if raw is None:
        return {}
    if isinstance(raw, dict):
        return {str(k): "" if v is None else str(v) for k, v in raw.items()}

    result: dict[str, str] = {}
    for tag in raw:
        if isinstance(tag, (list, tuple)) and len(tag) == 2:
            key, value = tag
        else:
            key = tag.get("key") or tag.get("name") or tag.get("Key") or ""
            value = tag.get("value", tag.get("Value", ""))
        if key:
            result[str(key)] = "" if value is None else str(value)
    return result


class Resource(BaseModel):
    """An audited cloud object (virtual machine or generic resource)."""

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "resource_id": "/subscriptions/sub-a/resourceGroups/rg-web/providers/Microsoft.Compute/virtualMachines/vm-web-01",
                "name": "vm-web-01",
                "resource_type": "Microsoft.Compute/virtualMachines",
                "location": "westeurope",
                "resource_group": "rg-web",
                "account_id": "sub-a",
                "tags": {"Environment": "prod"},
                "image_reference": {
                    "publisher": "Canonical",
                    "offer": "UbuntuServer",
                    "sku": "18.04-LTS",
                    "version": "18.04.202107290",
                },
                "network_profile": {"nic_id": "nic-1", "subnet_id": "subnet-9"},
            }
        },
    )

    resource_id: str = Field(..., description="Full resource identifier")
    name: str = Field("", description="Resource name")
    resource_type: str = Field(..., description="Provider type (e.g., Microsoft.Compute/virtualMachines)")
    location: str = Field("", description="Region where the resource lives")
    resource_group: str = Field("", description="Resource group name")
    account_id: str = Field("", description="Subscription the resource belongs to")
    tags: dict[str, str] = Field(default_factory=dict, description="Tags on the resource")
    image_reference: ImageReference | None = Field(
        None, description="OS image reference, if the resource has one"
    )
    network_profile: NetworkProfile | None = Field(
        None, description="Primary network attachment, if the resource has one"
    )

    @field_validator("tags", mode="before")
    @classmethod
    def normalize_tags(cls, v: Any) -> dict[str, str]:
        """Accept mappings or key/value pair lists; duplicates are last-write-wins."""
        return _extract_tags(v)

    @model_validator(mode="after")
    def fill_derived_fields(self) -> "Resource":
        if not self.resource_group:
            self.resource_group = get_resource_group(self.resource_id)
        if not self.name:
            self.name = self.resource_id.rstrip("/").split("/")[-1]
        return self


class NetworkSecurityGroup(BaseModel):
    """Association facts for one network security group."""

    nsg_id: str = Field("", description="Network security group id")
    associated_nic_ids: set[str] = Field(
        default_factory=set, description="NICs this NSG is attached to"
    )
    associated_subnet_ids: set[str] = Field(
        default_factory=set, description="Subnets this NSG is attached to"
    )


class NetworkAssociationFacts(BaseModel):
    """NIC and subnet ids covered by at least one NSG in an account."""

    model_config = ConfigDict(frozen=True)

    protected_nic_ids: frozenset[str] = Field(default_factory=frozenset)
    protected_subnet_ids: frozenset[str] = Field(default_factory=frozenset)

    @classmethod
    def from_security_groups(
        cls, security_groups: Iterable[NetworkSecurityGroup]
    ) -> "NetworkAssociationFacts":
        """Union the associations of every NSG into one fact set."""
        nic_ids: set[str] = set()
        subnet_ids: set[str] = set()
        for nsg in security_groups:
            nic_ids.update(nsg.associated_nic_ids)
            subnet_ids.update(nsg.associated_subnet_ids)
        return cls(
            protected_nic_ids=frozenset(nic_ids),
            protected_subnet_ids=frozenset(subnet_ids),
        )
