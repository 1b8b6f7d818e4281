# Copyright (c) 2025-2026 OptimNow. All Rights Reserved.
# Licensed under the Apache License, Version 2.0.
# See LICENSE file in the project root for full license information.

"""Shared resource id parsing utilities.

Resource ids follow the ARM layout::

    /subscriptions/{sub}/resourceGroups/{rg}/providers/{namespace}/{type}/{name}[/{child_type}/{child_name}...]

Parsing is structural only. Segment values are returned exactly as they
appear in the id; no case folding is applied.
"""

import re
from typing import Optional


RESOURCE_ID_PATTERN = re.compile(
    r"^/subscriptions/[^/]+(/resourceGroups/[^/]+)?(/providers/[^/]+(/[^/]+/[^/]+)+)?/?$",
    re.IGNORECASE,
)


def is_valid_resource_id(resource_id: Optional[str]) -> bool:
    """
    Validate if a string looks like an ARM resource id.

    Args:
        resource_id: String to validate

    Returns:
        True if the id has the ARM layout, False otherwise
    """
    if not resource_id or not isinstance(resource_id, str):
        return False

    return bool(RESOURCE_ID_PATTERN.match(resource_id))


def parse_resource_id(resource_id: str) -> dict[str, str]:
    """
    Parse a resource id into its components.

    Args:
        resource_id: ARM resource id

    Returns:
        Dictionary with:
        - subscription: subscription id
        - resource_group: resource group name (may be empty)
        - namespace: provider namespace (e.g., Microsoft.Compute)
        - resource_type: full provider type (e.g., Microsoft.Compute/virtualMachines)
        - name: name of the last resource segment

    Raises:
        ValueError: If the id does not have the ARM layout

    Example:
        >>> parse_resource_id(
        ...     "/subscriptions/sub-a/resourceGroups/rg-web/providers/Microsoft.Compute/virtualMachines/vm-1"
        ... )
        {
            'subscription': 'sub-a',
            'resource_group': 'rg-web',
            'namespace': 'Microsoft.Compute',
            'resource_type': 'Microsoft.Compute/virtualMachines',
            'name': 'vm-1'
        }
    """
    if not is_valid_resource_id(resource_id):
        raise ValueError(f"Invalid resource id format: {resource_id}")

    parts = [p for p in resource_id.split("/") if p]
    lowered = [p.lower() for p in parts]

    subscription = parts[1]
    resource_group = ""
    if "resourcegroups" in lowered:
        resource_group = parts[lowered.index("resourcegroups") + 1]

    namespace = ""
    resource_type = ""
    name = ""
    if "providers" in lowered:
        idx = lowered.index("providers")
        namespace = parts[idx + 1]
        # Remaining segments alternate type/name; child types are appended
        remainder = parts[idx + 2:]
        type_segments = remainder[0::2]
        name_segments = remainder[1::2]
        resource_type = "/".join([namespace] + type_segments)
        name = name_segments[-1] if name_segments else ""
    elif resource_group:
        name = resource_group

    return {
        "subscription": subscription,
        "resource_group": resource_group,
        "namespace": namespace,
        "resource_type": resource_type,
        "name": name,
    }


def get_resource_group(resource_id: str) -> str:
    """
    Extract the resource group name from a resource id.

    Returns:
        Resource group name or empty string if not present
    """
    try:
        return parse_resource_id(resource_id).get("resource_group", "")
    except ValueError:
        return ""


def get_subscription(resource_id: str) -> str:
    """
    Extract the subscription id from a resource id.

    Returns:
        Subscription id or empty string if not present
    """
    try:
        return parse_resource_id(resource_id).get("subscription", "")
    except ValueError:
        return ""
