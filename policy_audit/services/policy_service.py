# Copyright (c) 2025-2026 OptimNow. All Rights Reserved.
# Licensed under the Apache License, Version 2.0.
# See LICENSE file in the project root for full license information.

"""Policy service for loading or building audit policies."""

import json
import logging
from pathlib import Path

from pydantic import ValidationError

from ..config import Settings
from ..models.policy import (
    AuditPolicy,
    NetworkProtectionRule,
    OSSupportRule,
    TagPresenceRule,
)

logger = logging.getLogger(__name__)

VIRTUAL_MACHINE_TYPE = "Microsoft.Compute/virtualMachines"

REQUIRED_TAGS_RULE = "required-tags"
OS_SUPPORT_RULE = "os-end-of-support"
NETWORK_PROTECTION_RULE = "nsg-coverage"


class PolicyValidationError(Exception):
    """Raised when policy configuration is invalid."""

    pass


class PolicyNotFoundError(Exception):
    """Raised when policy file is not found."""

    pass


class PolicyService:
    """
    Service for resolving the audit policy of a run.

    The policy comes either from a JSON file or is synthesized from the
    inline settings (required tags, OS denylist, network protection flag).
    """

    def __init__(self, policy_path: str | Path | None = None):
        """
        Initialize the PolicyService.

        Args:
            policy_path: Path to a policy JSON file, if any.
        """
        self._policy_path = Path(policy_path) if policy_path else None

    def load_policy(self, policy_path: str | Path | None = None) -> AuditPolicy:
        """
        Load an audit policy from a JSON file.

        Args:
            policy_path: Optional path to policy file. If None, uses instance path.

        Returns:
            AuditPolicy: The loaded and validated policy

        Raises:
            PolicyNotFoundError: If the policy file doesn't exist
            PolicyValidationError: If the policy structure is invalid
        """
        path = Path(policy_path) if policy_path else self._policy_path
        if path is None:
            raise PolicyNotFoundError("No policy file configured")

        if not path.exists():
            raise PolicyNotFoundError(f"Policy file not found: {path}")

        try:
            with open(path, "r", encoding="utf-8") as f:
                policy_data = json.load(f)
        except json.JSONDecodeError as e:
            raise PolicyValidationError(f"Invalid JSON in policy file {path}: {e}") from e
        except OSError as e:
            raise PolicyValidationError(f"Error reading policy file {path}: {e}") from e

        if not isinstance(policy_data, dict):
            raise PolicyValidationError(f"Policy file {path} must contain a JSON object")

        try:
            policy = AuditPolicy(**policy_data)
        except ValidationError as e:
            raise PolicyValidationError(f"Invalid policy structure in {path}: {e}") from e

        logger.info(f"Loaded policy {path} with {len(policy.rules)} rules")
        return policy

    def build_policy(
        self,
        required_tags: list[str] | None = None,
        os_denylist: list[str] | None = None,
        network_protection: bool = False,
    ) -> AuditPolicy:
        """
        Synthesize a policy from inline configuration values.

        The OS and network rules apply to virtual machines only; the tag
        rule applies to every resource type.

        Raises:
            PolicyValidationError: If a value is invalid or no rule results
        """
        rules: list = []
        try:
            if required_tags:
                rules.append(
                    TagPresenceRule(
                        name=REQUIRED_TAGS_RULE,
                        description="Resources must carry every required tag",
                        required_tags=required_tags,
                    )
                )
            if os_denylist:
                rules.append(
                    OSSupportRule(
                        name=OS_SUPPORT_RULE,
                        description="VM images must not be past end of support",
                        denylist=os_denylist,
                        applies_to=[VIRTUAL_MACHINE_TYPE],
                    )
                )
            if network_protection:
                rules.append(
                    NetworkProtectionRule(
                        name=NETWORK_PROTECTION_RULE,
                        description="VM NIC or subnet must be covered by an NSG",
                        applies_to=[VIRTUAL_MACHINE_TYPE],
                    )
                )
        except ValidationError as e:
            raise PolicyValidationError(f"Invalid policy settings: {e}") from e

        if not rules:
            raise PolicyValidationError(
                "No rules configured: provide a policy file, required tags, "
                "an OS denylist or enable the network check"
            )

        return AuditPolicy(rules=rules)

    def resolve(self, settings: Settings) -> AuditPolicy:
        """
        Resolve the policy for a run from settings.

        A policy file wins over inline settings.
        """
        if settings.policy_path:
            return self.load_policy(settings.policy_path)
        return self.build_policy(
            required_tags=settings.required_tags,
            os_denylist=settings.os_denylist,
            network_protection=settings.network_protection_enabled,
        )

