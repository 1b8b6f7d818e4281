# Copyright (c) 2025-2026 OptimNow. All Rights Reserved.
# Licensed under the Apache License, Version 2.0.
# See LICENSE file in the project root for full license information.

"""Offline inventory client backed by a JSON snapshot.

Snapshot layout::

    {
      "accounts": [{"account_id": "sub-a", "display_name": "Prod"}],
      "resources": {"sub-a": [{"resource_id": "...", "resource_type": "..."}]},
      "network_security_groups": {
        "sub-a": [{"nsg_id": "...", "associated_nic_ids": ["..."],
                   "associated_subnet_ids": ["..."]}]
      },
      "failures": {
        "list_accounts": "message",
        "accounts": {"sub-b": {"resources": "message",
                               "network_security_groups": "message"}},
        "update_tags": {"<resource id>": "throttled"}
      }
    }

``failures`` is optional and lets operators and tests replay API
failures without touching the cloud.
"""

import json
import logging
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from ..models.resource import Account, NetworkSecurityGroup, Resource
from .inventory_client import (
    AuthError,
    EnumerationError,
    InventoryClient,
    InventoryError,
    NotFoundError,
    ThrottlingError,
)

logger = logging.getLogger(__name__)

# Injectable tag-write failures
WRITE_FAILURES: dict[str, tuple[type[InventoryError], str]] = {
    "auth": (AuthError, "AuthorizationFailed"),
    "throttled": (ThrottlingError, "TooManyRequests"),
    "not_found": (NotFoundError, "ResourceNotFound"),
    "error": (InventoryError, "InternalError"),
}


class SnapshotError(Exception):
    """Raised when a snapshot file is missing or malformed."""

    pass


class SnapshotInventoryClient(InventoryClient):
    """Inventory client that serves accounts and resources from a snapshot."""

    def __init__(self, data: dict[str, Any], path: str | Path | None = None, persist: bool = False):
        """
        Initialize from already-parsed snapshot data.

        Args:
            data: Parsed snapshot document
            path: File the snapshot came from, used when persisting
            persist: Write tag updates back to ``path``
        """
        self._path = Path(path) if path else None
        self._persist = persist and self._path is not None
        self._failures: dict[str, Any] = data.get("failures") or {}

        try:
            self._accounts = [Account(**a) for a in data.get("accounts", [])]
            self._resources: dict[str, list[Resource]] = {
                account_id: [Resource(**{"account_id": account_id, **r}) for r in items]
                for account_id, items in (data.get("resources") or {}).items()
            }
            self._nsgs: dict[str, list[NetworkSecurityGroup]] = {
                account_id: [NetworkSecurityGroup(**n) for n in items]
                for account_id, items in (data.get("network_security_groups") or {}).items()
            }
        except (ValidationError, TypeError, AttributeError) as e:
            raise SnapshotError(f"Invalid inventory snapshot: {e}") from e

        self.tag_writes: list[tuple[str, dict[str, str]]] = []

    @classmethod
    def from_file(cls, path: str | Path, persist: bool = False) -> "SnapshotInventoryClient":
        """
        Load a snapshot from a JSON file.

        Raises:
            SnapshotError: If the file is missing or not valid JSON
        """
        path = Path(path)
        if not path.exists():
            raise SnapshotError(f"Inventory snapshot not found: {path}")
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise SnapshotError(f"Invalid JSON in inventory snapshot {path}: {e}") from e
        if not isinstance(data, dict):
            raise SnapshotError(f"Inventory snapshot {path} must be a JSON object")
        return cls(data, path=path, persist=persist)

    def _account_failure(self, account_id: str, stage: str) -> str | None:
        return ((self._failures.get("accounts") or {}).get(account_id) or {}).get(stage)

    async def list_accounts(self) -> list[Account]:
        message = self._failures.get("list_accounts")
        if message:
            raise EnumerationError(message, error_code="SnapshotFailure")
        return list(self._accounts)

    async def list_resources(self, account: Account) -> list[Resource]:
        message = self._account_failure(account.account_id, "resources")
        if message:
            raise EnumerationError(message, error_code="SnapshotFailure")
        return list(self._resources.get(account.account_id, []))

    async def list_network_security_groups(self, account: Account) -> list[NetworkSecurityGroup]:
        message = self._account_failure(account.account_id, "network_security_groups")
        if message:
            raise EnumerationError(message, error_code="SnapshotFailure")
        return list(self._nsgs.get(account.account_id, []))

    async def update_tags(self, resource_id: str, tags: dict[str, str]) -> None:
        failure = (self._failures.get("update_tags") or {}).get(resource_id)
        if failure:
            error_cls, error_code = WRITE_FAILURES.get(failure, WRITE_FAILURES["error"])
            raise error_cls(f"Tag write rejected for {resource_id}: {failure}", error_code=error_code)

        stored = self._find(resource_id)
        if stored is None:
            raise NotFoundError(f"Resource not found: {resource_id}", error_code="ResourceNotFound")

        stored.tags = dict(tags)
        self.tag_writes.append((resource_id, dict(tags)))
        logger.debug(f"Snapshot tags replaced on {resource_id}")

        if self._persist:
            self.save()

    def _find(self, resource_id: str) -> Resource | None:
        for resources in self._resources.values():
            for resource in resources:
                if resource.resource_id == resource_id:
                    return resource
        return None

    def to_dict(self) -> dict[str, Any]:
        """Serialize the current in-memory snapshot."""
        data: dict[str, Any] = {
            "accounts": [a.model_dump(exclude_none=True) for a in self._accounts],
            "resources": {
                account_id: [r.model_dump(exclude_none=True) for r in items]
                for account_id, items in self._resources.items()
            },
            "network_security_groups": {
                account_id: [
                    {
                        "nsg_id": n.nsg_id,
                        "associated_nic_ids": sorted(n.associated_nic_ids),
                        "associated_subnet_ids": sorted(n.associated_subnet_ids),
                    }
                    for n in items
                ]
                for account_id, items in self._nsgs.items()
            },
        }
        if self._failures:
            data["failures"] = self._failures
        return data

    def save(self) -> None:
        """Write the snapshot back to the file it was loaded from."""
        if self._path is None:
            raise SnapshotError("Snapshot has no backing file")
        with open(self._path, "w", encoding="utf-8") as f:
            json.dump(self.to_dict(), f, indent=2)
