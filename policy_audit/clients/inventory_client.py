# Copyright (c) 2025-2026 OptimNow. All Rights Reserved.
# Licensed under the Apache License, Version 2.0.
# See LICENSE file in the project root for full license information.

"""Inventory client contract consumed by the scan orchestrator.

Concrete clients enumerate accounts, resources and network security
groups, and write tags back. They translate provider-specific failures
into the error hierarchy below so the orchestrator can classify them
without knowing which cloud SDK produced them.
"""

from abc import ABC, abstractmethod

from ..models.resource import Account, NetworkSecurityGroup, Resource


class InventoryError(Exception):
    """Base class for inventory API failures."""

    def __init__(self, message: str, error_code: str | None = None):
        super().__init__(message)
        self.error_code = error_code


class AuthError(InventoryError):
    """Raised when the caller is not authenticated or not authorized."""

    pass


class EnumerationError(InventoryError):
    """Raised when listing accounts, resources or NSGs fails."""

    pass


class ThrottlingError(InventoryError):
    """Raised when the API rejects a call because of rate limits."""

    pass


class NotFoundError(InventoryError):
    """Raised when the target resource no longer exists."""

    pass


class InventoryClient(ABC):
    """
    Read/write access to a multi-account resource inventory.

    All methods are coroutines. Implementations must raise only
    ``InventoryError`` subclasses for API failures.
    """

    @abstractmethod
    async def list_accounts(self) -> list[Account]:
        """
        List every account visible to the caller.

        Raises:
            AuthError: If credentials are missing or rejected
            EnumerationError: If the account listing fails
        """

    @abstractmethod
    async def list_resources(self, account: Account) -> list[Resource]:
        """
        List the audited resources of one account, in API order.

        Raises:
            EnumerationError: If the resource listing fails
        """

    @abstractmethod
    async def list_network_security_groups(self, account: Account) -> list[NetworkSecurityGroup]:
        """
        List the NSGs of one account with their NIC and subnet associations.

        Raises:
            EnumerationError: If the NSG listing fails
        """

    @abstractmethod
    async def update_tags(self, resource_id: str, tags: dict[str, str]) -> None:
        """
        Replace the full tag set of a resource.

        Raises:
            AuthError: If the caller may not write tags
            ThrottlingError: If the write was rate limited
            NotFoundError: If the resource no longer exists
        """

    async def close(self) -> None:
        """Release any held connections."""
        return None
