"""Inventory clients for the policy audit engine."""

from .inventory_client import (
    AuthError,
    EnumerationError,
    InventoryClient,
    InventoryError,
    NotFoundError,
    ThrottlingError,
)
from .snapshot_client import SnapshotError, SnapshotInventoryClient

__all__ = [
    "AuthError",
    "EnumerationError",
    "InventoryClient",
    "InventoryError",
    "NotFoundError",
    "ThrottlingError",
    "SnapshotError",
    "SnapshotInventoryClient",
]
