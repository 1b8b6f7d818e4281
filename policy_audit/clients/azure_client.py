# Copyright (c) 2025-2026 OptimNow. All Rights Reserved.
# Licensed under the Apache License, Version 2.0.
# See LICENSE file in the project root for full license information.

"""Azure inventory client built on the azure-mgmt SDKs."""

import asyncio
import logging
import time
from typing import Any, Callable

from azure.core.exceptions import (
    AzureError,
    ClientAuthenticationError,
    HttpResponseError,
    ResourceNotFoundError,
)
from azure.identity import ClientSecretCredential, DefaultAzureCredential
from azure.mgmt.compute import ComputeManagementClient
from azure.mgmt.network import NetworkManagementClient
from azure.mgmt.resource import ResourceManagementClient, SubscriptionClient
from azure.mgmt.resource.resources.models import Tags, TagsPatchResource

from ..models.resource import (
    Account,
    ImageReference,
    NetworkProfile,
    NetworkSecurityGroup,
    Resource,
)
from ..utils.resource_id import get_subscription
from .inventory_client import (
    AuthError,
    EnumerationError,
    InventoryClient,
    InventoryError,
    NotFoundError,
    ThrottlingError,
)

logger = logging.getLogger(__name__)

VIRTUAL_MACHINE_TYPE = "Microsoft.Compute/virtualMachines"

THROTTLING_STATUS_CODES = frozenset([429])
AUTH_STATUS_CODES = frozenset([401, 403])


def _status_code(exc: HttpResponseError) -> int | None:
    status = getattr(exc, "status_code", None)
    if status is None and getattr(exc, "response", None) is not None:
        status = getattr(exc.response, "status_code", None)
    return status


def translate_azure_error(
    exc: Exception, default_cls: type[InventoryError], action: str
) -> InventoryError:
    """
    Map an Azure SDK exception onto the inventory error hierarchy.

    Args:
        exc: Exception raised by the SDK
        default_cls: Error class used when nothing more specific applies
        action: Short description of the failed call, used in the message

    Returns:
        InventoryError subclass instance (not raised)
    """
    message = f"{action} failed: {exc}"
    error_code = getattr(getattr(exc, "error", None), "code", None)

    if isinstance(exc, ClientAuthenticationError):
        return AuthError(message, error_code=error_code or "AuthenticationFailed")
    if isinstance(exc, ResourceNotFoundError):
        return NotFoundError(message, error_code=error_code or "ResourceNotFound")
    if isinstance(exc, HttpResponseError):
        status = _status_code(exc)
        if status in THROTTLING_STATUS_CODES:
            return ThrottlingError(message, error_code=error_code or "TooManyRequests")
        if status in AUTH_STATUS_CODES:
            return AuthError(message, error_code=error_code or "AuthorizationFailed")
        if status == 404:
            return NotFoundError(message, error_code=error_code or "ResourceNotFound")
    return default_cls(message, error_code=error_code)


class AzureInventoryClient(InventoryClient):
    """
    Inventory client for Azure subscriptions.

    Uses a service principal when tenant/client/secret are all provided,
    otherwise falls back to DefaultAzureCredential (CLI login, managed
    identity, environment variables). Blocking SDK calls run in the
    default executor so the event loop keeps serving other accounts.
    """

    def __init__(
        self,
        tenant_id: str | None = None,
        client_id: str | None = None,
        client_secret: str | None = None,
        credential: Any | None = None,
        min_call_interval: float = 0.05,
    ):
        """
        Initialize Azure credentials.

        Args:
            tenant_id: Azure AD tenant id for service principal auth
            client_id: Service principal application id
            client_secret: Service principal secret
            credential: Pre-built credential object (takes precedence)
            min_call_interval: Minimum seconds between calls to the same API
        """
        if credential is not None:
            self.credential = credential
        elif tenant_id and client_id and client_secret:
            self.credential = ClientSecretCredential(
                tenant_id=tenant_id,
                client_id=client_id,
                client_secret=client_secret,
            )
        else:
            self.credential = DefaultAzureCredential()

        self._subscription_client: SubscriptionClient | None = None
        self._clients: dict[tuple[str, str], Any] = {}

        # Rate limiting state
        self._last_call_time: dict[str, float] = {}
        self._min_call_interval = min_call_interval

    # ------------------------------------------------------------------
    # Client management
    # ------------------------------------------------------------------

    def _get_client(self, kind: str, subscription_id: str) -> Any:
        """Return a cached management client for a subscription."""
        key = (kind, subscription_id)
        if key not in self._clients:
            factories: dict[str, Callable[..., Any]] = {
                "resource": ResourceManagementClient,
                "compute": ComputeManagementClient,
                "network": NetworkManagementClient,
            }
            self._clients[key] = factories[kind](self.credential, subscription_id)
        return self._clients[key]

    async def _rate_limit(self, api_name: str) -> None:
        """
        Implement basic rate limiting between calls to the same API.

        Args:
            api_name: Name of the API being called
        """
        if api_name in self._last_call_time:
            elapsed = time.time() - self._last_call_time[api_name]
            if elapsed < self._min_call_interval:
                await asyncio.sleep(self._min_call_interval - elapsed)

        self._last_call_time[api_name] = time.time()

    async def _call(
        self,
        api_name: str,
        func: Callable[[], Any],
        error_cls: type[InventoryError],
        action: str,
    ) -> Any:
        """
        Run a blocking SDK call in the executor and translate its errors.

        Paged results must be materialized inside ``func`` so that
        pagination also happens off the event loop.
        """
        await self._rate_limit(api_name)
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, func)
        except (AzureError, ClientAuthenticationError) as e:
            raise translate_azure_error(e, error_cls, action) from e

    # ------------------------------------------------------------------
    # InventoryClient
    # ------------------------------------------------------------------

    async def list_accounts(self) -> list[Account]:
        if self._subscription_client is None:
            self._subscription_client = SubscriptionClient(self.credential)
        client = self._subscription_client

        subscriptions = await self._call(
            "subscriptions",
            lambda: list(client.subscriptions.list()),
            EnumerationError,
            "Listing subscriptions",
        )

        accounts = []
        for sub in subscriptions:
            state = getattr(sub.state, "value", sub.state)
            accounts.append(
                Account(
                    account_id=sub.subscription_id,
                    display_name=sub.display_name or "",
                    state=str(state) if state is not None else None,
                )
            )
        logger.info(f"Enumerated {len(accounts)} subscriptions")
        return accounts

    async def list_resources(self, account: Account) -> list[Resource]:
        sub_id = account.account_id
        resource_client = self._get_client("resource", sub_id)
        compute_client = self._get_client("compute", sub_id)
        network_client = self._get_client("network", sub_id)

        generic = await self._call(
            "resources",
            lambda: list(resource_client.resources.list()),
            EnumerationError,
            f"Listing resources in {sub_id}",
        )
        vms = await self._call(
            "compute",
            lambda: list(compute_client.virtual_machines.list_all()),
            EnumerationError,
            f"Listing virtual machines in {sub_id}",
        )
        nics = await self._call(
            "network",
            lambda: list(network_client.network_interfaces.list_all()),
            EnumerationError,
            f"Listing network interfaces in {sub_id}",
        )

        # Join keys are lowercased; ARM returns resource group segments in
        # inconsistent case between providers. Stored ids are left untouched.
        vms_by_id = {vm.id.lower(): vm for vm in vms if vm.id}
        nics_by_id = {nic.id.lower(): nic for nic in nics if nic.id}

        resources = []
        for item in generic:
            vm = vms_by_id.get(item.id.lower()) if item.type == VIRTUAL_MACHINE_TYPE else None
            resources.append(self._to_resource(item, vm, nics_by_id, sub_id))

        logger.info(f"Enumerated {len(resources)} resources ({len(vms)} VMs) in {sub_id}")
        return resources

    async def list_network_security_groups(self, account: Account) -> list[NetworkSecurityGroup]:
        sub_id = account.account_id
        network_client = self._get_client("network", sub_id)

        nsgs = await self._call(
            "network",
            lambda: list(network_client.network_security_groups.list_all()),
            EnumerationError,
            f"Listing network security groups in {sub_id}",
        )

        result = []
        for nsg in nsgs:
            result.append(
                NetworkSecurityGroup(
                    nsg_id=nsg.id or "",
                    associated_nic_ids={n.id for n in (nsg.network_interfaces or []) if n.id},
                    associated_subnet_ids={s.id for s in (nsg.subnets or []) if s.id},
                )
            )
        return result

    async def update_tags(self, resource_id: str, tags: dict[str, str]) -> None:
        sub_id = get_subscription(resource_id)
        if not sub_id:
            raise NotFoundError(f"Cannot derive subscription from resource id: {resource_id}")
        resource_client = self._get_client("resource", sub_id)

        # Replace writes the full tag set; there is no If-Match guard here,
        # so a concurrent external tag change between read and write is lost.
        patch = TagsPatchResource(operation="Replace", properties=Tags(tags=tags))
        await self._call(
            "tags",
            lambda: resource_client.tags.update_at_scope(scope=resource_id, parameters=patch),
            InventoryError,
            f"Updating tags on {resource_id}",
        )

    async def close(self) -> None:
        for client in self._clients.values():
            client.close()
        if self._subscription_client is not None:
            self._subscription_client.close()
        close = getattr(self.credential, "close", None)
        if callable(close):
            close()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _primary_subnet_id(nic: Any) -> str | None:
        configs = nic.ip_configurations or []
        primary = next((c for c in configs if getattr(c, "primary", False)), None)
        config = primary or (configs[0] if configs else None)
        if config is None or config.subnet is None:
            return None
        return config.subnet.id

    @classmethod
    def _to_resource(
        cls, item: Any, vm: Any | None, nics_by_id: dict[str, Any], sub_id: str
    ) -> Resource:
        image_reference = None
        network_profile = None

        if vm is not None:
            image = vm.storage_profile.image_reference if vm.storage_profile else None
            if image is not None and (image.publisher or image.offer or image.sku):
                image_reference = ImageReference(
                    publisher=image.publisher,
                    offer=image.offer,
                    sku=image.sku,
                    version=getattr(image, "exact_version", None) or image.version,
                )

            interfaces = vm.network_profile.network_interfaces if vm.network_profile else None
            if interfaces:
                primary = next((n for n in interfaces if n.primary), interfaces[0])
                # nic_id uses the NIC listing's spelling, which NSG associations share
                nic = nics_by_id.get((primary.id or "").lower())
                network_profile = NetworkProfile(
                    nic_id=nic.id if nic is not None else primary.id,
                    subnet_id=cls._primary_subnet_id(nic) if nic is not None else None,
                )

        return Resource(
            resource_id=item.id,
            name=item.name or "",
            resource_type=item.type or "",
            location=item.location or "",
            account_id=sub_id,
            tags=item.tags or {},
            image_reference=image_reference,
            network_profile=network_profile,
        )
