"""Pytest configuration and shared fixtures."""

import copy

import pytest

from policy_audit.clients.snapshot_client import SnapshotInventoryClient
from policy_audit.models.policy import (
    AuditPolicy,
    NetworkProtectionRule,
    OSSupportRule,
    TagPresenceRule,
)
from policy_audit.models.resource import ImageReference, NetworkProfile, Resource

VM_TYPE = "Microsoft.Compute/virtualMachines"
STORAGE_TYPE = "Microsoft.Storage/storageAccounts"

SUB_A = "sub-a"
SUB_B = "sub-b"


def vm_id(account_id: str, name: str, group: str = "rg-app") -> str:
    return f"/subscriptions/{account_id}/resourceGroups/{group}/providers/Microsoft.Compute/virtualMachines/{name}"


def nic_id(account_id: str, name: str) -> str:
    return f"/subscriptions/{account_id}/resourceGroups/rg-net/providers/Microsoft.Network/networkInterfaces/{name}"


def subnet_id(account_id: str, vnet: str, name: str) -> str:
    return (
        f"/subscriptions/{account_id}/resourceGroups/rg-net/providers/"
        f"Microsoft.Network/virtualNetworks/{vnet}/subnets/{name}"
    )


# =============================================================================
# Environment and Configuration Fixtures
# =============================================================================

@pytest.fixture
def test_env(monkeypatch):
    """Set up test environment variables."""
    test_vars = {
        "LOG_LEVEL": "DEBUG",
        "AUDIT_REQUIRED_TAGS": '["Environment", "Owner"]',
    }
    for key, value in test_vars.items():
        monkeypatch.setenv(key, value)
    return test_vars


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    """Remove audit environment variables and isolate from any local .env file."""
    for key in [
        "LOG_LEVEL",
        "POLICY_PATH",
        "AUDIT_POLICY_PATH",
        "AUDIT_REQUIRED_TAGS",
        "AUDIT_OS_DENYLIST",
        "AUDIT_NETWORK_PROTECTION",
        "AUDIT_REMEDIATE",
        "AUDIT_DRY_RUN",
        "AUDIT_EXPORT",
        "AUDIT_EXPORT_PATH",
        "AUDIT_ACCOUNTS",
        "INVENTORY_SNAPSHOT_PATH",
        "AZURE_TENANT_ID",
        "AZURE_CLIENT_ID",
        "AZURE_CLIENT_SECRET",
        "MAX_CONCURRENT_ACCOUNTS",
        "MAX_CONCURRENT_REMEDIATIONS",
        "API_TIMEOUT_SECONDS",
    ]:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)


# =============================================================================
# Test Data Fixtures
# =============================================================================

@pytest.fixture
def make_resource():
    """Factory for Resource objects with sensible VM defaults."""

    def _make(
        name: str = "vm-1",
        account_id: str = SUB_A,
        tags: dict | None = None,
        resource_type: str = VM_TYPE,
        image: tuple | None = None,
        nic: str | None = None,
        subnet: str | None = None,
    ) -> Resource:
        image_reference = None
        if image is not None:
            publisher, offer, sku, version = (list(image) + [None] * 4)[:4]
            image_reference = ImageReference(
                publisher=publisher, offer=offer, sku=sku, version=version
            )
        network_profile = None
        if nic is not None or subnet is not None:
            network_profile = NetworkProfile(nic_id=nic, subnet_id=subnet)
        return Resource(
            resource_id=vm_id(account_id, name),
            resource_type=resource_type,
            account_id=account_id,
            tags=tags or {},
            image_reference=image_reference,
            network_profile=network_profile,
        )

    return _make


@pytest.fixture
def sample_policy():
    """Policy with one rule of each kind."""
    return AuditPolicy(
        rules=[
            TagPresenceRule(name="required-tags", required_tags=["Environment", "Owner", "CostCenter"]),
            OSSupportRule(
                name="os-end-of-support",
                denylist=["Canonical:UbuntuServer:18.04-LTS"],
                applies_to=[VM_TYPE],
            ),
            NetworkProtectionRule(name="nsg-coverage", applies_to=[VM_TYPE]),
        ]
    )


@pytest.fixture
def tag_only_policy():
    """Policy with a single tag presence rule."""
    return AuditPolicy(
        rules=[TagPresenceRule(name="required-tags", required_tags=["Environment", "Owner"])]
    )


@pytest.fixture
def snapshot_data():
    """Two-account inventory snapshot."""
    return {
        "accounts": [
            {"account_id": SUB_A, "display_name": "Production"},
            {"account_id": SUB_B, "display_name": "Sandbox"},
        ],
        "resources": {
            SUB_A: [
                {
                    "resource_id": vm_id(SUB_A, "vm-web"),
                    "resource_type": VM_TYPE,
                    "tags": {"Environment": "prod", "Owner": "web", "CostCenter": "cc-1"},
                    "image_reference": {
                        "publisher": "Canonical",
                        "offer": "UbuntuServer",
                        "sku": "18.04-LTS",
                        "version": "18.04.202107290",
                    },
                    "network_profile": {
                        "nic_id": nic_id(SUB_A, "nic-web"),
                        "subnet_id": subnet_id(SUB_A, "vnet-a", "web"),
                    },
                },
                {
                    "resource_id": vm_id(SUB_A, "vm-api"),
                    "resource_type": VM_TYPE,
                    "tags": {"Environment": "prod"},
                    "image_reference": {
                        "publisher": "Canonical",
                        "offer": "0001-com-ubuntu-server-jammy",
                        "sku": "22_04-lts-gen2",
                    },
                    "network_profile": {
                        "nic_id": nic_id(SUB_A, "nic-api"),
                        "subnet_id": subnet_id(SUB_A, "vnet-a", "api"),
                    },
                },
            ],
            SUB_B: [
                {
                    "resource_id": f"/subscriptions/{SUB_B}/resourceGroups/rg-data/providers/Microsoft.Storage/storageAccounts/stdata",
                    "resource_type": STORAGE_TYPE,
                    "tags": [{"key": "Environment", "value": "dev"}],
                },
            ],
        },
        "network_security_groups": {
            SUB_A: [
                {
                    "nsg_id": "nsg-web",
                    "associated_nic_ids": [],
                    "associated_subnet_ids": [subnet_id(SUB_A, "vnet-a", "web")],
                }
            ],
            SUB_B: [],
        },
    }


@pytest.fixture
def snapshot_client(snapshot_data):
    """In-memory inventory client over the two-account snapshot."""
    return SnapshotInventoryClient(copy.deepcopy(snapshot_data))


# =============================================================================
# Pytest Hooks for Test Reporting
# =============================================================================

def pytest_configure(config):
    """Configure pytest with custom markers and settings."""
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
    config.addinivalue_line(
        "markers", "slow: marks tests as slow running"
    )
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests"
    )
    config.addinivalue_line(
        "markers", "property: marks tests as property-based tests"
    )


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their location."""
    for item in items:
        # Mark tests by directory
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        elif "property" in str(item.fspath):
            item.add_marker(pytest.mark.property)
        elif "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)


def pytest_sessionstart(session):
    """Print test session information."""
    print("\n" + "=" * 70)
    print("Policy Audit Engine - Test Suite")
    print("=" * 70)


def pytest_sessionfinish(session, exitstatus):
    """Print test session summary."""
    print("\n" + "=" * 70)
    if exitstatus == 0:
        print("PASS: All tests passed!")
    else:
        print(f"FAIL: Tests failed with exit status: {exitstatus}")
    print("=" * 70)
