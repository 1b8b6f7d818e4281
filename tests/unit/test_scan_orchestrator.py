# Copyright (c) 2025-2026 OptimNow. All Rights Reserved.
# Licensed under the Apache License, Version 2.0.
# See LICENSE file in the project root for full license information.

"""Unit tests for ScanOrchestrator.

Tests the scan orchestration including:
- State transitions
- Account enumeration failure (fatal)
- Per-account failure isolation
- NSG enumeration failure (partial)
- Remediation wiring and concurrency limits
"""

import asyncio
import copy
from unittest.mock import AsyncMock

import pytest

from policy_audit.clients.inventory_client import AuthError, EnumerationError, InventoryClient
from policy_audit.clients.snapshot_client import SnapshotInventoryClient
from policy_audit.models.enums import RemediationStatus, ScanState, Verdict
from policy_audit.models.resource import Account
from policy_audit.services.scan_orchestrator import ScanAbortedError, ScanOrchestrator


def _client_with_failures(snapshot_data, failures):
    data = copy.deepcopy(snapshot_data)
    data["failures"] = failures
    return SnapshotInventoryClient(data)


class TestScanOrchestratorInit:
    """Tests for ScanOrchestrator initialization."""

    def test_init_with_defaults(self, snapshot_client, sample_policy):
        orchestrator = ScanOrchestrator(snapshot_client, sample_policy)

        assert orchestrator.state == ScanState.INIT
        assert orchestrator.max_concurrent_accounts == 4
        assert orchestrator.max_concurrent_remediations == 8
        assert orchestrator.api_timeout_seconds == 60.0
        assert orchestrator.remediation_enabled is False

    def test_rejects_zero_concurrency(self, snapshot_client, sample_policy):
        with pytest.raises(ValueError):
            ScanOrchestrator(snapshot_client, sample_policy, max_concurrent_accounts=0)


class TestSuccessfulRun:
    """Tests for a run where every call succeeds."""

    @pytest.mark.asyncio
    async def test_state_sequence(self, snapshot_client, sample_policy):
        orchestrator = ScanOrchestrator(snapshot_client, sample_policy)

        report = await orchestrator.run()

        assert orchestrator.state_history == [
            ScanState.INIT,
            ScanState.ENUMERATING_ACCOUNTS,
            ScanState.SCANNING_ACCOUNTS,
            ScanState.REPORTING,
            ScanState.DONE,
        ]
        assert report.state == ScanState.DONE

    @pytest.mark.asyncio
    async def test_report_counts(self, snapshot_client, sample_policy):
        report = await ScanOrchestrator(snapshot_client, sample_policy).run()

        assert report.total_accounts == 2
        assert report.scanned_accounts == 2
        assert report.total_resources == 3
        assert report.account_failures == []

        tags = report.rules["required-tags"]
        assert (tags.compliant, tags.non_compliant) == (1, 2)

        os_rule = report.rules["os-end-of-support"]
        assert (os_rule.compliant, os_rule.non_compliant, os_rule.not_applicable) == (1, 1, 1)

        nsg = report.rules["nsg-coverage"]
        assert (nsg.compliant, nsg.non_compliant, nsg.not_applicable) == (1, 1, 1)

    @pytest.mark.asyncio
    async def test_non_compliant_details(self, snapshot_client, sample_policy):
        report = await ScanOrchestrator(snapshot_client, sample_policy).run()

        by_rule = {}
        for result in report.non_compliant:
            by_rule.setdefault(result.rule_name, []).append(result)

        api = [r for r in by_rule["required-tags"] if r.resource_id.endswith("vm-api")][0]
        assert api.missing_detail == ["Owner", "CostCenter"]
        assert by_rule["os-end-of-support"][0].missing_detail == ["Canonical:UbuntuServer:18.04-LTS"]
        assert by_rule["nsg-coverage"][0].resource_id.endswith("vm-api")

    @pytest.mark.asyncio
    async def test_accounts_in_enumeration_order(self, snapshot_client, sample_policy):
        report = await ScanOrchestrator(
            snapshot_client, sample_policy, max_concurrent_accounts=2
        ).run()

        assert [a.account_id for a in report.accounts] == ["sub-a", "sub-b"]
        assert report.accounts[0].total_resources == 2
        assert report.accounts[1].total_resources == 1

    @pytest.mark.asyncio
    async def test_run_twice_is_rejected(self, snapshot_client, sample_policy):
        orchestrator = ScanOrchestrator(snapshot_client, sample_policy)
        await orchestrator.run()

        with pytest.raises(RuntimeError):
            await orchestrator.run()

    @pytest.mark.asyncio
    async def test_account_filter(self, snapshot_client, sample_policy):
        report = await ScanOrchestrator(
            snapshot_client, sample_policy, account_filter=["sub-b", "sub-unknown"]
        ).run()

        assert [a.account_id for a in report.accounts] == ["sub-b"]
        assert report.total_resources == 1

    @pytest.mark.asyncio
    async def test_nsgs_not_fetched_without_network_rule(self, snapshot_data, tag_only_policy):
        client = _client_with_failures(
            snapshot_data, {"accounts": {"sub-a": {"network_security_groups": "should not be called"}}}
        )

        report = await ScanOrchestrator(client, tag_only_policy).run()

        assert report.account_failures == []


class TestAccountEnumerationFailure:
    """Account listing failure aborts the whole run."""

    @pytest.mark.asyncio
    async def test_enumeration_error_aborts(self, snapshot_data, sample_policy):
        client = _client_with_failures(snapshot_data, {"list_accounts": "subscriptions unavailable"})
        orchestrator = ScanOrchestrator(client, sample_policy)

        with pytest.raises(ScanAbortedError) as exc_info:
            await orchestrator.run()

        assert orchestrator.state == ScanState.FAILED
        assert "subscriptions unavailable" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_auth_error_aborts(self, sample_policy):
        client = AsyncMock(spec=InventoryClient)
        client.list_accounts.side_effect = AuthError("no credential", error_code="AuthenticationFailed")

        with pytest.raises(ScanAbortedError) as exc_info:
            await ScanOrchestrator(client, sample_policy).run()

        assert exc_info.value.error_code == "AuthenticationFailed"
        client.list_resources.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_enumeration_timeout_aborts(self, sample_policy):
        async def hang():
            await asyncio.sleep(10)

        client = AsyncMock(spec=InventoryClient)
        client.list_accounts.side_effect = hang
        orchestrator = ScanOrchestrator(client, sample_policy, api_timeout_seconds=0.01)

        with pytest.raises(ScanAbortedError):
            await orchestrator.run()

        assert orchestrator.state == ScanState.FAILED


class TestAccountIsolation:
    """One failing account never affects the others."""

    @pytest.mark.asyncio
    async def test_resource_failure_skips_account(self, snapshot_data, sample_policy):
        client = _client_with_failures(
            snapshot_data, {"accounts": {"sub-a": {"resources": "AuthorizationFailed"}}}
        )

        report = await ScanOrchestrator(client, sample_policy).run()

        assert report.state == ScanState.DONE
        assert report.scanned_accounts == 1
        assert report.total_resources == 1
        assert report.account_error_count == 1
        failure = report.account_failures[0]
        assert failure.account_id == "sub-a"
        assert failure.stage == "resources"
        assert failure.fatal_for_account is True
        assert all(r.account_id != "sub-a" for r in report.non_compliant + report.errors)
        assert report.accounts[0].scanned is False
        assert report.accounts[1].scanned is True

    @pytest.mark.asyncio
    async def test_resource_timeout_skips_account(self, sample_policy):
        accounts = [Account(account_id="sub-a"), Account(account_id="sub-b")]

        async def list_resources(account):
            if account.account_id == "sub-a":
                await asyncio.sleep(10)
            return []

        client = AsyncMock(spec=InventoryClient)
        client.list_accounts.return_value = accounts
        client.list_resources.side_effect = list_resources
        client.list_network_security_groups.return_value = []

        report = await ScanOrchestrator(client, sample_policy, api_timeout_seconds=0.05).run()

        assert [f.account_id for f in report.account_failures] == ["sub-a"]
        assert "timed out" in report.account_failures[0].error
        assert report.scanned_accounts == 1

    @pytest.mark.asyncio
    async def test_unexpected_exception_is_isolated(self, sample_policy):
        client = AsyncMock(spec=InventoryClient)
        client.list_accounts.return_value = [Account(account_id="sub-a"), Account(account_id="sub-b")]

        async def list_resources(account):
            if account.account_id == "sub-a":
                raise KeyError("bad payload")
            return []

        client.list_resources.side_effect = list_resources
        client.list_network_security_groups.return_value = []

        report = await ScanOrchestrator(client, sample_policy).run()

        assert report.state == ScanState.DONE
        assert report.account_failures[0].stage == "scan"
        assert report.account_failures[0].error.startswith("KeyError")

    @pytest.mark.asyncio
    async def test_nsg_failure_makes_network_results_error(self, snapshot_data, sample_policy):
        client = _client_with_failures(
            snapshot_data, {"accounts": {"sub-a": {"network_security_groups": "throttled"}}}
        )

        report = await ScanOrchestrator(client, sample_policy).run()

        failure = report.account_failures[0]
        assert failure.stage == "network_security_groups"
        assert failure.fatal_for_account is False
        assert report.accounts[0].scanned is True

        nsg = report.accounts[0].rules["nsg-coverage"]
        assert (nsg.compliant, nsg.non_compliant, nsg.error) == (0, 0, 2)
        assert all(r.rule_name == "nsg-coverage" for r in report.errors)

        # Other rules still evaluated for the account
        tags = report.accounts[0].rules["required-tags"]
        assert tags.compliant + tags.non_compliant == 2


class TestRemediation:
    """Tests for remediation wiring."""

    @pytest.mark.asyncio
    async def test_remediation_disabled_by_default(self, snapshot_client, sample_policy):
        report = await ScanOrchestrator(snapshot_client, sample_policy).run()

        assert report.remediations == []
        assert snapshot_client.tag_writes == []

    @pytest.mark.asyncio
    async def test_remediates_tag_violations_only(self, snapshot_client, sample_policy):
        report = await ScanOrchestrator(
            snapshot_client, sample_policy, remediation_enabled=True
        ).run()

        assert report.remediation_enabled is True
        assert len(report.remediations) == 2
        assert all(r.status == RemediationStatus.APPLIED for r in report.remediations)
        written = dict(snapshot_client.tag_writes)
        api_id = [rid for rid in written if rid.endswith("vm-api")][0]
        assert written[api_id] == {"Environment": "prod", "Owner": "", "CostCenter": ""}

    @pytest.mark.asyncio
    async def test_remediation_failure_is_recorded(self, snapshot_data, sample_policy):
        storage_id = snapshot_data["resources"]["sub-b"][0]["resource_id"]
        client = _client_with_failures(snapshot_data, {"update_tags": {storage_id: "auth"}})

        report = await ScanOrchestrator(client, sample_policy, remediation_enabled=True).run()

        failed = report.failed_remediations
        assert [r.resource_id for r in failed] == [storage_id]
        assert failed[0].error_code == "AuthorizationFailed"
        assert report.state == ScanState.DONE

    @pytest.mark.asyncio
    async def test_dry_run_writes_nothing(self, snapshot_client, sample_policy):
        report = await ScanOrchestrator(
            snapshot_client, sample_policy, remediation_enabled=True, dry_run=True
        ).run()

        assert all(r.status == RemediationStatus.PLANNED for r in report.remediations)
        assert snapshot_client.tag_writes == []

    @pytest.mark.asyncio
    async def test_remediation_concurrency_is_bounded(self, sample_policy, make_resource):
        resources = [make_resource(name=f"vm-{i}", tags={}) for i in range(10)]
        in_flight = 0
        peak = 0

        async def update_tags(resource_id, tags):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1

        client = AsyncMock(spec=InventoryClient)
        client.list_accounts.return_value = [Account(account_id="sub-a")]
        client.list_resources.return_value = resources
        client.list_network_security_groups.return_value = []
        client.update_tags.side_effect = update_tags

        report = await ScanOrchestrator(
            client, sample_policy, remediation_enabled=True, max_concurrent_remediations=3
        ).run()

        assert len(report.remediations) == 10
        assert peak <= 3


class TestAccountConcurrency:
    """Tests for bounded account parallelism."""

    @pytest.mark.asyncio
    async def test_account_concurrency_is_bounded(self, tag_only_policy):
        accounts = [Account(account_id=f"sub-{i}") for i in range(6)]
        in_flight = 0
        peak = 0

        async def list_resources(account):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1
            return []

        client = AsyncMock(spec=InventoryClient)
        client.list_accounts.return_value = accounts
        client.list_resources.side_effect = list_resources

        report = await ScanOrchestrator(client, tag_only_policy, max_concurrent_accounts=2).run()

        assert report.total_accounts == 6
        assert peak <= 2
        assert [a.account_id for a in report.accounts] == [a.account_id for a in accounts]


class TestResourceDefaults:
    """Resources inherit the account id when the client leaves it empty."""

    @pytest.mark.asyncio
    async def test_account_id_filled(self, tag_only_policy, make_resource):
        resource = make_resource(account_id="", tags={})
        client = AsyncMock(spec=InventoryClient)
        client.list_accounts.return_value = [Account(account_id="sub-x")]
        client.list_resources.return_value = [resource]

        report = await ScanOrchestrator(client, tag_only_policy).run()

        assert report.non_compliant[0].account_id == "sub-x"

    @pytest.mark.asyncio
    async def test_enumeration_error_class(self, snapshot_data, sample_policy):
        client = _client_with_failures(snapshot_data, {"list_accounts": "down"})

        with pytest.raises(ScanAbortedError) as exc_info:
            await ScanOrchestrator(client, sample_policy).run()

        assert isinstance(exc_info.value.__cause__, EnumerationError)


class TestDuplicateResourceIds:
    """A resource id listed more than once in one account."""

    @pytest.mark.asyncio
    async def test_duplicate_id_is_one_error_whatever_the_order(self, tag_only_policy, make_resource):
        tagged = make_resource(name="vm-dup", tags={"Environment": "prod", "Owner": "ops"})
        untagged = make_resource(name="vm-dup", tags={})

        for listing in ([tagged, untagged], [untagged, tagged]):
            client = AsyncMock(spec=InventoryClient)
            client.list_accounts.return_value = [Account(account_id="sub-a")]
            client.list_resources.return_value = [r.model_copy() for r in listing]

            report = await ScanOrchestrator(client, tag_only_policy).run()

            tags = report.rules["required-tags"]
            assert (tags.compliant, tags.non_compliant, tags.error) == (0, 0, 1)
            assert report.total_resources == 1
            assert report.errors[0].message == "resource id listed more than once"

    @pytest.mark.asyncio
    async def test_duplicate_id_is_not_remediated(self, tag_only_policy, make_resource):
        resources = [
            make_resource(name="vm-dup", tags={}),
            make_resource(name="vm-dup", tags={"Environment": "prod"}),
            make_resource(name="vm-other", tags={}),
        ]
        client = AsyncMock(spec=InventoryClient)
        client.list_accounts.return_value = [Account(account_id="sub-a")]
        client.list_resources.return_value = resources

        report = await ScanOrchestrator(client, tag_only_policy, remediation_enabled=True).run()

        assert [r.resource_id for r in report.remediations] == [resources[2].resource_id]
        client.update_tags.assert_awaited_once()
        assert report.total_resources == 2
