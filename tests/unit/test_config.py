"""Unit tests for configuration loading."""

import pytest
from pydantic import ValidationError

from policy_audit.config import Settings


class TestSettingsDefaults:
    """Tests for default values."""

    def test_defaults(self, clean_env):
        """Test defaults when nothing is configured."""
        s = Settings()

        assert s.log_level == "INFO"
        assert s.policy_path is None
        assert s.required_tags == []
        assert s.os_denylist == []
        assert s.network_protection_enabled is True
        assert s.remediation_enabled is False
        assert s.remediation_dry_run is False
        assert s.export_enabled is False
        assert s.export_path == "compliance_export.csv"
        assert s.account_filter == []
        assert s.max_concurrent_accounts == 4
        assert s.max_concurrent_remediations == 8
        assert s.api_timeout_seconds == 60


class TestSettingsFromEnvironment:
    """Tests for environment variable loading."""

    def test_list_settings_from_json(self, clean_env, monkeypatch):
        """Test list values are parsed from JSON arrays."""
        monkeypatch.setenv("AUDIT_REQUIRED_TAGS", '["Environment", "Owner"]')
        monkeypatch.setenv("AUDIT_OS_DENYLIST", '["Canonical:UbuntuServer:18.04-LTS"]')
        monkeypatch.setenv("AUDIT_ACCOUNTS", '["sub-a"]')

        s = Settings()

        assert s.required_tags == ["Environment", "Owner"]
        assert s.os_denylist == ["Canonical:UbuntuServer:18.04-LTS"]
        assert s.account_filter == ["sub-a"]

    def test_flags_from_environment(self, clean_env, monkeypatch):
        """Test boolean and numeric values."""
        monkeypatch.setenv("AUDIT_REMEDIATE", "true")
        monkeypatch.setenv("AUDIT_NETWORK_PROTECTION", "false")
        monkeypatch.setenv("MAX_CONCURRENT_ACCOUNTS", "2")
        monkeypatch.setenv("API_TIMEOUT_SECONDS", "5.5")
        monkeypatch.setenv("LOG_LEVEL", "debug")

        s = Settings()

        assert s.remediation_enabled is True
        assert s.network_protection_enabled is False
        assert s.max_concurrent_accounts == 2
        assert s.api_timeout_seconds == 5.5
        assert s.log_level == "DEBUG"

    def test_test_env_fixture(self, clean_env, test_env):
        """Test the shared environment fixture is honored."""
        assert Settings().required_tags == ["Environment", "Owner"]


class TestSettingsValidation:
    """Tests for invalid configuration."""

    def test_invalid_denylist_entry(self, clean_env):
        with pytest.raises(ValidationError):
            Settings(os_denylist=["Canonical:UbuntuServer"])

    def test_blank_tag_name(self, clean_env):
        with pytest.raises(ValidationError):
            Settings(required_tags=["Owner", " "])

    def test_zero_concurrency(self, clean_env):
        with pytest.raises(ValidationError):
            Settings(max_concurrent_accounts=0)

    def test_non_positive_timeout(self, clean_env):
        with pytest.raises(ValidationError):
            Settings(api_timeout_seconds=0)

    def test_unknown_log_level(self, clean_env):
        with pytest.raises(ValidationError):
            Settings(log_level="LOUD")

