"""Configuration management for the policy audit engine.

This module handles loading and validating configuration from environment
variables (and an optional .env file) with sensible defaults. List-valued
settings are read from the environment as JSON arrays, e.g.
``AUDIT_REQUIRED_TAGS='["Environment", "Owner"]'``.
"""

from typing import Optional

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .models.policy import split_urn


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings have sensible defaults for local runs. Command line flags
    override these values for a single invocation.
    """

    # General
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR)",
        validation_alias="LOG_LEVEL",
    )

    # Policy Configuration
    policy_path: Optional[str] = Field(
        default=None,
        description="Path to an audit policy JSON file (overrides the inline settings below)",
        validation_alias=AliasChoices("POLICY_PATH", "AUDIT_POLICY_PATH"),
    )
    required_tags: list[str] = Field(
        default_factory=list,
        description="Tag names every resource must carry",
        validation_alias="AUDIT_REQUIRED_TAGS",
    )
    os_denylist: list[str] = Field(
        default_factory=list,
        description="End-of-support image URNs (publisher:offer:sku)",
        validation_alias="AUDIT_OS_DENYLIST",
    )
    network_protection_enabled: bool = Field(
        default=True,
        description="Require every VM NIC or subnet to be covered by an NSG",
        validation_alias="AUDIT_NETWORK_PROTECTION",
    )

    # Remediation and export
    remediation_enabled: bool = Field(
        default=False,
        description="Add missing required tags with empty values",
        validation_alias="AUDIT_REMEDIATE",
    )
    remediation_dry_run: bool = Field(
        default=False,
        description="Plan remediation without writing tags",
        validation_alias="AUDIT_DRY_RUN",
    )
    export_enabled: bool = Field(
        default=False,
        description="Write the CSV export after the scan",
        validation_alias="AUDIT_EXPORT",
    )
    export_path: str = Field(
        default="compliance_export.csv",
        description="Path of the CSV export",
        validation_alias="AUDIT_EXPORT_PATH",
    )

    # Inventory source
    inventory_snapshot_path: Optional[str] = Field(
        default=None,
        description="Audit a JSON inventory snapshot instead of the live Azure API",
        validation_alias="INVENTORY_SNAPSHOT_PATH",
    )
    azure_tenant_id: Optional[str] = Field(
        default=None,
        description="Azure AD tenant id for service principal auth",
        validation_alias="AZURE_TENANT_ID",
    )
    azure_client_id: Optional[str] = Field(
        default=None,
        description="Service principal application id",
        validation_alias="AZURE_CLIENT_ID",
    )
    azure_client_secret: Optional[str] = Field(
        default=None,
        description="Service principal secret",
        validation_alias="AZURE_CLIENT_SECRET",
    )
    account_filter: list[str] = Field(
        default_factory=list,
        description="Only scan these subscription ids (empty means all)",
        validation_alias="AUDIT_ACCOUNTS",
    )

    # Concurrency
    max_concurrent_accounts: int = Field(
        default=4,
        ge=1,
        description="Accounts scanned in parallel",
        validation_alias="MAX_CONCURRENT_ACCOUNTS",
    )
    max_concurrent_remediations: int = Field(
        default=8,
        ge=1,
        description="Tag writes in flight per account",
        validation_alias="MAX_CONCURRENT_REMEDIATIONS",
    )
    api_timeout_seconds: float = Field(
        default=60,
        gt=0,
        description="Timeout for each inventory API call in seconds",
        validation_alias="API_TIMEOUT_SECONDS",
    )

    model_config = SettingsConfigDict(
        env_prefix="",  # No prefix for environment variables
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        populate_by_name=True,
    )

    @field_validator("required_tags", "account_filter")
    @classmethod
    def strip_names(cls, v: list[str]) -> list[str]:
        cleaned = [item.strip() for item in v]
        if any(not item for item in cleaned):
            raise ValueError("names must be non-empty")
        return cleaned

    @field_validator("os_denylist")
    @classmethod
    def validate_denylist(cls, v: list[str]) -> list[str]:
        cleaned = [urn.strip() for urn in v]
        for urn in cleaned:
            split_urn(urn)
        return cleaned

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        level = v.strip().upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"unknown log level: {v}")
        return level
