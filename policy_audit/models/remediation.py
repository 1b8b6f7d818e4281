"""Remediation record data model."""

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field

from .enums import RemediationStatus


class RemediationRecord(BaseModel):
    """Outcome of an attempted tag remediation for one resource."""

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "account_id": "sub-a",
                "resource_id": "/subscriptions/sub-a/resourceGroups/rg/providers/Microsoft.Compute/virtualMachines/vm-1",
                "tags_added": ["CostCenter"],
                "status": "applied",
                "success": True,
                "error_detail": None,
                "error_code": None,
            }
        }
    )

    account_id: str = Field("", description="Subscription the resource belongs to")
    resource_id: str = Field(..., description="Remediated resource id")
    tags_added: list[str] = Field(
        default_factory=list, description="Tag keys added with an empty value"
    )
    status: RemediationStatus = Field(..., description="What happened")
    success: bool = Field(..., description="False only when the write-back failed")
    error_detail: str | None = Field(None, description="Sanitized failure reason")
    error_code: str | None = Field(None, description="Error code reported by the write API")
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the remediation was attempted",
    )
