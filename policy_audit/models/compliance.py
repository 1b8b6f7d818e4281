"""Compliance result data model."""

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .enums import RuleKind, Verdict


class ComplianceResult(BaseModel):
    """Outcome of evaluating one resource against one rule."""

    model_config = ConfigDict(
        frozen=True,
        json_schema_extra={
            "example": {
                "account_id": "sub-a",
                "resource_id": "/subscriptions/sub-a/resourceGroups/rg/providers/Microsoft.Compute/virtualMachines/vm-1",
                "resource_type": "Microsoft.Compute/virtualMachines",
                "rule_name": "required-tags",
                "rule_kind": "tag_presence",
                "verdict": "non_compliant",
                "missing_detail": ["Owner"],
                "message": "missing required tags: Owner",
            }
        },
    )

    account_id: str = Field("", description="Subscription the resource belongs to")
    resource_id: str = Field(..., description="Evaluated resource id")
    resource_type: str = Field("", description="Evaluated resource type")
    rule_name: str = Field(..., description="Name of the rule evaluated")
    rule_kind: RuleKind = Field(..., description="Kind of the rule evaluated")
    verdict: Verdict = Field(..., description="Evaluation outcome")
    missing_detail: list[str] = Field(
        default_factory=list,
        description="What is missing or offending (tag names, denylisted URN, unprotected NIC)",
    )
    message: str = Field("", description="Human readable explanation")

    @model_validator(mode="after")
    def validate_tag_detail(self) -> "ComplianceResult":
        """A non-compliant tag result always names the missing tags."""
        if (
            self.rule_kind == RuleKind.TAG_PRESENCE
            and self.verdict == Verdict.NON_COMPLIANT
            and not self.missing_detail
        ):
            raise ValueError("non-compliant tag presence results must list missing tags")
        return self

