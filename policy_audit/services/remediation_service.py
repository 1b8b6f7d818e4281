"""Tag remediation.

Adds missing required tags with empty values so owners can fill them in.
Existing tag values are never changed, and a resource that already carries
every tag is left untouched.

The write is a read-modify-write of the full tag set with no conditional
update. If another actor changes the resource's tags between the
inventory read and this write, that change is overwritten.
"""

import asyncio
import logging
from typing import Iterable

from ..clients.inventory_client import InventoryClient, InventoryError
from ..models.enums import RemediationStatus
from ..models.remediation import RemediationRecord
from ..models.resource import Resource
from ..utils.error_sanitization import describe_error

logger = logging.getLogger(__name__)


def merge_missing_tags(current: dict[str, str], missing: Iterable[str]) -> dict[str, str]:
    """
    Build the full tag set to write back.

    Args:
        current: Tags currently on the resource
        missing: Tag names to add

    Returns:
        New dict with every current tag unchanged and each absent
        ``missing`` key added with an empty value
    """
    merged = dict(current)
    for key in missing:
        if key not in merged:
            merged[key] = ""
    return merged


class RemediationService:
    """Applies tag remediation through an inventory client."""

    def __init__(
        self,
        client: InventoryClient,
        timeout_seconds: float = 60.0,
        dry_run: bool = False,
    ):
        """
        Args:
            client: Inventory client used for the tag write
            timeout_seconds: Upper bound for a single tag write
            dry_run: Plan remediations without writing
        """
        self.client = client
        self.timeout_seconds = timeout_seconds
        self.dry_run = dry_run

    async def remediate(self, resource: Resource, missing_tags: Iterable[str]) -> RemediationRecord:
        """
        Add the missing tags to a resource.

        Never raises and never retries: API failures and timeouts come back
        as a FAILED record whose detail is safe to put in a report.

        Args:
            resource: Resource found non-compliant by a tag presence rule.
                Its ``tags`` are updated in place after a successful write.
            missing_tags: Tag names reported missing by the evaluator

        Returns:
            RemediationRecord describing what happened
        """
        missing = [tag for tag in dict.fromkeys(missing_tags) if tag not in resource.tags]

        if not missing:
            return RemediationRecord(
                account_id=resource.account_id,
                resource_id=resource.resource_id,
                status=RemediationStatus.SKIPPED,
                success=True,
            )

        if self.dry_run:
            logger.info(f"[dry-run] Would add tags {missing} to {resource.resource_id}")
            return RemediationRecord(
                account_id=resource.account_id,
                resource_id=resource.resource_id,
                tags_added=missing,
                status=RemediationStatus.PLANNED,
                success=True,
            )

        new_tags = merge_missing_tags(resource.tags, missing)

        try:
            await asyncio.wait_for(
                self.client.update_tags(resource.resource_id, new_tags),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(
                f"Tag write on {resource.resource_id} timed out after {self.timeout_seconds}s"
            )
            return self._failed(resource, missing, "Tag write timed out", "Timeout")
        except InventoryError as e:
            detail = describe_error(e)
            logger.warning(f"Tag write on {resource.resource_id} failed: {detail}")
            return self._failed(resource, missing, detail, e.error_code)
        except Exception as e:
            detail = describe_error(e)
            logger.error(f"Unexpected error writing tags on {resource.resource_id}: {detail}")
            return self._failed(resource, missing, detail, None)

        resource.tags = new_tags
        logger.info(f"Added tags {missing} to {resource.resource_id}")
        return RemediationRecord(
            account_id=resource.account_id,
            resource_id=resource.resource_id,
            tags_added=missing,
            status=RemediationStatus.APPLIED,
            success=True,
        )

    @staticmethod
    def _failed(
        resource: Resource, missing: list[str], detail: str, error_code: str | None
    ) -> RemediationRecord:
        return RemediationRecord(
            account_id=resource.account_id,
            resource_id=resource.resource_id,
            tags_added=[],
            status=RemediationStatus.FAILED,
            success=False,
            error_detail=detail,
            error_code=error_code,
        )
