"""Garbage collection of personal-trial organizations left without members."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List

from pydantic import BaseModel, ConfigDict, Field

from .store import EntitlementStore

logger = logging.getLogger(__name__)


class DeletedOrganization(BaseModel):
    id: str
    name: str

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class FailedDeletion(BaseModel):
    id: str
    name: str
    error: str

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class CleanupReport(BaseModel):
    """Outcome of one orphan sweep."""

    orphaned_orgs_found: int = 0
    orphaned_orgs_deleted: int = 0
    deleted_orgs: List[DeletedOrganization] = Field(default_factory=list)
    skipped_orgs: List[str] = Field(
        default_factory=list,
        description="Candidates that gained an active member before deletion.",
    )
    failed_deletions: List[FailedDeletion] = Field(default_factory=list)

    model_config = ConfigDict(populate_by_name=True)


@dataclass
class OrphanCleanup:
    """Deletes personal-trial organizations with zero active memberships."""

    store: EntitlementStore

    def sweep(self) -> CleanupReport:
        candidates = list(self.store.list_orphaned_personal_trials())
        report = CleanupReport(orphaned_orgs_found=len(candidates))
        for organization in candidates:
            try:
                deleted = self.store.delete_orphaned_personal_trial(organization.id)
            except Exception as exc:
                logger.warning(
                    "Failed to delete orphaned organization",
                    exc_info=True,
                    extra={"organization_id": organization.id},
                )
                report.failed_deletions.append(
                    FailedDeletion(id=organization.id, name=organization.name, error=str(exc))
                )
                continue
            if deleted:
                report.deleted_orgs.append(DeletedOrganization(id=organization.id, name=organization.name))
            else:
                report.skipped_orgs.append(organization.id)

        report.orphaned_orgs_deleted = len(report.deleted_orgs)
        logger.info(
            "Orphan cleanup finished",
            extra={
                "orphaned_orgs_found": report.orphaned_orgs_found,
                "orphaned_orgs_deleted": report.orphaned_orgs_deleted,
                "failed_deletions": len(report.failed_deletions),
            },
        )
        return report


__all__ = ["CleanupReport", "DeletedOrganization", "FailedDeletion", "OrphanCleanup"]
