"""Checklist sync service: projects checklist specs onto pages.

Owns the full sync of one page (fetch, merge, no-op check, conflict-safe
write, traceability property) and the batch loop over workgroups. All
network calls go through the injected *client*; everything else is local.
"""

import hashlib
import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional

from .api_client import Page
from .core.logging_config import workgroup_var
from .exceptions import ChecklistSyncError, ErrorCode, VersionConflictError
from .merge import merge_into_storage
from .schemas import DEFAULT_PROPERTY_KEY, ChecklistSpec, EnsureResult, WorkgroupPlan
from .storage_format import is_materially_unchanged

logger = logging.getLogger(__name__)

GENERATOR_NAME = "checklist-sync"
DRY_RUN_PAGE_ID = "dry-run"

# Conflict retries after the first write attempt.
MAX_CONFLICT_RETRIES = 2


def spec_hash(spec: ChecklistSpec) -> str:
    """SHA-256 of the checklist as JSON, recording which revision produced a page."""
    return hashlib.sha256(spec.model_dump_json(by_alias=True).encode()).hexdigest()


class ChecklistManager:
    """High-level checklist projection and sync.

    Args:
        client: Confluence client (document, label and property store).
        log: Logger for sync progress; defaults to this module's logger.
        clock: Seconds-since-epoch source used to seed new task ids.
    """

    def __init__(
        self,
        client: Any,
        log: Optional[logging.Logger] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.client = client
        self.log = log or logger
        self._clock = clock

    # ------------------------------------------------------------------
    # Single page
    # ------------------------------------------------------------------

    def ensure_page_and_sync(
        self,
        space_key: str,
        page_title: str,
        spec: ChecklistSpec,
        parent_id: Optional[str] = None,
        labels: Optional[List[str]] = None,
        include_removed_section: bool = False,
        dry_run: bool = False,
        property_key: str = DEFAULT_PROPERTY_KEY,
        property_extra: Optional[Dict[str, Any]] = None,
    ) -> EnsureResult:
        """Create the page if missing, then sync it.

        A fresh page is created with the managed panel already rendered, so
        the follow-up sync normally finds nothing to change.
        """
        page = self.client.find_page_by_title(space_key, page_title)
        created = False

        if page is None:
            storage = merge_into_storage(
                "", spec, include_removed_section, clock=self._clock, log=self.log,
            )
            if dry_run:
                self.log.info(
                    "[dry-run] Would create page %r in %s", page_title, space_key,
                    extra={"parent_id": parent_id, "storage": storage},
                )
                return EnsureResult(page_id=DRY_RUN_PAGE_ID, created=True, updated=False)

            page = self.client.create_page(space_key, page_title, storage, parent_id=parent_id)
            created = True

        if labels and not dry_run:
            self.client.add_labels(page.id, labels)

        updated = self.sync_by_id(
            page.id,
            spec,
            include_removed_section=include_removed_section,
            dry_run=dry_run,
            property_key=property_key,
            property_extra=property_extra,
        )
        return EnsureResult(page_id=str(page.id), created=created, updated=updated)

    def sync_by_id(
        self,
        page_id: str,
        spec: ChecklistSpec,
        include_removed_section: bool = False,
        dry_run: bool = False,
        property_key: str = DEFAULT_PROPERTY_KEY,
        property_extra: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """Re-render the managed panel of an existing page.

        Returns:
            True when the page was (or, in dry run, would be) written;
            False when the result matched the stored page.

        Raises:
            TargetNotFoundError: *page_id* does not exist.
            VersionConflictError: still conflicting after the retries.
            TransportError: any other failure talking to Confluence.
        """
        page = self.client.get_page(page_id)
        new_storage = merge_into_storage(
            page.storage, spec, include_removed_section, clock=self._clock, log=self.log,
        )

        if is_materially_unchanged(page.storage, new_storage):
            self.log.info("Page %s: no changes; skip update.", page.id, extra={"page_id": page.id})
            return False

        self._put_page_with_retry(page, new_storage, dry_run)

        if dry_run:
            return True

        self.client.upsert_property(page.id, property_key, self._build_metadata(spec, property_extra))
        self.log.info("Page %s updated.", page.id, extra={"page_id": page.id})
        return True

    def _put_page_with_retry(self, page: Page, storage: str, dry_run: bool) -> None:
        """Write *storage* expecting the version last read.

        On a version conflict the page is re-fetched and the same storage is
        written against the newer version. The merge is not redone, so an
        edit made in between can be overwritten.
        """
        if dry_run:
            self.log.info(
                "[dry-run] Would update page %s to version %d", page.id, page.version + 1,
                extra={"page_id": page.id, "storage": storage},
            )
            return

        version = page.version
        for attempt in range(MAX_CONFLICT_RETRIES + 1):
            try:
                self.client.update_page(page, storage, version)
                return
            except VersionConflictError:
                if attempt == MAX_CONFLICT_RETRIES:
                    self.log.error(
                        "Version conflict on %s persisted after %d retries",
                        page.id, MAX_CONFLICT_RETRIES,
                    )
                    raise
                self.log.warning(
                    "Version conflict on %s; refetching and retrying (%d/%d)",
                    page.id, attempt + 1, MAX_CONFLICT_RETRIES,
                )
                latest = self.client.get_page(page.id)
                version = latest.version or version

    def _build_metadata(self, spec: ChecklistSpec, extra: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        meta: Dict[str, Any] = {
            "generator": GENERATOR_NAME,
            "updatedAt": datetime.now(timezone.utc).isoformat(),
            "specHash": spec_hash(spec),
        }
        meta.update(extra or {})
        return meta

    # ------------------------------------------------------------------
    # Batch
    # ------------------------------------------------------------------

    def sync_workgroups(self, plans: Iterable[WorkgroupPlan]) -> Dict[str, EnsureResult]:
        """Sync each plan in turn. A failing workgroup never stops the others."""
        results: Dict[str, EnsureResult] = {}
        for plan in plans:
            token = workgroup_var.set(plan.wg_id)
            try:
                results[plan.wg_id] = self.ensure_page_and_sync(
                    plan.space_key,
                    plan.page_title,
                    plan.spec,
                    parent_id=plan.parent_id,
                    labels=plan.labels,
                    include_removed_section=plan.include_removed_section,
                    dry_run=plan.dry_run,
                    property_key=plan.property_key,
                    property_extra=plan.property_extra,
                )
            except ChecklistSyncError as exc:
                self.log.error(
                    "WG %s failed: %s", plan.wg_id, exc.message,
                    extra={"error_code": exc.error_code.value, "details": exc.details},
                )
                results[plan.wg_id] = EnsureResult(error=exc.message)
            except Exception as exc:
                self.log.exception(
                    "WG %s failed: %s", plan.wg_id, exc,
                    extra={"error_code": ErrorCode.INTERNAL_ERROR.value},
                )
                results[plan.wg_id] = EnsureResult(error=str(exc) or type(exc).__name__)
            finally:
                workgroup_var.reset(token)
        return results
