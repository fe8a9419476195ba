"""
checklist-sync: create or update one Confluence checklist page per workgroup.

Reads workgroup checklist specs from a directory of JSON files (one file per
workgroup, e.g. WG-ADM.json, WG-BAL.json; the file name is the workgroup id)
and syncs each onto its own page, preserving checkbox states, edits and
mentions made on the pages.

Usage:
  checklist-sync [--dry] [--workgroups-dir ./workgroups]
                 [--space-key KEY] [--parent-id ID] [--include-removed]

Environment (or .env):
  CONFLUENCE_BASE_URL   Site base URL (required)
  CONFLUENCE_PAT        Personal access token (required)
  SPACE_KEY             Space for the pages (default: FMG)
  PARENT_PAGE_ID        Ancestor page for newly created pages
  LOG_LEVEL, LOG_FORMAT Logging (INFO / text by default)

Exit status: 0 on success, 1 on configuration or input errors,
2 when at least one workgroup failed.
"""

import argparse
import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from pydantic import ValidationError

from .api_client import ConfluenceClient
from .core.config import Settings
from .core.logging_config import setup_logging
from .exceptions import ConfigurationError
from .schemas import ChecklistSpec, WorkgroupPlan
from .sync_service import ChecklistManager

logger = logging.getLogger(__name__)

MANAGED_LABEL = "managed-checklist"
CLI_PROPERTY_KEY = "checklist.meta"


def load_workgroup_spec(path: Path) -> Tuple[str, ChecklistSpec]:
    """Load one spec file; the workgroup id is the file name without extension."""
    spec = ChecklistSpec.model_validate_json(path.read_text(encoding="utf-8"))
    return path.stem, spec


def load_all_workgroups(directory: Path) -> List[Tuple[str, ChecklistSpec]]:
    """Load every ``*.json`` spec in *directory*, in file name order.

    Raises:
        FileNotFoundError: *directory* does not exist.
        ValidationError: a file is not a valid checklist spec.
    """
    if not directory.is_dir():
        raise FileNotFoundError(f"Workgroups directory not found: {directory}")

    files = sorted(directory.glob("*.json"))
    if not files:
        logger.warning("No JSON files found in %s", directory)
    return [load_workgroup_spec(path) for path in files]


def build_plans(
    workgroups: Sequence[Tuple[str, ChecklistSpec]],
    space_key: str,
    parent_id: Optional[str] = None,
    dry_run: bool = False,
    include_removed_section: bool = False,
) -> List[WorkgroupPlan]:
    """One plan per workgroup, all sharing the same placement and sync time."""
    synced_at = datetime.now(timezone.utc).isoformat()
    return [
        WorkgroupPlan(
            wg_id=wg_id,
            space_key=space_key,
            page_title=spec.title or f"{wg_id} Checklist",
            parent_id=parent_id,
            labels=[MANAGED_LABEL, wg_id.lower()],
            spec=spec,
            include_removed_section=include_removed_section,
            dry_run=dry_run,
            property_key=CLI_PROPERTY_KEY,
            property_extra={"workgroup": wg_id, "syncedAt": synced_at},
        )
        for wg_id, spec in workgroups
    ]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="checklist-sync",
        description="Project workgroup checklist specs onto Confluence pages.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--dry", action="store_true", help="Log what would be written; write nothing")
    parser.add_argument(
        "--workgroups-dir", type=Path, default=Path("./workgroups"),
        help="Directory of <workgroup>.json spec files (default: ./workgroups)",
    )
    parser.add_argument("--space-key", help="Override SPACE_KEY")
    parser.add_argument("--parent-id", help="Override PARENT_PAGE_ID")
    parser.add_argument(
        "--include-removed", action="store_true",
        help="Keep items dropped from a spec in a trailing 'removed' list",
    )
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = Settings()
    setup_logging(log_level=settings.log_level, log_format=settings.log_format.value)

    try:
        settings.validate_connection()
    except ConfigurationError as exc:
        logger.error("%s", exc.message)
        return 1

    space_key = args.space_key or settings.space_key
    parent_id = args.parent_id or settings.parent_page_id
    logger.info(
        "Space: %s | Parent: %s | Workgroups Dir: %s | Dry: %s",
        space_key, parent_id, args.workgroups_dir, args.dry,
    )

    try:
        workgroups = load_all_workgroups(args.workgroups_dir)
    except (OSError, ValidationError) as exc:
        logger.error("Error reading workgroups directory %s: %s", args.workgroups_dir, exc)
        return 1

    if not workgroups:
        logger.error("No workgroup specification files found. Exiting.")
        return 1

    logger.info(
        "Loaded %d workgroup(s): %s", len(workgroups), ", ".join(wg for wg, _ in workgroups),
    )

    client = ConfluenceClient(
        settings.confluence_base_url,
        settings.confluence_pat,
        user_agent=settings.confluence_user_agent or None,
        timeout=settings.request_timeout,
    )
    manager = ChecklistManager(client)
    plans = build_plans(workgroups, space_key, parent_id, args.dry, args.include_removed)
    results = manager.sync_workgroups(plans)

    print(json.dumps({wg: result.model_dump() for wg, result in results.items()}, indent=2))
    return 2 if any(result.failed for result in results.values()) else 0


if __name__ == "__main__":
    sys.exit(main())
