"""Merge & render engine for the managed checklist panel.

Reconciles a ChecklistSpec against the tasks already on the page:

  - items are matched by their external id (the hidden anchor), never by position
  - checkbox status only ever flows from the page; new items start incomplete
  - a matched item's body is reused verbatim, so user edits and mentions survive
    and text changes in the checklist do not overwrite it
  - task ids are reused when present and otherwise allocated so they collide
    with no task id anywhere on the page
"""

import logging
import time
from typing import Callable, Dict, Iterable, List, Optional

from .schemas import ChecklistSpec
from .storage_format import (
    STATUS_COMPLETE,
    STATUS_INCOMPLETE,
    ExistingTask,
    collect_task_ids,
    ensure_anchor,
    escape_text,
    new_task_body,
    read_existing_tasks,
    set_managed_panel,
)

logger = logging.getLogger(__name__)

REMOVED_SECTION_HEADING = "Removed items (kept for reference)"


class TaskIdAllocator:
    """Hands out task ids that are not yet used on the page.

    Each candidate is seeded from the wall clock in epoch milliseconds and
    walked upward past reserved values. Ids are unique within one render and,
    with a clock that does not go backwards, across sequential runs. Nothing
    prevents two processes on different machines from picking the same id.

    Args:
        reserved: Ids already in use (normally every task id on the page).
        clock: Returns seconds since the epoch; injectable for tests.
    """

    def __init__(
        self,
        reserved: Iterable[str] = (),
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._reserved = set(reserved)
        self._clock = clock

    @property
    def reserved(self) -> frozenset:
        return frozenset(self._reserved)

    def reserve(self, task_id: str) -> None:
        self._reserved.add(task_id)

    def allocate(self) -> str:
        candidate = int(self._clock() * 1000)
        while str(candidate) in self._reserved:
            candidate += 1
        task_id = str(candidate)
        self._reserved.add(task_id)
        return task_id


def render_task(task_id: str, status: str, body_xml: str) -> str:
    return (
        "<ac:task>\n"
        f"<ac:task-id>{escape_text(task_id)}</ac:task-id>\n"
        f"<ac:task-status>{status}</ac:task-status>\n"
        f"{body_xml}\n"
        "</ac:task>"
    )


def _carry_over(anchor_id: str, prior: ExistingTask, allocator: TaskIdAllocator) -> str:
    status = STATUS_COMPLETE if prior.status == STATUS_COMPLETE else STATUS_INCOMPLETE
    if prior.task_id:
        task_id = prior.task_id
        allocator.reserve(task_id)
    else:
        task_id = allocator.allocate()
    return render_task(task_id, status, ensure_anchor(prior.body_xml, anchor_id))


def render_panel_body(
    spec: ChecklistSpec,
    existing: Dict[str, ExistingTask],
    allocator: TaskIdAllocator,
    include_removed_section: bool = False,
    log: Optional[logging.Logger] = None,
) -> str:
    """Render the inner content of the managed panel.

    Args:
        spec: Checklist to project.
        existing: Tasks already in the panel, keyed by external id.
        allocator: Id allocator seeded with every task id on the page.
        include_removed_section: Keep items that left the checklist in a trailing
            "removed" list instead of dropping them.
        log: Logger to report merge statistics on.

    Returns:
        Storage-format markup for the panel's rich-text body.
    """
    log = log or logger
    chunks: List[str] = []
    carried = created = 0

    if spec.title:
        chunks.append(f"<h2>{escape_text(spec.title)}</h2>")

    for section in spec.sections:
        if section.heading:
            chunks.append(f"<h3>{escape_text(section.heading)}</h3>")
        chunks.append("<ac:task-list>")
        for item in section.items:
            prior = existing.get(item.id)
            if prior is not None:
                chunks.append(_carry_over(item.id, prior, allocator))
                carried += 1
            else:
                chunks.append(render_task(allocator.allocate(), STATUS_INCOMPLETE, new_task_body(item.id, item.text)))
                created += 1
        chunks.append("</ac:task-list>")

    current_ids = spec.item_ids()
    removed = [anchor_id for anchor_id in existing if anchor_id not in current_ids]

    if include_removed_section and removed:
        chunks.append(f"<h3>{escape_text(REMOVED_SECTION_HEADING)}</h3>")
        chunks.append("<ac:task-list>")
        for anchor_id in removed:
            chunks.append(_carry_over(anchor_id, existing[anchor_id], allocator))
        chunks.append("</ac:task-list>")

    log.debug(
        "Rendered panel: %d carried over, %d new, %d removed (%s)",
        carried, created, len(removed), "kept" if include_removed_section else "dropped",
        extra={"carried": carried, "created": created, "removed": removed},
    )
    return "\n".join(chunks)


def merge_into_storage(
    storage: str,
    spec: ChecklistSpec,
    include_removed_section: bool = False,
    clock: Callable[[], float] = time.time,
    log: Optional[logging.Logger] = None,
) -> str:
    """Whole-page storage with the managed panel re-rendered from *spec*.

    An empty *storage* yields a page holding just the new panel.
    """
    panel_title = spec.effective_panel_title
    existing = read_existing_tasks(storage, panel_title, log=log)
    allocator = TaskIdAllocator(collect_task_ids(storage), clock=clock)
    inner = render_panel_body(spec, existing, allocator, include_removed_section, log=log)
    return set_managed_panel(storage, panel_title, inner)
