"""Shared test fixtures for the checklist-sync test suite.

Sync tests run against FakeConfluence, an in-memory stand-in for the
Confluence client that stores pages, labels and content properties and
enforces optimistic versioning the way the REST API does. No network.
"""

import dataclasses
from typing import Any, Dict, List, Optional

import pytest

from checklist_sync.api_client import Page
from checklist_sync.exceptions import TargetNotFoundError, TransportError, VersionConflictError
from checklist_sync.schemas import ChecklistSpec

# 2023-11-14T22:13:20Z; task ids allocated at this instant start at FIXED_TASK_ID.
FIXED_NOW = 1_700_000_000.0
FIXED_TASK_ID = "1700000000000"


class FakeConfluence:
    """In-memory document, label and property store."""

    def __init__(self) -> None:
        self.pages: Dict[str, Page] = {}
        self.labels: Dict[str, List[str]] = {}
        self.properties: Dict[tuple, Dict[str, Any]] = {}
        self.created: List[str] = []
        self.update_calls: List[tuple] = []
        self.get_calls: List[str] = []
        self.conflicts_to_raise = 0
        self.fail_titles: set = set()
        self._next_id = 1000

    # ----- test helpers ----------------------------------------------------

    def add_page(self, title: str, storage: str = "", space_key: str = "FMG", version: int = 1) -> Page:
        self._next_id += 1
        page = Page(id=str(self._next_id), title=title, space_key=space_key, version=version, storage=storage)
        self.pages[page.id] = page
        return page

    def edit_storage(self, page_id: str, old: str, new: str) -> None:
        """Simulate a user edit made in the Confluence editor."""
        page = self.pages[page_id]
        assert old in page.storage, f"{old!r} not on page"
        page.storage = page.storage.replace(old, new, 1)
        page.version += 1

    # ----- document store --------------------------------------------------

    def find_page_by_title(self, space_key: str, title: str) -> Optional[Page]:
        if title in self.fail_titles:
            raise TransportError(f"HTTP 500 Server Error for GET /content ({title})", status_code=500)
        for page in self.pages.values():
            if page.space_key == space_key and page.title == title:
                return dataclasses.replace(page)
        return None

    def get_page(self, page_id: str) -> Page:
        self.get_calls.append(page_id)
        if page_id not in self.pages:
            raise TargetNotFoundError(page_id)
        return dataclasses.replace(self.pages[page_id])

    def create_page(self, space_key: str, title: str, storage: str, parent_id: Optional[str] = None) -> Page:
        page = self.add_page(title, storage=storage, space_key=space_key)
        self.created.append(page.id)
        return dataclasses.replace(page)

    def update_page(self, page: Page, storage: str, version: int) -> None:
        self.update_calls.append((page.id, version))
        current = self.pages[page.id]
        if self.conflicts_to_raise:
            self.conflicts_to_raise -= 1
            current.version += 1  # someone else saved in between
            raise VersionConflictError(page.id, version)
        if version != current.version:
            raise VersionConflictError(page.id, version)
        current.storage = storage
        current.version += 1

    # ----- labels ----------------------------------------------------------

    def get_labels(self, page_id: str) -> List[str]:
        return list(self.labels.get(page_id, []))

    def add_labels(self, page_id: str, labels: List[str]) -> List[str]:
        existing = self.labels.setdefault(page_id, [])
        added = [name for name in labels if name not in existing]
        existing.extend(added)
        return added

    # ----- properties ------------------------------------------------------

    def get_property(self, page_id: str, key: str) -> Optional[Dict[str, Any]]:
        return self.properties.get((page_id, key))

    def upsert_property(self, page_id: str, key: str, value: Dict[str, Any]) -> None:
        existing = self.properties.get((page_id, key))
        number = existing["version"]["number"] + 1 if existing else 1
        self.properties[(page_id, key)] = {"key": key, "value": value, "version": {"number": number}}


@pytest.fixture()
def fake_confluence() -> FakeConfluence:
    return FakeConfluence()


@pytest.fixture()
def fixed_clock():
    """Clock frozen at FIXED_NOW."""
    return lambda: FIXED_NOW


def make_spec(*sections, title: Optional[str] = None, panel_title: Optional[str] = None) -> ChecklistSpec:
    """Factory for specs: each section is a list of (id, text) pairs, or a
    (heading, [(id, text), ...]) tuple."""
    built = []
    for section in sections:
        heading = None
        if isinstance(section, tuple):
            heading, section = section
        built.append({"heading": heading, "items": [{"id": i, "text": t} for i, t in section]})
    return ChecklistSpec(title=title, panel_title=panel_title, sections=built)


def make_task(task_id: Optional[str], status: Optional[str], body_inner: str) -> str:
    """Storage markup for one task as Confluence would store it."""
    parts = ["<ac:task>"]
    if task_id is not None:
        parts.append(f"<ac:task-id>{task_id}</ac:task-id>")
    if status is not None:
        parts.append(f"<ac:task-status>{status}</ac:task-status>")
    parts.append(f"<ac:task-body>{body_inner}</ac:task-body>")
    parts.append("</ac:task>")
    return "".join(parts)


def make_anchor(anchor_id: str) -> str:
    return (
        '<ac:structured-macro ac:name="anchor">'
        f'<ac:parameter ac:name="">{anchor_id}</ac:parameter>'
        '</ac:structured-macro>'
    )


def make_panel(title: str, *tasks: str) -> str:
    return (
        '<ac:structured-macro ac:name="panel">'
        f'<ac:parameter ac:name="title">{title}</ac:parameter>'
        '<ac:rich-text-body><ac:task-list>'
        + "".join(tasks)
        + '</ac:task-list></ac:rich-text-body>'
        '</ac:structured-macro>'
    )
