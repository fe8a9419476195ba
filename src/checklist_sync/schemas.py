"""Checklist specification and sync result schemas.

Field names are snake_case in Python; the JSON specification files written
by checklist authors use camelCase (``panelTitle``, ``wgId``...), so every
model accepts both.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic.alias_generators import to_camel

DEFAULT_PANEL_TITLE = "Checklist (managed)"
DEFAULT_PROPERTY_KEY = "hl7.checklistMeta"


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ChecklistItem(_CamelModel):
    """One checkbox. ``id`` is the merge key and must stay stable across revisions."""
    id: str
    text: str = ""

    @field_validator('id')
    @classmethod
    def validate_id(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Checklist item id cannot be empty")
        return v


class ChecklistSection(_CamelModel):
    """Optional heading followed by an ordered list of items."""
    heading: Optional[str] = None
    items: List[ChecklistItem] = []


class ChecklistSpec(_CamelModel):
    """Declarative checklist projected into the managed panel."""
    title: Optional[str] = None  # <h2> shown inside the panel
    panel_title: Optional[str] = None  # Panel title used to scope edits
    sections: List[ChecklistSection] = []

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        json_schema_extra={
            "examples": [
                {
                    "title": "WG-ABC Pre-Publication Checklist",
                    "panelTitle": "Checklist (managed)",
                    "sections": [
                        {
                            "heading": "Publication",
                            "items": [
                                {"id": "ballot-ready", "text": "Ballot content frozen"},
                                {"id": "qa-clean", "text": "QA report has no errors"},
                            ],
                        }
                    ],
                }
            ]
        },
    )

    @field_validator('title', 'panel_title')
    @classmethod
    def strip_title(cls, v: Optional[str]) -> Optional[str]:
        """Stored panel titles are compared trimmed, so configured ones are too."""
        if v is None:
            return None
        return v.strip() or None

    @property
    def effective_panel_title(self) -> str:
        return self.panel_title or DEFAULT_PANEL_TITLE

    def item_ids(self) -> set[str]:
        """All item ids in the checklist."""
        return {item.id for section in self.sections for item in section.items}


class WorkgroupPlan(_CamelModel):
    """One target of a batch sync."""
    wg_id: str
    page_title: str
    space_key: str
    spec: ChecklistSpec
    parent_id: Optional[str] = None
    labels: List[str] = []
    include_removed_section: bool = False
    dry_run: bool = False
    property_key: str = DEFAULT_PROPERTY_KEY
    property_extra: Optional[Dict[str, Any]] = None

    @field_validator('parent_id', mode='before')
    @classmethod
    def coerce_parent_id(cls, v: Any) -> Optional[str]:
        if v is None or v == "":
            return None
        return str(v)


class EnsureResult(BaseModel):
    """Outcome of syncing one page. ``error`` is set when the sync failed."""
    page_id: str = ""
    created: bool = False
    updated: bool = False
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.error is not None
