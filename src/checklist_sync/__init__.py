"""Project declarative checklists onto Confluence pages without losing page state."""

from .api_client import ConfluenceClient, Page
from .exceptions import (
    ChecklistSyncError,
    ConfigurationError,
    TargetNotFoundError,
    TransportError,
    VersionConflictError,
)
from .merge import TaskIdAllocator, merge_into_storage, render_panel_body
from .schemas import ChecklistItem, ChecklistSection, ChecklistSpec, EnsureResult, WorkgroupPlan
from .sync_service import ChecklistManager

__version__ = "0.1.0"

__all__ = [
    "ChecklistItem",
    "ChecklistManager",
    "ChecklistSection",
    "ChecklistSpec",
    "ChecklistSyncError",
    "ConfigurationError",
    "ConfluenceClient",
    "EnsureResult",
    "Page",
    "TargetNotFoundError",
    "TaskIdAllocator",
    "TransportError",
    "VersionConflictError",
    "WorkgroupPlan",
    "merge_into_storage",
    "render_panel_body",
]
