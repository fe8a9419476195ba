"""Confluence storage-format helpers: locate, read and rewrite the managed panel.

Storage format is XHTML with ``ac:`` / ``ri:`` prefixed elements and no
namespace declarations. BeautifulSoup's ``html.parser`` builder keeps those
prefixed tag and attribute names verbatim, which is all the queries below
rely on.

Pieces of the sync pipeline that live here:
  - read_existing_tasks  -- index of tasks already in the managed panel
  - collect_task_ids     -- every task id on the page, any region
  - set_managed_panel    -- splice rendered content into the page
  - is_materially_unchanged -- decide whether a write is needed
"""

import logging
import re
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Set, Tuple

from bs4 import BeautifulSoup, NavigableString, Tag
from bs4.dammit import EntitySubstitution

logger = logging.getLogger(__name__)

STATUS_COMPLETE = "complete"
STATUS_INCOMPLETE = "incomplete"

_WHITESPACE = re.compile(r"\s+")
# Opening, closing and self-closing forms of the panel body element.
_RICH_TEXT_BODY_TAG = re.compile(r"<(/?)ac:rich-text-body(?=[\s/>])[^>]*?(/?)>", re.IGNORECASE)


@dataclass(frozen=True)
class ExistingTask:
    """State carried over from a task already rendered in the managed panel."""

    status: str
    task_id: Optional[str]
    body_xml: str  # whole <ac:task-body> element, user edits included


# ---------------------------------------------------------------------------
# Markup primitives
# ---------------------------------------------------------------------------

def parse_storage(markup: str) -> BeautifulSoup:
    """Parse storage-format markup (a fragment, not a full document)."""
    return BeautifulSoup(markup, "html.parser")


def escape_text(value: str) -> str:
    """Escape text content exactly like the serializer does (&, <, >).

    Using the serializer's own rules keeps rendered markup stable when it is
    parsed and written back out on the next sync.
    """
    return EntitySubstitution.substitute_xml(value or "")


def _is_macro(name: str) -> Callable[[Tag], bool]:
    def predicate(tag: Tag) -> bool:
        return tag.name == "ac:structured-macro" and tag.get("ac:name") == name
    return predicate


def _is_parameter(name: str) -> Callable[[Tag], bool]:
    def predicate(tag: Tag) -> bool:
        return tag.name == "ac:parameter" and tag.get("ac:name") == name
    return predicate


def _first_text(root: Tag, predicate, recursive: bool = True) -> str:
    found = root.find(predicate, recursive=recursive)
    return found.get_text().strip() if found is not None else ""


def anchor_macro(anchor_id: str) -> str:
    """Hidden anchor macro carrying the item's external id."""
    return (
        '<ac:structured-macro ac:name="anchor">'
        f'<ac:parameter ac:name="">{escape_text(anchor_id)}</ac:parameter>'
        '</ac:structured-macro>'
    )


def new_task_body(anchor_id: str, text: str) -> str:
    """Body for an item rendered for the first time: marker, then its text."""
    return f"<ac:task-body><p>{anchor_macro(anchor_id)} {escape_text(text)}</p></ac:task-body>"


def ensure_anchor(body_xml: str, anchor_id: str) -> str:
    """Return *body_xml* with an anchor for *anchor_id*, inserting one at the front if missing."""
    fragment = parse_storage(body_xml)
    for macro in fragment.find_all(_is_macro("anchor")):
        if _first_text(macro, _is_parameter(""), recursive=False) == anchor_id:
            return body_xml

    body = fragment.find("ac:task-body")
    if body is None:
        return f"<ac:task-body>{anchor_macro(anchor_id)} {body_xml}</ac:task-body>"

    marker = parse_storage(anchor_macro(anchor_id)).find(_is_macro("anchor"))
    body.insert(0, marker)
    body.insert(1, NavigableString(" "))
    return str(body)


def panel_markup(panel_title: str, inner: str) -> str:
    """A complete managed panel macro."""
    return (
        '<ac:structured-macro ac:name="panel">\n'
        f'<ac:parameter ac:name="title">{escape_text(panel_title)}</ac:parameter>\n'
        f'<ac:rich-text-body>{_panel_content(inner)}</ac:rich-text-body>\n'
        '</ac:structured-macro>'
    )


def _panel_content(inner: str) -> str:
    # Same framing on create and on replace, so both paths serialize alike.
    return f"\n{inner}\n"


# ---------------------------------------------------------------------------
# Document parser
# ---------------------------------------------------------------------------

def find_managed_panel(soup: BeautifulSoup, panel_title: str) -> Optional[Tag]:
    """First panel macro, in document order, whose title parameter equals *panel_title*."""
    for panel in soup.find_all(_is_macro("panel")):
        if _first_text(panel, _is_parameter("title")) == panel_title:
            return panel
    return None


def find_anchor_id(body: Tag, log: Optional[logging.Logger] = None) -> Optional[str]:
    """External id carried by the anchor markers in a task body.

    When a body holds several markers the last one wins; that only happens
    after a manual edit, so it is logged rather than raised.
    """
    log = log or logger
    anchors = []
    for macro in body.find_all(_is_macro("anchor")):
        value = _first_text(macro, _is_parameter(""))
        if value:
            anchors.append(value)

    if not anchors:
        return None
    if len(anchors) > 1:
        log.warning(
            "Task body carries %d anchor markers %s; using the last",
            len(anchors), anchors,
            extra={"anchors": anchors},
        )
    return anchors[-1]


def _normalize_status(value: str) -> str:
    return STATUS_COMPLETE if value == STATUS_COMPLETE else STATUS_INCOMPLETE


def read_existing_tasks(
    storage: str,
    panel_title: str,
    log: Optional[logging.Logger] = None,
) -> Dict[str, ExistingTask]:
    """Index the tasks of the managed panel by the external id in their anchor.

    Returns an empty dict when the page has no managed panel yet. Tasks with
    no anchor cannot be matched on the next render and are left out (and
    therefore dropped from the panel); each one is logged.
    """
    log = log or logger
    panel = find_managed_panel(parse_storage(storage), panel_title)
    if panel is None:
        log.debug("No panel titled %r on page; all items are new", panel_title)
        return {}

    existing: Dict[str, ExistingTask] = {}
    for task in panel.find_all("ac:task"):
        task_id = _first_text(task, "ac:task-id") or None
        body = task.find("ac:task-body")
        anchor_id = find_anchor_id(body, log=log) if body is not None else None

        if anchor_id is None:
            log.warning(
                "Orphaned task %s in panel %r has no anchor marker; it will be dropped",
                task_id or "<no id>", panel_title,
                extra={"task_id": task_id, "panel_title": panel_title},
            )
            continue

        existing[anchor_id] = ExistingTask(
            status=_normalize_status(_first_text(task, "ac:task-status")),
            task_id=task_id,
            body_xml=str(body),
        )
    return existing


# ---------------------------------------------------------------------------
# Global identifier collector
# ---------------------------------------------------------------------------

def collect_task_ids(storage: str) -> Set[str]:
    """Every non-empty task id on the page, whichever region it sits in."""
    ids = set()
    for tag in parse_storage(storage).find_all("ac:task-id"):
        value = tag.get_text().strip()
        if value:
            ids.add(value)
    return ids


# ---------------------------------------------------------------------------
# Region replacer
# ---------------------------------------------------------------------------

def _source_offset(markup: str, line: int, column: int) -> int:
    # html.parser reports 1-based lines counted on "\n" and 0-based columns.
    lines = markup.split("\n")
    return sum(len(text) + 1 for text in lines[:line - 1]) + column


def _locate_content(markup: str, body: Tag) -> Optional[Tuple[int, int]]:
    """Character span of *body*'s inner content in the source markup, if it can be found."""
    if body.sourceline is None or body.sourcepos is None:
        return None

    opening = _RICH_TEXT_BODY_TAG.match(markup, _source_offset(markup, body.sourceline, body.sourcepos))
    if opening is None or opening.group(1) or opening.group(2):
        return None

    depth = 1
    for match in _RICH_TEXT_BODY_TAG.finditer(markup, opening.end()):
        if match.group(1):
            depth -= 1
            if depth == 0:
                return opening.end(), match.start()
        elif not match.group(2):
            depth += 1
    return None


def set_managed_panel(storage: str, panel_title: str, inner: str) -> str:
    """Replace the managed panel's content with *inner*, or append a new panel.

    Only the inside of the panel's rich-text body changes; every character
    outside it is kept as it was stored.
    """
    soup = parse_storage(storage)
    panel = find_managed_panel(soup, panel_title)

    if panel is None:
        return (storage + "\n" if storage else "") + panel_markup(panel_title, inner) + "\n"

    content = _panel_content(inner)
    body = panel.find("ac:rich-text-body")
    if body is not None:
        span = _locate_content(storage, body)
        if span is not None:
            start, end = span
            return storage[:start] + content + storage[end:]

        logger.debug("Could not map panel %r to source offsets; re-serializing page", panel_title)
        body.clear()
    else:
        body = soup.new_tag("ac:rich-text-body")
        panel.append(body)

    for node in list(parse_storage(content).contents):
        body.append(node)
    return str(soup)


# ---------------------------------------------------------------------------
# Idempotency comparator
# ---------------------------------------------------------------------------

def normalize_markup(markup: str) -> str:
    """Collapse whitespace runs to one space and trim."""
    return _WHITESPACE.sub(" ", markup).strip()


def is_materially_unchanged(old: str, new: str) -> bool:
    """True when writing *new* over *old* would change nothing but formatting.

    Compares whitespace-normalized text first; if that differs, compares
    again after passing both through the same parse/serialize round trip,
    which absorbs purely syntactic differences such as ``<x />`` vs
    ``<x></x>`` that Confluence and the serializer disagree on.
    """
    if normalize_markup(old) == normalize_markup(new):
        return True
    return normalize_markup(str(parse_storage(old))) == normalize_markup(str(parse_storage(new)))
