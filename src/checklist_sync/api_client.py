"""REST client for Confluence Data Center / Server.

Deep module: callers pass page ids, titles and storage markup in and get
Page records back. Auth and XSRF headers, response decoding and mapping of
HTTP failures onto the exception hierarchy are handled internally.

No retries happen here. The only retry policy (on version conflicts) is
owned by the sync service, which knows what content it is writing.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from urllib.parse import quote, urlsplit

import requests

from .exceptions import (
    ConfigurationError,
    ErrorCode,
    TargetNotFoundError,
    TransportError,
    VersionConflictError,
)

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124 Safari/537.36"
)
LABEL_LIST_LIMIT = 1000
ERROR_BODY_PREVIEW = 500

_READ_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})
_HUMAN_VERIFICATION = re.compile(r"Human Verification", re.IGNORECASE)
_VERSION_CONFLICT = re.compile(r"version conflict", re.IGNORECASE)


@dataclass
class Page:
    """A Confluence page as far as the sync needs it."""

    id: str
    title: str
    type: str = "page"
    space_key: Optional[str] = None
    version: int = 1
    storage: str = ""

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Page":
        return cls(
            id=str(data["id"]),
            title=data.get("title", ""),
            type=data.get("type") or "page",
            space_key=(data.get("space") or {}).get("key"),
            version=(data.get("version") or {}).get("number") or 1,
            storage=((data.get("body") or {}).get("storage") or {}).get("value") or "",
        )


class ConfluenceClient:
    """Client for the Confluence ``/rest/api`` endpoints used by the sync.

    Args:
        base_url: Site URL including any context path, e.g.
                  ``https://confluence.example.org``. Trailing slashes are ignored.
        pat: Personal access token, sent as a Bearer token.
        user_agent: Custom User-Agent. Some sites put a JS challenge in front of
                    non-browser agents, hence the browser-like default.
        timeout: Per-request timeout in seconds.
    """

    def __init__(
        self,
        base_url: str,
        pat: str,
        user_agent: Optional[str] = None,
        timeout: float = 30,
    ):
        if not base_url or not pat:
            raise ConfigurationError("ConfluenceClient: base_url and pat are required.")
        self.base_url = base_url.rstrip("/")
        self.pat = pat
        self.user_agent = user_agent or DEFAULT_USER_AGENT
        self.timeout = timeout
        parts = urlsplit(self.base_url)
        self._origin = f"{parts.scheme}://{parts.netloc}"

    def _headers(self, method: str) -> Dict[str, str]:
        """Build request headers; mutating calls also carry XSRF-bypass headers."""
        headers = {
            "User-Agent": self.user_agent,
            "Accept": "application/json",
            "Authorization": f"Bearer {self.pat}",
        }
        if method.upper() not in _READ_METHODS:
            headers["X-Atlassian-Token"] = "no-check"
            headers["Origin"] = self._origin
            headers["Referer"] = f"{self._origin}/"
        return headers

    def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        payload: Any = None,
    ) -> Any:
        """Send one request and return the decoded body.

        Raises:
            TransportError: network failure or any non-2xx response.
        """
        url = f"{self.base_url}/rest/api{path}"
        logger.debug("%s %s", method, url, extra={"params": params})

        try:
            response = requests.request(
                method,
                url,
                params={k: v for k, v in (params or {}).items() if v is not None},
                json=payload,
                headers=self._headers(method),
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as exc:
            raise TransportError(f"{method} {url} failed: {type(exc).__name__}: {exc}") from exc

        if not response.ok:
            raise self._error_for(method, url, response)

        if "application/json" in response.headers.get("Content-Type", ""):
            try:
                return response.json()
            except ValueError:
                logger.debug("Response from %s claimed JSON but did not parse", url)
        return response.text

    @staticmethod
    def _error_for(method: str, url: str, response: requests.Response) -> TransportError:
        content_type = response.headers.get("Content-Type", "")
        text = response.text or ""
        if "text/html" in content_type and _HUMAN_VERIFICATION.search(text):
            return TransportError(
                f"WAF blocked request to {url}. Ask an admin to allowlist your IP "
                "or exempt /rest/api/* from the JS challenge.",
                status_code=response.status_code,
                error_code=ErrorCode.WAF_BLOCKED,
            )
        return TransportError(
            f"HTTP {response.status_code} {response.reason} for {method} {url}",
            status_code=response.status_code,
            details={"body": text[:ERROR_BODY_PREVIEW]},
        )

    # ----- pages -----------------------------------------------------------

    def get_page(self, page_id: str) -> Page:
        """Fetch a page with its storage body, version and space.

        Raises:
            TargetNotFoundError: no page with that id.
        """
        try:
            data = self._request(
                "GET", f"/content/{page_id}", params={"expand": "body.storage,version,space"},
            )
        except TransportError as exc:
            if exc.status_code == 404:
                raise TargetNotFoundError(str(page_id)) from exc
            raise
        return Page.from_api(data)

    def find_page_by_title(self, space_key: str, title: str) -> Optional[Page]:
        """Exact title match within a space. Returns None when absent."""
        data = self._request(
            "GET", "/content", params={"spaceKey": space_key, "title": title, "expand": "version"},
        )
        results = data.get("results") or []
        if not results:
            return None
        return Page.from_api(results[0])

    def create_page(
        self,
        space_key: str,
        title: str,
        storage: str,
        parent_id: Optional[str] = None,
    ) -> Page:
        """Create a page, optionally under *parent_id*."""
        payload: Dict[str, Any] = {
            "type": "page",
            "title": title,
            "space": {"key": space_key},
            "body": {"storage": {"value": storage, "representation": "storage"}},
        }
        if parent_id:
            payload["ancestors"] = [{"id": str(parent_id)}]

        data = self._request("POST", "/content", payload=payload)
        page = Page.from_api(data)
        logger.info(
            "Created page %s %r in %s", page.id, title, space_key,
            extra={"page_id": page.id, "space_key": space_key},
        )
        return page

    def update_page(self, page: Page, storage: str, version: int) -> None:
        """Replace the page body, expecting *version* to be the current version.

        Raises:
            VersionConflictError: the page moved past *version* meanwhile.
        """
        payload: Dict[str, Any] = {
            "id": page.id,
            "type": page.type or "page",
            "title": page.title,
            "version": {"number": version + 1},
            "body": {"storage": {"value": storage, "representation": "storage"}},
        }
        if page.space_key:
            payload["space"] = {"key": page.space_key}

        try:
            self._request("PUT", f"/content/{page.id}", payload=payload)
        except TransportError as exc:
            if exc.status_code == 409 or _VERSION_CONFLICT.search(exc.details.get("body", "")):
                raise VersionConflictError(page.id, version) from exc
            raise

    # ----- labels ----------------------------------------------------------

    def get_labels(self, page_id: str) -> List[str]:
        data = self._request("GET", f"/content/{page_id}/label", params={"limit": LABEL_LIST_LIMIT})
        return [label["name"] for label in data.get("results") or []]

    def add_labels(self, page_id: str, labels: List[str]) -> List[str]:
        """Attach global labels the page does not carry yet. Returns the ones added."""
        existing = set(self.get_labels(page_id))
        to_add = [name for name in dict.fromkeys(labels) if name and name not in existing]
        if not to_add:
            return []
        self._request(
            "POST",
            f"/content/{page_id}/label",
            payload=[{"prefix": "global", "name": name} for name in to_add],
        )
        logger.info("Labelled page %s with %s", page_id, to_add)
        return to_add

    # ----- content properties ----------------------------------------------

    def get_property(self, page_id: str, key: str) -> Optional[Dict[str, Any]]:
        """Content property record, or None if the page has no such property."""
        try:
            return self._request("GET", f"/content/{page_id}/property/{quote(key, safe='')}")
        except TransportError as exc:
            if exc.status_code == 404:
                return None
            raise

    def upsert_property(self, page_id: str, key: str, value: Dict[str, Any]) -> None:
        """Create the property, or overwrite it bumping its version."""
        existing = self.get_property(page_id, key)
        number = ((existing or {}).get("version") or {}).get("number")
        if number:
            self._request(
                "PUT",
                f"/content/{page_id}/property/{quote(key, safe='')}",
                payload={"key": key, "value": value, "version": {"number": number + 1}},
            )
            return
        self._request("POST", f"/content/{page_id}/property", payload={"key": key, "value": value})
