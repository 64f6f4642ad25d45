"""Alfresco search backend — public Search REST API."""

from __future__ import annotations

import logging
from typing import Any

import httpx
from pydantic import ValidationError

from noderef.backends.base import PageInfo, SearchPage, SourceQueryError
from noderef.config import settings
from noderef.models.result import RawResultItem
from noderef.models.source import SourceTarget

logger = logging.getLogger(__name__)

SEARCH_PATH = "/alfresco/api/-default-/public/search/versions/1/search"
STORE_PREFIX = "workspace://SpacesStore/"
ROOT_FOLDER_NAME = "Company Home"

RESULT_FIELDS = [
    "id",
    "name",
    "nodeType",
    "modifiedAt",
    "modifiedByUser",
    "createdAt",
    "createdByUser",
    "path",
    "content",
    "parentId",
    "isFolder",
    "isFile",
    "properties",
]


class AlfrescoBackend:
    """Search backend for Alfresco Content Services repositories."""

    name: str = "Alfresco"

    def __init__(
        self,
        auth: httpx.Auth | tuple[str, str] | None = None,
        timeout: float | None = None,
    ) -> None:
        if auth is None and settings.alfresco_username:
            auth = (settings.alfresco_username, settings.alfresco_password)
        self.auth = auth
        self.timeout = timeout if timeout is not None else settings.http_timeout_seconds

    async def query(
        self,
        source: SourceTarget,
        query_text: str,
        *,
        max_items: int,
        skip_count: int,
    ) -> SearchPage:
        """Execute one paged search against ``source`` and normalize the entries."""
        request = self._build_request(query_text, max_items, skip_count)
        url = source.address.rstrip("/") + SEARCH_PATH

        logger.debug("Alfresco search request to %s: %s", source.display_name, request)

        try:
            async with httpx.AsyncClient(auth=self.auth, timeout=self.timeout) as client:
                response = await client.post(url, json=request)
                response.raise_for_status()
                data = response.json()

                listing = data.get("list") or {}
                entries = listing.get("entries") or []
                items = self._parse_entries(entries, source)
                pagination = self._parse_pagination(
                    listing.get("pagination") or {}, len(items), max_items, skip_count
                )

                if pagination.total_items is None and skip_count == 0:
                    counted = await self._fetch_total(client, url, request, source)
                    pagination = pagination.model_copy(update={"total_items": counted})
        except httpx.HTTPStatusError as exc:
            raise SourceQueryError(
                source, f"HTTP {exc.response.status_code} from search API"
            ) from exc
        except httpx.HTTPError as exc:
            raise SourceQueryError(source, f"request failed: {exc!r}") from exc
        except (ValueError, ValidationError, AttributeError, TypeError) as exc:
            raise SourceQueryError(source, f"malformed search response: {exc}") from exc

        logger.debug(
            "Alfresco %s returned %d items, pagination=%s",
            source.display_name,
            len(items),
            pagination,
        )
        return SearchPage(items=items, pagination=pagination)

    def _build_request(self, query_text: str, max_items: int, skip_count: int) -> dict:
        request: dict[str, Any] = {
            "query": {"query": "*", "language": "afts"},
            "include": ["path", "properties"],
            "fields": RESULT_FIELDS,
            "sort": [{"type": "FIELD", "field": "modified", "ascending": False}],
            "paging": {"maxItems": max_items, "skipCount": skip_count},
        }
        text = query_text.strip()
        if text:
            request["filterQueries"] = [{"query": text}]
        return request

    async def _fetch_total(
        self, client: httpx.AsyncClient, url: str, request: dict, source: SourceTarget
    ) -> int | None:
        """Ask for a single row just to learn the total hit count."""
        count_request = {
            "query": request["query"],
            "fields": ["id"],
            "paging": {"maxItems": 1, "skipCount": 0},
        }
        if "filterQueries" in request:
            count_request["filterQueries"] = request["filterQueries"]
        try:
            response = await client.post(url, json=count_request)
            response.raise_for_status()
            pagination = (response.json().get("list") or {}).get("pagination") or {}
            total = pagination.get("totalItems")
            return PageInfo.model_validate({"total_items": total}).total_items
        except (httpx.HTTPError, ValueError, AttributeError) as exc:
            logger.debug("Total count query failed for %s: %s", source.display_name, exc)
            return None

    def _parse_pagination(
        self, raw: dict, item_count: int, max_items: int, skip_count: int
    ) -> PageInfo:
        info = PageInfo(
            count=_first_set(raw.get("count"), item_count),
            has_more_items=bool(raw.get("hasMoreItems")),
            total_items=raw.get("totalItems"),
            skip_count=_first_set(raw.get("skipCount"), skip_count),
            max_items=_first_set(raw.get("maxItems"), max_items),
        )
        if info.total_items is None and not info.has_more_items:
            info.total_items = info.skip_count + info.count
        return info

    def _parse_entries(self, entries: list, source: SourceTarget) -> list[RawResultItem]:
        """Validate rows one at a time; a bad row is dropped, not the page."""
        items: list[RawResultItem] = []
        for entry in entries:
            try:
                items.append(self._parse_entry(entry.get("entry") or {}))
            except (ValidationError, AttributeError) as exc:
                logger.warning("Skipping malformed entry from %s: %s", source.display_name, exc)
        return items

    def _parse_entry(self, node: dict) -> RawResultItem:
        node_id = node.get("id")
        content = node.get("content") or {}
        return RawResultItem.model_validate(
            {
                "id": node_id,
                "name": node.get("name"),
                "is_folder": bool(node.get("isFolder")),
                "is_file": bool(node.get("isFile")),
                "canonical_ref": f"{STORE_PREFIX}{node_id}",
                "resource_type": node.get("nodeType") or "",
                "path": _display_path(node.get("path")),
                "modified_at": node.get("modifiedAt"),
                "modified_by": _user_name(node.get("modifiedByUser")),
                "created_at": node.get("createdAt"),
                "created_by": _user_name(node.get("createdByUser")),
                "parent_id": node.get("parentId"),
                "mime_type": content.get("mimeType"),
                "attributes": node.get("properties") or {},
            }
        )


def _first_set(value: Any, fallback: Any) -> Any:
    return fallback if value is None else value


def _display_path(path: Any) -> str:
    if isinstance(path, str):
        return path
    if not isinstance(path, dict):
        return ""
    if path.get("name"):
        return path["name"]
    elements = path.get("elements")
    if isinstance(elements, list):
        names = [
            el["name"] for el in elements if el.get("name") and el["name"] != ROOT_FOLDER_NAME
        ]
        return "/" + "/".join(names)
    return ""


def _user_name(user: dict | None) -> str:
    if not user:
        return "Unknown"
    return user.get("displayName") or user.get("id") or "Unknown"
