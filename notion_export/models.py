"""
Decoded shapes of Notion API responses.

A ListPage is one response from a paginated endpoint and lives only as long as
the fetcher needs it to hand its results over. A Node is one block (or one
database page) and is what the rest of the exporter works with: raw
attributes stay in .data untouched so the renderer can read whatever fields a
block type carries, and .children is filled in exactly once by TreeFetcher.
"""

from dataclasses import dataclass, field
from typing import Optional

from .errors import DecodeError
from .ids import NotionId


@dataclass
class Node:
    id: NotionId
    object: str
    type: Optional[str]
    has_children: bool
    data: dict
    children: list = field(default_factory=list)

    @classmethod
    def from_json(cls, item):
        if not isinstance(item, dict):
            raise DecodeError(f"Expected a JSON object for a list item, got {type(item).__name__}")
        try:
            node_id = NotionId.parse(item["id"])
        except (KeyError, ValueError) as e:
            raise DecodeError(f"List item has no usable id: {e}") from e

        obj = item.get("object", "block")
        if obj == "page":
            # Page objects carry no has_children flag; their body is always
            # behind /blocks/{id}/children so we always expand them
            has_children = True
        else:
            has_children = item.get("has_children")
            if not isinstance(has_children, bool):
                raise DecodeError(f"Block {node_id} has no boolean has_children")

        return cls(
            id=node_id,
            object=obj,
            type=item.get("type"),
            has_children=has_children,
            data=item,
        )

    @property
    def content(self):
        """The type-specific payload, e.g. data["paragraph"] for a paragraph block."""
        if not self.type:
            return {}
        return self.data.get(self.type) or {}

    @property
    def title_rich_text(self):
        """
        Rich-text title of a page object.

        The title lives in whichever property has type "title"; its key is
        user-defined ("Name", "Title", ...) so we search by type, not by name.
        """
        for prop in (self.data.get("properties") or {}).values():
            if isinstance(prop, dict) and prop.get("type") == "title":
                return prop.get("title") or []
        return []

    @property
    def title(self):
        return plain_text(self.title_rich_text)

    @property
    def last_edited_time(self):
        return self.data.get("last_edited_time")

    @property
    def url(self):
        return self.data.get("url")


@dataclass
class ListPage:
    results: list
    next_cursor: Optional[str]
    has_more: bool

    @classmethod
    def from_json(cls, body, status=None):
        """Validate a {object, results, next_cursor, has_more} list body and decode its items."""
        if not isinstance(body, dict):
            raise DecodeError("List response is not a JSON object", status)

        results = body.get("results")
        has_more = body.get("has_more")
        next_cursor = body.get("next_cursor")
        if not isinstance(results, list):
            raise DecodeError("List response has no results array", status)
        if not isinstance(has_more, bool):
            raise DecodeError("List response has no boolean has_more", status)
        if next_cursor is not None and not isinstance(next_cursor, str):
            raise DecodeError("List response next_cursor is not a string", status)
        if has_more and not next_cursor:
            raise DecodeError("List response has_more=true but no next_cursor", status)

        return cls(
            results=[Node.from_json(item) for item in results],
            next_cursor=next_cursor,
            has_more=has_more,
        )


def plain_text(rich_text):
    return "".join(segment.get("plain_text", "") for segment in rich_text)
