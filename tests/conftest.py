"""Builders for raw Notion API payloads used across the test modules."""

import uuid

import pytest

from notion_export.client import NotionClient
from notion_export.ids import NotionId
from notion_export.models import Node

API = "https://api.notion.com/v1"


def uid(n):
    """Deterministic 32-hex id for test item number n."""
    return uuid.UUID(int=n).hex


def rich(text, **annotations):
    return {
        "type": "text",
        "text": {"content": text, "link": None},
        "annotations": annotations,
        "plain_text": text,
    }


def raw_block(n, kind="paragraph", has_children=False, **content):
    content.setdefault("rich_text", [rich(f"block {n}")])
    return {
        "object": "block",
        "id": str(uuid.UUID(int=n)),
        "type": kind,
        "has_children": has_children,
        kind: content,
    }


def raw_page(n, title):
    return {
        "object": "page",
        "id": str(uuid.UUID(int=n)),
        "url": f"https://www.notion.so/{uid(n)}",
        "last_edited_time": "2024-03-01T10:00:00.000Z",
        "properties": {"Name": {"id": "title", "type": "title", "title": [rich(title)]}},
    }


def list_body(items, next_cursor=None, has_more=False):
    return {"object": "list", "results": items, "next_cursor": next_cursor, "has_more": has_more}


def block(n, kind="paragraph", children=None, **content):
    """A decoded Node, children attached, for renderer tests."""
    node = Node.from_json(raw_block(n, kind, has_children=bool(children), **content))
    node.children = list(children or [])
    return node


def nid(n):
    return NotionId.parse(uid(n))


@pytest.fixture
def client():
    return NotionClient("secret-token", timeout=5)
