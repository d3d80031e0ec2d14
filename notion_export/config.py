"""
Configuration from environment variables, the same way it's passed into a
container: everything is a string, so parsing and validation live here and
the rest of the package gets typed values.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from .ids import NotionId
from .render import HEADING_ANCHORS

OUTPUT_FORMATS = ("html", "markdown")


class ConfigError(ValueError):
    pass


@dataclass(frozen=True)
class Config:
    token: str
    page_id: Optional[NotionId] = None
    database_id: Optional[NotionId] = None
    output_dir: Path = Path("output")
    output_format: str = "html"
    head_partial: Optional[Path] = None
    heading_anchors: str = "none"
    anchor_icon: str = "#"
    current_pages: frozenset = frozenset()
    link_map: dict = field(default_factory=dict)
    max_workers: int = 8
    timeout: float = 30.0
    frontmatter: bool = True
    md_heading: str = "ATX"


def load_config(environ=None):
    env = os.environ if environ is None else environ

    token = env.get("NOTION_TOKEN", "").strip()
    if not token:
        raise ConfigError("Set NOTION_TOKEN to an integration token")

    page, database = env.get("NOTION_PAGE_ID", "").strip(), env.get("NOTION_DATABASE_ID", "").strip()
    if bool(page) == bool(database):
        raise ConfigError("Set exactly one of NOTION_PAGE_ID or NOTION_DATABASE_ID")

    output_format = env.get("OUTPUT_FORMAT", "html").lower()
    if output_format not in OUTPUT_FORMATS:
        raise ConfigError(f"OUTPUT_FORMAT must be one of {', '.join(OUTPUT_FORMATS)}, got {output_format!r}")

    heading_anchors = env.get("HEADING_ANCHORS", "none").lower()
    if heading_anchors not in HEADING_ANCHORS:
        raise ConfigError(f"HEADING_ANCHORS must be one of {', '.join(HEADING_ANCHORS)}, got {heading_anchors!r}")

    head = env.get("HEAD_PARTIAL", "").strip()

    return Config(
        token           = token,
        page_id         = _id("NOTION_PAGE_ID", page) if page else None,
        database_id     = _id("NOTION_DATABASE_ID", database) if database else None,
        output_dir      = Path(env.get("OUTPUT_DIR") or "output"),
        output_format   = output_format,
        head_partial    = Path(head) if head else None,
        heading_anchors = heading_anchors,
        anchor_icon     = env.get("HEADING_ANCHOR_ICON", "#"),
        current_pages   = frozenset(parse_id_list(env.get("CURRENT_PAGES", ""))),
        link_map        = parse_link_map(env.get("LINK_MAP", "")),
        max_workers     = _number("MAX_WORKERS", env.get("MAX_WORKERS", "8"), int),
        timeout         = _number("REQUEST_TIMEOUT", env.get("REQUEST_TIMEOUT", "30"), float),
        frontmatter     = env.get("FRONTMATTER", "true").lower() == "true",
        md_heading      = env.get("MD_HEADING_STYLE", "ATX"),
    )


def _id(name, value):
    try:
        return NotionId.parse(value)
    except ValueError as e:
        raise ConfigError(f"{name}: {e}") from e


def _number(name, value, kind):
    try:
        number = kind(value)
    except ValueError as e:
        raise ConfigError(f"{name} must be a number, got {value!r}") from e
    if number <= 0:
        raise ConfigError(f"{name} must be positive, got {value!r}")
    return number


def parse_id_list(text):
    """Comma separated page ids, blanks ignored."""
    return [_id("CURRENT_PAGES", part) for part in text.split(",") if part.strip()]


def parse_link_map(text):
    """
    Parse "page_id:/url/path,page_id:/other/path" into {NotionId: path}.

    Only the first colon splits, so paths may contain colons of their own.
    """
    links = {}
    for entry in text.split(","):
        entry = entry.strip()
        if not entry:
            continue
        page, sep, path = entry.partition(":")
        if not page:
            raise ConfigError(f"LINK_MAP entry {entry!r} is missing a page id")
        if not sep or not path:
            raise ConfigError(f"LINK_MAP entry {entry!r} is missing a path")
        links[_id("LINK_MAP", page)] = path
    return links
