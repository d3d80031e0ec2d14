"""
Export a Notion page (or every page of a Notion database) to static HTML or
Markdown, with all embedded media downloaded next to it.
All config is read from environment variables, see config.py.

Notion API quirks baked into this module:
  - The block children endpoint returns a page's body but not the page itself,
    so the title (and url/last_edited_time for frontmatter) needs a separate
    GET /pages/{id} before rendering.
  - Database queries return page objects without their content. Every page's
    blocks are fetched through the children endpoint, same as a single page.
  - File URLs in the API are pre-signed and expire after an hour. We therefore
    render everything first (which only records what to download) and then
    download in one batch at the end, rather than keeping URLs around.
  - Links between pages are plain "/{page_id}" hrefs. In database mode we map
    every exported page id to its output folder so those links keep working
    offline; anything LINK_MAP sets explicitly wins.
"""

import logging
import re
import sys
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import yaml
from markdownify import markdownify
from slugify import slugify

from .assets import AssetFetcher, AssetSet
from .client import NotionClient
from .config import ConfigError, load_config
from .errors import ExportError, WriteError
from .render import HtmlRenderer
from .tree import TreeFetcher

log = logging.getLogger("notion-export")

EXTENSIONS = {"html": "html", "markdown": "md"}


# ---- Utilities -------------------------------------------------------------------------------------------------------------------
def to_md(html, heading_style="ATX"):
    """Convert rendered page HTML to clean Markdown."""
    if not html:
        return ""
    result = markdownify(html, heading_style=heading_style, bullets="-",
                         strip=["script", "style"], newline_style="backslash")
    # markdownify can leave runs of 3+ blank lines around block elements; collapse them
    return re.sub(r"\n{3,}", "\n\n", result).strip()


def frontmatter(fields):
    """
    Render a YAML frontmatter block from a dict, skipping None values.

    None means "not known for this page" (e.g. a page object without a url).
    Empty strings are turned into None at the call site with `or None`.
    """
    clean = {k: v for k, v in fields.items() if v is not None}
    return "---\n" + yaml.dump(clean, allow_unicode=True, default_flow_style=False, sort_keys=False) + "---"


def slug(text):
    """URL-safe slug, max 80 chars. Falls back to 'untitled' if text is empty or all symbols."""
    return slugify(str(text), max_length=80, separator="-") or "untitled"


def write_doc(path, content, root):
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
    except OSError as e:
        raise WriteError(f"Could not write {path}: {e}") from e
    log.info("  wrote %s", path.relative_to(root))


def write_yaml(path, data, root):
    write_doc(path, yaml.dump(data, allow_unicode=True, default_flow_style=False, sort_keys=False), root)


def read_head(cfg):
    if cfg.head_partial is None:
        return ""
    try:
        return cfg.head_partial.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigError(f"Could not read HEAD_PARTIAL {cfg.head_partial}: {e}") from e


# ---- Rendering -------------------------------------------------------------------------------------------------------------------
def make_renderer(cfg, assets, current_pages, link_map=None, asset_prefix=""):
    links = dict(link_map or {})
    links.update(cfg.link_map)
    return HtmlRenderer(
        assets,
        heading_anchors=cfg.heading_anchors,
        anchor_icon=cfg.anchor_icon,
        current_pages=set(current_pages) | cfg.current_pages,
        link_map=links,
        asset_prefix=asset_prefix,
    )


def render_document(renderer, cfg, page, blocks, head=""):
    """The finished file contents for one page in the configured output format."""
    if cfg.output_format == "html":
        return renderer.render_document(page, blocks, head)

    parts = []
    if cfg.frontmatter:
        parts.append(frontmatter({
            "title":            page.title or None,
            "notion_id":        str(page.id),
            "last_edited_time": page.last_edited_time,
            "url":              page.url,
        }))
    parts.append(to_md(renderer.render_page(page, blocks), cfg.md_heading))
    return "\n\n".join(parts) + "\n"


# ---- Page export ----------------------------------------------------------------------------------------------------------------
def export_page(client, cfg):
    """Write output_dir/index.{ext} for cfg.page_id and download its media. Returns the number of files downloaded."""
    head = read_head(cfg)
    fetcher = TreeFetcher(client, max_workers=cfg.max_workers)

    page = client.get_page(cfg.page_id)
    log.info("Fetching blocks of %r...", page.title or str(page.id))
    blocks = fetcher.fetch_children(cfg.page_id)

    assets = AssetSet()
    renderer = make_renderer(cfg, assets, {cfg.page_id})
    document = render_document(renderer, cfg, page, blocks, head)
    write_doc(cfg.output_dir / f"index.{EXTENSIONS[cfg.output_format]}", document, cfg.output_dir)

    return AssetFetcher(client, max_workers=cfg.max_workers).fetch_all(assets, cfg.output_dir)


# ---- Database export ------------------------------------------------------------------------------------------------------------
def page_slugs(pages):
    """
    One folder name per page. Titles are not unique in a database, so a
    repeated slug gets the first 8 characters of the page id appended, then
    a counter if another title already slugified to that too.
    """
    seen, slugs = set(), {}
    for page in pages:
        base = s = slug(page.title)
        n = 1
        while s in seen:
            s = f"{base}-{str(page.id)[:8]}" + (f"-{n}" if n > 1 else "")
            n += 1
        seen.add(s)
        slugs[page.id] = s
    return slugs


def export_database(client, cfg):
    """
    Write output_dir/{slug}/index.{ext} for every page in cfg.database_id, an
    index at output_dir/_data/pages.yml, and download the media of all pages
    in one batch. Returns the number of files downloaded.
    """
    head = read_head(cfg)
    ext = EXTENSIONS[cfg.output_format]
    fetcher = TreeFetcher(client, max_workers=cfg.max_workers)

    log.info("Fetching pages of database %s...", cfg.database_id)
    pages = fetcher.fetch_database(cfg.database_id)
    log.info("%d pages in database", len(pages))

    slugs = page_slugs(pages)
    suffix = "" if ext == "html" else f"index.{ext}"
    links = {page_id: f"../{s}/{suffix}" for page_id, s in slugs.items()}

    # One AssetSet for the whole export, filled by pages rendering in parallel.
    # Paths are per block, so only repeated references from one block collapse
    assets = AssetSet()

    def render_one(page):
        renderer = make_renderer(cfg, assets, {page.id}, link_map=links, asset_prefix="../")
        path = cfg.output_dir / slugs[page.id] / f"index.{ext}"
        write_doc(path, render_document(renderer, cfg, page, page.children, head), cfg.output_dir)
        return {
            "id":               str(page.id),
            "title":            page.title,
            "slug":             slugs[page.id],
            "path":             path.relative_to(cfg.output_dir).as_posix(),
            "last_edited_time": page.last_edited_time,
        }

    with ThreadPoolExecutor(max_workers=cfg.max_workers, thread_name_prefix="render") as pool:
        index = list(pool.map(render_one, pages))

    write_yaml(cfg.output_dir / "_data" / "pages.yml", index, cfg.output_dir)
    return AssetFetcher(client, max_workers=cfg.max_workers).fetch_all(assets, cfg.output_dir)


# ---- Entry point ----------------------------------------------------------------------------------------------------------------
def main():
    logging.basicConfig(level=logging.INFO, format="%(asctime)s  %(message)s", datefmt="%H:%M:%S")

    try:
        cfg = load_config()
    except ConfigError as e:
        sys.exit(str(e))

    target = f"page {cfg.page_id}" if cfg.page_id else f"database {cfg.database_id}"
    log.info("Notion: %s  |  Output: %s (%s)", target, cfg.output_dir, cfg.output_format)

    client = NotionClient(cfg.token, timeout=cfg.timeout)
    try:
        if cfg.page_id:
            files = export_page(client, cfg)
        else:
            files = export_database(client, cfg)
    except ConfigError as e:
        sys.exit(str(e))
    except ExportError as e:
        sys.exit(f"Export failed: {e}")

    log.info("Done. %d media files downloaded.", files)


if __name__ == "__main__":
    main()
