"""
Render a resolved Notion block tree to HTML.

Block payloads are read straight from Node.data (API version 2022-06-28, so
text lives under "rich_text"). Media blocks register a Downloadable in the
shared AssetSet and point their src at the local copy. The AssetSet is
the only shared state, so several renderers may run on different threads at
once.

Notion has no list container block: a list is just consecutive
bulleted_list_item (or numbered_list_item) siblings. We group those back
into a single <ul>/<ol> so the markup matches what Notion displays.
"""

import html
import itertools
import logging
import unicodedata
from datetime import date, datetime, timezone

from .assets import Downloadable
from .ids import NotionId
from .models import plain_text

log = logging.getLogger("notion-export")

HEADING_ANCHORS = ("none", "before", "after")
LIST_TYPES      = {"bulleted_list_item": "ul", "numbered_list_item": "ol"}


def esc(text):
    return html.escape(text, quote=False)


def attr(text):
    return html.escape(str(text), quote=True)


def class_attr(cls):
    return f' class="{attr(cls)}"' if cls else ""


class HtmlRenderer:
    def __init__(self, assets, heading_anchors="none", anchor_icon="#",
                 current_pages=(), link_map=None, asset_prefix=""):
        if heading_anchors not in HEADING_ANCHORS:
            raise ValueError(f"heading_anchors must be one of {', '.join(HEADING_ANCHORS)}")
        self.assets = assets
        self.heading_anchors = heading_anchors
        self.anchor_icon = anchor_icon
        # Pages rendered into the same document: links to them become #fragments
        self.current_pages = frozenset(current_pages)
        self.link_map = dict(link_map or {})
        # Prepended to media paths when the document lives below the output root
        self.asset_prefix = asset_prefix

    # ---- Documents ----------------------------------------------------------------------------------------------------
    def render_document(self, page, blocks, head=""):
        """A complete standalone HTML page: doctype, head partial, title, body."""
        title = page.title if page is not None else ""
        body = self.render_page(page, blocks) if page is not None else self.render_blocks(blocks)
        return (
            "<!DOCTYPE html>"
            '<html lang="en"><head>'
            '<meta charset="utf-8">'
            '<meta name="viewport" content="width=device-width, initial-scale=1">'
            f"<title>{esc(title)}</title>"
            f"{head}"
            f"</head><body><main>{body}</main></body></html>"
        )

    def render_page(self, page, blocks):
        """Page title as <h1>, then the page body with every heading pushed down one level."""
        return self.render_heading(page.id, None, 1, page.title_rich_text) + self.render_blocks(blocks, downgrade=1)

    def render_blocks(self, blocks, cls=None, downgrade=0):
        out = []
        # Consecutive list items of one type share a group; everything else is its own group
        groups = itertools.groupby(blocks, key=lambda b: b.type if b.type in LIST_TYPES else id(b))
        for key, group in groups:
            group = list(group)
            if key in LIST_TYPES:
                out.append(self.render_list(LIST_TYPES[key], group, cls, downgrade))
            else:
                out.append(self.render_block(group[0], cls, downgrade))
        return "".join(out)

    def render_list(self, tag, items, cls, downgrade):
        lis = "".join(
            f'<li id="{item.id}">{self.render_rich_text(item.content.get("rich_text", []))}'
            f"{self.render_blocks(item.children, cls, downgrade)}</li>"
            for item in items
        )
        return f"<{tag}{class_attr(cls)}>{lis}</{tag}>"

    # ---- Blocks -------------------------------------------------------------------------------------------------------
    def render_block(self, block, cls=None, downgrade=0):
        content, ty = block.content, block.type
        text = content.get("rich_text", [])

        if ty in ("heading_1", "heading_2", "heading_3"):
            return self.render_heading(block.id, cls, int(ty[-1]) + downgrade, text)

        if ty == "divider":
            return f'<hr id="{block.id}">'

        if ty == "paragraph":
            if not block.children:
                return f'<p id="{block.id}"{class_attr(cls)}>{self.render_rich_text(text)}</p>'
            # <p> cannot nest, so a paragraph with children becomes a wrapper div
            log.warning("Paragraph %s has children; rendering them as an indented div", block.id)
            return (
                f'<div id="{block.id}"{class_attr(cls)}><p>{self.render_rich_text(text)}</p>'
                f'{self.render_blocks(block.children, "indent", downgrade)}</div>'
            )

        if ty == "quote":
            return (
                f'<blockquote id="{block.id}">{self.render_rich_text(text)}'
                f'{self.render_blocks(block.children, "indent", downgrade)}</blockquote>'
            )

        if ty == "code":
            language = content.get("language") or "plain text"
            return (
                f'<pre id="{block.id}"><code class="language-{attr(language.replace(" ", "-"))}">'
                f"{esc(plain_text(text))}</code></pre>"
            )

        if ty == "to_do":
            checked = " checked" if content.get("checked") else ""
            return (
                f'<div id="{block.id}" class="to-do"><input type="checkbox" disabled{checked}> '
                f'{self.render_rich_text(text)}{self.render_blocks(block.children, "indent", downgrade)}</div>'
            )

        if ty == "image":
            src = self._register(content, block.id)
            caption = content.get("caption") or []
            if caption:
                return (
                    f'<figure id="{block.id}"><img src="{attr(src)}">'
                    f"<figcaption>{self.render_rich_text(caption)}</figcaption></figure>"
                )
            log.warning("Image %s has no caption; screen readers get no description", block.id)
            return f'<img id="{block.id}" src="{attr(src)}">'

        if ty == "video":
            src = self._register(content, block.id)
            caption = content.get("caption") or []
            if caption:
                return (
                    f'<figure id="{block.id}"><video controls src="{attr(src)}">'
                    "<p>Unfortunately looks like your browser doesn't support videos."
                    f'<a href="{attr(src)}">But no worries you can click me to download the video!</a></p>'
                    f"</video><figcaption>{self.render_rich_text(caption)}</figcaption></figure>"
                )
            log.warning("Video %s has no caption; screen readers get no description", block.id)
            return f'<video id="{block.id}" src="{attr(src)}"></video>'

        if ty == "callout":
            return (
                f'<aside id="{block.id}"><div>{self.render_icon(content.get("icon") or {}, block.id)}</div>'
                f"<div><p>{self.render_rich_text(text)}</p>"
                f'{self.render_blocks(block.children, "indent", downgrade)}</div></aside>'
            )

        log.warning("Block %s has unsupported type %s", block.id, ty)
        return (
            f'<h4 id="{block.id}" style="color: red;"{class_attr(cls)}>'
            f"UNSUPPORTED FEATURE: {esc(ty or block.object)}</h4>"
        )

    def render_heading(self, block_id, cls, level, text):
        level = min(level, 6)
        content = self.render_rich_text(text)
        if self.heading_anchors != "none":
            icon = f'<a href="#{block_id}">{esc(self.anchor_icon)}</a>'
            content = f"{icon} {content}" if self.heading_anchors == "before" else f"{content} {icon}"
        return f'<h{level} id="{block_id}"{class_attr(cls)}>{content}</h{level}>'

    def render_icon(self, icon, block_id):
        if icon.get("type") == "emoji":
            glyph = icon.get("emoji", "")
            name = unicodedata.name(glyph[0], "") if glyph else ""
            label = f' aria-label="{attr(name.lower())}"' if name else ""
            return f'<span role="img"{label}>{esc(glyph)}</span>'
        if icon.get("type") in ("file", "external"):
            log.warning("Callout %s uses an image icon, which has no alt text", block_id)
            return f'<img src="{attr(self._register(icon, block_id))}">'
        return ""

    def _register(self, file_obj, block_id):
        """Turn a Notion file object into a Downloadable, record it, return the local src."""
        url = (file_obj.get(file_obj.get("type")) or {}).get("url")
        downloadable = Downloadable.for_block(url, block_id)
        self.assets.insert(downloadable)
        return self.asset_prefix + downloadable.src_path

    # ---- Rich text ----------------------------------------------------------------------------------------------------
    def render_rich_text(self, rich_text):
        return "".join(self.render_segment(segment) for segment in rich_text)

    def render_segment(self, segment):
        ty = segment.get("type")
        if ty == "text":
            text = segment.get("text") or {}
            body = esc(text.get("content", ""))
            link = text.get("link")
            if link and link.get("url"):
                body = f"{self.link_opening(link['url'])}{body}</a>"
            return self._annotate(body, segment.get("annotations") or {})

        if ty == "equation":
            expression = (segment.get("equation") or {}).get("expression", "")
            return f'<span class="equation">{esc(expression)}</span>'

        if ty == "mention":
            return self.render_mention(segment)

        return esc(segment.get("plain_text", ""))

    @staticmethod
    def _annotate(body, annotations):
        # Nesting order matters: bold is outermost, code innermost
        if annotations.get("code"):
            body = f"<code>{body}</code>"
        if annotations.get("underline"):
            body = f'<span class="underline">{body}</span>'
        if annotations.get("strikethrough"):
            body = f"<del>{body}</del>"
        if annotations.get("italic"):
            body = f"<em>{body}</em>"
        if annotations.get("bold"):
            body = f"<strong>{body}</strong>"
        return body

    def render_mention(self, segment):
        mention = segment.get("mention") or {}
        ty = mention.get("type")
        text = esc(segment.get("plain_text", ""))

        if ty in ("page", "database"):
            page_id = (mention.get(ty) or {}).get("id")
            try:
                return f"{self.internal_link(NotionId.parse(page_id), None)}{text}</a>"
            except ValueError:
                return text

        if ty == "date":
            when = mention.get("date") or {}
            out = html_time(when.get("start", ""))
            if when.get("end"):
                out += " to " + html_time(when["end"])
            return out

        if ty == "link_preview":
            url = (mention.get("link_preview") or {}).get("url", "")
            return f"{self.external_link(url)}{esc(url)}</a>"

        return text

    # ---- Links --------------------------------------------------------------------------------------------------------
    def link_opening(self, url):
        """
        Notion writes links to its own pages as "/{page_id}" or
        "/{page_id}#{block_id}"; anything else is an external URL.
        """
        if url.startswith("/"):
            page, _, block = url[1:].partition("#")
            try:
                return self.internal_link(NotionId.parse(page), block or None)
            except ValueError:
                log.warning("Link %s looks internal but has no valid page id", url)
        return self.external_link(url)

    def internal_link(self, page, block):
        if page in self.current_pages:
            return f'<a href="#{attr(block or page)}">'
        href = self.link_map.get(page, f"/{page}")
        if block:
            href += f"#{block}"
        return f'<a href="{attr(href)}">'

    @staticmethod
    def external_link(url):
        return f'<a href="{attr(url)}" target="_blank" rel="noreferrer noopener">'


def html_time(value):
    """<time datetime=...> with a readable label: "December 6, 2021" or "December 6, 2021 03:04 pm" (UTC)."""
    try:
        if "T" in value:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00")).astimezone(timezone.utc)
            label = f"{parsed:%B} {parsed.day}, {parsed.year} {parsed:%I:%M} {parsed:%p}".replace(
                "AM", "am").replace("PM", "pm")
        else:
            parsed = date.fromisoformat(value)
            label = f"{parsed:%B} {parsed.day}, {parsed.year}"
    except ValueError:
        label = value
    return f'<time datetime="{attr(value)}">{esc(label)}</time>'
