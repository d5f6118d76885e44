"""Lossy conversion of block-editor documents to HTML and plain text.

Ticket descriptions are stored as the JSON document produced by the
block-based editor used by the web client: a list of blocks, each with a
``type``, ``props``, inline ``content`` and nested ``children``. Email
notifications only need a readable rendering, so unknown block types fall
back to paragraphs and malformed entries are skipped rather than rejected.
"""
from __future__ import annotations

import json
from typing import Any, Iterable, List, Mapping, Sequence

from markupsafe import Markup, escape


LIST_BLOCK_TAGS = {
    "bulletListItem": "ul",
    "numberedListItem": "ol",
    "checkListItem": "ul",
}

INLINE_STYLE_TAGS = [
    ("bold", "strong"),
    ("italic", "em"),
    ("underline", "u"),
    ("strike", "s"),
    ("code", "code"),
]

SAFE_LINK_SCHEMES = ("http://", "https://", "mailto:", "tel:", "/", "#")


def linebreaks(value: str | Markup | None) -> Markup:
    """Convert newlines to ``<br />`` tags while keeping content safe."""

    if value is None:
        return Markup("")

    br = Markup("<br />")

    if isinstance(value, Markup):
        normalized_markup = value.replace("\r\n", "\n").replace("\r", "\n")
        return normalized_markup.replace("\n", br)

    text = str(value)
    normalized_text = text.replace("\r\n", "\n").replace("\r", "\n")
    escaped_text = escape(normalized_text)
    return escaped_text.replace("\n", br)


def parse_blocks(value: Any) -> List[Mapping[str, Any]] | None:
    """Return the block list stored in ``value`` or ``None`` if it is not one."""

    if isinstance(value, (list, tuple)):
        data: Any = value
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped.startswith("["):
            return None
        try:
            data = json.loads(stripped)
        except ValueError:
            return None
    else:
        return None

    if not isinstance(data, list):
        return None
    return [block for block in data if isinstance(block, Mapping)]


def serialize_detail(value: Any) -> str | None:
    """Normalise an incoming ticket description for storage."""

    if value is None:
        return None
    if isinstance(value, (list, tuple)):
        return json.dumps(list(value))
    text = str(value)
    return text if text.strip() else None


def _safe_href(href: Any) -> str | None:
    text = str(href or "").strip()
    if text.lower().startswith(SAFE_LINK_SCHEMES):
        return text
    return None


def _inline_to_html(content: Any) -> Markup:
    if isinstance(content, str):
        return escape(content)
    if not isinstance(content, Sequence):
        return Markup("")

    parts: List[Markup] = []
    for item in content:
        if isinstance(item, str):
            parts.append(escape(item))
            continue
        if not isinstance(item, Mapping):
            continue

        item_type = item.get("type", "text")
        if item_type == "link":
            inner = _inline_to_html(item.get("content", []))
            href = _safe_href(item.get("href"))
            if href is None:
                parts.append(inner)
            else:
                parts.append(Markup('<a href="{0}">{1}</a>').format(href, inner))
            continue

        text = escape(item.get("text", ""))
        styles = item.get("styles") or {}
        if isinstance(styles, Mapping):
            for style, tag in INLINE_STYLE_TAGS:
                if styles.get(style):
                    text = Markup("<{0}>{1}</{0}>").format(Markup(tag), text)
        parts.append(text)

    return Markup("").join(parts)


def _inline_to_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    if not isinstance(content, Sequence):
        return ""

    parts: List[str] = []
    for item in content:
        if isinstance(item, str):
            parts.append(item)
        elif isinstance(item, Mapping):
            if item.get("type") == "link":
                label = _inline_to_text(item.get("content", []))
                href = str(item.get("href") or "")
                parts.append(f"{label} ({href})" if href and href != label else label)
            else:
                parts.append(str(item.get("text", "")))
    return "".join(parts)


def _list(value: Any) -> List[Any]:
    return value if isinstance(value, list) else []


def _cell_content(cell: Any) -> Any:
    if isinstance(cell, Mapping):
        return cell.get("content", [])
    return cell


def _table_to_html(content: Any) -> Markup:
    if not isinstance(content, Mapping):
        return Markup("")
    rows: List[Markup] = []
    for row in _list(content.get("rows")):
        if not isinstance(row, Mapping):
            continue
        cells = Markup("").join(
            Markup("<td>{0}</td>").format(_inline_to_html(_cell_content(cell))) for cell in _list(row.get("cells"))
        )
        rows.append(Markup("<tr>{0}</tr>").format(cells))
    return Markup("<table><tbody>{0}</tbody></table>").format(Markup("").join(rows))


def _block_type(block: Mapping[str, Any]) -> str:
    block_type = block.get("type")
    return block_type if isinstance(block_type, str) else "paragraph"


def _props(block: Mapping[str, Any]) -> Mapping[str, Any]:
    props = block.get("props")
    return props if isinstance(props, Mapping) else {}


def _block_to_html(block: Mapping[str, Any]) -> Markup:
    block_type = _block_type(block)
    props = _props(block)
    content = block.get("content", [])

    if block_type == "heading":
        try:
            level = int(props.get("level", 1))
        except (TypeError, ValueError):
            level = 1
        level = max(1, min(level, 3))
        return Markup("<h{0}>{1}</h{0}>").format(level, _inline_to_html(content))

    if block_type in LIST_BLOCK_TAGS:
        inner = _inline_to_html(content)
        if block_type == "checkListItem":
            checked = Markup(' checked=""') if props.get("checked") else Markup("")
            inner = Markup('<input type="checkbox" disabled=""{0} /> {1}').format(checked, inner)
        children = blocks_to_html(_list(block.get("children")))
        return Markup("<li>{0}{1}</li>").format(inner, children)

    if block_type == "codeBlock":
        return Markup("<pre><code>{0}</code></pre>").format(_inline_to_text(content))

    if block_type == "quote":
        return Markup("<blockquote>{0}</blockquote>").format(_inline_to_html(content))

    if block_type == "image":
        url = _safe_href(props.get("url"))
        if url is None:
            return Markup("")
        caption = str(props.get("caption") or "")
        return Markup('<img src="{0}" alt="{1}" />').format(url, caption)

    if block_type == "table":
        return _table_to_html(content)

    return Markup("<p>{0}</p>").format(_inline_to_html(content))


def blocks_to_html(blocks: Iterable[Any]) -> Markup:
    """Render ``blocks`` as HTML, grouping adjacent list items."""

    output: List[Markup] = []
    open_list: str | None = None
    items: List[Markup] = []

    def _flush() -> None:
        nonlocal open_list, items
        if open_list and items:
            output.append(Markup("<{0}>{1}</{0}>").format(Markup(open_list), Markup("").join(items)))
        open_list = None
        items = []

    for block in blocks:
        if not isinstance(block, Mapping):
            continue
        list_tag = LIST_BLOCK_TAGS.get(_block_type(block))
        if list_tag is None:
            _flush()
            output.append(_block_to_html(block))
            children = _list(block.get("children"))
            if children:
                output.append(blocks_to_html(children))
            continue
        if list_tag != open_list:
            _flush()
            open_list = list_tag
        items.append(_block_to_html(block))

    _flush()
    return Markup("").join(output)


def blocks_to_text(blocks: Iterable[Any], *, depth: int = 0) -> str:
    """Render ``blocks`` as indented plain text."""

    lines: List[str] = []
    number = 0
    indent = "  " * depth
    for block in blocks:
        if not isinstance(block, Mapping):
            continue
        block_type = _block_type(block)
        if block_type == "table":
            content = block.get("content")
            rows = content.get("rows") if isinstance(content, Mapping) else None
            for row in _list(rows):
                if isinstance(row, Mapping):
                    cells = [_inline_to_text(_cell_content(cell)) for cell in _list(row.get("cells"))]
                    lines.append(indent + " | ".join(cells))
            continue

        text = _inline_to_text(block.get("content", []))
        if block_type == "numberedListItem":
            number += 1
            text = f"{number}. {text}"
        else:
            number = 0
            if block_type == "bulletListItem":
                text = f"- {text}"
            elif block_type == "checkListItem":
                text = f"[{'x' if _props(block).get('checked') else ' '}] {text}"
            elif block_type == "image":
                text = str(_props(block).get("caption") or _props(block).get("url") or "")
        lines.append(indent + text)

        children = _list(block.get("children"))
        if children:
            nested = blocks_to_text(children, depth=depth + 1)
            if nested:
                lines.append(nested)
    return "\n".join(lines).rstrip()


def detail_to_html(detail: Any) -> Markup:
    """Render a stored ticket description as safe HTML."""

    blocks = parse_blocks(detail)
    if blocks is not None:
        return blocks_to_html(blocks)
    if detail is None:
        return Markup("")
    return Markup("<p>{0}</p>").format(linebreaks(str(detail)))


def detail_to_text(detail: Any) -> str:
    """Render a stored ticket description as plain text."""

    blocks = parse_blocks(detail)
    if blocks is not None:
        return blocks_to_text(blocks)
    return str(detail or "").strip()
