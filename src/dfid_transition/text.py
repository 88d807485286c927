"""Text Normalization Module

Cleans text coming out of the legacy catalogue before it is published.

Key responsibilities:
  - Undo HTML entity escaping that was applied several times upstream
  - Repair UTF-8 text that was decoded as Windows-1252 (mojibake)
  - Convert abstract HTML into the markdown the publishing platform renders

None of these functions raise on unexpected input: malformed markup and
unknown byte sequences degrade to the closest textual approximation.
"""

import html
import re

from bs4 import BeautifulSoup
from bs4.element import Comment, NavigableString, PreformattedString, Tag

DEFAULT_UNESCAPE_PASSES = 3

# UTF-8 sequences as they appear after being decoded with cp1252.
ENCODING_FIXES = {
    "â€™": "’",
    "â€˜": "‘",
    "â€œ": "“",
    "â€\x9d": "”",
    "â€“": "–",
    "â€”": "—",
    "â€¦": "…",
    "â€¢": "•",
    "â€": "”",
    "Ã©": "é",
    "Ã¨": "è",
    "Ãª": "ê",
    "Ã¡": "á",
    "Ã¢": "â",
    "Ã¤": "ä",
    "Ã§": "ç",
    "Ã\xad": "í",
    "Ã®": "î",
    "Ã³": "ó",
    "Ã´": "ô",
    "Ã¶": "ö",
    "Ãº": "ú",
    "Ã¼": "ü",
    "Ã±": "ñ",
    "Ã\xa0": "à",
    "Â£": "£",
    "Â°": "°",
    "Â©": "©",
    "Â®": "®",
    "Â·": "·",
    "Â\xa0": " ",
}
# Longer sequences first so "â€™" wins over its "â€" prefix.
_ENCODING_FIX_ORDER = sorted(ENCODING_FIXES, key=len, reverse=True)

# Regex patterns (define at module level for performance)
BLANK_LINE = re.compile(r"[ \t\r\f\v]*\n\s*\n\s*")
WHITESPACE = re.compile(r"\s+")
MULTIPLE_NEWLINES = re.compile(r"\n{3,}")  # 3+ newlines
TRAILING_SPACES = re.compile(r"[ \t]+$", re.MULTILINE)

# Literal text must not turn into markdown structure.
INLINE_MARKDOWN = re.compile(r"([\\`*_])")
LEADING_BLOCK_MARKER = re.compile(r"^(\s*)([#>+-])")
LEADING_ORDERED_MARKER = re.compile(r"^(\s*\d+)([.)])(?=\s|$)")
TRAILING_HEADING_HASHES = re.compile(r"(\s)(#+)$")

DROPPED_TAGS = {"script", "style", "head", "title", "meta", "link", "noscript"}
HEADING_LEVELS = {"h1": 1, "h2": 2, "h3": 3, "h4": 4, "h5": 5, "h6": 6}
BLOCK_TAGS = {
    "p", "div", "section", "article", "main", "header", "footer",
    "aside", "figure", "figcaption", "table", "tbody", "thead", "tr",
    "dl", "dt", "dd", "address",
}
LINE_BREAKING_TAGS = BLOCK_TAGS | set(HEADING_LEVELS) | {
    "br", "hr", "ul", "ol", "li", "pre", "blockquote",
}


def unescape_entities_repeated(text: str, n: int = DEFAULT_UNESCAPE_PASSES) -> str:
    """Apply HTML entity unescaping ``n`` times.

    Upstream exports escaped some fields more than once (``&amp;amp;lt;``),
    so a single pass is not enough. Once no entities remain, further passes
    leave the text unchanged.
    """
    if not text:
        return ""
    for _ in range(n):
        text = html.unescape(text)
    return text


def fix_encoding_errors(text: str) -> str:
    """Replace known mojibake sequences with the characters they encode."""
    if not text:
        return ""
    for broken in _ENCODING_FIX_ORDER:
        if broken in text:
            text = text.replace(broken, ENCODING_FIXES[broken])
    return text


def normalize_text(text: str) -> str:
    """Unescape, repair and strip a plain-text field such as a title."""
    return fix_encoding_errors(unescape_entities_repeated(text)).strip()


def html_to_markdown(html_text: str) -> str:
    """
    Convert an HTML fragment to markdown.

    Steps:
    1. Parse with the lenient stdlib-backed parser (never raises on bad markup)
    2. Render headings, paragraphs, lists, emphasis, links and quotes
    3. Drop scripts, styles and comments; keep the text of any other tag
    4. Backslash-escape markdown characters in literal text, so ``# of``
       at the start of a paragraph stays text and never becomes a heading
    5. Collapse blank-line runs and trailing whitespace

    Args:
        html_text: HTML (or plain text) fragment

    Returns:
        Markdown string, empty if the input has no text
    """
    if not html_text or not html_text.strip():
        return ""
    soup = BeautifulSoup(html_text, "html.parser")
    return _tidy(_render_children(soup))


def _tidy(markdown: str) -> str:
    markdown = TRAILING_SPACES.sub("", markdown)
    markdown = MULTIPLE_NEWLINES.sub("\n\n", markdown)
    return markdown.strip("\n").strip()


def _render_children(node: Tag) -> str:
    return "".join(_render(child) for child in node.children)


def _escape_markdown(text: str, line_start: bool) -> str:
    text = INLINE_MARKDOWN.sub(r"\\\1", text)
    if line_start:
        text = LEADING_BLOCK_MARKER.sub(r"\1\\\2", text)
        text = LEADING_ORDERED_MARKER.sub(r"\1\\\2", text)
    return text


def _starts_line(node: NavigableString) -> bool:
    previous = node.previous_sibling
    if previous is None:
        return True
    return isinstance(previous, Tag) and (previous.name or "").lower() in LINE_BREAKING_TAGS


def _render_text(text: str, line_start: bool = True) -> str:
    # Blank lines in bare text are paragraph breaks; other whitespace collapses.
    pieces = BLANK_LINE.split(text)
    return "\n\n".join(
        _escape_markdown(WHITESPACE.sub(" ", piece), line_start or index > 0)
        for index, piece in enumerate(pieces)
    )


def _wrap(inner: str, marker: str) -> str:
    """Wrap inline content in an emphasis marker, keeping outer spaces outside."""
    stripped = inner.strip()
    if not stripped:
        return inner
    lead = " " if inner[:1].isspace() else ""
    trail = " " if inner[-1:].isspace() else ""
    return f"{lead}{marker}{stripped}{marker}{trail}"


def _block(content: str) -> str:
    content = content.strip()
    return f"\n\n{content}\n\n" if content else ""


def _render_list(node: Tag, ordered: bool) -> str:
    lines = []
    items = [child for child in node.children if isinstance(child, Tag) and child.name == "li"]
    for index, item in enumerate(items, start=1):
        marker = f"{index}." if ordered else "-"
        indent = " " * (len(marker) + 1)
        content = _tidy(_render_children(item))
        content = re.sub(r"\n\s*\n", "\n", content)
        item_lines = content.split("\n") if content else [""]
        lines.append(f"{marker} {item_lines[0]}".rstrip())
        lines.extend(f"{indent}{line}" if line else "" for line in item_lines[1:])
    return _block("\n".join(lines))


def _render(node) -> str:
    if isinstance(node, (Comment, PreformattedString)):
        return ""
    if isinstance(node, NavigableString):
        return _render_text(str(node), _starts_line(node))
    if not isinstance(node, Tag):
        return ""

    name = (node.name or "").lower()

    if name in DROPPED_TAGS:
        return ""

    if name in HEADING_LEVELS:
        text = WHITESPACE.sub(" ", _render_children(node)).strip()
        text = TRAILING_HEADING_HASHES.sub(r"\1\\\2", text)
        return _block(f"{'#' * HEADING_LEVELS[name]} {text}") if text else ""

    if name in BLOCK_TAGS:
        return _block(_render_children(node))

    if name == "br":
        return "\n"

    if name == "hr":
        return "\n\n---\n\n"

    if name in ("strong", "b"):
        return _wrap(_render_children(node), "**")

    if name in ("em", "i"):
        return _wrap(_render_children(node), "*")

    if name == "code":
        code = node.get_text()
        return f"`{code}`" if code else ""

    if name == "pre":
        code = node.get_text().strip("\n")
        return f"\n\n```\n{code}\n```\n\n" if code.strip() else ""

    if name == "a":
        text = WHITESPACE.sub(" ", _render_children(node)).strip()
        href = (node.get("href") or "").strip()
        if not href:
            return text
        return f"[{text or href}]({href})"

    if name == "img":
        src = (node.get("src") or "").strip()
        alt = (node.get("alt") or "").strip()
        return f"![{alt}]({src})" if src else alt

    if name in ("ul", "ol"):
        return _render_list(node, ordered=(name == "ol"))

    if name == "li":
        # Stray list item without a list parent.
        return _block(f"- {_tidy(_render_children(node))}")

    if name == "blockquote":
        inner = _tidy(_render_children(node))
        if not inner:
            return ""
        quoted = "\n".join(f"> {line}" if line else ">" for line in inner.split("\n"))
        return _block(quoted)

    if name in ("td", "th"):
        return _render_children(node).strip() + " "

    return _render_children(node)
