"""
# Cardport
# Copyright (c) 2026 Dale Chapman
# Licensed under the MIT License. See LICENSE in the project root.

html_to_markdown.py

Convert Anki field HTML to Obsidian-flavoured markdown.

Anki fields are small HTML fragments with a few tool-specific extensions:
cloze deletions ({{c1::answer::hint}}) and inline sound tags
([sound:bark.mp3]). The converter runs a fixed sequence of passes; each
pass relies on the shape left by the ones before it:

1. Media: <img>, <video>, <audio> and [sound:] become placeholder tokens
2. Cloze deletions become ==highlighted== text (hint dropped)
3. Inline formatting: bold, italic, strike, code, links, breaks, wrappers
4. Block quotes
5. Ordered and unordered lists (ordered items renumbered from 1)
6. Simple tables become pipe tables; nested tables are kept as HTML
7. Headings, h6 down to h1
8. Cleanup: comments, leftover tags, entities, blank lines, outer whitespace

Media placeholders are resolved later, once the media manifest exists,
with replace_media_placeholders().

Usage:
    from cardport.html_to_markdown import ContentConverter

    converter = ContentConverter()
    result = converter.convert('<b>Dog</b><img src="dog.jpg">')
    markdown = converter.replace_media_placeholders(
        result.markdown, result.media_refs, manifest
    )
"""

from __future__ import annotations

import re
from typing import Callable, List, Optional, Tuple
from urllib.parse import unquote

from bs4 import BeautifulSoup

from cardport.config import ImportConfig
from cardport.errors import HTMLConversionError
from cardport.icons import WARNING
from cardport.models import (
    ConversionResult,
    ConversionStats,
    MediaKind,
    MediaManifest,
    MediaReference,
)


FLAGS = re.IGNORECASE | re.DOTALL

MEDIA_PLACEHOLDER = "__CARDPORT_MEDIA_{}__"
HTML_PLACEHOLDER = "__CARDPORT_HTML_{}__"

IMG_RE = re.compile(r"<img\b[^>]*>", re.IGNORECASE)
SOUND_RE = re.compile(r"\[sound:([^\]]+)\]", re.IGNORECASE)
AV_BLOCK_RE = re.compile(r"<(video|audio)\b[^>]*>.*?</\1\s*>", FLAGS)
AV_TAG_RE = re.compile(r"<(video|audio)\b[^>]*>", re.IGNORECASE)

CLOZE_RE = re.compile(r"\{\{c\d+::(.*?)(?:::(.*?))?\}\}", re.DOTALL)

BLOCKQUOTE_RE = re.compile(r"<blockquote\b[^>]*>(.*?)</blockquote\s*>", FLAGS)
# innermost list first: content may not open another list
LIST_RE = re.compile(r"<(ul|ol)\b[^>]*>((?:(?!<(?:ul|ol)\b).)*?)</\1\s*>", FLAGS)
LIST_ITEM_RE = re.compile(r"<li\b[^>]*>(.*?)(?:</li\s*>|(?=<li\b)|$)", FLAGS)
TABLE_TOKEN_RE = re.compile(r"<(/?)table\b[^>]*>", re.IGNORECASE)

COMMENT_RE = re.compile(r"<!--.*?-->", re.DOTALL)
TAG_RE = re.compile(r"</?[a-zA-Z][a-zA-Z0-9-]*(?:\s[^<>]*)?/?>")
ENTITY_BODY = r"(#\d+|#[xX][0-9a-fA-F]+|[a-zA-Z][a-zA-Z0-9]*);"
ENTITY_RE = re.compile("&" + ENTITY_BODY)
ENTITY_TAIL_RE = re.compile(ENTITY_BODY)

HTML_ENTITIES = {
    "nbsp": " ",
    "lt": "<",
    "gt": ">",
    "amp": "&",
    "quot": '"',
    "apos": "'",
    "times": "×",
    "divide": "÷",
    "copy": "©",
    "reg": "®",
    "trade": "™",
    "euro": "€",
    "pound": "£",
    "yen": "¥",
    "cent": "¢",
    "deg": "°",
    "plusmn": "±",
    "sup2": "²",
    "sup3": "³",
    "frac14": "¼",
    "frac12": "½",
    "frac34": "¾",
    "hellip": "…",
    "mdash": "—",
    "ndash": "–",
    "larr": "←",
    "rarr": "→",
}


def _element(name: str) -> re.Pattern:
    """<name ...>content</name>, without matching longer tag names."""
    return re.compile(rf"<{name}(?:\s[^>]*)?>(.*?)</{name}\s*>", FLAGS)


def _open_close(name: str) -> re.Pattern:
    return re.compile(rf"</?{name}(?:\s[^>]*)?/?>", re.IGNORECASE)


# (pattern, replacement) pairs, applied in order
INLINE_RULES: List[Tuple[re.Pattern, str]] = [
    (_element("b"), r"**\1**"),
    (_element("strong"), r"**\1**"),
    (_element("i"), r"*\1*"),
    (_element("em"), r"*\1*"),
    (_element("u"), r"**\1**"),
    (_element("s"), r"~~\1~~"),
    (_element("strike"), r"~~\1~~"),
    (_element("del"), r"~~\1~~"),
]

WRAPPER_RULES: List[Tuple[re.Pattern, str]] = [
    (re.compile(r"<br\s*/?>", re.IGNORECASE), "\n"),
    (re.compile(r"<hr\b[^>]*>", re.IGNORECASE), "\n---\n"),
    (_open_close("p"), "\n"),
    (_open_close("div"), "\n"),
    (_open_close("span"), ""),
    (_open_close("font"), ""),
    (_element("sup"), r"^\1^"),
    (_element("sub"), r"~\1~"),
    (_element("mark"), r"==\1=="),
    (_open_close("center"), ""),
]

PRE_RE = _element("pre")
CODE_RE = _element("code")
LINK_RE = re.compile(
    r"<a\b[^>]*?\bhref\s*=\s*([\"']?)([^\"'\s>]+)\1[^>]*>(.*?)</a\s*>", FLAGS
)


def extract_filename(src: str) -> str:
    """
    Reduce a media src attribute to the filename stored in the archive.

    Example:
        >>> extract_filename("collection.media/my%20dog.jpg?v=2")
        'my dog.jpg'
    """
    without_query = src.split("?", 1)[0].split("#", 1)[0]
    name = without_query.replace("\\", "/").rsplit("/", 1)[-1]
    return unquote(name).strip()


def _tag_attr(tag_html: str, tag_name: str, attr: str) -> str:
    """Read one attribute from a single HTML tag (quoted, unquoted or escaped)."""
    soup = BeautifulSoup(tag_html, "html.parser")
    element = soup.find(tag_name)
    if element is None:
        return ""
    value = element.get(attr)
    if value:
        return str(value)
    # <video><source src="..."></video>
    source = element.find("source")
    if source is not None and source.get(attr):
        return str(source.get(attr))
    return ""


def _decode_entity(body: str) -> Optional[str]:
    if body.startswith("#"):
        try:
            if body[1:2] in ("x", "X"):
                return chr(int(body[2:], 16))
            return chr(int(body[1:]))
        except (ValueError, OverflowError):
            return None
    return HTML_ENTITIES.get(body, HTML_ENTITIES.get(body.lower()))


def decode_entities(text: str) -> str:
    """
    Decode named entities from a fixed table plus decimal and hex references.

    An ampersand is left escaped when the text right after it would form
    another decodable entity, so "&amp;nbsp;" stays as it is and decoding
    the result again changes nothing.

    Example:
        >>> decode_entities("Tom &amp; Jerry &amp;nbsp;")
        'Tom & Jerry &amp;nbsp;'
    """
    def replace(match: re.Match) -> str:
        char = _decode_entity(match.group(1))
        if char is None:
            return match.group(0)
        if char == "&":
            following = ENTITY_TAIL_RE.match(text, match.end())
            if following and _decode_entity(following.group(1)) is not None:
                return "&amp;"
        return char

    return ENTITY_RE.sub(replace, text)


class ContentConverter:
    """
    Convert Anki field HTML to markdown.

    Holds no per-conversion state, so one instance can be shared across
    worker threads.
    """

    def __init__(self, config: Optional[ImportConfig] = None):
        self.config = config or ImportConfig()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def convert(self, html: Optional[str]) -> ConversionResult:
        """
        Run every conversion pass over one field value.

        Never fails on malformed HTML; unknown tags are stripped.

        Raises:
            HTMLConversionError: If html is not a string
        """
        if html is None:
            return ConversionResult(markdown="")
        if not isinstance(html, str):
            raise HTMLConversionError(
                message="Field content must be a string",
                context={"type": type(html).__name__},
            )

        counter = [0]
        media_refs: List[MediaReference] = []
        preserved: List[str] = []

        result = self._extract_media(html, media_refs, counter)
        result = self._convert_cloze(result)
        result = self._convert_inline(result)
        result = self._convert_blockquotes(result)
        result = self._convert_lists(result)
        result = self._convert_tables(result, preserved)
        result = self._convert_headings(result)
        result = self._cleanup(result)

        for index, block in enumerate(preserved):
            result = result.replace(HTML_PLACEHOLDER.format(index), block)

        if self.config.verbose:
            print(f"[convert] {len(html)} chars -> {len(result)} chars, {len(media_refs)} media")

        return ConversionResult(
            markdown=result,
            media_refs=media_refs,
            preserved_html=preserved,
            stats=ConversionStats(
                original_length=len(html),
                markdown_length=len(result),
                media_count=len(media_refs),
                preserved_tables=len(preserved),
            ),
        )

    def replace_media_placeholders(
        self,
        markdown: str,
        media_refs: List[MediaReference],
        manifest: Optional[MediaManifest],
        warnings: Optional[List[str]] = None,
    ) -> str:
        """
        Swap placeholders for embeds of the saved media paths.

        Placeholders whose file is not in the manifest are removed and
        reported, never left in the output.
        """
        result = markdown
        for ref in media_refs:
            entry = manifest.lookup(ref.original_name) if manifest is not None else None
            if entry is not None:
                result = result.replace(ref.placeholder, self._embed(ref.original_name, entry.saved_path))
                continue

            message = f"Media not found in manifest, dropped: {ref.original_name}"
            print(f"[convert:warn] {WARNING} {message}")
            if warnings is not None:
                warnings.append(message)
            result = result.replace(ref.placeholder, "")

        return result

    # ------------------------------------------------------------------
    # Pass 1: media
    # ------------------------------------------------------------------

    def _extract_media(self, html: str, refs: List[MediaReference], counter: List[int]) -> str:
        def make(kind: MediaKind) -> Callable[[str], str]:
            def add(src: str) -> str:
                name = extract_filename(src)
                if not name:
                    return ""
                placeholder = MEDIA_PLACEHOLDER.format(counter[0])
                counter[0] += 1
                refs.append(MediaReference(original_name=name, placeholder=placeholder, kind=kind))
                return placeholder
            return add

        add_image = make(MediaKind.IMAGE)
        add_audio = make(MediaKind.AUDIO)
        add_video = make(MediaKind.VIDEO)

        def replace_img(match: re.Match) -> str:
            src = _tag_attr(match.group(0), "img", "src")
            return add_image(src) if src else match.group(0)

        def replace_av(match: re.Match) -> str:
            tag = match.group(1).lower()
            src = _tag_attr(match.group(0), tag, "src")
            if not src:
                return ""
            return add_video(src) if tag == "video" else add_audio(src)

        result = IMG_RE.sub(replace_img, html)
        result = SOUND_RE.sub(lambda m: add_audio(m.group(1).strip()), result)
        result = AV_BLOCK_RE.sub(replace_av, result)
        result = AV_TAG_RE.sub(replace_av, result)
        return result

    # ------------------------------------------------------------------
    # Pass 2: cloze
    # ------------------------------------------------------------------

    def _convert_cloze(self, text: str) -> str:
        mark = self.config.cloze_mark
        return CLOZE_RE.sub(lambda m: f"{mark}{m.group(1)}{mark}", text)

    # ------------------------------------------------------------------
    # Pass 3: inline formatting
    # ------------------------------------------------------------------

    def _convert_inline(self, text: str) -> str:
        result = PRE_RE.sub(self._replace_pre, text)
        result = CODE_RE.sub(r"`\1`", result)

        for pattern, replacement in INLINE_RULES:
            result = pattern.sub(replacement, result)

        result = LINK_RE.sub(self._replace_link, result)

        for pattern, replacement in WRAPPER_RULES:
            result = pattern.sub(replacement, result)

        return result

    @staticmethod
    def _replace_pre(match: re.Match) -> str:
        content = re.sub(r"</?code\b[^>]*>", "", match.group(1), flags=re.IGNORECASE)
        content = re.sub(r"<br\s*/?>", "\n", content, flags=re.IGNORECASE)
        return "\n```\n" + content.strip("\n") + "\n```\n"

    @staticmethod
    def _replace_link(match: re.Match) -> str:
        url = match.group(2)
        text = match.group(3).strip()
        # [P77] inside a link would otherwise render as [[P77]](url)
        if text.startswith("["):
            text = text[1:]
        if text.endswith("]"):
            text = text[:-1]
        return f"[{text}]({url})"

    # ------------------------------------------------------------------
    # Pass 4: block quotes
    # ------------------------------------------------------------------

    def _convert_blockquotes(self, text: str) -> str:
        def replace(match: re.Match) -> str:
            lines = match.group(1).strip().split("\n")
            return "\n" + "\n".join(f"> {line}" for line in lines) + "\n"

        return BLOCKQUOTE_RE.sub(replace, text)

    # ------------------------------------------------------------------
    # Pass 5: lists
    # ------------------------------------------------------------------

    def _convert_lists(self, text: str) -> str:
        def replace(match: re.Match) -> str:
            ordered = match.group(1).lower() == "ol"
            items = [m.group(1).strip() for m in LIST_ITEM_RE.finditer(match.group(2))]

            lines = []
            for number, item in enumerate(items, start=1):
                marker = f"{number}. " if ordered else "- "
                indent = " " * len(marker)
                item_lines = [line for line in item.split("\n") if line.strip()] or [""]
                lines.append(marker + item_lines[0].strip())
                lines.extend(indent + line for line in item_lines[1:])

            return "\n" + "\n".join(lines) + "\n"

        # Nested lists convert innermost first; each round removes one level
        previous = None
        result = text
        while previous != result:
            previous = result
            result = LIST_RE.sub(replace, result)

        return re.sub(r"</?li\b[^>]*>", "", result, flags=re.IGNORECASE)

    # ------------------------------------------------------------------
    # Pass 6: tables
    # ------------------------------------------------------------------

    def _convert_tables(self, text: str, preserved: List[str]) -> str:
        spans = self._outer_table_spans(text)
        if not spans:
            return text

        parts = []
        cursor = 0
        for start, end, nested in spans:
            parts.append(text[cursor:start])
            table_html = text[start:end]

            converted = None
            if not nested and self.config.convert_simple_tables:
                converted = self._table_to_markdown(table_html)

            if converted is not None:
                parts.append(converted)
            elif self.config.preserve_complex_tables:
                parts.append(HTML_PLACEHOLDER.format(len(preserved)))
                preserved.append(table_html)
            else:
                parts.append(table_html)

            cursor = end

        parts.append(text[cursor:])
        return "".join(parts)

    @staticmethod
    def _outer_table_spans(text: str) -> List[Tuple[int, int, bool]]:
        """(start, end, has_nested_table) for each outermost <table> element."""
        spans = []
        depth = 0
        start = 0
        nested = False
        for match in TABLE_TOKEN_RE.finditer(text):
            closing = match.group(1) == "/"
            if not closing:
                if depth == 0:
                    start = match.start()
                    nested = False
                else:
                    nested = True
                depth += 1
            elif depth > 0:
                depth -= 1
                if depth == 0:
                    spans.append((start, match.end(), nested))
        return spans

    @staticmethod
    def _table_to_markdown(table_html: str) -> Optional[str]:
        soup = BeautifulSoup(table_html, "html.parser")
        rows = []
        for tr in soup.find_all("tr"):
            cells = []
            for cell in tr.find_all(["th", "td"]):
                content = " ".join(cell.decode_contents().split())
                cells.append(content.replace("|", "\\|"))
            if cells:
                rows.append(cells)

        if not rows:
            return None

        width = max(len(row) for row in rows)
        lines = []
        for index, row in enumerate(rows):
            row = row + [""] * (width - len(row))
            lines.append("| " + " | ".join(row) + " |")
            if index == 0:
                lines.append("| " + " | ".join(["---"] * width) + " |")

        return "\n" + "\n".join(lines) + "\n"

    # ------------------------------------------------------------------
    # Pass 7: headings
    # ------------------------------------------------------------------

    def _convert_headings(self, text: str) -> str:
        result = text
        for level in range(6, 0, -1):
            pattern = _element(f"h{level}")
            hashes = "#" * level
            result = pattern.sub(
                lambda m, h=hashes: f"\n{h} {' '.join(m.group(1).split())}\n", result
            )
        return result

    # ------------------------------------------------------------------
    # Pass 8: cleanup
    # ------------------------------------------------------------------

    def _cleanup(self, text: str) -> str:
        result = text.replace("\r\n", "\n").replace("\r", "\n")
        result = COMMENT_RE.sub("", result)
        # Tags go before entity decoding so &lt;b&gt; survives as text
        result = TAG_RE.sub("", result)
        result = decode_entities(result)
        result = re.sub(r"\n{3,}", "\n\n", result)
        return result.strip()

    # ------------------------------------------------------------------
    # Media embeds
    # ------------------------------------------------------------------

    def _embed(self, original_name: str, saved_path: str) -> str:
        if self.config.media_format == "markdown":
            return f"![{original_name}]({saved_path.replace(' ', '%20')})"
        return f"![[{saved_path}]]"


def convert_anki_html_to_markdown(
    html: str,
    manifest: Optional[MediaManifest] = None,
    config: Optional[ImportConfig] = None,
) -> str:
    """
    One-shot conversion: HTML -> markdown with media embeds resolved.

    Example:
        >>> convert_anki_html_to_markdown("The capital is {{c1::Paris}}.")
        'The capital is ==Paris==.'
    """
    converter = ContentConverter(config)
    result = converter.convert(html)
    if not result.media_refs:
        return result.markdown
    return converter.replace_media_placeholders(result.markdown, result.media_refs, manifest)
