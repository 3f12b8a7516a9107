"""
Extraction helpers for XML property lists as printed by ``plutil -convert xml1``.

Only a narrow, fixed subset of the format is needed: the inner content of
``<dict>`` blocks and the scalar that immediately follows a ``<key>``. Blocks
nest, so every block boundary is found by counting open and close tags
rather than by a single regular expression; a non-greedy match would stop
at the first ``</dict>`` of a nested sibling.
"""

import re
from typing import List, Optional, Tuple
from xml.sax.saxutils import unescape

DICT_TAG = "dict"
NESTING_TAGS = (DICT_TAG, "array")


def _tags(tag: str) -> Tuple[str, str]:
    return f"<{tag}>", f"</{tag}>"


def _find_block_end(text: str, start: int, tag: str = DICT_TAG) -> Optional[int]:
    """
    Find the close tag matching an open tag whose content begins at ``start``.

    Args:
        text: Document being scanned
        start: Index just past the opening tag
        tag: Block tag name

    Returns:
        Index of the matching close tag, or None if the block is unterminated
    """
    open_tag, close_tag = _tags(tag)
    depth = 1
    cur = start
    while depth > 0:
        next_close = text.find(close_tag, cur)
        if next_close == -1:
            return None
        next_open = text.find(open_tag, cur)
        if next_open != -1 and next_open < next_close:
            depth += 1
            cur = next_open + len(open_tag)
        else:
            depth -= 1
            if depth == 0:
                return next_close
            cur = next_close + len(close_tag)
    return None


def top_level_spans(document: str, tag: str = DICT_TAG) -> List[Tuple[int, int]]:
    """
    Locate every top-level block as ``(content_start, content_end)`` offsets.

    Scanning stops at the first unterminated block; complete blocks found
    before it are kept.
    """
    open_tag, close_tag = _tags(tag)
    spans = []
    pos = 0
    while True:
        open_idx = document.find(open_tag, pos)
        if open_idx == -1:
            break
        content_start = open_idx + len(open_tag)
        close_idx = _find_block_end(document, content_start, tag)
        if close_idx is None:
            break
        spans.append((content_start, close_idx))
        pos = close_idx + len(close_tag)
    return spans


def extract_top_level_blocks(document: str, tag: str = DICT_TAG) -> List[str]:
    """
    Return the inner content of every top-level ``<tag>`` block.

    The delimiters themselves are excluded, so wrapping each result in
    ``<tag>``/``</tag>`` reproduces the original span exactly.

    Args:
        document: Markup document, e.g. an XML plist
        tag: Block tag name (default ``dict``)

    Returns:
        List of block contents in document order
    """
    return [document[start:end] for start, end in top_level_spans(document, tag)]


def _key_pattern(key: str, value_pattern: str) -> re.Pattern:
    return re.compile(rf"<key>{re.escape(key)}</key>\s*{value_pattern}")


def _value_after_key(content: str, key: str, value_pattern: str) -> Optional[re.Match]:
    return _key_pattern(key, value_pattern).search(content)


def _next_open_tag(content: str, pos: int, tags: Tuple[str, ...]) -> Optional[Tuple[int, str]]:
    hits = []
    for tag in tags:
        idx = content.find(f"<{tag}>", pos)
        if idx != -1:
            hits.append((idx, tag))
    return min(hits) if hits else None


def _direct_value_after_key(
    content: str,
    key: str,
    value_pattern: str,
    tags: Tuple[str, ...] = NESTING_TAGS
) -> Optional[re.Match]:
    """Like ``_value_after_key`` but skips keys inside nested blocks."""
    pattern = _key_pattern(key, value_pattern)
    pos = 0
    while True:
        m = pattern.search(content, pos)
        if not m:
            return None
        nested = _next_open_tag(content, pos, tags)
        if nested is None or m.start() < nested[0]:
            return m
        open_idx, tag = nested
        open_tag, close_tag = _tags(tag)
        close_idx = _find_block_end(content, open_idx + len(open_tag), tag)
        if close_idx is None:
            return None
        pos = close_idx + len(close_tag)


def extract_string_after_key(content: str, key: str) -> Optional[str]:
    """Extract the ``<string>`` value after ``<key>key</key>``."""
    m = _value_after_key(content, key, r"<string>([^<]*)</string>")
    return unescape(m.group(1).strip(), {"&quot;": '"', "&apos;": "'"}) if m else None


def extract_date_after_key(content: str, key: str) -> Optional[str]:
    """Extract the ``<date>`` value after ``<key>key</key>`` as its ISO-8601 text."""
    m = _value_after_key(content, key, r"<date>([^<]*)</date>")
    return m.group(1).strip() if m else None


def extract_bool_after_key(content: str, key: str) -> Optional[bool]:
    """Extract ``<true/>`` or ``<false/>`` after ``<key>key</key>``."""
    m = _value_after_key(content, key, r"<(true|false)/>")
    if not m:
        return None
    return m.group(1) == "true"


def extract_integer_after_key(content: str, key: str) -> Optional[int]:
    """Extract the ``<integer>`` value after ``<key>key</key>``."""
    m = _value_after_key(content, key, r"<integer>\s*([-+]?\d+)\s*</integer>")
    return int(m.group(1)) if m else None


def extract_real_after_key(content: str, key: str) -> Optional[float]:
    """Extract the ``<real>`` value after ``<key>key</key>``."""
    m = _value_after_key(content, key, r"<real>([^<]*)</real>")
    if not m:
        return None
    try:
        return float(m.group(1).strip())
    except ValueError:
        return None


def extract_sub_block_after_key(
    content: str,
    key: str,
    tag: str = DICT_TAG,
    direct: bool = False
) -> Optional[str]:
    """
    Extract the inner content of the ``<tag>`` block following ``<key>key</key>``.

    Nested blocks inside the sub-block are skipped by depth counting.

    Args:
        content: Block content to search
        key: Key label, matched literally
        tag: Tag of the value block
        direct: Only accept a key that sits directly in ``content``, not
            inside one of its nested dictionaries or arrays

    Returns:
        Inner content, or None if the key, the block or its close tag is missing
    """
    open_tag, _ = _tags(tag)
    find = _direct_value_after_key if direct else _value_after_key
    m = find(content, key, re.escape(open_tag))
    if not m:
        return None
    start = m.end()
    end = _find_block_end(content, start, tag)
    if end is None:
        return None
    return content[start:end]


def strip_nested_blocks(content: str, tags: Tuple[str, ...] = NESTING_TAGS) -> str:
    """
    Drop the bodies of nested ``<dict>``/``<array>`` blocks from ``content``.

    The open and close tags stay in place, so a key that introduces a nested
    block still sees one. Scalar lookups on the result only match keys that
    sit directly in ``content``. An unterminated nested block is cut off
    together with everything after it.
    """
    parts = []
    pos = 0
    while True:
        nested = _next_open_tag(content, pos, tags)
        if nested is None:
            parts.append(content[pos:])
            break
        open_idx, tag = nested
        open_tag, close_tag = _tags(tag)
        body_start = open_idx + len(open_tag)
        close_idx = _find_block_end(content, body_start, tag)
        parts.append(content[pos:body_start])
        if close_idx is None:
            break
        parts.append(close_tag)
        pos = close_idx + len(close_tag)
    return "".join(parts)
