"""
Header extraction from RFC 2822 message files (.eml).

Only the fields used to correlate messages into threads are returned. The
parser is deliberately lenient: it accepts either line ending, unfolds
continuation lines, keeps every value of a repeated header and decodes
RFC 2047 encoded words, leaving any word it cannot decode as it was.
"""

import base64
import logging
import re
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)

# Headers always sit at the start of the file
HEADER_READ_LIMIT = 65536

_ENCODED_WORD = r"=\?([^?]+)\?([BbQq])\?([^?]*)\?="
_ENCODED_WORD_RE = re.compile(_ENCODED_WORD)
# RFC 2047 6.2: whitespace between adjacent encoded words is not displayed
_ADJACENT_WORDS_RE = re.compile(rf"({_ENCODED_WORD})\s+(?={_ENCODED_WORD})")
_HEX_ESCAPE_RE = re.compile(r"=([0-9A-Fa-f]{2})")
_FOLD_RE = re.compile(r"\n[ \t]+")
_MESSAGE_ID_RE = re.compile(r"<[^>]+>")

_CHARSET_ALIASES = {
    "us-ascii": "ascii",
    "iso-8859-1": "latin-1",
    "iso-8859-15": "latin-1",
}


class EmailHeaderSet(BaseModel):
    """Thread-correlation headers of one message."""
    model_config = ConfigDict(populate_by_name=True)

    message_id: Optional[str] = None
    in_reply_to: Optional[str] = None
    references: List[str] = Field(default_factory=list)
    subject: Optional[str] = None
    from_: Optional[str] = Field(default=None, alias="from")
    to: Optional[str] = None
    cc: Optional[str] = None
    date: Optional[str] = None


def _decode_word(m: re.Match) -> str:
    charset, encoding, text = m.group(1), m.group(2).upper(), m.group(3)
    try:
        if encoding == "B":
            data = base64.b64decode(text + "=" * (-len(text) % 4))
        else:
            text = _HEX_ESCAPE_RE.sub(lambda h: chr(int(h.group(1), 16)), text.replace("_", " "))
            data = text.encode("latin-1")
        codec = charset.lower()
        return data.decode(_CHARSET_ALIASES.get(codec, codec))
    except (ValueError, LookupError):
        return m.group(0)


def decode_encoded_words(value: str) -> str:
    """
    Replace RFC 2047 ``=?charset?B|Q?text?=`` words with their decoded text.

    Words with an unknown charset or undecodable payload are kept verbatim.
    """
    value = _ADJACENT_WORDS_RE.sub(lambda m: m.group(1), value)
    return _ENCODED_WORD_RE.sub(_decode_word, value)


def split_header_section(raw: bytes) -> bytes:
    """
    Return the bytes before the first blank line.

    The first CRLFCRLF or LFLF, whichever comes first, ends the headers. With
    neither present the whole buffer is treated as headers.
    """
    crlf = raw.find(b"\r\n\r\n")
    lf = raw.find(b"\n\n")
    if crlf != -1 and (lf == -1 or crlf < lf):
        return raw[:crlf]
    if lf != -1:
        return raw[:lf]
    return raw


def parse_header_lines(section: str) -> Dict[str, str]:
    """
    Unfold the header section into ``{lowercased name: value}``.

    Continuation lines (leading space or tab) join their header with a single
    space. A repeated header keeps all values, newline-joined in order. Lines
    that are neither continuations nor ``Name: value`` are ignored, as are
    continuations that follow them.
    """
    headers: Dict[str, str] = {}
    current_name: Optional[str] = None
    current_value = ""

    def flush():
        if current_name is None:
            return
        unfolded = _FOLD_RE.sub(" ", current_value).strip()
        key = current_name.lower()
        if key in headers:
            headers[key] = headers[key] + "\n" + unfolded
        else:
            headers[key] = unfolded

    for line in section.replace("\r\n", "\n").split("\n"):
        if line == "":
            break
        if line[0] in " \t":
            if current_name is not None:
                current_value += "\n" + line
            continue
        flush()
        colon = line.find(":")
        if colon > 0:
            current_name = line[:colon].strip()
            current_value = line[colon + 1:]
        else:
            current_name = None
            current_value = ""
    flush()

    return headers


def parse_references(raw: str) -> List[str]:
    """Split a References value into its ``<...>`` message identifiers."""
    return _MESSAGE_ID_RE.findall(raw)


def extract_headers(raw: bytes) -> EmailHeaderSet:
    """Build the header set from the leading bytes of a message."""
    section = split_header_section(raw).decode("utf-8", errors="replace")
    headers = parse_header_lines(section)

    def get(name: str) -> Optional[str]:
        value = headers.get(name)
        return decode_encoded_words(value.strip()) if value is not None else None

    references = get("references")
    return EmailHeaderSet(
        message_id=get("message-id"),
        in_reply_to=get("in-reply-to"),
        references=parse_references(references) if references else [],
        subject=get("subject"),
        from_=get("from"),
        to=get("to"),
        cc=get("cc"),
        date=get("date"),
    )


def parse_eml_headers(file_path: str) -> Dict[str, Any]:
    """
    Parse the thread-correlation headers of an .eml file.

    At most the first 64 KiB of the file are read.

    Args:
        file_path: Path to the message file

    Returns:
        ``{"success": True, "file_path": ..., <header fields>}`` or a failure
        dictionary with ``error``
    """
    path = Path(file_path).expanduser()
    if not path.exists():
        return {"success": False, "file_path": file_path, "error": f"File not found: {file_path}"}

    try:
        with open(path, "rb") as f:
            raw = f.read(HEADER_READ_LIMIT)
    except OSError as e:
        logger.warning(f"Cannot read {path}: {e}")
        return {"success": False, "file_path": file_path, "error": f"Failed to read file: {e}"}

    try:
        headers = extract_headers(raw)
    except Exception as e:
        logger.exception(f"Header parsing failed for {path}")
        return {"success": False, "file_path": file_path, "error": f"Failed to parse headers: {e}"}

    return {
        "success": True,
        "file_path": file_path,
        **headers.model_dump(by_alias=True)
    }
