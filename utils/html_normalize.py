"""
HTML decoding and minimisation helpers used by the page fetcher.

Charset detection order:
1. In-document declaration (<meta charset> / http-equiv)
2. Charset parameter of the Content-Type response header
3. Statistical detection (charset-normalizer)
4. UTF-8 with replacement characters
"""

import re
from typing import Optional, Tuple

from bs4 import BeautifulSoup, Comment, UnicodeDammit
from bs4.dammit import EncodingDetector
from charset_normalizer import from_bytes

FALLBACK_ENCODING = "utf-8"
JSON_LD_TYPE = "application/ld+json"

_CHARSET_PARAM = re.compile(r"charset\s*=\s*[\"']?([\w.:-]+)", re.IGNORECASE)
_WORD = re.compile(r"\w+", re.UNICODE)


def charset_from_content_type(content_type: Optional[str]) -> Optional[str]:
    """Return the charset parameter of a Content-Type header, if any."""
    if not content_type:
        return None
    match = _CHARSET_PARAM.search(content_type)
    return match.group(1).lower() if match else None


def primary_mime_type(content_type: Optional[str]) -> str:
    """``text/html; charset=utf-8`` -> ``text/html``"""
    if not content_type:
        return ""
    return content_type.split(";", 1)[0].strip().lower()


def decode_html(body: bytes, content_type: Optional[str] = None) -> Tuple[str, str]:
    """
    Decode a response body to text.

    Args:
        body: Raw response bytes
        content_type: Content-Type header value

    Returns:
        Tuple of (text, encoding_used)
    """
    if not body:
        return "", FALLBACK_ENCODING

    declared = EncodingDetector.find_declared_encoding(body, is_html=True)
    header = charset_from_content_type(content_type)
    known = [enc for enc in (declared, header) if enc]
    if not known:
        best = from_bytes(body).best()
        if best is not None and best.encoding:
            known.append(best.encoding)

    dammit = UnicodeDammit(body, known_definite_encodings=known, is_html=True)
    if dammit.unicode_markup is not None:
        return dammit.unicode_markup, (dammit.original_encoding or FALLBACK_ENCODING).lower()

    return body.decode(FALLBACK_ENCODING, errors="replace"), FALLBACK_ENCODING


def _is_json_ld(tag) -> bool:
    script_type = (tag.get("type") or "").split(";", 1)[0].strip().lower()
    return script_type == JSON_LD_TYPE


def strip_active_content(html: str) -> str:
    """
    Remove scripts, styles, noscript blocks and comments.

    JSON-LD script blocks are data, not code, and are kept.
    """
    if not html:
        return ""

    soup = BeautifulSoup(html, "lxml")

    for tag in soup.find_all(["script", "style", "noscript"]):
        if tag.name == "script" and _is_json_ld(tag):
            continue
        tag.decompose()

    for comment in soup.find_all(string=lambda text: isinstance(text, Comment)):
        comment.extract()

    return str(soup)


def count_words(text: str, min_length: int = 3) -> int:
    """Count words of at least ``min_length`` characters."""
    return sum(1 for word in _WORD.findall(text) if len(word) >= min_length)
