# === FILE: bookmark_meta/parser/metadata_parser.py ===
"""Title and favicon extraction for bookmark metadata.

The goal is **not** to parse HTML like a browser. Pages are scanned with a
handful of regular expressions, which is enough for the ``<head>`` of almost
every real site and keeps the parser free of I/O and heavyweight
dependencies. Nested or deliberately obfuscated markup may be missed; the
worst case is a ``None`` field, never an exception.

Every pattern here stops at ``<`` / ``>`` boundaries, and the attribute
pattern only starts at the beginning of a name and never backs off inside one
(possessive quantifiers), so scanning stays linear in the size of the body.
Each ``<meta>`` / ``<link>`` tag is tokenized once per page.

* title: ``<title>``, then ``og:title``, then ``twitter:title``.
* favicon: ``<link rel="icon">`` (either attribute order), then
  ``apple-touch-icon``, then ``{origin}/favicon.ico``.
"""
from __future__ import annotations

import re
from collections.abc import Iterator, Sequence
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple
from urllib.parse import urljoin, urlsplit

__all__: Sequence[str] = (
    "ParsedMetadata",
    "parse_metadata",
    "extract_title",
    "extract_favicon",
    "sanitize_text",
    "sanitize_url",
    "decode_entities",
    "fallback_title",
)

TITLE_MAX_LENGTH = 200
FAVICON_URL_MAX_LENGTH = 500
UNTITLED = "Untitled Bookmark"

_TITLE_OPEN_RE = re.compile(r"<title\b[^<>]*+>", re.IGNORECASE)
_TITLE_CLOSE_RE = re.compile(r"</title\s*>", re.IGNORECASE)
_TAG_RE = re.compile(r"<(meta|link)\b([^<>]*+)>", re.IGNORECASE)
_ATTR_RE = re.compile(
    r"""(?<![-\w:.])([a-zA-Z_:][-a-zA-Z0-9_:.]*+)\s*+=\s*+(?:"([^"]*+)"|'([^']*+)'|([^\s"'=<>`]++))"""
)
_STRIP_TAGS_RE = re.compile(r"<[^<>]*+>")
_ENTITY_RE = re.compile(r"&(?:(amp|lt|gt|quot|apos);|#(\d{1,7});|#[xX]([0-9a-fA-F]{1,6});)")
_WS_CONTROL_RE = re.compile(r"[\t\n\v\f\r]")
_CONTROL_RE = re.compile(r"[\x00-\x1f\x7f-\x9f]")
_WS_RE = re.compile(r"\s+")

_NAMED_ENTITIES = {"amp": "&", "lt": "<", "gt": ">", "quot": '"', "apos": "'"}
_ICON_RELS = ("icon", "shortcut icon")
_DEFAULT_PORTS = {"http": 80, "https": 443}


@dataclass(frozen=True, slots=True)
class ParsedMetadata:
    """Immutable result of :func:`parse_metadata`."""

    title: Optional[str]
    favicon: Optional[str]

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {"title": self.title, "favicon": self.favicon}


# ---------------------------------------------------------------------------
# Text helpers
# ---------------------------------------------------------------------------


def _entity(match: re.Match[str]) -> str:
    name, dec, hexa = match.groups()
    if name:
        return _NAMED_ENTITIES[name]
    code = int(dec) if dec else int(hexa, 16)
    if code > 0x10FFFF or 0xD800 <= code <= 0xDFFF:
        return match.group(0)
    return chr(code)


def decode_entities(text: str) -> str:
    """Decode the handful of entities titles actually use, in a single pass."""
    return _ENTITY_RE.sub(_entity, text)


def sanitize_text(text: str, max_length: int = TITLE_MAX_LENGTH) -> str:
    """Strip tags, decode entities, drop control characters, collapse whitespace, truncate."""
    text = _STRIP_TAGS_RE.sub("", text)
    text = decode_entities(text)
    text = _WS_CONTROL_RE.sub(" ", text)
    text = _CONTROL_RE.sub("", text)
    text = _WS_RE.sub(" ", text).strip()
    if len(text) > max_length:
        text = text[:max_length].strip()
    return text


def sanitize_url(url: str, max_length: int = FAVICON_URL_MAX_LENGTH) -> Optional[str]:
    """Return *url* trimmed if it is an absolute http(s) URL of acceptable length."""
    candidate = url.strip()
    if not candidate or len(candidate) > max_length:
        return None
    try:
        parts = urlsplit(candidate)
        parts.port
    except ValueError:
        return None
    if parts.scheme.lower() not in _DEFAULT_PORTS or not parts.hostname:
        return None
    return candidate


def _resolve(href: str, page_url: str) -> str:
    try:
        return urljoin(page_url, href)
    except ValueError:
        return href


def _origin(page_url: str) -> Optional[str]:
    try:
        parts = urlsplit(page_url)
        port = parts.port
    except ValueError:
        return None
    scheme = parts.scheme.lower()
    host = parts.hostname
    if not scheme or not host:
        return None
    if ":" in host:
        host = f"[{host}]"
    if port is None or _DEFAULT_PORTS.get(scheme) == port:
        return f"{scheme}://{host}"
    return f"{scheme}://{host}:{port}"


# ---------------------------------------------------------------------------
# Tag scanning
# ---------------------------------------------------------------------------

_Attrs = Dict[str, Tuple[str, int]]


def _attributes(raw: str) -> Iterator[Tuple[str, str, int]]:
    """Yield ``(name, value, position)`` for each attribute of a tag body."""
    for m in _ATTR_RE.finditer(raw):
        value = next((g for g in m.groups()[1:] if g is not None), "")
        yield m.group(1).lower(), value, m.start()


def _scan_tags(html: str) -> Tuple[List[_Attrs], List[_Attrs]]:
    """Tokenize every ``<meta>`` and ``<link>`` once; returns ``(metas, links)``."""
    metas: List[_Attrs] = []
    links: List[_Attrs] = []
    for m in _TAG_RE.finditer(html):
        attrs: _Attrs = {}
        for attr, value, pos in _attributes(m.group(2)):
            attrs.setdefault(attr, (value, pos))
        if not attrs:
            continue
        (metas if m.group(1).lower() == "meta" else links).append(attrs)
    return metas, links


def _meta_content(metas: Sequence[_Attrs], key: str, value: str) -> Optional[str]:
    for attrs in metas:
        if key in attrs and "content" in attrs and attrs[key][0].strip().lower() == value:
            return attrs["content"][0]
    return None


def _link_href(links: Sequence[_Attrs], rels: Sequence[str], rel_first: Optional[bool] = None) -> Iterator[str]:
    """Hrefs of ``<link>`` tags whose rel is in *rels*, optionally by attribute order."""
    for attrs in links:
        if "rel" not in attrs or "href" not in attrs:
            continue
        rel, rel_pos = attrs["rel"]
        href, href_pos = attrs["href"]
        if " ".join(rel.lower().split()) not in rels:
            continue
        if rel_first is not None and (rel_pos < href_pos) != rel_first:
            continue
        yield href


def _title(html: str, metas: Sequence[_Attrs]) -> Optional[str]:
    candidates = []
    opening = _TITLE_OPEN_RE.search(html)
    if opening:
        closing = _TITLE_CLOSE_RE.search(html, opening.end())
        if closing:
            candidates.append(html[opening.end():closing.start()])
    candidates.append(_meta_content(metas, "property", "og:title"))
    candidates.append(_meta_content(metas, "name", "twitter:title"))

    for raw in candidates:
        if raw:
            title = sanitize_text(raw)
            if title:
                return title
    return None


def _favicon_candidates(links: Sequence[_Attrs], page_url: str) -> Iterator[str]:
    yield from _link_href(links, _ICON_RELS, rel_first=True)
    yield from _link_href(links, _ICON_RELS, rel_first=False)
    yield from _link_href(links, ("apple-touch-icon",))
    origin = _origin(page_url)
    if origin:
        yield f"{origin}/favicon.ico"


def _favicon(links: Sequence[_Attrs], page_url: str) -> Optional[str]:
    for href in _favicon_candidates(links, page_url):
        favicon = sanitize_url(_resolve(decode_entities(href.strip()), page_url))
        if favicon:
            return favicon
    return None


# ---------------------------------------------------------------------------
# Public functions
# ---------------------------------------------------------------------------


def extract_title(html: str) -> Optional[str]:
    """``<title>`` → ``og:title`` → ``twitter:title``; empty candidates fall through."""
    metas, _ = _scan_tags(html)
    return _title(html, metas)


def extract_favicon(html: str, page_url: str) -> Optional[str]:
    """First candidate that resolves to a valid http(s) URL of at most 500 characters."""
    _, links = _scan_tags(html)
    return _favicon(links, page_url)


def parse_metadata(html: str, page_url: str) -> ParsedMetadata:
    """Extract title and favicon from *html* fetched from *page_url*."""
    html = html if isinstance(html, str) else ""
    metas, links = _scan_tags(html)
    return ParsedMetadata(title=_title(html, metas), favicon=_favicon(links, page_url))


def fallback_title(url: str) -> str:
    """Hostname of *url* as a title, or ``"Untitled Bookmark"``."""
    try:
        host = urlsplit(url).hostname or ""
    except ValueError:
        host = ""
    return sanitize_text(host) or UNTITLED
