"""
Sanitizers for admin-submitted settings.

- plain text: markup stripped (script/style bodies dropped), entities decoded,
  whitespace collapsed
- post HTML: a small allowlist of formatting tags and link attributes
- URLs: http(s)/ftp(s)/mailto only; anything malformed becomes ""

Every sanitizer is idempotent: applying it to its own output is a no-op.
"""

from __future__ import annotations

import html
import re
from html.parser import HTMLParser
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple
from urllib.parse import urlsplit, urlunsplit

from pydantic import BaseModel

from gdpr.core.privacy.models import ConsentTab, HostEntry


DROP_CONTENT_TAGS = {
    "script",
    "style",
    "iframe",
    "object",
    "embed",
    "applet",
    "noscript",
    "template",
    "textarea",
    "select",
    "title",
    "svg",
    "math",
    "frameset",
    "frame",
}

GLOBAL_ATTRS = {"class", "title", "lang", "dir"}

ALLOWED_TAGS: Dict[str, set[str]] = {
    "a": {"href", "target", "rel", "name"},
    "abbr": set(),
    "b": set(),
    "blockquote": {"cite"},
    "br": set(),
    "code": set(),
    "dd": set(),
    "del": set(),
    "dl": set(),
    "dt": set(),
    "em": set(),
    "h1": set(),
    "h2": set(),
    "h3": set(),
    "h4": set(),
    "h5": set(),
    "h6": set(),
    "hr": set(),
    "i": set(),
    "ins": set(),
    "li": set(),
    "ol": set(),
    "p": set(),
    "pre": set(),
    "q": {"cite"},
    "s": set(),
    "small": set(),
    "span": set(),
    "strong": set(),
    "sub": set(),
    "sup": set(),
    "u": set(),
    "ul": set(),
}

VOID_TAGS = {"br", "hr"}
URL_ATTRS = {"href", "cite"}
LINK_TARGETS = {"_blank", "_self", "_parent", "_top"}

ALLOWED_URL_SCHEMES = {"http", "https", "ftp", "ftps", "mailto"}
_NETWORK_SCHEMES = {"http", "https", "ftp", "ftps"}

_WS_RE = re.compile(r"[\r\n\t\f\v ]+")
_INLINE_WS_RE = re.compile(r"[\t\f\v ]+")
_URL_FORBIDDEN_RE = re.compile(r"[\s\x00-\x1f\x7f<>\"\\`{}|^]")

_MAX_ROUNDS = 16


def _until_stable(fn: Callable[[str], str], value: str) -> str:
    prev = value
    for _ in range(_MAX_ROUNDS):
        cur = fn(prev)
        if cur == prev:
            return cur
        prev = cur
    return prev


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "1" if value else ""
    return str(value)


# ---- text extraction ----
class _TextExtractor(HTMLParser):
    def __init__(self) -> None:
        super().__init__(convert_charrefs=True)
        self._skip = 0
        self._skip_tag: Optional[str] = None
        self.parts: List[str] = []

    def handle_starttag(self, tag: str, attrs: List[Tuple[str, Optional[str]]]) -> None:
        if tag in DROP_CONTENT_TAGS:
            if self._skip == 0:
                self._skip_tag = tag
            if tag == self._skip_tag:
                self._skip += 1

    def handle_startendtag(self, tag: str, attrs: List[Tuple[str, Optional[str]]]) -> None:
        return

    def handle_endtag(self, tag: str) -> None:
        if self._skip and tag == self._skip_tag:
            self._skip -= 1
            if self._skip == 0:
                self._skip_tag = None

    def handle_data(self, data: str) -> None:
        if not self._skip:
            self.parts.append(data)


def strip_all_tags(value: Any) -> str:
    """Remove every tag; bodies of script-like elements are dropped with them."""
    p = _TextExtractor()
    p.feed(_as_text(value))
    p.close()
    return "".join(p.parts)


def _text_pass(value: str) -> str:
    return _WS_RE.sub(" ", strip_all_tags(value)).strip()


def sanitize_text_field(value: Any) -> str:
    """
    Single-line plain text: no markup, decoded entities, collapsed whitespace.
    """
    return _until_stable(_text_pass, _as_text(value))


def _textarea_pass(value: str) -> str:
    text = strip_all_tags(value.replace("\r\n", "\n").replace("\r", "\n"))
    lines = [_INLINE_WS_RE.sub(" ", line).strip() for line in text.split("\n")]
    return "\n".join(lines).strip()


def sanitize_textarea_field(value: Any) -> str:
    """
    Like sanitize_text_field but keeps line breaks.
    """
    return _until_stable(_textarea_pass, _as_text(value))


# ---- urls ----
def esc_url_raw(value: Any) -> str:
    """
    Normalize a URL for storage. Malformed or non-allowlisted URLs become "".
    """
    v = _as_text(value).strip()
    if not v or _URL_FORBIDDEN_RE.search(v):
        return ""
    try:
        parts = urlsplit(v)
        scheme = parts.scheme.lower()
        if scheme not in ALLOWED_URL_SCHEMES:
            return ""
        if scheme in _NETWORK_SCHEMES:
            if not parts.hostname:
                return ""
            _ = parts.port  # raises ValueError on a bad port
        elif "@" not in parts.path:
            return ""
        return urlunsplit((scheme, parts.netloc, parts.path, parts.query, parts.fragment))
    except ValueError:
        return ""


def _safe_link(value: str) -> str:
    url = esc_url_raw(value)
    if url:
        return url
    v = str(value or "").strip()
    if v.startswith(("/", "#")) and not v.startswith("//") and not _URL_FORBIDDEN_RE.search(v):
        return v
    return ""


# ---- post html ----
class _KsesFilter(HTMLParser):
    def __init__(self) -> None:
        super().__init__(convert_charrefs=True)
        self._skip = 0
        self._skip_tag: Optional[str] = None
        self.out: List[str] = []

    def _attrs(self, tag: str, attrs: Iterable[Tuple[str, Optional[str]]]) -> str:
        allowed = ALLOWED_TAGS.get(tag, set()) | GLOBAL_ATTRS
        seen: set[str] = set()
        rendered: List[str] = []
        for name, raw in attrs:
            if name in seen or name not in allowed or raw is None:
                continue
            val = str(raw)
            if name in URL_ATTRS:
                val = _safe_link(val)
                if not val:
                    continue
            elif name == "target" and val not in LINK_TARGETS:
                continue
            seen.add(name)
            rendered.append(f' {name}="{html.escape(val, quote=True)}"')
        return "".join(rendered)

    def handle_starttag(self, tag: str, attrs: List[Tuple[str, Optional[str]]]) -> None:
        if tag in DROP_CONTENT_TAGS:
            if self._skip == 0:
                self._skip_tag = tag
            if tag == self._skip_tag:
                self._skip += 1
            return
        if self._skip or tag not in ALLOWED_TAGS:
            return
        self.out.append(f"<{tag}{self._attrs(tag, attrs)}>")

    def handle_startendtag(self, tag: str, attrs: List[Tuple[str, Optional[str]]]) -> None:
        if tag in DROP_CONTENT_TAGS or self._skip or tag not in ALLOWED_TAGS:
            return
        self.out.append(f"<{tag}{self._attrs(tag, attrs)}>")

    def handle_endtag(self, tag: str) -> None:
        if self._skip:
            if tag == self._skip_tag:
                self._skip -= 1
                if self._skip == 0:
                    self._skip_tag = None
            return
        if tag in ALLOWED_TAGS and tag not in VOID_TAGS:
            self.out.append(f"</{tag}>")

    def handle_data(self, data: str) -> None:
        if not self._skip:
            self.out.append(html.escape(data, quote=False))


def _kses_pass(value: str) -> str:
    p = _KsesFilter()
    p.feed(value)
    p.close()
    return "".join(p.out).strip()


def kses_post(value: Any) -> str:
    """
    Keep a safe subset of HTML (paragraphs, emphasis, lists, links); drop the rest.
    """
    return _until_stable(_kses_pass, _as_text(value))


# ---- scalars ----
def as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    if isinstance(value, (int, float)):
        return value != 0
    return sanitize_text_field(value).lower() in {"1", "true", "on", "yes"}


def intval(value: Any) -> int:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    m = re.match(r"^\s*([+-]?\d+)", _as_text(value))
    return int(m.group(1)) if m else 0


# ---- consent tabs ----
def _as_mapping(value: Any) -> Optional[Mapping[str, Any]]:
    if isinstance(value, BaseModel):
        return value.model_dump()
    if isinstance(value, Mapping):
        return value
    return None


def _iter_hosts(hosts: Any) -> Iterable[Any]:
    if isinstance(hosts, Mapping):
        return list(hosts.values())
    if isinstance(hosts, (list, tuple)):
        return list(hosts)
    return []


def sanitize_host(raw: Any) -> Optional[HostEntry]:
    host = _as_mapping(raw)
    if host is None:
        return None
    name = sanitize_text_field(host.get("name"))
    cookies_used = sanitize_text_field(host.get("cookies_used"))
    if not name or not cookies_used:
        return None
    return HostEntry(name=name, cookies_used=cookies_used, optout=esc_url_raw(host.get("optout")))


def sanitize_consent_tab(raw: Any) -> Optional[ConsentTab]:
    props = _as_mapping(raw)
    if props is None:
        return None
    if not _as_text(props.get("name")).strip() or not _as_text(props.get("how_we_use")).strip():
        return None
    name = sanitize_text_field(props.get("name"))
    how_we_use = kses_post(props.get("how_we_use"))
    # markup-only values carry no text; drop them as if they were never filled in
    if not name or not strip_all_tags(how_we_use).strip():
        return None
    hosts = [h for h in (sanitize_host(x) for x in _iter_hosts(props.get("hosts"))) if h is not None]
    return ConsentTab(
        name=name,
        always_active=as_bool(props.get("always_active")),
        how_we_use=how_we_use,
        cookies_used=sanitize_text_field(props.get("cookies_used")),
        hosts=hosts,
    )


def sanitize_consent_tabs(tabs: Any) -> Any:
    """
    Validate a submitted cookie/consent configuration.

    Returns a new mapping of tab id -> ConsentTab in input order. Tabs missing
    `name` or `how_we_use` are dropped, as are hosts missing `name` or
    `cookies_used`; nothing here raises.

    Non-mapping input is returned unchanged.
    """
    if not isinstance(tabs, Mapping):
        return tabs
    output: Dict[str, ConsentTab] = {}
    for key, props in tabs.items():
        tab = sanitize_consent_tab(props)
        if tab is None:
            continue
        output[str(key)] = tab
    return output


def consent_tabs_to_option(tabs: Mapping[str, ConsentTab]) -> Dict[str, Dict[str, Any]]:
    return {str(k): t.model_dump(mode="json") for k, t in tabs.items()}
