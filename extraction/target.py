"""Target identification: derive the requested content's id from the input
address and correlate stream URLs with it.

Correlation is best effort. A `None` target means "cannot correlate", never an
error.
"""

import base64
import binascii
import json
import re
from urllib.parse import parse_qs, urlparse

# Ordered: path patterns first, then query parameters.
_PATH_RULES = [
    ("videos_path", re.compile(r"/videos/(?:[^/?#]+/)*?(\d{5,})")),
    ("reel_path", re.compile(r"/reels?/(\w+)")),
    ("watch_path", re.compile(r"/watch/(\d{5,})")),
    ("share_path", re.compile(r"/share/[vr]/(\w+)")),
    ("posts_path", re.compile(r"/posts/([\w-]+)")),
    ("numeric_segment", re.compile(r"/(\d{8,})(?:/|$)")),
]
_QUERY_RULES = ["v", "video_id", "story_fbid", "id"]

_EMBEDDED_PARAMS = ("efg",)
_ASSET_FIELDS = ("xpv_asset_id", "asset_id", "video_id")

SUFFIX_LEN = 8


def resolve_target(url: str) -> str | None:
    """Return the short identifier naming the requested content, or None."""
    try:
        p = urlparse((url or "").strip())
    except ValueError:
        return None

    path = p.path or ""
    for _name, rx in _PATH_RULES:
        m = rx.search(path)
        if m:
            return m.group(1)

    qs = parse_qs(p.query or "")
    for key in _QUERY_RULES:
        values = qs.get(key)
        if values and values[0].strip():
            return values[0].strip()
    return None


def _b64decode(raw: str) -> bytes:
    s = raw.strip().replace("-", "+").replace("_", "/")
    s += "=" * (-len(s) % 4)
    return base64.b64decode(s)


def decode_embedded_params(url: str) -> dict:
    """Decode the base64+JSON parameter CDNs embed in stream URLs.

    Returns {} when absent or undecodable.
    """
    try:
        qs = parse_qs(urlparse(url).query or "")
    except ValueError:
        return {}

    for name in _EMBEDDED_PARAMS:
        values = qs.get(name)
        if not values:
            continue
        try:
            data = json.loads(_b64decode(values[0]).decode("utf-8"))
        except (binascii.Error, UnicodeDecodeError, ValueError):
            continue
        if isinstance(data, dict):
            return data
    return {}


def embedded_asset_id(params: dict) -> str | None:
    for key in _ASSET_FIELDS:
        value = params.get(key)
        if value not in (None, ""):
            return str(value)
    return None


def matches_target(url: str, asset_id: str | None, target: str | None) -> bool:
    if not target:
        return False

    if target in url:
        return True

    suffix = target[-SUFFIX_LEN:] if len(target) >= SUFFIX_LEN else None
    if suffix and suffix in url:
        return True

    if asset_id:
        if asset_id == target:
            return True
        if suffix and asset_id[-SUFFIX_LEN:] == suffix:
            return True
    return False
