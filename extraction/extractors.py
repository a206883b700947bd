import html
import json
import logging
import re
from dataclasses import dataclass
from typing import Callable
from urllib.parse import parse_qs, urlparse

from .streams import AUDIO, PROGRESSIVE, SEGMENTED, UNKNOWN, VIDEO, PageMetadata

logger = logging.getLogger(__name__)


@dataclass
class RawHit:
    url: str
    media_kind: str
    quality: int | None = None
    bitrate: int | None = None
    container: str = UNKNOWN
    source: str = ""


@dataclass
class ScriptRule:
    name: str
    priority: int  # lower runs first
    apply: Callable[[dict], list[RawHit]]


_UNICODE_ESCAPE = re.compile(r"\\u([0-9a-fA-F]{4})")

_HD_FIELD = re.compile(r'"(playable_url_quality_hd|browser_native_hd_url)"\s*:\s*"([^"]+)"')
_SD_FIELD = re.compile(r'"(playable_url|browser_native_sd_url)"\s*:\s*"([^"]+)"')
_AUDIO_FIELD = re.compile(r'"audio_url"\s*:\s*"([^"]+)"')
_REPRESENTATIONS = re.compile(r'"representations"\s*:\s*\[')
_BARE_MEDIA = re.compile(
    r"https?:(?:\\?/){2}[^\s'\"<>]+?\.(mp4|m4a)(?:\?[^\s'\"<>]*)?",
    re.IGNORECASE,
)
_KEYWORD = re.compile(r"video|audio|playable|src", re.IGNORECASE)
_KEYWORD_WINDOW = 200

HD_HEIGHT = 720
SD_HEIGHT = 360


def unescape_url(raw: str) -> str:
    """Undo JSON/JS escaping of a URL pulled out of script text."""
    s = (raw or "").strip()
    s = s.replace("\\/", "/")
    s = _UNICODE_ESCAPE.sub(lambda m: chr(int(m.group(1), 16)), s)
    s = s.replace("\\\\", "\\")
    return html.unescape(s)


def _to_int(value) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    m = re.search(r"\d+", str(value))
    return int(m.group(0)) if m else None


def _json_ld_objects(script: dict) -> list[dict]:
    if "ld+json" not in (script.get("type") or "").lower():
        return []
    data = json.loads(script.get("text") or "")
    items = data if isinstance(data, list) else [data]
    out = []
    for item in items:
        if not isinstance(item, dict):
            continue
        out.append(item)
        graph = item.get("@graph")
        if isinstance(graph, list):
            out.extend(x for x in graph if isinstance(x, dict))
    return [o for o in out if "VideoObject" in str(o.get("@type") or "")]


def _json_ld_rule(script: dict) -> list[RawHit]:
    hits = []
    for obj in _json_ld_objects(script):
        # embedUrl is a player page, not a byte source
        url = obj.get("contentUrl")
        if not isinstance(url, str) or not url.startswith("http"):
            continue
        hits.append(
            RawHit(
                url=unescape_url(url),
                media_kind=VIDEO,
                quality=_to_int(obj.get("height")),
                bitrate=_to_int(obj.get("bitrate")),
                container=PROGRESSIVE if ".mp4" in url.lower() else UNKNOWN,
                source="json_ld",
            )
        )
    return hits


def _hd_rule(script: dict) -> list[RawHit]:
    text = script.get("text") or ""
    return [
        RawHit(unescape_url(m.group(2)), VIDEO, quality=HD_HEIGHT, container=PROGRESSIVE, source=m.group(1))
        for m in _HD_FIELD.finditer(text)
    ]


def _sd_rule(script: dict) -> list[RawHit]:
    text = script.get("text") or ""
    return [
        RawHit(unescape_url(m.group(2)), VIDEO, quality=SD_HEIGHT, container=PROGRESSIVE, source=m.group(1))
        for m in _SD_FIELD.finditer(text)
    ]


def _representations_rule(script: dict) -> list[RawHit]:
    text = script.get("text") or ""
    decoder = json.JSONDecoder()
    hits = []
    for m in _REPRESENTATIONS.finditer(text):
        try:
            reps, _end = decoder.raw_decode(text, m.end() - 1)
        except ValueError:
            # Truncated or JS-only fragment; skip it and keep scanning.
            continue
        for rep in reps if isinstance(reps, list) else []:
            if not isinstance(rep, dict) or not isinstance(rep.get("base_url"), str):
                continue
            mime = str(rep.get("mime_type") or "").lower()
            hits.append(
                RawHit(
                    url=unescape_url(rep["base_url"]),
                    media_kind=AUDIO if mime.startswith("audio") else VIDEO,
                    quality=_to_int(rep.get("height")),
                    bitrate=_to_int(rep.get("bandwidth")),
                    container=SEGMENTED,
                    source="dash_representations",
                )
            )
    return hits


def _audio_rule(script: dict) -> list[RawHit]:
    text = script.get("text") or ""
    return [RawHit(unescape_url(m.group(1)), AUDIO, source="audio_url") for m in _AUDIO_FIELD.finditer(text)]


def _bare_url_rule(script: dict) -> list[RawHit]:
    text = script.get("text") or ""
    hits = []
    for m in _BARE_MEDIA.finditer(text):
        before = text[max(0, m.start() - _KEYWORD_WINDOW):m.start()]
        if not _KEYWORD.search(before):
            continue
        is_audio = m.group(1).lower() == "m4a" or "audio" in before[-80:].lower()
        hits.append(RawHit(unescape_url(m.group(0)), AUDIO if is_audio else VIDEO, source="bare_media_url"))
    return hits


# Structured JSON fields rank above bare pattern matches.
SCRIPT_RULES = [
    ScriptRule("json_ld", 0, _json_ld_rule),
    ScriptRule("hd_field", 1, _hd_rule),
    ScriptRule("sd_field", 2, _sd_rule),
    ScriptRule("dash_representations", 3, _representations_rule),
    ScriptRule("audio_url", 4, _audio_rule),
    ScriptRule("bare_media_url", 5, _bare_url_rule),
]


def run_script_rules(scripts: list[dict], rules: list[ScriptRule] = SCRIPT_RULES) -> list[RawHit]:
    """Run every rule over every script, best effort.

    A rule that blows up on one script is logged and skipped for that script
    only. A URL found by several rules is kept once, from the highest
    priority rule.
    """
    hits: list[RawHit] = []
    seen: set[str] = set()
    for rule in sorted(rules, key=lambda r: r.priority):
        for script in scripts or []:
            try:
                found = rule.apply(script)
            except Exception as e:
                logger.debug("script rule %s skipped a script: %s", rule.name, e)
                continue
            for h in found:
                if h.url.startswith("http") and h.url not in seen:
                    seen.add(h.url)
                    hits.append(h)
    return hits


def _iso_duration_seconds(value) -> float | None:
    if isinstance(value, (int, float)):
        return float(value)
    m = re.fullmatch(r"P(?:T(?:(\d+)H)?(?:(\d+)M)?(?:(\d+(?:\.\d+)?)S)?)", str(value or "").strip())
    if not m or not any(m.groups()):
        return None
    h, mi, s = m.groups()
    return int(h or 0) * 3600 + int(mi or 0) * 60 + float(s or 0)


def json_ld_metadata(scripts: list[dict]) -> PageMetadata:
    meta = PageMetadata()
    for script in scripts or []:
        try:
            objects = _json_ld_objects(script)
        except ValueError:
            continue
        for obj in objects:
            thumb = obj.get("thumbnailUrl")
            if isinstance(thumb, list):
                thumb = thumb[0] if thumb else None
            meta.merge(
                PageMetadata(
                    title=obj.get("name") or None,
                    thumbnail=thumb if isinstance(thumb, str) else None,
                    description=obj.get("description") or None,
                    duration=_iso_duration_seconds(obj.get("duration")),
                )
            )
    return meta


def extract_src_from_embed(markup: str) -> str | None:
    """Extract the page URL from pasted embed markup (<iframe>, <video>, etc.).

    Embed players that wrap the real post in an ``href`` parameter resolve to
    that post.
    """
    text = (markup or "").strip()
    if not text:
        return None

    src = None
    for pattern in (
        r"<iframe[^>]+src=['\"]([^'\"]+)['\"]",
        r"<video[^>]+src=['\"]([^'\"]+)['\"]",
        r"<source[^>]+src=['\"]([^'\"]+)['\"]",
        r"\bsrc=['\"]([^'\"]+)['\"]",
    ):
        m = re.search(pattern, text, re.IGNORECASE)
        if m:
            src = html.unescape(m.group(1).strip())
            break
    if not src:
        return None

    href = parse_qs(urlparse(src).query).get("href")
    if href and href[0].startswith("http"):
        return href[0]
    return src
