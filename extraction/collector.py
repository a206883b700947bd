"""Candidate collection: turn script text, <video> elements and observed
network responses into a deduplicated list of StreamCandidate."""

import asyncio
import logging
import math
import re
import time
from urllib.parse import parse_qsl, urlparse, urlunparse

from .extractors import HD_HEIGHT, SD_HEIGHT, json_ld_metadata, run_script_rules
from .streams import AUDIO, PROGRESSIVE, SEGMENTED, UNKNOWN, VIDEO, PageMetadata, StreamCandidate
from .target import decode_embedded_params, embedded_asset_id, matches_target

logger = logging.getLogger(__name__)

SCRIPTS_JS = """() => Array.from(document.querySelectorAll('script')).map(s => ({
    type: s.type || '',
    text: s.textContent || ''
}))"""

VIDEOS_JS = """() => Array.from(document.querySelectorAll('video')).map(v => ({
    src: v.currentSrc || v.src || '',
    poster: v.poster || null,
    duration: v.duration,
    height: v.videoHeight || null
}))"""

METADATA_JS = """() => {
    const meta = p => document.querySelector(`meta[property="${p}"]`)?.content || null;
    return {
        title: meta('og:title') || document.title || null,
        thumbnail: meta('og:image'),
        description: meta('og:description'),
        duration: meta('video:duration') || meta('og:video:duration')
    };
}"""

BYTE_RANGE_PARAMS = {"bytestart", "byteend", "range"}

_HLS_DASH_TYPES = (
    "application/x-mpegurl",
    "application/vnd.apple.mpegurl",
    "application/dash+xml",
)
_VIDEO_EXT = re.compile(r"\.(mp4|m4s|m4v|webm|m3u8|mpd)(\?|$)", re.IGNORECASE)
_AUDIO_EXT = re.compile(r"\.(m4a|aac|mp3|opus|weba)(\?|$)", re.IGNORECASE)
_SEGMENTED_EXT = re.compile(r"\.(m4s|m3u8|mpd)(\?|$)", re.IGNORECASE)
_HEIGHT_TOKEN = re.compile(r"(?<!\d)(\d{3,4})p(?![a-z])", re.IGNORECASE)
_HD_SD_MARKER = re.compile(r"(?<![a-z])(hd|sd)(?![a-z])")
_BITRATE_PARAM = re.compile(r"[?&](?:bitrate|br|bandwidth)=(\d+)", re.IGNORECASE)
_CONTENT_RANGE_TOTAL = re.compile(r"/(\d+)\s*$")


def strip_byte_range(url: str) -> str:
    """Drop session-specific byte-range query parameters."""
    p = urlparse(url)
    if not p.query:
        return url
    # Filter raw pieces so the remaining parameters keep their exact encoding.
    kept = [part for part in p.query.split("&") if part.split("=", 1)[0].lower() not in BYTE_RANGE_PARAMS]
    return urlunparse(p._replace(query="&".join(kept)))


def has_byte_range(url: str) -> bool:
    return any(k.lower() in BYTE_RANGE_PARAMS for k, _v in parse_qsl(urlparse(url).query))


def quality_from_url(url: str, params: dict | None = None) -> int | None:
    tag = str((params or {}).get("vencode_tag") or "")
    m = _HEIGHT_TOKEN.search(tag) or _HEIGHT_TOKEN.search(urlparse(url).path)
    if m:
        return int(m.group(1))

    m = _HD_SD_MARKER.search(urlparse(url).path.lower())
    if m:
        return HD_HEIGHT if m.group(1) == "hd" else SD_HEIGHT
    return None


def bitrate_from_url(url: str, params: dict | None = None) -> int | None:
    value = (params or {}).get("bitrate")
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return int(value)
    m = _BITRATE_PARAM.search(url)
    return int(m.group(1)) if m else None


def container_from_url(url: str, params: dict | None = None) -> str:
    tag = str((params or {}).get("vencode_tag") or "").lower()
    if _SEGMENTED_EXT.search(url) or has_byte_range(url) or tag.startswith("dash"):
        return SEGMENTED
    if ".mp4" in urlparse(url).path.lower():
        return PROGRESSIVE
    return UNKNOWN


def media_kind_for_response(url: str, mime_type: str, params: dict | None = None) -> str | None:
    """Classify a network response as video, audio, or not media (None)."""
    mime = (mime_type or "").lower()
    tag = str((params or {}).get("vencode_tag") or "").lower()

    if mime.startswith("audio/") or _AUDIO_EXT.search(url) or "audio" in tag:
        return AUDIO
    if mime.startswith("video/") or mime.startswith(_HLS_DASH_TYPES):
        return VIDEO
    if _VIDEO_EXT.search(url) or "videoplayback" in url:
        return VIDEO
    return None


def content_length_from_headers(headers: dict) -> int | None:
    h = {str(k).lower(): v for k, v in (headers or {}).items()}
    m = _CONTENT_RANGE_TOTAL.search(str(h.get("content-range") or ""))
    if m:
        return int(m.group(1))
    try:
        return int(h["content-length"])
    except (KeyError, TypeError, ValueError):
        return None


def _rank_bitrate(c: StreamCandidate) -> int:
    return c.bitrate_hint if c.bitrate_hint is not None else -1


class CandidateCollector:
    """Accumulates candidates for one extraction request."""

    def __init__(self, target: str | None = None):
        self.target = target
        self.metadata = PageMetadata()
        self.interaction_at: float | None = None
        self.strategies_run: list[str] = []
        self._slots: dict[tuple[str, str], StreamCandidate] = {}

    def add(
        self,
        raw_url: str,
        media_kind: str,
        *,
        quality: int | None = None,
        bitrate: int | None = None,
        container: str | None = None,
        content_length: int | None = None,
        source: str = "",
        observed_at: float | None = None,
    ) -> StreamCandidate:
        params = decode_embedded_params(raw_url)
        url = strip_byte_range(raw_url)
        asset_id = embedded_asset_id(params)

        cand = StreamCandidate(
            url=url,
            media_kind=media_kind,
            quality_hint=quality if quality is not None else quality_from_url(raw_url, params),
            bitrate_hint=bitrate if bitrate is not None else bitrate_from_url(raw_url, params),
            container_hint=container or container_from_url(raw_url, params),
            content_length=content_length,
            asset_id=asset_id,
            matches_target=matches_target(url, asset_id, self.target),
            observed_at=observed_at if observed_at is not None else time.time(),
            source=source,
        )

        key = (media_kind, url)
        existing = self._slots.get(key)
        if existing is None:
            self._slots[key] = cand
            return cand

        winner, loser = (cand, existing) if _rank_bitrate(cand) > _rank_bitrate(existing) else (existing, cand)
        if winner.quality_hint is None:
            winner.quality_hint = loser.quality_hint
        if winner.container_hint == UNKNOWN:
            winner.container_hint = loser.container_hint
        if winner.asset_id is None:
            winner.asset_id = loser.asset_id
        winner.content_length = max(
            (x for x in (winner.content_length, loser.content_length) if x is not None), default=None
        )
        winner.matches_target = winner.matches_target or loser.matches_target
        winner.observed_at = min(winner.observed_at, loser.observed_at)
        winner.source = winner.source or loser.source
        self._slots[key] = winner
        return winner

    def candidates(self) -> list[StreamCandidate]:
        return list(self._slots.values())

    def is_sufficient(self) -> bool:
        """A video with a known quality, or any audio track, ends collection."""
        return any(
            (c.is_video and c.quality_hint is not None) or c.is_audio for c in self._slots.values()
        )

    def observe_response(self, response) -> None:
        """on_response callback: record media responses from headers only."""
        params = decode_embedded_params(response.url)
        kind = media_kind_for_response(response.url, response.mime_type, params)
        if kind is None:
            return
        cand = self.add(
            response.url,
            kind,
            content_length=content_length_from_headers(response.headers),
            source="network",
            observed_at=response.observed_at,
        )
        logger.debug("network candidate %s q=%s %s", kind, cand.quality_hint, cand.url[:120])

    async def collect_metadata(self, session) -> None:
        try:
            data = await session.evaluate(METADATA_JS)
        except Exception as e:
            logger.info("page metadata unavailable: %s", e)
            return
        data = data or {}
        duration = data.get("duration")
        try:
            duration = float(duration) if duration is not None else None
        except (TypeError, ValueError):
            duration = None
        self.metadata.merge(
            PageMetadata(
                title=data.get("title"),
                thumbnail=data.get("thumbnail"),
                description=data.get("description"),
                duration=duration,
            )
        )

    async def collect_scripts(self, session) -> None:
        self.strategies_run.append("page_source")
        scripts = await session.evaluate(SCRIPTS_JS) or []
        for hit in run_script_rules(scripts):
            self.add(
                hit.url,
                hit.media_kind,
                quality=hit.quality,
                bitrate=hit.bitrate,
                container=hit.container if hit.container != UNKNOWN else None,
                source=hit.source,
            )
        self.metadata.merge(json_ld_metadata(scripts))

    async def collect_dom(self, session) -> None:
        self.strategies_run.append("dom")
        videos = await session.evaluate(VIDEOS_JS) or []
        for v in videos:
            src = (v.get("src") or "").strip()
            if src.startswith("http"):
                self.add(src, VIDEO, quality=v.get("height") or None, source="dom")
            duration = v.get("duration")
            self.metadata.merge(
                PageMetadata(
                    thumbnail=v.get("poster"),
                    duration=float(duration) if isinstance(duration, (int, float)) and math.isfinite(duration) else None,
                )
            )

    async def collect_network(self, session, wait_seconds: float) -> None:
        self.strategies_run.append("network")
        session.on_response(self.observe_response)
        self.interaction_at = await session.interact()
        await asyncio.sleep(wait_seconds)
