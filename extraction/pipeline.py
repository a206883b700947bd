import asyncio
import logging

from django.conf import settings

from .browser_session import open_session
from .collector import CandidateCollector
from .exceptions import NoCandidatesFound
from .selector import SelectionContext, select_streams
from .streams import SelectionResult, StreamCandidate
from .target import resolve_target

logger = logging.getLogger(__name__)

DEFAULT_NAME = "Facebook Video"


def quality_label(c: StreamCandidate) -> tuple[str, str]:
    if c.quality_hint is None:
        return "available", "Available"
    tier = "HD" if c.quality_hint >= 720 else "SD"
    return f"{c.quality_hint}p", f"{tier} ({c.quality_hint}p)"


def method_for(c: StreamCandidate | None) -> str:
    if c is None:
        return ""
    return c.source if c.source in ("dom", "network") else "page_source"


def build_payload(collector: CandidateCollector, result: SelectionResult) -> dict:
    meta = collector.metadata
    video = result.chosen_video
    audio = result.chosen_audio

    qualities = []
    for c in result.variants:
        quality, label = quality_label(c)
        qualities.append({"quality": quality, "url": c.url, "label": label})

    if video is not None:
        quality, _label = quality_label(video)
    else:
        quality = "audio"

    return {
        "name": meta.title or DEFAULT_NAME,
        "thumbnail": meta.thumbnail,
        "videoUrl": video.url if video else None,
        "qualities": qualities,
        "audioUrl": audio.url if audio else None,
        "duration": meta.duration,
        "description": meta.description,
        "quality": quality,
        "confidence": result.confidence,
        "method": method_for(video or audio),
    }


async def run_strategies(session, collector: CandidateCollector) -> None:
    """Script text, then <video> elements, then network observation.

    Each step runs under its own timeout and stops the chain once the
    collector has a usable video quality or an audio track.
    """
    strategies = [
        ("page_source", lambda: collector.collect_scripts(session)),
        ("dom", lambda: collector.collect_dom(session)),
        ("network", lambda: collector.collect_network(session, settings.NETWORK_WAIT_SECONDS)),
    ]
    for name, run in strategies:
        try:
            await asyncio.wait_for(run(), timeout=settings.STRATEGY_TIMEOUT_SECONDS)
        except asyncio.TimeoutError:
            logger.warning("strategy %s timed out", name)
        except Exception as e:
            logger.warning("strategy %s failed: %s", name, e)
        if collector.is_sufficient():
            logger.info("strategy %s produced usable candidates", name)
            return


async def extract_video(url: str, *, session_factory=open_session) -> dict:
    """Open the page, collect candidates, select streams, shape the response data.

    Raises PageUnavailable or NoCandidatesFound.
    """
    target = resolve_target(url)
    collector = CandidateCollector(target)
    logger.info("extracting %s (target=%s)", url, target)

    async with session_factory(url) as session:
        await collector.collect_metadata(session)
        await run_strategies(session, collector)

    candidates = collector.candidates()
    if not candidates:
        logger.info("no candidates after strategies %s", ", ".join(collector.strategies_run))
        raise NoCandidatesFound()

    result = select_streams(candidates, SelectionContext(interaction_at=collector.interaction_at))
    logger.info(
        "selected %s via %s (confidence=%s, %d candidates)",
        result.chosen_video.url[:100] if result.chosen_video else None,
        result.rule,
        result.confidence,
        len(candidates),
    )
    return build_payload(collector, result)
