"""Stream selection.

Picks one video and one audio candidate out of everything the collector saw.
Nothing on the page says authoritatively which stream is "the" requested one,
so every rule below is a heuristic and the result always carries a
confidence level:

1. candidates correlated with the target id          -> high
2. a single asset group                              -> medium
3. several asset groups, pick the top `score_group`  -> medium
4. candidates seen after the simulated interaction   -> medium
5. best quality overall                              -> low
"""

from collections import defaultdict
from dataclasses import dataclass

from .streams import (
    CONFIDENCE_HIGH,
    CONFIDENCE_LOW,
    CONFIDENCE_MEDIUM,
    PROGRESSIVE,
    SEGMENTED,
    SelectionResult,
    StreamCandidate,
)

SIZE_WEIGHT = 1.0  # per MB
VARIANT_WEIGHT = 5.0
QUALITY_DIVISOR = 100.0
FIRST_OBSERVED_BONUS = 5.0

_CONTAINER_RANK = {PROGRESSIVE: 2, SEGMENTED: 0}


@dataclass
class SelectionContext:
    interaction_at: float | None = None


def rank_key(c: StreamCandidate) -> tuple:
    """Quality first, then progressive over segmented, then bitrate."""
    return (
        c.quality_hint if c.quality_hint is not None else -1,
        _CONTAINER_RANK.get(c.container_hint, 1),
        c.bitrate_hint if c.bitrate_hint is not None else -1,
    )


def best_of(candidates: list[StreamCandidate]) -> StreamCandidate | None:
    return max(candidates, key=rank_key, default=None)


def score_group(group: list[StreamCandidate], context: dict) -> float:
    """Score an asset group: bigger, richer, earlier groups look like the main asset.

    `context["first_observed_at"]` is the earliest observation time across all
    groups.
    """
    total_bytes = sum(c.content_length or 0 for c in group)
    max_quality = max((c.quality_hint or 0 for c in group), default=0)
    score = (total_bytes / 1_000_000) * SIZE_WEIGHT
    score += len(group) * VARIANT_WEIGHT
    score += max_quality / QUALITY_DIVISOR
    first = context.get("first_observed_at")
    if first is not None and min(c.observed_at for c in group) <= first:
        score += FIRST_OBSERVED_BONUS
    return score


def asset_groups(candidates: list[StreamCandidate]) -> dict[str, list[StreamCandidate]]:
    groups: dict[str, list[StreamCandidate]] = defaultdict(list)
    for c in candidates:
        if c.asset_id:
            groups[c.asset_id].append(c)
    return dict(groups)


def _choose_video(videos: list[StreamCandidate], context: SelectionContext):
    """Return (chosen, pool, confidence, rule)."""
    matched = [c for c in videos if c.matches_target]
    if matched:
        return best_of(matched), matched, CONFIDENCE_HIGH, "target_match"

    groups = asset_groups(videos)
    if len(groups) == 1:
        pool = next(iter(groups.values()))
        return best_of(pool), pool, CONFIDENCE_MEDIUM, "single_asset"

    if len(groups) > 1:
        ctx = {"first_observed_at": min(c.observed_at for c in videos)}
        pool = max(groups.values(), key=lambda g: score_group(g, ctx))
        return best_of(pool), pool, CONFIDENCE_MEDIUM, "asset_score"

    if context.interaction_at is not None:
        after = [c for c in videos if c.observed_at > context.interaction_at]
        if after:
            return best_of(after), after, CONFIDENCE_MEDIUM, "post_interaction"

    def fallback_key(c):
        return (
            c.quality_hint if c.quality_hint is not None else -1,
            c.bitrate_hint if c.bitrate_hint is not None else -1,
        )

    return max(videos, key=fallback_key), videos, CONFIDENCE_LOW, "fallback"


def _choose_audio(audios: list[StreamCandidate], video: StreamCandidate | None) -> StreamCandidate | None:
    if not audios:
        return None

    related = [
        a for a in audios
        if a.matches_target or (video is not None and video.asset_id and a.asset_id == video.asset_id)
    ]
    pool = related or audios
    return max(
        pool,
        key=lambda a: (a.bitrate_hint if a.bitrate_hint is not None else -1, a.observed_at),
    )


def select_streams(candidates: list[StreamCandidate], context: SelectionContext | None = None) -> SelectionResult:
    context = context or SelectionContext()
    videos = [c for c in candidates if c.is_video]
    audios = [c for c in candidates if c.is_audio]

    if not videos:
        return SelectionResult(chosen_audio=_choose_audio(audios, None), confidence=CONFIDENCE_LOW, rule="audio_only")

    chosen, pool, confidence, rule = _choose_video(videos, context)
    variants = sorted(pool, key=rank_key, reverse=True)
    return SelectionResult(
        chosen_video=chosen,
        chosen_audio=_choose_audio(audios, chosen),
        confidence=CONFIDENCE_HIGH if chosen.matches_target else confidence,
        rule=rule,
        variants=variants,
    )
