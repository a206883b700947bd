import time
from dataclasses import dataclass, field

VIDEO = "video"
AUDIO = "audio"

PROGRESSIVE = "progressive"
SEGMENTED = "segmented"
UNKNOWN = "unknown"

CONFIDENCE_HIGH = "high"
CONFIDENCE_MEDIUM = "medium"
CONFIDENCE_LOW = "low"


@dataclass
class StreamCandidate:
    url: str
    media_kind: str  # video|audio
    quality_hint: int | None = None
    bitrate_hint: int | None = None
    container_hint: str = UNKNOWN  # progressive|segmented|unknown
    content_length: int | None = None
    asset_id: str | None = None
    matches_target: bool = False
    observed_at: float = field(default_factory=time.time)
    source: str = ""

    @property
    def is_video(self) -> bool:
        return self.media_kind == VIDEO

    @property
    def is_audio(self) -> bool:
        return self.media_kind == AUDIO


@dataclass
class SelectionResult:
    chosen_video: StreamCandidate | None = None
    chosen_audio: StreamCandidate | None = None
    confidence: str = CONFIDENCE_LOW
    rule: str = ""
    # Other qualities of the chosen asset, best first (chosen_video included)
    variants: list[StreamCandidate] = field(default_factory=list)


@dataclass
class PageMetadata:
    title: str | None = None
    thumbnail: str | None = None
    description: str | None = None
    duration: float | None = None

    def merge(self, other: "PageMetadata") -> None:
        """Fill fields that are still empty from another source."""
        for name in ("title", "thumbnail", "description", "duration"):
            if getattr(self, name) in (None, "") and getattr(other, name) not in (None, ""):
                setattr(self, name, getattr(other, name))
