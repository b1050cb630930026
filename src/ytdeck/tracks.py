from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class Track:
    id: str
    title: str
    artist: str
    thumbnail_url: str
    source_url: str
    duration: Optional[str] = None  # "m:ss" as shown in search results

    @property
    def duration_seconds(self) -> Optional[int]:
        return parse_duration(self.duration)


@dataclass(frozen=True)
class VideoInfo:
    """Result of resolving a video page."""
    title: str
    audio_url: Optional[str] = None
    duration: Optional[str] = None
    thumbnail: Optional[str] = None


def parse_duration(value: Optional[str]) -> Optional[int]:
    """Parse "m:ss" or "h:mm:ss" into seconds. Returns None when malformed."""
    if not value:
        return None
    parts = value.strip().split(":")
    if len(parts) not in (2, 3):
        return None
    try:
        numbers = [int(p) for p in parts]
    except ValueError:
        return None
    if any(n < 0 for n in numbers):
        return None
    total = 0
    for n in numbers:
        total = total * 60 + n
    return total
