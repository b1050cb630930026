"""
Shared fakes for session, command and service tests.
"""

import asyncio
from typing import List, Optional

import pytest

from ytdeck import audio_debug
from ytdeck.decoder import Decoder, DecoderEvent
from ytdeck.focus import AudioFocus
from ytdeck.session import PlaybackSession
from ytdeck.tracks import Track, VideoInfo

FALLBACK_URL = "https://fallback.example/demo.mp3"
STREAM_URL = "https://stream.example/audio?mime=audio%2Fmp4"


class FakeDecoder(Decoder):
    """Records every call; tests drive events through emit()."""

    def __init__(self) -> None:
        super().__init__()
        self.calls: List[tuple] = []
        self.url: Optional[str] = None
        self.paused = False
        self.released = False
        self._position = 0.0

    def play(self, url: str) -> None:
        self.calls.append(("play", url))
        self.url = url
        self.paused = False

    def pause(self) -> None:
        self.calls.append(("pause",))
        self.paused = True

    def resume(self) -> None:
        self.calls.append(("resume",))
        self.paused = False

    def stop(self) -> None:
        self.calls.append(("stop",))
        self.url = None
        self.paused = False

    def seek(self, seconds: float) -> None:
        self.calls.append(("seek", seconds))
        self._position = seconds

    def set_volume(self, level: float) -> None:
        super().set_volume(level)
        self.calls.append(("volume", level))

    def release(self) -> None:
        self.released = True
        super().release()

    @property
    def position(self) -> float:
        return self._position

    @position.setter
    def position(self, value: float) -> None:
        self._position = value

    def emit(self, event: DecoderEvent, error: Optional[BaseException] = None) -> None:
        self._emit(event, error)

    def played_urls(self) -> List[str]:
        return [call[1] for call in self.calls if call[0] == "play"]


class FakeExtractor:
    """
    Stands in for YouTubeExtractor.extract_video_info.

    Returns ``result`` (or raises ``error``); when ``gate`` is set the call
    blocks until the event fires.
    """

    def __init__(
        self,
        result: Optional[VideoInfo] = None,
        error: Optional[BaseException] = None,
    ) -> None:
        self.result = result
        self.error = error
        self.gate: Optional[asyncio.Event] = None
        self.requested: List[str] = []
        self.cancelled = 0

    async def extract_video_info(self, video_id: str) -> Optional[VideoInfo]:
        self.requested.append(video_id)
        if self.gate is not None:
            try:
                await self.gate.wait()
            except asyncio.CancelledError:
                self.cancelled += 1
                raise
        if self.error is not None:
            raise self.error
        return self.result


def make_track(index: int = 0, **overrides) -> Track:
    fields = dict(
        id=f"video_{index}",
        title=f"Song {index}",
        artist=f"Artist {index}",
        thumbnail_url=f"https://img.example/{index}.jpg",
        source_url=f"https://www.youtube.com/watch?v=video_{index}",
        duration="3:30",
    )
    fields.update(overrides)
    return Track(**fields)


def make_info(audio_url: Optional[str] = STREAM_URL) -> VideoInfo:
    return VideoInfo(title="Resolved", audio_url=audio_url, duration="4:05")


@pytest.fixture(autouse=True)
def clean_audio_stats():
    audio_debug.reset_stats()
    yield
    audio_debug.reset_stats()


@pytest.fixture
def decoder():
    return FakeDecoder()


@pytest.fixture
def extractor():
    return FakeExtractor(result=make_info())


@pytest.fixture
def focus():
    return AudioFocus()


@pytest.fixture
def session(decoder, extractor, focus):
    return PlaybackSession(decoder, extractor, focus, fallback_url=FALLBACK_URL, duck_volume=0.2)


@pytest.fixture
def tracks():
    return [make_track(i) for i in range(3)]


@pytest.fixture
def snapshots(session):
    """Every snapshot the session publishes, in order."""
    received = []
    session.add_listener(received.append)
    return received
