import asyncio
import functools
import logging
import time
from enum import Enum
from typing import Callable, Optional

from discord import VoiceClient

from . import audio
from . import audio_debug

logger = logging.getLogger(__name__)


class DecoderEvent(Enum):
    READY = "ready"
    BUFFERING = "buffering"
    ENDED = "ended"
    ERROR = "error"


DecoderListener = Callable[[DecoderEvent, Optional[BaseException]], None]


class Decoder:
    """
    Playback backend driven by a PlaybackSession.

    Implementations report lifecycle changes through the listener as
    DecoderEvent values, always on the event loop thread.
    """

    def __init__(self) -> None:
        self._listener: Optional[DecoderListener] = None
        self.volume = 1.0

    def set_listener(self, listener: Optional[DecoderListener]) -> None:
        self._listener = listener

    def _emit(self, event: DecoderEvent, error: Optional[BaseException] = None) -> None:
        if self._listener is not None:
            self._listener(event, error)

    def play(self, url: str) -> None:
        raise NotImplementedError

    def pause(self) -> None:
        raise NotImplementedError

    def resume(self) -> None:
        raise NotImplementedError

    def stop(self) -> None:
        raise NotImplementedError

    def seek(self, seconds: float) -> None:
        raise NotImplementedError

    def set_volume(self, level: float) -> None:
        self.volume = level

    @property
    def position(self) -> float:
        return 0.0

    def release(self) -> None:
        self.stop()


class VoiceDecoder(Decoder):
    """Streams URLs into a Discord voice connection through ffmpeg."""

    def __init__(
        self,
        voice_client_getter: Callable[[], Optional[VoiceClient]],
        ffmpeg_path: Optional[str] = None,
    ) -> None:
        super().__init__()
        self._get_voice_client = voice_client_getter
        self._ffmpeg_path = ffmpeg_path
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._source = None
        self._url: Optional[str] = None
        # Bumped whenever the current source is replaced or stopped, so
        # completion callbacks from old sources are ignored.
        self._generation = 0
        self.playback_start_time: Optional[float] = None
        self.playback_paused_at: Optional[float] = None
        self.total_paused_duration: float = 0.0

    def _post(self, event: DecoderEvent, error: Optional[BaseException] = None) -> None:
        if self._loop is None or self._loop.is_closed():
            return
        self._loop.call_soon_threadsafe(self._emit, event, error)

    def _after_playback(self, generation: int, error: Optional[Exception]) -> None:
        """Called by discord.py on its player thread when a source finishes."""
        if generation != self._generation:
            return
        if error:
            logger.error("Playback error for %s: %s", self._url, error)
            self._post(DecoderEvent.ERROR, error)
        else:
            logger.info("Playback finished normally: %s", self._url)
            self._post(DecoderEvent.ENDED)

    def play(self, url: str, start_seconds: float = 0.0) -> None:
        self._loop = asyncio.get_running_loop()
        self._generation += 1
        generation = self._generation
        self._url = url

        vc = self._get_voice_client()
        if vc is None or not vc.is_connected():
            self._post(DecoderEvent.ERROR, audio.AudioError("Not connected to a voice channel"))
            return
        if vc.is_playing() or vc.is_paused():
            vc.stop()

        self._post(DecoderEvent.BUFFERING)
        try:
            source = audio.create_stream_source(
                url,
                self._ffmpeg_path or audio.get_ffmpeg_executable(),
                volume=self.volume,
                start_seconds=start_seconds,
            )
            vc.play(source, after=functools.partial(self._after_playback, generation))
        except Exception as e:
            logger.warning("Could not start playback for %s: %s", url, e)
            self._post(DecoderEvent.ERROR, e)
            return

        if audio_debug.is_debug_enabled():
            logger.debug("Streaming %s from %.1fs", url, start_seconds)
        self._source = source
        self.playback_start_time = time.time() - start_seconds
        self.playback_paused_at = None
        self.total_paused_duration = 0.0
        self._post(DecoderEvent.READY)

    def pause(self) -> None:
        vc = self._get_voice_client()
        if vc and vc.is_playing():
            vc.pause()
            self.playback_paused_at = time.time()

    def resume(self) -> None:
        vc = self._get_voice_client()
        if vc and vc.is_paused():
            vc.resume()
            if self.playback_paused_at:
                self.total_paused_duration += time.time() - self.playback_paused_at
                self.playback_paused_at = None

    def stop(self) -> None:
        self._generation += 1
        vc = self._get_voice_client()
        if vc and (vc.is_playing() or vc.is_paused()):
            vc.stop()
        self._source = None
        self.playback_start_time = None
        self.playback_paused_at = None
        self.total_paused_duration = 0.0

    def seek(self, seconds: float) -> None:
        """Restart the current stream at seconds, keeping the paused state."""
        if not self._url:
            return
        vc = self._get_voice_client()
        was_paused = bool(vc and vc.is_paused())
        self.play(self._url, start_seconds=seconds)
        if was_paused:
            self.pause()

    def set_volume(self, level: float) -> None:
        super().set_volume(level)
        if self._source is not None:
            self._source.volume = level

    @property
    def position(self) -> float:
        if not self.playback_start_time:
            return 0.0
        if self.playback_paused_at:
            return self.playback_paused_at - self.playback_start_time - self.total_paused_duration
        return time.time() - self.playback_start_time - self.total_paused_duration
