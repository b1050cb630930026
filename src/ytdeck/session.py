"""
Playback session state machine.

The session owns the bound track, the playlist cursor and the transport
state. It is driven from three directions, all on the event loop thread:
user commands (play/pause/resume/stop/next/previous), decoder events
(DecoderEvent) and audio focus changes (FocusChange).

    IDLE -> LOADING -> PLAYING | STOPPED
    PLAYING <-> PAUSED
    any -> STOPPED on stop() or permanent focus loss

Resolution never leaves the session in LOADING: a failed or unusable
resolution binds the fallback media and the session plays it degraded.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable, List, Optional
from urllib.parse import urlparse

from . import audio_debug
from . import config
from .decoder import Decoder, DecoderEvent
from .focus import AudioFocus, FocusChange
from .playlist import Playlist
from .tracks import Track, VideoInfo

logger = logging.getLogger(__name__)

FULL_VOLUME = 1.0


class SessionState(Enum):
    IDLE = "idle"
    LOADING = "loading"
    PLAYING = "playing"
    PAUSED = "paused"
    STOPPED = "stopped"


@dataclass(frozen=True)
class SessionSnapshot:
    state: SessionState
    track: Optional[Track]
    position: float
    degraded: bool
    volume: float
    playlist_index: int
    playlist_length: int
    source_url: Optional[str] = None
    duration: Optional[str] = None

    @property
    def is_playing(self) -> bool:
        return self.state == SessionState.PLAYING


SessionListener = Callable[[SessionSnapshot], None]


def is_usable_url(url: Optional[str]) -> bool:
    if not url:
        return False
    parsed = urlparse(url)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


class PlaybackSession:
    def __init__(
        self,
        decoder: Decoder,
        extractor,
        focus: Optional[AudioFocus] = None,
        fallback_url: str = config.YTDECK_FALLBACK_AUDIO_URL,
        duck_volume: float = config.YTDECK_DUCK_VOLUME,
    ) -> None:
        self.decoder = decoder
        self.extractor = extractor
        self.focus = focus or AudioFocus()
        self.fallback_url = fallback_url
        self.duck_volume = duck_volume

        self.playlist = Playlist()
        self.state = SessionState.IDLE
        self.current: Optional[Track] = None
        self.resolved: Optional[VideoInfo] = None
        self.source_url: Optional[str] = None
        self.degraded = False
        self.volume = FULL_VOLUME

        # Set while playback is suspended by a transient focus loss.
        self._resume_on_gain = False
        self._load_task: Optional[asyncio.Task] = None
        self._listeners: List[SessionListener] = []

        self.decoder.set_listener(self.dispatch)

    # -- observation -------------------------------------------------------

    def add_listener(self, listener: SessionListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: SessionListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    @property
    def position(self) -> float:
        if self.state in (SessionState.PLAYING, SessionState.PAUSED):
            return self.decoder.position
        return 0.0

    def snapshot(self) -> SessionSnapshot:
        duration = self.current.duration if self.current else None
        if duration is None and self.resolved is not None:
            duration = self.resolved.duration
        return SessionSnapshot(
            state=self.state,
            track=self.current,
            position=self.position,
            degraded=self.degraded,
            volume=self.volume,
            playlist_index=self.playlist.index,
            playlist_length=len(self.playlist),
            source_url=self.source_url,
            duration=duration,
        )

    def _notify(self) -> None:
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Session listener failed")

    def _set_state(self, state: SessionState) -> None:
        if state != self.state:
            logger.debug("Session state %s -> %s", self.state.value, state.value)
        self.state = state
        self._notify()

    # -- commands ----------------------------------------------------------

    def set_playlist(self, tracks: Iterable[Track], start_index: int = 0) -> None:
        self.playlist.set(tracks, start_index)
        self._notify()

    def play_at(self, index: int) -> bool:
        return self.play(self.playlist.select(index))

    def play(self, track: Track) -> bool:
        """
        Bind track and start resolving it.

        Returns False when audio focus is denied; the state is then unchanged.
        """
        if not self._request_focus():
            logger.info("Audio focus denied, not playing %s", track.title)
            return False

        self._cancel_load()
        self.decoder.stop()
        self.current = track
        self.resolved = None
        self.source_url = None
        self.degraded = False
        self._resume_on_gain = False
        self._set_state(SessionState.LOADING)
        self._load_task = asyncio.create_task(self._load(track))
        return True

    def pause(self) -> bool:
        if self.state != SessionState.PLAYING:
            return False
        self.decoder.pause()
        self._resume_on_gain = False
        self._set_state(SessionState.PAUSED)
        return True

    def resume(self) -> bool:
        if self.state != SessionState.PAUSED:
            return False
        if not self._request_focus():
            logger.info("Audio focus denied, staying paused")
            return False
        self.decoder.resume()
        self._resume_on_gain = False
        self._set_state(SessionState.PLAYING)
        return True

    def stop(self) -> None:
        self._cancel_load()
        self._resume_on_gain = False
        self.decoder.stop()
        self.focus.abandon(self)
        self._set_state(SessionState.STOPPED)

    def next(self) -> bool:
        track = self.playlist.next()
        if track is None:
            return False
        return self.play(track)

    def previous(self) -> bool:
        track = self.playlist.previous()
        if track is None:
            return False
        return self.play(track)

    def seek(self, seconds: float) -> bool:
        if self.state not in (SessionState.PLAYING, SessionState.PAUSED):
            return False
        self.decoder.seek(max(0.0, seconds))
        self._notify()
        return True

    async def wait_until_loaded(self) -> None:
        """Wait for the in-flight resolution, if any, to finish or be cancelled."""
        task = self._load_task
        if task is not None:
            await asyncio.wait({task})

    async def close(self) -> None:
        """Tear the session down, cancelling any in-flight resolution."""
        task = self._load_task
        self._cancel_load()
        if task is not None:
            await asyncio.wait({task})
        self._resume_on_gain = False
        self.decoder.release()
        self.decoder.set_listener(None)
        self.focus.abandon(self)
        if self.state != SessionState.IDLE:
            self._set_state(SessionState.STOPPED)
        self._listeners.clear()

    # -- resolution --------------------------------------------------------

    def _cancel_load(self) -> None:
        if self._load_task is not None and not self._load_task.done():
            self._load_task.cancel()
        self._load_task = None

    async def _load(self, track: Track) -> None:
        info: Optional[VideoInfo] = None
        reason = None
        try:
            info = await self.extractor.extract_video_info(track.id)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("Resolver failed for %s: %s", track.id, e)
            reason = f"resolver error: {e}"

        if self.current is not track or self.state != SessionState.LOADING:
            return

        self.resolved = info
        if info is not None and is_usable_url(info.audio_url):
            self._bind(info.audio_url, degraded=False)
            return

        if reason is None:
            reason = "unresolved" if info is None else "no usable audio url"
        logger.info("Falling back to demo audio for %s (%s)", track.id, reason)
        audio_debug.log_fallback(reason)
        self._bind(self.fallback_url, degraded=True)

    def _bind(self, url: str, degraded: bool, paused: bool = False) -> None:
        self.source_url = url
        self.degraded = degraded
        self.decoder.set_volume(self.volume)
        self.decoder.play(url)
        audio_debug.log_playback_start()
        if paused or self._resume_on_gain:
            # Paused by the user, or focus was lost transiently while resolving.
            self.decoder.pause()
            self._set_state(SessionState.PAUSED)
        else:
            self._set_state(SessionState.PLAYING)

    # -- decoder events ----------------------------------------------------

    def dispatch(self, event: DecoderEvent, error: Optional[BaseException] = None) -> None:
        if event == DecoderEvent.ENDED:
            if self.state not in (SessionState.PLAYING, SessionState.PAUSED):
                return
            logger.info("Track ended: %s", self.current.title if self.current else "unknown")
            if not self.next():
                self.stop()
        elif event == DecoderEvent.ERROR:
            if self.state not in (SessionState.PLAYING, SessionState.PAUSED):
                return
            audio_debug.log_decoder_error(str(error) if error else "unknown")
            if self.degraded:
                logger.error("Fallback media failed to play: %s", error)
                self.stop()
                return
            logger.warning("Decoder error on %s, switching to fallback: %s", self.source_url, error)
            audio_debug.log_fallback(f"decoder error: {error}")
            self._bind(self.fallback_url, degraded=True, paused=self.state == SessionState.PAUSED)
        else:
            self._notify()

    # -- audio focus -------------------------------------------------------

    def _request_focus(self) -> bool:
        if not self.focus.request(self, self._on_focus_change):
            return False
        # The focus holder always plays at full volume.
        if self.volume != FULL_VOLUME:
            self.volume = FULL_VOLUME
            self.decoder.set_volume(self.volume)
        return True

    def _on_focus_change(self, change: FocusChange) -> None:
        logger.info("Audio focus change: %s (state %s)", change.value, self.state.value)
        if change == FocusChange.LOSS:
            self.stop()
        elif change == FocusChange.LOSS_TRANSIENT:
            if self.state == SessionState.PLAYING:
                self.decoder.pause()
                self._resume_on_gain = True
                self._set_state(SessionState.PAUSED)
            elif self.state == SessionState.LOADING:
                self._resume_on_gain = True
        elif change == FocusChange.LOSS_TRANSIENT_CAN_DUCK:
            self.volume = self.duck_volume
            self.decoder.set_volume(self.volume)
            self._notify()
        elif change == FocusChange.GAIN:
            self.volume = FULL_VOLUME
            self.decoder.set_volume(self.volume)
            if self._resume_on_gain and self.state == SessionState.PAUSED:
                self.decoder.resume()
                self._resume_on_gain = False
                self._set_state(SessionState.PLAYING)
            else:
                self._resume_on_gain = False
                self._notify()
