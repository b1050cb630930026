"""
Tests for VoiceDecoder against a fake voice connection.

discord.py calls the ``after`` callback from its player thread, so the fake
voice client hands it back to the test, which fires it from a real thread.
"""

import asyncio
import threading

import pytest

from ytdeck import audio, decoder
from ytdeck.decoder import DecoderEvent, VoiceDecoder


class FakeSource:
    def __init__(self, url, volume, start_seconds):
        self.url = url
        self.volume = volume
        self.start_seconds = start_seconds


class FakeVoiceClient:
    def __init__(self, connected=True, fail_play=None):
        self.connected = connected
        self.fail_play = fail_play
        self.playing = False
        self.paused = False
        self.source = None
        self.after = None
        self.stops = 0

    def is_connected(self):
        return self.connected

    def is_playing(self):
        return self.playing

    def is_paused(self):
        return self.paused

    def play(self, source, *, after=None):
        if self.fail_play is not None:
            raise self.fail_play
        self.source = source
        self.after = after
        self.playing = True
        self.paused = False

    def pause(self):
        self.playing = False
        self.paused = True

    def resume(self):
        self.playing = True
        self.paused = False

    def stop(self):
        self.stops += 1
        self.playing = False
        self.paused = False


class Recorder:
    """Listener that remembers events and the thread they arrived on."""

    def __init__(self):
        self.events = []
        self.threads = []
        self.changed = asyncio.Event()

    def __call__(self, event, error):
        self.events.append((event, error))
        self.threads.append(threading.get_ident())
        self.changed.set()

    def names(self):
        return [event for event, _ in self.events]

    async def wait_for(self, event, timeout=2.0):
        async def _wait():
            while event not in self.names():
                self.changed.clear()
                await self.changed.wait()

        await asyncio.wait_for(_wait(), timeout)


def fire_from_thread(callback, error=None):
    thread = threading.Thread(target=callback, args=(error,))
    thread.start()
    thread.join()


@pytest.fixture
def voice_client():
    return FakeVoiceClient()


@pytest.fixture
def recorder():
    return Recorder()


@pytest.fixture
def voice_decoder(monkeypatch, voice_client, recorder):
    monkeypatch.setattr(
        audio,
        "create_stream_source",
        lambda url, ffmpeg, volume=1.0, start_seconds=0.0: FakeSource(url, volume, start_seconds),
    )
    dec = VoiceDecoder(lambda: voice_client, ffmpeg_path="ffmpeg")
    dec.set_listener(recorder)
    return dec


@pytest.mark.asyncio
class TestPlay:
    async def test_buffering_then_ready(self, voice_decoder, voice_client, recorder):
        voice_decoder.play("https://stream.example/a")
        # Events are posted, never delivered inline
        assert recorder.events == []

        await asyncio.sleep(0)

        assert recorder.names() == [DecoderEvent.BUFFERING, DecoderEvent.READY]
        assert voice_client.source.url == "https://stream.example/a"
        assert voice_client.source.start_seconds == 0.0

    async def test_not_connected(self, voice_decoder, voice_client, recorder):
        voice_client.connected = False

        voice_decoder.play("https://stream.example/a")
        await asyncio.sleep(0)

        assert recorder.names() == [DecoderEvent.ERROR]
        assert isinstance(recorder.events[0][1], audio.AudioError)
        assert voice_client.source is None

    async def test_start_failure_reports_error(self, voice_decoder, voice_client, recorder):
        voice_client.fail_play = RuntimeError("ffmpeg missing")

        voice_decoder.play("https://stream.example/a")
        await asyncio.sleep(0)

        assert recorder.names() == [DecoderEvent.BUFFERING, DecoderEvent.ERROR]
        assert str(recorder.events[1][1]) == "ffmpeg missing"

    async def test_replaces_current_source(self, voice_decoder, voice_client):
        voice_decoder.play("https://stream.example/a")
        voice_decoder.play("https://stream.example/b")

        assert voice_client.stops == 1
        assert voice_client.source.url == "https://stream.example/b"

    async def test_set_volume_reaches_source(self, voice_decoder, voice_client):
        voice_decoder.set_volume(0.2)
        voice_decoder.play("https://stream.example/a")
        assert voice_client.source.volume == 0.2

        voice_decoder.set_volume(1.0)

        assert voice_client.source.volume == 1.0
        assert voice_decoder.volume == 1.0


@pytest.mark.asyncio
class TestCompletion:
    async def test_ended_arrives_on_loop_thread(self, voice_decoder, voice_client, recorder):
        voice_decoder.play("https://stream.example/a")
        await recorder.wait_for(DecoderEvent.READY)

        fire_from_thread(voice_client.after)
        await recorder.wait_for(DecoderEvent.ENDED)

        assert set(recorder.threads) == {threading.get_ident()}

    async def test_playback_error_from_thread(self, voice_decoder, voice_client, recorder):
        voice_decoder.play("https://stream.example/a")
        await recorder.wait_for(DecoderEvent.READY)

        fire_from_thread(voice_client.after, OSError("stream reset"))
        await recorder.wait_for(DecoderEvent.ERROR)

        assert isinstance(recorder.events[-1][1], OSError)

    async def test_callback_from_replaced_source_is_ignored(self, voice_decoder, voice_client, recorder):
        voice_decoder.play("https://stream.example/a")
        old_after = voice_client.after
        voice_decoder.play("https://stream.example/b")
        await recorder.wait_for(DecoderEvent.READY)

        # discord.py fires the old source's callback when it is stopped
        fire_from_thread(old_after)
        await asyncio.sleep(0.05)

        assert DecoderEvent.ENDED not in recorder.names()

    async def test_stop_silences_the_callback(self, voice_decoder, voice_client, recorder):
        voice_decoder.play("https://stream.example/a")
        await recorder.wait_for(DecoderEvent.READY)
        after = voice_client.after

        voice_decoder.stop()
        fire_from_thread(after)
        await asyncio.sleep(0.05)

        assert DecoderEvent.ENDED not in recorder.names()
        assert voice_decoder.position == 0.0


@pytest.mark.asyncio
class TestTransport:
    async def test_pause_freezes_position(self, voice_decoder, voice_client):
        voice_decoder.play("https://stream.example/a")
        voice_decoder.pause()
        frozen = voice_decoder.position
        await asyncio.sleep(0.05)

        assert voice_client.is_paused()
        assert voice_decoder.position == frozen

        voice_decoder.resume()
        assert voice_client.is_playing()

    async def test_seek_restarts_at_offset(self, voice_decoder, voice_client):
        voice_decoder.play("https://stream.example/a")

        voice_decoder.seek(42.0)

        assert voice_client.source.start_seconds == 42.0
        assert voice_client.is_playing()
        assert voice_decoder.position == pytest.approx(42.0, abs=0.5)

    async def test_seek_keeps_paused_state(self, voice_decoder, voice_client):
        voice_decoder.play("https://stream.example/a")
        voice_decoder.pause()

        voice_decoder.seek(30.0)

        assert voice_client.is_paused()
        assert voice_client.source.start_seconds == 30.0
        assert voice_decoder.position == pytest.approx(30.0, abs=0.5)

    async def test_seek_without_url_does_nothing(self, voice_decoder, voice_client):
        voice_decoder.seek(10.0)
        assert voice_client.source is None


def test_position_formula(monkeypatch):
    dec = VoiceDecoder(lambda: None)
    now = 1000.0
    monkeypatch.setattr(decoder.time, "time", lambda: now)
    dec.playback_start_time = 900.0
    dec.total_paused_duration = 10.0

    assert dec.position == 90.0

    dec.playback_paused_at = 950.0
    assert dec.position == 40.0
