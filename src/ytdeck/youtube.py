import asyncio
import logging
import re
import time
from typing import List, Optional
from urllib.parse import unquote_plus

import aiohttp

from .network_health import NetworkHealth, classify_error
from .tracks import Track, VideoInfo
from . import audio_debug

logger = logging.getLogger(__name__)

YOUTUBE_BASE_URL = "https://www.youtube.com/watch?v="
THUMBNAIL_URL = "https://img.youtube.com/vi/{video_id}/maxresdefault.jpg"
SEARCH_THUMBNAIL = "https://img.youtube.com/vi/dQw4w9WgXcQ/maxresdefault.jpg"
USER_AGENT = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"
UNKNOWN_TITLE = "Unknown title"

# Naive patterns over the watch page's embedded player JSON. They break
# whenever the markup changes; callers must expect None.
URL_PATTERN = re.compile(r'"url":"([^"]+)"')
TITLE_PATTERN = re.compile(r'"title":"([^"]+)"')
DURATION_PATTERN = re.compile(r'"lengthSeconds":"([^"]+)"')


class YouTubeError(Exception):
    pass


class YouTubeExtractor:
    """
    Resolves video ids to playable audio URLs by scraping the watch page.

    Search is synthetic: no API is called. Extraction performs a single
    unauthenticated GET and regex-matches the title, length and the first
    audio stream URL it can find.
    """

    def __init__(
        self,
        session: Optional[aiohttp.ClientSession] = None,
        health: Optional[NetworkHealth] = None,
        total_timeout: float = 15.0,
        connect_timeout: float = 10.0,
    ) -> None:
        self._session = session
        self._owns_session = session is None
        self.health = health
        self.timeout = aiohttp.ClientTimeout(total=total_timeout, connect=connect_timeout)

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
            self._owns_session = True
        return self._session

    async def extract_video_info(self, video_id: str) -> Optional[VideoInfo]:
        """Fetch the watch page for video_id and parse it. Returns None on any failure."""
        start_time = time.time()
        try:
            html = await self._fetch_video_page(YOUTUBE_BASE_URL + video_id)
            return parse_video_info(html, video_id)
        except YouTubeError as e:
            logger.warning("Could not fetch video page for %s: %s", video_id, e)
            return None
        except Exception:
            logger.exception("Unexpected error extracting video info for %s", video_id)
            return None
        finally:
            audio_debug.log_resolve_time(time.time() - start_time)

    async def _fetch_video_page(self, url: str) -> str:
        if self.health is not None and not await self.health.allow_request():
            raise YouTubeError("network marked offline, skipping fetch")

        try:
            session = self._get_session()
            async with session.get(
                url,
                headers={"User-Agent": USER_AGENT},
                timeout=self.timeout,
            ) as response:
                response.raise_for_status()
                html = await response.text()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            if self.health is not None:
                await self.health.record_failure(e, classify_error(e))
            raise YouTubeError(f"Failed to fetch {url}: {e or type(e).__name__}") from e
        except BaseException:
            # Cancelled (superseded track) or unexpected: no outcome to record
            if self.health is not None:
                self.health.abandon_trial()
            raise

        if self.health is not None:
            await self.health.record_success()
        return html

    async def search_videos(self, query: str, max_results: int = 20) -> List[Track]:
        """
        Return synthetic search results for query.

        There is no search backend; results are generated from the query so the
        rest of the player can be exercised.
        """
        query = query.strip()
        if not query:
            return []
        return generate_simulated_results(query, max_results)


def parse_video_info(html: str, video_id: str) -> VideoInfo:
    title_match = TITLE_PATTERN.search(html)
    title = unquote_plus(title_match.group(1)) if title_match else UNKNOWN_TITLE

    duration = None
    duration_match = DURATION_PATTERN.search(html)
    if duration_match:
        try:
            seconds = int(duration_match.group(1))
        except ValueError:
            seconds = 0
        duration = format_duration(seconds)

    return VideoInfo(
        title=title,
        audio_url=extract_audio_url(html),
        duration=duration,
        thumbnail=THUMBNAIL_URL.format(video_id=video_id),
    )


def extract_audio_url(html: str) -> Optional[str]:
    """First URL in the page that looks like an audio-only stream."""
    for match in URL_PATTERN.finditer(html):
        url = unquote_plus(match.group(1))
        if "mime=audio" in url or "audio/mp4" in url:
            return url
    return None


def format_duration(seconds: int) -> str:
    minutes, secs = divmod(max(seconds, 0), 60)
    return f"{minutes}:{secs:02d}"


def generate_simulated_results(query: str, max_results: int) -> List[Track]:
    results = []
    for index in range(max(max_results, 0)):
        video_id = f"video_{query}_{index}"
        results.append(Track(
            id=video_id,
            title=f"{query} - Result {index + 1}",
            artist=f"Artist {index + 1}",
            thumbnail_url=SEARCH_THUMBNAIL,
            source_url=YOUTUBE_BASE_URL + video_id,
            duration=f"{2 + index % 5}:{(30 + index * 7) % 60:02d}",
        ))
    return results


def is_youtube_url(url: str) -> bool:
    return "youtube.com/watch" in url or "youtu.be/" in url or "m.youtube.com" in url


def extract_video_id(url: str) -> Optional[str]:
    """Extract the video id from a watch or youtu.be URL."""
    if "youtube.com/watch" in url:
        match = re.search(r"v=([a-zA-Z0-9_-]+)", url)
    elif "youtu.be/" in url:
        match = re.search(r"youtu\.be/([a-zA-Z0-9_-]+)", url)
    else:
        return None
    return match.group(1) if match else None
