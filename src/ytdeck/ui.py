import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional, Sequence, Tuple

import discord

from .commands import Action, Command, parse_action
from .session import SessionSnapshot, SessionState
from .tracks import Track, parse_duration

EMBED_COLOR = 0xE62117

ACTION_OPEN = "ytdeck.action.OPEN"
DEFAULT_TITLE = "Now playing"
DEFAULT_ARTIST = "Unknown artist"

STATE_TITLES = {
    SessionState.IDLE: "Idle",
    SessionState.LOADING: "Loading…",
    SessionState.PLAYING: "Now playing",
    SessionState.PAUSED: "Paused",
    SessionState.STOPPED: "Stopped",
}


@dataclass(frozen=True)
class NotificationAction:
    action: str
    label: str
    emoji: str


@dataclass(frozen=True)
class TransportNotification:
    """Platform-neutral model of the playback notification."""
    title: str
    text: str
    ongoing: bool
    actions: Tuple[NotificationAction, ...]
    delete_action: str
    content_action: str


PREVIOUS_ACTION = NotificationAction(Action.PREVIOUS.value, "Previous", "⏮️")
PAUSE_ACTION = NotificationAction(Action.PAUSE.value, "Pause", "⏸️")
PLAY_ACTION = NotificationAction(Action.PLAY.value, "Play", "▶️")
NEXT_ACTION = NotificationAction(Action.NEXT.value, "Next", "⏭️")
STOP_ACTION = NotificationAction(Action.STOP.value, "Stop", "⏹️")


def build_notification(snapshot: SessionSnapshot) -> TransportNotification:
    track = snapshot.track
    title = track.title if track and track.title else DEFAULT_TITLE
    text = track.artist if track and track.artist else DEFAULT_ARTIST
    play_pause = PAUSE_ACTION if snapshot.is_playing else PLAY_ACTION
    return TransportNotification(
        title=title,
        text=text,
        ongoing=snapshot.is_playing,
        actions=(PREVIOUS_ACTION, play_pause, NEXT_ACTION),
        delete_action=Action.STOP.value,
        content_action=ACTION_OPEN,
    )


def format_seconds(seconds: float) -> str:
    """Format seconds as M:SS"""
    total_seconds = max(int(seconds), 0)
    minutes, secs = divmod(total_seconds, 60)
    return f"{minutes}:{secs:02d}"


def make_progress_bar(position: float, duration: float, length: int = 20) -> str:
    progress = min(max(position / duration, 0.0), 1.0) if duration > 0 else 0.0
    filled = min(int(length * progress), length - 1)
    return "━" * filled + "●" + "─" * (length - filled - 1)


def make_now_playing_embed(snapshot: SessionSnapshot) -> discord.Embed:
    notification = build_notification(snapshot)
    embed = discord.Embed(
        title=STATE_TITLES[snapshot.state],
        description=f"**{notification.title}**",
        color=EMBED_COLOR,
    )
    embed.add_field(name="Artist", value=notification.text, inline=True)

    duration = parse_duration(snapshot.duration)
    if duration:
        embed.add_field(name="Duration", value=format_seconds(duration), inline=True)
        if snapshot.state in (SessionState.PLAYING, SessionState.PAUSED):
            bar = make_progress_bar(snapshot.position, duration)
            embed.add_field(
                name="Progress",
                value=f"`{format_seconds(snapshot.position)} {bar} {format_seconds(duration)}`",
                inline=False,
            )

    if snapshot.degraded:
        embed.add_field(
            name="Source",
            value="Stream unavailable, playing demo audio",
            inline=False,
        )

    track = snapshot.track
    if track and track.source_url:
        embed.url = track.source_url
    if track and track.thumbnail_url:
        embed.set_thumbnail(url=track.thumbnail_url)
    if snapshot.playlist_length:
        embed.set_footer(text=f"Track {snapshot.playlist_index + 1}/{snapshot.playlist_length}")
    return embed


def make_search_embed(query: str, results: Sequence[Track]) -> discord.Embed:
    lines = []
    for index, track in enumerate(results[:25], 1):
        duration = f" ({track.duration})" if track.duration else ""
        lines.append(f"`{index}.` **{track.title}** · {track.artist}{duration}")
    return discord.Embed(
        title=f"Results for “{query}”",
        description="\n".join(lines) or "No results.",
        color=EMBED_COLOR,
    )


class NowPlayingView(discord.ui.View):
    """Transport buttons: previous, play/pause, next and stop."""

    def __init__(self, service, snapshot: SessionSnapshot, timeout: Optional[float] = None) -> None:
        super().__init__(timeout=timeout)
        self.service = service

        notification = build_notification(snapshot)
        for item in notification.actions + (STOP_ACTION,):
            if item is PAUSE_ACTION:
                style = discord.ButtonStyle.primary
            elif item is PLAY_ACTION:
                style = discord.ButtonStyle.success
            elif item is STOP_ACTION:
                style = discord.ButtonStyle.danger
            else:
                style = discord.ButtonStyle.secondary
            button = discord.ui.Button(
                emoji=item.emoji,
                label=item.label,
                style=style,
                custom_id=item.action,
            )
            button.callback = self._make_callback(item.action)
            self.add_item(button)

    def _make_callback(self, action: str):
        async def _callback(interaction: discord.Interaction) -> None:
            self.service.submit(Command(parse_action(action)))
            # The session listener re-renders the message.
            await interaction.response.defer()

        return _callback


PickCallback = Callable[[discord.Interaction, List[Track], int], Awaitable[None]]


class SearchResultsView(discord.ui.View):
    """Select menu over search results; picking one plays it."""

    def __init__(self, results: Sequence[Track], pick_callback: PickCallback, timeout: float = 120.0) -> None:
        super().__init__(timeout=timeout)
        self.results = list(results)[:25]
        self._pick_callback = pick_callback
        self.message: Optional[discord.Message] = None

        options = []
        for index, track in enumerate(self.results):
            description = track.artist
            if track.duration:
                description = f"{description} · {track.duration}"
            options.append(discord.SelectOption(
                label=track.title[:100] or track.id[:100],
                description=description[:100] or None,
                value=str(index),
            ))
        self.select = discord.ui.Select(placeholder="Pick a track to play", options=options)
        self.select.callback = self._select_callback
        self.add_item(self.select)

    async def _select_callback(self, interaction: discord.Interaction) -> None:
        index = int(self.select.values[0])
        await self._pick_callback(interaction, self.results, index)

    async def on_timeout(self) -> None:
        for item in self.children:
            item.disabled = True
        if self.message:
            try:
                await self.message.edit(view=self)
            except discord.HTTPException:
                return


class NowPlayingMessage:
    """
    Keeps one now-playing message in a channel in sync with the session.

    Registered as a session listener. Snapshots arriving while a render is
    in flight are coalesced; only the latest one is rendered.
    """

    def __init__(self, service, channel: discord.abc.Messageable) -> None:
        self.service = service
        self.channel = channel
        self.message: Optional[discord.Message] = None
        self.view: Optional[NowPlayingView] = None
        self._track_id: Optional[str] = None
        self._pending: Optional[SessionSnapshot] = None
        self._task: Optional[asyncio.Task] = None

    def __call__(self, snapshot: SessionSnapshot) -> None:
        self._pending = snapshot
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._flush())

    async def _flush(self) -> None:
        while self._pending is not None:
            snapshot, self._pending = self._pending, None
            try:
                await self._render(snapshot)
            except discord.HTTPException as e:
                logging.warning("Could not update now playing message: %s", e)

    async def _render(self, snapshot: SessionSnapshot) -> None:
        if snapshot.track is None or snapshot.state == SessionState.IDLE:
            return

        embed = make_now_playing_embed(snapshot)
        old_view = self.view
        if snapshot.state == SessionState.STOPPED:
            self.view = None
        else:
            self.view = NowPlayingView(self.service, snapshot)
        if old_view is not None:
            old_view.stop()

        if self.message is not None and snapshot.track.id == self._track_id:
            await self.message.edit(embed=embed, view=self.view)
            return

        # New track: post a fresh message so it shows up at the bottom.
        if self.message is not None:
            try:
                await self.message.edit(view=None)
            except discord.HTTPException as e:
                logging.debug("Could not clear old transport buttons: %s", e)
        self.message = await self.channel.send(embed=embed, view=self.view)
        self._track_id = snapshot.track.id
