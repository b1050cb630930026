import asyncio
import logging
from typing import List, Optional

import discord
from discord import app_commands

from . import config
from .config import DISCORD_TOKEN, DISCORD_GUILD_ID
from . import voice, audio, audio_debug, youtube, ui, VERSION
from .commands import Action, Command
from .decoder import VoiceDecoder
from .focus import AudioFocus
from .logging_config import setup_logging
from .network_health import NetworkHealth
from .service import PlaybackService
from .session import PlaybackSession
from .tracks import Track

# guild_id -> PlaybackService
services: dict[int, PlaybackService] = {}
# guild_id -> now playing message kept in sync with that guild's session
surfaces: dict[int, ui.NowPlayingMessage] = {}

# Shared across guilds; created in setup_hook once the event loop exists
extractor: Optional[youtube.YouTubeExtractor] = None
net_health: Optional[NetworkHealth] = None


async def get_service(
    guild: discord.Guild,
    channel: Optional[discord.abc.Messageable] = None,
) -> PlaybackService:
    service = services.get(guild.id)
    if service is None:
        decoder = VoiceDecoder(lambda: guild.voice_client)
        session = PlaybackSession(decoder, extractor, AudioFocus())
        service = PlaybackService(session)
        services[guild.id] = service
        await service.start()
        logging.info("Playback service started for guild %s", guild.id)

    surface = surfaces.get(guild.id)
    if channel is not None and (surface is None or surface.channel.id != channel.id):
        if surface is not None:
            service.session.remove_listener(surface)
        surface = ui.NowPlayingMessage(service, channel)
        service.session.add_listener(surface)
        surfaces[guild.id] = surface
    return service


async def drop_service(guild_id: int) -> None:
    surfaces.pop(guild_id, None)
    service = services.pop(guild_id, None)
    if service is not None:
        await service.shutdown()
        logging.info("Playback service shut down for guild %s", guild_id)


class YtDeckClient(discord.Client):
    def __init__(self) -> None:
        super().__init__(
            intents=discord.Intents.default()
        )
        self.tree = app_commands.CommandTree(self)

    async def setup_hook(self) -> None:
        """Called when the client is setting up. Event loop is available here."""
        global extractor
        extractor = youtube.YouTubeExtractor(
            health=net_health,
            total_timeout=config.AIOHTTP_TOTAL_TIMEOUT_SEC,
            connect_timeout=config.AIOHTTP_CONNECT_TIMEOUT_SEC,
        )

    async def on_ready(self) -> None:
        try:
            logging.info("Logged in as %s (ID: %s)", self.user, self.user.id)

            if DISCORD_GUILD_ID:
                guild = discord.Object(id=int(DISCORD_GUILD_ID))
                self.tree.copy_global_to(guild=guild)
                synced = await self.tree.sync(guild=guild)
                logging.info(
                    "Synced %d command(s) to Guild ID: %s", len(synced), DISCORD_GUILD_ID
                )
            else:
                synced = await self.tree.sync()
                logging.info("Synced %d command(s) globally.", len(synced))
                logging.warning(
                    "Global sync can take up to 1 hour to appear. Add DISCORD_GUILD_ID to .env for instant updates."
                )
        except discord.HTTPException as e:
            logging.error("Failed to sync commands: %s", e)

    async def on_voice_state_update(
        self,
        member: discord.Member,
        before: discord.VoiceState,
        after: discord.VoiceState
    ) -> None:
        """Losing the voice connection takes audio focus away from the session."""
        if member.id != self.user.id:
            return

        if before.channel is None and after.channel is not None:
            logging.info("Voice: Connected to %s", after.channel.name)
        elif before.channel is not None and after.channel is None:
            logging.info("Voice: Disconnected from %s", before.channel.name)
            service = services.get(member.guild.id)
            if service is not None:
                service.session.focus.revoke()
        elif before.channel != after.channel:
            logging.info("Voice: Moved from %s to %s", before.channel.name, after.channel.name)

    async def close(self) -> None:
        for guild_id in list(services):
            try:
                await drop_service(guild_id)
            except Exception:
                logging.exception("Failed to shut down service for guild %s", guild_id)
        if extractor is not None:
            await extractor.close()
        await super().close()


def main() -> None:
    global net_health

    setup_logging(logging.DEBUG if config.YTDECK_AUDIO_DEBUG else logging.INFO)

    if not DISCORD_TOKEN:
        raise ValueError("DISCORD_TOKEN is missing in .env")

    net_health = NetworkHealth(
        backoff_base_sec=config.NETWORK_BACKOFF_BASE_SEC,
        backoff_max_sec=config.NETWORK_BACKOFF_MAX_SEC,
        fail_window_sec=config.NETWORK_FAIL_WINDOW_SEC,
        fail_threshold=config.NETWORK_FAIL_THRESHOLD,
    )

    # Ensure opus is loaded before doing anything voice-related
    audio.load_opus_lib()
    logging.info("Launching Discord client")
    client = YtDeckClient()

    async def send_message(
        interaction: discord.Interaction,
        content: str | None = None,
        *,
        ephemeral: bool = False,
        embed: discord.Embed | None = None,
        view: discord.ui.View | None = None,
    ) -> None:
        kwargs: dict[str, object] = {"ephemeral": ephemeral}
        if content is not None:
            kwargs["content"] = content
        if embed is not None:
            kwargs["embed"] = embed
        if view is not None:
            kwargs["view"] = view

        if interaction.response.is_done():
            await interaction.followup.send(**kwargs)
        else:
            await interaction.response.send_message(**kwargs)

    async def handle_play(
        interaction: discord.Interaction,
        tracks: List[Track],
        index: int,
    ) -> None:
        if not interaction.guild:
            await send_message(interaction, "This command only works in a server.", ephemeral=True)
            return
        if not tracks:
            await send_message(interaction, "Nothing to play.", ephemeral=True)
            return

        if not interaction.response.is_done():
            await interaction.response.defer()

        try:
            voice_client = await voice.ensure_voice(interaction)
        except (discord.ClientException, asyncio.TimeoutError) as e:
            logging.warning("Voice connect failed: %s", e)
            await send_message(interaction, "Could not join your voice channel.", ephemeral=True)
            return
        if voice_client is None:
            await send_message(interaction, "Join a voice channel first.", ephemeral=True)
            return

        service = await get_service(interaction.guild, interaction.channel)
        if service.play_results(tracks, index):
            track = service.session.current
            await send_message(interaction, f"Loading **{track.title}**…")
        else:
            await send_message(
                interaction, "Audio is busy right now, try again in a moment.", ephemeral=True
            )

    async def do_search(interaction: discord.Interaction, query: str) -> None:
        results = await extractor.search_videos(query, config.YTDECK_SEARCH_MAX_RESULTS)
        if not results:
            await send_message(interaction, "Type something to search for.", ephemeral=True)
            return

        view = ui.SearchResultsView(results, handle_play)
        await send_message(interaction, embed=ui.make_search_embed(query.strip(), results), view=view)
        view.message = await interaction.original_response()

    async def do_play(interaction: discord.Interaction, query: str) -> None:
        if youtube.is_youtube_url(query):
            video_id = youtube.extract_video_id(query)
            if not video_id:
                await send_message(interaction, "That link has no video id.", ephemeral=True)
                return
            tracks = [Track(
                id=video_id,
                title=f"YouTube video {video_id}",
                artist="",
                thumbnail_url=youtube.THUMBNAIL_URL.format(video_id=video_id),
                source_url=query,
            )]
        else:
            tracks = await extractor.search_videos(query, config.YTDECK_SEARCH_MAX_RESULTS)
        await handle_play(interaction, tracks, 0)

    async def do_transport(
        interaction: discord.Interaction,
        action: Action,
        done_message: str,
        failed_message: str,
    ) -> None:
        if not interaction.guild:
            await send_message(interaction, "This command only works in a server.", ephemeral=True)
            return
        service = services.get(interaction.guild.id)
        if service is None:
            await send_message(interaction, "Nothing is playing.", ephemeral=True)
            return
        if service.handle(Command(action)):
            await send_message(interaction, done_message)
        else:
            await send_message(interaction, failed_message, ephemeral=True)

    async def do_nowplaying(interaction: discord.Interaction) -> None:
        service = services.get(interaction.guild_id) if interaction.guild_id else None
        if service is None or service.session.current is None:
            await send_message(interaction, "Nothing is playing.", ephemeral=True)
            return
        snapshot = service.session.snapshot()
        await send_message(
            interaction,
            embed=ui.make_now_playing_embed(snapshot),
            view=ui.NowPlayingView(service, snapshot, timeout=300.0),
        )

    async def do_info(interaction: discord.Interaction) -> None:
        stats = audio_debug.get_stats()
        embed = discord.Embed(title="ytdeck", color=ui.EMBED_COLOR)
        embed.add_field(
            name="Statistics",
            value=(
                f"**Version:** {VERSION}\n"
                f"**Servers:** {len(client.guilds)}\n"
                f"**Active players:** {len(services)}"
            ),
            inline=False,
        )
        embed.add_field(
            name="Playback",
            value=(
                f"**Played:** {stats['tracks_played']}\n"
                f"**Fallbacks:** {stats['fallbacks']}\n"
                f"**Decoder errors:** {stats['decoder_errors']}\n"
                f"**Avg resolve:** {stats['avg_resolve_time']}s"
            ),
            inline=True,
        )
        if net_health is not None:
            diagnostics = net_health.get_diagnostics()
            embed.add_field(
                name="Network",
                value=(
                    f"**State:** {diagnostics['state']}\n"
                    f"**Failures:** {diagnostics['total_failures']}"
                ),
                inline=True,
            )
        await send_message(interaction, embed=embed)

    async def do_leave(interaction: discord.Interaction) -> None:
        if interaction.guild_id in services:
            await drop_service(interaction.guild_id)
        await voice.leave_channel(interaction)

    @client.tree.command(name="join", description="Join your voice channel")
    async def join(interaction: discord.Interaction) -> None:
        await voice.join_channel(interaction)

    @client.tree.command(name="leave", description="Leave the voice channel")
    async def leave(interaction: discord.Interaction) -> None:
        await do_leave(interaction)

    @client.tree.command(name="search", description="Search for tracks")
    async def search(interaction: discord.Interaction, query: str) -> None:
        await do_search(interaction, query)

    @client.tree.command(name="play", description="Play a YouTube link or the first search result")
    async def play(interaction: discord.Interaction, query: str) -> None:
        await do_play(interaction, query)

    @client.tree.command(name="pause", description="Pause playback")
    async def pause(interaction: discord.Interaction) -> None:
        await do_transport(interaction, Action.PAUSE, "⏸️ Paused.", "Nothing is playing.")

    @client.tree.command(name="resume", description="Resume playback")
    async def resume(interaction: discord.Interaction) -> None:
        await do_transport(interaction, Action.PLAY, "▶️ Resumed.", "Nothing to resume.")

    @client.tree.command(name="next", description="Play the next track")
    async def next_track(interaction: discord.Interaction) -> None:
        await do_transport(interaction, Action.NEXT, "⏭️ Next track.", "The playlist is empty.")

    @client.tree.command(name="previous", description="Play the previous track")
    async def previous_track(interaction: discord.Interaction) -> None:
        await do_transport(interaction, Action.PREVIOUS, "⏮️ Previous track.", "The playlist is empty.")

    @client.tree.command(name="stop", description="Stop playback")
    async def stop(interaction: discord.Interaction) -> None:
        await do_transport(interaction, Action.STOP, "⏹️ Stopped.", "Nothing is playing.")

    @client.tree.command(name="nowplaying", description="Show the current track with controls")
    async def nowplaying(interaction: discord.Interaction) -> None:
        await do_nowplaying(interaction)

    @client.tree.command(name="info", description="Bot information")
    async def info(interaction: discord.Interaction) -> None:
        await do_info(interaction)

    client.run(DISCORD_TOKEN, log_handler=None)


if __name__ == "__main__":
    main()
