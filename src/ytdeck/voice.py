from typing import Optional

import discord
from discord import Interaction


def _user_voice_channel(interaction: Interaction) -> Optional[discord.abc.Connectable]:
    if not interaction.user or not isinstance(interaction.user, discord.Member):
        return None
    voice_state = interaction.user.voice
    if not voice_state or not voice_state.channel:
        return None
    return voice_state.channel


async def ensure_voice(interaction: Interaction) -> Optional[discord.VoiceClient]:
    """
    Return the guild's voice client, joining the user's channel if needed.

    Does not respond to the interaction; returns None when neither the bot
    nor the user is in a voice channel.
    """
    guild = interaction.guild
    if not guild:
        return None
    voice_client = guild.voice_client
    if voice_client and voice_client.is_connected():
        return voice_client
    target_channel = _user_voice_channel(interaction)
    if target_channel is None:
        return None
    return await target_channel.connect()


async def join_channel(interaction: Interaction) -> None:
    """Handles joining the user's voice channel."""
    guild = interaction.guild
    if not guild:
        await interaction.response.send_message("This command only works in a server.", ephemeral=True)
        return

    target_channel = _user_voice_channel(interaction)
    if target_channel is None:
        await interaction.response.send_message("Join a voice channel first.", ephemeral=True)
        return

    voice_client: discord.VoiceClient | None = guild.voice_client

    if voice_client:
        if voice_client.channel.id == target_channel.id:
            await interaction.response.send_message(
                f"Already connected to {target_channel.mention}.", ephemeral=True
            )
            return

        await voice_client.move_to(target_channel)
        await interaction.response.send_message(f"Moved to {target_channel.mention}.")
    else:
        await target_channel.connect()
        await interaction.response.send_message(f"Connected to {target_channel.mention}.")


async def leave_channel(interaction: Interaction) -> None:
    """Handles leaving the voice channel."""
    guild = interaction.guild
    if not guild:
        await interaction.response.send_message("This command only works in a server.", ephemeral=True)
        return

    voice_client: discord.VoiceClient | None = guild.voice_client

    if not voice_client:
        await interaction.response.send_message("Not connected to a voice channel.", ephemeral=True)
        return

    channel_name = voice_client.channel.name
    await voice_client.disconnect()
    await interaction.response.send_message(f"Disconnected from {channel_name}.")
