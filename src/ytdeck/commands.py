"""
Command surface: transport actions delivered as discrete messages.

A command is an action name plus string-keyed extras, so it can travel
through a queue, a button custom_id or JSON unchanged.
"""

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping

from .session import PlaybackSession, SessionState
from .tracks import Track

logger = logging.getLogger(__name__)

ACTION_PREFIX = "ytdeck.action."

EXTRA_SONG_ID = "song_id"
EXTRA_SONG_TITLE = "song_title"
EXTRA_SONG_ARTIST = "song_artist"
EXTRA_SONG_URL = "song_url"


class Action(str, Enum):
    PLAY = ACTION_PREFIX + "PLAY"
    PAUSE = ACTION_PREFIX + "PAUSE"
    STOP = ACTION_PREFIX + "STOP"
    NEXT = ACTION_PREFIX + "NEXT"
    PREVIOUS = ACTION_PREFIX + "PREVIOUS"
    PLAY_SONG = ACTION_PREFIX + "PLAY_SONG"


class UnknownCommandError(ValueError):
    pass


def parse_action(value: str) -> Action:
    """Accept the full action string or just its name ("NEXT", "next")."""
    name = value.strip()
    if name.startswith(ACTION_PREFIX):
        name = name[len(ACTION_PREFIX):]
    try:
        return Action[name.upper()]
    except KeyError:
        raise UnknownCommandError(f"Unknown action: {value!r}") from None


@dataclass(frozen=True)
class Command:
    action: Action
    extras: Mapping[str, str] = field(default_factory=dict)

    @classmethod
    def play_song(cls, track: Track) -> "Command":
        return cls(Action.PLAY_SONG, {
            EXTRA_SONG_ID: track.id,
            EXTRA_SONG_TITLE: track.title,
            EXTRA_SONG_ARTIST: track.artist,
            EXTRA_SONG_URL: track.source_url,
        })

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "Command":
        action = data.get("action")
        if not isinstance(action, str):
            raise UnknownCommandError("Command is missing an action")
        extras = data.get("extras") or {}
        if not isinstance(extras, Mapping):
            raise UnknownCommandError("Command extras must be a mapping")
        # JSON nulls count as missing
        return cls(parse_action(action), {str(k): str(v) for k, v in extras.items() if v is not None})

    @classmethod
    def from_json(cls, text: str) -> "Command":
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise UnknownCommandError(f"Malformed command: {e}") from e
        if not isinstance(data, dict):
            raise UnknownCommandError("Command must be a JSON object")
        return cls.from_mapping(data)

    def to_mapping(self) -> Dict[str, Any]:
        return {"action": self.action.value, "extras": dict(self.extras)}

    def to_json(self) -> str:
        return json.dumps(self.to_mapping())


def apply_command(session: PlaybackSession, command: Command) -> bool:
    """Apply command to session. Returns whether it had an effect."""
    action = command.action
    if action == Action.PLAY:
        if session.state == SessionState.PAUSED:
            return session.resume()
        if session.state in (SessionState.IDLE, SessionState.STOPPED) and session.current:
            return session.play(session.current)
        return False
    if action == Action.PAUSE:
        return session.pause()
    if action == Action.STOP:
        session.stop()
        return True
    if action == Action.NEXT:
        return session.next()
    if action == Action.PREVIOUS:
        return session.previous()
    if action == Action.PLAY_SONG:
        song_id = command.extras.get(EXTRA_SONG_ID)
        if not song_id:
            logger.warning("PLAY_SONG without %s ignored", EXTRA_SONG_ID)
            return False
        track = Track(
            id=song_id,
            title=command.extras.get(EXTRA_SONG_TITLE, ""),
            artist=command.extras.get(EXTRA_SONG_ARTIST, ""),
            thumbnail_url="",
            source_url=command.extras.get(EXTRA_SONG_URL, ""),
        )
        return session.play(track)
    raise UnknownCommandError(f"Unhandled action: {action}")
