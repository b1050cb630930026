import asyncio
import logging
from typing import Optional, Sequence

from .commands import Command, apply_command
from .session import PlaybackSession
from .tracks import Track

logger = logging.getLogger(__name__)


class PlaybackService:
    """
    Background owner of a PlaybackSession.

    Surfaces submit commands; a single consumer task applies them in order
    on the event loop, so the session never has more than one writer.
    """

    def __init__(self, session: PlaybackSession) -> None:
        self.session = session
        self.commands: asyncio.Queue[Command] = asyncio.Queue()
        self.task: Optional[asyncio.Task] = None

    async def start(self) -> None:
        """Starts the command loop if not already running."""
        if self.task is None or self.task.done():
            self.task = asyncio.create_task(self.command_loop())

    def submit(self, command: Command) -> None:
        self.commands.put_nowait(command)

    def handle(self, command: Command) -> bool:
        """Apply a command immediately. Failures are logged, not raised."""
        try:
            return apply_command(self.session, command)
        except Exception:
            logger.exception("Command %s failed", command.action.name)
            return False

    def play_results(self, tracks: Sequence[Track], index: int) -> bool:
        """Make tracks the playlist and play the one at index."""
        if not tracks:
            return False
        self.session.set_playlist(tracks, index)
        return self.session.play_at(self.session.playlist.index)

    async def command_loop(self) -> None:
        """Main background loop."""
        while True:
            try:
                command = await self.commands.get()
            except asyncio.CancelledError:
                break
            try:
                logger.debug("Applying command %s", command.action.name)
                self.handle(command)
            finally:
                self.commands.task_done()

    async def join(self) -> None:
        """Wait until every submitted command has been applied."""
        await self.commands.join()

    async def shutdown(self) -> None:
        """Stops the command loop and tears the session down."""
        if self.task is not None:
            self.task.cancel()
            await asyncio.wait({self.task})
            self.task = None
        await self.session.close()
