from typing import Iterable, Iterator, List, Optional

from .tracks import Track


class Playlist:
    """Ordered tracks with a wrapping cursor."""

    def __init__(self, tracks: Iterable[Track] = (), start_index: int = 0) -> None:
        self._tracks: List[Track] = []
        self._index = 0
        self.set(tracks, start_index)

    def set(self, tracks: Iterable[Track], start_index: int = 0) -> None:
        """Replace the contents. The cursor is clamped into range."""
        self._tracks = list(tracks)
        if not self._tracks:
            self._index = 0
            return
        self._index = max(0, min(start_index, len(self._tracks) - 1))

    def clear(self) -> None:
        self._tracks = []
        self._index = 0

    @property
    def index(self) -> int:
        return self._index

    @property
    def current(self) -> Optional[Track]:
        if not self._tracks:
            return None
        return self._tracks[self._index]

    def select(self, index: int) -> Track:
        if not 0 <= index < len(self._tracks):
            raise IndexError(f"playlist index {index} out of range (size {len(self._tracks)})")
        self._index = index
        return self._tracks[index]

    def next(self) -> Optional[Track]:
        if not self._tracks:
            return None
        self._index = (self._index + 1) % len(self._tracks)
        return self._tracks[self._index]

    def previous(self) -> Optional[Track]:
        if not self._tracks:
            return None
        self._index = (self._index - 1) % len(self._tracks)
        return self._tracks[self._index]

    def index_of(self, track: Track) -> int:
        return self._tracks.index(track)

    def __len__(self) -> int:
        return len(self._tracks)

    def __iter__(self) -> Iterator[Track]:
        return iter(list(self._tracks))

    def __getitem__(self, index: int) -> Track:
        return self._tracks[index]

    def __bool__(self) -> bool:
        return bool(self._tracks)
