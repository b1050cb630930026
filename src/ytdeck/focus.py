"""
Audio focus arbitration.

One owner holds focus at a time. Requesting focus notifies the current
holder how it lost it; abandoning focus hands it back to whoever was
interrupted. ``revoke`` is for the platform taking focus away entirely, e.g.
the bot being disconnected from its voice channel.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, List, Optional

logger = logging.getLogger(__name__)


class FocusChange(Enum):
    GAIN = "gain"
    LOSS = "loss"
    LOSS_TRANSIENT = "loss_transient"
    LOSS_TRANSIENT_CAN_DUCK = "loss_transient_can_duck"


class FocusGain(Enum):
    GAIN = "gain"
    GAIN_TRANSIENT = "gain_transient"
    GAIN_TRANSIENT_MAY_DUCK = "gain_transient_may_duck"
    GAIN_TRANSIENT_EXCLUSIVE = "gain_transient_exclusive"


FocusListener = Callable[[FocusChange], None]

# How the previous holder is told about a new request of each kind.
_LOSS_FOR_GAIN = {
    FocusGain.GAIN: FocusChange.LOSS,
    FocusGain.GAIN_TRANSIENT: FocusChange.LOSS_TRANSIENT,
    FocusGain.GAIN_TRANSIENT_EXCLUSIVE: FocusChange.LOSS_TRANSIENT,
    FocusGain.GAIN_TRANSIENT_MAY_DUCK: FocusChange.LOSS_TRANSIENT_CAN_DUCK,
}


@dataclass
class _FocusRequest:
    owner: Any
    listener: FocusListener
    gain: FocusGain


class AudioFocus:
    def __init__(self) -> None:
        # Last element is the current holder; earlier entries were interrupted
        # by a transient request and get GAIN back when it is abandoned.
        self._stack: List[_FocusRequest] = []

    @property
    def holder(self) -> Optional[Any]:
        return self._stack[-1].owner if self._stack else None

    def has_focus(self, owner: Any) -> bool:
        return self.holder is owner

    def request(
        self,
        owner: Any,
        listener: FocusListener,
        gain: FocusGain = FocusGain.GAIN,
    ) -> bool:
        """Request focus for owner. Returns False when the request is denied."""
        top = self._stack[-1] if self._stack else None
        if top is not None and top.owner is owner:
            top.listener = listener
            top.gain = gain
            return True

        if top is not None and top.gain == FocusGain.GAIN_TRANSIENT_EXCLUSIVE:
            logger.info("Audio focus denied: exclusive holder %r", top.owner)
            return False

        self._remove(owner)
        self._stack.append(_FocusRequest(owner, listener, gain))

        if top is not None:
            change = _LOSS_FOR_GAIN[gain]
            if change == FocusChange.LOSS:
                self._remove(top.owner)
            _notify(top, change)
        return True

    def abandon(self, owner: Any) -> None:
        was_holder = self.holder is owner
        if not self._remove(owner):
            return
        if was_holder and self._stack:
            _notify(self._stack[-1], FocusChange.GAIN)

    def revoke(self) -> None:
        """Take focus away from every owner, permanently."""
        requests = list(reversed(self._stack))
        self._stack.clear()
        for request in requests:
            _notify(request, FocusChange.LOSS)

    def _remove(self, owner: Any) -> bool:
        for index, request in enumerate(self._stack):
            if request.owner is owner:
                del self._stack[index]
                return True
        return False


def _notify(request: _FocusRequest, change: FocusChange) -> None:
    try:
        request.listener(change)
    except Exception:
        logger.exception("Audio focus listener failed for %s", change.value)
