"""
Audio debug and instrumentation module.

Tracks playback statistics for diagnostics. Enable verbose logging with
YTDECK_AUDIO_DEBUG=true in .env.
"""

import time
from dataclasses import dataclass, field
from typing import Dict, Optional
from collections import deque


@dataclass
class AudioStats:
    """Statistics for audio playback diagnostics."""
    tracks_played: int = 0
    fallbacks: int = 0
    decoder_errors: int = 0
    resolve_times: deque = field(default_factory=lambda: deque(maxlen=50))
    playback_errors: deque = field(default_factory=lambda: deque(maxlen=20))
    last_playback_start: Optional[float] = None


# Global stats instance
_stats = AudioStats()


def is_debug_enabled() -> bool:
    """Check if audio debug mode is enabled."""
    from . import config
    return getattr(config, 'YTDECK_AUDIO_DEBUG', False)


def log_resolve_time(duration_seconds: float) -> None:
    """Record a watch page resolve time."""
    _stats.resolve_times.append(duration_seconds)


def log_playback_start() -> None:
    """Record a source being handed to the decoder."""
    _stats.tracks_played += 1
    _stats.last_playback_start = time.time()


def log_fallback(reason: str) -> None:
    """Record that the fallback media was bound instead of a resolved stream."""
    _stats.fallbacks += 1
    _stats.playback_errors.append({
        'time': time.time(),
        'type': 'Fallback',
        'message': reason[:200]
    })


def log_decoder_error(message: str) -> None:
    """Record a decoder error event."""
    _stats.decoder_errors += 1
    _stats.playback_errors.append({
        'time': time.time(),
        'type': 'Decoder',
        'message': message[:200]
    })


def get_stats() -> Dict:
    """Get current audio statistics as a dictionary."""
    avg_resolve = 0.0
    if _stats.resolve_times:
        avg_resolve = sum(_stats.resolve_times) / len(_stats.resolve_times)

    # Errors in the last 5 minutes, by type
    error_counts: Dict[str, int] = {}
    recent_cutoff = time.time() - 300
    for error in _stats.playback_errors:
        if error['time'] > recent_cutoff:
            error_type = error['type']
            error_counts[error_type] = error_counts.get(error_type, 0) + 1

    return {
        'tracks_played': _stats.tracks_played,
        'fallbacks': _stats.fallbacks,
        'decoder_errors': _stats.decoder_errors,
        'avg_resolve_time': round(avg_resolve, 2),
        'recent_errors_by_type': error_counts,
        'debug_enabled': is_debug_enabled(),
        'last_playback_start': _stats.last_playback_start,
    }


def reset_stats() -> None:
    """Reset all statistics. Useful for testing."""
    global _stats
    _stats = AudioStats()
