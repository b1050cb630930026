import discord
import shutil
import os
import platform

# Remote streams drop occasionally; let ffmpeg reconnect instead of ending the track
FFMPEG_BEFORE_OPTIONS = (
    '-nostdin -reconnect 1 -reconnect_streamed 1 -reconnect_delay_max 5'
)
# -vn: No video
FFMPEG_OPTIONS = '-vn'


def _is_executable(path: str) -> bool:
    return os.path.exists(path) and os.access(path, os.X_OK)


def _is_elf(path: str) -> bool:
    try:
        with open(path, "rb") as handle:
            return handle.read(4) == b"\x7fELF"
    except OSError:
        return False


class AudioError(Exception):
    """Custom exception for audio errors."""
    pass


def get_base_path() -> str:
    """Returns the project root directory."""
    # src/ytdeck/audio.py -> src/ytdeck -> src -> root
    return os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


def get_ffmpeg_executable() -> str:
    """Finds the ffmpeg executable path."""
    system = platform.system()

    base_path = get_base_path()
    if system == "Windows":
        local_bin = os.path.join(base_path, "bin", "ffmpeg.exe")
        if _is_executable(local_bin):
            return local_bin
    else:
        local_bin = os.path.join(base_path, "bin", "ffmpeg")
        # Skip a macOS binary on Linux; fall back to PATH/system
        if _is_executable(local_bin) and not (system == "Linux" and not _is_elf(local_bin)):
            return local_bin

    path = shutil.which("ffmpeg")
    if path:
        return path

    common_paths = [
        "/opt/homebrew/bin/ffmpeg",
        "/usr/local/bin/ffmpeg",
    ]
    for p in common_paths:
        if os.path.exists(p):
            return p
    return "ffmpeg"


def load_opus_lib() -> None:
    """Explicitly loads libopus if not already loaded."""
    if discord.opus.is_loaded():
        return

    system = platform.system()

    base_path = get_base_path()
    if system == "Windows":
        possible_names = ["libopus-0.dll", "libopus.dll"]
    elif system == "Darwin":
        possible_names = ["libopus.dylib"]
    else:
        possible_names = ["libopus.so.0", "libopus.so"]

    for name in possible_names:
        local_lib = os.path.join(base_path, "bin", name)
        if os.path.exists(local_lib):
            try:
                discord.opus.load_opus(local_lib)
                return
            except OSError:
                continue

    if system == "Windows":
        opus_paths = ["libopus-0.dll", "libopus.dll"]
    elif system == "Darwin":
        opus_paths = [
            "/opt/homebrew/lib/libopus.dylib",
            "/usr/local/lib/libopus.dylib",
        ]
    else:
        opus_paths = [
            "libopus.so.0",
            "/usr/lib/libopus.so.0",
            "/usr/lib64/libopus.so.0",
            "/usr/local/lib/libopus.so.0",
        ]

    for path in opus_paths:
        try:
            discord.opus.load_opus(path)
            return
        except OSError:
            continue

    # Still not loaded: discord.py raises OpusNotLoaded on first playback


def create_stream_source(
    url: str,
    ffmpeg_path: str,
    volume: float = 1.0,
    start_seconds: float = 0.0,
) -> discord.PCMVolumeTransformer:
    """
    Build a volume-controllable PCM source streaming url through ffmpeg.

    Raises AudioError when ffmpeg cannot be started.
    """
    before_options = FFMPEG_BEFORE_OPTIONS
    if start_seconds > 0:
        before_options = f"{before_options} -ss {start_seconds:.2f}"
    if ffmpeg_path == "ffmpeg" and not shutil.which("ffmpeg"):
        raise AudioError("FFmpeg executable not found. Please install ffmpeg.")
    try:
        source = discord.FFmpegPCMAudio(
            url,
            executable=ffmpeg_path,
            before_options=before_options,
            options=FFMPEG_OPTIONS,
        )
    except discord.ClientException as e:
        raise AudioError(f"Discord Client Exception: {e}") from e
    return discord.PCMVolumeTransformer(source, volume=volume)
