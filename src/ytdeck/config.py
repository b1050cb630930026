import os
from dotenv import load_dotenv

load_dotenv()

# Discord configuration (the token is only required when the bot is launched)
DISCORD_TOKEN = os.getenv("DISCORD_TOKEN")
DISCORD_GUILD_ID = os.getenv("DISCORD_GUILD_ID")

# Demo track played whenever a stream URL cannot be resolved
YTDECK_FALLBACK_AUDIO_URL = os.getenv(
    "YTDECK_FALLBACK_AUDIO_URL",
    "https://www.soundhelix.com/examples/mp3/SoundHelix-Song-1.mp3",
)

# Number of synthetic results returned by /search
YTDECK_SEARCH_MAX_RESULTS = int(os.getenv("YTDECK_SEARCH_MAX_RESULTS", "20"))

# Output level while another source holds ducking focus (0.0 - 1.0)
YTDECK_DUCK_VOLUME = float(os.getenv("YTDECK_DUCK_VOLUME", "0.1"))

# Network resilience configuration for the watch page fetch
NETWORK_BACKOFF_BASE_SEC = float(os.getenv("NETWORK_BACKOFF_BASE_SEC", "2.0"))
NETWORK_BACKOFF_MAX_SEC = float(os.getenv("NETWORK_BACKOFF_MAX_SEC", "300.0"))
NETWORK_FAIL_WINDOW_SEC = float(os.getenv("NETWORK_FAIL_WINDOW_SEC", "120.0"))
NETWORK_FAIL_THRESHOLD = int(os.getenv("NETWORK_FAIL_THRESHOLD", "5"))

# HTTP timeout configuration (seconds)
AIOHTTP_TOTAL_TIMEOUT_SEC = float(os.getenv("AIOHTTP_TOTAL_TIMEOUT_SEC", "15.0"))
AIOHTTP_CONNECT_TIMEOUT_SEC = float(os.getenv("AIOHTTP_CONNECT_TIMEOUT_SEC", "10.0"))

# Enable verbose audio debugging logs
YTDECK_AUDIO_DEBUG = os.getenv("YTDECK_AUDIO_DEBUG", "false").lower() == "true"
