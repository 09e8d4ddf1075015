"""
Application configuration via pydantic-settings.

Loads values from .env file with sensible defaults for local development.
Use ``get_settings()`` to obtain the cached singleton instance.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """ClipDeck settings loaded from environment / .env file.

    All settings can be overridden via environment variables or a `.env` file.
    Field names map directly to env var names (case-insensitive).

    Attributes:
        api_base_url: Root URL of the clip storage backend.
        max_duration_seconds: Hard recording limit shared by the countdown
            and every UI that displays it.
        page_size: Number of clips shown per playlist page.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # Silently ignore unrecognized env vars
    )

    # --- Storage backend ---
    api_base_url: str = "http://localhost:5000"
    api_timeout: float = 30.0  # Seconds, applied to every HTTP request

    # --- Recording ---
    max_duration_seconds: int = 30
    countdown_tick_seconds: float = 1.0

    # Capture format; PCM16 blocks are delivered every block_ms
    sample_rate: int = 44100
    channels: int = 1
    block_ms: int = 100

    # --- Visualization ---
    fft_size: int = 64  # Yields fft_size // 2 frequency bins
    spectrum_smoothing: float = 0.8  # 0 = no smoothing, close to 1 = sluggish
    render_fps: int = 30

    # --- Playlist ---
    page_size: int = 5

    # --- Application ---
    log_level: str = "INFO"  # Python logging level


@lru_cache
def get_settings() -> Settings:
    """Return a cached Settings singleton.

    Uses ``functools.lru_cache`` so the .env file is read only once.
    Subsequent calls return the same ``Settings`` instance.

    Returns:
        Settings: The application-wide configuration object.
    """
    return Settings()
