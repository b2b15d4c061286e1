# relay_server/config.py

from pathlib import Path
from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Define the base directory of the project (one level above the package)
SERVER_DIR = Path(__file__).parent.parent.resolve()


class Settings(BaseSettings):
    """
    Manages the relay's configuration settings using pydantic-settings.
    Values are read from environment variables or a server.env file.
    """

    model_config = SettingsConfigDict(
        env_file="server.env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # --- Network Settings ---
    SERVER_HOST: str = "127.0.0.1"
    SERVER_PORT: int = Field(default=12345, ge=0, le=65535)

    # Ceiling on concurrently running sessions. Connections above it wait
    # for a free slot; they are never rejected.
    MAX_SESSIONS: int = Field(default=20, ge=1)

    # Frames buffered per session before new ones are dropped.
    OUTBOX_SIZE: int = Field(default=256, ge=1)

    # Seconds a session may sit idle before it is dropped. None = wait forever.
    IDLE_TIMEOUT: Optional[float] = Field(default=None, gt=0)

    # Longest frame, terminator included, a stream reader will buffer.
    MAX_LINE_BYTES: int = Field(default=1024 * 1024, ge=1024)

    # --- Database Settings ---
    DATABASE_PATH: Path = SERVER_DIR / "messenger.db"

    # How stored credentials are compared: verbatim ("plain") or bcrypt hashes.
    PASSWORD_SCHEME: Literal["plain", "bcrypt"] = "plain"

    # --- Logging Settings ---
    LOG_LEVEL: str = "INFO"
    LOG_FILE: Optional[Path] = None


# A single, globally accessible instance of the settings.
settings = Settings()
