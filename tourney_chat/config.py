"""Project-level configuration and path helpers."""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Union

PROJECT_ROOT = Path(__file__).resolve().parent.parent
DATA_DIR = PROJECT_ROOT / "data"
LOGS_DIR = PROJECT_ROOT / "logs"
DEFAULT_DB_PATH = DATA_DIR / "tourney_chat.db"
DEFAULT_LOG_PATH = LOGS_DIR / "app.log"

DATA_DIR.mkdir(parents=True, exist_ok=True)
LOGS_DIR.mkdir(parents=True, exist_ok=True)

MB = 1024 * 1024


PathLike = Union[str, Path]


def resolve_db_path(env_value: PathLike | None = None) -> PathLike:
    """Resolve DATABASE_URL to an absolute path."""
    if not env_value:
        return DEFAULT_DB_PATH

    if str(env_value) == ":memory:":
        return ":memory:"

    candidate = Path(env_value)
    return candidate if candidate.is_absolute() else PROJECT_ROOT / candidate


@dataclass
class ChatSettings:
    """Runtime settings for the chat core."""

    backend: str = "local"  # "local" or "supabase"
    database_url: str | None = None

    supabase_url: str = ""
    supabase_key: str = ""
    db_schema: str = "public"

    message_limit: int = 100
    typing_timeout: float = 3.0
    chat_bucket: str = "chat-files"
    max_upload_bytes: int = 10 * MB
    max_image_bytes: int = 5 * MB
    reaction_mode: str = "atomic"  # "atomic" or "full_map"

    reconnect_base_delay: float = 1.0
    reconnect_max_delay: float = 30.0
    reconnect_max_attempts: int = 5

    connectivity_timeout: float = 5.0

    @classmethod
    def from_env(cls) -> "ChatSettings":
        """Build settings from environment variables."""
        return cls(
            backend=os.getenv("CHAT_BACKEND", "local").lower(),
            database_url=os.getenv("DATABASE_URL"),
            supabase_url=os.getenv("SUPABASE_URL", ""),
            supabase_key=os.getenv("SUPABASE_SERVICE_KEY")
            or os.getenv("SUPABASE_KEY", ""),
            db_schema=os.getenv("DB_SCHEMA", "public"),
            message_limit=int(os.getenv("CHAT_MESSAGE_LIMIT", "100")),
            typing_timeout=float(os.getenv("CHAT_TYPING_TIMEOUT", "3.0")),
            chat_bucket=os.getenv("CHAT_BUCKET", "chat-files"),
            max_upload_bytes=int(os.getenv("CHAT_MAX_UPLOAD_BYTES", str(10 * MB))),
            max_image_bytes=int(os.getenv("CHAT_MAX_IMAGE_BYTES", str(5 * MB))),
            reaction_mode=os.getenv("CHAT_REACTION_MODE", "atomic").lower(),
            reconnect_base_delay=float(os.getenv("CHAT_RECONNECT_BASE_DELAY", "1.0")),
            reconnect_max_delay=float(os.getenv("CHAT_RECONNECT_MAX_DELAY", "30.0")),
            reconnect_max_attempts=int(os.getenv("CHAT_RECONNECT_MAX_ATTEMPTS", "5")),
            connectivity_timeout=float(os.getenv("CHAT_CONNECTIVITY_TIMEOUT", "5.0")),
        )
