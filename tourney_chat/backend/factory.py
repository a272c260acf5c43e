"""Backend selection from settings."""

from ..config import ChatSettings
from .local import LocalBackend
from .ports import IBackend
from .supabase_backend import SupabaseBackend

BACKENDS = ("local", "supabase")


def create_backend(settings: ChatSettings) -> IBackend:
    """Build (but do not init) the backend named by settings.backend."""
    if settings.backend == "local":
        return LocalBackend(settings.database_url)
    if settings.backend == "supabase":
        return SupabaseBackend(
            settings.supabase_url,
            settings.supabase_key,
            schema=settings.db_schema,
        )
    raise ValueError(f"Unknown chat backend: {settings.backend} (expected one of {BACKENDS})")
