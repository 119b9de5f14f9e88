# OpsDesk - Data Layer
from opsdesk.core.config import STORE_BACKENDS, Settings, get_settings
from opsdesk.core.errors import ConfigError

from .memory_store import InMemoryStore
from .postgres_store import PostgresStore
from .postgrest_store import PostgrestStore
from .store import DocumentStore, Filters, Record


def create_store(backend: str, settings: Settings | None = None, name: str | None = None) -> DocumentStore:
    """Build an origin store for ``backend`` (memory, postgres or postgrest)."""
    settings = settings or get_settings()

    if backend == "memory":
        return InMemoryStore(name=name or "memory")
    if backend == "postgres":
        return PostgresStore(
            dsn=settings.DATABASE_URL,
            min_size=settings.DB_POOL_MIN_SIZE,
            max_size=settings.DB_POOL_MAX_SIZE,
            command_timeout=settings.DB_COMMAND_TIMEOUT,
            name=name or "postgres",
        )
    if backend == "postgrest":
        if not settings.SUPABASE_URL:
            raise ConfigError("SUPABASE_URL is required for the postgrest store", key="SUPABASE_URL")
        return PostgrestStore(
            base_url=settings.SUPABASE_URL,
            api_key=settings.SUPABASE_KEY,
            timeout=settings.HTTP_TIMEOUT,
            name=name or "postgrest",
        )
    raise ConfigError(f"Unknown store backend '{backend}', expected one of {STORE_BACKENDS}", key="STORE_BACKEND")


__all__ = [
    "DocumentStore",
    "Filters",
    "Record",
    "InMemoryStore",
    "PostgresStore",
    "PostgrestStore",
    "create_store",
]
