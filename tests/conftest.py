"""Shared fixtures for the SolRelay agent tests.

Store-level tests use a REAL PostgreSQL database and are skipped when it is
unavailable. Scheduler behaviour tests run against the in-memory repository
in tests/fakes.py with a hand-driven clock.
"""

from __future__ import annotations

import os
from datetime import timedelta
from pathlib import Path

import pytest
from dotenv import load_dotenv

# Load .env from project root so DATABASE_URL etc. are available
load_dotenv(Path(__file__).parent.parent / ".env", override=False)

from src.core.config import _ENV_OVERRIDES, AppConfig, DatabaseConfig, load_config
from src.core.factory import ComponentFactory
from src.core.models import Transfer

from tests.fakes import InMemoryRepository, MutableClock


# ---------------------------------------------------------------------------
# Service availability checks
# ---------------------------------------------------------------------------

def _postgres_available() -> bool:
    """Check if PostgreSQL is reachable."""
    try:
        import psycopg
        config = _get_db_config()
        conn = psycopg.connect(config.connection_string, connect_timeout=5)
        conn.close()
        return True
    except Exception:
        return False


def _get_db_config() -> DatabaseConfig:
    """Build a DatabaseConfig from environment or defaults."""
    db_url = os.getenv("DATABASE_URL")
    if db_url and db_url.startswith(("postgresql://", "postgres://")):
        from urllib.parse import urlparse
        parsed = urlparse(db_url)
        return DatabaseConfig(
            host=parsed.hostname or "localhost",
            port=parsed.port or 5432,
            dbname=(parsed.path[1:] if parsed.path and len(parsed.path) > 1 else "solrelay"),
            user=parsed.username or "solrelay",
            password=parsed.password or "solrelay",
        )
    return DatabaseConfig()


# Skip markers
requires_postgres = pytest.mark.skipif(
    not _postgres_available(),
    reason="PostgreSQL not available",
)


# ---------------------------------------------------------------------------
# Config fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def config_dir() -> Path:
    return Path(__file__).parent.parent / "config"


@pytest.fixture
def app_config(config_dir: Path, monkeypatch) -> AppConfig:
    """Test overlay with every environment override cleared."""
    for env_name, *_ in _ENV_OVERRIDES:
        monkeypatch.delenv(env_name, raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    return load_config(config_dir=config_dir, env="test")


# ---------------------------------------------------------------------------
# In-memory scheduler fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def clock() -> MutableClock:
    return MutableClock()


@pytest.fixture
def memory_repo() -> InMemoryRepository:
    return InMemoryRepository()


@pytest.fixture
def make_transfer(memory_repo: InMemoryRepository, clock: MutableClock):
    """Create a transfer created ``hours_ago`` hours before the clock's now."""

    def _make(hours_ago: float = 0.0, email: str = "alice@example.com", **fields) -> Transfer:
        created = clock.now - timedelta(hours=hours_ago)
        transfer = Transfer(
            email=email,
            amount=fields.pop("amount", 1.5),
            sender_pubkey=fields.pop("sender_pubkey", "SenderPubkey1111111111111111111111111111111"),
            created_at=created,
            **fields,
        )
        return memory_repo.create_transfer(transfer)

    return _make


@pytest.fixture
def scheduler(app_config: AppConfig, memory_repo: InMemoryRepository, clock: MutableClock):
    """Fully wired scheduler over the in-memory store, emails in dev mode."""
    return ComponentFactory.wire(app_config, memory_repo, clock=clock)


# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def db_config() -> DatabaseConfig:
    return _get_db_config()


@pytest.fixture
def db_engine(db_config):
    """Real PostgreSQL engine — creates schema, yields, cleans up."""
    from src.db.engine import DatabaseEngine
    engine = DatabaseEngine(db_config)
    engine.initialize_schema()
    yield engine
    engine.close()


@pytest.fixture
def repository(db_engine):
    from src.db.repository import Repository
    return Repository(db_engine)
