"""
Pytest configuration for the block cache.

Provides fixtures for:
- Settings override for tests
- Database connection checks for integration tests
"""

from __future__ import annotations

import os

import psycopg
import pytest

from blockcache.config import Settings
from blockcache.infrastructure.db_factory import build_dsn


@pytest.fixture(scope="session")
def test_settings() -> Settings:
    """
    Settings fixture with test-specific overrides.

    Can be overridden via environment variables in CI or local testing.
    """
    return Settings(
        db_host=os.getenv("DB_HOST", "localhost"),
        db_port=int(os.getenv("DB_PORT", "5432")),
        db_user=os.getenv("DB_USER", "postgres"),
        db_password=os.getenv("DB_PASSWORD", "postgres"),
        db_name=os.getenv("DB_NAME", "block_cache_test"),
        log_level="DEBUG",
    )


@pytest.fixture(scope="session")
def test_dsn(test_settings: Settings) -> str:
    """
    Database connection string for tests.
    """
    return build_dsn(test_settings)


@pytest.fixture(scope="session")
def db_connection_available(test_dsn: str) -> bool:
    """
    Check if database is reachable.

    Used to conditionally skip integration tests when DB is not available.
    """
    try:
        with psycopg.connect(test_dsn, connect_timeout=5) as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1;")
                cur.fetchone()
        return True
    except psycopg.Error:
        return False


@pytest.fixture(scope="function")
def fresh_database(test_dsn: str, db_connection_available: bool):
    """
    Drop the cache tables before and after each test function.

    The store recreates them when opened, so every test starts empty.
    """
    if not db_connection_available:
        pytest.skip("Database not available for integration tests")

    def drop_tables() -> None:
        with psycopg.connect(test_dsn) as conn:
            with conn.cursor() as cur:
                for table in ("blocks", "program_transaction_counts", "api_request_logs"):
                    cur.execute(f"DROP TABLE IF EXISTS {table}")
            conn.commit()

    drop_tables()
    yield
    drop_tables()
