"""PostgreSQL schema for the block cache. Every statement is idempotent."""

SCHEMA_STATEMENTS = (
    # Cached blocks: insert-only, one row per slot
    """
    CREATE TABLE IF NOT EXISTS blocks (
        slot                BIGINT PRIMARY KEY,
        height              BIGINT,
        block_time          BIGINT,
        parent_slot         BIGINT NOT NULL,
        transaction_count   INTEGER NOT NULL CHECK (transaction_count >= 0),
        block_hash          TEXT NOT NULL,
        previous_block_hash TEXT NOT NULL,
        rewards             TEXT,
        created_at          TIMESTAMPTZ NOT NULL DEFAULT now(),
        updated_at          TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_blocks_height ON blocks (height)",
    "CREATE INDEX IF NOT EXISTS idx_blocks_time ON blocks (block_time)",
    # Per-program transaction counts, one row per (slot, program)
    """
    CREATE TABLE IF NOT EXISTS program_transaction_counts (
        slot              BIGINT NOT NULL,
        program_id        TEXT NOT NULL,
        transaction_count INTEGER NOT NULL CHECK (transaction_count >= 0),
        created_at        TIMESTAMPTZ NOT NULL DEFAULT now(),
        PRIMARY KEY (slot, program_id)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_program_counts_program ON program_transaction_counts (program_id)",
    # Request log: append-only, queried by creation time
    """
    CREATE TABLE IF NOT EXISTS api_request_logs (
        id               BIGSERIAL PRIMARY KEY,
        endpoint         TEXT NOT NULL,
        method           TEXT NOT NULL,
        slot             BIGINT,
        cache_hit        BOOLEAN NOT NULL DEFAULT FALSE,
        response_time_ms INTEGER NOT NULL,
        status_code      INTEGER NOT NULL,
        error_message    TEXT,
        created_at       TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_api_logs_created_at ON api_request_logs (created_at)",
    "CREATE INDEX IF NOT EXISTS idx_api_logs_slot ON api_request_logs (slot)",
)

__all__ = ["SCHEMA_STATEMENTS"]
