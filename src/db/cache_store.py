"""
Postgres-backed result cache (``insights_cache``).

One row per ``(user_id, hash)``; writes are upserts, so concurrent identical
requests simply overwrite each other.  Reads ignore rows whose
``expires_at`` has passed; stale rows are never purged here.
"""
from __future__ import annotations

import json
from typing import Any

from sqlalchemy import text

from src.core.config import get_settings
from src.core.logging import get_logger
from src.db.connection import write_connection

logger = get_logger(__name__)

_TABLE = "insights_cache"

_CREATE_SQL = f"""
CREATE TABLE IF NOT EXISTS {_TABLE} (
    user_id     TEXT NOT NULL,
    hash        VARCHAR(64) NOT NULL,
    pergunta    TEXT,
    resultado   JSONB NOT NULL,
    expires_at  TIMESTAMPTZ NOT NULL,
    created_at  TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    PRIMARY KEY (user_id, hash)
);
"""

_UPSERT_SQL = text(f"""
    INSERT INTO {_TABLE} (user_id, hash, pergunta, resultado, expires_at)
    VALUES (:user_id, :hash, :pergunta, CAST(:resultado AS JSONB),
            NOW() + make_interval(mins => :ttl))
    ON CONFLICT (user_id, hash) DO UPDATE
        SET pergunta = EXCLUDED.pergunta,
            resultado = EXCLUDED.resultado,
            expires_at = EXCLUDED.expires_at,
            created_at = NOW()
""")

_SELECT_SQL = text(f"""
    SELECT resultado FROM {_TABLE}
    WHERE user_id = :user_id AND hash = :hash AND expires_at > NOW()
""")


def ensure_cache_table() -> None:
    """Create the cache table if it doesn't exist."""
    with write_connection() as conn:
        conn.execute(text(_CREATE_SQL))
    logger.info("Cache table '%s' ensured", _TABLE)


class PostgresQueryCache:
    """``insights_cache`` table behind the result-cache interface."""

    def __init__(self, ttl_minutes: int | None = None):
        self._ttl_minutes = ttl_minutes or get_settings().cache_ttl_minutes

    def get(self, user_id: str, key_hash: str) -> dict[str, Any] | None:
        with write_connection() as conn:
            value = conn.execute(_SELECT_SQL, {"user_id": user_id, "hash": key_hash}).scalar()
        if value is None:
            return None
        logger.debug("Cache HIT user=%s key=%s", user_id, key_hash[:16])
        return value if isinstance(value, dict) else json.loads(value)

    def put(
        self,
        user_id: str,
        key_hash: str,
        payload: dict[str, Any],
        ttl_minutes: int | None = None,
        question: str | None = None,
    ) -> None:
        params = {
            "user_id": user_id,
            "hash": key_hash,
            "pergunta": question,
            "resultado": json.dumps(payload, default=str),
            "ttl": int(self._ttl_minutes if ttl_minutes is None else ttl_minutes),
        }
        with write_connection() as conn:
            conn.execute(_UPSERT_SQL, params)
        logger.debug("Cache PUT user=%s key=%s", user_id, key_hash[:16])

    def clear_user(self, user_id: str) -> int:
        with write_connection() as conn:
            result = conn.execute(text(f"DELETE FROM {_TABLE} WHERE user_id = :user_id"), {"user_id": user_id})
        logger.info("Cache cleared for user=%s (%d entries)", user_id, result.rowcount)
        return result.rowcount

    def stats(self) -> dict[str, Any]:
        with write_connection() as conn:
            row = conn.execute(text(
                f"SELECT COUNT(*) AS size, "
                f"COUNT(*) FILTER (WHERE expires_at > NOW()) AS live FROM {_TABLE}"
            )).mappings().one()
        return {
            "backend": "postgres",
            "size": int(row["size"]),
            "live": int(row["live"]),
            "ttl_minutes": self._ttl_minutes,
        }
