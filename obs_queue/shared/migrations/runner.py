"""Applies versioned SQL files to the database on startup."""

from __future__ import annotations

import logging
from pathlib import Path

import asyncpg

logger = logging.getLogger(__name__)

VERSIONS_DIR = Path(__file__).resolve().parent / "versions"

# Arbitrary key for pg_advisory_lock; serializes runners started side by side
_LOCK_KEY = 0x6F627371  # "obsq"


class MigrationRunner:
    """Apply ``versions/NNN_description.sql`` files in filename order.

    Applied versions are recorded in ``schema_migrations``. The whole run holds
    a session advisory lock so two processes starting at once cannot apply the
    same file twice.
    """

    TRACKING_TABLE = "schema_migrations"

    def __init__(self, pool: asyncpg.Pool, migrations_dir: Path | None = None) -> None:
        self.pool = pool
        self.migrations_dir = migrations_dir or VERSIONS_DIR

    def discover(self) -> list[Path]:
        return sorted(self.migrations_dir.glob("*.sql"))

    async def run_pending(self) -> list[str]:
        """Apply all pending migrations. Returns the newly-applied versions."""
        sql_files = self.discover()
        if not sql_files:
            logger.info("No migration files found in %s", self.migrations_dir)
            return []

        newly_applied: list[str] = []
        async with self.pool.acquire() as conn:
            await conn.execute("SELECT pg_advisory_lock($1)", _LOCK_KEY)
            try:
                await conn.execute(
                    f"""
                    CREATE TABLE IF NOT EXISTS {self.TRACKING_TABLE} (
                        version    TEXT PRIMARY KEY,
                        name       TEXT NOT NULL,
                        applied_at TIMESTAMPTZ DEFAULT NOW()
                    )
                    """
                )
                rows = await conn.fetch(f"SELECT version FROM {self.TRACKING_TABLE}")  # noqa: S608
                applied = {row["version"] for row in rows}

                for sql_path in sql_files:
                    if sql_path.stem in applied:
                        continue
                    await self._apply_one(conn, sql_path)
                    newly_applied.append(sql_path.stem)
            finally:
                await conn.execute("SELECT pg_advisory_unlock($1)", _LOCK_KEY)

        if newly_applied:
            logger.info("Applied %d migration(s): %s", len(newly_applied), ", ".join(newly_applied))
        else:
            logger.info("Database schema is up to date")
        return newly_applied

    async def _apply_one(self, conn: asyncpg.Connection, sql_path: Path) -> None:
        """Execute one migration file and record it, atomically."""
        logger.info("Applying migration: %s", sql_path.stem)
        async with conn.transaction():
            await conn.execute(sql_path.read_text(encoding="utf-8"))
            await conn.execute(
                f"INSERT INTO {self.TRACKING_TABLE} (version, name) VALUES ($1, $2)",
                sql_path.stem,
                sql_path.name,
            )
