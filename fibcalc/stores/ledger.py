# fibcalc/stores/ledger.py
"""
Fibcalc Engine - Durable Ledger (PostgreSQL)

Async connection pooling via psycopg3 + psycopg_pool.
Implements:
- Bounded pool (PG_POOL_MAX_SIZE, default 20) with idle and connect timeouts
- Retry with exponential backoff on initial open (fatal after the last attempt)
- Schema bootstrap (table + UNIQUE(number) + index)
- Idempotent insert by value (ON CONFLICT DO NOTHING)
"""

from __future__ import annotations

import asyncio
import math
import random
import time
from typing import Optional
from urllib.parse import urlparse

import psycopg
from loguru import logger
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool

from .. import __version__
from ..core.errors import StoreUnavailableError
from .base import LedgerEntry

LEDGER_TABLE = "fib_values"

SCHEMA_SQL = f"""
CREATE TABLE IF NOT EXISTS {LEDGER_TABLE} (
    id SERIAL PRIMARY KEY,
    number INTEGER NOT NULL UNIQUE,
    created_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP
);
CREATE INDEX IF NOT EXISTS idx_{LEDGER_TABLE}_number ON {LEDGER_TABLE}(number);
"""

INSERT_SQL = f"INSERT INTO {LEDGER_TABLE} (number) VALUES (%s) ON CONFLICT (number) DO NOTHING"
SELECT_ALL_SQL = f"SELECT id, number, created_at FROM {LEDGER_TABLE} ORDER BY number ASC"

# Retry configuration for pool initialization
MAX_RETRY_ATTEMPTS = 5
BASE_DELAY_SECONDS = 0.5
MAX_TOTAL_WAIT_SECONDS = 30.0


def _dsn_host(dsn: str) -> str | None:
    """Host part of a DSN, for logging (never log the password)."""
    try:
        return urlparse(dsn).hostname
    except ValueError:
        return None


class PostgresLedger:
    """Ledger backed by a Postgres table with a UNIQUE number column."""

    def __init__(
        self,
        dsn: str,
        *,
        min_size: int = 1,
        max_size: int = 20,
        max_idle: float = 30.0,
        connect_timeout: float = 2.0,
    ) -> None:
        safe_version = __version__.replace(".", "_")
        self._dsn_host = _dsn_host(dsn)
        self._connect_timeout = connect_timeout
        self._pool: Optional[AsyncConnectionPool] = None
        self._pool_factory = lambda: AsyncConnectionPool(
            dsn,
            min_size=min_size,
            max_size=max_size,
            max_idle=max_idle,
            timeout=connect_timeout,
            open=False,
            kwargs={
                "application_name": f"fibcalc_v{safe_version}",
                "connect_timeout": max(1, math.ceil(connect_timeout)),
            },
        )

    # ------------------------------------------------------------------ #
    # lifecycle
    # ------------------------------------------------------------------ #

    async def connect(self) -> None:
        """
        Open the pool and verify connectivity with SELECT 1.

        Raises:
            StoreUnavailableError: After MAX_RETRY_ATTEMPTS failures.
        """
        if self._pool is not None:
            return

        start_time = time.monotonic()
        last_error: Exception | None = None

        for attempt in range(1, MAX_RETRY_ATTEMPTS + 1):
            pool = self._pool_factory()
            try:
                logger.info(
                    f"Ledger pool init: attempt {attempt}/{MAX_RETRY_ATTEMPTS}",
                    host=self._dsn_host,
                )
                await pool.open(wait=True, timeout=self._connect_timeout * 5)
                async with pool.connection() as conn:
                    async with conn.cursor() as cur:
                        await cur.execute("SELECT 1;")
                        row = await cur.fetchone()
                        if row is None or row[0] != 1:
                            raise RuntimeError("SELECT 1 did not return expected result")
                self._pool = pool
                duration_ms = (time.monotonic() - start_time) * 1000
                logger.info(f"Ledger pool initialized (attempt {attempt}, {duration_ms:.0f}ms)")
                return
            except (psycopg.Error, RuntimeError) as exc:
                last_error = exc
                await pool.close()
                logger.warning(f"Ledger pool init attempt {attempt} failed: {type(exc).__name__}: {exc}")

                elapsed = time.monotonic() - start_time
                if attempt == MAX_RETRY_ATTEMPTS or elapsed >= MAX_TOTAL_WAIT_SECONDS:
                    break
                delay = BASE_DELAY_SECONDS * (2 ** (attempt - 1))
                delay = min(delay + random.uniform(0, delay * 0.3), MAX_TOTAL_WAIT_SECONDS - elapsed)
                await asyncio.sleep(delay)

        raise StoreUnavailableError(
            "ledger", f"Failed to initialize ledger pool: {last_error}"
        ) from last_error

    async def ensure_schema(self) -> None:
        """Create the ledger table and index if missing."""
        async with self._connection() as conn:
            await conn.execute(SCHEMA_SQL)
        logger.info(f"Ledger table {LEDGER_TABLE} initialized")

    async def close(self) -> None:
        pool, self._pool = self._pool, None
        if pool is not None:
            logger.info("Closing PostgreSQL connection pool")
            await pool.close()

    # ------------------------------------------------------------------ #
    # operations
    # ------------------------------------------------------------------ #

    async def insert_if_absent(self, number: int) -> None:
        try:
            async with self._connection() as conn:
                await conn.execute(INSERT_SQL, (number,))
        except psycopg.Error as exc:
            logger.error(f"Ledger insert failed for {number}: {exc}")
            raise StoreUnavailableError("ledger", "Failed to record index") from exc

    async def select_all_ordered_by_number(self) -> list[LedgerEntry]:
        try:
            async with self._connection() as conn:
                async with conn.cursor(row_factory=dict_row) as cur:
                    await cur.execute(SELECT_ALL_SQL)
                    rows = await cur.fetchall()
        except psycopg.Error as exc:
            logger.error(f"Ledger select failed: {exc}")
            raise StoreUnavailableError("ledger", "Failed to fetch values from database") from exc
        return [
            LedgerEntry(id=row["id"], number=row["number"], created_at=row["created_at"])
            for row in rows
        ]

    async def ping(self) -> bool:
        if self._pool is None:
            return False
        try:
            async with self._pool.connection() as conn:
                async with conn.cursor() as cur:
                    await cur.execute("SELECT 1;")
                    row = await cur.fetchone()
            return bool(row and row[0] == 1)
        except psycopg.Error as exc:
            logger.error(f"Ledger ping failed: {exc}")
            return False

    def _connection(self):
        if self._pool is None:
            raise StoreUnavailableError("ledger", "Database connection pool is not initialized")
        return self._pool.connection()
