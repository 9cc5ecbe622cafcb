"""Async PostgreSQL connection pool shared by the Postgres stores."""

from __future__ import annotations

import contextlib
from collections.abc import AsyncIterator
from typing import Any

import psycopg
import psycopg.rows
import psycopg_pool

from twofactor.config import Settings, settings as default_settings


class Database:
    """Thin wrapper over an AsyncConnectionPool returning rows as dicts.

    Each helper borrows a connection for one statement; the pool commits when
    the connection is returned.
    """

    def __init__(self, conninfo: str, min_size: int = 1, max_size: int = 10) -> None:
        self._pool = psycopg_pool.AsyncConnectionPool(
            conninfo=conninfo,
            min_size=min_size,
            max_size=max_size,
            kwargs={"row_factory": psycopg.rows.dict_row},
            open=False,
        )

    @classmethod
    def from_settings(cls, settings: Settings | None = None, **kwargs: Any) -> Database:
        return cls((settings or default_settings).database_url, **kwargs)

    async def open(self) -> None:
        await self._pool.open()

    async def close(self) -> None:
        await self._pool.close()

    async def __aenter__(self) -> Database:
        await self.open()
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    @contextlib.asynccontextmanager
    async def connection(self) -> AsyncIterator[psycopg.AsyncConnection[dict[str, Any]]]:
        async with self._pool.connection() as conn:
            yield conn

    async def execute(self, query: str, params: tuple[Any, ...] | None = None) -> list[dict[str, Any]]:
        """Run a statement and return all rows (empty for statements without results)."""
        async with self.connection() as conn:
            async with conn.cursor() as cur:
                await cur.execute(query, params)
                if cur.description is None:
                    return []
                return await cur.fetchall()

    async def execute_one(self, query: str, params: tuple[Any, ...] | None = None) -> dict[str, Any] | None:
        async with self.connection() as conn:
            async with conn.cursor() as cur:
                await cur.execute(query, params)
                if cur.description is None:
                    return None
                return await cur.fetchone()
