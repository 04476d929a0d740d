"""Async Supabase database adapter.

Provides ``AsyncSupabaseAdapter``, an async implementation of the
``DatabaseClient`` protocol using the supabase-py async client.  It covers
the tracking-table CRUD used by version, drift, backup, and history
records; raw SQL and transactions require ``AsyncPostgresAdapter``.

The client is initialized lazily on first use with an ``asyncio.Lock``
to ensure it is created exactly once.

Usage:
    from schema_guard.adapters.supabase import AsyncSupabaseAdapter

    adapter = AsyncSupabaseAdapter(
        url="https://xyzproject.supabase.co",
        key="eyJ...",
    )

    rows = await adapter.select("schema_versions", "*", order_by="applied_at", desc=True)
    await adapter.close()
"""

import asyncio
from datetime import datetime
from typing import Any

from supabase import AsyncClient, acreate_client


class AsyncSupabaseAdapter:
    """Async Supabase implementation of the ``DatabaseClient`` protocol.

    Args:
        url: Supabase project URL.
        key: Supabase API key (service role key for tracking tables).
    """

    def __init__(self, url: str, key: str) -> None:
        self._url: str = url
        self._key: str = key
        self._client: AsyncClient | None = None
        self._lock: asyncio.Lock = asyncio.Lock()

    async def _get_client(self) -> AsyncClient:
        """Get or create the async Supabase client."""
        if self._client is None:
            async with self._lock:
                # Double-check after acquiring lock
                if self._client is None:
                    self._client = await acreate_client(self._url, self._key)
        return self._client

    @staticmethod
    def _payload(data: dict) -> dict:
        """Drop metadata fields and make datetimes JSON-safe for PostgREST."""
        return {
            k: v.isoformat() if isinstance(v, datetime) else v
            for k, v in data.items()
            if not k.startswith("_")
        }

    @staticmethod
    def _apply_filters(query: Any, filters: dict[str, Any] | None) -> Any:
        for key, value in (filters or {}).items():
            if value is None:
                query = query.is_(key, "null")
            else:
                query = query.eq(key, value)
        return query

    # ------------------------------------------------------------------
    # CRUD Methods
    # ------------------------------------------------------------------

    async def select(
        self,
        table: str,
        columns: str,
        filters: dict[str, Any] | None = None,
        order_by: str | None = None,
        desc: bool = False,
        limit: int | None = None,
    ) -> list[dict]:
        """Select rows from table using Supabase query builder."""
        client = await self._get_client()
        query = self._apply_filters(client.table(table).select(columns), filters)

        if order_by:
            query = query.order(order_by, desc=desc)
        if limit is not None:
            query = query.limit(limit)

        result = await query.execute()
        return result.data

    async def insert(self, table: str, data: dict) -> dict:
        """Insert row and return created row.

        Filters out metadata fields (starting with ``_``) before insertion.
        """
        client = await self._get_client()
        result = await client.table(table).insert(self._payload(data)).execute()
        return result.data[0]

    async def update(self, table: str, data: dict, filters: dict[str, Any]) -> list[dict]:
        """Update rows and return every updated row."""
        client = await self._get_client()
        query = self._apply_filters(client.table(table).update(self._payload(data)), filters)
        result = await query.execute()
        return result.data

    async def delete(self, table: str, filters: dict[str, Any]) -> None:
        """Delete rows matching filters."""
        client = await self._get_client()
        query = self._apply_filters(client.table(table).delete(), filters)
        await query.execute()

    async def execute(self, sql: str, params: dict | None = None) -> int:
        """Raw SQL is not available through the PostgREST client.

        Raises:
            NotImplementedError: Always.  Use ``AsyncPostgresAdapter`` for
                DDL operations.
        """
        raise NotImplementedError(
            "DDL operations not supported for this adapter type"
        )

    def transaction(self):
        """PostgREST requests cannot share a transaction.

        Raises:
            NotImplementedError: Always.
        """
        raise NotImplementedError(
            "Transactions not supported for this adapter type"
        )

    async def close(self) -> None:
        """Close the Supabase async client (no-op if never initialized)."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
