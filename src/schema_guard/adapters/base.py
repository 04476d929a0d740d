"""Database client protocol definition.

Defines the ``DatabaseClient`` Protocol that all adapters must implement,
plus the ``TransactionClient`` Protocol yielded by
``DatabaseClient.transaction()``.  All I/O methods are ``async def``.

Usage:
    from schema_guard.adapters.base import DatabaseClient

    async def do_work(client: DatabaseClient) -> None:
        rows = await client.select("schema_versions", "*", order_by="applied_at", desc=True)
        await client.insert("schema_drift_logs", {"expected_version": "1.0.0"})

        async with client.transaction() as tx:
            await tx.execute("CREATE TABLE pedidos (id uuid PRIMARY KEY)")

        await client.close()
"""

from contextlib import AbstractAsyncContextManager
from typing import Any, Protocol


class TransactionClient(Protocol):
    """Client bound to a single open database transaction.

    Every statement issued through it commits or rolls back together when
    the enclosing ``transaction()`` block exits.
    """

    async def select(
        self,
        table: str,
        columns: str,
        filters: dict[str, Any] | None = None,
        order_by: str | None = None,
        desc: bool = False,
        limit: int | None = None,
    ) -> list[dict]:
        """Select rows inside the transaction."""
        ...

    async def insert(self, table: str, data: dict) -> dict:
        """Insert a row inside the transaction and return it."""
        ...

    async def update(self, table: str, data: dict, filters: dict[str, Any]) -> list[dict]:
        """Update rows inside the transaction and return every updated row."""
        ...

    async def execute(self, sql: str, params: dict | None = None) -> int:
        """Execute raw SQL inside the transaction.

        Returns:
            Number of rows affected (``-1`` or ``0`` for DDL).
        """
        ...

    def savepoint(self) -> AbstractAsyncContextManager[Any]:
        """Open a nested savepoint.

        Leaving the block with an exception rolls back to the savepoint
        without aborting the outer transaction.
        """
        ...


class DatabaseClient(Protocol):
    """Database client interface that all adapters must implement.

    This Protocol ensures type safety and consistent behavior across
    different database backends (PostgreSQL, Supabase, etc.).

    All I/O methods are async -- callers must ``await`` every operation.
    """

    async def select(
        self,
        table: str,
        columns: str,
        filters: dict[str, Any] | None = None,
        order_by: str | None = None,
        desc: bool = False,
        limit: int | None = None,
    ) -> list[dict]:
        """Select rows from table.

        Args:
            table: Table name.
            columns: Comma-separated column names (e.g., ``"id, version"``).
            filters: Optional dict of field=value filters (all must match via AND).
            order_by: Optional column name to sort by.
            desc: Sort descending when ``order_by`` is given.
            limit: Optional maximum number of rows.

        Returns:
            List of dicts, one per row.  Empty list if no matches.

        Example:
            rows = await client.select(
                "schema_versions",
                "*",
                filters={"is_current": True},
                order_by="applied_at",
                desc=True,
                limit=1,
            )
        """
        ...

    async def insert(self, table: str, data: dict) -> dict:
        """Insert row into table and return the created row.

        Raises:
            Exception: If duplicate key or constraint violation.
        """
        ...

    async def update(self, table: str, data: dict, filters: dict[str, Any]) -> list[dict]:
        """Update rows in table and return every updated row.

        Returns:
            List of updated rows.  Empty list if no rows matched.
        """
        ...

    async def delete(self, table: str, filters: dict[str, Any]) -> None:
        """Delete rows from table."""
        ...

    async def execute(self, sql: str, params: dict | None = None) -> int:
        """Execute a raw SQL statement (DDL or other non-query operations).

        Not all adapters support raw SQL -- those that don't should raise
        ``NotImplementedError``.

        Returns:
            Number of rows affected.

        Raises:
            NotImplementedError: If the adapter does not support raw SQL.
        """
        ...

    def transaction(self) -> AbstractAsyncContextManager[TransactionClient]:
        """Open a database transaction.

        Commits when the block exits normally, rolls back when it raises.

        Raises:
            NotImplementedError: If the adapter cannot group statements
                into one transaction.
        """
        ...

    async def close(self) -> None:
        """Close database connection and clean up resources."""
        ...
