"""Database adapters package.

Provides the ``DatabaseClient`` Protocol and concrete async adapter
implementations for PostgreSQL and (optionally) Supabase.

``AsyncSupabaseAdapter`` is only available when the ``supabase`` extra
is installed.  A missing ``supabase`` dependency does not prevent
importing the rest of the package.

Usage:
    from schema_guard.adapters import DatabaseClient, AsyncPostgresAdapter

    # With supabase extra installed:
    from schema_guard.adapters import AsyncSupabaseAdapter
"""

from schema_guard.adapters.base import DatabaseClient, TransactionClient
from schema_guard.adapters.postgres import AsyncPostgresAdapter

__all__ = [
    "DatabaseClient",
    "TransactionClient",
    "AsyncPostgresAdapter",
]

try:
    from schema_guard.adapters.supabase import AsyncSupabaseAdapter

    __all__.append("AsyncSupabaseAdapter")
except ImportError:
    # supabase extra not installed -- AsyncSupabaseAdapter unavailable
    pass
