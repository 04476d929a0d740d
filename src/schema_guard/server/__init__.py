"""HTTP functions (FastAPI).

Usage:
    from schema_guard.server import create_app
"""

from schema_guard.server.app import create_app
from schema_guard.server.auth import (
    Authorizer,
    Principal,
    StaticTokenAuthorizer,
    SupabaseAuthorizer,
    build_authorizer,
)

__all__ = [
    "create_app",
    "Authorizer",
    "Principal",
    "StaticTokenAuthorizer",
    "SupabaseAuthorizer",
    "build_authorizer",
]
