"""Bearer-credential authentication and role checks for the HTTP functions.

Roles are always resolved server side from the credential; a role claimed
in a request body is never consulted.
"""

import asyncio
import logging
import secrets
from typing import Protocol

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel

from schema_guard.config.models import DatabaseProfile, ServerSettings
from schema_guard.errors import AuthorizationError

logger = logging.getLogger(__name__)

bearer = HTTPBearer(auto_error=False)

USER_ROLES_TABLE = "user_roles"


class Principal(BaseModel):
    """The authenticated caller."""

    subject: str
    role: str | None = None


class Authorizer(Protocol):
    async def authenticate(self, token: str) -> Principal:
        """Resolve a bearer token to a principal.

        Raises:
            AuthorizationError: If the token is not valid.
        """
        ...


class StaticTokenAuthorizer:
    """Token -> role map from the ``[server]`` section of db.toml."""

    def __init__(self, tokens: dict[str, str]) -> None:
        self._tokens = dict(tokens)

    async def authenticate(self, token: str) -> Principal:
        for known, role in self._tokens.items():
            if secrets.compare_digest(known, token):
                return Principal(subject=f"token:{role}", role=role)
        raise AuthorizationError("Invalid bearer credential")


class SupabaseAuthorizer:
    """Validates Supabase session tokens and reads the role from ``user_roles``.

    Requires the ``supabase`` extra.
    """

    def __init__(self, url: str, key: str) -> None:
        self._url = url
        self._key = key
        self._client = None
        self._lock = asyncio.Lock()

    async def _get_client(self):
        if self._client is None:
            async with self._lock:
                if self._client is None:
                    from supabase import acreate_client

                    self._client = await acreate_client(self._url, self._key)
        return self._client

    async def authenticate(self, token: str) -> Principal:
        client = await self._get_client()
        try:
            response = await client.auth.get_user(token)
        except Exception as e:
            logger.debug("Supabase rejected token: %s", e)
            raise AuthorizationError("Invalid bearer credential") from e

        user = response.user if response else None
        if user is None:
            raise AuthorizationError("Invalid bearer credential")

        result = await (
            client.table(USER_ROLES_TABLE).select("role").eq("user_id", user.id).limit(1).execute()
        )
        role = result.data[0]["role"] if result.data else None
        return Principal(subject=user.email or user.id, role=role)


def build_authorizer(settings: ServerSettings, profile: DatabaseProfile | None = None) -> Authorizer:
    """Pick the authorizer named by ``settings.auth``."""
    if settings.auth == "supabase":
        if profile is None or not profile.supabase_url or not profile.supabase_key:
            raise ValueError("auth = 'supabase' needs a profile with supabase_url and supabase_key")
        return SupabaseAuthorizer(profile.supabase_url, profile.supabase_key)
    return StaticTokenAuthorizer(settings.tokens)


# ============================================================================
# FastAPI dependencies
# ============================================================================


async def authenticate(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer),
) -> Principal:
    if credentials is None or not credentials.credentials:
        raise AuthorizationError("Missing bearer credential")
    authorizer: Authorizer = request.app.state.authorizer
    return await authorizer.authenticate(credentials.credentials)


def ensure_privileged(request: Request, principal: Principal) -> Principal:
    """Raise 403 unless the principal's role is in ``privileged_roles``."""
    settings: ServerSettings = request.app.state.server_settings
    if principal.role not in settings.privileged_roles:
        logger.warning("Denied %s (role %s) on %s", principal.subject, principal.role, request.url.path)
        raise AuthorizationError(
            "Insufficient role for this operation", status_code=403
        )
    return principal


async def require_privileged(
    request: Request, principal: Principal = Depends(authenticate)
) -> Principal:
    return ensure_privileged(request, principal)
