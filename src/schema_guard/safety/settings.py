"""Migration safety policy persistence.

The policy is a singleton row (``id = 1``) in ``migration_safety_config``.
When the row is absent the deployment defaults from ``db.toml`` apply.
"""

import logging
from datetime import datetime, timezone
from typing import Any

from schema_guard.adapters.base import DatabaseClient
from schema_guard.config.models import SafetyDefaults
from schema_guard.errors import InvalidRequestError
from schema_guard.safety.models import SAFETY_CONFIG_TABLE, MigrationSafetyConfig

logger = logging.getLogger(__name__)

_SINGLETON_ID = 1
_EDITABLE = set(SafetyDefaults.model_fields)


class SafetySettingsStore:
    """Loads and updates the migration safety policy.

    Args:
        client: Database client holding ``migration_safety_config``.
        defaults: Values used when no row has been stored yet.
    """

    def __init__(self, client: DatabaseClient, defaults: SafetyDefaults | None = None) -> None:
        self._client = client
        self._defaults = defaults or SafetyDefaults()

    async def load(self) -> MigrationSafetyConfig:
        rows = await self._client.select(SAFETY_CONFIG_TABLE, "*", limit=1)
        if rows:
            return MigrationSafetyConfig.model_validate(rows[0])
        return MigrationSafetyConfig(**self._defaults.model_dump())

    async def update(self, **changes: Any) -> MigrationSafetyConfig:
        """Write policy changes, creating the singleton row on first use.

        Accepts snake_case or camelCase keys.

        Raises:
            InvalidRequestError: For unknown settings or invalid values.
        """
        fields = MigrationSafetyConfig.model_fields
        by_alias = {info.alias: name for name, info in fields.items() if info.alias}
        normalized = {by_alias.get(k, k): v for k, v in changes.items()}

        unknown = set(normalized) - _EDITABLE
        if unknown:
            raise InvalidRequestError(f"Unknown safety settings: {', '.join(sorted(unknown))}")

        current = await self.load()
        try:
            merged = MigrationSafetyConfig.model_validate(
                {**current.model_dump(include=_EDITABLE), **normalized}
            )
        except ValueError as e:
            raise InvalidRequestError(f"Invalid safety settings: {e}") from e

        payload: dict[str, Any] = merged.model_dump(include=_EDITABLE)
        payload["updated_at"] = datetime.now(timezone.utc)

        rows = await self._client.update(SAFETY_CONFIG_TABLE, payload, {"id": _SINGLETON_ID})
        if rows:
            row = rows[0]
        else:
            row = await self._client.insert(SAFETY_CONFIG_TABLE, {"id": _SINGLETON_ID, **payload})

        logger.info("Migration safety settings updated: %s", ", ".join(sorted(normalized)))
        return MigrationSafetyConfig.model_validate(row)
