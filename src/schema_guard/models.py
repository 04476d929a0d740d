"""Base model shared by persisted records and service results.

Records are stored snake_case; JSON responses use camelCase via
``model_dump(by_alias=True)``. Both spellings are accepted on input.
"""

import json
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Pydantic model that validates by field name or camelCase alias."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_api(self, **kwargs: Any) -> dict[str, Any]:
        """Dump with camelCase keys in JSON mode."""
        return self.model_dump(by_alias=True, mode="json", **kwargs)


def loads_json(value: Any) -> Any:
    """Decode JSONB columns that a driver returned as text.

    Examples:
        >>> loads_json('{"a": 1}')
        {'a': 1}
        >>> loads_json({"a": 1})
        {'a': 1}
    """
    if isinstance(value, (str, bytes)):
        return json.loads(value)
    return value


def is_uuid(value: Any) -> bool:
    """True when ``value`` parses as a UUID; record ids are ``uuid`` columns.

    Examples:
        >>> is_uuid("6f1c2a0e-8d4b-4f7a-9c3e-2b5d7e9f0a1b")
        True
        >>> is_uuid("404")
        False
    """
    try:
        UUID(str(value))
    except ValueError:
        return False
    return True
