"""JSON utilities using orjson.

Usage:
    from tournament_service.utils.json_utils import json_dumps, json_loads, ORJSONResponse

    json_str = json_dumps({"startedAt": datetime.now(timezone.utc)})
    return ORJSONResponse(content={"status": "ok"})
"""

from datetime import date, datetime
from enum import Enum
from typing import Any
from uuid import UUID

import orjson
from fastapi.responses import JSONResponse

_OPTIONS = orjson.OPT_UTC_Z


def _default_serializer(obj: Any) -> Any:
    """Custom serializer for types not natively supported by orjson."""
    if isinstance(obj, UUID):
        return str(obj)
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, Enum):
        return obj.value
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def json_dumps(data: Any) -> str:
    """Serialize data to a JSON string."""
    return orjson.dumps(data, default=_default_serializer, option=_OPTIONS).decode("utf-8")


def json_loads(data: str | bytes) -> Any:
    """Deserialize a JSON string or bytes."""
    return orjson.loads(data)


class ORJSONResponse(JSONResponse):
    """FastAPI response class using orjson for serialization."""

    media_type = "application/json"

    def render(self, content: Any) -> bytes:
        return orjson.dumps(content, default=_default_serializer, option=_OPTIONS)
