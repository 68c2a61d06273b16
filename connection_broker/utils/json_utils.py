"""JSON helpers that understand datetimes, enums and pydantic models."""

import json
from typing import Any

from pydantic_core import to_jsonable_python


def dumps(obj: Any, **kwargs: Any) -> str:
    """Serialize ``obj`` to a JSON string."""
    return json.dumps(obj, default=to_jsonable_python, **kwargs)


def loads(data: str | bytes, **kwargs: Any) -> Any:
    """Deserialize a JSON document."""
    return json.loads(data, **kwargs)
