"""JSON serialization utilities for checkpoint payloads."""

import json
from typing import Any, TypeVar

from pydantic import BaseModel

ModelT = TypeVar("ModelT", bound=BaseModel)


def is_json_serializable(obj: Any) -> bool:
    """Check if an object is JSON serializable by attempting json.dumps.

    Args:
        obj: Object to check

    Returns:
        True if the object is JSON serializable, False otherwise
    """
    try:
        json.dumps(obj)
        return True
    except (TypeError, ValueError):
        return False


def serialize(obj: Any) -> Any:
    """Serialize an object to a JSON-serializable value.

    Pydantic models go through ``model_dump(mode="json")``; anything else must
    already be JSON serializable.

    Raises:
        TypeError: If the object is not a Pydantic model and not JSON serializable
    """
    if isinstance(obj, BaseModel):
        return obj.model_dump(mode="json")

    if not is_json_serializable(obj):
        raise TypeError(
            f"Object of type {type(obj).__name__} is not JSON serializable. "
            f"If it's a Pydantic model, ensure it inherits from BaseModel."
        )
    return obj


def json_serialize(obj: Any) -> str:
    """Serialize an object to a JSON string with stable key order."""
    try:
        return json.dumps(serialize(obj), sort_keys=True, ensure_ascii=False)
    except (TypeError, ValueError) as e:
        raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable") from e


def deserialize(data: str | bytes | dict[str, Any], model_class: type[ModelT]) -> ModelT:
    """Rebuild a Pydantic model from a JSON string or an already-decoded dict."""
    if isinstance(data, (str, bytes)):
        return model_class.model_validate_json(data)
    return model_class.model_validate(data)
