"""
Generic helper library for the core REST API
"""

import uuid
import datetime
from typing import Any, Dict, Optional


def http_method_to_action(method: str) -> str:
    """
    Convert an HTTP method to the corresponding action used in permission scopes

    :param method: HTTP method name (case-insensitive)
    :return: ``read`` for GET requests, ``write`` for the modifying methods,
        an empty string for any other method
    """

    method = method.lower()
    if method == "get":
        return "read"
    if method in ("post", "put", "patch", "delete"):
        return "write"
    return ""


def stringify_values(data: Any) -> Any:
    """
    Clone nested dicts and lists, converting dates and UUIDs to strings
    """

    if isinstance(data, dict):
        return {k: stringify_values(v) for k, v in data.items()}
    if isinstance(data, (list, tuple)):
        return [stringify_values(v) for v in data]
    if isinstance(data, (datetime.date, datetime.time, uuid.UUID)):
        return str(data)
    return data


def replace_placeholders(obj: Any, replacements: Dict[str, Optional[str]]) -> Any:
    """
    Recursively replace placeholder strings in an object tree

    Only strings in plain dicts, lists and tuples are processed, any
    other value is passed through unchanged. Replacements with a value
    of ``None`` are skipped.
    """

    if isinstance(obj, str):
        for key, value in replacements.items():
            if value is not None:
                obj = obj.replace(key, value)
        return obj
    if isinstance(obj, (list, tuple)):
        return type(obj)(replace_placeholders(item, replacements) for item in obj)
    if type(obj) is dict:
        return {k: replace_placeholders(v, replacements) for k, v in obj.items()}
    return obj
