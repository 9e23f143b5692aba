"""JSON request body helper."""
from typing import Any, Dict

from flask import request


def get_json_body() -> Dict[str, Any]:
    """Parsed JSON object from the request; anything else (missing, invalid, list, scalar) reads as {}."""
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}
