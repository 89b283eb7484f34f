from typing import Any, Optional


def ok(data: Any = None, message: str = "OK", **extra) -> dict:
    """Success envelope shared by every endpoint."""
    body = {"success": True, "message": message, "data": data}
    body.update(extra)
    return body


def fail(message: str, errors: Optional[list] = None) -> dict:
    body = {"success": False, "message": message}
    if errors:
        body["errors"] = errors
    return body
