"""
Shared API router utilities.

- ``_dc()`` converts a dataclass or dict to a plain dict
- ``_handle_error()`` converts a failed OperationResult to a problem response
"""

from __future__ import annotations

from dataclasses import asdict
from typing import Any

from ledgersync.api.middleware.errors import problem_response, status_for_error_code


def _dc(obj: Any) -> dict[str, Any]:
    """Convert a dataclass (or dict) to a plain dict.

    Returns an empty dict for objects that are neither dataclasses nor dicts.
    """
    if hasattr(obj, "__dataclass_fields__"):
        return asdict(obj)
    return obj if isinstance(obj, dict) else {}


def _handle_error(result, instance: str = ""):
    """Convert a failed ``OperationResult`` into a Problem Details response.

    Validation issues carried in the error details become field-level
    ``errors`` entries.
    """
    if result.error is None:
        return problem_response(status=500, title="Operation failed", instance=instance)
    code = result.error.code
    details = result.error.details or {}
    errors = [
        {"code": code, "message": str(issue), "field": details.get("field")}
        for issue in details.get("issues", [])
    ]
    if not errors and details.get("field"):
        errors = [{"code": code, "message": result.error.message, "field": details["field"]}]
    return problem_response(
        status=status_for_error_code(code),
        title=result.error.message,
        detail=code,
        instance=instance,
        errors=errors,
    )
