from typing import Any

from canarywatch.schemas.common import ApiEnvelope, ApiError


def success_response(data: Any, meta: dict | None = None) -> dict:
    return ApiEnvelope(data=data, meta=meta or {}).model_dump()


def list_response(items: list, total: int, limit: int, offset: int) -> dict:
    return success_response(items, meta={"total": total, "limit": limit, "offset": offset})


def error_response(code: str, message: str, trace_id: str, status: int = 400, details: dict | None = None) -> tuple[dict, int]:
    error = ApiError(code=code, message=message, trace_id=trace_id, details=details or {})
    return ApiEnvelope(error=error).model_dump(), status
