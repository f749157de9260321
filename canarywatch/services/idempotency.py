from datetime import timedelta

from fastapi import HTTPException
from sqlalchemy.orm import Session

from canarywatch.core.config import get_settings
from canarywatch.core.time import now_utc
from canarywatch.models.entities import IdempotencyKey
from canarywatch.utils.hashing import stable_request_hash

IDEMPOTENCY_HEADER = "Idempotency-Key"


def resolve_cached_response(db: Session, key: str | None, endpoint: str, payload: dict) -> dict | None:
    """Return the stored response for a replayed key, or None for a first request."""
    if not key:
        raise HTTPException(status_code=400, detail=f"Missing {IDEMPOTENCY_HEADER} header")

    existing = (
        db.query(IdempotencyKey)
        .filter(IdempotencyKey.key == key, IdempotencyKey.endpoint == endpoint)
        .one_or_none()
    )
    if existing is None:
        return None
    if existing.request_hash != stable_request_hash(payload):
        raise HTTPException(status_code=409, detail="Idempotency key reused with different payload")
    return existing.response_json


def store_response(db: Session, key: str, endpoint: str, payload: dict, response_json: dict) -> None:
    db.add(
        IdempotencyKey(
            key=key,
            endpoint=endpoint,
            request_hash=stable_request_hash(payload),
            response_json=response_json,
        )
    )


def cleanup_expired_keys(db: Session) -> int:
    settings = get_settings()
    cutoff = now_utc() - timedelta(hours=settings.idempotency_ttl_hours)
    return db.query(IdempotencyKey).filter(IdempotencyKey.created_at < cutoff).delete(synchronize_session=False)
