from sqlalchemy.orm import Session

from canarywatch.models.entities import AuditLog


def record_audit(
    db: Session, actor: str, action: str, entity_type: str, entity_id: int | str, payload: dict | None = None
) -> None:
    """Append an operator action to the audit trail; committed with the caller's transaction."""
    db.add(
        AuditLog(
            actor=actor,
            action=action,
            entity_type=entity_type,
            entity_id=str(entity_id),
            payload_json=payload or {},
        )
    )
