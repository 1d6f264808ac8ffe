import json
import uuid

from sqlalchemy.orm import Session

from app.models.audit_log import AuditLog


def log_audit(db: Session, actor_user_id: str, action: str, entity_type: str, entity_id: str,
              details: dict | None = None) -> AuditLog:
    """Stage an audit row on the caller's session; committed with the change it describes."""
    entry = AuditLog(
        id=str(uuid.uuid4()),
        actor_user_id=actor_user_id or "system",
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id),
        details_json=json.dumps(details or {}, ensure_ascii=False, default=str),
    )
    db.add(entry)
    return entry


def audit_trail(db: Session, entity_type: str, entity_id: str) -> list[dict]:
    rows = (
        db.query(AuditLog)
        .filter(AuditLog.entity_type == entity_type, AuditLog.entity_id == str(entity_id))
        .order_by(AuditLog.created_at.asc())
        .all()
    )
    return [{
        "action": r.action,
        "actor": r.actor_user_id,
        "details": json.loads(r.details_json or "{}"),
        "at": r.created_at.isoformat() if r.created_at else None,
    } for r in rows]
