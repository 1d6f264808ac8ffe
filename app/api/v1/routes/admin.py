from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import func
from sqlalchemy.orm import Session

from app.api.deps import require_roles
from app.db.session import get_db
from app.models.user import User
from app.services.audit_service import log_audit

router = APIRouter(tags=["admin"])


def _serialize_user(u: User) -> dict:
    return {
        "id": u.id,
        "email": u.email,
        "name": u.name,
        "role": u.role,
        "isActive": u.is_active,
        "createdAt": u.created_at.isoformat() if u.created_at else None,
    }


@router.get("/admin/users")
def list_users(role: str | None = None, q: str | None = None, limit: int = 50, offset: int = 0,
               db: Session = Depends(get_db),
               me: User = Depends(require_roles("admin"))):
    query = db.query(User)
    if role:
        query = query.filter(User.role == role)
    if q:
        ql = f"%{q.lower()}%"
        query = query.filter(func.lower(User.email).like(ql) | func.lower(User.name).like(ql))
    total = query.count()
    users = query.order_by(User.created_at.desc()).limit(min(max(limit, 1), 200)).offset(max(offset, 0)).all()
    return {"total": total, "items": [_serialize_user(u) for u in users]}


@router.patch("/admin/users/{user_id}/ban")
def ban_user(user_id: str, banned: bool = True,
             db: Session = Depends(get_db),
             me: User = Depends(require_roles("admin"))):
    """Banned users keep their data but their tokens stop resolving."""
    u = db.get(User, user_id)
    if not u:
        raise HTTPException(status_code=404, detail="User not found")
    if u.id == me.id:
        raise HTTPException(status_code=400, detail="You cannot ban yourself")
    u.is_active = not banned
    log_audit(db, me.id, "user.ban" if banned else "user.unban", "user", u.id, {"email": u.email})
    db.commit()
    db.refresh(u)
    return {"message": "User banned" if banned else "User unbanned", "user": _serialize_user(u)}
