from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError
from sqlalchemy.orm import Session
from app.db.session import get_db
from app.core.security import decode_token
from app.models.user import User
from app.realtime.registry import SessionRegistry
from app.services.notification_service import NotificationDispatcher

bearer = HTTPBearer(auto_error=False)

def user_from_token(db: Session, token: str) -> User | None:
    try:
        payload = decode_token(token, expected_type="access")
    except JWTError:
        return None
    user = db.get(User, payload.get("sub"))
    if not user or not user.is_active:
        return None
    return user

def get_current_user(
    creds: HTTPAuthorizationCredentials | None = Depends(bearer),
    db: Session = Depends(get_db),
) -> User:
    if not creds:
        raise HTTPException(status_code=401, detail="Not authenticated")
    user = user_from_token(db, creds.credentials)
    if not user:
        raise HTTPException(status_code=401, detail="Invalid token or inactive user")
    return user

def require_roles(*roles: str):
    def _guard(user: User = Depends(get_current_user)) -> User:
        if user.role not in roles:
            raise HTTPException(status_code=403, detail="Forbidden")
        return user
    return _guard

def get_registry(request: Request) -> SessionRegistry:
    return request.app.state.session_registry

def get_dispatcher(request: Request) -> NotificationDispatcher:
    return request.app.state.notification_dispatcher
