"""
Dépendances FastAPI d'identification.

L'authentification est assurée en amont (passerelle) : l'identifiant de
l'utilisateur arrive dans l'en-tête X-User-Id.
"""

import uuid

from fastapi import Depends, Header, HTTPException
from sqlalchemy import select
from sqlalchemy.orm import Session

from pollwatch.database import get_db
from pollwatch.models.user import User

ROLE_ADMIN = "ADMIN"


def error_detail(code: str, message: str) -> dict:
    return {"code": code, "message": message}


def get_current_user(
    x_user_id: str = Header(..., alias="X-User-Id"),
    db: Session = Depends(get_db),
) -> User:
    """Charge l'utilisateur courant. 401 si l'en-tête est invalide ou inconnu."""
    try:
        user_id = uuid.UUID(x_user_id)
    except ValueError:
        raise HTTPException(status_code=401, detail=error_detail("UNAUTHENTICATED", "Invalid user identity"))

    user = db.execute(select(User).where(User.id == user_id)).scalar()
    if user is None:
        raise HTTPException(status_code=401, detail=error_detail("UNAUTHENTICATED", "Unknown user"))
    return user


def require_admin(user: User = Depends(get_current_user)) -> User:
    if user.role != ROLE_ADMIN:
        raise HTTPException(status_code=403, detail=error_detail("FORBIDDEN", "Admin access required"))
    return user


def require_active_monitor_key(user: User = Depends(get_current_user)) -> User:
    """Les routes de monitoring exigent une clé active."""
    if not user.has_active_key:
        raise HTTPException(
            status_code=403,
            detail=error_detail("INACTIVE_MONITOR_KEY", "An active monitoring key is required"),
        )
    return user
