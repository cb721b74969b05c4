"""
Router des clés de monitoring : émission (self-service et admin), backfill,
vérification et statut d'accès.
"""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from pollwatch.database import get_db
from pollwatch.dependencies import get_current_user, require_admin
from pollwatch.exceptions import MonitoringError
from pollwatch.models.user import User
from pollwatch.schemas.monitor_key import (
    BackfillReport,
    KeyIssueResult,
    KeyVerifyRequest,
    MonitoringAccess,
)
from pollwatch.services import key_notification_service, monitor_key_service

router = APIRouter(prefix="/api/v1/monitor-keys", tags=["Clés de monitoring"])


def _issue_and_notify(db: Session, user_id: uuid.UUID, issued_by: Optional[uuid.UUID]) -> KeyIssueResult:
    try:
        result = monitor_key_service.issue_monitor_key(db, user_id, issued_by=issued_by)
    except MonitoringError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_detail())

    if not result.already_assigned:
        holder = db.get(User, user_id)
        if holder is not None:
            key_notification_service.notify_key_assigned(holder, result)
    return result


@router.post("/issue", response_model=KeyIssueResult, summary="Obtenir sa clé de monitoring")
def issue_own_key(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """
    Émet la clé de l'utilisateur courant à partir de son profil.
    Idempotent : une clé déjà active est renvoyée telle quelle (alreadyAssigned=true).
    """
    return _issue_and_notify(db, user.id, issued_by=None)


@router.post("/assign/{user_id}", response_model=KeyIssueResult,
             summary="Assigner une clé à un utilisateur (admin)")
def assign_key(
    user_id: uuid.UUID,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    return _issue_and_notify(db, user_id, issued_by=admin.id)


@router.post("/backfill", response_model=BackfillReport,
             summary="Rattraper les clés manquantes (admin)")
def backfill_keys(
    limit: Optional[int] = Query(None, ge=1, le=1000),
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    """
    Balaye les utilisateurs éligibles sans clé active et leur en émet une.
    Les échecs individuels sont comptabilisés sans interrompre le balayage.
    """
    return monitor_key_service.backfill_monitor_keys(db, limit)


@router.post("/verify", response_model=MonitoringAccess, summary="Vérifier une clé saisie")
def verify_key(
    data: KeyVerifyRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    try:
        return monitor_key_service.verify_monitor_key(db, user, data.key)
    except MonitoringError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_detail())


@router.get("/access", response_model=MonitoringAccess, summary="Statut de sa clé")
def get_access(user: User = Depends(get_current_user)):
    return monitor_key_service.get_monitoring_access(user)
