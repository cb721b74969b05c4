"""
Router des formulaires de monitoring électoral.
Soumissions unitaires (4 types), synchro batch offline et tableau de bord.
Toutes les routes exigent une clé de monitoring active.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from sqlalchemy.orm import Session

from pollwatch.database import get_db
from pollwatch.dependencies import require_active_monitor_key
from pollwatch.exceptions import MonitoringError
from pollwatch.models.user import User
from pollwatch.schemas.monitoring import (
    MonitoringStatus,
    RecentSubmission,
    SubmissionDetails,
    SubmissionList,
)
from pollwatch.schemas.submission import (
    IncidentReportRequest,
    OfficerArrivalRequest,
    PollingUnitInfoRequest,
    ResultTrackingRequest,
    SubmissionAccepted,
    SubmissionResult,
)
from pollwatch.schemas.sync import BulkSyncRequest, BulkSyncResponse
from pollwatch.services import monitoring_service, submission_service, sync_service

router = APIRouter(prefix="/api/v1/monitoring", tags=["Monitoring"])


def _accepted(result: SubmissionResult, response: Response) -> SubmissionAccepted:
    """Traduit le verdict du service : échec → HTTPException, succès → 201 (créé) ou 200."""
    if not result.success:
        detail = {"code": result.error, "message": result.message}
        if result.missing:
            detail["missing"] = result.missing
        raise HTTPException(status_code=result.http_status, detail=detail)

    response.status_code = result.http_status
    return SubmissionAccepted(
        submission_id=result.submission_id,
        duplicate=result.duplicate,
        message=result.message,
    )


@router.post("/polling-unit", response_model=SubmissionAccepted, status_code=201,
             summary="Fiche d'installation du bureau de vote")
def submit_polling_unit(
    data: PollingUnitInfoRequest,
    response: Response,
    db: Session = Depends(get_db),
    user: User = Depends(require_active_monitor_key),
):
    """
    Crée ou met à jour la fiche du bureau de vote de l'observateur.
    Une seule fiche vivante par (observateur, code du bureau) : un nouvel envoi
    remplace les champs de la fiche existante et conserve son submissionId.
    """
    return _accepted(submission_service.submit_polling_unit_info(db, user, data), response)


@router.post("/officer-arrival", response_model=SubmissionAccepted, status_code=201,
             summary="Rapport d'arrivée des agents électoraux")
def submit_officer_arrival(
    data: OfficerArrivalRequest,
    response: Response,
    db: Session = Depends(get_db),
    user: User = Depends(require_active_monitor_key),
):
    """Rattaché à une fiche bureau de vote existante de l'observateur (submissionId)."""
    return _accepted(submission_service.submit_officer_arrival(db, user, data), response)


@router.post("/result-tracking", response_model=SubmissionAccepted, status_code=201,
             summary="Suivi des résultats")
def submit_result_tracking(
    data: ResultTrackingRequest,
    response: Response,
    db: Session = Depends(get_db),
    user: User = Depends(require_active_monitor_key),
):
    """Rattaché à une fiche bureau de vote existante de l'observateur (submissionId)."""
    return _accepted(submission_service.submit_result_tracking(db, user, data), response)


@router.post("/incident-report", response_model=SubmissionAccepted, status_code=201,
             summary="Rapport d'incident")
def submit_incident_report(
    data: IncidentReportRequest,
    response: Response,
    db: Session = Depends(get_db),
    user: User = Depends(require_active_monitor_key),
):
    """
    Rapport d'incident, rattaché à une fiche (submissionId) ou autonome.
    Plusieurs incidents peuvent coexister pour une même soumission.
    """
    return _accepted(submission_service.submit_incident_report(db, user, data), response)


@router.post("/bulk-sync", response_model=BulkSyncResponse,
             summary="Synchroniser les soumissions hors-ligne")
def bulk_sync(
    data: BulkSyncRequest,
    db: Session = Depends(get_db),
    user: User = Depends(require_active_monitor_key),
):
    """
    Rejoue un batch de soumissions mises en file hors-ligne, dans l'ordre de création.

    Comportement :
    - Idempotent : un clientSubmissionId déjà connu renvoie le submissionId d'origine
    - Un item rejeté (type inconnu, hors scope, lien introuvable) n'annule pas les autres
    - Retourne un résultat par item et les totaux (synchronisés / doublons / échecs)
    """
    try:
        return sync_service.bulk_sync(db, user, data.submissions)
    except MonitoringError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_detail())


@router.get("/status", response_model=MonitoringStatus, summary="Statut du tableau de bord")
def get_status(
    db: Session = Depends(get_db),
    user: User = Depends(require_active_monitor_key),
):
    return monitoring_service.get_monitoring_status(db, user)


@router.get("/recent-submissions", response_model=List[RecentSubmission],
            summary="Soumissions récentes")
def get_recent_submissions(
    limit: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_db),
    user: User = Depends(require_active_monitor_key),
):
    return monitoring_service.get_recent_submissions(db, user, limit)


@router.get("/submissions", response_model=SubmissionList, summary="Mes soumissions")
def list_submissions(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    status: Optional[str] = Query(None, pattern="^(not_started|in_progress|completed)$"),
    db: Session = Depends(get_db),
    user: User = Depends(require_active_monitor_key),
):
    """Une entrée par fiche bureau de vote, avec son avancement ; filtrable par statut."""
    return monitoring_service.list_user_submissions(db, user, page=page, limit=limit, status=status)


@router.get("/submissions/{submission_id}", response_model=SubmissionDetails,
            summary="Détail d'une soumission")
def get_submission(
    submission_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(require_active_monitor_key),
):
    """Fiche, rapports liés et incidents d'une soumission, avec son avancement."""
    try:
        return monitoring_service.get_submission_details(db, user, submission_id)
    except MonitoringError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_detail())
