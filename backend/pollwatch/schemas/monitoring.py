"""
Schémas Pydantic en lecture pour le tableau de bord de monitoring.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pollwatch.schemas.common import CamelModel
from pollwatch.schemas.scope import MonitoringScope


class FormStatus(CamelModel):
    completed: bool = False
    count: int = 0
    last_updated: Optional[datetime] = None


class FormStatuses(CamelModel):
    polling_unit: FormStatus = FormStatus()
    officer_arrival: FormStatus = FormStatus()
    result_tracking: FormStatus = FormStatus()
    incident_reporting: FormStatus = FormStatus()


class PollingUnitSummary(CamelModel):
    """Fiche bureau de vote la plus récente (ou, à défaut, issue du scope)."""
    submission_id: Optional[str] = None
    election_id: Optional[str] = None
    pu_code: Optional[str] = None
    pu_name: Optional[str] = None
    ward: Optional[str] = None
    lga: Optional[str] = None
    state: Optional[str] = None
    gps_coordinates: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class MonitoringStatus(CamelModel):
    """
    Statut du tableau de bord. La fiche bureau de vote est informative :
    les formulaires peuvent être remplis dans n'importe quel ordre.
    """
    needs_pu_setup: bool = False
    monitoring_scope: Optional[MonitoringScope] = None
    pu_info: Optional[PollingUnitSummary] = None
    form_statuses: FormStatuses = FormStatuses()
    blocking_reason: Optional[str] = None


class RecentSubmission(CamelModel):
    id: str
    form_type: str
    title: str
    description: str
    created_at: Optional[datetime] = None


class SubmissionRecord(CamelModel):
    """Une ligne de monitor_submissions telle que renvoyée au client."""
    submission_id: str
    submission_type: str
    election_id: Optional[str] = None
    polling_unit_code: Optional[str] = None
    scope_snapshot: Dict[str, Any] = {}
    submission_data: Dict[str, Any] = {}
    attachments: List[str] = []
    status: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class SubmissionProgress(CamelModel):
    """Avancement calculé d'une soumission logique (4 étapes)."""
    submission_id: str
    election_id: Optional[str] = None
    polling_unit_code: Optional[str] = None
    scope: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    status: str                         # not_started | in_progress | completed
    completion_percentage: int = 0
    pu_info_completed: bool = False
    officer_arrival_completed: bool = False
    result_tracking_completed: bool = False
    incident_report_completed: bool = False
    incident_report_count: int = 0


class SubmissionDetails(CamelModel):
    """Soumission logique regroupée par type + avancement."""
    polling_unit: Optional[SubmissionRecord] = None
    officer_arrival: Optional[SubmissionRecord] = None
    result_tracking: Optional[SubmissionRecord] = None
    incident_reports: List[SubmissionRecord] = []
    status: SubmissionProgress


class SubmissionListItem(SubmissionProgress):
    """Avancement d'une soumission + données de sa fiche bureau de vote."""
    submission_data: Dict[str, Any] = {}


class SubmissionList(CamelModel):
    """Page de soumissions de l'appelant (plus récentes d'abord)."""
    items: List[SubmissionListItem] = []
    total: int = 0                      # Après filtre de statut, avant pagination
    page: int = 1
    limit: int = 10
    pages: int = 0
