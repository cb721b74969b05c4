"""
Service en lecture du tableau de bord de monitoring (statut, soumissions récentes,
détail d'une soumission logique). Toutes les lectures sont restreintes à l'appelant.
"""

import logging
import math
from collections import defaultdict
from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from pollwatch.exceptions import MonitoringError, NotFoundOrForbidden
from pollwatch.models.submission import (
    INCIDENT_REPORT,
    OFFICER_ARRIVAL,
    POLLING_UNIT_INFO,
    RESULT_TRACKING,
    MonitorSubmission,
)
from pollwatch.models.user import User
from pollwatch.schemas.monitoring import (
    FormStatus,
    FormStatuses,
    MonitoringStatus,
    PollingUnitSummary,
    RecentSubmission,
    SubmissionDetails,
    SubmissionList,
    SubmissionListItem,
    SubmissionProgress,
    SubmissionRecord,
)
from pollwatch.schemas.scope import MonitoringScope
from pollwatch.services.scope_service import resolve_scope

logger = logging.getLogger(__name__)

FORM_TYPE_TITLES = {
    POLLING_UNIT_INFO: "Polling Unit Setup",
    OFFICER_ARRIVAL: "Officer Arrival Report",
    RESULT_TRACKING: "Result Tracking Report",
    INCIDENT_REPORT: "Incident Report",
}
DEFAULT_TITLE = "Monitoring Submission"

STEP_COUNT = 4


def _current_scope(user: User) -> MonitoringScope:
    """Scope figé sur la clé s'il existe, sinon dérivé du profil."""
    if user.monitoring_scope:
        return MonitoringScope.model_validate(user.monitoring_scope)
    return resolve_scope(user)


def _latest_polling_unit(db: Session, user_id) -> Optional[PollingUnitSummary]:
    row = db.execute(
        select(MonitorSubmission)
        .where(
            MonitorSubmission.user_id == user_id,
            MonitorSubmission.submission_type == POLLING_UNIT_INFO,
        )
        .order_by(MonitorSubmission.created_at.desc())
        .limit(1)
    ).scalar()
    if row is None:
        return None

    data = row.submission_data or {}
    snapshot = row.scope_snapshot or {}
    return PollingUnitSummary(
        submission_id=row.submission_id,
        election_id=row.election_id,
        pu_code=row.polling_unit_code,
        pu_name=data.get("puName") or snapshot.get("pollingUnitName"),
        ward=data.get("ward") or snapshot.get("ward"),
        lga=data.get("lga") or snapshot.get("lga"),
        state=data.get("state") or snapshot.get("state"),
        gps_coordinates=data.get("gpsCoordinates"),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _summary_from_scope(scope: MonitoringScope) -> PollingUnitSummary:
    def label(field):
        return field.label if field else None

    return PollingUnitSummary(
        pu_code=scope.polling_unit.code if scope.polling_unit else None,
        pu_name=label(scope.polling_unit),
        ward=label(scope.ward),
        lga=label(scope.lga),
        state=label(scope.state),
    )


def get_monitoring_status(db: Session, user: User) -> MonitoringStatus:
    """
    Statut du tableau de bord de l'appelant : scope, fiche bureau de vote,
    et pour chaque formulaire (fait / nombre / dernière mise à jour).
    Un profil dont le scope ne peut être dérivé renvoie un statut vide avec la raison.
    """
    try:
        scope = _current_scope(user)
    except MonitoringError as exc:
        logger.info("Statut monitoring de %s : scope indisponible (%s)", user.id, exc.message)
        return MonitoringStatus(blocking_reason=exc.message)

    pu_info = _latest_polling_unit(db, user.id)
    if pu_info is None and scope.level == "polling_unit":
        pu_info = _summary_from_scope(scope)

    stats = {
        submission_type: FormStatus(completed=count > 0, count=count, last_updated=last_updated)
        for submission_type, count, last_updated in db.execute(
            select(
                MonitorSubmission.submission_type,
                func.count(MonitorSubmission.id),
                func.max(MonitorSubmission.updated_at),
            )
            .where(MonitorSubmission.user_id == user.id)
            .group_by(MonitorSubmission.submission_type)
        ).all()
    }

    polling_unit_status = stats.get(POLLING_UNIT_INFO, FormStatus())
    if polling_unit_status.last_updated is None and pu_info is not None:
        polling_unit_status = FormStatus(
            completed=polling_unit_status.completed,
            count=polling_unit_status.count,
            last_updated=pu_info.created_at,
        )

    return MonitoringStatus(
        monitoring_scope=scope,
        pu_info=pu_info,
        form_statuses=FormStatuses(
            polling_unit=polling_unit_status,
            officer_arrival=stats.get(OFFICER_ARRIVAL, FormStatus()),
            result_tracking=stats.get(RESULT_TRACKING, FormStatus()),
            incident_reporting=stats.get(INCIDENT_REPORT, FormStatus()),
        ),
    )


def get_recent_submissions(db: Session, user: User, limit: int = 10) -> List[RecentSubmission]:
    """Dernières lignes écrites par l'appelant, tous types confondus (plus récentes d'abord)."""
    rows = db.execute(
        select(MonitorSubmission)
        .where(MonitorSubmission.user_id == user.id)
        .order_by(MonitorSubmission.created_at.desc(), MonitorSubmission.id.desc())
        .limit(limit)
    ).scalars().all()

    recent = []
    for row in rows:
        data = row.submission_data or {}
        snapshot = row.scope_snapshot or {}
        description = FORM_TYPE_TITLES.get(row.submission_type, DEFAULT_TITLE)
        recent.append(RecentSubmission(
            id=row.submission_id,
            form_type=row.submission_type,
            title=data.get("puName") or snapshot.get("pollingUnitName") or description,
            description=description,
            created_at=row.created_at,
        ))
    return recent


def compute_progress(rows: List[MonitorSubmission]) -> SubmissionProgress:
    """
    Avancement d'une soumission logique à partir de ses lignes.
    - Aucune fiche bureau de vote → not_started (0 %)
    - Un rapport d'incident clôt la soumission → completed (100 %)
    - Sinon in_progress, pourcentage = étapes faites / 4
    """
    first = rows[0]
    progress = SubmissionProgress(
        submission_id=first.submission_id,
        created_at=first.created_at,
        updated_at=first.updated_at,
        status="in_progress",
    )

    for row in rows:
        if row.updated_at and (progress.updated_at is None or row.updated_at > progress.updated_at):
            progress.updated_at = row.updated_at

        if row.submission_type == POLLING_UNIT_INFO:
            progress.pu_info_completed = True
            progress.election_id = row.election_id
            progress.polling_unit_code = row.polling_unit_code
            progress.scope = row.scope_snapshot
            progress.created_at = row.created_at
        elif row.submission_type == OFFICER_ARRIVAL:
            progress.officer_arrival_completed = True
        elif row.submission_type == RESULT_TRACKING:
            progress.result_tracking_completed = True
        elif row.submission_type == INCIDENT_REPORT:
            progress.incident_report_completed = True
            progress.incident_report_count += 1

    steps = sum([
        progress.pu_info_completed,
        progress.officer_arrival_completed,
        progress.result_tracking_completed,
        progress.incident_report_completed,
    ])
    progress.completion_percentage = round(steps / STEP_COUNT * 100)

    if progress.incident_report_completed:
        progress.status = "completed"
        progress.completion_percentage = 100
    elif not progress.pu_info_completed:
        progress.status = "not_started"
        progress.completion_percentage = 0

    return progress


def get_submission_details(db: Session, user: User, submission_id: str) -> SubmissionDetails:
    """
    Détail regroupé d'une soumission logique de l'appelant.
    Lève NotFoundOrForbidden si l'identifiant est inconnu ou appartient à un autre.
    """
    rows = db.execute(
        select(MonitorSubmission)
        .where(
            MonitorSubmission.user_id == user.id,
            MonitorSubmission.submission_id == submission_id,
        )
        .order_by(MonitorSubmission.created_at.asc(), MonitorSubmission.id.asc())
    ).scalars().all()

    if not rows:
        raise NotFoundOrForbidden()

    def first_of(submission_type):
        for row in rows:
            if row.submission_type == submission_type:
                return SubmissionRecord.model_validate(row)
        return None

    return SubmissionDetails(
        polling_unit=first_of(POLLING_UNIT_INFO),
        officer_arrival=first_of(OFFICER_ARRIVAL),
        result_tracking=first_of(RESULT_TRACKING),
        incident_reports=[
            SubmissionRecord.model_validate(row)
            for row in rows if row.submission_type == INCIDENT_REPORT
        ],
        status=compute_progress(rows),
    )


def list_user_submissions(
    db: Session,
    user: User,
    page: int = 1,
    limit: int = 10,
    status: Optional[str] = None,
) -> SubmissionList:
    """
    Soumissions logiques de l'appelant, une par fiche bureau de vote (plus récentes d'abord),
    avec leur avancement. Le filtre de statut s'applique avant la pagination :
    `total` et `pages` décrivent la liste filtrée.
    """
    bases = db.execute(
        select(MonitorSubmission)
        .where(
            MonitorSubmission.user_id == user.id,
            MonitorSubmission.submission_type == POLLING_UNIT_INFO,
        )
        .order_by(MonitorSubmission.created_at.desc(), MonitorSubmission.id.desc())
    ).scalars().all()

    if not bases:
        return SubmissionList(page=page, limit=limit)

    grouped = defaultdict(list)
    for row in db.execute(
        select(MonitorSubmission)
        .where(
            MonitorSubmission.user_id == user.id,
            MonitorSubmission.submission_id.in_([base.submission_id for base in bases]),
        )
        .order_by(MonitorSubmission.created_at.asc(), MonitorSubmission.id.asc())
    ).scalars():
        grouped[row.submission_id].append(row)

    items = [
        SubmissionListItem(
            **compute_progress(grouped[base.submission_id] or [base]).model_dump(),
            submission_data=base.submission_data or {},
        )
        for base in bases
    ]
    if status:
        items = [item for item in items if item.status == status]

    total = len(items)
    offset = (page - 1) * limit
    return SubmissionList(
        items=items[offset:offset + limit],
        total=total,
        page=page,
        limit=limit,
        pages=math.ceil(total / limit),
    )
