"""
Service d'écriture des soumissions de monitoring (4 types).

Préambule commun à chaque écriture :
1. Scope courant de l'appelant re-dérivé depuis son profil (jamais depuis la requête)
2. Extraction du bureau de vote référencé :
   - polling_unit_info : dans le payload
   - officer_arrival / result_tracking : hérité du polling_unit_info lié (par submission_id,
     restreint à l'appelant : introuvable ou appartenant à un autre → NotFoundOrForbidden)
   - incident_report autonome : bloc `location` du payload (à défaut, scope de l'appelant)
3. Contrôle d'appartenance au scope (ScopeMismatch) : aucune écriture en cas d'échec
4. Snapshot figé du scope (libellés du payload prioritaires)
5. Upsert selon la clé d'identité du type ; update en place si la ligne existe

Un jeton client (client_submission_id) déjà connu pour ce type est un doublon :
rien n'est réécrit, le submission_id d'origine est renvoyé.

Les échecs attendus ne sont pas levés : submit() retourne un SubmissionResult
(succès / doublon / erreur typée). Seules les pannes inattendues (BDD) se propagent.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, List, Optional, Union

from pydantic import BaseModel, ValidationError
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from pollwatch.exceptions import InvalidType, MonitoringError, NotFoundOrForbidden
from pollwatch.models.submission import (
    INCIDENT_REPORT,
    OFFICER_ARRIVAL,
    POLLING_UNIT_INFO,
    RESULT_TRACKING,
    STATUS_SUBMITTED,
    SUBMISSION_TYPES,
    MonitorSubmission,
    MonitorSubmissionToken,
)
from pollwatch.models.user import User
from pollwatch.schemas.scope import MonitoringScope
from pollwatch.schemas.submission import (
    META_FIELDS,
    PAYLOAD_MODELS,
    IncidentReportPayload,
    IncidentReportRequest,
    OfficerArrivalRequest,
    PollingUnitInfoPayload,
    PollingUnitInfoRequest,
    ResultTrackingRequest,
    SubmissionResult,
)
from pollwatch.services.scope_service import (
    SubmissionLocation,
    build_scope_snapshot,
    ensure_location_in_scope,
    location_from_scope,
    merge_location,
    normalize_code,
    resolve_scope,
)

logger = logging.getLogger(__name__)

CREATED = "created"
UPDATED = "updated"
DUPLICATE = "duplicate"

_MESSAGES = {
    CREATED: "Submission saved successfully",
    UPDATED: "Submission updated successfully",
    DUPLICATE: "Submission already processed",
}


@dataclass
class _WritePlan:
    """Ce qu'il faut écrire, une fois le payload validé et le bureau de vote identifié."""
    submission_id: str                 # Utilisé uniquement en cas d'insertion
    election_id: Optional[str]
    location: SubmissionLocation
    identity: Optional[list]           # Critères de la ligne vivante ; None = toujours insérer


def new_submission_id(prefix: str = "SUB") -> str:
    """Identifiant serveur, préfixé par famille (SUB = bureau de vote, INC = incident autonome)."""
    return f"{prefix}-{uuid.uuid4()}"


# ============================================================
# Points d'entrée unitaires (un par type)
# ============================================================

def submit_polling_unit_info(db: Session, user: User, data: PollingUnitInfoRequest) -> SubmissionResult:
    return _submit_request(db, user, POLLING_UNIT_INFO, data)


def submit_officer_arrival(db: Session, user: User, data: OfficerArrivalRequest) -> SubmissionResult:
    return _submit_request(db, user, OFFICER_ARRIVAL, data)


def submit_result_tracking(db: Session, user: User, data: ResultTrackingRequest) -> SubmissionResult:
    return _submit_request(db, user, RESULT_TRACKING, data)


def submit_incident_report(db: Session, user: User, data: IncidentReportRequest) -> SubmissionResult:
    return _submit_request(db, user, INCIDENT_REPORT, data)


def _submit_request(db: Session, user: User, submission_type: str, data: BaseModel) -> SubmissionResult:
    return submit(
        db,
        user,
        submission_type,
        data.model_dump(exclude=META_FIELDS),
        attachments=data.attachments,
        client_submission_id=data.client_submission_id,
    )


# ============================================================
# Écriture partagée (endpoints unitaires + synchro batch)
# ============================================================

def submit(
    db: Session,
    user: User,
    submission_type: str,
    submission_data: Any,
    *,
    attachments: Optional[List[str]] = None,
    client_submission_id: Optional[str] = None,
    election_id: Optional[str] = None,
    client_created_at: Optional[datetime] = None,
    scope: Optional[MonitoringScope] = None,
    synced: bool = False,
    commit: bool = True,
) -> SubmissionResult:
    """
    Valide puis persiste une soumission. Retourne toujours un SubmissionResult
    pour les échecs attendus (type, scope, lien, payload).

    `scope` : scope pré-résolu (synchro batch) ; sinon re-dérivé du profil.
    `commit=False` : l'appelant gère la transaction englobante.
    """
    try:
        if submission_type not in SUBMISSION_TYPES:
            raise InvalidType(f"Invalid submission type: {submission_type}")

        if client_submission_id:
            existing = find_by_client_id(db, user.id, client_submission_id, submission_type)
            if existing is not None:
                logger.debug("Jeton %s déjà traité, aucune écriture", client_submission_id)
                return _result(DUPLICATE, existing, client_submission_id)

        current_scope = scope or resolve_scope(user)
        payload = PAYLOAD_MODELS[submission_type].model_validate(submission_data)

        plan = _plan(db, user, submission_type, payload, current_scope, election_id, client_submission_id)
        ensure_location_in_scope(current_scope, plan.location)
        snapshot = build_scope_snapshot(current_scope, plan.location)
    except MonitoringError as exc:
        logger.info(
            "Soumission %s refusée pour l'utilisateur %s : %s",
            submission_type, user.id, exc.message,
        )
        return _failure(exc.code, exc.message, client_submission_id, submission_type, exc.http_status, exc.missing)
    except ValidationError as exc:
        return _failure(
            "INVALID_PAYLOAD",
            f"Invalid {submission_type} payload: {exc.error_count()} error(s)",
            client_submission_id, submission_type, 422,
        )

    record, outcome = _upsert(
        db,
        user,
        submission_type,
        plan,
        values={
            "election_id": plan.election_id,
            "polling_unit_code": normalize_code(plan.location.polling_unit_code),
            "scope_snapshot": snapshot,
            "submission_data": payload.model_dump(mode="json", by_alias=True),
            "attachments": list(attachments or []),
            "status": STATUS_SUBMITTED,
        },
        client_submission_id=client_submission_id,
        client_created_at=client_created_at,
        synced=synced,
    )

    if commit:
        db.commit()

    logger.info(
        "Soumission %s %s (%s) pour l'utilisateur %s",
        record.submission_id, outcome, submission_type, user.id,
    )
    return _result(outcome, record, client_submission_id)


def find_by_client_id(
    db: Session,
    user_id: uuid.UUID,
    client_submission_id: str,
    submission_type: Optional[str] = None,
) -> Optional[MonitorSubmissionToken]:
    """
    Jeton d'idempotence déjà appliqué par l'utilisateur (création ou mise à jour).
    L'entrée du registre porte le submission_id et le type de la ligne touchée.
    """
    query = select(MonitorSubmissionToken).where(
        MonitorSubmissionToken.user_id == user_id,
        MonitorSubmissionToken.client_submission_id == client_submission_id,
    )
    if submission_type is not None:
        query = query.where(MonitorSubmissionToken.submission_type == submission_type)
    return db.execute(query.order_by(MonitorSubmissionToken.id).limit(1)).scalar()


# ============================================================
# Préparation par type
# ============================================================

def _plan(
    db: Session,
    user: User,
    submission_type: str,
    payload: BaseModel,
    scope: MonitoringScope,
    election_id: Optional[str],
    client_submission_id: Optional[str],
) -> _WritePlan:
    if submission_type == POLLING_UNIT_INFO:
        return _plan_polling_unit_info(user, payload)
    if submission_type == INCIDENT_REPORT:
        return _plan_incident_report(db, user, payload, scope, election_id, client_submission_id)
    return _plan_linked(db, user, submission_type, payload)


def _plan_polling_unit_info(user: User, payload: PollingUnitInfoPayload) -> _WritePlan:
    return _WritePlan(
        submission_id=new_submission_id("SUB"),
        election_id=payload.election_id,
        location=SubmissionLocation(
            state=payload.state,
            lga=payload.lga,
            ward=payload.ward,
            polling_unit_code=payload.pu_code,
            polling_unit_name=payload.pu_name,
        ),
        identity=[
            MonitorSubmission.user_id == user.id,
            MonitorSubmission.submission_type == POLLING_UNIT_INFO,
            MonitorSubmission.polling_unit_code == normalize_code(payload.pu_code),
        ],
    )


def _plan_linked(db: Session, user: User, submission_type: str, payload) -> _WritePlan:
    """officer_arrival / result_tracking : étend un polling_unit_info existant de l'appelant."""
    linked = find_linked_polling_unit(db, user.id, payload.submission_id)
    return _WritePlan(
        submission_id=linked.submission_id,
        election_id=linked.election_id,
        location=location_from_record(linked),
        identity=[
            MonitorSubmission.user_id == user.id,
            MonitorSubmission.submission_type == submission_type,
            MonitorSubmission.submission_id == linked.submission_id,
        ],
    )


def _plan_incident_report(
    db: Session,
    user: User,
    payload: IncidentReportPayload,
    scope: MonitoringScope,
    election_id: Optional[str],
    client_submission_id: Optional[str],
) -> _WritePlan:
    """
    Incident lié (hérite du bureau de vote) ou autonome (localisation du payload / du profil).
    Identité : le jeton client s'il est fourni, sinon insertion systématique.
    """
    identity = None
    if client_submission_id:
        identity = [
            MonitorSubmission.user_id == user.id,
            MonitorSubmission.submission_type == INCIDENT_REPORT,
            MonitorSubmission.client_submission_id == client_submission_id,
        ]

    if payload.submission_id:
        linked = find_linked_polling_unit(db, user.id, payload.submission_id)
        return _WritePlan(
            submission_id=linked.submission_id,
            election_id=payload.election_id or election_id or linked.election_id,
            location=location_from_record(linked),
            identity=identity,
        )

    block = payload.location
    declared = SubmissionLocation(
        state=block.state,
        lga=block.lga,
        ward=block.ward,
        polling_unit_code=block.pu_code,
        polling_unit_name=block.pu_name,
    ) if block else SubmissionLocation()

    return _WritePlan(
        submission_id=new_submission_id("INC"),
        election_id=payload.election_id or election_id,
        location=merge_location(declared, location_from_scope(scope)),
        identity=identity,
    )


def find_linked_polling_unit(db: Session, user_id: uuid.UUID, submission_id: str) -> MonitorSubmission:
    """
    Fiche bureau de vote liée, restreinte à l'appelant.
    Introuvable et "appartient à un autre" sont volontairement indiscernables.
    """
    linked = db.execute(
        select(MonitorSubmission).where(
            MonitorSubmission.submission_id == submission_id,
            MonitorSubmission.submission_type == POLLING_UNIT_INFO,
            MonitorSubmission.user_id == user_id,
        )
    ).scalar()
    if linked is None:
        raise NotFoundOrForbidden()
    return linked


def location_from_record(record: MonitorSubmission) -> SubmissionLocation:
    snapshot = record.scope_snapshot or {}
    return SubmissionLocation(
        state=snapshot.get("state"),
        lga=snapshot.get("lga"),
        ward=snapshot.get("ward"),
        polling_unit_code=record.polling_unit_code,
        polling_unit_name=snapshot.get("pollingUnitName"),
    )


# ============================================================
# Upsert
# ============================================================

def _find_live(db: Session, identity: list) -> Optional[MonitorSubmission]:
    """Ligne vivante pour la clé d'identité, verrouillée jusqu'à la fin de la transaction."""
    return db.execute(
        select(MonitorSubmission).where(*identity).with_for_update()
    ).scalar()


def _apply_update(
    record: MonitorSubmission,
    values: dict,
    client_submission_id: Optional[str],
    client_created_at: Optional[datetime],
    synced: bool,
) -> None:
    for field, value in values.items():
        setattr(record, field, value)
    if client_submission_id and not record.client_submission_id:
        record.client_submission_id = client_submission_id
    if client_created_at is not None:
        record.client_created_at = client_created_at
    if synced:
        record.synced_at = datetime.now()
    record.updated_at = datetime.now()


def _record_token(db: Session, record: MonitorSubmission, client_submission_id: Optional[str]) -> None:
    """Inscrit le jeton appliqué au registre (appelé dans le SAVEPOINT de l'écriture)."""
    if not client_submission_id:
        return
    db.add(MonitorSubmissionToken(
        user_id=record.user_id,
        submission_type=record.submission_type,
        client_submission_id=client_submission_id,
        submission_id=record.submission_id,
    ))
    db.flush()


def _update_live(
    db: Session,
    user: User,
    existing: MonitorSubmission,
    values: dict,
    client_submission_id: Optional[str],
    client_created_at: Optional[datetime],
    synced: bool,
):
    """Met à jour la ligne vivante et inscrit le jeton ; un jeton déjà inscrit entre-temps → doublon."""
    submission_type = existing.submission_type
    try:
        with db.begin_nested():
            _apply_update(existing, values, client_submission_id, client_created_at, synced)
            _record_token(db, existing, client_submission_id)
    except IntegrityError:
        winner = find_by_client_id(db, user.id, client_submission_id, submission_type)
        if winner is None:
            raise
        return winner, DUPLICATE
    return existing, UPDATED


def _upsert(
    db: Session,
    user: User,
    submission_type: str,
    plan: _WritePlan,
    values: dict,
    client_submission_id: Optional[str],
    client_created_at: Optional[datetime],
    synced: bool,
):
    """
    Update en place si la ligne d'identité existe, sinon insertion dans un SAVEPOINT.
    Une insertion concurrente gagnante (IntegrityError) est relue puis mise à jour :
    la dernière écriture remplace les champs modifiables.
    Le jeton client est inscrit au registre dans le même SAVEPOINT que l'écriture.
    """
    if plan.identity is not None:
        existing = _find_live(db, plan.identity)
        if existing is not None:
            return _update_live(db, user, existing, values, client_submission_id, client_created_at, synced)

    record = MonitorSubmission(
        submission_id=plan.submission_id,
        user_id=user.id,
        submission_type=submission_type,
        client_submission_id=client_submission_id,
        client_created_at=client_created_at,
        synced_at=datetime.now() if synced else None,
        **values,
    )
    try:
        with db.begin_nested():
            db.add(record)
            db.flush()
            _record_token(db, record, client_submission_id)
    except IntegrityError:
        # Course perdue : même jeton client ou même clé d'identité déjà insérés
        logger.warning(
            "Conflit d'insertion %s pour l'utilisateur %s, relecture de la ligne gagnante",
            submission_type, user.id,
        )
        if client_submission_id:
            winner = find_by_client_id(db, user.id, client_submission_id, submission_type)
            if winner is not None:
                return winner, DUPLICATE
        if plan.identity is None:
            raise
        existing = _find_live(db, plan.identity)
        if existing is None:
            raise
        return _update_live(db, user, existing, values, client_submission_id, client_created_at, synced)

    return record, CREATED


# ============================================================
# Résultats
# ============================================================

def _result(
    outcome: str,
    record: Union[MonitorSubmission, MonitorSubmissionToken],
    client_submission_id: Optional[str],
) -> SubmissionResult:
    return SubmissionResult(
        success=True,
        duplicate=outcome == DUPLICATE,
        client_submission_id=client_submission_id,
        submission_id=record.submission_id,
        submission_type=record.submission_type,
        message=_MESSAGES[outcome],
        http_status=201 if outcome == CREATED else 200,
    )


def _failure(
    code: str,
    message: str,
    client_submission_id: Optional[str],
    submission_type: Optional[str],
    http_status: int,
    missing: Optional[List[str]] = None,
) -> SubmissionResult:
    return SubmissionResult(
        success=False,
        client_submission_id=client_submission_id,
        submission_type=submission_type,
        error=code,
        message=message,
        missing=missing or [],
        http_status=http_status,
    )
