"""
Service métier pour l'émission des clés de monitoring.

Flux d'émission (issue_monitor_key) :
  1. Charger l'utilisateur (verrou FOR UPDATE) : UserNotFound sinon
  2. Clé déjà active → retour inchangé (idempotent, already_assigned=True)
  3. Vérifier la complétude du profil pour la désignation : IncompleteProfile
  4. Dériver le scope (IneligibleDesignation / MissingScopeData propagées)
  5. Générer une clé unique : vérification en base + contrainte UNIQUE ;
     une course perdue (IntegrityError dans le SAVEPOINT) relance un tirage
  6. Persister clé, statut, émetteur, date et snapshot du scope, puis commit

Alphabet de 32 symboles sans caractères ambigus (0, O, 1, I).
"""

import logging
import secrets
import uuid
from datetime import datetime
from typing import Callable, List, Optional

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from pollwatch.config import settings
from pollwatch.exceptions import (
    IncompleteProfile,
    InactiveMonitorKey,
    KeyGenerationExhausted,
    MonitoringError,
    UserNotFound,
)
from pollwatch.models.user import KEY_STATUS_ACTIVE, User
from pollwatch.schemas.monitor_key import (
    BackfillError,
    BackfillReport,
    KeyIssueResult,
    MonitoringAccess,
)
from pollwatch.schemas.scope import DESIGNATION_LEVELS, REQUIRED_FIELDS, MonitoringScope
from pollwatch.services.scope_service import resolve_scope

logger = logging.getLogger(__name__)

KEY_ALPHABET = "23456789ABCDEFGHJKLMNPQRSTUVWXYZ"
KEY_LENGTH = 6

# Champ de profil vérifié → (attributs acceptés, message)
_PROFILE_REQUIREMENTS = {
    "state": (("voting_state",), "Voting state is required"),
    "lga": (("voting_lga",), "Voting LGA is required for your designation"),
    "ward": (("voting_ward",), "Voting ward is required for your designation"),
    "polling_unit": (
        ("polling_unit_code", "voting_pu"),
        "Voting polling unit is required for your designation",
    ),
}

# Désignations balayées par le backfill (National Coordinator : aucune localisation requise)
BACKFILL_DESIGNATIONS = tuple(d for d, level in DESIGNATION_LEVELS.items() if level != "national")


def generate_monitor_key() -> str:
    """Tire une clé de 6 caractères dans l'alphabet non ambigu."""
    return "".join(secrets.choice(KEY_ALPHABET) for _ in range(KEY_LENGTH))


def generate_unique_key(
    is_taken: Callable[[str], bool],
    max_attempts: Optional[int] = None,
) -> str:
    """
    Boucle bornée : tire des candidats jusqu'à en trouver un libre.
    Lève KeyGenerationExhausted après `max_attempts` collisions.
    """
    attempts = max_attempts or settings.MONITOR_KEY_MAX_ATTEMPTS
    for _ in range(attempts):
        candidate = generate_monitor_key()
        if not is_taken(candidate):
            return candidate

    logger.critical("Génération de clé de monitoring épuisée après %d tentatives", attempts)
    raise KeyGenerationExhausted(
        f"Failed to generate a unique monitor key after {attempts} attempts"
    )


def check_profile_completeness(user) -> List[str]:
    """
    Vérification côté utilisateur (distincte du resolver) : retourne la liste des
    champs de profil manquants pour le niveau de la désignation. Liste vide = complet.
    Une désignation inéligible n'est pas traitée ici (le resolver la rejette).
    """
    level = DESIGNATION_LEVELS.get((user.designation or "").strip())
    if level is None:
        return []

    missing = []
    for field in REQUIRED_FIELDS[level]:
        attributes, _ = _PROFILE_REQUIREMENTS[field]
        values = [getattr(user, attr, None) for attr in attributes]
        if not any(isinstance(v, str) and v.strip() for v in values):
            missing.append(attributes[-1])
    return missing


def _incomplete_profile_message(missing: List[str]) -> str:
    messages = [
        message for attributes, message in _PROFILE_REQUIREMENTS.values()
        if attributes[-1] in missing
    ]
    return "; ".join(messages)


def _key_taken(db: Session, key: str) -> bool:
    return db.execute(
        select(User.id).where(User.monitor_key == key).limit(1)
    ).scalar() is not None


def _claim_unique_key(db: Session, user: User) -> str:
    """
    Réserve une clé pour l'utilisateur dans un SAVEPOINT.
    Un même compteur de tentatives couvre la vérification préalable et la contrainte
    UNIQUE, qui tranche les courses entre instances (IntegrityError → nouveau tirage).
    """
    def taken_or_lost(candidate: str) -> bool:
        if _key_taken(db, candidate):
            return True
        try:
            with db.begin_nested():
                user.monitor_key = candidate
                db.flush()
        except IntegrityError:
            logger.warning("Collision de clé %s à l'écriture pour l'utilisateur %s", candidate, user.id)
            return True
        return False

    return generate_unique_key(taken_or_lost)


def issue_monitor_key(
    db: Session,
    user_id: uuid.UUID,
    issued_by: Optional[uuid.UUID] = None,
) -> KeyIssueResult:
    """
    Émet (ou retourne) la clé de monitoring d'un utilisateur.

    Idempotent : une clé déjà active est retournée sans modification.
    Lève UserNotFound, IncompleteProfile, IneligibleDesignation, MissingScopeData
    ou KeyGenerationExhausted. Aucune écriture en cas d'échec (rollback).
    """
    user = db.execute(
        select(User).where(User.id == user_id).with_for_update()
    ).scalar()

    if user is None:
        raise UserNotFound("User not found for key assignment")

    if user.has_active_key:
        logger.info("Utilisateur %s : clé de monitoring déjà active", user_id)
        result = KeyIssueResult(
            key=user.monitor_key,
            scope=_stored_scope(user),
            already_assigned=True,
            assigned_at=user.key_assigned_at,
            message="User already has an active monitoring key",
        )
        db.commit()  # libère le verrou
        return result

    try:
        missing = check_profile_completeness(user)
        if missing:
            logger.warning("Clé non assignée à %s, profil incomplet : %s", user_id, missing)
            raise IncompleteProfile(_incomplete_profile_message(missing), missing=missing)

        scope = resolve_scope(user)
        key = _claim_unique_key(db, user)
    except MonitoringError:
        db.rollback()
        raise

    assigned_at = datetime.now()
    user.key_status = KEY_STATUS_ACTIVE
    user.key_assigned_by = issued_by
    user.key_assigned_at = assigned_at
    user.monitoring_scope = scope.to_snapshot()
    db.commit()

    logger.info(
        "Clé de monitoring assignée à %s (désignation %s, niveau %s)",
        user_id, scope.designation, scope.level,
    )
    return KeyIssueResult(
        key=key,
        scope=scope,
        already_assigned=False,
        assigned_at=assigned_at,
        message="Monitoring key assigned successfully",
    )


def backfill_monitor_keys(db: Session, limit: Optional[int] = None) -> BackfillReport:
    """
    Balaye les utilisateurs éligibles sans clé active (désignation de monitoring,
    état de vote renseigné) et appelle issue_monitor_key pour chacun.

    Un échec individuel est comptabilisé et consigné, sans interrompre le balayage :
    - erreur métier (profil incomplet, scope invalide) → skipped
    - épuisement de la génération ou erreur inattendue → failed + détail dans errors
    """
    batch_size = limit or settings.KEY_BACKFILL_BATCH_SIZE
    candidates = db.execute(
        select(User.id, User.name)
        .where(
            User.designation.in_(BACKFILL_DESIGNATIONS),
            or_(User.monitor_key.is_(None), User.key_status != KEY_STATUS_ACTIVE),
            User.voting_state.is_not(None),
            User.voting_state != "",
        )
        .order_by(User.created_at)
        .limit(batch_size)
    ).all()

    report = BackfillReport(total=len(candidates), assigned=0, skipped=0, failed=0, errors=[])
    logger.info("Backfill des clés de monitoring : %d candidat(s)", report.total)

    for user_id, name in candidates:
        try:
            result = issue_monitor_key(db, user_id)
        except KeyGenerationExhausted as exc:
            report.failed += 1
            report.errors.append(BackfillError(
                user_id=user_id, name=name, error=exc.code, message=exc.message,
            ))
            continue
        except MonitoringError as exc:
            report.skipped += 1
            logger.warning("Backfill : utilisateur %s ignoré (%s)", user_id, exc.message)
            continue
        except Exception as exc:
            db.rollback()
            report.failed += 1
            report.errors.append(BackfillError(
                user_id=user_id,
                name=name,
                error="PROCESSING_ERROR",
                message=str(exc),
            ))
            logger.error("Backfill : échec pour l'utilisateur %s : %s", user_id, exc, exc_info=True)
            continue

        if result.already_assigned:
            report.skipped += 1
        else:
            report.assigned += 1

    logger.info(
        "Backfill terminé : %d assignées, %d ignorées, %d échecs",
        report.assigned, report.skipped, report.failed,
    )
    return report


def verify_monitor_key(db: Session, user: User, key: str) -> MonitoringAccess:
    """
    Vérifie qu'une clé saisie appartient à l'utilisateur courant et qu'elle est active.
    Lève InactiveMonitorKey sinon (sans distinguer clé inconnue / clé d'un autre).
    """
    if not user.monitor_key or not secrets.compare_digest(user.monitor_key, key):
        raise InactiveMonitorKey("Invalid key or key not assigned to this user")
    if not user.has_active_key:
        raise InactiveMonitorKey("Monitoring key is not active")

    logger.info("Clé de monitoring vérifiée pour l'utilisateur %s", user.id)
    return get_monitoring_access(user)


def get_monitoring_access(user: User) -> MonitoringAccess:
    """Statut de la clé de l'utilisateur courant (sans écriture)."""
    designation = (user.designation or "").strip()
    return MonitoringAccess(
        has_access=user.has_active_key,
        key_status=user.key_status,
        key=user.monitor_key,
        assigned_at=user.key_assigned_at,
        designation=user.designation,
        can_have_access=designation in DESIGNATION_LEVELS,
        scope=_stored_scope(user),
    )


def _stored_scope(user: User) -> Optional[MonitoringScope]:
    if not user.monitoring_scope:
        return None
    return MonitoringScope.model_validate(user.monitoring_scope)
