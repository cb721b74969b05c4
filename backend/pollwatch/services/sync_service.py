"""
Service de synchronisation offline → online des soumissions de monitoring.

Stratégie :
- Taille du batch vérifiée avant toute écriture (BatchTooLarge)
- Scope de l'appelant dérivé UNE fois, puis appliqué à chaque item
- Rejeu dans l'ordre de création côté client (tri stable, items sans date en premier)
- Idempotence via client_submission_id : un jeton déjà connu (base ou batch courant)
  est rejoué comme doublon en renvoyant le submission_id d'origine
- Un rapport lié peut référencer sa fiche par clientSubmissionId (traduit en submissionId)
- Chaque item passe par l'écriture partagée (submission_service.submit) dans son propre
  SAVEPOINT : un item rejeté n'annule pas les autres
- Une seule transaction englobante, commitée en fin de batch. Une erreur inattendue
  (BDD) la fait échouer en entier.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from pollwatch.config import settings
from pollwatch.exceptions import BatchTooLarge
from pollwatch.models.submission import POLLING_UNIT_INFO, SUBMISSION_TYPES
from pollwatch.models.user import User
from pollwatch.schemas.submission import SubmissionResult
from pollwatch.schemas.sync import BulkSyncResponse, BulkSyncSummary, SubmissionEnvelope
from pollwatch.services.submission_service import find_by_client_id, submit
from pollwatch.services.scope_service import resolve_scope

logger = logging.getLogger(__name__)

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def to_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Horodatage client normalisé en UTC naïf (les dates sans fuseau sont supposées UTC)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def replay_order(envelopes: List[SubmissionEnvelope]) -> List[SubmissionEnvelope]:
    """Tri stable par created_at croissant ; les items sans date passent en premier."""
    def sort_key(envelope: SubmissionEnvelope):
        created_at = envelope.created_at
        if created_at is None:
            return _EPOCH
        if created_at.tzinfo is None:
            return created_at.replace(tzinfo=timezone.utc)
        return created_at

    return sorted(envelopes, key=sort_key)


def resolve_linked_reference(
    db: Session,
    user: User,
    submission_data: Dict[str, Any],
    seen_in_batch: Dict[str, str],
) -> Dict[str, Any]:
    """
    Hors-ligne, le client ne connaît pas encore le submissionId serveur de sa fiche
    bureau de vote : un rapport lié peut la référencer par son clientSubmissionId.
    La référence est traduite (batch courant, puis synchros précédentes) ; sinon inchangée.
    """
    reference = submission_data.get("submissionId")
    if not isinstance(reference, str) or not reference:
        return submission_data

    submission_id = seen_in_batch.get(reference)
    if submission_id is None:
        linked = find_by_client_id(db, user.id, reference, POLLING_UNIT_INFO)
        if linked is not None:
            submission_id = linked.submission_id

    if submission_id is None:
        return submission_data
    return {**submission_data, "submissionId": submission_id}


def bulk_sync(
    db: Session,
    user: User,
    envelopes: List[SubmissionEnvelope],
) -> BulkSyncResponse:
    """
    Rejoue un batch de soumissions mises en file hors-ligne.

    Lève BatchTooLarge (avant toute écriture) et les erreurs de scope de l'appelant
    (IneligibleDesignation, MissingScopeData). Les échecs par item sont rapportés
    dans `results`, dans l'ordre de traitement.
    """
    max_items = settings.BULK_SYNC_MAX_ITEMS
    if len(envelopes) > max_items:
        raise BatchTooLarge(
            f"Batch of {len(envelopes)} submissions exceeds the limit of {max_items}"
        )

    scope = resolve_scope(user)

    results: List[SubmissionResult] = []
    # Jetons déjà traités dans CE batch → submission_id attribué
    seen_in_batch: Dict[str, str] = {}

    for envelope in replay_order(envelopes):
        token = envelope.client_submission_id
        # Type inconnu : rejeté par submit() avant toute recherche de doublon
        deduplicate = bool(token) and envelope.submission_type in SUBMISSION_TYPES

        if deduplicate and token in seen_in_batch:
            logger.debug("Doublon intra-batch ignoré : %s", token)
            results.append(_duplicate(envelope, seen_in_batch[token]))
            continue

        if deduplicate:
            existing = find_by_client_id(db, user.id, token)
            if existing is not None:
                logger.debug("Jeton déjà synchronisé, ignoré : %s", token)
                seen_in_batch[token] = existing.submission_id
                results.append(_duplicate(envelope, existing.submission_id))
                continue

        result = submit(
            db,
            user,
            envelope.submission_type,
            resolve_linked_reference(db, user, envelope.submission_data, seen_in_batch),
            attachments=envelope.attachments,
            client_submission_id=token,
            election_id=envelope.election_id,
            client_created_at=to_utc(envelope.created_at),
            scope=scope,
            synced=True,
            commit=False,
        )
        if token and result.success:
            seen_in_batch[token] = result.submission_id
        results.append(result)

    db.commit()

    summary = BulkSyncSummary(
        total=len(results),
        synced=sum(1 for r in results if r.success and not r.duplicate),
        duplicates=sum(1 for r in results if r.duplicate),
        failed=sum(1 for r in results if not r.success),
    )
    logger.info(
        "Synchro batch utilisateur %s : %d reçus, %d synchronisés, %d doublons, %d échecs",
        user.id, summary.total, summary.synced, summary.duplicates, summary.failed,
    )
    return BulkSyncResponse(summary=summary, results=results)


def _duplicate(envelope: SubmissionEnvelope, submission_id: str) -> SubmissionResult:
    return SubmissionResult(
        success=True,
        duplicate=True,
        client_submission_id=envelope.client_submission_id,
        submission_id=submission_id,
        submission_type=envelope.submission_type,
        message="Submission already processed",
    )
