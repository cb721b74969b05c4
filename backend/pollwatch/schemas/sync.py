"""
Schémas Pydantic pour la synchronisation offline → online des soumissions de monitoring.
Endpoint : POST /api/v1/monitoring/bulk-sync
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pollwatch.schemas.common import CamelModel
from pollwatch.schemas.submission import SubmissionResult


class SubmissionEnvelope(CamelModel):
    """Une soumission mise en file d'attente côté client pendant une période hors-ligne."""

    submission_type: str                    # Validé par item (InvalidType), pas au niveau requête
    client_submission_id: Optional[str] = None   # Clé d'idempotence
    submission_data: Dict[str, Any] = {}
    attachments: List[str] = []
    created_at: Optional[datetime] = None   # Horloge locale du client : ordre de rejeu
    election_id: Optional[str] = None


class BulkSyncRequest(CamelModel):
    """Corps de la requête batch de synchronisation (taille vérifiée par le service)."""

    submissions: List[SubmissionEnvelope]


class BulkSyncSummary(CamelModel):
    total: int
    synced: int
    duplicates: int
    failed: int


class BulkSyncResponse(CamelModel):
    """Rapport de synchronisation : un résultat par item, dans l'ordre de traitement."""

    summary: BulkSyncSummary
    results: List[SubmissionResult]
