"""
Schémas Pydantic pour les clés de monitoring (émission, backfill, vérification).
"""

import uuid
from datetime import datetime
from typing import List, Optional

from pydantic import field_validator

from pollwatch.schemas.common import CamelModel
from pollwatch.schemas.scope import MonitoringScope


class KeyIssueResult(CamelModel):
    """Résultat d'une émission (ou ré-émission idempotente) de clé."""
    key: str
    scope: Optional[MonitoringScope] = None
    already_assigned: bool = False
    assigned_at: Optional[datetime] = None
    message: str


class BackfillError(CamelModel):
    user_id: uuid.UUID
    name: Optional[str] = None
    error: str
    message: str


class BackfillReport(CamelModel):
    """Rapport agrégé d'un balayage de backfill."""
    total: int
    assigned: int
    skipped: int
    failed: int
    errors: List[BackfillError] = []


class KeyVerifyRequest(CamelModel):
    key: str

    @field_validator("key")
    @classmethod
    def key_normalized(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("La clé ne peut pas être vide.")
        return v.strip().upper()


class MonitoringAccess(CamelModel):
    """Statut de la clé de l'utilisateur courant."""
    has_access: bool
    key_status: Optional[str] = None
    key: Optional[str] = None
    assigned_at: Optional[datetime] = None
    designation: Optional[str] = None
    can_have_access: bool
    scope: Optional[MonitoringScope] = None
