"""
Modèle SQLAlchemy pour les soumissions de monitoring (offline-first).

Une "soumission logique" regroupe plusieurs lignes partageant le même
submission_id : la fiche bureau de vote (polling_unit_info), puis les rapports
liés (officer_arrival, result_tracking) et les incidents.

Chaque ligne est autoportante : scope_snapshot et submission_data sont des
documents JSON figés au moment de l'écriture (aucune jointure nécessaire).

Clés d'identité (index uniques partiels) :
- polling_unit_info       → (user_id, polling_unit_code)
- officer_arrival / result_tracking → (user_id, submission_type, submission_id)
- client_submission_id    → (user_id, submission_type, client_submission_id)

monitor_submission_tokens garde chaque jeton appliqué, même quand il a servi
à mettre à jour une ligne qui portait déjà un autre jeton.
"""

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    Uuid,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB

from pollwatch.database import Base

POLLING_UNIT_INFO = "polling_unit_info"
OFFICER_ARRIVAL = "officer_arrival"
RESULT_TRACKING = "result_tracking"
INCIDENT_REPORT = "incident_report"

SUBMISSION_TYPES = (POLLING_UNIT_INFO, OFFICER_ARRIVAL, RESULT_TRACKING, INCIDENT_REPORT)
LINKED_TYPES = (OFFICER_ARRIVAL, RESULT_TRACKING)

STATUS_SUBMITTED = "submitted"

JSONDocument = JSON().with_variant(JSONB(), "postgresql")

_PU_INFO_WHERE = text("submission_type = 'polling_unit_info'")
_LINKED_WHERE = text("submission_type IN ('officer_arrival', 'result_tracking')")
_CLIENT_ID_WHERE = text("client_submission_id IS NOT NULL")


class MonitorSubmission(Base):
    """Rapport de terrain : une ligne par (type, identité)."""
    __tablename__ = "monitor_submissions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    submission_id = Column(String(64), nullable=False, index=True)  # SUB-… / INC-…
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    election_id = Column(String(100), nullable=True)      # NULL pour un incident autonome
    polling_unit_code = Column(String(100), nullable=True)  # Code normalisé (MAJUSCULES)
    submission_type = Column(String(30), nullable=False)

    scope_snapshot = Column(JSONDocument, nullable=False)
    submission_data = Column(JSONDocument, nullable=False)
    attachments = Column(JSONDocument, nullable=False, default=list)  # Références (URLs) uniquement

    status = Column(String(20), nullable=False, default=STATUS_SUBMITTED)
    client_submission_id = Column(String(100), nullable=True)  # Clé d'idempotence client
    client_created_at = Column(DateTime, nullable=True)        # Horloge locale du client (offline)
    synced_at = Column(DateTime, nullable=True)                # Renseigné par la synchro batch

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        Index(
            "uq_monitor_submissions_pu_info",
            "user_id", "polling_unit_code",
            unique=True,
            postgresql_where=_PU_INFO_WHERE,
            sqlite_where=_PU_INFO_WHERE,
        ),
        Index(
            "uq_monitor_submissions_linked",
            "user_id", "submission_type", "submission_id",
            unique=True,
            postgresql_where=_LINKED_WHERE,
            sqlite_where=_LINKED_WHERE,
        ),
        Index(
            "uq_monitor_submissions_client_id",
            "user_id", "submission_type", "client_submission_id",
            unique=True,
            postgresql_where=_CLIENT_ID_WHERE,
            sqlite_where=_CLIENT_ID_WHERE,
        ),
    )


class MonitorSubmissionToken(Base):
    """
    Registre des jetons client appliqués : un jeton par (utilisateur, type),
    y compris ceux qui ont mis à jour une ligne existante. Écrit dans le même
    SAVEPOINT que l'upsert.
    """
    __tablename__ = "monitor_submission_tokens"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    submission_type = Column(String(30), nullable=False)
    client_submission_id = Column(String(100), nullable=False)
    submission_id = Column(String(64), nullable=False)   # Ligne touchée par ce jeton
    created_at = Column(DateTime, server_default=func.now())

    __table_args__ = (
        UniqueConstraint(
            "user_id", "submission_type", "client_submission_id",
            name="uq_monitor_submission_tokens_client_id",
        ),
    )
