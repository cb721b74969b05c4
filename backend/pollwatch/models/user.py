"""
Modèle SQLAlchemy pour les utilisateurs (agents de terrain et coordinateurs).

Le profil (désignation + localisation de vote) est alimenté par le service
d'authentification externe. La clé de monitoring est portée directement par
l'utilisateur (relation 1:1, pas de table séparée).
"""

import uuid
from sqlalchemy import JSON, Column, DateTime, String, Uuid, func
from sqlalchemy.dialects.postgresql import JSONB

from pollwatch.database import Base

KEY_STATUS_ACTIVE = "active"
KEY_STATUS_REVOKED = "revoked"


class User(Base):
    __tablename__ = "users"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    email = Column(String(255), unique=True, nullable=True)
    name = Column(String(200), nullable=True)
    role = Column(String(50), nullable=False, default="MEMBER")  # MEMBER, ADMIN

    # Profil de localisation (libellés libres saisis à l'onboarding)
    designation = Column(String(100), nullable=True)   # "Polling Unit Agent", "Ward Coordinator"...
    voting_state = Column(String(100), nullable=True)
    voting_lga = Column(String(100), nullable=True)
    voting_ward = Column(String(150), nullable=True)
    voting_pu = Column(String(255), nullable=True)           # Nom du bureau de vote (affichage)
    polling_unit_code = Column(String(50), nullable=True)    # Code de délimitation (matching)

    # Clé de monitoring
    monitor_key = Column(String(6), unique=True, nullable=True)
    key_status = Column(String(20), nullable=True)            # active, revoked
    key_assigned_by = Column(Uuid, nullable=True)             # NULL = auto-assignation
    key_assigned_at = Column(DateTime, nullable=True)
    monitoring_scope = Column(JSON().with_variant(JSONB(), "postgresql"), nullable=True)  # Snapshot figé

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    @property
    def has_active_key(self) -> bool:
        return bool(self.monitor_key) and self.key_status == KEY_STATUS_ACTIVE
