"""
Schémas Pydantic des formulaires de monitoring (4 types de soumission).

Chaque type a son propre modèle de payload (union étiquetée par
submission_type, voir PAYLOAD_MODELS). Le payload validé est stocké tel quel
en JSON (camelCase) dans monitor_submissions.submission_data.
"""

from typing import Dict, List, Optional

from pydantic import Field, field_validator

from pollwatch.models.submission import (
    INCIDENT_REPORT,
    OFFICER_ARRIVAL,
    POLLING_UNIT_INFO,
    RESULT_TRACKING,
)
from pollwatch.schemas.common import CamelModel


def _strip_required(v: str) -> str:
    if not v or not v.strip():
        raise ValueError("Ce champ ne peut pas être vide.")
    return v.strip()


# ============================================================
# polling_unit_info
# ============================================================

class GpsCoordinates(CamelModel):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    accuracy: Optional[float] = Field(default=None, ge=0)


class PollingUnitInfoPayload(CamelModel):
    """Fiche d'installation du bureau de vote : point d'entrée d'une soumission logique."""
    election_id: str
    pu_code: str
    pu_name: str
    ward: str
    lga: str
    state: str
    gps_coordinates: Optional[GpsCoordinates] = None
    location_type: Optional[str] = None      # school, church, open_space… ou "Other"
    location_other: Optional[str] = None

    @field_validator("election_id", "pu_code", "pu_name", "ward", "lga", "state")
    @classmethod
    def not_empty(cls, v: str) -> str:
        return _strip_required(v)


# ============================================================
# officer_arrival (lié à un polling_unit_info)
# ============================================================

class OfficerArrivalPayload(CamelModel):
    submission_id: str
    first_arrival_time: Optional[str] = None
    last_arrival_time: Optional[str] = None
    on_time_status: Optional[str] = None
    proof_types: List[str] = []
    arrival_proof_media: List[str] = []       # URLs
    arrival_notes: Optional[str] = None
    officer_names: Dict[str, Optional[str]] = {}   # rôle → nom (presidingOfficer, apo1…)
    uniforms_proper: Optional[bool] = None
    impersonators: Optional[bool] = None
    voting_started: Optional[bool] = None
    actual_start_time: Optional[str] = None
    materials_present: List[str] = []
    security_present: Optional[bool] = None

    @field_validator("submission_id")
    @classmethod
    def submission_id_not_empty(cls, v: str) -> str:
        return _strip_required(v)


# ============================================================
# result_tracking (lié à un polling_unit_info)
# ============================================================

class PartyVotes(CamelModel):
    party: str
    votes: int = Field(ge=0)


class VoteStats(CamelModel):
    registered: Optional[int] = Field(default=None, ge=0)
    accredited: Optional[int] = Field(default=None, ge=0)
    valid: Optional[int] = Field(default=None, ge=0)
    rejected: Optional[int] = Field(default=None, ge=0)
    total: Optional[int] = Field(default=None, ge=0)
    votes_per_party: List[PartyVotes] = []


class ResultEvidence(CamelModel):
    """4 emplacements nommés + pièces supplémentaires (URLs uniquement)."""
    ec8a_photo: Optional[str] = Field(default=None, alias="ec8aPhoto")
    announcement_video: Optional[str] = None
    wall_photo: Optional[str] = None
    reporter_selfie: Optional[str] = None
    extras: List[str] = []


class ResultTrackingPayload(CamelModel):
    submission_id: str
    officer_name: Optional[str] = None
    result_announcer_photo: Optional[str] = None
    party_agents: List[str] = []
    reporter_name: Optional[str] = None
    reporter_phone: Optional[str] = None
    date: Optional[str] = None
    time_announced: Optional[str] = None
    stats: VoteStats = VoteStats()
    discrepancies: Optional[str] = None
    signed_by_agents: Optional[bool] = None
    agents_signed_count: Optional[int] = Field(default=None, ge=0)
    result_posted: Optional[bool] = None
    bvas_seen: Optional[bool] = None
    evidence: ResultEvidence = ResultEvidence()
    notes: Optional[str] = None

    @field_validator("submission_id")
    @classmethod
    def submission_id_not_empty(cls, v: str) -> str:
        return _strip_required(v)


# ============================================================
# incident_report (lié ou autonome)
# ============================================================

class IncidentLocation(CamelModel):
    state: Optional[str] = None
    lga: Optional[str] = None
    ward: Optional[str] = None
    pu_code: Optional[str] = None
    pu_name: Optional[str] = None


class Witness(CamelModel):
    name: str
    phone: Optional[str] = None
    statement: Optional[str] = None


class Escalation(CamelModel):
    reported_to: Optional[str] = None
    details: Optional[str] = None
    intervention_made: Optional[bool] = None
    outcome: Optional[str] = None
    logged_by_inec: Optional[bool] = None


class IncidentReportPayload(CamelModel):
    submission_id: Optional[str] = None      # Soumission liée (facultatif)
    election_id: Optional[str] = None
    location: Optional[IncidentLocation] = None
    officer_name_or_id: Optional[str] = None
    incident_date: Optional[str] = None
    incident_start: Optional[str] = None
    incident_end: Optional[str] = None
    capture_method: List[str] = []
    conditions: Optional[str] = None
    irregularities: List[str] = []
    narrative: Optional[str] = None
    perpetrators: List[str] = []
    victims: List[str] = []
    officials_present: List[str] = []
    witnesses: List[Witness] = []
    escalation: Optional[Escalation] = None


PAYLOAD_MODELS = {
    POLLING_UNIT_INFO: PollingUnitInfoPayload,
    OFFICER_ARRIVAL: OfficerArrivalPayload,
    RESULT_TRACKING: ResultTrackingPayload,
    INCIDENT_REPORT: IncidentReportPayload,
}


# ============================================================
# Requêtes unitaires (payload + métadonnées client)
# ============================================================

class SubmissionMeta(CamelModel):
    client_submission_id: Optional[str] = None   # Clé d'idempotence générée côté client
    attachments: List[str] = []                  # Références (URLs) déjà uploadées


class PollingUnitInfoRequest(PollingUnitInfoPayload, SubmissionMeta):
    pass


class OfficerArrivalRequest(OfficerArrivalPayload, SubmissionMeta):
    pass


class ResultTrackingRequest(ResultTrackingPayload, SubmissionMeta):
    pass


class IncidentReportRequest(IncidentReportPayload, SubmissionMeta):
    pass


META_FIELDS = {"client_submission_id", "attachments"}


# ============================================================
# Résultats
# ============================================================

class SubmissionResult(CamelModel):
    """
    Verdict d'une écriture (succès, doublon ou échec typé).
    Retourné par le service plutôt que levé : la synchro batch les agrège tels quels.
    """
    success: bool
    duplicate: bool = False
    client_submission_id: Optional[str] = None
    submission_id: Optional[str] = None
    submission_type: Optional[str] = None
    error: Optional[str] = None
    message: str
    missing: List[str] = Field(default=[], exclude=True)
    http_status: int = Field(default=200, exclude=True)


class SubmissionAccepted(CamelModel):
    """Réponse des endpoints unitaires."""
    submission_id: str
    duplicate: bool = False
    message: str
