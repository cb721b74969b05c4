"""
Schémas Pydantic du scope géographique de monitoring.

Hiérarchie : national → state → lga → ward → polling_unit.
Un MonitoringScope est une valeur (jamais stockée seule) : il est figé en
snapshot JSON sur l'utilisateur (clé) et sur chaque soumission.
"""

from typing import Literal, Optional

from pydantic import model_validator

from pollwatch.schemas.common import CamelModel

ScopeLevel = Literal["national", "state", "lga", "ward", "polling_unit"]

# Mapping fermé désignation → niveau
DESIGNATION_LEVELS = {
    "National Coordinator": "national",
    "State Coordinator": "state",
    "LGA Coordinator": "lga",
    "Ward Coordinator": "ward",
    "Polling Unit Agent": "polling_unit",
    "Vote Defender": "polling_unit",
}

SCOPE_FIELDS = ("state", "lga", "ward", "polling_unit")

# Champs requis par niveau (cumulatifs en descendant la hiérarchie)
REQUIRED_FIELDS = {
    "national": (),
    "state": ("state",),
    "lga": ("state", "lga"),
    "ward": ("state", "lga", "ward"),
    "polling_unit": ("state", "lga", "ward", "polling_unit"),
}


class ScopeField(CamelModel):
    """Un niveau de localisation : code normalisé (matching) + libellé d'origine (affichage)."""
    code: str
    label: str

    model_config = {"frozen": True}


class MonitoringScope(CamelModel):
    level: ScopeLevel
    designation: str
    state: Optional[ScopeField] = None
    lga: Optional[ScopeField] = None
    ward: Optional[ScopeField] = None
    polling_unit: Optional[ScopeField] = None

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def fields_match_level(self) -> "MonitoringScope":
        if DESIGNATION_LEVELS.get(self.designation) != self.level:
            raise ValueError(f"La désignation '{self.designation}' ne correspond pas au niveau '{self.level}'.")
        required = REQUIRED_FIELDS[self.level]
        for name in SCOPE_FIELDS:
            present = getattr(self, name) is not None
            if name in required and not present:
                raise ValueError(f"Champ '{name}' obligatoire pour le niveau '{self.level}'.")
            if name not in required and present:
                raise ValueError(f"Champ '{name}' interdit pour le niveau '{self.level}'.")
        return self

    def to_snapshot(self) -> dict:
        """Forme persistée (JSON camelCase, niveaux absents omis)."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
