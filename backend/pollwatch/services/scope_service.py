"""
Résolution du scope de monitoring à partir du profil utilisateur.

Fonctions pures : aucune lecture BDD, aucun état partagé. Le scope est
re-dérivé à chaque appel depuis le profil vivant : il n'est jamais mis en
cache ni accepté depuis le corps d'une requête.

Normalisation : trim, espaces internes réduits à un seul, MAJUSCULES pour
le code de matching ; la casse d'origine est conservée comme libellé.
Deux scopes sont équivalents ssi leurs codes normalisés sont identiques.
"""

import re
from dataclasses import dataclass
from typing import Optional

from pollwatch.exceptions import IneligibleDesignation, MissingScopeData, ScopeMismatch
from pollwatch.schemas.scope import DESIGNATION_LEVELS, REQUIRED_FIELDS, MonitoringScope, ScopeField

_WHITESPACE = re.compile(r"\s+")

# Libellés lisibles pour les messages d'erreur
FIELD_LABELS = {
    "state": "state",
    "lga": "LGA",
    "ward": "ward",
    "polling_unit": "polling unit",
}


@dataclass(frozen=True)
class SubmissionLocation:
    """Localisation référencée par une soumission (valeurs brutes, non normalisées)."""
    state: Optional[str] = None
    lga: Optional[str] = None
    ward: Optional[str] = None
    polling_unit_code: Optional[str] = None
    polling_unit_name: Optional[str] = None


def normalize_code(value) -> Optional[str]:
    """Code de matching : None si la valeur est absente, vide ou non textuelle."""
    if not isinstance(value, str):
        return None
    raw = value.strip()
    if not raw:
        return None
    return _WHITESPACE.sub(" ", raw).upper()


def normalize_field(value) -> Optional[ScopeField]:
    code = normalize_code(value)
    if code is None:
        return None
    return ScopeField(code=code, label=value.strip())


def resolve_polling_unit(code, name) -> Optional[ScopeField]:
    """
    Le bureau de vote a un code (délimitation) distinct de son nom.
    Le code explicite est prioritaire pour le matching ; chacun comble l'absence de l'autre.
    """
    code_field = normalize_field(code)
    name_field = normalize_field(name)
    if code_field is None and name_field is None:
        return None
    return ScopeField(
        code=(code_field or name_field).code,
        label=(name_field or code_field).label,
    )


def level_for_designation(designation) -> str:
    """Niveau de scope associé à une désignation ; IneligibleDesignation sinon."""
    cleaned = designation.strip() if isinstance(designation, str) else ""
    level = DESIGNATION_LEVELS.get(cleaned)
    if level is None:
        raise IneligibleDesignation(
            f"Designation '{cleaned or 'none'}' is not eligible for monitoring access"
        )
    return level


def resolve_scope(principal) -> MonitoringScope:
    """
    Dérive et valide le MonitoringScope d'un utilisateur.

    `principal` expose designation, voting_state, voting_lga, voting_ward,
    voting_pu et polling_unit_code (attributs absents = non renseignés).
    Lève IneligibleDesignation ou MissingScopeData (tous les champs manquants listés).
    """
    designation = (getattr(principal, "designation", None) or "").strip()
    level = level_for_designation(designation)

    if level == "national":
        return MonitoringScope(level=level, designation=designation)

    fields = {
        "state": normalize_field(getattr(principal, "voting_state", None)),
        "lga": normalize_field(getattr(principal, "voting_lga", None)),
        "ward": normalize_field(getattr(principal, "voting_ward", None)),
        "polling_unit": resolve_polling_unit(
            getattr(principal, "polling_unit_code", None),
            getattr(principal, "voting_pu", None),
        ),
    }

    required = REQUIRED_FIELDS[level]
    missing = [name for name in required if fields[name] is None]
    if missing:
        raise MissingScopeData(
            f"Missing required location data for {designation}: "
            + ", ".join(FIELD_LABELS[name] for name in missing),
            missing=missing,
        )

    return MonitoringScope(
        level=level,
        designation=designation,
        **{name: fields[name] for name in required},
    )


def ensure_location_in_scope(scope: MonitoringScope, location: SubmissionLocation) -> None:
    """
    Vérifie que la localisation soumise appartient au scope courant de l'appelant.

    - polling_unit : le code du bureau doit correspondre exactement
    - ward / lga / state : chaque niveau renseigné du scope doit correspondre
    - national : aucune restriction
    Lève ScopeMismatch en nommant l'unité soumise et l'unité assignée.
    """
    if scope.level == "polling_unit":
        submitted = normalize_code(location.polling_unit_code)
        if submitted != scope.polling_unit.code:
            raise ScopeMismatch(
                f"Polling unit '{location.polling_unit_code or 'unknown'}' does not match "
                f"your assigned polling unit '{scope.polling_unit.label}' ({scope.polling_unit.code})"
            )
        return

    for name in REQUIRED_FIELDS[scope.level]:
        assigned: ScopeField = getattr(scope, name)
        raw = getattr(location, name)
        if normalize_code(raw) != assigned.code:
            raise ScopeMismatch(
                f"Submitted {FIELD_LABELS[name]} '{raw or 'unknown'}' is outside your assigned "
                f"{FIELD_LABELS[name]} '{assigned.label}'"
            )


def location_from_scope(scope: MonitoringScope) -> SubmissionLocation:
    """Localisation par défaut quand la soumission n'en fournit pas (incident autonome)."""
    return SubmissionLocation(
        state=scope.state.label if scope.state else None,
        lga=scope.lga.label if scope.lga else None,
        ward=scope.ward.label if scope.ward else None,
        polling_unit_code=scope.polling_unit.code if scope.polling_unit else None,
        polling_unit_name=scope.polling_unit.label if scope.polling_unit else None,
    )


def merge_location(primary: SubmissionLocation, fallback: SubmissionLocation) -> SubmissionLocation:
    """Les valeurs de `primary` gagnent quand elles sont présentes."""
    return SubmissionLocation(
        state=primary.state or fallback.state,
        lga=primary.lga or fallback.lga,
        ward=primary.ward or fallback.ward,
        polling_unit_code=primary.polling_unit_code or fallback.polling_unit_code,
        polling_unit_name=primary.polling_unit_name or fallback.polling_unit_name,
    )


def build_scope_snapshot(scope: MonitoringScope, location: SubmissionLocation) -> dict:
    """
    Snapshot figé stocké sur la soumission : scope courant de l'appelant,
    surchargé par les libellés explicites de la soumission.
    """
    snapshot_location = merge_location(location, location_from_scope(scope))
    return {
        "level": scope.level,
        "designation": scope.designation,
        "state": snapshot_location.state,
        "stateCode": normalize_code(snapshot_location.state),
        "lga": snapshot_location.lga,
        "lgaCode": normalize_code(snapshot_location.lga),
        "ward": snapshot_location.ward,
        "wardCode": normalize_code(snapshot_location.ward),
        "pollingUnitName": snapshot_location.polling_unit_name or snapshot_location.polling_unit_code,
        "pollingUnitCode": normalize_code(snapshot_location.polling_unit_code),
    }
