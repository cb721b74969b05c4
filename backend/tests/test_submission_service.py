"""
Tests du service d'écriture des soumissions (SQLite en mémoire).
Couverture : upsert idempotent, contrôle de scope pour chaque type, soumissions liées,
incidents autonomes, registre des jetons, course perdue à l'insertion, snapshot figé,
type inconnu, payload invalide.
"""

from unittest.mock import patch

import pytest
from sqlalchemy import func, select

from conftest import make_monitor
from pollwatch.models.submission import (
    INCIDENT_REPORT,
    OFFICER_ARRIVAL,
    POLLING_UNIT_INFO,
    RESULT_TRACKING,
    MonitorSubmission,
    MonitorSubmissionToken,
)
from pollwatch.schemas.submission import PollingUnitInfoRequest
from pollwatch.services import submission_service
from pollwatch.services.submission_service import submit, submit_polling_unit_info


# --- Helpers ---

def pu_info(pu_code="PU-014", **kwargs) -> dict:
    data = {
        "electionId": "GOV-2027-LAGOS",
        "puCode": pu_code,
        "puName": "Alausa Primary School",
        "ward": "Ward 3",
        "lga": "Ikeja",
        "state": "Lagos",
        "gpsCoordinates": {"latitude": 6.6018, "longitude": 3.3515},
        "locationType": "school",
    }
    data.update(kwargs)
    return data


def count_rows(db, **filters) -> int:
    query = select(func.count()).select_from(MonitorSubmission)
    for field, value in filters.items():
        query = query.where(getattr(MonitorSubmission, field) == value)
    return db.execute(query).scalar()


@pytest.fixture
def monitor(db_session):
    user = make_monitor(voting_ward="Ward 3", polling_unit_code="PU-014")
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture
def other_monitor(db_session):
    user = make_monitor(monitor_key="QW34ER", voting_ward="Ward 3", polling_unit_code="PU-014")
    db_session.add(user)
    db_session.commit()
    return user


def create_pu_info(db, user, **kwargs):
    result = submit(db, user, POLLING_UNIT_INFO, pu_info(**kwargs))
    assert result.success, result.message
    return result


# ============================================================
# polling_unit_info
# ============================================================

def test_fiche_bureau_creee(db_session, monitor):
    result = create_pu_info(db_session, monitor)

    assert result.submission_id.startswith("SUB-")
    assert result.http_status == 201
    row = db_session.execute(select(MonitorSubmission)).scalar_one()
    assert row.polling_unit_code == "PU-014"
    assert row.status == "submitted"
    assert row.submission_data["gpsCoordinates"]["latitude"] == 6.6018
    assert row.scope_snapshot["pollingUnitCode"] == "PU-014"


def test_fiche_bureau_idempotente(db_session, monitor):
    """Même (utilisateur, bureau) deux fois → une seule ligne, mise à jour en place."""
    first = create_pu_info(db_session, monitor)
    second = submit(db_session, monitor, POLLING_UNIT_INFO, pu_info(pu_code=" pu-014 ", locationType="church"))

    assert second.success is True
    assert second.submission_id == first.submission_id
    assert second.http_status == 200
    assert count_rows(db_session, submission_type=POLLING_UNIT_INFO) == 1
    row = db_session.execute(select(MonitorSubmission)).scalar_one()
    assert row.submission_data["locationType"] == "church"


def test_fiche_bureau_hors_scope(db_session, monitor):
    result = submit(db_session, monitor, POLLING_UNIT_INFO, pu_info(pu_code="PU-015"))

    assert result.success is False
    assert result.error == "SCOPE_MISMATCH"
    assert result.http_status == 403
    assert "PU-015" in result.message
    assert count_rows(db_session) == 0


def test_point_d_entree_unitaire(db_session, monitor):
    data = PollingUnitInfoRequest(**pu_info(), clientSubmissionId="c-1", attachments=["https://cdn/x.jpg"])
    result = submit_polling_unit_info(db_session, monitor, data)

    assert result.success is True
    row = db_session.execute(select(MonitorSubmission)).scalar_one()
    assert row.client_submission_id == "c-1"
    assert row.attachments == ["https://cdn/x.jpg"]
    assert "clientSubmissionId" not in row.submission_data


# ============================================================
# Soumissions liées
# ============================================================

@pytest.mark.parametrize("submission_type,data", [
    (OFFICER_ARRIVAL, {"firstArrivalTime": "07:45", "onTimeStatus": "on_time"}),
    (RESULT_TRACKING, {"stats": {"registered": 750, "accredited": 412,
                                 "votesPerParty": [{"party": "APC", "votes": 200}]}}),
])
def test_rapport_lie_upsert(db_session, monitor, submission_type, data):
    base = create_pu_info(db_session, monitor)

    first = submit(db_session, monitor, submission_type, {"submissionId": base.submission_id, **data})
    second = submit(db_session, monitor, submission_type, {"submissionId": base.submission_id, **data})

    assert first.success and second.success
    assert first.submission_id == base.submission_id
    assert count_rows(db_session, submission_type=submission_type) == 1


def test_rapport_lie_introuvable(db_session, monitor):
    result = submit(db_session, monitor, OFFICER_ARRIVAL, {"submissionId": "SUB-unknown"})

    assert result.success is False
    assert result.error == "NOT_FOUND_OR_FORBIDDEN"
    assert result.http_status == 404


def test_rapport_lie_d_un_autre_utilisateur(db_session, monitor, other_monitor):
    """La fiche d'un autre est indiscernable d'une fiche inexistante."""
    theirs = create_pu_info(db_session, other_monitor)

    result = submit(db_session, monitor, RESULT_TRACKING, {"submissionId": theirs.submission_id})

    assert result.error == "NOT_FOUND_OR_FORBIDDEN"
    assert result.message == "Submission not found or access denied"


def test_rapport_lie_apres_changement_d_affectation(db_session, monitor):
    """Le scope est re-dérivé à chaque appel : une mise à jour devient hors scope."""
    base = create_pu_info(db_session, monitor)
    submit(db_session, monitor, OFFICER_ARRIVAL, {"submissionId": base.submission_id})

    monitor.polling_unit_code = "PU-099"
    db_session.commit()

    for submission_type in (OFFICER_ARRIVAL, RESULT_TRACKING, INCIDENT_REPORT):
        result = submit(db_session, monitor, submission_type, {"submissionId": base.submission_id})
        assert result.error == "SCOPE_MISMATCH", submission_type


# ============================================================
# incident_report
# ============================================================

def test_incidents_lies_multiples(db_session, monitor):
    base = create_pu_info(db_session, monitor)

    for narrative in ("Ballot snatching", "Vote buying"):
        result = submit(db_session, monitor, INCIDENT_REPORT,
                        {"submissionId": base.submission_id, "narrative": narrative})
        assert result.submission_id == base.submission_id

    assert count_rows(db_session, submission_type=INCIDENT_REPORT) == 2


def test_incident_autonome(db_session, monitor):
    result = submit(db_session, monitor, INCIDENT_REPORT, {
        "narrative": "Thugs disrupted accreditation",
        "irregularities": ["violence"],
    })

    assert result.success is True
    assert result.submission_id.startswith("INC-")
    row = db_session.execute(select(MonitorSubmission)).scalar_one()
    assert row.election_id is None
    assert row.polling_unit_code == "PU-014"


def test_incident_autonome_hors_scope(db_session, monitor):
    result = submit(db_session, monitor, INCIDENT_REPORT, {"location": {"puCode": "PU-015"}})
    assert result.error == "SCOPE_MISMATCH"
    assert count_rows(db_session) == 0


def test_incident_jeton_client_idempotent(db_session, monitor):
    first = submit(db_session, monitor, INCIDENT_REPORT, {"narrative": "v1"}, client_submission_id="inc-1")
    second = submit(db_session, monitor, INCIDENT_REPORT, {"narrative": "v2"}, client_submission_id="inc-1")

    assert second.success is True
    assert second.duplicate is True
    assert second.http_status == 200
    assert second.submission_id == first.submission_id
    assert count_rows(db_session, submission_type=INCIDENT_REPORT) == 1
    row = db_session.execute(select(MonitorSubmission)).scalar_one()
    assert row.submission_data["narrative"] == "v1"


def test_jeton_d_une_mise_a_jour_reste_un_doublon(db_session, monitor):
    """Un jeton qui a mis à jour une fiche déjà jetonnée est reconnu au rejeu."""
    first = submit(db_session, monitor, POLLING_UNIT_INFO, pu_info(), client_submission_id="t1")
    second = submit(db_session, monitor, POLLING_UNIT_INFO, pu_info(locationType="church"),
                    client_submission_id="t2")
    third = submit(db_session, monitor, POLLING_UNIT_INFO, pu_info(locationType="market"),
                   client_submission_id="t2")

    assert second.http_status == 200
    assert second.duplicate is False
    assert third.duplicate is True
    assert third.message == "Submission already processed"
    assert third.submission_id == first.submission_id
    row = db_session.execute(select(MonitorSubmission)).scalar_one()
    assert row.submission_data["locationType"] == "church"
    tokens = db_session.execute(
        select(MonitorSubmissionToken.client_submission_id).order_by(MonitorSubmissionToken.id)
    ).scalars().all()
    assert tokens == ["t1", "t2"]


def test_course_perdue_a_l_insertion(db_session, monitor):
    """Ligne vivante invisible au premier regard : l'insertion échoue puis la ligne gagnante est mise à jour."""
    base = submit(db_session, monitor, POLLING_UNIT_INFO, pu_info())
    real_find_live = submission_service._find_live
    calls = []

    def racing_find_live(db, identity):
        calls.append(identity)
        if len(calls) == 1:
            return None
        return real_find_live(db, identity)

    with patch("pollwatch.services.submission_service._find_live", side_effect=racing_find_live):
        result = submit(db_session, monitor, POLLING_UNIT_INFO, pu_info(locationType="church"))

    assert result.success is True
    assert result.http_status == 200
    assert result.message == "Submission updated successfully"
    assert result.submission_id == base.submission_id
    assert len(calls) == 2
    assert count_rows(db_session, submission_type=POLLING_UNIT_INFO) == 1
    row = db_session.execute(select(MonitorSubmission)).scalar_one()
    assert row.submission_data["locationType"] == "church"


# ============================================================
# Snapshot, erreurs
# ============================================================

def test_snapshot_fige_apres_changement_de_profil(db_session, monitor):
    submit(db_session, monitor, INCIDENT_REPORT, {"narrative": "Late materials"})  # libellés issus du profil

    monitor.voting_lga = "Ikeja LGA"
    db_session.commit()

    row = db_session.execute(select(MonitorSubmission)).scalar_one()
    assert row.scope_snapshot["lga"] == "Ikeja"


def test_type_inconnu(db_session, monitor):
    result = submit(db_session, monitor, "exit_poll", {})

    assert result.success is False
    assert result.error == "INVALID_TYPE"
    assert count_rows(db_session) == 0


def test_payload_invalide(db_session, monitor):
    data = pu_info()
    del data["puCode"]

    result = submit(db_session, monitor, POLLING_UNIT_INFO, data)

    assert result.success is False
    assert result.error == "INVALID_PAYLOAD"
    assert result.http_status == 422


def test_profil_sans_scope(db_session):
    user = make_monitor(voting_pu=None, polling_unit_code=None)
    db_session.add(user)
    db_session.commit()

    result = submit(db_session, user, POLLING_UNIT_INFO, pu_info())

    assert result.error == "MISSING_SCOPE_DATA"
    assert result.missing == ["polling_unit"]
