"""
Tests d'intégration API pour les formulaires de monitoring.
Endpoints : POST /api/v1/monitoring/{polling-unit,officer-arrival,result-tracking,incident-report,bulk-sync}
            GET  /api/v1/monitoring/{status,recent-submissions,submissions,submissions/{id}}
"""

import uuid
from unittest.mock import MagicMock, patch

from fastapi.testclient import TestClient

from conftest import make_monitor, make_user
from pollwatch.database import get_db
from pollwatch.exceptions import BatchTooLarge, NotFoundOrForbidden
from pollwatch.main import app
from pollwatch.dependencies import get_current_user
from pollwatch.schemas.monitoring import (
    MonitoringStatus,
    RecentSubmission,
    SubmissionDetails,
    SubmissionList,
    SubmissionListItem,
    SubmissionProgress,
)
from pollwatch.schemas.submission import SubmissionResult
from pollwatch.schemas.sync import BulkSyncResponse, BulkSyncSummary

SERVICE = "pollwatch.routers.monitoring.submission_service"


# --- Helpers ---

def pu_info_payload(**kwargs) -> dict:
    data = {
        "electionId": "GOV-2027-LAGOS",
        "puCode": "PU-014",
        "puName": "Alausa Primary School",
        "ward": "Ward 3",
        "lga": "Ikeja",
        "state": "Lagos",
        "clientSubmissionId": "c-1",
    }
    data.update(kwargs)
    return data


def ok_result(submission_id="SUB-1", status=201, duplicate=False) -> SubmissionResult:
    return SubmissionResult(
        success=True,
        duplicate=duplicate,
        submission_id=submission_id,
        message="Submission saved successfully",
        http_status=status,
    )


# ============================================================
# Accès
# ============================================================

def test_sans_en_tete_utilisateur(client):
    response = client.get("/api/v1/monitoring/status")
    assert response.status_code == 422


def test_utilisateur_sans_cle_active(client):
    app.dependency_overrides[get_current_user] = lambda: make_user()
    response = client.get("/api/v1/monitoring/status")

    assert response.status_code == 403
    assert response.json()["detail"]["code"] == "INACTIVE_MONITOR_KEY"


# ============================================================
# Soumissions unitaires
# ============================================================

def test_fiche_bureau_creee(client, as_user):
    user = as_user(make_monitor())
    with patch(f"{SERVICE}.submit_polling_unit_info") as mock:
        mock.return_value = ok_result("SUB-abc")
        response = client.post("/api/v1/monitoring/polling-unit", json=pu_info_payload())

    assert response.status_code == 201
    assert response.json() == {
        "submissionId": "SUB-abc",
        "duplicate": False,
        "message": "Submission saved successfully",
    }
    _, called_user, data = mock.call_args.args
    assert called_user is user
    assert data.pu_code == "PU-014"
    assert data.client_submission_id == "c-1"


def test_fiche_bureau_mise_a_jour(client, as_user):
    as_user(make_monitor())
    with patch(f"{SERVICE}.submit_polling_unit_info", return_value=ok_result(status=200)):
        response = client.post("/api/v1/monitoring/polling-unit", json=pu_info_payload())

    assert response.status_code == 200


def test_fiche_bureau_champ_manquant(client, as_user):
    as_user(make_monitor())
    payload = pu_info_payload()
    del payload["puCode"]

    response = client.post("/api/v1/monitoring/polling-unit", json=payload)
    assert response.status_code == 422


def test_fiche_bureau_hors_scope(client, as_user):
    as_user(make_monitor())
    failure = SubmissionResult(
        success=False,
        error="SCOPE_MISMATCH",
        message="Polling unit 'PU-015' does not match your assigned polling unit",
        http_status=403,
    )
    with patch(f"{SERVICE}.submit_polling_unit_info", return_value=failure):
        response = client.post("/api/v1/monitoring/polling-unit", json=pu_info_payload(puCode="PU-015"))

    assert response.status_code == 403
    assert response.json()["detail"]["code"] == "SCOPE_MISMATCH"
    assert "PU-015" in response.json()["detail"]["message"]


def test_scope_manquant_liste_les_champs(client, as_user):
    as_user(make_monitor())
    failure = SubmissionResult(
        success=False,
        error="MISSING_SCOPE_DATA",
        message="Missing required location data",
        missing=["ward", "polling_unit"],
        http_status=400,
    )
    with patch(f"{SERVICE}.submit_polling_unit_info", return_value=failure):
        response = client.post("/api/v1/monitoring/polling-unit", json=pu_info_payload())

    assert response.status_code == 400
    assert response.json()["detail"]["missing"] == ["ward", "polling_unit"]


def test_rapport_arrivee(client, as_user):
    as_user(make_monitor())
    with patch(f"{SERVICE}.submit_officer_arrival", return_value=ok_result("SUB-abc")) as mock:
        response = client.post("/api/v1/monitoring/officer-arrival", json={
            "submissionId": "SUB-abc",
            "firstArrivalTime": "07:40",
            "officerNames": {"presidingOfficer": "M. Bello"},
            "uniformsProper": True,
        })

    assert response.status_code == 201
    data = mock.call_args.args[2]
    assert data.officer_names == {"presidingOfficer": "M. Bello"}


def test_rapport_arrivee_fiche_introuvable(client, as_user):
    as_user(make_monitor())
    failure = SubmissionResult(
        success=False, error="NOT_FOUND_OR_FORBIDDEN",
        message="Submission not found or access denied", http_status=404,
    )
    with patch(f"{SERVICE}.submit_officer_arrival", return_value=failure):
        response = client.post("/api/v1/monitoring/officer-arrival", json={"submissionId": "SUB-x"})

    assert response.status_code == 404


def test_suivi_resultats(client, as_user):
    as_user(make_monitor())
    with patch(f"{SERVICE}.submit_result_tracking", return_value=ok_result()) as mock:
        response = client.post("/api/v1/monitoring/result-tracking", json={
            "submissionId": "SUB-1",
            "stats": {"registered": 750, "accredited": 412, "valid": 400, "rejected": 12,
                      "total": 412, "votesPerParty": [{"party": "APC", "votes": 210}]},
            "evidence": {"ec8aPhoto": "https://cdn/ec8a.jpg", "extras": ["https://cdn/1.jpg"]},
        })

    assert response.status_code == 201
    data = mock.call_args.args[2]
    assert data.stats.votes_per_party[0].votes == 210
    assert data.evidence.ec8a_photo == "https://cdn/ec8a.jpg"


def test_suivi_resultats_votes_negatifs(client, as_user):
    as_user(make_monitor())
    response = client.post("/api/v1/monitoring/result-tracking", json={
        "submissionId": "SUB-1",
        "stats": {"votesPerParty": [{"party": "APC", "votes": -1}]},
    })
    assert response.status_code == 422


def test_rapport_incident_autonome(client, as_user):
    as_user(make_monitor())
    with patch(f"{SERVICE}.submit_incident_report", return_value=ok_result("INC-1")):
        response = client.post("/api/v1/monitoring/incident-report", json={
            "narrative": "Ballot box snatched",
            "irregularities": ["violence"],
            "witnesses": [{"name": "Chidi"}],
        })

    assert response.status_code == 201
    assert response.json()["submissionId"] == "INC-1"


# ============================================================
# POST /api/v1/monitoring/bulk-sync
# ============================================================

def test_synchro_batch(client, as_user):
    user = as_user(make_monitor())
    report = BulkSyncResponse(
        summary=BulkSyncSummary(total=2, synced=1, duplicates=1, failed=0),
        results=[
            SubmissionResult(success=True, client_submission_id="a", submission_id="SUB-1",
                             message="Submission saved successfully"),
            SubmissionResult(success=True, duplicate=True, client_submission_id="b",
                             submission_id="SUB-1", message="Submission already processed"),
        ],
    )
    with patch("pollwatch.routers.monitoring.sync_service.bulk_sync", return_value=report) as mock:
        response = client.post("/api/v1/monitoring/bulk-sync", json={"submissions": [
            {"submissionType": "polling_unit_info", "clientSubmissionId": "a",
             "submissionData": {"puCode": "PU-014"}, "createdAt": "2027-03-18T08:00:00Z"},
            {"submissionType": "polling_unit_info", "clientSubmissionId": "b",
             "submissionData": {}, "createdAt": "2027-03-18T08:01:00+01:00"},
        ]})

    assert response.status_code == 200
    body = response.json()
    assert body["summary"] == {"total": 2, "synced": 1, "duplicates": 1, "failed": 0}
    assert body["results"][1]["duplicate"] is True
    assert "httpStatus" not in body["results"][0]
    _, called_user, envelopes = mock.call_args.args
    assert called_user is user
    assert envelopes[0].client_submission_id == "a"


def test_synchro_batch_trop_grand(client, as_user):
    as_user(make_monitor())
    with patch("pollwatch.routers.monitoring.sync_service.bulk_sync",
               side_effect=BatchTooLarge("Batch of 101 submissions exceeds the limit of 100")):
        response = client.post("/api/v1/monitoring/bulk-sync", json={"submissions": []})

    assert response.status_code == 413
    assert response.json()["detail"]["code"] == "BATCH_TOO_LARGE"


def test_synchro_erreur_inattendue(as_user):
    """Une panne BDD → 500 générique, sans détail interne."""
    app.dependency_overrides[get_db] = lambda: MagicMock()
    as_user(make_monitor())
    with patch("pollwatch.routers.monitoring.sync_service.bulk_sync",
               side_effect=RuntimeError("connection reset")):
        with TestClient(app, raise_server_exceptions=False) as c:
            response = c.post("/api/v1/monitoring/bulk-sync", json={"submissions": []})
    app.dependency_overrides.clear()

    assert response.status_code == 500
    assert "connection reset" not in response.text
    assert response.json()["detail"]["code"] == "PROCESSING_ERROR"


# ============================================================
# Lectures
# ============================================================

def test_statut(client, as_user):
    as_user(make_monitor())
    with patch("pollwatch.routers.monitoring.monitoring_service.get_monitoring_status",
               return_value=MonitoringStatus()):
        response = client.get("/api/v1/monitoring/status")

    assert response.status_code == 200
    body = response.json()
    assert body["needsPuSetup"] is False
    assert body["formStatuses"]["officerArrival"] == {"completed": False, "count": 0, "lastUpdated": None}


def test_soumissions_recentes(client, as_user):
    as_user(make_monitor())
    recent = [RecentSubmission(id="SUB-1", form_type="polling_unit_info",
                               title="Alausa Primary School", description="Polling Unit Setup")]
    with patch("pollwatch.routers.monitoring.monitoring_service.get_recent_submissions",
               return_value=recent) as mock:
        response = client.get("/api/v1/monitoring/recent-submissions?limit=5")

    assert response.status_code == 200
    assert response.json()[0]["formType"] == "polling_unit_info"
    assert mock.call_args.args[2] == 5


def test_soumissions_recentes_limite_invalide(client, as_user):
    as_user(make_monitor())
    response = client.get("/api/v1/monitoring/recent-submissions?limit=0")
    assert response.status_code == 422


def test_liste_des_soumissions(client, as_user):
    user = as_user(make_monitor())
    page = SubmissionList(
        items=[SubmissionListItem(submission_id="SUB-1", status="completed", completion_percentage=100,
                                  submission_data={"puCode": "PU-014"})],
        total=3, page=2, limit=1, pages=3,
    )
    with patch("pollwatch.routers.monitoring.monitoring_service.list_user_submissions",
               return_value=page) as mock:
        response = client.get("/api/v1/monitoring/submissions?page=2&limit=1&status=completed")

    assert response.status_code == 200
    body = response.json()
    assert body["total"] == 3
    assert body["pages"] == 3
    assert body["items"][0]["submissionData"] == {"puCode": "PU-014"}
    assert body["items"][0]["completionPercentage"] == 100
    assert mock.call_args.args[1] is user
    assert mock.call_args.kwargs == {"page": 2, "limit": 1, "status": "completed"}


def test_liste_des_soumissions_statut_invalide(client, as_user):
    as_user(make_monitor())
    with patch("pollwatch.routers.monitoring.monitoring_service.list_user_submissions") as mock:
        response = client.get("/api/v1/monitoring/submissions?status=archived")

    assert response.status_code == 422
    mock.assert_not_called()


def test_detail_soumission(client, as_user):
    as_user(make_monitor())
    details = SubmissionDetails(status=SubmissionProgress(submission_id="SUB-1", status="in_progress",
                                                          completion_percentage=25))
    with patch("pollwatch.routers.monitoring.monitoring_service.get_submission_details",
               return_value=details):
        response = client.get("/api/v1/monitoring/submissions/SUB-1")

    assert response.status_code == 200
    assert response.json()["status"]["completionPercentage"] == 25


def test_detail_soumission_introuvable(client, as_user):
    as_user(make_monitor())
    with patch("pollwatch.routers.monitoring.monitoring_service.get_submission_details",
               side_effect=NotFoundOrForbidden()):
        response = client.get(f"/api/v1/monitoring/submissions/SUB-{uuid.uuid4()}")

    assert response.status_code == 404
    assert response.json()["detail"]["code"] == "NOT_FOUND_OR_FORBIDDEN"
