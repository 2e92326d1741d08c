from database import (
    AUTHORITY, DISCUSSION, MONITORING, REPORT, REPORT_AUTHORITY, REPORT_FLAG, REPORT_RESOLUTION, REPORT_VOTE,
    STATUS_LOG, parse_object_id,
)

CONTACTED_AT = "2026-01-05T10:00:00Z"


def _new_authority(**overrides):
    authority = {
        "name": "Ward 12 Office",
        "category": "GOVERNMENT",
        "role": "CLEANUP",
        "city": "Pune",
        "contactMode": "EMAIL",
        "email": "ward12@example.org",
    }
    authority.update(overrides)
    return authority


def test_create_report_starts_pending(client, user):
    response = client.post("/api/reports", json={
        "title": "Pothole",
        "description": "Deep pothole on MG road",
        "location": {"lat": 18.52, "lng": 73.85, "address": "MG road"},
    }, headers=user["headers"])

    assert response.status_code == 200
    report = response.json()
    assert report["status"] == "PENDING"
    assert report["voteCount"] == 0
    assert report["reporterId"] == user["id"]
    assert report["reporter"] == user["email"]


def test_list_filters_by_status_and_search(client, make_report):
    make_report("Pothole")
    make_report("Garbage dump", status="ELIGIBLE_FOR_DRIVE")

    assert [r["title"] for r in client.get("/api/reports?status=ELIGIBLE_FOR_DRIVE").json()] == ["Garbage dump"]
    assert len(client.get("/api/reports?status=NOT_A_STATUS").json()) == 2
    assert [r["title"] for r in client.get("/api/reports?search=pothole").json()] == ["Pothole"]


def test_update_and_delete_are_owner_only(client, make_report, make_user):
    report = make_report()
    stranger = make_user()

    response = client.patch(f"/api/reports/{report['id']}", json={"title": "Bigger pothole"},
                            headers=stranger["headers"])
    assert response.status_code == 403

    response = client.delete(f"/api/reports/{report['id']}", headers=stranger["headers"])
    assert response.status_code == 403


def test_get_report_with_bad_id(client):
    response = client.get("/api/reports/not-an-id")
    assert response.status_code == 400
    assert response.json() == {"error": "Invalid report id"}


def test_contact_authority_creates_authority_and_link(client, store, make_report, user):
    report = make_report()
    response = client.post(f"/api/reports/{report['id']}/contact-authority", json={
        "authority": _new_authority(),
        "reportAuthority": {"contactedAt": CONTACTED_AT, "submittedMessage": "Please fix"},
    }, headers=user["headers"])

    assert response.status_code == 201
    body = response.json()
    assert body["success"] is True
    authority = store[AUTHORITY].find_one({"_id": parse_object_id(body["authorityId"])})
    assert authority["email"] == "ward12@example.org"
    assert authority["phone"] is None
    link = store[REPORT_AUTHORITY].find_one({"_id": parse_object_id(body["reportAuthorityId"])})
    assert link["status"] == "CONTACTED"
    assert store[REPORT].find_one({"_id": parse_object_id(report["id"])})["status"] == "AUTHORITY_CONTACTED"

    again = client.post(f"/api/reports/{report['id']}/contact-authority", json={
        "authority": {"id": body["authorityId"], "name": "Ward 12 Office", "contactMode": "EMAIL"},
        "reportAuthority": {"contactedAt": CONTACTED_AT},
    }, headers=user["headers"])
    assert again.status_code == 409
    assert again.json() == {"error": "Authority already contacted for this report"}


def test_contact_authority_needs_full_new_authority(client, store, make_report, user):
    report = make_report()
    authority = _new_authority()
    del authority["category"]

    response = client.post(f"/api/reports/{report['id']}/contact-authority", json={
        "authority": authority,
        "reportAuthority": {"contactedAt": CONTACTED_AT},
    }, headers=user["headers"])

    assert response.status_code == 400
    assert response.json() == {"error": "New authority requires category, role, and city"}
    assert store[AUTHORITY].count_documents({}) == 0
    assert store[REPORT].find_one({"_id": parse_object_id(report["id"])})["status"] == "PENDING"


def test_contact_authority_requires_contacted_date(client, make_report, user):
    report = make_report()
    response = client.post(f"/api/reports/{report['id']}/contact-authority", json={
        "authority": _new_authority(),
        "reportAuthority": {},
    }, headers=user["headers"])
    assert response.status_code == 400
    assert response.json() == {"error": "Authority name and contacted date are required"}


def test_manual_status_is_municipal_only(client, make_report, user, municipal):
    report = make_report()

    response = client.post(f"/api/reports/{report['id']}/status", json={"status": "ELIGIBLE_FOR_DRIVE"},
                           headers=user["headers"])
    assert response.status_code == 403
    assert response.json() == {"error": "Only municipal can update status"}

    response = client.post(f"/api/reports/{report['id']}/status", json={"status": "ELIGIBLE_FOR_DRIVE"},
                           headers=municipal["headers"])
    assert response.status_code == 200
    assert response.json()["status"] == "ELIGIBLE_FOR_DRIVE"

    response = client.post(f"/api/reports/{report['id']}/status", json={"status": "PENDING"},
                           headers=municipal["headers"])
    assert response.status_code == 409
    assert response.json() == {"error": "Cannot move report from ELIGIBLE_FOR_DRIVE to PENDING"}

    response = client.post(f"/api/reports/{report['id']}/status", json={"status": "DONE"},
                           headers=municipal["headers"])
    assert response.status_code == 400


def test_resolve_completes_active_monitorings(client, store, make_report, user):
    report = make_report(status="IN_PROGRESS")
    response = client.post("/api/monitoring", json={"reportId": report["id"], "checkDate": "2026-02-01T00:00:00Z"},
                           headers=user["headers"])
    assert response.status_code == 201
    assert store[REPORT].find_one({"_id": parse_object_id(report["id"])})["status"] == "UNDER_MONITORING"

    response = client.post(f"/api/reports/{report['id']}/resolve", json={
        "resolutionSummary": "Road resurfaced",
        "resolvedByAuthority": True,
    }, headers=user["headers"])

    assert response.status_code == 200
    assert response.json()["monitoringsCompleted"] == 1
    assert store[REPORT].find_one({"_id": parse_object_id(report["id"])})["status"] == "RESOLVED"
    assert store[REPORT_RESOLUTION].count_documents({"reportId": report["id"]}) == 1
    assert store[MONITORING].find_one({"reportId": report["id"]})["status"] == "COMPLETED"

    again = client.post(f"/api/reports/{report['id']}/resolve", json={"resolutionSummary": "Again"},
                        headers=user["headers"])
    assert again.status_code == 409
    assert again.json() == {"error": "Report is already resolved"}


def test_resolve_requires_summary(client, make_report, user):
    report = make_report()
    response = client.post(f"/api/reports/{report['id']}/resolve", json={}, headers=user["headers"])
    assert response.status_code == 400
    assert response.json() == {"error": "Resolution summary is required"}


def test_history_lists_status_changes_oldest_first(client, make_report, municipal):
    report = make_report()
    for status in ("AUTHORITY_CONTACTED", "ELIGIBLE_FOR_DRIVE"):
        client.post(f"/api/reports/{report['id']}/status", json={"status": status}, headers=municipal["headers"])

    history = client.get(f"/api/reports/{report['id']}/history").json()
    assert [entry["status"] for entry in history] == ["AUTHORITY_CONTACTED", "ELIGIBLE_FOR_DRIVE"]


def test_comment_and_flag(client, store, make_report, user):
    report = make_report()

    response = client.post(f"/api/reports/{report['id']}/comment", json={"content": "  Still there  "},
                           headers=user["headers"])
    assert response.status_code == 201
    assert response.json()["content"] == "Still there"
    assert response.json()["phase"] == "GENERAL"

    response = client.post(f"/api/reports/{report['id']}/comment", json={"content": "   "}, headers=user["headers"])
    assert response.status_code == 400
    assert response.json() == {"error": "Comment cannot be empty"}

    response = client.post(f"/api/reports/{report['id']}/flag", json={}, headers=user["headers"])
    assert response.status_code == 400
    assert response.json() == {"error": "Reason required"}

    response = client.post(f"/api/reports/{report['id']}/flag", json={"reason": "Duplicate"}, headers=user["headers"])
    assert response.status_code == 201
    assert store[REPORT_FLAG].count_documents({"reportId": report["id"]}) == 1


def test_delete_report_removes_children(client, store, make_report, make_user, user):
    report = make_report()
    client.post("/api/votes/reports", json={"reportId": report["id"]}, headers=make_user()["headers"])
    client.post(f"/api/reports/{report['id']}/comment", json={"content": "Bad"}, headers=user["headers"])
    client.post(f"/api/reports/{report['id']}/flag", json={"reason": "Spam"}, headers=user["headers"])

    response = client.delete(f"/api/reports/{report['id']}", headers=user["headers"])

    assert response.status_code == 200
    for collection in (REPORT_VOTE, DISCUSSION, REPORT_FLAG, STATUS_LOG):
        assert store[collection].count_documents({"reportId": report["id"]}) == 0
    assert client.get(f"/api/reports/{report['id']}").status_code == 404


def test_featured_reports_ranked_by_votes(client, make_report, make_user):
    quiet = make_report("Broken bench")
    popular = make_report("Overflowing drain")
    make_report("Faded crossing")
    for _ in range(2):
        client.post("/api/votes/reports", json={"reportId": popular["id"]}, headers=make_user()["headers"])
    client.post("/api/votes/reports", json={"reportId": quiet["id"]}, headers=make_user()["headers"])

    featured = client.get("/api/reports/featured").json()

    assert [r["id"] for r in featured] == [popular["id"], quiet["id"]]
    assert featured[0]["voteCount"] == 2
    assert "escalationType" in featured[0]


def test_cron_endpoint_reports_counts(client):
    response = client.get("/api/cron/auto-update-reports")
    assert response.status_code == 200
    assert response.json() == {"success": True, "reportsEscalated": 0, "drivesFinalized": 0}
