from database import DRIVE, REPORT, STATUS_LOG, TASK, parse_object_id
from lifecycle import DRIVE_CHILDREN


def _create_drive(client, headers, **body):
    payload = {"title": "Beach cleanup", "participant": 20}
    payload.update(body)
    return client.post("/api/drives", json=payload, headers=headers)


def test_create_drive_for_eligible_report(client, store, make_report, user):
    report = make_report(status="ELIGIBLE_FOR_DRIVE")

    response = _create_drive(client, user["headers"], reportId=report["id"], taskBreakdown=[
        {"engagement": "GROUP", "title": "Collect plastic"},
        {"engagement": "SOLO", "title": "Photograph the site"},
    ])

    assert response.status_code == 201
    drive = response.json()
    assert drive["status"] == "PLANNED"
    assert drive["organizerId"] == user["id"]
    assert drive["reportIds"] == [report["id"]]
    assert [task["status"] for task in drive["tasks"]] == ["OPEN", "OPEN"]
    assert store[TASK].count_documents({"reportId": report["id"], "driveId": drive["id"]}) == 2

    doc = store[REPORT].find_one({"_id": parse_object_id(report["id"])})
    assert doc["status"] == "IN_PROGRESS"
    assert store[STATUS_LOG].count_documents({"reportId": report["id"], "status": "IN_PROGRESS"}) == 1


def test_create_drive_rejects_ineligible_report(client, store, make_report, user):
    report = make_report()

    response = _create_drive(client, user["headers"], linkedReports=[report["id"]])

    assert response.status_code == 400
    assert response.json() == {"error": "Drive can only be created for reports with status ELIGIBLE_FOR_DRIVE"}
    assert store[DRIVE].count_documents({}) == 0


def test_create_drive_validation(client, make_report, user):
    response = _create_drive(client, user["headers"], title="  ")
    assert response.status_code == 400
    assert response.json() == {"error": "Missing required field: title"}

    first = make_report("One", status="ELIGIBLE_FOR_DRIVE")
    second = make_report("Two", status="ELIGIBLE_FOR_DRIVE")
    response = _create_drive(client, user["headers"], linkedReports=[first["id"], second["id"]])
    assert response.status_code == 400
    assert response.json() == {"error": "At most one report can be linked to a drive"}


def test_get_drive_includes_relations(client, make_report, user):
    report = make_report(status="ELIGIBLE_FOR_DRIVE")
    drive = _create_drive(client, user["headers"], reportId=report["id"]).json()

    fetched = client.get(f"/api/drives/{drive['id']}").json()

    assert [r["id"] for r in fetched["reports"]] == [report["id"]]
    assert fetched["volunteerCount"] == 0
    assert [d["id"] for d in client.get("/api/drives").json()] == [drive["id"]]


def test_delete_drive_cascades_in_order(client, store, make_report, make_user, user):
    report = make_report(status="ELIGIBLE_FOR_DRIVE")
    drive = _create_drive(client, user["headers"], reportId=report["id"],
                          taskBreakdown=[{"engagement": "DUAL", "title": "Sweep"}]).json()
    drive_id = drive["id"]
    headers = user["headers"]

    assert client.post("/api/votes/drives", json={"driveId": drive_id}, headers=make_user()["headers"]).status_code == 201
    assert client.post("/api/enhancements", json={"driveId": drive_id, "type": "TREE_PLANTING"},
                       headers=headers).status_code == 201
    assert client.post("/api/monitoring", json={"driveId": drive_id, "checkDate": "2026-03-01T00:00:00Z"},
                       headers=headers).status_code == 201
    assert client.post("/api/volunteer", json={"driveId": drive_id}, headers=make_user()["headers"]).status_code == 200
    assert client.post(f"/api/drives/{drive_id}/comment", json={"content": "Count me in"},
                       headers=headers).status_code == 201

    response = client.delete(f"/api/drives/{drive_id}", headers=headers)

    assert response.status_code == 200
    removed = response.json()["removed"]
    assert list(removed) == list(DRIVE_CHILDREN)
    assert all(count == 1 for count in removed.values())
    for collection in DRIVE_CHILDREN:
        assert store[collection].count_documents({"driveId": drive_id}) == 0
    assert client.get(f"/api/drives/{drive_id}").status_code == 404


def test_only_organizer_or_municipal_can_delete(client, user, make_user, municipal):
    drive = _create_drive(client, user["headers"]).json()

    assert client.delete(f"/api/drives/{drive['id']}", headers=make_user()["headers"]).status_code == 403
    assert client.delete(f"/api/drives/{drive['id']}", headers=municipal["headers"]).status_code == 200


def test_update_drive(client, user):
    drive = _create_drive(client, user["headers"]).json()

    response = client.patch(f"/api/drives/{drive['id']}", json={"participant": 35, "description": "Bring gloves"},
                            headers=user["headers"])

    assert response.status_code == 200
    assert response.json()["drive"]["participant"] == 35
    assert response.json()["drive"]["description"] == "Bring gloves"


def test_completion_moves_reports_to_monitoring(client, store, make_report, make_user, user):
    report = make_report(status="ELIGIBLE_FOR_DRIVE")
    drive = _create_drive(client, user["headers"], reportId=report["id"]).json()
    url = f"/api/drives/{drive['id']}/completion"

    assert client.post(url, json={"summary": "Done"}, headers=make_user()["headers"]).status_code == 403
    missing = client.post(url, json={}, headers=user["headers"])
    assert missing.status_code == 400
    assert missing.json() == {"error": "Completion summary is required"}

    response = client.post(url, json={"summary": "Collected 40 bags", "proofImages": ["https://img.example/1.jpg"]},
                           headers=user["headers"])

    assert response.status_code == 200
    assert response.json()["reportsUnderMonitoring"] == [report["id"]]
    assert store[DRIVE].find_one({"_id": parse_object_id(drive["id"])})["status"] == "COMPLETED"
    assert store[REPORT].find_one({"_id": parse_object_id(report["id"])})["status"] == "UNDER_MONITORING"

    again = client.post(url, json={"summary": "Again"}, headers=user["headers"])
    assert again.status_code == 409
    assert again.json() == {"error": "Drive is already completed"}
