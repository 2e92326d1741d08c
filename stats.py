from datetime import timedelta

from fastapi import APIRouter, Depends

from database import (
    DRIVE, DRIVE_COMPLETION, DRIVE_REPORT, DRIVE_VOLUNTEER, MONITORING, REPORT, REPORT_AUTHORITY, TASK, USER,
    VOLUNTEER, Store, get_store, parse_object_id, serialize, utcnow,
)
from errors import NotFound
from schemas import DriveStatus, MonitoringStatus, ReportStatus
from security import require_user

router = APIRouter(prefix="/api", tags=["stats"])

PRIORITY_REPORT_LIMIT = 6


def _with_report_relations(store: Store, reports: list) -> list:
    for report in reports:
        key = str(report["_id"])
        report["tasks"] = store.get_documents(TASK, {"reportId": key})
        report["reportAuthorities"] = store.get_documents(REPORT_AUTHORITY, {"reportId": key})
        report["driveIds"] = [link["driveId"] for link in store.get_documents(DRIVE_REPORT, {"reportId": key})]
    return reports


@router.get("/platform-stats")
def platform_stats(store: Store = Depends(get_store)):
    return {
        "activeReports": store[REPORT].count_documents({"status": {"$ne": ReportStatus.RESOLVED.value}}),
        "activeDrives": store[DRIVE].count_documents({"status": DriveStatus.ONGOING.value}),
        "completedReports": store[REPORT].count_documents({"status": ReportStatus.RESOLVED.value}),
        "activeVolunteers": store[VOLUNTEER].count_documents({}),
    }


@router.get("/dashboard")
def dashboard(user=Depends(require_user), store: Store = Depends(get_store)):
    """The caller's reports and drives, the oldest open reports, and community metrics."""
    profile = store[USER].find_one({"_id": parse_object_id(user["id"], "user id")}, {"name": 1})
    if profile is None:
        raise NotFound("User not found")

    now = utcnow()
    reports = _with_report_relations(store, store.get_documents(REPORT, {"reporterId": user["id"]},
                                                                sort=[("createdAt", -1)]))
    priority = _with_report_relations(store, store.get_documents(
        REPORT, {"status": ReportStatus.PENDING.value}, limit=PRIORITY_REPORT_LIMIT, sort=[("createdAt", 1)]))

    drives = []
    volunteer = store[VOLUNTEER].find_one({"userId": user["id"]}, {"_id": 1})
    if volunteer:
        memberships = store.get_documents(DRIVE_VOLUNTEER, {"volunteerId": str(volunteer["_id"])})
        drive_ids = [parse_object_id(m["driveId"]) for m in memberships]
        drives = store.get_documents(DRIVE, {"_id": {"$in": drive_ids}}, sort=[("startDate", 1)]) if drive_ids else []
        for drive in drives:
            key = str(drive["_id"])
            drive["tasks"] = store.get_documents(TASK, {"driveId": key})
            drive["driveVolunteers"] = store.get_documents(DRIVE_VOLUNTEER, {"driveId": key})

    total = store[REPORT].count_documents({})
    resolved = store[REPORT].count_documents({"status": ReportStatus.RESOLVED.value})
    recent_volunteers = store[DRIVE_VOLUNTEER].distinct(
        "volunteerId", {"createdAt": {"$gte": now - timedelta(days=30)}})

    return {
        "user": {"id": user["id"], "name": profile.get("name")},
        "reports": serialize(reports),
        "drives": serialize(drives),
        "priorityReports": serialize(priority),
        "community": {
            "reportsThisWeek": store[REPORT].count_documents({"createdAt": {"$gte": now - timedelta(days=7)}}),
            "resolutionRate": round(resolved * 100 / total) if total else 0,
            "activeVolunteers": len(recent_volunteers),
        },
    }


@router.get("/dashboard/stats")
def dashboard_stats(user=Depends(require_user), store: Store = Depends(get_store)):
    volunteer = store[VOLUNTEER].find_one({"userId": user["id"]}, {"_id": 1})
    drives_joined = 0
    active_monitorings = 0
    if volunteer:
        key = str(volunteer["_id"])
        drives_joined = store[DRIVE_VOLUNTEER].count_documents({"volunteerId": key})
        active_monitorings = store[MONITORING].count_documents(
            {"volunteerId": key, "status": MonitoringStatus.ACTIVE.value})
    return {
        "myReports": store[REPORT].count_documents({"reporterId": user["id"]}),
        "drivesJoined": drives_joined,
        "activeMonitorings": active_monitorings,
        "completedDrives": store[DRIVE_COMPLETION].count_documents({"completedById": user["id"]}),
    }
