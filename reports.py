import logging
import re
from typing import Optional

from fastapi import APIRouter, Depends

import lifecycle
from database import (
    DRIVE_REPORT, REPORT, REPORT_FLAG, STATUS_LOG, TASK, Store, get_store, serialize, utcnow,
)
from errors import Forbidden, InvalidInput
from schemas import (
    CommentRequest, ContactAuthorityRequest, DiscussionPhase, FlagRequest, Report as ReportSchema,
    ReportCreate, ReportStatus, ReportStatusUpdate, ReportUpdate, ResolveRequest, is_member,
)
from security import require_role, require_user
from settings import Settings, get_settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["reports"])


def _require_owner(report: dict, user: dict) -> None:
    if user.get("role") != "municipal" and report.get("reporterId") != user["id"]:
        raise Forbidden("Only the reporter or municipal staff can change this report")


@router.get("/reports")
def list_reports(status: Optional[str] = None, search: Optional[str] = None, limit: Optional[int] = None,
                 store: Store = Depends(get_store)):
    query = {}
    if status and is_member(ReportStatus, status):
        query["status"] = status
    if search:
        pattern = {"$regex": re.escape(search), "$options": "i"}
        query["$or"] = [{"title": pattern}, {"description": pattern}]
    return serialize(store.get_documents(REPORT, query, limit, sort=[("createdAt", -1)]))


@router.post("/reports")
def create_report(report: ReportCreate, user=Depends(require_user), store: Store = Depends(get_store)):
    data = ReportSchema(**report.model_dump(), reporterId=user["id"]).model_dump()
    data["reporter"] = data["reporter"] or user.get("email")
    doc = store.create_document(REPORT, data)
    logger.info("Report %s submitted by %s", doc["_id"], user["id"])
    return serialize(doc)


@router.get("/reports/featured")
def featured_reports(store: Store = Depends(get_store), settings: Settings = Depends(get_settings)):
    now = utcnow()
    featured = []
    for report in store.get_documents(REPORT, {}, limit=2, sort=[("voteCount", -1), ("createdAt", -1)]):
        has_drive = store[DRIVE_REPORT].count_documents({"reportId": str(report["_id"])}) > 0
        if has_drive and report["status"] == ReportStatus.ELIGIBLE_FOR_DRIVE.value:
            report["status"] = ReportStatus.IN_PROGRESS.value
        report["escalationType"] = lifecycle.escalation_for(report, settings, now)
        report.setdefault("voteCount", 0)
        featured.append(serialize(report))
    return featured


@router.get("/reports/{report_id}")
def get_report(report_id: str, store: Store = Depends(get_store)):
    return serialize(store.require(REPORT, report_id, "Report"))


@router.patch("/reports/{report_id}")
def update_report(report_id: str, body: ReportUpdate, user=Depends(require_user),
                  store: Store = Depends(get_store)):
    report = store.require(REPORT, report_id, "Report")
    _require_owner(report, user)
    changes = body.model_dump(exclude_none=True)
    if "title" in changes and not changes["title"].strip():
        raise InvalidInput("Title cannot be empty")
    changes["updatedAt"] = utcnow()
    store[REPORT].update_one({"_id": report["_id"]}, {"$set": changes})
    return serialize(store.find_by_id(REPORT, report["_id"]))


@router.delete("/reports/{report_id}")
def delete_report(report_id: str, user=Depends(require_user), store: Store = Depends(get_store)):
    report = store.require(REPORT, report_id, "Report")
    _require_owner(report, user)
    removed = lifecycle.delete_report(store, report_id)
    return {"message": "Report deleted successfully", "removed": removed}


@router.post("/reports/{report_id}/status")
def update_report_status(report_id: str, body: ReportStatusUpdate, user=Depends(require_user),
                         store: Store = Depends(get_store)):
    require_role(user, "municipal", message="Only municipal can update status")
    report = lifecycle.set_report_status(store, report_id, body.status, body.note)
    return serialize(report)


@router.post("/reports/{report_id}/resolve")
def resolve_report(report_id: str, body: ResolveRequest, user=Depends(require_user),
                   store: Store = Depends(get_store)):
    result = lifecycle.resolve_report(store, report_id, body, user)
    return {
        "success": True,
        "resolutionId": str(result["resolution"]["_id"]),
        "monitoringsCompleted": result["monitoringsCompleted"],
    }


@router.post("/reports/{report_id}/contact-authority", status_code=201)
def contact_authority(report_id: str, body: ContactAuthorityRequest, user=Depends(require_user),
                      store: Store = Depends(get_store)):
    result = lifecycle.contact_authority(store, report_id, body, user)
    return {
        "success": True,
        "authorityId": str(result["authority"]["_id"]),
        "reportAuthorityId": str(result["reportAuthority"]["_id"]),
    }


@router.get("/reports/{report_id}/history")
def report_history(report_id: str, store: Store = Depends(get_store)):
    report = store.require(REPORT, report_id, "Report")
    logs = store.get_documents(STATUS_LOG, {"reportId": str(report["_id"])}, sort=[("createdAt", 1), ("_id", 1)])
    return serialize(logs)


@router.get("/reports/{report_id}/tasks")
def report_tasks(report_id: str, store: Store = Depends(get_store)):
    report = store.require(REPORT, report_id, "Report")
    tasks = store.get_documents(TASK, {"reportId": str(report["_id"])}, sort=[("createdAt", -1)])
    return {"tasks": serialize(tasks)}


@router.post("/reports/{report_id}/comment", status_code=201)
def comment_on_report(report_id: str, body: CommentRequest, user=Depends(require_user),
                      store: Store = Depends(get_store)):
    discussion = lifecycle.post_discussion(store, user, DiscussionPhase.GENERAL.value, body.content,
                                           report_id=report_id)
    return serialize(discussion)


@router.post("/reports/{report_id}/flag", status_code=201)
def flag_report(report_id: str, body: FlagRequest, user=Depends(require_user),
                store: Store = Depends(get_store)):
    if not body.reason:
        raise InvalidInput("Reason required")
    report = store.require(REPORT, report_id, "Report")
    flag = store.create_document(REPORT_FLAG, {
        "reportId": str(report["_id"]),
        "userId": user["id"],
        "reason": body.reason,
        "note": body.note,
    })
    logger.info("Report %s flagged by %s: %s", report["_id"], user["id"], body.reason)
    return serialize(flag)


@router.get("/cron/auto-update-reports")
def auto_update_reports(store: Store = Depends(get_store), settings: Settings = Depends(get_settings)):
    counts = lifecycle.run_sweep(store, settings)
    return {"success": True, **counts}
