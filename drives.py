import logging
from typing import Optional

from fastapi import APIRouter, Depends

import lifecycle
from database import (
    DRIVE, DRIVE_REPORT, DRIVE_VOLUNTEER, ENHANCEMENT, MONITORING, REPORT, TASK, Store, get_store,
    parse_object_id, serialize, to_naive_utc, utcnow,
)
from errors import Forbidden, InvalidInput
from schemas import CommentRequest, DiscussionPhase, DriveCompletionRequest, DriveCreate, DriveStatus, DriveUpdate, is_member
from security import require_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["drives"])


def _with_relations(store: Store, drive: dict) -> dict:
    key = str(drive["_id"])
    links = store.get_documents(DRIVE_REPORT, {"driveId": key})
    report_ids = [parse_object_id(link["reportId"]) for link in links]
    drive["reports"] = store.get_documents(REPORT, {"_id": {"$in": report_ids}}) if report_ids else []
    drive["tasks"] = store.get_documents(TASK, {"driveId": key})
    drive["enhancements"] = store.get_documents(ENHANCEMENT, {"driveId": key})
    drive["monitorings"] = store.get_documents(MONITORING, {"driveId": key})
    drive["volunteerCount"] = store[DRIVE_VOLUNTEER].count_documents({"driveId": key})
    return serialize(drive)


def _require_organizer(drive: dict, user: dict) -> None:
    if user.get("role") != "municipal" and drive.get("organizerId") != user["id"]:
        raise Forbidden("Only the organizer or municipal staff can change this drive")


@router.get("/drives")
def list_drives(status: Optional[str] = None, store: Store = Depends(get_store)):
    query = {"status": status} if status and is_member(DriveStatus, status) else {}
    drives = store.get_documents(DRIVE, query, sort=[("createdAt", -1)])
    return [_with_relations(store, drive) for drive in drives]


@router.post("/drives", status_code=201)
def create_drive(body: DriveCreate, user=Depends(require_user), store: Store = Depends(get_store)):
    drive = lifecycle.create_drive(store, body, user)
    return serialize(drive)


@router.get("/drives/{drive_id}")
def get_drive(drive_id: str, store: Store = Depends(get_store)):
    return _with_relations(store, store.require(DRIVE, drive_id, "Drive"))


@router.patch("/drives/{drive_id}")
def update_drive(drive_id: str, body: DriveUpdate, user=Depends(require_user), store: Store = Depends(get_store)):
    drive = store.require(DRIVE, drive_id, "Drive")
    _require_organizer(drive, user)
    changes = body.model_dump(exclude_none=True)
    if "title" in changes and not changes["title"].strip():
        raise InvalidInput("Title cannot be empty")
    if "participant" in changes and changes["participant"] < 0:
        raise InvalidInput("participant cannot be negative")
    for field in ("startDate", "endDate"):
        if field in changes:
            changes[field] = to_naive_utc(changes[field])
    changes["updatedAt"] = utcnow()
    store[DRIVE].update_one({"_id": drive["_id"]}, {"$set": changes})
    logger.info("Drive %s updated by %s", drive["_id"], user["id"])
    return {"message": "Drive updated successfully", "drive": serialize(store.find_by_id(DRIVE, drive["_id"]))}


@router.delete("/drives/{drive_id}")
def delete_drive(drive_id: str, user=Depends(require_user), store: Store = Depends(get_store)):
    drive = store.require(DRIVE, drive_id, "Drive")
    _require_organizer(drive, user)
    removed = lifecycle.delete_drive(store, drive_id)
    return {"message": "Drive deleted successfully", "removed": removed}


@router.post("/drives/{drive_id}/comment", status_code=201)
def comment_on_drive(drive_id: str, body: CommentRequest, user=Depends(require_user),
                     store: Store = Depends(get_store)):
    discussion = lifecycle.post_discussion(store, user, DiscussionPhase.GENERAL.value, body.content,
                                           drive_id=drive_id)
    return serialize(discussion)


@router.post("/drives/{drive_id}/completion")
def complete_drive(drive_id: str, body: DriveCompletionRequest, user=Depends(require_user),
                   store: Store = Depends(get_store)):
    drive = store.require(DRIVE, drive_id, "Drive")
    _require_organizer(drive, user)
    result = lifecycle.complete_drive(store, drive_id, body, user)
    return {
        "success": True,
        "completion": serialize(result["completion"]),
        "reportsUnderMonitoring": result["reportsUnderMonitoring"],
    }
