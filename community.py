"""
Community routes: tasks, volunteers, monitoring, discussion and drive enhancements.

These are plain CRUD handlers with field validation. The only status side effects live in
lifecycle (start_monitoring, post_discussion); everything else reads and writes one collection.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends
from pymongo import ReturnDocument

import lifecycle
from database import (
    DISCUSSION, DRIVE, DRIVE_REPORT, DRIVE_VOLUNTEER, ENHANCEMENT, MONITORING, REPORT, TASK, USER, VOLUNTEER,
    Store, get_store, parse_object_id, serialize, to_naive_utc, utcnow,
)
from errors import InvalidInput
from schemas import (
    DiscussionCreate, DiscussionPhase, EngagementLevel, EnhancementCreate, EnhancementType, MonitoringCreate,
    MonitoringStatus, MonitoringUpdate, Task as TaskSchema, TaskCreate, TaskStatus, TaskUpdate, VolunteerCreate,
    VolunteerJoin, VolunteerUpdate, is_member,
)
from security import require_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["community"])


# ---------- Tasks ----------

def _task_status(status: Optional[str], volunteer_id: Optional[str]) -> str:
    if status is not None and not is_member(TaskStatus, status):
        raise InvalidInput("Invalid task status")
    status = status or TaskStatus.OPEN.value
    if volunteer_id and status == TaskStatus.OPEN.value:
        return TaskStatus.ASSIGNED.value
    return status


@router.get("/tasks")
def list_tasks(reportId: Optional[str] = None, driveId: Optional[str] = None, status: Optional[str] = None,
               engagement: Optional[str] = None, store: Store = Depends(get_store)):
    query = {}
    if reportId:
        query["reportId"] = reportId
    if driveId:
        query["driveId"] = driveId
    if status and is_member(TaskStatus, status):
        query["status"] = status
    if engagement and is_member(EngagementLevel, engagement):
        query["engagement"] = engagement
    return serialize(store.get_documents(TASK, query, sort=[("createdAt", -1)]))


@router.post("/tasks", status_code=201)
def create_task(body: TaskCreate, user=Depends(require_user), store: Store = Depends(get_store)):
    if not body.reportId and not body.driveId:
        raise InvalidInput("reportId or driveId is required")
    report = store.require(REPORT, body.reportId, "Report") if body.reportId else None
    drive = store.require(DRIVE, body.driveId, "Drive") if body.driveId else None
    task = TaskSchema(
        reportId=str(report["_id"]) if report else None,
        driveId=str(drive["_id"]) if drive else None,
        volunteerId=body.volunteerId,
        title=body.title or "Untitled Task",
        description=body.description or "No description",
        engagement=body.engagement,
        timeSlot=to_naive_utc(body.timeSlot),
        status=_task_status(body.status, body.volunteerId),
    ).model_dump()
    return serialize(store.create_document(TASK, task))


@router.get("/tasks/{task_id}")
def get_task(task_id: str, store: Store = Depends(get_store)):
    return serialize(store.require(TASK, task_id, "Task"))


@router.patch("/tasks/{task_id}")
def update_task(task_id: str, body: TaskUpdate, user=Depends(require_user), store: Store = Depends(get_store)):
    task = store.require(TASK, task_id, "Task")
    changes = body.model_dump(exclude_none=True, mode="json")
    if "timeSlot" in changes:
        changes["timeSlot"] = to_naive_utc(body.timeSlot)
    volunteer_id = changes.get("volunteerId", task.get("volunteerId"))
    changes["status"] = _task_status(changes.get("status", task.get("status")), volunteer_id)
    changes["updatedAt"] = utcnow()
    store[TASK].update_one({"_id": task["_id"]}, {"$set": changes})
    return serialize(store.find_by_id(TASK, task["_id"]))


@router.delete("/tasks/{task_id}")
def delete_task(task_id: str, user=Depends(require_user), store: Store = Depends(get_store)):
    task = store.require(TASK, task_id, "Task")
    store[TASK].delete_one({"_id": task["_id"]})
    return {"message": "Task deleted successfully"}


# ---------- Volunteers ----------

@router.get("/volunteers")
def list_volunteers(store: Store = Depends(get_store)):
    return serialize(store.get_documents(VOLUNTEER, {}, sort=[("createdAt", -1)]))


@router.post("/volunteers", status_code=201)
def register_volunteer(body: VolunteerCreate, store: Store = Depends(get_store)):
    name = (body.name or "").strip()
    if not name:
        raise InvalidInput("Name is required")
    volunteer = store.create_document(VOLUNTEER, {
        "userId": None,
        "name": name,
        "email": body.email,
        "phone": body.phone,
    })
    return {"message": "Volunteer registered", "volunteer": serialize(volunteer)}


@router.get("/volunteers/{volunteer_id}")
def get_volunteer(volunteer_id: str, store: Store = Depends(get_store)):
    volunteer = store.require(VOLUNTEER, volunteer_id, "Volunteer")
    key = str(volunteer["_id"])
    volunteer["tasks"] = store.get_documents(TASK, {"volunteerId": key})
    volunteer["drives"] = store.get_documents(DRIVE_VOLUNTEER, {"volunteerId": key})
    volunteer["monitorings"] = store.get_documents(MONITORING, {"volunteerId": key})
    return serialize(volunteer)


@router.patch("/volunteers/{volunteer_id}")
def update_volunteer(volunteer_id: str, body: VolunteerUpdate, store: Store = Depends(get_store)):
    volunteer = store.require(VOLUNTEER, volunteer_id, "Volunteer")
    changes = body.model_dump(exclude_none=True)
    changes["updatedAt"] = utcnow()
    store[VOLUNTEER].update_one({"_id": volunteer["_id"]}, {"$set": changes})
    return serialize(store.find_by_id(VOLUNTEER, volunteer["_id"]))


@router.post("/volunteer")
def join_as_volunteer(body: VolunteerJoin, user=Depends(require_user), store: Store = Depends(get_store)):
    """
    Sign the caller up as a volunteer, optionally for a drive.

    The volunteer row is fetched or created by userId, a plain `user` account is promoted
    to `volunteer`, and the drive membership is upserted so repeating the call is harmless.
    """
    now = utcnow()
    drive = store.require(DRIVE, body.driveId, "Drive") if body.driveId else None

    with store.unit_of_work() as session:
        volunteer = store[VOLUNTEER].find_one_and_update(
            {"userId": user["id"]},
            {"$setOnInsert": {"name": None, "email": user.get("email"),
                              "phone": None, "createdAt": now, "updatedAt": now}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
            session=session,
        )
        promoted = store[USER].update_one(
            {"_id": parse_object_id(user["id"], "user id"), "role": "user"},
            {"$set": {"role": "volunteer", "updatedAt": now}},
            session=session,
        )
        if drive is not None:
            store[DRIVE_VOLUNTEER].update_one(
                {"driveId": str(drive["_id"]), "volunteerId": str(volunteer["_id"])},
                {"$setOnInsert": {"createdAt": now, "updatedAt": now}},
                upsert=True,
                session=session,
            )
    if promoted.modified_count:
        logger.info("User %s promoted to volunteer", user["id"])

    report_id = body.reportId
    if drive is not None:
        link = store[DRIVE_REPORT].find_one({"driveId": str(drive["_id"])})
        report_id = link["reportId"] if link else None

    if not report_id:
        raise InvalidInput("No report linked")
    return {"message": "Volunteer role confirmed", "reportId": report_id, "volunteerId": str(volunteer["_id"])}


# ---------- Monitoring ----------

@router.get("/monitoring")
def list_monitorings(reportId: Optional[str] = None, driveId: Optional[str] = None, status: Optional[str] = None,
                     store: Store = Depends(get_store)):
    query = {}
    if reportId:
        query["reportId"] = reportId
    if driveId:
        query["driveId"] = driveId
    if status and is_member(MonitoringStatus, status):
        query["status"] = status
    return serialize(store.get_documents(MONITORING, query, sort=[("createdAt", -1)]))


@router.post("/monitoring", status_code=201)
def start_monitoring(body: MonitoringCreate, user=Depends(require_user), store: Store = Depends(get_store)):
    monitoring = lifecycle.start_monitoring(store, body)
    return {"message": "Monitoring started successfully", "monitoring": serialize(monitoring)}


@router.patch("/monitoring/{monitoring_id}")
def update_monitoring(monitoring_id: str, body: MonitoringUpdate, user=Depends(require_user),
                      store: Store = Depends(get_store)):
    monitoring = store.require(MONITORING, monitoring_id, "Monitoring")
    changes = body.model_dump(exclude_none=True)
    if "status" in changes and not is_member(MonitoringStatus, changes["status"]):
        raise InvalidInput("Invalid monitoring status")
    if "checkDate" in changes:
        changes["checkDate"] = to_naive_utc(changes["checkDate"])
    changes["updatedAt"] = utcnow()
    store[MONITORING].update_one({"_id": monitoring["_id"]}, {"$set": changes})
    return serialize(store.find_by_id(MONITORING, monitoring["_id"]))


@router.delete("/monitoring/{monitoring_id}")
def delete_monitoring(monitoring_id: str, user=Depends(require_user), store: Store = Depends(get_store)):
    monitoring = store.require(MONITORING, monitoring_id, "Monitoring")
    store[MONITORING].delete_one({"_id": monitoring["_id"]})
    return {"message": "Monitoring deleted successfully"}


# ---------- Discussion ----------

@router.get("/discussion")
def list_discussions(phase: Optional[str] = None, reportId: Optional[str] = None, driveId: Optional[str] = None,
                     store: Store = Depends(get_store)):
    query = {}
    if phase:
        if not is_member(DiscussionPhase, phase):
            raise InvalidInput("Invalid discussion phase")
        query["phase"] = phase
    if reportId:
        query["reportId"] = reportId
    if driveId:
        query["driveId"] = driveId
    return serialize(store.get_documents(DISCUSSION, query, sort=[("createdAt", 1)]))


@router.post("/discussion", status_code=201)
def post_discussion(body: DiscussionCreate, user=Depends(require_user), store: Store = Depends(get_store)):
    discussion = lifecycle.post_discussion(store, user, body.phase, body.content,
                                           report_id=body.reportId, drive_id=body.driveId)
    return serialize(discussion)


# ---------- Enhancements ----------

@router.post("/enhancements", status_code=201)
def log_enhancement(body: EnhancementCreate, user=Depends(require_user), store: Store = Depends(get_store)):
    if not body.driveId or not body.type:
        raise InvalidInput("driveId and type are required")
    if not is_member(EnhancementType, body.type):
        raise InvalidInput("Invalid enhancement type")
    drive = store.require(DRIVE, body.driveId, "Drive")
    enhancement = store.create_document(ENHANCEMENT, {
        "driveId": str(drive["_id"]),
        "type": body.type,
        "description": body.description or None,
        "referenceUrls": body.referenceUrls,
    })
    return {"message": "Enhancement logged successfully", "enhancement": serialize(enhancement)}


@router.get("/enhancements")
def list_enhancements(driveId: Optional[str] = None, store: Store = Depends(get_store)):
    query = {"driveId": driveId} if driveId else {}
    return serialize(store.get_documents(ENHANCEMENT, query, sort=[("createdAt", -1)]))
