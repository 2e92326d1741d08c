"""
Report and drive lifecycle rules.

Status changes are applied with a single conditional update whose filter only matches the
states the transition table allows as sources. A request that lost a race simply matches
nothing, so a row never moves backwards and a threshold promotion is written once.
Multi-document transitions run inside Store.unit_of_work().
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from bson import ObjectId
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from database import (
    AUTHORITY, DISCUSSION, DRIVE, DRIVE_COMPLETION, DRIVE_REPORT, DRIVE_VOLUNTEER, DRIVE_VOTE,
    ENHANCEMENT, MONITORING, REPORT, REPORT_AUTHORITY, REPORT_FLAG, REPORT_RESOLUTION,
    REPORT_VOTE, STATUS_LOG, TASK, VOLUNTEER, Store, parse_object_id, to_naive_utc, utcnow,
)
from errors import Conflict, Forbidden, InvalidInput
from schemas import (
    Authority, AuthorityCategory, AuthorityRole, ContactAuthorityRequest, ContactMode, ContactStatus,
    DiscussionPhase, Drive, DriveCompletionRequest, DriveCreate, DriveStatus, MonitoringCreate,
    MonitoringStatus, ReportStatus, ResolveRequest, Task, is_member,
)
from settings import Settings

logger = logging.getLogger(__name__)

RS = ReportStatus
DS = DriveStatus

REPORT_TRANSITIONS = {
    RS.PENDING: {RS.AUTHORITY_CONTACTED, RS.ELIGIBLE_FOR_VOTE, RS.ELIGIBLE_FOR_DRIVE,
                 RS.IN_PROGRESS, RS.RESOLVED},
    RS.AUTHORITY_CONTACTED: {RS.ELIGIBLE_FOR_VOTE, RS.ELIGIBLE_FOR_DRIVE, RS.IN_PROGRESS,
                             RS.RESOLVED},
    RS.ELIGIBLE_FOR_VOTE: {RS.ELIGIBLE_FOR_DRIVE, RS.IN_PROGRESS, RS.RESOLVED},
    RS.ELIGIBLE_FOR_DRIVE: {RS.IN_PROGRESS, RS.RESOLVED},
    RS.IN_PROGRESS: {RS.UNDER_MONITORING, RS.RESOLVED},
    RS.UNDER_MONITORING: {RS.RESOLVED},
    RS.RESOLVED: set(),
}

DRIVE_TRANSITIONS = {
    DS.PLANNED: {DS.ONGOING, DS.VOTING_FINALIZED, DS.COMPLETED},
    DS.ONGOING: {DS.COMPLETED},
    DS.VOTING_FINALIZED: {DS.COMPLETED},
    DS.COMPLETED: set(),
}

# Children removed before the parent row, in this order.
DRIVE_CHILDREN = (TASK, DRIVE_REPORT, DRIVE_VOTE, ENHANCEMENT, MONITORING, DRIVE_VOLUNTEER, DISCUSSION)
REPORT_CHILDREN = (REPORT_VOTE, TASK, REPORT_AUTHORITY, DRIVE_REPORT, MONITORING, DISCUSSION,
                   STATUS_LOG, REPORT_RESOLUTION, REPORT_FLAG)

CONTACT_FIELDS = {
    ContactMode.EMAIL: "email",
    ContactMode.PHONE: "phone",
    ContactMode.WEBSITE: "website",
    ContactMode.SOCIAL_MEDIA: "other",
    ContactMode.IN_PERSON: "other",
    ContactMode.OTHER: "other",
}


def can_transition(table, current: str, target: str) -> bool:
    # Keys of a transition table all belong to one status enum.
    status_cls = type(next(iter(table)))
    if not (is_member(status_cls, current) and is_member(status_cls, target)):
        return False
    return status_cls(target) in table.get(status_cls(current), set())


def sources_of(table, target) -> List[str]:
    return [status.value for status, targets in table.items() if target in targets]


def _advance(store: Store, collection: str, table, oid: ObjectId, target, now: datetime,
             session=None, extra: Optional[Dict[str, Any]] = None,
             extra_filter: Optional[Dict[str, Any]] = None) -> bool:
    query = {"_id": oid, "status": {"$in": sources_of(table, target)}}
    if extra_filter:
        query.update(extra_filter)
    changes = {"status": target.value, "updatedAt": now}
    if extra:
        changes.update(extra)
    result = store[collection].update_one(query, {"$set": changes}, session=session)
    return result.modified_count > 0


def advance_report(store: Store, report_id, target: ReportStatus, note: str,
                   now: Optional[datetime] = None, session=None, extra=None, extra_filter=None) -> bool:
    """Move a report to `target` if the table allows it and append a status log row."""
    now = now or utcnow()
    oid = parse_object_id(report_id, "report id")
    if not _advance(store, REPORT, REPORT_TRANSITIONS, oid, target, now, session, extra, extra_filter):
        return False
    store.create_document(STATUS_LOG, {
        "reportId": str(oid),
        "status": target.value,
        "note": note,
        "createdAt": now,
    }, session=session)
    logger.info("Report %s -> %s (%s)", oid, target.value, note)
    return True


def advance_drive(store: Store, drive_id, target: DriveStatus, note: str,
                  now: Optional[datetime] = None, session=None, extra=None, extra_filter=None) -> bool:
    now = now or utcnow()
    oid = parse_object_id(drive_id, "drive id")
    if not _advance(store, DRIVE, DRIVE_TRANSITIONS, oid, target, now, session, extra, extra_filter):
        return False
    logger.info("Drive %s -> %s (%s)", oid, target.value, note)
    return True


# ---------- Voting ----------

@dataclass(frozen=True)
class VoteRule:
    label: str
    collection: str
    vote_collection: str
    key: str
    threshold_setting: str
    promote_to: Any
    open_to: Any
    advance: Callable[..., bool]


REPORT_VOTING = VoteRule(
    label="report",
    collection=REPORT,
    vote_collection=REPORT_VOTE,
    key="reportId",
    threshold_setting="report_vote_threshold",
    promote_to=RS.IN_PROGRESS,
    open_to=RS.ELIGIBLE_FOR_VOTE,
    advance=advance_report,
)

DRIVE_VOTING = VoteRule(
    label="drive",
    collection=DRIVE,
    vote_collection=DRIVE_VOTE,
    key="driveId",
    threshold_setting="drive_vote_threshold",
    promote_to=DS.ONGOING,
    open_to=None,
    advance=advance_drive,
)


def voting_is_closed(doc: Dict[str, Any], now: datetime) -> bool:
    close_at = doc.get("votingCloseAt")
    return close_at is not None and now > close_at


def cast_vote(store: Store, settings: Settings, rule: VoteRule, entity_id: str, user_id: str,
              now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Record one vote by `user_id` and apply the voting transitions.

    The first vote opens the voting window. Reaching the threshold promotes the entity and
    freezes finalVoteCount; the promotion filter requires finalVoteCount to be unset, so
    only the vote that crossed the threshold writes it.
    """
    now = now or utcnow()
    entity = store.require(rule.collection, entity_id, rule.label.capitalize())
    oid = entity["_id"]
    if voting_is_closed(entity, now):
        raise Forbidden(f"Voting has closed for this {rule.label}")

    threshold = getattr(settings, rule.threshold_setting)
    window = timedelta(days=settings.voting_window_days)
    collection = store[rule.collection]

    with store.unit_of_work() as session:
        try:
            vote = store.create_document(rule.vote_collection, {
                "userId": user_id,
                rule.key: str(oid),
                "createdAt": now,
            }, session=session)
        except DuplicateKeyError:
            raise Conflict(f"You have already voted on this {rule.label}")

        entity = collection.find_one_and_update(
            {"_id": oid},
            {"$inc": {"voteCount": 1}, "$set": {"updatedAt": now}},
            return_document=ReturnDocument.AFTER,
            session=session,
        )
        opened = collection.update_one(
            {"_id": oid, "votingOpenAt": None},
            {"$set": {"votingOpenAt": now, "votingCloseAt": now + window}},
            session=session,
        )
        if opened.modified_count and rule.open_to is not None:
            rule.advance(store, oid, rule.open_to, "Community voting opened", now=now, session=session)
        if entity["voteCount"] >= threshold:
            rule.advance(
                store, oid, rule.promote_to, f"Vote threshold of {threshold} reached",
                now=now, session=session,
                extra={"finalVoteCount": entity["voteCount"]},
                extra_filter={"finalVoteCount": None},
            )
        entity = collection.find_one({"_id": oid}, session=session)

    logger.info("Vote on %s %s by %s (count=%s)", rule.label, oid, user_id, entity.get("voteCount"))
    return {"vote": vote, rule.label: entity}


def cast_report_vote(store: Store, settings: Settings, report_id: str, user_id: str,
                     now: Optional[datetime] = None) -> Dict[str, Any]:
    return cast_vote(store, settings, REPORT_VOTING, report_id, user_id, now)


def cast_drive_vote(store: Store, settings: Settings, drive_id: str, user_id: str,
                    now: Optional[datetime] = None) -> Dict[str, Any]:
    return cast_vote(store, settings, DRIVE_VOTING, drive_id, user_id, now)


# ---------- Reports ----------

def set_report_status(store: Store, report_id: str, status: Optional[str], note: Optional[str] = None,
                      now: Optional[datetime] = None) -> Dict[str, Any]:
    if not status or not is_member(ReportStatus, status):
        raise InvalidInput("Invalid report status")
    report = store.require(REPORT, report_id, "Report")
    if not can_transition(REPORT_TRANSITIONS, report["status"], status):
        raise Conflict(f"Cannot move report from {report['status']} to {status}")
    with store.unit_of_work() as session:
        if not advance_report(store, report["_id"], ReportStatus(status),
                              note or f"Status updated to {status}", now=now, session=session):
            raise Conflict(f"Cannot move report from {report['status']} to {status}")
        return store.find_by_id(REPORT, report["_id"], session=session)


def resolve_report(store: Store, report_id: str, body: ResolveRequest, user: Dict[str, Any],
                   now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or utcnow()
    summary = (body.resolutionSummary or "").strip()
    if not summary:
        raise InvalidInput("Resolution summary is required")
    report = store.require(REPORT, report_id, "Report")
    key = str(report["_id"])

    with store.unit_of_work() as session:
        if not advance_report(store, report["_id"], RS.RESOLVED, summary, now=now, session=session):
            raise Conflict("Report is already resolved")
        resolution = store.create_document(REPORT_RESOLUTION, {
            "reportId": key,
            "resolvedById": user["id"],
            "resolutionSummary": summary,
            "resolvedByAuthority": body.resolvedByAuthority,
            "resolutionDate": to_naive_utc(body.resolutionDate) or now,
            "proofImages": body.proofImages,
            "remainingConcerns": body.remainingConcerns,
            "remarks": body.remarks,
        }, session=session)
        completed = store[MONITORING].update_many(
            {"reportId": key, "status": MonitoringStatus.ACTIVE.value},
            {"$set": {"status": MonitoringStatus.COMPLETED.value, "updatedAt": now}},
            session=session,
        )
    return {"resolution": resolution, "monitoringsCompleted": completed.modified_count}


def delete_report(store: Store, report_id: str) -> Dict[str, int]:
    report = store.require(REPORT, report_id, "Report")
    key = str(report["_id"])
    removed = {}
    with store.unit_of_work() as session:
        for collection in REPORT_CHILDREN:
            removed[collection] = store[collection].delete_many({"reportId": key}, session=session).deleted_count
        store[REPORT].delete_one({"_id": report["_id"]}, session=session)
    logger.info("Deleted report %s with children %s", key, removed)
    return removed


def _pending_escalation(report, cutoff):
    return "CONTACT_AUTHORITY"


def _contacted_escalation(report, cutoff):
    updated_at = report.get("updatedAt")
    if updated_at is not None and updated_at <= cutoff:
        return "CREATE_DRIVE"
    return None


ESCALATIONS = {
    RS.PENDING.value: _pending_escalation,
    RS.AUTHORITY_CONTACTED.value: _contacted_escalation,
}


def escalation_for(report: Dict[str, Any], settings: Settings, now: Optional[datetime] = None) -> Optional[str]:
    """Next action a stalled report needs, or None."""
    handler = ESCALATIONS.get(report.get("status"))
    if handler is None:
        return None
    cutoff = (now or utcnow()) - timedelta(days=settings.escalation_days)
    return handler(report, cutoff)


def run_sweep(store: Store, settings: Settings, now: Optional[datetime] = None) -> Dict[str, int]:
    """
    Scheduled escalation. PENDING reports older than the escalation window become
    ELIGIBLE_FOR_DRIVE; PLANNED drives whose voting window closed become VOTING_FINALIZED.
    Running it twice changes nothing the second time.
    """
    now = now or utcnow()
    cutoff = now - timedelta(days=settings.escalation_days)

    escalated = 0
    stale = list(store[REPORT].find({"status": RS.PENDING.value, "createdAt": {"$lt": cutoff}}, {"_id": 1}))
    for report in stale:
        with store.unit_of_work() as session:
            if advance_report(store, report["_id"], RS.ELIGIBLE_FOR_DRIVE,
                              f"No action within {settings.escalation_days} days",
                              now=now, session=session):
                escalated += 1

    finalized = 0
    expired = list(store[DRIVE].find({"status": DS.PLANNED.value, "votingCloseAt": {"$lt": now}},
                                     {"_id": 1, "voteCount": 1}))
    for drive in expired:
        if advance_drive(store, drive["_id"], DS.VOTING_FINALIZED, "Voting window closed", now=now,
                         extra={"finalVoteCount": drive.get("voteCount", 0)}):
            finalized += 1

    logger.info("Sweep escalated %d reports and finalized %d drives", escalated, finalized)
    return {"reportsEscalated": escalated, "drivesFinalized": finalized}


# ---------- Authorities ----------

def normalize_contact(contact_mode: Optional[str], fields: Dict[str, Any]) -> Dict[str, Optional[str]]:
    """Keep only the contact field selected by `contact_mode`; the other three become None."""
    if not contact_mode or not is_member(ContactMode, contact_mode):
        raise InvalidInput("Valid contact mode is required")
    field = CONTACT_FIELDS[ContactMode(contact_mode)]
    value = (fields.get(field) or "").strip()
    if not value:
        raise InvalidInput(f"{field} is required for contact mode {contact_mode}")
    contact = {name: None for name in ("email", "phone", "website", "other")}
    contact[field] = value
    return contact


def validate_authority_enums(category: Optional[str], role: Optional[str]) -> None:
    if category and not is_member(AuthorityCategory, category):
        raise InvalidInput("Invalid authority category")
    if role and not is_member(AuthorityRole, role):
        raise InvalidInput("Invalid authority role")


def build_authority(data: Dict[str, Any], submitted_by: Optional[str]) -> Dict[str, Any]:
    validate_authority_enums(data.get("category"), data.get("role"))
    contact = normalize_contact(data.get("contactMode"), data)
    return Authority(
        name=data["name"],
        category=data["category"],
        role=data["role"],
        city=data["city"],
        region=data.get("region") or None,
        contactMode=data["contactMode"],
        submittedById=submitted_by,
        **contact,
    ).model_dump()


def contact_authority(store: Store, report_id: str, body: ContactAuthorityRequest, user: Dict[str, Any],
                      now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or utcnow()
    authority = body.authority
    details = body.reportAuthority

    if not authority.name or details.contactedAt is None:
        raise InvalidInput("Authority name and contacted date are required")
    if not authority.contactMode or not is_member(ContactMode, authority.contactMode):
        raise InvalidInput("Valid contact mode is required")
    contact_mode = details.contactMode or authority.contactMode
    if not is_member(ContactMode, contact_mode):
        raise InvalidInput("Valid contact mode is required")

    report = store.require(REPORT, report_id, "Report")
    volunteer = store[VOLUNTEER].find_one({"userId": user["id"]}, {"_id": 1})

    record = None
    new_authority = None
    if authority.id:
        record = store.require(AUTHORITY, authority.id, "Authority")
    else:
        if not (authority.category and authority.role and authority.city):
            raise InvalidInput("New authority requires category, role, and city")
        new_authority = build_authority(authority.model_dump(), user["id"])

    with store.unit_of_work() as session:
        if record is None:
            record = store.create_document(AUTHORITY, new_authority, session=session)
        try:
            link = store.create_document(REPORT_AUTHORITY, {
                "reportId": str(report["_id"]),
                "authorityId": str(record["_id"]),
                "volunteerId": str(volunteer["_id"]) if volunteer else None,
                "contactMode": contact_mode,
                "platformDetail": details.platformDetail,
                "submittedMessage": details.submittedMessage,
                "referenceId": details.referenceId,
                "contactedAt": to_naive_utc(details.contactedAt),
                "status": ContactStatus.CONTACTED.value,
            }, session=session)
        except DuplicateKeyError:
            raise Conflict("Authority already contacted for this report")
        advance_report(store, report["_id"], RS.AUTHORITY_CONTACTED, "Authority contacted",
                       now=now, session=session)

    return {"authority": record, "reportAuthority": link}


# ---------- Drives ----------

def create_drive(store: Store, body: DriveCreate, user: Dict[str, Any],
                 now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or utcnow()
    title = (body.title or "").strip()
    if not title:
        raise InvalidInput("Missing required field: title")

    if body.linkedReports is not None:
        report_ids = [report_id for report_id in body.linkedReports if report_id]
    elif body.reportId:
        report_ids = [body.reportId]
    else:
        report_ids = []
    if len(report_ids) > 1:
        raise InvalidInput("At most one report can be linked to a drive")

    report = None
    if report_ids:
        report = store.require(REPORT, report_ids[0], "Report")
        if report["status"] != RS.ELIGIBLE_FOR_DRIVE.value:
            raise InvalidInput(f"Drive can only be created for reports with status {RS.ELIGIBLE_FOR_DRIVE.value}")

    drive_doc = Drive(
        title=title,
        description=body.description,
        participant=max(body.participant or 0, 0),
        startDate=to_naive_utc(body.startDate) or now,
        endDate=to_naive_utc(body.endDate),
        organizerId=user["id"],
    ).model_dump()

    with store.unit_of_work() as session:
        if report is not None and not advance_report(
                store, report["_id"], RS.IN_PROGRESS, f"Drive planned: {title}", now=now, session=session):
            raise Conflict("Report is no longer eligible for a drive")
        drive = store.create_document(DRIVE, drive_doc, session=session)
        drive_key = str(drive["_id"])
        report_key = str(report["_id"]) if report is not None else None
        tasks = []
        for item in body.taskBreakdown:
            task = Task(
                reportId=report_key,
                driveId=drive_key,
                title=item.title or "Task",
                description=item.description or "",
                engagement=item.engagement,
            ).model_dump()
            tasks.append(store.create_document(TASK, task, session=session))
        if report_key is not None:
            store.create_document(DRIVE_REPORT, {"driveId": drive_key, "reportId": report_key}, session=session)

    logger.info("Drive %s created by %s (report=%s, tasks=%d)", drive_key, user["id"], report_key, len(tasks))
    drive["tasks"] = tasks
    drive["reportIds"] = [report_key] if report_key else []
    return drive


def complete_drive(store: Store, drive_id: str, body: DriveCompletionRequest, user: Dict[str, Any],
                   now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or utcnow()
    summary = (body.summary or "").strip()
    if not summary:
        raise InvalidInput("Completion summary is required")
    drive = store.require(DRIVE, drive_id, "Drive")
    key = str(drive["_id"])

    with store.unit_of_work() as session:
        if not advance_drive(store, drive["_id"], DS.COMPLETED, summary, now=now, session=session):
            raise Conflict("Drive is already completed")
        completion = store.create_document(DRIVE_COMPLETION, {
            "driveId": key,
            "completedById": user["id"],
            "summary": summary,
            "successful": body.successful,
            "remainingIssues": body.remainingIssues,
            "proofImages": body.proofImages,
        }, session=session)
        monitored = []
        for link in list(store[DRIVE_REPORT].find({"driveId": key}, session=session)):
            if advance_report(store, link["reportId"], RS.UNDER_MONITORING, "Drive completed",
                              now=now, session=session):
                monitored.append(link["reportId"])

    return {"completion": completion, "reportsUnderMonitoring": monitored}


def delete_drive(store: Store, drive_id: str) -> Dict[str, int]:
    drive = store.require(DRIVE, drive_id, "Drive")
    key = str(drive["_id"])
    removed = {}
    with store.unit_of_work() as session:
        for collection in DRIVE_CHILDREN:
            removed[collection] = store[collection].delete_many({"driveId": key}, session=session).deleted_count
        store[DRIVE].delete_one({"_id": drive["_id"]}, session=session)
    logger.info("Deleted drive %s with children %s", key, removed)
    return removed


# ---------- Monitoring & discussion ----------

def start_monitoring(store: Store, body: MonitoringCreate, now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or utcnow()
    if body.checkDate is None:
        raise InvalidInput("checkDate is required")
    report = store.require(REPORT, body.reportId, "Report") if body.reportId else None
    drive = store.require(DRIVE, body.driveId, "Drive") if body.driveId else None
    volunteer = store.require(VOLUNTEER, body.volunteerId, "Volunteer") if body.volunteerId else None

    with store.unit_of_work() as session:
        monitoring = store.create_document(MONITORING, {
            "reportId": str(report["_id"]) if report else None,
            "driveId": str(drive["_id"]) if drive else None,
            "volunteerId": str(volunteer["_id"]) if volunteer else None,
            "status": MonitoringStatus.ACTIVE.value,
            "checkDate": to_naive_utc(body.checkDate),
            "notes": body.notes or None,
        }, session=session)
        if report is not None:
            advance_report(store, report["_id"], RS.UNDER_MONITORING, "Monitoring started",
                           now=now, session=session)
    return monitoring


def _general_gate(report, drive, now):
    if report is None and drive is None:
        raise InvalidInput("A discussion needs a reportId or a driveId")


def _report_voting_gate(report, drive, now):
    if report is None:
        raise InvalidInput("reportId is required for REPORT_VOTING discussions")
    if report["status"] != RS.ELIGIBLE_FOR_VOTE.value or voting_is_closed(report, now):
        raise InvalidInput("Voting discussion is closed for this report")


def _drive_voting_gate(report, drive, now):
    if drive is None:
        raise InvalidInput("driveId is required for DRIVE_VOTING discussions")
    if drive["status"] != DS.PLANNED.value or voting_is_closed(drive, now):
        raise InvalidInput("Voting discussion is closed for this drive")


DISCUSSION_GATES = {
    DiscussionPhase.GENERAL: _general_gate,
    DiscussionPhase.REPORT_VOTING: _report_voting_gate,
    DiscussionPhase.DRIVE_VOTING: _drive_voting_gate,
}


def post_discussion(store: Store, user: Dict[str, Any], phase: Optional[str], content: Optional[str],
                    report_id: Optional[str] = None, drive_id: Optional[str] = None,
                    now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or utcnow()
    text = (content or "").strip()
    if not text:
        raise InvalidInput("Comment cannot be empty")
    if not phase or not is_member(DiscussionPhase, phase):
        raise InvalidInput("Invalid discussion phase")
    report = store.require(REPORT, report_id, "Report") if report_id else None
    drive = store.require(DRIVE, drive_id, "Drive") if drive_id else None
    DISCUSSION_GATES[DiscussionPhase(phase)](report, drive, now)
    discussion = store.create_document(DISCUSSION, {
        "userId": user["id"],
        "phase": phase,
        "content": text,
        "reportId": str(report["_id"]) if report else None,
        "driveId": str(drive["_id"]) if drive else None,
    })
    logger.info("Discussion %s (%s) posted by %s", discussion["_id"], phase, user["id"])
    return discussion
