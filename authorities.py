import logging
import re
from typing import Optional

from fastapi import APIRouter, Depends

import lifecycle
from database import (
    AUTHORITY, REPORT, REPORT_AUTHORITY, Store, get_store, serialize, to_naive_utc, utcnow,
)
from errors import InvalidInput
from schemas import (
    AuthorityCategory, AuthorityInput, AuthorityRole, AuthorityUpdate, ContactStatus, ReportAuthorityCreate,
    ReportAuthorityUpdate, is_member,
)
from security import require_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["authorities"])

CONTACT_KEYS = ("contactMode", "email", "phone", "website", "other")


def _exact(value: str) -> dict:
    return {"$regex": f"^{re.escape(value)}$", "$options": "i"}


# ---------- Authorities ----------

@router.get("/authority")
def list_authorities(city: Optional[str] = None, region: Optional[str] = None, category: Optional[str] = None,
                     role: Optional[str] = None, search: Optional[str] = None,
                     store: Store = Depends(get_store)):
    query = {}
    if city:
        query["city"] = _exact(city)
    if region:
        query["region"] = _exact(region)
    if category and is_member(AuthorityCategory, category):
        query["category"] = category
    if role and is_member(AuthorityRole, role):
        query["role"] = role
    if search:
        query["name"] = {"$regex": re.escape(search), "$options": "i"}

    authorities = store.get_documents(AUTHORITY, query, sort=[("city", 1), ("name", 1)])
    for authority in authorities:
        authority["reportAuthorities"] = store.get_documents(REPORT_AUTHORITY, {"authorityId": str(authority["_id"])})
    return serialize(authorities)


@router.post("/authority", status_code=201)
def create_authority(body: AuthorityInput, user=Depends(require_user), store: Store = Depends(get_store)):
    if not (body.name and body.category and body.role and body.city):
        raise InvalidInput("Missing required fields: name, category, role, city")
    authority = store.create_document(AUTHORITY, lifecycle.build_authority(body.model_dump(), user["id"]))
    logger.info("Authority %s submitted by %s", authority["_id"], user["id"])
    return {"message": "Authority created successfully", "authority": serialize(authority)}


@router.get("/authority/{authority_id}")
def get_authority(authority_id: str, store: Store = Depends(get_store)):
    authority = store.require(AUTHORITY, authority_id, "Authority")
    links = store.get_documents(REPORT_AUTHORITY, {"authorityId": str(authority["_id"])})
    for link in links:
        link["report"] = store.find_by_id(REPORT, link["reportId"])
    authority["reportAuthorities"] = links
    return serialize(authority)


@router.patch("/authority/{authority_id}")
def update_authority(authority_id: str, body: AuthorityUpdate, user=Depends(require_user),
                     store: Store = Depends(get_store)):
    authority = store.require(AUTHORITY, authority_id, "Authority")
    changes = body.model_dump(exclude_none=True)
    lifecycle.validate_authority_enums(changes.get("category"), changes.get("role"))
    if any(key in changes for key in CONTACT_KEYS):
        merged = {**authority, **changes}
        changes.update(contactMode=merged.get("contactMode"),
                       **lifecycle.normalize_contact(merged.get("contactMode"), merged))
    changes["updatedAt"] = utcnow()
    store[AUTHORITY].update_one({"_id": authority["_id"]}, {"$set": changes})
    return {"message": "Authority updated successfully", "authority": serialize(store.find_by_id(AUTHORITY, authority["_id"]))}


@router.delete("/authority/{authority_id}")
def delete_authority(authority_id: str, user=Depends(require_user), store: Store = Depends(get_store)):
    authority = store.require(AUTHORITY, authority_id, "Authority")
    with store.unit_of_work() as session:
        store[REPORT_AUTHORITY].delete_many({"authorityId": str(authority["_id"])}, session=session)
        store[AUTHORITY].delete_one({"_id": authority["_id"]}, session=session)
    logger.info("Authority %s deleted by %s", authority["_id"], user["id"])
    return {"message": "Authority deleted successfully"}


# ---------- Report <-> authority contact records ----------

@router.get("/reportAuthority")
def list_report_authorities(reportId: Optional[str] = None, authorityId: Optional[str] = None,
                            store: Store = Depends(get_store)):
    query = {}
    if reportId:
        query["reportId"] = reportId
    if authorityId:
        query["authorityId"] = authorityId
    return serialize(store.get_documents(REPORT_AUTHORITY, query, sort=[("createdAt", -1)]))


@router.post("/reportAuthority", status_code=201)
def create_report_authority(body: ReportAuthorityCreate, user=Depends(require_user),
                            store: Store = Depends(get_store)):
    if not body.reportId or not body.authorityId:
        raise InvalidInput("Missing required fields: reportId, authorityId")
    report = store.require(REPORT, body.reportId, "Report")
    authority = store.require(AUTHORITY, body.authorityId, "Authority")
    link = store.create_document(REPORT_AUTHORITY, {
        "reportId": str(report["_id"]),
        "authorityId": str(authority["_id"]),
        "volunteerId": body.volunteerId,
        "status": ContactStatus.PENDING.value,
        "contactedAt": to_naive_utc(body.contactedAt),
    })
    return serialize(link)


@router.get("/reportAuthority/{link_id}")
def get_report_authority(link_id: str, store: Store = Depends(get_store)):
    link = store.require(REPORT_AUTHORITY, link_id, "Report-Authority record")
    link["report"] = store.find_by_id(REPORT, link["reportId"])
    link["authority"] = store.find_by_id(AUTHORITY, link["authorityId"])
    return serialize(link)


@router.patch("/reportAuthority/{link_id}")
def update_report_authority(link_id: str, body: ReportAuthorityUpdate, user=Depends(require_user),
                            store: Store = Depends(get_store)):
    link = store.require(REPORT_AUTHORITY, link_id, "Report-Authority record")
    changes = body.model_dump(exclude_none=True)
    if "status" in changes and not is_member(ContactStatus, changes["status"]):
        raise InvalidInput("Invalid contact status")
    if "contactedAt" in changes:
        changes["contactedAt"] = to_naive_utc(changes["contactedAt"])
    changes["updatedAt"] = utcnow()
    store[REPORT_AUTHORITY].update_one({"_id": link["_id"]}, {"$set": changes})
    return serialize(store.find_by_id(REPORT_AUTHORITY, link["_id"]))


@router.delete("/reportAuthority/{link_id}")
def delete_report_authority(link_id: str, user=Depends(require_user), store: Store = Depends(get_store)):
    link = store.require(REPORT_AUTHORITY, link_id, "Report-Authority record")
    store[REPORT_AUTHORITY].delete_one({"_id": link["_id"]})
    return {"message": "Record deleted successfully"}
