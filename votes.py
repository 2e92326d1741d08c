from fastapi import APIRouter, Depends

import lifecycle
from database import Store, get_store, serialize
from errors import InvalidInput
from schemas import DriveVoteRequest, ReportVoteRequest
from security import require_user
from settings import Settings, get_settings

router = APIRouter(prefix="/api", tags=["votes"])


def _vote_response(result: dict, label: str) -> dict:
    entity = result[label]
    return {
        "message": "Vote submitted successfully",
        "vote": serialize(result["vote"]),
        "voteCount": entity.get("voteCount", 0),
        "status": entity.get("status"),
    }


@router.post("/votes/reports", status_code=201)
def vote_report(body: ReportVoteRequest, user=Depends(require_user), store: Store = Depends(get_store),
                settings: Settings = Depends(get_settings)):
    if not body.reportId:
        raise InvalidInput("reportId is required")
    result = lifecycle.cast_report_vote(store, settings, body.reportId, user["id"])
    return _vote_response(result, "report")


@router.post("/reports/{report_id}/vote", status_code=201)
def vote_report_by_path(report_id: str, user=Depends(require_user), store: Store = Depends(get_store),
                        settings: Settings = Depends(get_settings)):
    result = lifecycle.cast_report_vote(store, settings, report_id, user["id"])
    return _vote_response(result, "report")


@router.post("/votes/drives", status_code=201)
def vote_drive(body: DriveVoteRequest, user=Depends(require_user), store: Store = Depends(get_store),
               settings: Settings = Depends(get_settings)):
    if not body.driveId:
        raise InvalidInput("driveId is required")
    result = lifecycle.cast_drive_vote(store, settings, body.driveId, user["id"])
    return _vote_response(result, "drive")
