from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from apps.backend.services.core_service import get_points_service, require_actor
from apps.backend.services.points.authorization import require_organizer
from apps.backend.services.points.models import Member, Result
from apps.backend.services.points.points_service import PointsService
from apps.backend.utils.envelope import from_result

router = APIRouter(tags=["awards"])


class AwardIn(BaseModel):
    rookie_ids: List[str] = Field(default_factory=list, description="Beneficiary member ids")
    amount: int = Field(..., description="Signed, non-zero point amount")
    description: Optional[str] = None
    request_id: Optional[str] = Field(None, max_length=128, description="Retry key for this submission")


class RookieIn(BaseModel):
    name: Optional[str] = None
    github_username: Optional[str] = None


# -------------------------
# Captain
# -------------------------

@router.get("/captain")
def captain_dashboard(actor: Member = Depends(require_actor), service: PointsService = Depends(get_points_service)):
    return from_result(service.captain_roster(actor))


@router.post("/captain/award")
def captain_award(
    body: AwardIn,
    actor: Member = Depends(require_actor),
    service: PointsService = Depends(get_points_service),
):
    return from_result(
        service.award_points(actor, body.rookie_ids, body.amount, body.description, request_id=body.request_id)
    )


@router.post("/captain/rookies")
def captain_add_rookie(
    body: RookieIn,
    actor: Member = Depends(require_actor),
    service: PointsService = Depends(get_points_service),
):
    return from_result(service.add_rookie(actor, body.name, body.github_username))


# -------------------------
# Organizer
# -------------------------

@router.get("/organizer")
def organizer_dashboard(actor: Member = Depends(require_actor), service: PointsService = Depends(get_points_service)):
    return from_result(service.organizer_roster(actor))


@router.post("/organizer/award")
def organizer_award(
    body: AwardIn,
    actor: Member = Depends(require_actor),
    service: PointsService = Depends(get_points_service),
):
    decision = require_organizer(actor)
    if not decision.allowed:
        return from_result(Result.denied(decision.reason, decision.message))
    return from_result(
        service.award_points(actor, body.rookie_ids, body.amount, body.description, request_id=body.request_id)
    )
