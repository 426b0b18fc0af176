from typing import Optional

from fastapi import APIRouter, Depends, Query

from apps.backend.services.core_service import current_subject, get_points_service
from apps.backend.services.points.points_service import PointsService
from apps.backend.utils.envelope import from_result, ok

router = APIRouter(tags=["leaderboard"])


@router.get("/leaderboard")
def leaderboard(
    error: Optional[str] = None,
    subject_id: Optional[str] = Depends(current_subject),
    service: PointsService = Depends(get_points_service),
):
    rows = service.get_leaderboard(subject_id)
    return ok(
        {"rookies": rows, "error": error},
        meta={"has_session": bool(subject_id), "on_board": any(r["is_current_user"] for r in rows)},
    )


@router.get("/calendar")
def calendar_month(
    month: Optional[int] = Query(None, ge=1, le=12),
    year: Optional[int] = Query(None, ge=1970, le=9999),
    service: PointsService = Depends(get_points_service),
):
    return ok(service.get_calendar(year, month))


@router.get("/profile/{member_id}")
def profile(
    member_id: str,
    month: Optional[int] = Query(None, ge=1, le=12),
    year: Optional[int] = Query(None, ge=1970, le=9999),
    service: PointsService = Depends(get_points_service),
):
    return from_result(service.get_profile(member_id, year, month))
