from fastapi import APIRouter, Depends

from apps.backend.services.core_service import get_points_service, require_actor
from apps.backend.services.points.models import Member
from apps.backend.services.points.points_service import PointsService
from apps.backend.utils.envelope import from_result

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/members")
def admin_members(actor: Member = Depends(require_actor), service: PointsService = Depends(get_points_service)):
    return from_result(service.admin_overview(actor))
