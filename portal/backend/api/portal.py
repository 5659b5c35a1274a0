from typing import Any, Dict, List
from uuid import UUID

from fastapi import APIRouter, Depends, Request, Response, status

from ..models.db_models import Principal, Notification
from ..services.academic_service import AcademicService
from ..services.dashboard_service import DashboardService
from ..services.errors import ServiceError
from .auth import get_current_user
from .dependencies import get_academic_service, get_dashboard_service
from .errors import to_http_exception
from .utilities.limiter import limiter

router = APIRouter(tags=["Portal"])


@router.get("/dashboard", response_model=Dict[str, Any], summary="Role-specific landing summary")
@limiter.limit("60/minute")
async def dashboard(request: Request, user: Principal = Depends(get_current_user), service: DashboardService = Depends(get_dashboard_service)):
    try:
        return await service.build(user)
    except ServiceError as e:
        raise to_http_exception(e)


@router.get("/notifications", response_model=List[Notification])
@limiter.limit("60/minute")
async def list_notifications(request: Request, user: Principal = Depends(get_current_user), service: AcademicService = Depends(get_academic_service)):
    try:
        return await service.list_notifications(user)
    except ServiceError as e:
        raise to_http_exception(e)


@router.post("/notifications/{notification_id}/read", status_code=status.HTTP_204_NO_CONTENT)
@limiter.limit("120/minute")
async def mark_notification_read(request: Request, notification_id: UUID, user: Principal = Depends(get_current_user), service: AcademicService = Depends(get_academic_service)):
    try:
        await service.mark_notification_read(user, notification_id)
    except ServiceError as e:
        raise to_http_exception(e)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
