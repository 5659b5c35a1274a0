import logging
from datetime import date
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from ..models.db_models import Principal, Role, AttendanceReportRow
from ..services.errors import ServiceError, Unauthorized
from ..services.provisioning_service import ProvisioningService
from ..services.qr_code_service import QRCodeService
from ..services.report_service import ReportService
from .auth import get_current_user, get_optional_user
from .dependencies import get_provisioning_service, get_qr_code_service, get_report_service
from .errors import error_response, to_http_exception
from .schemas.admin import (
    RegisterUserRequest, CleanupRequest, GeneralCodeCreateRequest, GeneralCodeUpdateRequest, GeneralCodeResponse,
)
from .utilities.limiter import limiter

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["Admin"])


def _verify_admin_role(user: Principal):
    if user.role != Role.ADMIN:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="This operation is only valid for admins.")


async def _read_body(request: Request, model):
    """Parses the raw JSON body; privileged operations answer bad bodies with a plain '{error}'."""
    try:
        return model.model_validate(await request.json())
    except (ValueError, ValidationError) as e:
        logger.warning(f"Rejected privileged request body: {e}")
        return None


# === Privileged operations ===

@router.post("/register-user", summary="Create a login-capable user with a role and domain record")
@limiter.limit("20/minute")
async def register_user(
    request: Request,
    caller: Optional[Principal] = Depends(get_optional_user),
    service: ProvisioningService = Depends(get_provisioning_service)
):
    try:
        if caller is None:
            raise Unauthorized("Unauthorized")
        await service.require_admin(caller.id)

        payload = await _read_body(request, RegisterUserRequest)
        if payload is None:
            return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": "Missing required fields"})

        user = await service.register_user(
            caller_id=caller.id,
            email=payload.email,
            password=payload.password,
            full_name=payload.full_name,
            role=payload.role,
            course_ids=payload.course_ids,
        )
        return {"success": True, "user": {"id": str(user.id), "email": user.email}}
    except ServiceError as e:
        return error_response(e)
    except Exception:
        logger.error("Unexpected error while registering a user.", exc_info=True)
        return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content={"error": "Internal server error"})


@router.post("/cleanup-users", summary="Remove incomplete registrations or a single user")
@limiter.limit("10/minute")
async def cleanup_users(
    request: Request,
    caller: Optional[Principal] = Depends(get_optional_user),
    service: ProvisioningService = Depends(get_provisioning_service)
):
    try:
        if caller is None:
            raise Unauthorized("Unauthorized")
        await service.require_admin(caller.id)

        payload = await _read_body(request, CleanupRequest)
        if payload is None:
            return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": "Invalid action"})

        if payload.action == "cleanup_incomplete":
            result = await service.cleanup_incomplete(caller.id)
        else:
            result = await service.delete_user(caller.id, payload.user_id)
        return {"success": True, "deletedUsers": result.deleted_users, "details": result.details}
    except ServiceError as e:
        return error_response(e)
    except Exception:
        logger.error("Unexpected error during user cleanup.", exc_info=True)
        return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content={"error": "Internal server error"})


# === General attendance codes ===

@router.get("/general-codes", response_model=List[GeneralCodeResponse])
@limiter.limit("60/minute")
async def list_general_codes(request: Request, user: Principal = Depends(get_current_user), service: QRCodeService = Depends(get_qr_code_service)):
    _verify_admin_role(user)
    try:
        return await service.list_general_codes()
    except ServiceError as e:
        raise to_http_exception(e)


@router.post("/general-codes", response_model=GeneralCodeResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit("30/minute")
async def create_general_code(request: Request, create_request: GeneralCodeCreateRequest, user: Principal = Depends(get_current_user), service: QRCodeService = Depends(get_qr_code_service)):
    try:
        return await service.create_general_code(user, create_request.name, create_request.description)
    except ServiceError as e:
        raise to_http_exception(e)


@router.patch("/general-codes/{qr_code_id}", response_model=GeneralCodeResponse, summary="Activate or deactivate a general code")
@limiter.limit("30/minute")
async def update_general_code(request: Request, qr_code_id: UUID, update_request: GeneralCodeUpdateRequest, user: Principal = Depends(get_current_user), service: QRCodeService = Depends(get_qr_code_service)):
    try:
        return await service.set_general_code_active(user, qr_code_id, update_request.is_active)
    except ServiceError as e:
        raise to_http_exception(e)


# === Reports ===

@router.get("/attendance-report", response_model=List[AttendanceReportRow])
@limiter.limit("30/minute")
async def attendance_report(
    request: Request,
    attendance_date: Optional[date] = None,
    user_type: Optional[Role] = None,
    user: Principal = Depends(get_current_user),
    service: ReportService = Depends(get_report_service)
):
    try:
        return await service.attendance_report(user, attendance_date, user_type)
    except ServiceError as e:
        raise to_http_exception(e)
