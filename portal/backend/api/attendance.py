from fastapi import APIRouter, Depends, Request, status

from ..models.db_models import Principal
from ..services.errors import ServiceError
from ..services.general_attendance_service import GeneralAttendanceService
from ..services.course_attendance_service import CourseAttendanceService
from ..services.qr_code_service import QRCodeService
from .auth import get_current_user
from .dependencies import get_general_attendance_service, get_course_attendance_service, get_qr_code_service
from .errors import to_http_exception
from .schemas.attendance import (
    CodeSubmitRequest, GeneralAttendanceResponse, TodayAttendanceResponse,
    CourseCodeRequest, CourseCodeResponse, CourseAttendanceResponse,
)
from .utilities.limiter import limiter

router = APIRouter(prefix="/attendance", tags=["Attendance"])


# === General codes: check-in / check-out ===

@router.post("/general/check-in", response_model=GeneralAttendanceResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit("30/minute")
async def check_in(request: Request, submit_request: CodeSubmitRequest, user: Principal = Depends(get_current_user), service: GeneralAttendanceService = Depends(get_general_attendance_service)):
    try:
        return await service.check_in(user, submit_request.code)
    except ServiceError as e:
        raise to_http_exception(e)


@router.post("/general/check-out", response_model=GeneralAttendanceResponse)
@limiter.limit("30/minute")
async def check_out(request: Request, user: Principal = Depends(get_current_user), service: GeneralAttendanceService = Depends(get_general_attendance_service)):
    try:
        return await service.check_out(user)
    except ServiceError as e:
        raise to_http_exception(e)


@router.get("/general/today", response_model=TodayAttendanceResponse, summary="Today's session and the remaining wait before check-out")
@limiter.limit("120/minute")
async def get_today(request: Request, user: Principal = Depends(get_current_user), service: GeneralAttendanceService = Depends(get_general_attendance_service)):
    try:
        today = await service.get_today(user)
    except ServiceError as e:
        raise to_http_exception(e)
    return TodayAttendanceResponse(
        record=GeneralAttendanceResponse.model_validate(today.record) if today.record else None,
        stale_session=GeneralAttendanceResponse.model_validate(today.stale_session) if today.stale_session else None,
        is_checked_in=today.is_checked_in,
        can_check_out=today.can_check_out,
        remaining_seconds=today.remaining_seconds,
        remaining_hours=today.remaining_hours,
        remaining_minutes=today.remaining_minutes,
    )


# === Course codes ===

@router.post("/course/codes", response_model=CourseCodeResponse, status_code=status.HTTP_201_CREATED, summary="Generate today's attendance code for a course")
@limiter.limit("30/minute")
async def generate_course_code(request: Request, code_request: CourseCodeRequest, user: Principal = Depends(get_current_user), service: QRCodeService = Depends(get_qr_code_service)):
    try:
        code = await service.generate_course_code(user, code_request.course_id)
    except ServiceError as e:
        raise to_http_exception(e)
    return CourseCodeResponse(course_id=code_request.course_id, code=code)


@router.post("/course/mark", response_model=CourseAttendanceResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit("30/minute")
async def mark_course_attendance(request: Request, submit_request: CodeSubmitRequest, user: Principal = Depends(get_current_user), service: CourseAttendanceService = Depends(get_course_attendance_service)):
    try:
        return await service.mark(user, submit_request.code)
    except ServiceError as e:
        raise to_http_exception(e)
