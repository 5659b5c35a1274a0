from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, Request, status

from ..models.db_models import Principal, Course, ClassSchedule, Exam, ExamResult, ExamResultView
from ..services.academic_service import AcademicService
from ..services.errors import ServiceError
from .auth import get_current_user
from .dependencies import get_academic_service
from .errors import to_http_exception
from .schemas.academic import CourseCreateRequest, ScheduleCreateRequest, ExamCreateRequest, ExamResultCreateRequest
from .utilities.limiter import limiter

router = APIRouter(tags=["Academic Records"])


@router.get("/courses", response_model=List[Course])
@limiter.limit("60/minute")
async def list_courses(request: Request, user: Principal = Depends(get_current_user), service: AcademicService = Depends(get_academic_service)):
    try:
        return await service.list_courses(user)
    except ServiceError as e:
        raise to_http_exception(e)


@router.post("/courses", response_model=Course, status_code=status.HTTP_201_CREATED)
@limiter.limit("30/minute")
async def create_course(request: Request, create_request: CourseCreateRequest, user: Principal = Depends(get_current_user), service: AcademicService = Depends(get_academic_service)):
    try:
        return await service.create_course(user, **create_request.model_dump())
    except ServiceError as e:
        raise to_http_exception(e)


@router.post("/courses/{course_id}/schedules", response_model=ClassSchedule, status_code=status.HTTP_201_CREATED)
@limiter.limit("30/minute")
async def add_schedule(request: Request, course_id: UUID, schedule_request: ScheduleCreateRequest, user: Principal = Depends(get_current_user), service: AcademicService = Depends(get_academic_service)):
    try:
        return await service.add_schedule(user, course_id, **schedule_request.model_dump())
    except ServiceError as e:
        raise to_http_exception(e)


@router.post("/courses/{course_id}/exams", response_model=Exam, status_code=status.HTTP_201_CREATED)
@limiter.limit("30/minute")
async def create_exam(request: Request, course_id: UUID, exam_request: ExamCreateRequest, user: Principal = Depends(get_current_user), service: AcademicService = Depends(get_academic_service)):
    try:
        return await service.create_exam(user, course_id, **exam_request.model_dump())
    except ServiceError as e:
        raise to_http_exception(e)


@router.post("/exams/{exam_id}/results", response_model=ExamResult, status_code=status.HTTP_201_CREATED)
@limiter.limit("60/minute")
async def record_exam_result(request: Request, exam_id: UUID, result_request: ExamResultCreateRequest, user: Principal = Depends(get_current_user), service: AcademicService = Depends(get_academic_service)):
    try:
        return await service.record_exam_result(user, exam_id, result_request.student_id, result_request.score)
    except ServiceError as e:
        raise to_http_exception(e)


@router.get("/results/mine", response_model=List[ExamResultView])
@limiter.limit("60/minute")
async def my_results(request: Request, user: Principal = Depends(get_current_user), service: AcademicService = Depends(get_academic_service)):
    try:
        return await service.list_results_for_student(user)
    except ServiceError as e:
        raise to_http_exception(e)
