from pydantic import BaseModel, ConfigDict, Field
from uuid import UUID
from datetime import date, datetime
from typing import Optional

from ...models.db_models import Role


class CodeSubmitRequest(BaseModel):
    """A scanned or typed attendance code."""
    code: str = Field(..., min_length=1)


class GeneralAttendanceResponse(BaseModel):
    id: UUID
    qr_code_id: UUID
    user_type: Role
    attendance_date: date
    check_in_time: datetime
    check_out_time: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class TodayAttendanceResponse(BaseModel):
    record: Optional[GeneralAttendanceResponse] = None
    stale_session: Optional[GeneralAttendanceResponse] = None
    is_checked_in: bool = False
    can_check_out: bool = False
    remaining_seconds: float = 0
    remaining_hours: int = 0
    remaining_minutes: int = 0


class CourseCodeRequest(BaseModel):
    course_id: UUID


class CourseCodeResponse(BaseModel):
    course_id: UUID
    code: str


class CourseAttendanceResponse(BaseModel):
    id: UUID
    course_id: UUID
    attendance_date: date
    status: str
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)
