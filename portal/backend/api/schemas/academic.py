from pydantic import BaseModel, Field
from uuid import UUID
from datetime import datetime, time
from typing import Optional


class CourseCreateRequest(BaseModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    duration_weeks: Optional[int] = Field(None, gt=0)
    max_students: Optional[int] = Field(None, gt=0)
    instructor_id: Optional[UUID] = Field(None, description="Id of the staff record teaching the course.")


class ScheduleCreateRequest(BaseModel):
    day_of_week: int = Field(..., ge=0, le=6, description="0 = Sunday ... 6 = Saturday")
    start_time: time
    end_time: time
    room: Optional[str] = None


class ExamCreateRequest(BaseModel):
    title: str = Field(..., min_length=1)
    exam_date: Optional[datetime] = None
    duration_minutes: Optional[int] = Field(None, gt=0)
    total_marks: Optional[int] = Field(None, gt=0)


class ExamResultCreateRequest(BaseModel):
    student_id: UUID
    score: float = Field(..., ge=0)
