# portal/backend/models/db_models.py

from enum import Enum
from pydantic import BaseModel, Field
from datetime import datetime, date, time
from typing import Optional
from uuid import UUID


class Role(str, Enum):
    """The single authorization signal of a principal, stored in 'user_roles'."""
    ADMIN = "admin"
    STAFF = "staff"
    INSTRUCTOR = "instructor"
    STUDENT = "student"

    @property
    def is_staff_member(self) -> bool:
        return self in (Role.STAFF, Role.INSTRUCTOR)


class Principal(BaseModel):
    """
    An authenticated user: the 'profiles' row joined with its 'user_roles' row.
    The id is the identity provider's user id.
    """
    id: UUID = Field(..., description="Identity id, also the primary key of 'profiles'")
    email: str
    full_name: Optional[str] = None
    role: Role


class Student(BaseModel):
    """Represents a row of the 'students' table."""
    id: UUID
    user_id: UUID = Field(..., description="FK to the principal this record belongs to")
    student_number: str = Field(..., description="Unique, 'STU' followed by 8 digits")
    enrollment_date: Optional[date] = None
    registered_by: Optional[UUID] = Field(None, description="Admin who provisioned the student")


class Staff(BaseModel):
    """Represents a row of the 'staff' table (staff members and instructors)."""
    id: UUID
    user_id: UUID
    department: Optional[str] = None
    position: Optional[str] = None
    hire_date: Optional[date] = None


class Course(BaseModel):
    id: UUID
    name: str
    description: Optional[str] = None
    duration_weeks: Optional[int] = None
    max_students: Optional[int] = None
    instructor_id: Optional[UUID] = Field(None, description="FK to 'staff', at most one per course")
    created_at: Optional[datetime] = None


class Enrollment(BaseModel):
    """Represents a row of 'student_courses'."""
    id: UUID
    student_id: UUID
    course_id: UUID
    status: str = "active"
    enrollment_date: Optional[date] = None


class ClassSchedule(BaseModel):
    id: UUID
    course_id: UUID
    day_of_week: int = Field(..., ge=0, le=6)
    start_time: time
    end_time: time
    room: Optional[str] = None


class Exam(BaseModel):
    id: UUID
    course_id: UUID
    title: str
    exam_date: Optional[datetime] = None
    duration_minutes: Optional[int] = None
    total_marks: Optional[int] = None


class ExamResult(BaseModel):
    id: UUID
    student_id: UUID
    exam_id: UUID
    score: float
    grade: str


class CourseAttendance(BaseModel):
    """
    Represents a row of the per-course 'attendance' table.
    One row per (student, course, date); qr_code keeps the raw code that was used.
    """
    id: UUID
    student_id: UUID
    course_id: UUID
    attendance_date: date
    status: str = Field("present", description="present, absent or late")
    qr_code: Optional[str] = None
    created_at: Optional[datetime] = None


class GeneralQRCode(BaseModel):
    """A long-lived, admin-managed attendance code. Never expires; only deactivated."""
    id: UUID
    code: str
    name: str
    description: Optional[str] = None
    is_active: bool = True
    created_by: Optional[UUID] = None
    created_at: Optional[datetime] = None


class GeneralAttendance(BaseModel):
    """
    One check-in event against a general code.
    A null check_out_time marks the session as open.
    """
    id: UUID
    user_id: UUID
    qr_code_id: UUID
    user_type: Role
    attendance_date: date
    check_in_time: datetime
    check_out_time: Optional[datetime] = None


class Certificate(BaseModel):
    """Immutable once issued."""
    id: UUID
    certificate_number: str
    student_id: UUID
    course_id: UUID
    grade: Optional[str] = None
    issue_date: date


class Notification(BaseModel):
    id: UUID
    user_id: UUID
    title: str
    message: str
    read: bool = False
    created_at: Optional[datetime] = None


# --- Joined projections used by read-only views ---

class ExamResultView(ExamResult):
    """An exam result with the exam and course it belongs to."""
    exam_title: str
    total_marks: Optional[int] = None
    course_name: str


class AttendanceReportRow(BaseModel):
    """A general attendance row enriched with the principal's name and the code's name."""
    id: UUID
    user_id: UUID
    user_type: Role
    attendance_date: date
    check_in_time: datetime
    check_out_time: Optional[datetime] = None
    qr_code_name: str = "Unknown"
    user_name: str = "Unknown"
    user_email: str = "Unknown"


class CertificateVerification(BaseModel):
    """Public view of a certificate: who earned it, for which course, and when."""
    certificate_number: str
    student_name: Optional[str] = None
    student_number: str
    course_name: str
    grade: Optional[str] = None
    issue_date: date
