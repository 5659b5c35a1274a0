import uuid
from datetime import date, datetime, timezone
from unittest.mock import AsyncMock

import asyncpg
import pytest
import pytest_asyncio

from portal.backend.models.db_models import Course, CourseAttendance, Student
from portal.backend.services.code_validator import CodeValidator
from portal.backend.services.course_attendance_service import CourseAttendanceService
from portal.backend.services.errors import (
    AlreadyMarked, Forbidden, MalformedCode, PersistenceError, Unauthenticated, UnknownCode,
)
from portal.backend.services.events import EventBus

NOW = datetime(2025, 1, 1, 10, 0, tzinfo=timezone.utc)


@pytest.fixture
def course() -> Course:
    return Course(id=uuid.uuid4(), name="Course 1")


@pytest.fixture
def student(student_principal) -> Student:
    return Student(id=uuid.uuid4(), user_id=student_principal.id, student_number="STU12345678")


@pytest_asyncio.fixture
async def service_instance():
    mock_db_client = AsyncMock()
    service = CourseAttendanceService(mock_db_client, validator=CodeValidator(mock_db_client, course_prefix="PFX"),
                                      event_bus=EventBus())
    return service, mock_db_client


def mark_row(student, course, code) -> CourseAttendance:
    return CourseAttendance(id=uuid.uuid4(), student_id=student.id, course_id=course.id,
                            attendance_date=NOW.date(), status="present", qr_code=code)


@pytest.mark.asyncio
class TestCourseAttendanceService:

    async def test_scenario_same_code_twice_same_day(self, service_instance, student_principal, student, course):
        """
        The second submission of the same code on the same day is AlreadyMarked.

        The course segment is the UUID primary key of the course, so a code naming a
        course like "course-1" is rejected as UnknownCode before any lookup. The date segment
        of the code is not compared with today; a 2025-01-01 code marks attendance for
        whatever day it is submitted on.
        """
        service, mock_db_client = service_instance
        code = f"PFX-{course.id}-2025-01-01-abc123"
        mock_db_client.get_student_by_user.return_value = student
        mock_db_client.get_course.return_value = course
        mock_db_client.get_course_attendance.return_value = None
        mock_db_client.add_course_attendance.return_value = mark_row(student, course, code)

        record = await service.mark(student_principal, code, now=NOW)

        assert record.status == "present"
        mock_db_client.add_course_attendance.assert_called_once_with(
            student_id=student.id, course_id=course.id, attendance_date=date(2025, 1, 1),
            status="present", qr_code=code,
        )

        mock_db_client.get_course_attendance.return_value = record
        with pytest.raises(AlreadyMarked):
            await service.mark(student_principal, code, now=NOW)
        assert mock_db_client.add_course_attendance.call_count == 1

    async def test_unique_violation_is_already_marked(self, service_instance, student_principal, student, course):
        service, mock_db_client = service_instance
        mock_db_client.get_student_by_user.return_value = student
        mock_db_client.get_course.return_value = course
        mock_db_client.get_course_attendance.return_value = None
        mock_db_client.add_course_attendance.side_effect = asyncpg.UniqueViolationError("duplicate key")

        with pytest.raises(AlreadyMarked):
            await service.mark(student_principal, f"PFX-{course.id}-2025-01-01-abc123", now=NOW)

    async def test_code_date_is_not_compared_with_today(self, service_instance, student_principal, student, course):
        """Course codes are not stored; an old but well-formed code still marks today's attendance."""
        service, mock_db_client = service_instance
        code = f"PFX-{course.id}-2024-06-30-zzz"
        mock_db_client.get_student_by_user.return_value = student
        mock_db_client.get_course.return_value = course
        mock_db_client.get_course_attendance.return_value = None
        mock_db_client.add_course_attendance.return_value = mark_row(student, course, code)

        await service.mark(student_principal, code, now=NOW)

        assert mock_db_client.add_course_attendance.call_args.kwargs["attendance_date"] == NOW.date()

    async def test_malformed_code(self, service_instance, student_principal):
        service, mock_db_client = service_instance

        with pytest.raises(MalformedCode):
            await service.mark(student_principal, "WEBCAPZ-GEN-AB12CD34", now=NOW)
        mock_db_client.get_student_by_user.assert_not_called()

    async def test_anonymous_caller(self, service_instance, course):
        service, _ = service_instance
        with pytest.raises(Unauthenticated):
            await service.mark(None, f"PFX-{course.id}-2025-01-01-abc123", now=NOW)

    async def test_non_student_is_forbidden(self, service_instance, staff_principal, course):
        service, mock_db_client = service_instance
        mock_db_client.get_student_by_user.return_value = None

        with pytest.raises(Forbidden):
            await service.mark(staff_principal, f"PFX-{course.id}-2025-01-01-abc123", now=NOW)
        mock_db_client.add_course_attendance.assert_not_called()

    async def test_unknown_course(self, service_instance, student_principal, student):
        service, mock_db_client = service_instance
        mock_db_client.get_student_by_user.return_value = student
        mock_db_client.get_course.return_value = None

        with pytest.raises(UnknownCode):
            await service.mark(student_principal, f"PFX-{uuid.uuid4()}-2025-01-01-abc123", now=NOW)

    async def test_non_uuid_course_segment_is_unknown(self, service_instance, student_principal, student):
        service, mock_db_client = service_instance
        mock_db_client.get_student_by_user.return_value = student

        with pytest.raises(UnknownCode):
            await service.mark(student_principal, "PFX-course-1-2025-01-01-abc123", now=NOW)
        mock_db_client.get_course.assert_not_called()
        mock_db_client.add_course_attendance.assert_not_called()

    async def test_write_failure(self, service_instance, student_principal, student, course):
        service, mock_db_client = service_instance
        mock_db_client.get_student_by_user.return_value = student
        mock_db_client.get_course.return_value = course
        mock_db_client.get_course_attendance.return_value = None
        mock_db_client.add_course_attendance.side_effect = ConnectionError("db down")

        with pytest.raises(PersistenceError):
            await service.mark(student_principal, f"PFX-{course.id}-2025-01-01-abc123", now=NOW)
