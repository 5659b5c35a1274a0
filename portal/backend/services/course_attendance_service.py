import logging
from datetime import datetime, timezone
from typing import Optional

import asyncpg

from ..db.db_client import AsyncPostgresClient
from ..models.db_models import Principal, CourseAttendance
from ..models.redis_models import PortalEvent
from .code_validator import CodeValidator
from .errors import AlreadyMarked, Forbidden, PersistenceError, Unauthenticated
from .events import EventBus

logger = logging.getLogger(__name__)


class CourseAttendanceService:
    """One-shot 'present' marks for course-scoped codes. There is no check-out."""

    def __init__(self, db_client: AsyncPostgresClient, validator: Optional[CodeValidator] = None,
                 event_bus: Optional[EventBus] = None):
        self.db_client = db_client
        self.validator = validator or CodeValidator(db_client)
        self.event_bus = event_bus

    async def mark(self, principal: Optional[Principal], code: str, now: Optional[datetime] = None) -> CourseAttendance:
        """
        Records the principal's presence in the course embedded in the code, for today.

        Only the code's shape and the course it names are checked; the date segment is
        not compared with today and enrollment is not required.
        """
        now = now or datetime.now(timezone.utc)
        parsed = self.validator.parse_course_code(code)

        if principal is None:
            raise Unauthenticated("You must be logged in to mark attendance.")

        try:
            student = await self.db_client.get_student_by_user(principal.id)
        except Exception as e:
            logger.error(f"Database error while loading the student record of '{principal.id}'.", exc_info=True)
            raise PersistenceError("A database error occurred while marking attendance.") from e
        if student is None:
            logger.warning(f"Principal '{principal.id}' ({principal.role.value}) tried to mark course attendance.")
            raise Forbidden("Only students can mark course attendance.")

        course = await self.validator.resolve_course(parsed)
        today = now.date()

        try:
            existing = await self.db_client.get_course_attendance(student.id, course.id, today)
        except Exception as e:
            logger.error("Database error while checking for an existing attendance mark.", exc_info=True)
            raise PersistenceError("A database error occurred while marking attendance.") from e
        if existing:
            raise AlreadyMarked("Attendance already marked for today.")

        try:
            record = await self.db_client.add_course_attendance(
                student_id=student.id,
                course_id=course.id,
                attendance_date=today,
                status="present",
                qr_code=parsed.raw,
            )
        except asyncpg.UniqueViolationError:
            raise AlreadyMarked("Attendance already marked for today.")
        except Exception as e:
            logger.error(f"Error while marking attendance of student {student.id} for course {course.id}.", exc_info=True)
            raise PersistenceError("A database error occurred while marking attendance.") from e

        logger.info(f"Student {student.student_number} marked present in '{course.name}'.")
        if self.event_bus:
            await self.event_bus.publish(PortalEvent(
                topic="attendance.marked", actor_id=principal.id,
                payload={"attendance_id": str(record.id), "course_id": str(course.id)}
            ))
        return record
