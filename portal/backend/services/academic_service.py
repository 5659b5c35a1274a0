import logging
from datetime import datetime, time
from typing import List, Optional
from uuid import UUID

from ..db.db_client import AsyncPostgresClient
from ..models.db_models import (
    Principal, Role, Course, ClassSchedule, Exam, ExamResult, ExamResultView, Notification,
)
from ..tools.codes import grade_for_score
from .errors import Forbidden, InvalidInput, NotFound, PersistenceError

logger = logging.getLogger(__name__)


class AcademicService:
    """Courses, schedules, exams, results and notifications."""

    def __init__(self, db_client: AsyncPostgresClient):
        self.db_client = db_client

    @staticmethod
    def _require_role(principal: Principal, *roles: Role):
        if principal.role not in roles:
            raise Forbidden("You do not have permission to perform this action.")

    async def create_course(self, principal: Principal, name: str, description: Optional[str] = None,
                            duration_weeks: Optional[int] = None, max_students: Optional[int] = None,
                            instructor_id: Optional[UUID] = None) -> Course:
        self._require_role(principal, Role.ADMIN)
        if not name or not name.strip():
            raise InvalidInput("Course name is required.")
        try:
            course = await self.db_client.add_course(name.strip(), description, duration_weeks, max_students, instructor_id)
        except Exception as e:
            logger.error(f"Error while creating course '{name}'.", exc_info=True)
            raise PersistenceError("A database error occurred while creating the course.") from e
        logger.info(f"Course '{course.name}' created by '{principal.id}'.")
        return course

    async def list_courses(self, principal: Principal) -> List[Course]:
        """Admins and staff see every course; instructors their own; students those they are enrolled in."""
        try:
            if principal.role == Role.STUDENT:
                student = await self.db_client.get_student_by_user(principal.id)
                return await self.db_client.get_courses_for_student(student.id) if student else []
            if principal.role == Role.INSTRUCTOR:
                staff = await self.db_client.get_staff_by_user(principal.id)
                return await self.db_client.get_courses_for_instructor(staff.id) if staff else []
            return await self.db_client.get_courses()
        except Exception as e:
            logger.error(f"Database error while listing courses for '{principal.id}'.", exc_info=True)
            raise PersistenceError("A database error occurred while loading courses.") from e

    async def _get_course(self, course_id: UUID) -> Course:
        try:
            course = await self.db_client.get_course(course_id)
        except Exception as e:
            logger.error(f"Database error while loading course {course_id}.", exc_info=True)
            raise PersistenceError("A database error occurred while loading the course.") from e
        if course is None:
            raise NotFound("Course not found.")
        return course

    async def add_schedule(self, principal: Principal, course_id: UUID, day_of_week: int,
                           start_time: time, end_time: time, room: Optional[str] = None) -> ClassSchedule:
        self._require_role(principal, Role.ADMIN, Role.STAFF, Role.INSTRUCTOR)
        if not 0 <= day_of_week <= 6:
            raise InvalidInput("Day of week must be between 0 and 6.")
        if start_time >= end_time:
            raise InvalidInput("Start time must be before end time.")
        course = await self._get_course(course_id)
        try:
            return await self.db_client.add_class_schedule(course.id, day_of_week, start_time, end_time, room)
        except Exception as e:
            logger.error(f"Error while adding a schedule to course {course.id}.", exc_info=True)
            raise PersistenceError("A database error occurred while saving the schedule.") from e

    async def create_exam(self, principal: Principal, course_id: UUID, title: str,
                          exam_date: Optional[datetime] = None, duration_minutes: Optional[int] = None,
                          total_marks: Optional[int] = None) -> Exam:
        self._require_role(principal, Role.ADMIN, Role.STAFF, Role.INSTRUCTOR)
        if not title or not title.strip():
            raise InvalidInput("Exam title is required.")
        if total_marks is not None and total_marks <= 0:
            raise InvalidInput("Total marks must be positive.")
        course = await self._get_course(course_id)
        try:
            return await self.db_client.add_exam(course.id, title.strip(), exam_date, duration_minutes, total_marks)
        except Exception as e:
            logger.error(f"Error while creating exam for course {course.id}.", exc_info=True)
            raise PersistenceError("A database error occurred while creating the exam.") from e

    async def record_exam_result(self, principal: Principal, exam_id: UUID, student_id: UUID, score: float) -> ExamResult:
        """Stores a score and the grade derived from it; recording again overwrites the previous result."""
        self._require_role(principal, Role.ADMIN, Role.STAFF, Role.INSTRUCTOR)
        try:
            exam = await self.db_client.get_exam(exam_id)
            student = await self.db_client.get_student(student_id)
        except Exception as e:
            logger.error(f"Database error while loading exam {exam_id}.", exc_info=True)
            raise PersistenceError("A database error occurred while recording the result.") from e
        if exam is None:
            raise NotFound("Exam not found.")
        if student is None:
            raise NotFound("Student not found.")

        total = exam.total_marks or 100
        if score < 0 or score > total:
            raise InvalidInput(f"Score must be between 0 and {total}.")

        grade = grade_for_score(score, exam.total_marks)
        try:
            result = await self.db_client.upsert_exam_result(student.id, exam.id, score, grade)
        except Exception as e:
            logger.error(f"Error while recording a result for exam {exam.id}.", exc_info=True)
            raise PersistenceError("A database error occurred while recording the result.") from e
        logger.info(f"Result {score}/{total} ({grade}) recorded for {student.student_number} on '{exam.title}'.")
        return result

    async def list_results_for_student(self, principal: Principal) -> List[ExamResultView]:
        try:
            student = await self.db_client.get_student_by_user(principal.id)
            if student is None:
                return []
            return await self.db_client.get_exam_results_for_student(student.id)
        except Exception as e:
            logger.error(f"Database error while listing results of '{principal.id}'.", exc_info=True)
            raise PersistenceError("A database error occurred while loading results.") from e

    async def list_notifications(self, principal: Principal) -> List[Notification]:
        try:
            return await self.db_client.get_notifications(principal.id)
        except Exception as e:
            logger.error(f"Database error while listing notifications of '{principal.id}'.", exc_info=True)
            raise PersistenceError("A database error occurred while loading notifications.") from e

    async def mark_notification_read(self, principal: Principal, notification_id: UUID) -> None:
        try:
            updated = await self.db_client.mark_notification_read(notification_id, principal.id)
        except Exception as e:
            logger.error(f"Database error while updating notification {notification_id}.", exc_info=True)
            raise PersistenceError("A database error occurred while updating the notification.") from e
        if not updated:
            raise NotFound("Notification not found.")
