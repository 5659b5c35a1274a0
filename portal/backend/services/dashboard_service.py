import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional

from ..db.db_client import AsyncPostgresClient
from ..models.db_models import Principal, Role
from .errors import PersistenceError

logger = logging.getLogger(__name__)

DashboardBuilder = Callable[[Principal, datetime], Awaitable[Dict[str, Any]]]


class DashboardService:
    """
    Builds the landing summary for a principal. The builder is picked from the principal's
    role once; every role in Role has exactly one builder.
    """

    def __init__(self, db_client: AsyncPostgresClient):
        self.db_client = db_client
        self.builders: Dict[Role, DashboardBuilder] = {
            Role.ADMIN: self._admin_dashboard,
            Role.STAFF: self._staff_dashboard,
            Role.INSTRUCTOR: self._instructor_dashboard,
            Role.STUDENT: self._student_dashboard,
        }

    async def build(self, principal: Principal, now: Optional[datetime] = None) -> Dict[str, Any]:
        now = now or datetime.now(timezone.utc)
        builder = self.builders[principal.role]
        try:
            summary = await builder(principal, now)
            summary["unread_notifications"] = await self.db_client.count_unread_notifications(principal.id)
        except Exception as e:
            logger.error(f"Database error while building the dashboard of '{principal.id}'.", exc_info=True)
            raise PersistenceError("A database error occurred while loading the dashboard.") from e
        return {"role": principal.role.value, "full_name": principal.full_name, **summary}

    async def _admin_dashboard(self, principal: Principal, now: datetime) -> Dict[str, Any]:
        counts = await self.db_client.get_portal_counts()
        counts["checked_in_today"] = await self.db_client.count_general_attendance_on(now.date())
        return counts

    async def _staff_dashboard(self, principal: Principal, now: datetime) -> Dict[str, Any]:
        latest = await self.db_client.get_latest_general_attendance(principal.id, now.date())
        return {"checked_in": latest is not None and latest.check_out_time is None}

    async def _instructor_dashboard(self, principal: Principal, now: datetime) -> Dict[str, Any]:
        summary = await self._staff_dashboard(principal, now)
        staff = await self.db_client.get_staff_by_user(principal.id)
        courses = await self.db_client.get_courses_for_instructor(staff.id) if staff else []
        summary["courses"] = [{"id": str(course.id), "name": course.name} for course in courses]
        return summary

    async def _student_dashboard(self, principal: Principal, now: datetime) -> Dict[str, Any]:
        student = await self.db_client.get_student_by_user(principal.id)
        if student is None:
            return {"student_number": None, "courses": [], "classes_attended": 0, "certificates": 0}
        courses = await self.db_client.get_courses_for_student(student.id)
        certificates = await self.db_client.get_certificates_for_student(student.id)
        return {
            "student_number": student.student_number,
            "courses": [{"id": str(course.id), "name": course.name} for course in courses],
            "classes_attended": await self.db_client.count_course_attendance_for_student(student.id),
            "certificates": len(certificates),
        }
