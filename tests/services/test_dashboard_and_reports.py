import uuid
from datetime import date, datetime, timezone
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from portal.backend.models.db_models import Course, Role, Student
from portal.backend.services.dashboard_service import DashboardService
from portal.backend.services.errors import Forbidden, PersistenceError
from portal.backend.services.report_service import ReportService

NOW = datetime(2025, 1, 1, 9, 0, tzinfo=timezone.utc)


@pytest_asyncio.fixture
async def dashboard_instance():
    mock_db_client = AsyncMock()
    mock_db_client.count_unread_notifications.return_value = 2
    return DashboardService(mock_db_client), mock_db_client


@pytest.mark.asyncio
class TestDashboardService:

    async def test_every_role_has_a_builder(self, dashboard_instance):
        service, _ = dashboard_instance
        assert set(service.builders) == set(Role)

    async def test_admin_dashboard(self, dashboard_instance, admin_principal):
        service, mock_db_client = dashboard_instance
        mock_db_client.get_portal_counts.return_value = {"students": 10, "staff": 3, "courses": 4, "active_general_codes": 1}
        mock_db_client.count_general_attendance_on.return_value = 5

        summary = await service.build(admin_principal, now=NOW)

        assert summary["role"] == "admin"
        assert summary["students"] == 10
        assert summary["checked_in_today"] == 5
        assert summary["unread_notifications"] == 2
        mock_db_client.count_general_attendance_on.assert_called_once_with(date(2025, 1, 1))

    async def test_student_dashboard(self, dashboard_instance, student_principal):
        service, mock_db_client = dashboard_instance
        student = Student(id=uuid.uuid4(), user_id=student_principal.id, student_number="STU12345678")
        course = Course(id=uuid.uuid4(), name="Algorithms")
        mock_db_client.get_student_by_user.return_value = student
        mock_db_client.get_courses_for_student.return_value = [course]
        mock_db_client.get_certificates_for_student.return_value = []
        mock_db_client.count_course_attendance_for_student.return_value = 7

        summary = await service.build(student_principal, now=NOW)

        assert summary["student_number"] == "STU12345678"
        assert summary["courses"] == [{"id": str(course.id), "name": "Algorithms"}]
        assert summary["classes_attended"] == 7
        assert summary["certificates"] == 0

    async def test_staff_dashboard_shows_open_session(self, dashboard_instance, staff_principal):
        service, mock_db_client = dashboard_instance
        mock_db_client.get_latest_general_attendance.return_value = None

        summary = await service.build(staff_principal, now=NOW)

        assert summary == {"role": "staff", "full_name": "Sam Staff", "checked_in": False, "unread_notifications": 2}

    async def test_database_failure(self, dashboard_instance, admin_principal):
        service, mock_db_client = dashboard_instance
        mock_db_client.get_portal_counts.side_effect = ConnectionError("db down")
        with pytest.raises(PersistenceError):
            await service.build(admin_principal, now=NOW)


@pytest.mark.asyncio
class TestReportService:

    async def test_report_passes_filters(self, admin_principal):
        mock_db_client = AsyncMock()
        mock_db_client.get_general_attendance_report.return_value = []

        await ReportService(mock_db_client).attendance_report(admin_principal, date(2025, 1, 1), Role.STUDENT)

        mock_db_client.get_general_attendance_report.assert_called_once_with(date(2025, 1, 1), Role.STUDENT)

    async def test_report_is_admin_only(self, staff_principal):
        mock_db_client = AsyncMock()
        with pytest.raises(Forbidden):
            await ReportService(mock_db_client).attendance_report(staff_principal)
        mock_db_client.get_general_attendance_report.assert_not_called()
