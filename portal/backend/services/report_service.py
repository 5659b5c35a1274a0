import logging
from datetime import date
from typing import List, Optional

from ..db.db_client import AsyncPostgresClient
from ..models.db_models import Principal, Role, AttendanceReportRow
from .errors import Forbidden, PersistenceError

logger = logging.getLogger(__name__)


class ReportService:
    def __init__(self, db_client: AsyncPostgresClient):
        self.db_client = db_client

    async def attendance_report(self, principal: Principal, attendance_date: Optional[date] = None,
                                user_type: Optional[Role] = None) -> List[AttendanceReportRow]:
        """General attendance rows with names and code names, newest check-in first."""
        if principal.role != Role.ADMIN:
            raise Forbidden("Only admins can view attendance reports.")
        try:
            return await self.db_client.get_general_attendance_report(attendance_date, user_type)
        except Exception as e:
            logger.error("Database error while building the attendance report.", exc_info=True)
            raise PersistenceError("A database error occurred while building the report.") from e
