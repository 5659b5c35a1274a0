import logging
import math
from datetime import datetime, timedelta, timezone
from typing import Optional

import asyncpg
from pydantic import BaseModel

from ..config.config import settings
from ..db.db_client import AsyncPostgresClient
from ..models.db_models import Principal, GeneralAttendance
from ..models.redis_models import PortalEvent
from .code_validator import CodeValidator
from .errors import AlreadyCheckedIn, CheckOutTooEarly, NoOpenSession, PersistenceError
from .events import EventBus

logger = logging.getLogger(__name__)


class TodayAttendance(BaseModel):
    """
    The principal's most recent general attendance row of the day and the check-out wait.

    stale_session is an earlier day's session that was never checked out. It cannot be
    closed any more because check-out only looks at the current UTC day.
    """
    record: Optional[GeneralAttendance] = None
    stale_session: Optional[GeneralAttendance] = None
    remaining_seconds: float = 0
    remaining_hours: int = 0
    remaining_minutes: int = 0
    can_check_out: bool = False

    @property
    def is_checked_in(self) -> bool:
        return self.record is not None and self.record.check_out_time is None


class GeneralAttendanceService:
    """
    Check-in/check-out state machine for general (non-course) attendance codes.

    Per principal and calendar day: NoSession -> CheckedIn -> CheckedOut -> CheckedIn ...
    Only one session may be open at a time; the store's partial unique index backs that
    up when two check-ins race. Check-out requires the minimum dwell time to have passed.
    """

    def __init__(self, db_client: AsyncPostgresClient, validator: Optional[CodeValidator] = None,
                 event_bus: Optional[EventBus] = None, min_dwell: Optional[timedelta] = None):
        self.db_client = db_client
        self.validator = validator or CodeValidator(db_client)
        self.event_bus = event_bus
        self.min_dwell = min_dwell if min_dwell is not None else timedelta(hours=settings.MIN_DWELL_HOURS)

    async def _publish(self, topic: str, principal: Principal, record: GeneralAttendance):
        if self.event_bus:
            await self.event_bus.publish(PortalEvent(
                topic=topic, actor_id=principal.id,
                payload={"attendance_id": str(record.id), "attendance_date": record.attendance_date.isoformat()}
            ))

    async def _get_open_session(self, principal: Principal, now: datetime) -> Optional[GeneralAttendance]:
        try:
            return await self.db_client.get_open_general_attendance(principal.id, now.date())
        except Exception as e:
            logger.error(f"Database error while reading open session of '{principal.id}'.", exc_info=True)
            raise PersistenceError("A database error occurred while reading your attendance.") from e

    async def check_in(self, principal: Optional[Principal], code: str, now: Optional[datetime] = None) -> GeneralAttendance:
        now = now or datetime.now(timezone.utc)
        qr_code = await self.validator.validate_general_code(code, principal)

        if await self._get_open_session(principal, now):
            logger.warning(f"Principal '{principal.id}' tried to check in while a session is open.")
            raise AlreadyCheckedIn("You are already checked in. Please check out first.")

        try:
            record = await self.db_client.add_general_attendance(
                user_id=principal.id,
                qr_code_id=qr_code.id,
                user_type=principal.role,
                attendance_date=now.date(),
                check_in_time=now,
            )
        except asyncpg.UniqueViolationError:
            logger.warning(f"Concurrent check-in for '{principal.id}' rejected by the open-session index.")
            raise AlreadyCheckedIn("You are already checked in. Please check out first.")
        except Exception as e:
            logger.error(f"Error while checking in '{principal.id}'.", exc_info=True)
            raise PersistenceError("A database error occurred while recording your check-in.") from e

        logger.info(f"Principal '{principal.id}' checked in with code '{qr_code.name}'.")
        await self._publish("attendance.checked_in", principal, record)
        return record

    async def check_out(self, principal: Principal, now: Optional[datetime] = None) -> GeneralAttendance:
        now = now or datetime.now(timezone.utc)

        open_session = await self._get_open_session(principal, now)
        if open_session is None:
            raise NoOpenSession("You are not checked in.")

        elapsed = now - open_session.check_in_time
        if elapsed < self.min_dwell:
            hours, minutes = self._split_remaining(self.min_dwell - elapsed)
            logger.warning(f"Principal '{principal.id}' tried to check out after {elapsed}.")
            raise CheckOutTooEarly(f"You can check out in {hours}h {minutes}m.")

        try:
            record = await self.db_client.close_general_attendance(open_session.id, now)
        except Exception as e:
            logger.error(f"Error while checking out '{principal.id}'.", exc_info=True)
            raise PersistenceError("A database error occurred while recording your check-out.") from e

        # Closed by a parallel request between the read and the update.
        if record is None:
            raise NoOpenSession("You are not checked in.")

        logger.info(f"Principal '{principal.id}' checked out after {elapsed}.")
        await self._publish("attendance.checked_out", principal, record)
        return record

    async def get_today(self, principal: Principal, now: Optional[datetime] = None) -> TodayAttendance:
        now = now or datetime.now(timezone.utc)
        try:
            record = await self.db_client.get_latest_general_attendance(principal.id, now.date())
            stale = await self.db_client.get_stale_open_general_attendance(principal.id, now.date())
        except Exception as e:
            logger.error(f"Database error while reading today's attendance of '{principal.id}'.", exc_info=True)
            raise PersistenceError("A database error occurred while reading your attendance.") from e

        if record is None or record.check_out_time is not None:
            return TodayAttendance(record=record, stale_session=stale)

        remaining = max(timedelta(0), record.check_in_time + self.min_dwell - now)
        hours, minutes = self._split_remaining(remaining)
        return TodayAttendance(
            record=record,
            stale_session=stale,
            remaining_seconds=remaining.total_seconds(),
            remaining_hours=hours,
            remaining_minutes=minutes,
            can_check_out=remaining == timedelta(0),
        )

    @staticmethod
    def _split_remaining(remaining: timedelta):
        """Whole hours and minutes for display; a started minute counts as a full one."""
        total_minutes = math.ceil(remaining.total_seconds() / 60)
        return divmod(total_minutes, 60)
