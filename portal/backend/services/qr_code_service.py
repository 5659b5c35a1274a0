import logging
from datetime import datetime, timezone
from typing import List, Optional
from uuid import UUID

import asyncpg

from ..config.config import settings
from ..db.db_client import AsyncPostgresClient
from ..models.db_models import Principal, Role, GeneralQRCode
from ..models.redis_models import PortalEvent
from ..tools.codes import generate_course_code, generate_general_code
from .errors import Forbidden, InvalidInput, PersistenceError, UnknownCode
from .events import EventBus

logger = logging.getLogger(__name__)

# General codes are random, a collision with an existing code is simply retried.
_GENERAL_CODE_ATTEMPTS = 3


class QRCodeService:
    """Issues course-scoped codes and manages the admin-owned general codes."""

    def __init__(self, db_client: AsyncPostgresClient, event_bus: Optional[EventBus] = None):
        self.db_client = db_client
        self.event_bus = event_bus

    async def generate_course_code(self, principal: Principal, course_id: UUID, now: Optional[datetime] = None) -> str:
        """Builds today's code for a course. The code is handed out, never stored."""
        if principal.role == Role.STUDENT:
            raise Forbidden("Only staff, instructors and admins can generate course codes.")

        try:
            course = await self.db_client.get_course(course_id)
        except Exception as e:
            logger.error(f"Database error while loading course {course_id}.", exc_info=True)
            raise PersistenceError("A database error occurred while generating the code.") from e
        if course is None:
            raise UnknownCode("Course not found.")

        code = generate_course_code(settings.COURSE_CODE_PREFIX, str(course.id), now or datetime.now(timezone.utc))
        logger.info(f"Principal '{principal.id}' generated a code for course '{course.name}'.")
        return code

    async def create_general_code(self, principal: Principal, name: str, description: Optional[str] = None) -> GeneralQRCode:
        if principal.role != Role.ADMIN:
            raise Forbidden("Only admins can create general attendance codes.")
        if not name or not name.strip():
            raise InvalidInput("Please enter a name for the code.")

        for attempt in range(1, _GENERAL_CODE_ATTEMPTS + 1):
            code = generate_general_code(settings.GENERAL_CODE_PREFIX)
            try:
                qr_code = await self.db_client.add_general_qr_code(code, name.strip(), description, principal.id)
                break
            except asyncpg.UniqueViolationError:
                logger.warning(f"Generated general code collided (attempt {attempt}).")
            except Exception as e:
                logger.error("Error while creating a general code.", exc_info=True)
                raise PersistenceError("A database error occurred while creating the code.") from e
        else:
            raise PersistenceError("Could not generate a unique code, please try again.")

        logger.info(f"General code '{qr_code.name}' created by '{principal.id}'.")
        await self._publish("qr_code.created", principal, qr_code)
        return qr_code

    async def list_general_codes(self) -> List[GeneralQRCode]:
        try:
            return await self.db_client.get_general_qr_codes()
        except Exception as e:
            logger.error("Database error while listing general codes.", exc_info=True)
            raise PersistenceError("A database error occurred while loading the codes.") from e

    async def set_general_code_active(self, principal: Principal, qr_code_id: UUID, is_active: bool) -> GeneralQRCode:
        """Activates or deactivates a code. Codes are never deleted."""
        if principal.role != Role.ADMIN:
            raise Forbidden("Only admins can manage general attendance codes.")
        try:
            qr_code = await self.db_client.set_general_qr_code_active(qr_code_id, is_active)
        except Exception as e:
            logger.error(f"Error while toggling general code {qr_code_id}.", exc_info=True)
            raise PersistenceError("A database error occurred while updating the code.") from e
        if qr_code is None:
            raise UnknownCode("This attendance code does not exist.")

        logger.info(f"General code '{qr_code.name}' {'activated' if is_active else 'deactivated'}.")
        await self._publish("qr_code.toggled", principal, qr_code)
        return qr_code

    async def _publish(self, topic: str, principal: Principal, qr_code: GeneralQRCode):
        if self.event_bus:
            await self.event_bus.publish(PortalEvent(
                topic=topic, actor_id=principal.id,
                payload={"qr_code_id": str(qr_code.id), "is_active": qr_code.is_active}
            ))
