import logging
from datetime import datetime, timezone
from typing import List, Optional
from uuid import UUID

import asyncpg

from ..db.db_client import AsyncPostgresClient
from ..models.db_models import Principal, Role, Certificate, CertificateVerification
from ..models.redis_models import PortalEvent
from ..tools.codes import generate_certificate_number
from .errors import Forbidden, InvalidInput, NotFound, PersistenceError
from .events import EventBus

logger = logging.getLogger(__name__)

VALID_GRADES = ("A", "B", "C", "D", "F")


class CertificateService:
    def __init__(self, db_client: AsyncPostgresClient, event_bus: Optional[EventBus] = None):
        self.db_client = db_client
        self.event_bus = event_bus

    async def issue(self, principal: Principal, student_id: UUID, course_id: UUID,
                    grade: Optional[str] = None, now: Optional[datetime] = None) -> Certificate:
        """Issues a certificate and notifies the student. Certificates are never changed afterwards."""
        if principal.role not in (Role.ADMIN, Role.STAFF):
            raise Forbidden("Only admins and staff can issue certificates.")
        if grade is not None and grade not in VALID_GRADES:
            raise InvalidInput(f"Grade must be one of {', '.join(VALID_GRADES)}.")

        now = now or datetime.now(timezone.utc)
        try:
            student = await self.db_client.get_student(student_id)
            course = await self.db_client.get_course(course_id)
        except Exception as e:
            logger.error("Database error while loading certificate details.", exc_info=True)
            raise PersistenceError("A database error occurred while issuing the certificate.") from e
        if student is None:
            raise NotFound("Student not found.")
        if course is None:
            raise NotFound("Course not found.")

        try:
            certificate = await self.db_client.add_certificate(
                certificate_number=generate_certificate_number(now),
                student_id=student.id,
                course_id=course.id,
                grade=grade,
                issue_date=now.date(),
            )
        except asyncpg.UniqueViolationError as e:
            logger.warning(f"Certificate number collision at {now.isoformat()}.")
            raise PersistenceError("Certificate number already in use, please try again.") from e
        except Exception as e:
            logger.error("Error while issuing a certificate.", exc_info=True)
            raise PersistenceError("A database error occurred while issuing the certificate.") from e

        try:
            await self.db_client.add_notification(
                user_id=student.user_id,
                title="Certificate issued",
                message=f"Your certificate {certificate.certificate_number} for '{course.name}' is ready.",
            )
        except Exception:
            # The certificate stands on its own, a missing notification is only logged.
            logger.error(f"Could not notify student {student.id} about {certificate.certificate_number}.", exc_info=True)

        logger.info(f"Certificate {certificate.certificate_number} issued to {student.student_number}.")
        if self.event_bus:
            await self.event_bus.publish(PortalEvent(
                topic="certificate.issued", actor_id=principal.id,
                payload={"certificate_number": certificate.certificate_number, "student_id": str(student.id)}
            ))
        return certificate

    async def verify(self, certificate_number: str) -> Optional[CertificateVerification]:
        """Public lookup by number. An unknown number is a normal outcome and returns None."""
        number = (certificate_number or "").strip().upper()
        if not number:
            return None
        try:
            return await self.db_client.get_certificate_verification(number)
        except Exception as e:
            logger.error(f"Database error while verifying certificate '{number}'.", exc_info=True)
            raise PersistenceError("A database error occurred while verifying the certificate.") from e

    async def list_for_student(self, principal: Principal) -> List[Certificate]:
        try:
            student = await self.db_client.get_student_by_user(principal.id)
            if student is None:
                return []
            return await self.db_client.get_certificates_for_student(student.id)
        except Exception as e:
            logger.error(f"Database error while listing certificates of '{principal.id}'.", exc_info=True)
            raise PersistenceError("A database error occurred while loading certificates.") from e
