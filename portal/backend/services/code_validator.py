import logging
from typing import Optional
from uuid import UUID

from ..config.config import settings
from ..db.db_client import AsyncPostgresClient
from ..models.db_models import Principal, Course, GeneralQRCode
from ..tools.codes import CourseCode, parse_course_code, is_general_code
from .errors import MalformedCode, UnknownCode, InactiveCode, Unauthenticated, PersistenceError

logger = logging.getLogger(__name__)


class CodeValidator:
    """
    Validation shared by both attendance code families. Duplicate-submission checks are
    left to the callers because 'duplicate' means something different for each of them.
    """

    def __init__(self, db_client: AsyncPostgresClient,
                 course_prefix: Optional[str] = None, general_prefix: Optional[str] = None):
        self.db_client = db_client
        self.course_prefix = course_prefix or settings.COURSE_CODE_PREFIX
        self.general_prefix = general_prefix or settings.GENERAL_CODE_PREFIX

    @staticmethod
    def normalize(code: str) -> str:
        return (code or "").strip()

    def parse_course_code(self, code: str) -> CourseCode:
        """
        Checks prefix and four-segment shape. The embedded course id is taken as-is;
        course codes are not stored, so there is no code record to compare against.
        """
        parsed = parse_course_code(self.normalize(code), self.course_prefix)
        if parsed is None:
            raise MalformedCode("Please enter a valid attendance code.")
        return parsed

    async def resolve_course(self, parsed: CourseCode) -> Course:
        try:
            course_id = UUID(parsed.course_id)
        except ValueError:
            raise UnknownCode("This attendance code does not refer to a known course.")
        try:
            course = await self.db_client.get_course(course_id)
        except Exception as e:
            logger.error(f"Database error while resolving course {course_id}.", exc_info=True)
            raise PersistenceError("A database error occurred while checking the code.") from e
        if course is None:
            raise UnknownCode("This attendance code does not refer to a known course.")
        return course

    async def validate_general_code(self, code: str, principal: Optional[Principal]) -> GeneralQRCode:
        """
        Resolves a general code. Each failure stops the check:
        shape, existence, active flag, then the caller's identity.
        """
        normalized = self.normalize(code).upper()
        if not is_general_code(normalized, self.general_prefix):
            raise MalformedCode("Please enter a valid general attendance code.")

        try:
            qr_code = await self.db_client.get_general_qr_code_by_code(normalized)
        except Exception as e:
            logger.error("Database error while looking up a general code.", exc_info=True)
            raise PersistenceError("A database error occurred while checking the code.") from e

        if qr_code is None:
            raise UnknownCode("This attendance code does not exist.")
        if not qr_code.is_active:
            raise InactiveCode("This attendance code is no longer active.")
        if principal is None:
            raise Unauthenticated("You must be logged in to mark attendance.")
        return qr_code
