# portal/backend/tools/codes.py

import re
import secrets
import string
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional

GENERAL_CODE_ALPHABET = string.ascii_uppercase + string.digits
GENERAL_CODE_LENGTH = 8
_BASE36_DIGITS = string.digits + string.ascii_lowercase


@dataclass(frozen=True)
class CourseCode:
    """The parts of a course-scoped code '<PREFIX>-<courseId>-<YYYY-MM-DD>-<random>'."""
    raw: str
    course_id: str
    code_date: date
    nonce: str


def _millis(now: datetime) -> int:
    return int(now.timestamp() * 1000)


def to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36_DIGITS[remainder])
    return "".join(reversed(digits))


def generate_student_number(now: datetime) -> str:
    """'STU' followed by the last 8 digits of the millisecond timestamp."""
    return f"STU{str(_millis(now))[-8:]}"


def generate_certificate_number(now: datetime) -> str:
    """'CERT-' followed by the last 8 digits of the millisecond timestamp."""
    return f"CERT-{str(_millis(now))[-8:]}"


def generate_course_code(prefix: str, course_id: str, now: datetime) -> str:
    return f"{prefix}-{course_id}-{now.date().isoformat()}-{to_base36(_millis(now))}"


def generate_general_code(prefix: str) -> str:
    suffix = "".join(secrets.choice(GENERAL_CODE_ALPHABET) for _ in range(GENERAL_CODE_LENGTH))
    return f"{prefix}-{suffix}"


def is_general_code(code: str, prefix: str) -> bool:
    pattern = rf"^{re.escape(prefix)}-[A-Z0-9]{{{GENERAL_CODE_LENGTH}}}$"
    return re.match(pattern, code) is not None


def parse_course_code(code: str, prefix: str) -> Optional[CourseCode]:
    """
    Splits a course-scoped code into its four segments, or returns None when the prefix or
    shape is wrong. The date segment anchors the split, so course ids may contain hyphens.
    """
    pattern = rf"^{re.escape(prefix)}-(?P<course>.+)-(?P<date>\d{{4}}-\d{{2}}-\d{{2}})-(?P<nonce>[0-9A-Za-z]+)$"
    match = re.match(pattern, code)
    if not match:
        return None
    try:
        code_date = date.fromisoformat(match.group("date"))
    except ValueError:
        return None
    return CourseCode(raw=code, course_id=match.group("course"), code_date=code_date, nonce=match.group("nonce"))


def grade_for_score(score: float, total_marks: Optional[int] = None) -> str:
    """Letter grade from a score: A >= 90%, B >= 80%, C >= 70%, D >= 60%, else F."""
    total = total_marks or 100
    percentage = score * 100 / total
    for threshold, grade in ((90, "A"), (80, "B"), (70, "C"), (60, "D")):
        if percentage >= threshold:
            return grade
    return "F"
