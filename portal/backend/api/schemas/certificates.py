from pydantic import BaseModel, ConfigDict
from uuid import UUID
from datetime import date
from typing import Optional


class CertificateIssueRequest(BaseModel):
    student_id: UUID
    course_id: UUID
    grade: Optional[str] = None


class CertificateResponse(BaseModel):
    id: UUID
    certificate_number: str
    student_id: UUID
    course_id: UUID
    grade: Optional[str] = None
    issue_date: date

    model_config = ConfigDict(from_attributes=True)


class CertificateVerificationResponse(BaseModel):
    """What anyone holding a certificate number is allowed to see."""
    certificate_number: str
    student_name: Optional[str] = None
    student_number: str
    course_name: str
    grade: Optional[str] = None
    issue_date: date

    model_config = ConfigDict(from_attributes=True)
