from typing import List

from fastapi import APIRouter, Depends, HTTPException, Request, status

from ..models.db_models import Principal
from ..services.certificate_service import CertificateService
from ..services.errors import ServiceError
from .auth import get_current_user
from .dependencies import get_certificate_service
from .errors import to_http_exception
from .schemas.certificates import CertificateIssueRequest, CertificateResponse, CertificateVerificationResponse
from .utilities.limiter import limiter

router = APIRouter(prefix="/certificates", tags=["Certificates"])


@router.post("", response_model=CertificateResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit("30/minute")
async def issue_certificate(request: Request, issue_request: CertificateIssueRequest, user: Principal = Depends(get_current_user), service: CertificateService = Depends(get_certificate_service)):
    try:
        return await service.issue(user, issue_request.student_id, issue_request.course_id, issue_request.grade)
    except ServiceError as e:
        raise to_http_exception(e)


@router.get("/mine", response_model=List[CertificateResponse])
@limiter.limit("60/minute")
async def my_certificates(request: Request, user: Principal = Depends(get_current_user), service: CertificateService = Depends(get_certificate_service)):
    try:
        return await service.list_for_student(user)
    except ServiceError as e:
        raise to_http_exception(e)


@router.get("/verify/{certificate_number}", response_model=CertificateVerificationResponse, summary="Public certificate lookup")
@limiter.limit("30/minute")
async def verify_certificate(request: Request, certificate_number: str, service: CertificateService = Depends(get_certificate_service)):
    """No sign-in required; anyone holding the number may check it."""
    try:
        verification = await service.verify(certificate_number)
    except ServiceError as e:
        raise to_http_exception(e)
    if verification is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Certificate not found.")
    return verification
