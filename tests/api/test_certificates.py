import uuid
from datetime import date
from unittest.mock import AsyncMock

import pytest

from portal.backend.main import app
from portal.backend.api.dependencies import get_certificate_service
from portal.backend.models.db_models import Certificate, CertificateVerification
from portal.backend.services.errors import Forbidden, InvalidInput


@pytest.fixture
def certificates():
    service = AsyncMock()
    app.dependency_overrides[get_certificate_service] = lambda: service
    return service


def test_verify_known_certificate_without_sign_in(client, certificates):
    certificates.verify.return_value = CertificateVerification(
        certificate_number="CERT-2025-000123", student_name="Test Student", student_number="STU00000001",
        course_name="Algorithms", grade="A", issue_date=date(2025, 1, 1),
    )

    response = client.get("/api/v1/certificates/verify/cert-2025-000123")

    assert response.status_code == 200
    assert response.json()["course_name"] == "Algorithms"
    certificates.verify.assert_called_once_with("cert-2025-000123")


def test_verify_unknown_certificate(client, certificates):
    certificates.verify.return_value = None

    response = client.get("/api/v1/certificates/verify/CERT-0000")

    assert response.status_code == 404


def test_issue_certificate(client, login_as, certificates, admin_principal):
    login_as(admin_principal)
    student_id, course_id = uuid.uuid4(), uuid.uuid4()
    certificates.issue.return_value = Certificate(
        id=uuid.uuid4(), certificate_number="CERT-2025-000123", student_id=student_id,
        course_id=course_id, grade="B", issue_date=date(2025, 1, 1),
    )

    response = client.post("/api/v1/certificates", json={
        "student_id": str(student_id), "course_id": str(course_id), "grade": "B",
    })

    assert response.status_code == 201
    assert response.json()["certificate_number"] == "CERT-2025-000123"
    certificates.issue.assert_called_once_with(admin_principal, student_id, course_id, "B")


@pytest.mark.parametrize("error,status_code", [
    (Forbidden("Only staff can issue certificates."), 403),
    (InvalidInput("Invalid grade: Z"), 400),
])
def test_issue_certificate_errors(client, login_as, certificates, student_principal, error, status_code):
    login_as(student_principal)
    certificates.issue.side_effect = error

    response = client.post("/api/v1/certificates", json={
        "student_id": str(uuid.uuid4()), "course_id": str(uuid.uuid4()), "grade": "Z",
    })

    assert response.status_code == status_code


def test_my_certificates(client, login_as, certificates, student_principal):
    login_as(student_principal)
    certificates.list_for_student.return_value = []

    response = client.get("/api/v1/certificates/mine")

    assert response.status_code == 200
    assert response.json() == []
    certificates.list_for_student.assert_called_once_with(student_principal)
