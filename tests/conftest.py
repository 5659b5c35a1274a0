# tests/conftest.py
import asyncio
import os
import sys
import uuid

import pytest

# Settings are read when portal.backend.config is first imported, so the test
# environment has to be in place before any test module imports the app.
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("ALGORITHM", "HS256")
os.environ.setdefault("RATE_LIMITER_REDIS_URL", "memory://")
os.environ.setdefault("IDENTITY_BASE_URL", "http://identity.test")
os.environ.setdefault("IDENTITY_SERVICE_KEY", "service-key")
os.environ.setdefault("COURSE_CODE_PREFIX", "WEBCAPZ")
os.environ.setdefault("GENERAL_CODE_PREFIX", "WEBCAPZ-GEN")

from portal.backend.models.db_models import Principal, Role

if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())


@pytest.fixture
def admin_principal() -> Principal:
    return Principal(id=uuid.uuid4(), email="admin@school.edu", full_name="Ada Admin", role=Role.ADMIN)


@pytest.fixture
def staff_principal() -> Principal:
    return Principal(id=uuid.uuid4(), email="staff@school.edu", full_name="Sam Staff", role=Role.STAFF)


@pytest.fixture
def instructor_principal() -> Principal:
    return Principal(id=uuid.uuid4(), email="grace@school.edu", full_name="Grace Hopper", role=Role.INSTRUCTOR)


@pytest.fixture
def student_principal() -> Principal:
    return Principal(id=uuid.uuid4(), email="student@school.edu", full_name="Test Student", role=Role.STUDENT)
