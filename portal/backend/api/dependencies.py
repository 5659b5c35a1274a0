#portal/backend/api/dependencies.py
from typing import Optional

from fastapi import Request, Depends
import redis.asyncio as redis
import asyncpg
import httpx

from ..db.redis_client import RedisClient
from ..db.db_client import AsyncPostgresClient
from ..modules.identity import IdentityClient
from ..services.events import EventBus
from ..services.code_validator import CodeValidator
from ..services.general_attendance_service import GeneralAttendanceService
from ..services.course_attendance_service import CourseAttendanceService
from ..services.qr_code_service import QRCodeService
from ..services.provisioning_service import ProvisioningService
from ..services.certificate_service import CertificateService
from ..services.academic_service import AcademicService
from ..services.report_service import ReportService
from ..services.dashboard_service import DashboardService


def get_redis_pool(request: Request) -> redis.ConnectionPool:
    """Returns the Redis connection pool created at startup."""
    return request.app.state.redis_pool

def get_postgres_pool(request: Request) -> asyncpg.Pool:
    """Returns the PostgreSQL connection pool created at startup."""
    return request.app.state.postgres_pool

def get_http_client(request: Request) -> httpx.AsyncClient:
    return request.app.state.http_client

def get_event_bus(request: Request) -> Optional[EventBus]:
    return getattr(request.app.state, "event_bus", None)


def get_redis_client(redis_pool: redis.ConnectionPool = Depends(get_redis_pool)) -> RedisClient:
    return RedisClient(pool=redis_pool)

def get_db_client(postgres_pool: asyncpg.Pool = Depends(get_postgres_pool)) -> AsyncPostgresClient:
    return AsyncPostgresClient(pool=postgres_pool)

def get_identity_client(http_client: httpx.AsyncClient = Depends(get_http_client)) -> IdentityClient:
    return IdentityClient(http_client=http_client)


# Services are built per request from the shared pools; they hold no state of their own.

def get_general_attendance_service(
    db_client: AsyncPostgresClient = Depends(get_db_client),
    event_bus: Optional[EventBus] = Depends(get_event_bus)
) -> GeneralAttendanceService:
    return GeneralAttendanceService(db_client=db_client, validator=CodeValidator(db_client), event_bus=event_bus)


def get_course_attendance_service(
    db_client: AsyncPostgresClient = Depends(get_db_client),
    event_bus: Optional[EventBus] = Depends(get_event_bus)
) -> CourseAttendanceService:
    return CourseAttendanceService(db_client=db_client, validator=CodeValidator(db_client), event_bus=event_bus)


def get_qr_code_service(
    db_client: AsyncPostgresClient = Depends(get_db_client),
    event_bus: Optional[EventBus] = Depends(get_event_bus)
) -> QRCodeService:
    return QRCodeService(db_client=db_client, event_bus=event_bus)


def get_provisioning_service(
    db_client: AsyncPostgresClient = Depends(get_db_client),
    identity_client: IdentityClient = Depends(get_identity_client),
    redis_client: RedisClient = Depends(get_redis_client),
    event_bus: Optional[EventBus] = Depends(get_event_bus)
) -> ProvisioningService:
    """
    The provisioning service talks to the identity provider with the service key,
    so it is only ever handed to the admin router.
    """
    return ProvisioningService(db_client=db_client, identity_client=identity_client,
                               redis_client=redis_client, event_bus=event_bus)


def get_certificate_service(
    db_client: AsyncPostgresClient = Depends(get_db_client),
    event_bus: Optional[EventBus] = Depends(get_event_bus)
) -> CertificateService:
    return CertificateService(db_client=db_client, event_bus=event_bus)


def get_academic_service(db_client: AsyncPostgresClient = Depends(get_db_client)) -> AcademicService:
    return AcademicService(db_client=db_client)


def get_report_service(db_client: AsyncPostgresClient = Depends(get_db_client)) -> ReportService:
    return ReportService(db_client=db_client)


def get_dashboard_service(db_client: AsyncPostgresClient = Depends(get_db_client)) -> DashboardService:
    return DashboardService(db_client=db_client)
