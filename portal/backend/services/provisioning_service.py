import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Iterable, List, Optional
from uuid import UUID

import asyncpg
from pydantic import BaseModel

from ..config.config import settings
from ..db.db_client import AsyncPostgresClient
from ..db.redis_client import RedisClient
from ..models.db_models import Principal, Role
from ..models.redis_models import PortalEvent
from ..modules.identity import (
    IdentityClient, IdentityError, IdentityConflictError, IdentityNotFoundError, IdentityRejectedError,
)
from ..tools.codes import generate_student_number
from .errors import Forbidden, IdentityConflict, InvalidInput, PersistenceError, Unauthorized
from .events import EventBus

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

STUDENT_NUMBER_CONSTRAINT = "students_student_number_key"
_STUDENT_NUMBER_ATTEMPTS = 3


def _is_student_number_collision(error: asyncpg.UniqueViolationError) -> bool:
    return getattr(error, "constraint_name", None) == STUDENT_NUMBER_CONSTRAINT


class ProvisionedUser(BaseModel):
    id: UUID
    email: str


class CleanupResult(BaseModel):
    deleted_users: int = 0
    details: List[str] = []


class ProvisioningService:
    """
    Creates and removes login-capable principals on behalf of an admin.

    A registration spans two systems: the identity provider and the portal database.
    The database part (profile, role, student or staff record, enrollments, course
    assignments) is written in a single transaction. If it fails, the identity that was
    just created is deleted again; if even that fails, the identity is queued in Redis
    and removed later by the reconciliation job or by an admin cleanup.
    """

    def __init__(self, db_client: AsyncPostgresClient, identity_client: IdentityClient,
                 redis_client: Optional[RedisClient] = None, event_bus: Optional[EventBus] = None):
        self.db_client = db_client
        self.identity_client = identity_client
        self.redis_client = redis_client
        self.event_bus = event_bus

    async def require_admin(self, caller_id: Optional[UUID]) -> None:
        """The caller's role is always read from the store, never taken from the request."""
        if caller_id is None:
            raise Unauthorized("Unauthorized")
        try:
            role = await self.db_client.get_user_role(caller_id)
        except Exception as e:
            logger.error(f"Database error while checking the role of caller '{caller_id}'.", exc_info=True)
            raise PersistenceError("A database error occurred while checking permissions.") from e
        if role != Role.ADMIN:
            logger.warning(f"Caller '{caller_id}' with role '{role}' attempted a privileged operation.")
            raise Forbidden("Admin access required")

    async def _validate_courses(self, course_ids: Iterable[str]) -> List[UUID]:
        parsed = []
        for course_id in course_ids:
            try:
                parsed.append(UUID(str(course_id)))
            except ValueError:
                raise InvalidInput(f"Unknown course: {course_id}")
        if not parsed:
            return parsed

        try:
            existing = await self.db_client.get_existing_course_ids(parsed)
        except Exception as e:
            logger.error("Database error while checking course ids.", exc_info=True)
            raise PersistenceError("A database error occurred while checking the courses.") from e
        missing = [str(course_id) for course_id in parsed if course_id not in existing]
        if missing:
            raise InvalidInput(f"Unknown course: {', '.join(missing)}")
        return list(dict.fromkeys(parsed))

    async def register_user(self, caller_id: Optional[UUID], email: str, password: str, full_name: str,
                            role: str, course_ids: Optional[List[str]] = None,
                            now: Optional[datetime] = None) -> ProvisionedUser:
        await self.require_admin(caller_id)
        now = now or datetime.now(timezone.utc)

        email = (email or "").strip().lower()
        full_name = (full_name or "").strip()
        if not email or not password or not full_name or not role:
            raise InvalidInput("Missing required fields")
        if not EMAIL_PATTERN.match(email):
            raise InvalidInput("Invalid email address")
        if len(password) < settings.MIN_PASSWORD_LENGTH:
            raise InvalidInput(f"Password must be at least {settings.MIN_PASSWORD_LENGTH} characters")
        try:
            new_role = Role(role)
        except ValueError:
            raise InvalidInput(f"Invalid role: {role}")
        courses = await self._validate_courses(course_ids or [])

        try:
            identity = await self.identity_client.create_user(email, password, full_name)
        except IdentityConflictError as e:
            logger.warning(f"Registration of '{email}' rejected: email already registered.")
            raise IdentityConflict("A user with this email address has already been registered") from e
        except IdentityRejectedError as e:
            raise InvalidInput(str(e)) from e
        except IdentityError as e:
            logger.error(f"Identity provider failed while registering '{email}'.", exc_info=True)
            raise PersistenceError("The identity provider could not create the user.") from e

        principal = Principal(id=identity.id, email=identity.email, full_name=full_name, role=new_role)
        domain_kwargs = {}
        if new_role == Role.STUDENT:
            domain_kwargs = {"student_number": generate_student_number(now), "enroll_course_ids": courses}
        elif new_role.is_staff_member:
            is_instructor = new_role == Role.INSTRUCTOR
            domain_kwargs = {
                "staff_position": "Instructor" if is_instructor else "Staff",
                "staff_department": "Academic" if is_instructor else None,
                "assign_course_ids": courses if is_instructor else [],
            }

        attempts = _STUDENT_NUMBER_ATTEMPTS if new_role == Role.STUDENT else 1
        for attempt in range(attempts):
            if new_role == Role.STUDENT and attempt:
                domain_kwargs["student_number"] = generate_student_number(now + timedelta(milliseconds=attempt))
            try:
                await self.db_client.provision_user(principal, registered_by=caller_id, today=now.date(), **domain_kwargs)
                break
            except asyncpg.UniqueViolationError as e:
                if _is_student_number_collision(e) and attempt + 1 < attempts:
                    logger.warning(f"Student number collided (attempt {attempt + 1}), generating another one.")
                    continue
                failure = e
            except Exception as e:
                failure = e
            logger.error(f"Writing the records of '{email}' failed, rolling back the identity.", exc_info=failure)
            await self._compensate(identity.id)
            raise PersistenceError("The user could not be created, please try again.") from failure

        logger.info(f"Principal '{principal.id}' ({new_role.value}) provisioned by '{caller_id}'.")
        if self.event_bus:
            await self.event_bus.publish(PortalEvent(
                topic="user.provisioned", actor_id=caller_id,
                payload={"user_id": str(principal.id), "role": new_role.value, "course_ids": [str(c) for c in courses]}
            ))
        return ProvisionedUser(id=principal.id, email=principal.email)

    async def _compensate(self, user_id: UUID) -> None:
        try:
            await self.identity_client.delete_user(user_id)
            logger.info(f"Identity {user_id} rolled back.")
            return
        except IdentityNotFoundError:
            logger.info(f"Identity {user_id} was already gone during rollback.")
            return
        except IdentityError:
            logger.error(f"Rolling back identity {user_id} failed; queueing it for reconciliation.", exc_info=True)

        if self.redis_client is None:
            logger.error(f"No reconciliation queue configured, identity {user_id} stays orphaned.")
            return
        try:
            await self.redis_client.add_orphaned_identity(user_id)
        except Exception:
            logger.error(f"Could not queue orphaned identity {user_id}.", exc_info=True)

    async def _delete_identity(self, user_id: UUID) -> bool:
        """Deletes an identity; an identity that is already gone counts as deleted."""
        try:
            await self.identity_client.delete_user(user_id)
        except IdentityNotFoundError:
            logger.info(f"Identity {user_id} no longer exists at the provider.")
        except IdentityError:
            logger.error(f"Failed to delete identity {user_id}.", exc_info=True)
            return False
        return True

    async def reconcile_orphans(self) -> int:
        """Retries the deletion of every queued orphaned identity. Returns how many were removed."""
        if self.redis_client is None:
            return 0
        removed = 0
        for user_id in await self.redis_client.get_orphaned_identities():
            if await self._delete_identity(user_id):
                await self.redis_client.remove_orphaned_identity(user_id)
                removed += 1
        if removed:
            logger.info(f"Reconciled {removed} orphaned identities.")
        return removed

    async def cleanup_incomplete(self, caller_id: Optional[UUID]) -> CleanupResult:
        """Removes users whose registration never completed: profiles without a role and queued orphans."""
        await self.require_admin(caller_id)
        result = CleanupResult()

        try:
            incomplete = await self.db_client.get_incomplete_profiles()
        except Exception as e:
            logger.error("Database error while listing incomplete profiles.", exc_info=True)
            raise PersistenceError("A database error occurred while listing users.") from e

        for user_id, email in incomplete:
            if not await self._delete_identity(user_id):
                result.details.append(f"Failed: {email}")
                continue
            try:
                await self.db_client.delete_profile(user_id)
            except Exception as e:
                logger.error(f"Database error while deleting profile {user_id}.", exc_info=True)
                raise PersistenceError("A database error occurred while deleting users.") from e
            result.deleted_users += 1
            result.details.append(f"Deleted: {email}")

        if self.redis_client is not None:
            handled = {user_id for user_id, _ in incomplete}
            for user_id in await self.redis_client.get_orphaned_identities():
                if user_id in handled:
                    await self.redis_client.remove_orphaned_identity(user_id)
                    continue
                if not await self._delete_identity(user_id):
                    result.details.append(f"Failed: {user_id}")
                    continue
                await self.redis_client.remove_orphaned_identity(user_id)
                result.deleted_users += 1
                result.details.append(f"Deleted: {user_id}")

        logger.info(f"Cleanup by '{caller_id}' removed {result.deleted_users} users.")
        return result

    async def delete_user(self, caller_id: Optional[UUID], user_id: Optional[str]) -> CleanupResult:
        await self.require_admin(caller_id)
        if not user_id:
            raise InvalidInput("userId is required for delete_user")
        try:
            target = UUID(str(user_id))
        except ValueError:
            raise InvalidInput("User not found")
        if target == caller_id:
            raise InvalidInput("You cannot delete your own account")

        # A missing identity may be left over from an earlier attempt whose profile delete failed.
        identity_found = True
        try:
            await self.identity_client.delete_user(target)
        except IdentityNotFoundError:
            logger.info(f"Identity {target} no longer exists at the provider.")
            identity_found = False
        except IdentityError as e:
            logger.error(f"Identity provider failed while deleting {target}.", exc_info=True)
            raise PersistenceError("The identity provider could not delete the user.") from e

        try:
            deleted_profiles = await self.db_client.delete_profile(target)
        except Exception as e:
            logger.error(f"Database error while deleting profile {target}.", exc_info=True)
            raise PersistenceError("A database error occurred while deleting the user.") from e

        if not identity_found and not deleted_profiles:
            raise InvalidInput("User not found")

        logger.info(f"User {target} deleted by '{caller_id}'.")
        if self.event_bus:
            await self.event_bus.publish(PortalEvent(topic="user.deleted", actor_id=caller_id, payload={"user_id": str(target)}))
        return CleanupResult(deleted_users=1, details=[f"Deleted: {target}"])
