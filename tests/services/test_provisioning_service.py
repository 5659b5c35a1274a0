import uuid
from datetime import datetime, timezone
from unittest.mock import AsyncMock

import asyncpg
import pytest
import pytest_asyncio

from portal.backend.models.db_models import Principal, Role
from portal.backend.modules.identity import (
    Identity, IdentityConflictError, IdentityNotFoundError, IdentityRejectedError, IdentityServiceError,
)
from portal.backend.services.errors import (
    Forbidden, IdentityConflict, InvalidInput, PersistenceError, Unauthorized,
)
from portal.backend.services.events import EventBus
from portal.backend.services.provisioning_service import ProvisioningService

NOW = datetime(2025, 1, 1, 9, 0, tzinfo=timezone.utc)
COURSE_1 = uuid.uuid4()
COURSE_2 = uuid.uuid4()


@pytest_asyncio.fixture
async def service_instance():
    """ProvisioningService with mocked store, identity provider and reconciliation queue."""
    mock_db_client = AsyncMock()
    mock_identity_client = AsyncMock()
    mock_redis_client = AsyncMock()
    event_bus = EventBus()
    published = []

    async def collect(event):
        published.append(event)

    event_bus.subscribe("user.provisioned", collect)
    service = ProvisioningService(mock_db_client, mock_identity_client, redis_client=mock_redis_client, event_bus=event_bus)
    mock_db_client.get_user_role.return_value = Role.ADMIN
    return service, mock_db_client, mock_identity_client, mock_redis_client, published


def new_identity(email="a@x.com", full_name="A B") -> Identity:
    return Identity(id=uuid.uuid4(), email=email, full_name=full_name)


@pytest.mark.asyncio
class TestRegisterUser:

    async def test_scenario_student_with_two_courses(self, service_instance, admin_principal):
        service, mock_db_client, mock_identity_client, _, published = service_instance
        identity = new_identity()
        mock_identity_client.create_user.return_value = identity
        mock_db_client.get_existing_course_ids.return_value = {COURSE_1, COURSE_2}

        user = await service.register_user(
            admin_principal.id, email="a@x.com", password="secret1", full_name="A B", role="student",
            course_ids=[str(COURSE_1), str(COURSE_2)], now=NOW,
        )

        assert user.id == identity.id
        assert user.email == "a@x.com"
        mock_identity_client.create_user.assert_called_once_with("a@x.com", "secret1", "A B")

        mock_db_client.provision_user.assert_called_once()
        args, kwargs = mock_db_client.provision_user.call_args
        principal = args[0]
        assert principal == Principal(id=identity.id, email="a@x.com", full_name="A B", role=Role.STUDENT)
        assert kwargs["registered_by"] == admin_principal.id
        assert kwargs["today"] == NOW.date()
        assert kwargs["student_number"].startswith("STU")
        assert len(kwargs["student_number"]) == 11
        assert kwargs["enroll_course_ids"] == [COURSE_1, COURSE_2]
        assert "staff_position" not in kwargs
        assert [event.payload["user_id"] for event in published] == [str(identity.id)]

    async def test_instructor_is_assigned_to_courses(self, service_instance, admin_principal):
        service, mock_db_client, mock_identity_client, _, _ = service_instance
        mock_identity_client.create_user.return_value = new_identity("grace@x.com", "Grace Hopper")
        mock_db_client.get_existing_course_ids.return_value = {COURSE_1}

        await service.register_user(
            admin_principal.id, email="grace@x.com", password="secret1", full_name="Grace Hopper",
            role="instructor", course_ids=[str(COURSE_1)], now=NOW,
        )

        kwargs = mock_db_client.provision_user.call_args.kwargs
        assert kwargs["staff_position"] == "Instructor"
        assert kwargs["staff_department"] == "Academic"
        assert kwargs["assign_course_ids"] == [COURSE_1]
        assert "student_number" not in kwargs

    async def test_staff_gets_staff_position_and_no_courses(self, service_instance, admin_principal):
        service, mock_db_client, mock_identity_client, _, _ = service_instance
        mock_identity_client.create_user.return_value = new_identity("s@x.com")

        await service.register_user(admin_principal.id, "s@x.com", "secret1", "Sam Staff", "staff", now=NOW)

        kwargs = mock_db_client.provision_user.call_args.kwargs
        assert kwargs["staff_position"] == "Staff"
        assert kwargs["assign_course_ids"] == []

    async def test_missing_caller_is_unauthorized(self, service_instance):
        service, _, mock_identity_client, _, _ = service_instance
        with pytest.raises(Unauthorized):
            await service.register_user(None, "a@x.com", "secret1", "A B", "student")
        mock_identity_client.create_user.assert_not_called()

    @pytest.mark.parametrize("caller_role", [Role.STAFF, Role.INSTRUCTOR, Role.STUDENT, None])
    async def test_non_admin_is_forbidden(self, service_instance, caller_role):
        """The caller's role is read from the store; nothing in the request can raise it."""
        service, mock_db_client, mock_identity_client, _, _ = service_instance
        mock_db_client.get_user_role.return_value = caller_role

        with pytest.raises(Forbidden):
            await service.register_user(uuid.uuid4(), "a@x.com", "secret1", "A B", "admin")
        mock_identity_client.create_user.assert_not_called()

    @pytest.mark.parametrize("email,password,full_name,role", [
        ("", "secret1", "A B", "student"),
        ("a@x.com", "", "A B", "student"),
        ("a@x.com", "secret1", "  ", "student"),
        ("not-an-email", "secret1", "A B", "student"),
        ("a@x.com", "short", "A B", "student"),
        ("a@x.com", "secret1", "A B", "janitor"),
    ])
    async def test_invalid_input(self, service_instance, admin_principal, email, password, full_name, role):
        service, _, mock_identity_client, _, _ = service_instance
        with pytest.raises(InvalidInput):
            await service.register_user(admin_principal.id, email, password, full_name, role)
        mock_identity_client.create_user.assert_not_called()

    async def test_unknown_course_is_invalid_input(self, service_instance, admin_principal):
        service, mock_db_client, mock_identity_client, _, _ = service_instance
        mock_db_client.get_existing_course_ids.return_value = {COURSE_1}

        with pytest.raises(InvalidInput, match=str(COURSE_2)):
            await service.register_user(admin_principal.id, "a@x.com", "secret1", "A B", "student",
                                        course_ids=[str(COURSE_1), str(COURSE_2)])
        mock_identity_client.create_user.assert_not_called()

    async def test_duplicate_email_is_identity_conflict(self, service_instance, admin_principal):
        service, mock_db_client, mock_identity_client, _, _ = service_instance
        mock_identity_client.create_user.side_effect = IdentityConflictError("already registered")

        with pytest.raises(IdentityConflict):
            await service.register_user(admin_principal.id, "a@x.com", "secret1", "A B", "student")
        mock_db_client.provision_user.assert_not_called()

    async def test_provider_rejection_is_invalid_input(self, service_instance, admin_principal):
        service, _, mock_identity_client, _, _ = service_instance
        mock_identity_client.create_user.side_effect = IdentityRejectedError("Password is too weak")

        with pytest.raises(InvalidInput, match="too weak"):
            await service.register_user(admin_principal.id, "a@x.com", "secret1", "A B", "student")

    async def test_failed_write_rolls_back_identity(self, service_instance, admin_principal):
        service, mock_db_client, mock_identity_client, mock_redis_client, published = service_instance
        identity = new_identity()
        mock_identity_client.create_user.return_value = identity
        mock_db_client.provision_user.side_effect = ConnectionError("db down")

        with pytest.raises(PersistenceError):
            await service.register_user(admin_principal.id, "a@x.com", "secret1", "A B", "student")

        mock_identity_client.delete_user.assert_called_once_with(identity.id)
        mock_redis_client.add_orphaned_identity.assert_not_called()
        assert published == []

    async def test_failed_rollback_queues_identity(self, service_instance, admin_principal):
        service, mock_db_client, mock_identity_client, mock_redis_client, _ = service_instance
        identity = new_identity()
        mock_identity_client.create_user.return_value = identity
        mock_db_client.provision_user.side_effect = ConnectionError("db down")
        mock_identity_client.delete_user.side_effect = IdentityServiceError("provider down")

        with pytest.raises(PersistenceError):
            await service.register_user(admin_principal.id, "a@x.com", "secret1", "A B", "student")

        mock_redis_client.add_orphaned_identity.assert_called_once_with(identity.id)

    async def test_student_number_collision_retries_with_new_number(self, service_instance, admin_principal):
        service, mock_db_client, mock_identity_client, _, published = service_instance
        identity = new_identity()
        mock_identity_client.create_user.return_value = identity
        collision = asyncpg.UniqueViolationError("duplicate key")
        collision.constraint_name = "students_student_number_key"
        mock_db_client.provision_user.side_effect = [collision, None]

        user = await service.register_user(admin_principal.id, "a@x.com", "secret1", "A B", "student", now=NOW)

        assert user.id == identity.id
        numbers = [c.kwargs["student_number"] for c in mock_db_client.provision_user.call_args_list]
        assert len(numbers) == 2
        assert numbers[0] != numbers[1]
        mock_identity_client.delete_user.assert_not_called()
        assert len(published) == 1

    async def test_other_unique_violation_rolls_back_identity(self, service_instance, admin_principal):
        service, mock_db_client, mock_identity_client, _, _ = service_instance
        identity = new_identity()
        mock_identity_client.create_user.return_value = identity
        violation = asyncpg.UniqueViolationError("duplicate key")
        violation.constraint_name = "profiles_email_key"
        mock_db_client.provision_user.side_effect = violation

        with pytest.raises(PersistenceError):
            await service.register_user(admin_principal.id, "a@x.com", "secret1", "A B", "student", now=NOW)

        mock_db_client.provision_user.assert_called_once()
        mock_identity_client.delete_user.assert_called_once_with(identity.id)


@pytest.mark.asyncio
class TestCleanup:

    async def test_cleanup_incomplete_removes_profiles_and_orphans(self, service_instance, admin_principal):
        service, mock_db_client, mock_identity_client, mock_redis_client, _ = service_instance
        incomplete_id, orphan_id = uuid.uuid4(), uuid.uuid4()
        mock_db_client.get_incomplete_profiles.return_value = [(incomplete_id, "half@x.com")]
        mock_redis_client.get_orphaned_identities.return_value = [orphan_id]

        result = await service.cleanup_incomplete(admin_principal.id)

        assert result.deleted_users == 2
        assert result.details == ["Deleted: half@x.com", f"Deleted: {orphan_id}"]
        mock_db_client.delete_profile.assert_called_once_with(incomplete_id)
        mock_redis_client.remove_orphaned_identity.assert_called_once_with(orphan_id)

    async def test_cleanup_keeps_profile_when_identity_delete_fails(self, service_instance, admin_principal):
        service, mock_db_client, mock_identity_client, mock_redis_client, _ = service_instance
        mock_db_client.get_incomplete_profiles.return_value = [(uuid.uuid4(), "half@x.com")]
        mock_redis_client.get_orphaned_identities.return_value = []
        mock_identity_client.delete_user.side_effect = IdentityServiceError("provider down")

        result = await service.cleanup_incomplete(admin_principal.id)

        assert result.deleted_users == 0
        assert result.details == ["Failed: half@x.com"]
        mock_db_client.delete_profile.assert_not_called()

    async def test_cleanup_requires_admin(self, service_instance):
        service, mock_db_client, _, _, _ = service_instance
        mock_db_client.get_user_role.return_value = Role.STUDENT

        with pytest.raises(Forbidden):
            await service.cleanup_incomplete(uuid.uuid4())
        mock_db_client.get_incomplete_profiles.assert_not_called()

    async def test_delete_user(self, service_instance, admin_principal):
        service, mock_db_client, mock_identity_client, _, _ = service_instance
        target = uuid.uuid4()

        result = await service.delete_user(admin_principal.id, str(target))

        assert result.deleted_users == 1
        mock_identity_client.delete_user.assert_called_once_with(target)
        mock_db_client.delete_profile.assert_called_once_with(target)

    @pytest.mark.parametrize("user_id", [None, "", "not-a-uuid"])
    async def test_delete_user_requires_a_valid_id(self, service_instance, admin_principal, user_id):
        service, _, mock_identity_client, _, _ = service_instance
        with pytest.raises(InvalidInput):
            await service.delete_user(admin_principal.id, user_id)
        mock_identity_client.delete_user.assert_not_called()

    async def test_admin_cannot_delete_self(self, service_instance, admin_principal):
        service, _, mock_identity_client, _, _ = service_instance
        with pytest.raises(InvalidInput):
            await service.delete_user(admin_principal.id, str(admin_principal.id))
        mock_identity_client.delete_user.assert_not_called()

    async def test_delete_unknown_user(self, service_instance, admin_principal):
        service, mock_db_client, mock_identity_client, _, _ = service_instance
        target = uuid.uuid4()
        mock_identity_client.delete_user.side_effect = IdentityNotFoundError("gone")
        mock_db_client.delete_profile.return_value = 0

        with pytest.raises(InvalidInput, match="User not found"):
            await service.delete_user(admin_principal.id, str(target))
        mock_db_client.delete_profile.assert_called_once_with(target)

    async def test_delete_user_retry_after_failed_profile_delete(self, service_instance, admin_principal):
        """The identity is gone after the first attempt, the retry still removes the profile."""
        service, mock_db_client, mock_identity_client, _, _ = service_instance
        target = uuid.uuid4()
        mock_db_client.delete_profile.side_effect = ConnectionError("db down")

        with pytest.raises(PersistenceError):
            await service.delete_user(admin_principal.id, str(target))

        mock_identity_client.delete_user.side_effect = IdentityNotFoundError("gone")
        mock_db_client.delete_profile.side_effect = None
        mock_db_client.delete_profile.return_value = 1

        result = await service.delete_user(admin_principal.id, str(target))

        assert result.deleted_users == 1
        assert mock_db_client.delete_profile.call_count == 2
        mock_db_client.delete_profile.assert_called_with(target)

    async def test_reconcile_orphans_keeps_failures_queued(self, service_instance):
        service, _, mock_identity_client, mock_redis_client, _ = service_instance
        gone, stuck = uuid.uuid4(), uuid.uuid4()
        mock_redis_client.get_orphaned_identities.return_value = [gone, stuck]
        mock_identity_client.delete_user.side_effect = [None, IdentityServiceError("provider down")]

        removed = await service.reconcile_orphans()

        assert removed == 1
        mock_redis_client.remove_orphaned_identity.assert_called_once_with(gone)
