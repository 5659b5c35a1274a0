# portal/backend/modules/identity.py

import logging
from typing import Any, Dict, Optional
from uuid import UUID

import httpx
from pydantic import BaseModel

from ..config.config import settings

logger = logging.getLogger(__name__)


# Custom exceptions for clearer error handling
class IdentityError(Exception):
    """Base class for identity provider failures."""
    pass

class IdentityAuthError(IdentityError):
    """Raised when sign-in credentials are rejected."""
    pass

class IdentityConflictError(IdentityError):
    """Raised when an identity with the same email already exists."""
    pass

class IdentityNotFoundError(IdentityError):
    """Raised when the addressed identity does not exist."""
    pass

class IdentityRejectedError(IdentityError):
    """Raised when the provider refuses a request because of its content (e.g. a weak password)."""
    pass

class IdentityServiceError(IdentityError):
    """Raised when the provider is unreachable or answers with a server error."""
    pass


class Identity(BaseModel):
    id: UUID
    email: str
    full_name: Optional[str] = None


class IdentityClient:
    """
    Client for the hosted identity provider (GoTrue-compatible REST API).

    Sign-in uses the public password grant; creating and deleting users goes through the
    admin API and is authorized with the service key, which never leaves the server.
    The HTTP client is injected so callers control its lifetime and tests can mock transport.
    """

    def __init__(self, http_client: httpx.AsyncClient, base_url: Optional[str] = None, service_key: Optional[str] = None):
        self._client = http_client
        self._base_url = (base_url or settings.IDENTITY_BASE_URL).rstrip("/")
        self._service_key = service_key or settings.IDENTITY_SERVICE_KEY or ""

    def _admin_headers(self) -> Dict[str, str]:
        return {"apikey": self._service_key, "Authorization": f"Bearer {self._service_key}"}

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text or f"HTTP {response.status_code}"
        return body.get("msg") or body.get("message") or body.get("error_description") or body.get("error") or str(body)

    @staticmethod
    def _to_identity(user: Dict[str, Any]) -> Identity:
        metadata = user.get("user_metadata") or {}
        return Identity(id=user["id"], email=user["email"], full_name=metadata.get("full_name"))

    async def sign_in(self, email: str, password: str) -> Identity:
        """Checks the credentials and returns the identity they belong to."""
        try:
            response = await self._client.post(
                f"{self._base_url}/token",
                params={"grant_type": "password"},
                json={"email": email, "password": password},
                headers={"apikey": self._service_key},
            )
        except httpx.RequestError as e:
            logger.error(f"Network error while signing in '{email}': {e}", exc_info=True)
            raise IdentityServiceError("The identity provider is unreachable.") from e

        if response.status_code in (400, 401):
            logger.warning(f"Identity provider rejected credentials for '{email}'.")
            raise IdentityAuthError("Invalid email or password.")
        if response.status_code >= 400:
            raise IdentityServiceError(self._error_message(response))

        return self._to_identity(response.json()["user"])

    async def create_user(self, email: str, password: str, full_name: str) -> Identity:
        """Creates a login-capable identity with the email already confirmed."""
        payload = {
            "email": email,
            "password": password,
            "email_confirm": True,
            "user_metadata": {"full_name": full_name},
        }
        try:
            response = await self._client.post(f"{self._base_url}/admin/users", json=payload, headers=self._admin_headers())
        except httpx.RequestError as e:
            logger.error(f"Network error while creating identity for '{email}': {e}", exc_info=True)
            raise IdentityServiceError("The identity provider is unreachable.") from e

        if response.status_code >= 400:
            message = self._error_message(response)
            error_code = ""
            try:
                error_code = response.json().get("error_code", "")
            except ValueError:
                pass
            if response.status_code == 409 or error_code == "email_exists" or "already" in message.lower():
                raise IdentityConflictError(message)
            if response.status_code < 500:
                raise IdentityRejectedError(message)
            raise IdentityServiceError(message)

        body = response.json()
        # The admin endpoint answers with the user object itself, some versions wrap it.
        return self._to_identity(body.get("user", body))

    async def delete_user(self, user_id: UUID) -> None:
        try:
            response = await self._client.delete(f"{self._base_url}/admin/users/{user_id}", headers=self._admin_headers())
        except httpx.RequestError as e:
            logger.error(f"Network error while deleting identity {user_id}: {e}", exc_info=True)
            raise IdentityServiceError("The identity provider is unreachable.") from e

        if response.status_code == 404:
            raise IdentityNotFoundError(f"User {user_id} not found.")
        if response.status_code >= 400:
            raise IdentityServiceError(self._error_message(response))
