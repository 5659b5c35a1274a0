import logging
from fastapi import APIRouter, Depends, HTTPException, status, Response, Request
from fastapi.security import OAuth2PasswordBearer, OAuth2PasswordRequestForm
from datetime import datetime, timedelta, timezone
from uuid import uuid4
from typing import Optional
import jwt
from pydantic import ValidationError

from .schemas.user import Token, TokenData, LoginRequest, UserResponse, LoginResponse
from ..modules.identity import IdentityClient, IdentityAuthError, IdentityError
from ..models.db_models import Principal
from ..models.redis_models import UserSessionRedis
from ..db.redis_client import RedisClient
from ..db.db_client import AsyncPostgresClient
from ..config.config import settings
from .dependencies import get_redis_client, get_db_client, get_identity_client
from .utilities.limiter import limiter

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/auth",
    tags=["Authentication"]
)
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/token")
optional_oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/token", auto_error=False)


def create_access_token(data: dict, expires_delta: timedelta):
    """Creates a signed JWT carrying the given data and an expiry."""
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + expires_delta
    to_encode.update({"exp": expire})
    encoded_jwt = jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)
    return encoded_jwt


async def get_current_user(
    token: str = Depends(oauth2_scheme),
    redis_client: RedisClient = Depends(get_redis_client)
) -> Principal:
    """
    Resolves the request's auth context: decodes the token, requires a live Redis
    session for it and returns the Principal stored there. Every protected route
    receives this Principal and passes it explicitly to the services.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        token_data = TokenData.model_validate(payload)
    except (jwt.PyJWTError, ValidationError) as e:
        logger.warning(f"Token validation error: {e}")
        raise credentials_exception

    if token_data.user_id is None:
        logger.warning(f"Token is valid but missing 'user_id': {payload}")
        raise credentials_exception

    user_session = await redis_client.get_user_session(token_data.user_id)
    if user_session is None:
        logger.warning(f"User '{token_data.user_id}' has a valid token but no active session in Redis.")
        raise credentials_exception

    return user_session.principal


async def get_optional_user(
    token: Optional[str] = Depends(optional_oauth2_scheme),
    redis_client: RedisClient = Depends(get_redis_client)
) -> Optional[Principal]:
    """Like get_current_user, but lets the route decide how to answer an anonymous caller."""
    if not token:
        return None
    try:
        return await get_current_user(token=token, redis_client=redis_client)
    except HTTPException:
        return None


async def _perform_login(email: str, password: str, identity_client: IdentityClient,
                         db_client: AsyncPostgresClient, redis_client: RedisClient) -> LoginResponse:
    """Checks the credentials at the identity provider and opens a portal session."""
    logger.info(f"Login attempt for '{email}'.")

    try:
        identity = await identity_client.sign_in(email, password)
    except IdentityAuthError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid email or password.")
    except IdentityError as e:
        logger.error(f"Identity provider error during login: {e}", exc_info=True)
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="The identity provider is currently unavailable.")

    try:
        principal = await db_client.get_principal(identity.id)
    except Exception as e:
        logger.error(f"Database error while loading principal '{identity.id}'.", exc_info=True)
        raise HTTPException(status_code=500, detail="An unexpected server error occurred during login.") from e

    if principal is None:
        # Identity exists but provisioning never completed (no role row).
        logger.warning(f"Identity '{identity.id}' signed in without a role assignment.")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Your account setup is incomplete. Please contact an administrator.")

    ttl = settings.SESSION_TTL_SECONDS
    now = datetime.now(timezone.utc)
    session = UserSessionRedis(principal=principal, session_id=uuid4(), session_start_time=now,
                               session_end_time=now + timedelta(seconds=ttl))
    try:
        await redis_client.save_user_session(session, ttl=ttl)
    except Exception as e:
        logger.error(f"Could not store the session of '{principal.id}'.", exc_info=True)
        raise HTTPException(status_code=500, detail="An unexpected server error occurred during login.") from e

    access_token = create_access_token(data={"user_id": str(principal.id)}, expires_delta=timedelta(seconds=ttl))
    logger.info(f"'{principal.email}' ({principal.role.value}) logged in.")
    return LoginResponse(token=Token(access_token=access_token), user=UserResponse.model_validate(principal))


@router.post("/token", response_model=Token)
@limiter.limit("30/minute")
async def login_for_access_token(
    request: Request,
    form_data: OAuth2PasswordRequestForm = Depends(),
    identity_client: IdentityClient = Depends(get_identity_client),
    db_client: AsyncPostgresClient = Depends(get_db_client),
    redis_client: RedisClient = Depends(get_redis_client)
):
    """Standard OAuth2 endpoint for Swagger UI; the username field carries the email."""
    login_response = await _perform_login(form_data.username, form_data.password, identity_client, db_client, redis_client)
    return login_response.token


@router.post("/login", response_model=LoginResponse)
@limiter.limit("30/minute")
async def login(
    request: Request,
    login_request: LoginRequest,
    identity_client: IdentityClient = Depends(get_identity_client),
    db_client: AsyncPostgresClient = Depends(get_db_client),
    redis_client: RedisClient = Depends(get_redis_client)
):
    return await _perform_login(login_request.email, login_request.password, identity_client, db_client, redis_client)


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
@limiter.limit("60/minute")
async def logout(
    request: Request,
    redis_client: RedisClient = Depends(get_redis_client),
    current_user: Principal = Depends(get_current_user)
):
    """Ends the session by deleting it from Redis."""
    try:
        await redis_client.delete_user_session(str(current_user.id))
    except Exception as e:
        logger.error(f"Error during logout for '{current_user.id}'.", exc_info=True)
        raise HTTPException(status_code=500, detail="An error occurred during logout.") from e
    logger.info(f"Session of '{current_user.id}' deleted.")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/me", response_model=UserResponse)
@limiter.limit("120/minute")
async def me(request: Request, current_user: Principal = Depends(get_current_user)):
    return current_user
