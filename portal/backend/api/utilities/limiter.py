# portal/backend/api/utilities/limiter.py

from fastapi import Request
import jwt

from slowapi import Limiter
from slowapi.util import get_remote_address

from ...config.config import settings

def get_limiter_key(request: Request) -> str:
    """
    Key for rate limiting: the principal id from a bearer token when one is present,
    otherwise the client's IP address.
    """
    auth_header = request.headers.get("authorization")
    if auth_header and auth_header.lower().startswith("bearer "):
        token = auth_header.split(" ")[1]
        try:
            # Only the identity is needed here, an expired token still names its owner.
            payload = jwt.decode(
                token,
                settings.SECRET_KEY,
                algorithms=[settings.ALGORITHM],
                options={"verify_exp": False}
            )
            user_id = payload.get("user_id")
            if user_id:
                return f"user:{user_id}"
        except jwt.PyJWTError:
            return get_remote_address(request)

    return get_remote_address(request)

# Shared by every router. RATE_LIMITER_REDIS_URL may point at Redis or stay 'memory://'.
limiter = Limiter(key_func=get_limiter_key, storage_uri=settings.RATE_LIMITER_REDIS_URL)
