import os
from dotenv import load_dotenv

load_dotenv()

class Config:
    """
    Settings read straight from environment variables (a local .env file is loaded first).
    """
    # Database
    DATABASE_URL: str = os.environ.get("DATABASE_URL")

    # Redis: sessions/events and the rate limiter use separate URLs
    APPLICATION_REDIS_URL: str = os.environ.get("APPLICATION_REDIS_URL")
    RATE_LIMITER_REDIS_URL: str = os.environ.get("RATE_LIMITER_REDIS_URL", "memory://")

    # Hosted identity provider (admin API is called with the service key)
    IDENTITY_BASE_URL: str = os.environ.get("IDENTITY_BASE_URL", "http://localhost:9999")
    IDENTITY_SERVICE_KEY: str = os.environ.get("IDENTITY_SERVICE_KEY")
    IDENTITY_TIMEOUT_SECONDS: float = float(os.environ.get("IDENTITY_TIMEOUT_SECONDS", 30))

    # JWT and sessions
    SECRET_KEY: str = os.environ.get("SECRET_KEY")
    ALGORITHM: str = os.environ.get("ALGORITHM", "HS256")
    SESSION_TTL_SECONDS: int = int(os.environ.get("SESSION_TTL_SECONDS", 3600))

    # Attendance rules
    MIN_DWELL_HOURS: float = float(os.environ.get("MIN_DWELL_HOURS", 3))
    COURSE_CODE_PREFIX: str = os.environ.get("COURSE_CODE_PREFIX", "WEBCAPZ")
    GENERAL_CODE_PREFIX: str = os.environ.get("GENERAL_CODE_PREFIX", "WEBCAPZ-GEN")

    # Provisioning
    MIN_PASSWORD_LENGTH: int = int(os.environ.get("MIN_PASSWORD_LENGTH", 6))
    RECONCILE_INTERVAL_MINUTES: int = int(os.environ.get("RECONCILE_INTERVAL_MINUTES", 15))

    CORS_ORIGINS: list = os.environ.get("CORS_ORIGINS", "*").split(",")
    LOG_DIR: str = os.environ.get("LOG_DIR", "logs")

# Single importable instance
settings = Config()
