from typing import List, Optional
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Environment
    ENVIRONMENT: Optional[str] = None

    # Database (PostgreSQL - local or deployed)
    DATABASE_URL: Optional[str] = None

    # JWT Settings (tokens are issued by the platform auth service)
    JWT_SECRET_KEY: Optional[str] = None
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60

    # CORS
    ALLOWED_ORIGINS: List[str] = []

    # Log Level
    LOG_LEVEL: (
        str  # Required: Must be set in environment (e.g., INFO, DEBUG, WARNING, ERROR)
    )

    # API Configuration
    API_V1_PREFIX: str = "/api/v1"
    PROJECT_NAME: str = "Worker-Verification-API"
    VERSION: str = "1.0.0"

    # Sentry Configuration
    SENTRY_DSN: Optional[str] = None  # Sentry DSN for error tracking

    # Scheduler Authentication
    SCHEDULER_SECRET_TOKEN: Optional[str] = None  # Secret token for scheduler endpoints

    # External API Retry Configuration (verification providers)
    # Uses tenacity library for retry logic with exponential backoff
    EXTERNAL_API_RETRY_ATTEMPTS: int = (
        4  # Total attempts (3 retries + 1 initial = 4 total)
    )
    EXTERNAL_API_RETRY_MIN_WAIT: float = (
        0.5  # Minimum wait time between retries (seconds)
    )
    EXTERNAL_API_RETRY_MAX_WAIT: float = (
        2.0  # Maximum wait time between retries (seconds)
    )
    EXTERNAL_API_RETRY_MULTIPLIER: float = 1.0  # Exponential backoff multiplier

    # Outbound provider calls
    PROVIDER_HTTP_TIMEOUT_SECONDS: float = 30.0

    # Provider selection
    IDENTITY_PROVIDER: str = "chandler"  # "chandler" or "privy"
    VEVO_PROVIDER: str = "vsure"  # "vsure" or "checkworkrights"

    # Identity (Chandler / Privy)
    CHANDLER_API_URL: str = "https://api.chandlermacleod.com.au"
    CHANDLER_API_KEY: Optional[str] = None
    PRIVY_API_URL: str = "https://api.privy.com.au"
    PRIVY_API_KEY: Optional[str] = None
    IDENTITY_WEBHOOK_SECRET: Optional[str] = None

    # VEVO work rights (VSure / CheckWorkRights)
    VSURE_API_URL: str = "https://api.vsure.com.au"
    VSURE_API_KEY: Optional[str] = None
    CHECKWORKRIGHTS_API_URL: str = "https://api.checkworkrights.com.au"
    CHECKWORKRIGHTS_API_KEY: Optional[str] = None
    VEVO_WEBHOOK_SECRET: Optional[str] = None

    # Working with Children Check (Oho)
    OHO_API_URL: str = "https://app.weareoho.com"
    OHO_API_KEY: Optional[str] = None
    OHO_WEBHOOK_SECRET: Optional[str] = None

    # NDIS Worker Screening (portal only, no public API)
    NDIS_PORTAL_URL: str = "https://workerscreeningcheck.ndiscommission.gov.au"
    NDIS_DEFAULT_VALIDITY_YEARS: int = 5

    # First Aid (USI transcript)
    USI_API_URL: str = "https://api.usi.gov.au"
    USI_API_KEY: Optional[str] = None
    FIRST_AID_VALIDITY_YEARS: int = 3

    # ABN Lookup (Australian Business Register)
    ABR_API_URL: str = "https://abr.business.gov.au/json"
    ABR_GUID: Optional[str] = None  # Format-only validation when not set

    # TFN (format validation only, never stored in clear)
    TFN_HASH_KEY: Optional[str] = None  # Falls back to JWT_SECRET_KEY

    # Required verifications for a worker to be cleared
    REQUIRED_VERIFICATION_TYPES: List[str] = ["IDENTITY", "VEVO"]
    ENABLE_WWCC: bool = True
    ENABLE_NDIS: bool = True
    ENABLE_FIRST_AID: bool = False

    # Verification lifecycle
    EXPIRY_WARNING_DAYS: int = 30  # EXPIRING_SOON window before expires_at
    EXPIRED_RECHECK_WEEKDAY: int = 6  # datetime.weekday(): 6 = Sunday
    MAX_CONSECUTIVE_POLL_FAILURES: int = (
        5  # Provider outages tolerated before a pending check is failed
    )

    # Webhooks
    WEBHOOK_RATE_LIMIT: str = "100/minute"

    # Logging Configuration
    LOGGING_FRAME_DEPTH: int = (
        6  # Frame depth for finding logging call origin in stack trace
    )

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"

    # --------- Properties ---------
    @property
    def is_local(self) -> bool:
        """
        Check if running in local development environment.

        Supported values:
        - "local" or "local_dev" → True (local development)
        - "dev", "staging", "prod", or anything else → False (deployed)
        """
        if not self.ENVIRONMENT:
            return False
        env = self.ENVIRONMENT.lower()
        return env in ["local", "local_dev"]

    @property
    def required_verification_types(self) -> List[str]:
        """Default required verification types, including feature-flagged checks."""
        required = [t.upper() for t in self.REQUIRED_VERIFICATION_TYPES]
        for flag, verification_type in (
            (self.ENABLE_WWCC, "WWCC"),
            (self.ENABLE_NDIS, "NDIS"),
            (self.ENABLE_FIRST_AID, "FIRST_AID"),
        ):
            if flag and verification_type not in required:
                required.append(verification_type)
        return required


settings = Settings()
