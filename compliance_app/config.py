from pydantic_settings import BaseSettings, SettingsConfigDict
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
from jose import jwt

DEFAULT_COMPLETION_PHRASES = [
    "i believe i have enough information now. thank you for your detailed responses. i am ready to generate your compliance dashboard.",
    "thank you for all the information",
    "i have sufficient information",
    "onboarding complete",
    "i have enough information now",
    "i believe i have enough information",
    "okay, great! i am ready for the compliance dashboard.",
]


class Settings(BaseSettings):
    app_name: str = "Compliance Tracker"
    app_version: str = "1.0.0"
    debug: bool = True
    environment: str = "development"
    allowed_origins: str = "*"

    mongo_uri: str = "mongodb://localhost:27017"
    mongo_db_name: str = "compliance_tracker"
    app_namespace: str = "artifacts/compliance-tracker"

    jwt_secret_key: str
    jwt_algorithm: str = "HS256"
    access_token_expire_minutes: int = 60
    refresh_token_expire_days: int = 7

    # Gemini
    gemini_api_key: Optional[str] = None
    gemini_api_base_url: str = "https://generativelanguage.googleapis.com/v1beta/models"
    gemini_model: str = "gemini-2.0-flash"
    gemini_timeout_seconds: float = 60.0
    gemini_temperature: float = 0.7
    gemini_top_k: int = 40
    gemini_top_p: float = 0.95

    # Remote config
    remote_config_min_fetch_interval_dev_seconds: int = 5
    remote_config_min_fetch_interval_prod_seconds: int = 3600

    # Onboarding
    onboarding_completion_phrases: List[str] = DEFAULT_COMPLETION_PHRASES
    onboarding_min_context_entries: int = 8
    onboarding_typing_delay_seconds: float = 1.0
    onboarding_settle_delay_seconds: float = 2.0

    trial_length_days: int = 5

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    @property
    def is_production(self) -> bool:
        return self.environment.strip().lower() in {"production", "prod", "live"}

    @property
    def remote_config_min_fetch_interval(self) -> timedelta:
        if self.is_production:
            return timedelta(seconds=self.remote_config_min_fetch_interval_prod_seconds)
        return timedelta(seconds=self.remote_config_min_fetch_interval_dev_seconds)


settings = Settings()
# -----------------------
# JWT configuration
# -----------------------
JWT_SECRET = settings.jwt_secret_key
JWT_ALGORITHM = settings.jwt_algorithm
ACCESS_TOKEN_EXPIRE_MINUTES = settings.access_token_expire_minutes  # minutes
REFRESH_TOKEN_EXPIRE_DAYS = settings.refresh_token_expire_days

if not JWT_SECRET:
    raise RuntimeError("JWT_SECRET_KEY must be set in environment")

def _now_utc() -> datetime:
    return datetime.now(timezone.utc)

def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    now = _now_utc()
    expire = now + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"iat": now, "exp": expire, "type": "access"})
    return jwt.encode(to_encode, JWT_SECRET, algorithm=JWT_ALGORITHM)

def create_refresh_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    now = _now_utc()
    expire = now + (expires_delta or timedelta(days=REFRESH_TOKEN_EXPIRE_DAYS))
    to_encode.update({"iat": now, "exp": expire, "type": "refresh"})
    return jwt.encode(to_encode, JWT_SECRET, algorithm=JWT_ALGORITHM)
