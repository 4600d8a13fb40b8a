import json
import os
import threading
from urllib.parse import urlparse

from dotenv import load_dotenv
from pydantic import BaseModel, Field


load_dotenv()


def _parse_positive_int(name: str, default: int) -> int:
    raw = os.getenv(name, str(default)).strip()
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer") from exc
    if value <= 0:
        raise ValueError(f"{name} must be greater than 0")
    return value


def _parse_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name, str(default)).strip().lower()
    if raw in {"1", "true", "yes", "on"}:
        return True
    if raw in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"{name} must be a boolean value")


def _parse_csv(raw: str) -> list[str]:
    return [item.strip() for item in raw.split(",") if item.strip()]


class Settings(BaseModel):
    app_name: str = Field(default="Portal Access Core")
    debug: bool = Field(default=False)
    database_url: str = Field(default="")
    allowed_origins: list[str] = Field(default_factory=list)
    db_pool_size: int = Field(default=5)
    db_max_overflow: int = Field(default=10)
    db_pool_recycle: int = Field(default=1800)
    db_pool_pre_ping: bool = Field(default=True)
    secret_key: str | None = Field(default=None)
    access_token_expire_minutes: int = Field(default=30)
    algorithm: str = Field(default="HS256")
    login_max_attempts: int = Field(default=5)
    login_window_seconds: int = Field(default=900)
    login_lockout_steps_seconds: list[int] = Field(
        default_factory=lambda: [60, 300, 900, 1800]
    )
    log_buffer_capacity: int = Field(default=500)
    rate_limit_sweep_seconds: int = Field(default=300)
    trusted_proxies: list[str] = Field(default_factory=lambda: ["127.0.0.1", "::1"])

    @classmethod
    def from_env(cls) -> "Settings":
        secret_key = os.getenv("SECRET_KEY", "").strip()
        if not secret_key:
            raise ValueError("SECRET_KEY environment variable must be set")

        raw_allowed_origins = os.getenv("ALLOWED_ORIGINS", "").strip()
        if not raw_allowed_origins:
            raise ValueError("ALLOWED_ORIGINS environment variable must be set")

        # Support both CSV format and JSON array format
        allowed_origins: list[str] = []
        if raw_allowed_origins.startswith("["):
            try:
                parsed_list = json.loads(raw_allowed_origins)
                if not isinstance(parsed_list, list):
                    raise ValueError("ALLOWED_ORIGINS JSON must be an array")
                allowed_origins = [
                    origin.strip() for origin in parsed_list if isinstance(origin, str) and origin.strip()
                ]
            except json.JSONDecodeError as exc:
                raise ValueError(f"ALLOWED_ORIGINS JSON is malformed: {exc}") from exc
        else:
            allowed_origins = _parse_csv(raw_allowed_origins)

        if not allowed_origins:
            raise ValueError("ALLOWED_ORIGINS must contain at least one origin")

        if "*" in allowed_origins:
            raise ValueError(
                "ALLOWED_ORIGINS cannot contain '*' when credentialed requests are used"
            )

        for origin in allowed_origins:
            parsed = urlparse(origin)
            if parsed.scheme not in {"http", "https"} or not parsed.netloc:
                raise ValueError(
                    "ALLOWED_ORIGINS must contain valid http/https origins with host"
                )

        database_url = os.getenv("DATABASE_URL", "").strip()
        if not database_url:
            raise ValueError("DATABASE_URL environment variable must be set")

        parsed_db = urlparse(database_url)
        if parsed_db.scheme != "postgresql+asyncpg":
            raise ValueError("DATABASE_URL must start with 'postgresql+asyncpg://'")
        if not parsed_db.hostname:
            raise ValueError("DATABASE_URL must include hostname")

        db_pool_size = _parse_positive_int(
            "DB_POOL_SIZE", cls.model_fields["db_pool_size"].default
        )

        db_max_overflow = int(
            os.getenv("DB_MAX_OVERFLOW", cls.model_fields["db_max_overflow"].default)
        )
        if db_max_overflow < 0:
            raise ValueError("DB_MAX_OVERFLOW must be greater than or equal to 0")

        db_pool_recycle = _parse_positive_int(
            "DB_POOL_RECYCLE", cls.model_fields["db_pool_recycle"].default
        )
        db_pool_pre_ping = _parse_bool(
            "DB_POOL_PRE_PING", cls.model_fields["db_pool_pre_ping"].default
        )

        raw_steps = os.getenv("LOGIN_LOCKOUT_STEPS_SECONDS", "60,300,900,1800")
        try:
            lockout_steps = [int(step) for step in _parse_csv(raw_steps)]
        except ValueError as exc:
            raise ValueError(
                "LOGIN_LOCKOUT_STEPS_SECONDS must be a comma-separated list of integers"
            ) from exc
        if not lockout_steps or any(step <= 0 for step in lockout_steps):
            raise ValueError("LOGIN_LOCKOUT_STEPS_SECONDS values must be greater than 0")

        # 0 disables the periodic sweep; expired entries are still reset lazily
        sweep_seconds = int(os.getenv("RATE_LIMIT_SWEEP_SECONDS", "300"))
        if sweep_seconds < 0:
            raise ValueError("RATE_LIMIT_SWEEP_SECONDS must be greater than or equal to 0")

        trusted_proxies = _parse_csv(os.getenv("TRUSTED_PROXIES", "127.0.0.1,::1"))

        return cls(
            app_name=os.getenv("APP_NAME", cls.model_fields["app_name"].default),
            debug=os.getenv("DEBUG", "false").lower() == "true",
            database_url=database_url,
            allowed_origins=allowed_origins,
            secret_key=secret_key,
            access_token_expire_minutes=_parse_positive_int(
                "ACCESS_TOKEN_EXPIRE_MINUTES",
                cls.model_fields["access_token_expire_minutes"].default,
            ),
            algorithm=os.getenv("ALGORITHM", cls.model_fields["algorithm"].default),
            db_pool_size=db_pool_size,
            db_max_overflow=db_max_overflow,
            db_pool_recycle=db_pool_recycle,
            db_pool_pre_ping=db_pool_pre_ping,
            login_max_attempts=_parse_positive_int(
                "LOGIN_MAX_ATTEMPTS", cls.model_fields["login_max_attempts"].default
            ),
            login_window_seconds=_parse_positive_int(
                "LOGIN_WINDOW_SECONDS", cls.model_fields["login_window_seconds"].default
            ),
            login_lockout_steps_seconds=lockout_steps,
            log_buffer_capacity=_parse_positive_int(
                "LOG_BUFFER_CAPACITY", cls.model_fields["log_buffer_capacity"].default
            ),
            rate_limit_sweep_seconds=sweep_seconds,
            trusted_proxies=trusted_proxies,
        )


# Settings are built on first access so that importing the package never
# requires a populated environment.
_settings_instance: Settings | None = None
_settings_lock = threading.Lock()


def get_settings() -> Settings:
    """Get settings instance, creating it on first access.

    Uses double-checked locking so concurrent first calls build the
    instance once. threading.Lock works in both sync and async contexts.

    Raises:
        ValueError: If required environment variables are missing or invalid
    """
    global _settings_instance

    if _settings_instance is not None:
        return _settings_instance

    with _settings_lock:
        if _settings_instance is None:
            _settings_instance = Settings.from_env()

    return _settings_instance


def reset_settings() -> None:
    """Drop the cached instance so the next access re-reads the environment."""
    global _settings_instance
    with _settings_lock:
        _settings_instance = None


class _SettingsProxy:
    """Proxy to defer settings creation until first attribute access."""

    def __getattr__(self, name: str):
        return getattr(get_settings(), name)


settings = _SettingsProxy()  # type: ignore[assignment]
