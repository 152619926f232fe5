import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    secret_key: str
    env: str
    database_url: str
    port: int
    log_level: str

    allowed_origins: tuple[str, ...]
    token_ttl_days: int

    storage_backend: str
    storage_local_root: str
    s3_endpoint: str
    s3_region: str
    s3_bucket: str
    s3_access_key_id: str
    s3_secret_access_key: str


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _getenv_int(name: str, default: int) -> int:
    raw = _getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _split_csv(raw: str) -> tuple[str, ...]:
    return tuple(x.strip() for x in (raw or "").split(",") if x.strip())


def load_settings() -> Settings:
    return Settings(
        secret_key=_getenv("SECRET_KEY", "change-me"),
        env=_getenv("ENV", "development"),
        database_url=_getenv("DATABASE_URL", "sqlite:///incubator.db"),
        port=_getenv_int("PORT", 5000),
        log_level=_getenv("LOG_LEVEL", "INFO").upper(),
        allowed_origins=_split_csv(_getenv("ALLOWED_ORIGINS", "http://localhost:5174,http://localhost:3000")),
        token_ttl_days=max(1, _getenv_int("TOKEN_TTL_DAYS", 30)),
        storage_backend=_getenv("STORAGE_BACKEND", "local"),
        storage_local_root=_getenv("STORAGE_LOCAL_ROOT", ""),
        s3_endpoint=_getenv("S3_ENDPOINT", ""),
        s3_region=_getenv("S3_REGION", "nyc3"),
        s3_bucket=_getenv("S3_BUCKET", ""),
        s3_access_key_id=_getenv("S3_ACCESS_KEY_ID", ""),
        s3_secret_access_key=_getenv("S3_SECRET_ACCESS_KEY", ""),
    )


def is_production(env: str | None) -> bool:
    return (env or "").strip().lower() in ("prod", "production")


def load_config() -> dict:
    s = load_settings()
    production = is_production(s.env)
    return {
        "SECRET_KEY": s.secret_key,
        "ENV": s.env,
        "DATABASE_URL": s.database_url,
        "PORT": s.port,
        "LOG_LEVEL": s.log_level,
        "ALLOWED_ORIGINS": list(s.allowed_origins),
        "TOKEN_TTL_SECONDS": s.token_ttl_days * 24 * 60 * 60,
        "TOKEN_COOKIE_NAME": "token",
        "TOKEN_COOKIE_SECURE": production,  # Require HTTPS in production
        "STORAGE_BACKEND": s.storage_backend,
        "STORAGE_LOCAL_ROOT": s.storage_local_root,
        "S3_ENDPOINT": s.s3_endpoint,
        "S3_REGION": s.s3_region,
        "S3_BUCKET": s.s3_bucket,
        "S3_ACCESS_KEY_ID": s.s3_access_key_id,
        "S3_SECRET_ACCESS_KEY": s.s3_secret_access_key,
        # file upload limits (25MB)
        "MAX_CONTENT_LENGTH": 25 * 1024 * 1024,
    }
