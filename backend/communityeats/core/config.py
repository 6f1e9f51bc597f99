# communityeats/core/config.py

import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import List, Optional

from dotenv import load_dotenv

# =========================
# CONFIGURATION
# =========================

DB_USER = os.getenv("DB_USER", "communityeats")
DB_PASS = os.getenv("DB_PASS", "communityeats")
DB_HOST = os.getenv("DB_HOST", "localhost")
DB_PORT = os.getenv("DB_PORT", "5432")
DB_NAME = os.getenv("DB_NAME", "communityeats")

DEFAULT_DATABASE_URL = f"postgresql://{DB_USER}:{DB_PASS}@{DB_HOST}:{DB_PORT}/{DB_NAME}"


def _split_csv(raw: str, lower: bool = False) -> List[str]:
    items = [item.strip() for item in raw.split(",")]
    if lower:
        items = [item.lower() for item in items]
    return [item for item in items if item]


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class Settings:
    database_url: str = DEFAULT_DATABASE_URL

    # Bearer credential verification. A shared secret for HS* tokens, or a PEM
    # public key for asymmetric algorithms issued by the identity provider.
    jwt_secret: Optional[str] = None
    jwt_public_key: Optional[str] = None
    jwt_algorithms: List[str] = field(default_factory=lambda: ["HS256"])
    jwt_audience: Optional[str] = None

    storage_bucket: str = "communityeats-listings"
    storage_region: Optional[str] = None
    storage_endpoint_url: Optional[str] = None
    signed_url_ttl_seconds: int = 3600

    admin_email_allowlist: List[str] = field(default_factory=list)

    cors_origins: List[str] = field(default_factory=lambda: ["*"])
    rate_limit_enabled: bool = True
    message_rate_limit: str = "30/minute"
    stream_poll_interval: float = 1.0
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        load_dotenv()

        allowlist = (
            os.getenv("ADMIN_EMAIL_ALLOWLIST")
            or os.getenv("ADMIN_EMAILS")
            or os.getenv("ADMIN_EMAIL_WHITELIST")
            or ""
        )

        return cls(
            database_url=os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL),
            jwt_secret=os.getenv("AUTH_JWT_SECRET"),
            jwt_public_key=os.getenv("AUTH_JWT_PUBLIC_KEY"),
            jwt_algorithms=_split_csv(os.getenv("AUTH_JWT_ALGORITHMS", "HS256")),
            jwt_audience=os.getenv("AUTH_JWT_AUDIENCE"),
            storage_bucket=os.getenv("STORAGE_BUCKET", "communityeats-listings"),
            storage_region=os.getenv("STORAGE_REGION"),
            storage_endpoint_url=os.getenv("STORAGE_ENDPOINT_URL"),
            signed_url_ttl_seconds=int(os.getenv("SIGNED_URL_TTL_SECONDS", "3600")),
            admin_email_allowlist=_split_csv(allowlist, lower=True),
            cors_origins=_split_csv(os.getenv("CORS_ORIGINS", "*")),
            rate_limit_enabled=_env_bool("RATE_LIMIT_ENABLED", True),
            message_rate_limit=os.getenv("MESSAGE_RATE_LIMIT", "30/minute"),
            stream_poll_interval=float(os.getenv("STREAM_POLL_INTERVAL", "1.0")),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Process-wide settings, read from the environment on first use."""
    return Settings.from_env()
