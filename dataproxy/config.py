"""Proxy Settings - Environment-sourced configuration

Self-Explanatory: Everything the proxy needs from its environment, read once.
Why: Secrets must be present at startup; a missing key should stop the process,
not surface later as a per-request failure.
How: starlette Config reads env vars with a .env fallback; secrets stay wrapped in
Secret so they never show up in a repr or a log line.
"""
from dataclasses import dataclass
from typing import Optional

import structlog
from starlette.config import Config
from starlette.datastructures import CommaSeparatedStrings, Secret

from dataproxy.errors import ConfigurationError

logger = structlog.get_logger()

REQUIRED_SETTINGS = (
    "SUPABASE_URL",
    "SUPABASE_ANON_KEY",
    "SUPABASE_SERVICE_ROLE_KEY",
    "DATA_ENCRYPTION_KEY",
)


@dataclass(frozen=True)
class ProxySettings:
    supabase_url: str
    supabase_anon_key: Secret
    supabase_service_role_key: Secret
    data_encryption_key: Secret
    role_table: str = "user_roles"
    upstream_timeout_seconds: float = 10.0
    cors_allow_origins: tuple = ("*",)
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, config: Optional[Config] = None) -> "ProxySettings":
        """Build settings from the environment

        Raises:
            ConfigurationError if any required setting is missing or empty
        """
        config = config or Config(".env")

        missing = [name for name in REQUIRED_SETTINGS if not config(name, default="")]
        if missing:
            logger.error("Missing required settings", settings=missing)
            raise ConfigurationError(f"Missing required settings: {', '.join(missing)}")

        return cls(
            supabase_url=config("SUPABASE_URL").rstrip("/"),
            supabase_anon_key=config("SUPABASE_ANON_KEY", cast=Secret),
            supabase_service_role_key=config("SUPABASE_SERVICE_ROLE_KEY", cast=Secret),
            data_encryption_key=config("DATA_ENCRYPTION_KEY", cast=Secret),
            role_table=config("ROLE_TABLE", default="user_roles"),
            upstream_timeout_seconds=config("UPSTREAM_TIMEOUT_SECONDS", cast=float, default=10.0),
            cors_allow_origins=tuple(
                config("CORS_ALLOW_ORIGINS", cast=CommaSeparatedStrings, default="*")
            ),
            log_level=config("LOG_LEVEL", default="INFO").upper(),
        )
