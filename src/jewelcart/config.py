"""Process configuration for jewelcart, read from JEWELCART_* environment variables."""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

from .errors import ConfigError

ENV_PREFIX = "JEWELCART_"

# Local data directory within the jewelcart project
_default_data_dir = Path(__file__).parent.parent.parent / "data"


def _get_int(env: Mapping[str, str], key: str, default: int, minimum: int = 0) -> int:
    raw = env.get(ENV_PREFIX + key)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ConfigError(ENV_PREFIX + key, raw, "expected an integer")
    if value < minimum:
        raise ConfigError(ENV_PREFIX + key, raw, f"must be >= {minimum}")
    return value


def _get_float(env: Mapping[str, str], key: str, default: float) -> float:
    raw = env.get(ENV_PREFIX + key)
    if raw is None or raw == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ConfigError(ENV_PREFIX + key, raw, "expected a number")
    if value <= 0:
        raise ConfigError(ENV_PREFIX + key, raw, "must be positive")
    return value


def _get_bool(env: Mapping[str, str], key: str, default: bool) -> bool:
    raw = env.get(ENV_PREFIX + key)
    if raw is None or raw == "":
        return default
    lowered = raw.strip().lower()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off"):
        return False
    raise ConfigError(ENV_PREFIX + key, raw, "expected a boolean")


@dataclass
class SmtpConfig:
    host: str = "localhost"
    port: int = 587
    username: str | None = None
    password: str | None = None
    start_tls: bool = True
    timeout: float = 30.0


@dataclass
class AppConfig:
    """Everything the pipeline needs that is not stored in the Settings document."""

    data_dir: Path = _default_data_dir
    bulk_delay_ms: int = 3000
    max_attempts: int = 3
    retry_delay_seconds: int = 300
    mail_transport: str = "console"  # "console" | "smtp"
    mail_from: str = "orders@localhost"
    smtp: SmtpConfig | None = None
    store_url: str = "http://localhost:3000"
    support_email: str = "contact@sarajeweler.com"
    support_phone: str = "609-855-9100"

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> "AppConfig":
        """
        Build configuration from environment variables.

        Raises:
            ConfigError: If a value cannot be parsed.
        """
        env = os.environ if env is None else env

        transport = env.get(ENV_PREFIX + "MAIL_TRANSPORT", "console").strip().lower()
        if transport not in ("console", "smtp"):
            raise ConfigError(ENV_PREFIX + "MAIL_TRANSPORT", transport, "expected 'console' or 'smtp'")

        smtp = SmtpConfig(
            host=env.get(ENV_PREFIX + "SMTP_HOST", "localhost"),
            port=_get_int(env, "SMTP_PORT", 587, minimum=1),
            username=env.get(ENV_PREFIX + "SMTP_USERNAME") or None,
            password=env.get(ENV_PREFIX + "SMTP_PASSWORD") or None,
            start_tls=_get_bool(env, "SMTP_STARTTLS", True),
            timeout=_get_float(env, "SMTP_TIMEOUT", 30.0),
        )

        return cls(
            data_dir=Path(env.get(ENV_PREFIX + "DATA_DIR") or _default_data_dir),
            bulk_delay_ms=_get_int(env, "BULK_DELAY_MS", 3000),
            max_attempts=_get_int(env, "MAX_ATTEMPTS", 3, minimum=1),
            retry_delay_seconds=_get_int(env, "RETRY_DELAY_SECONDS", 300),
            mail_transport=transport,
            mail_from=env.get(ENV_PREFIX + "MAIL_FROM", "orders@localhost"),
            smtp=smtp,
            store_url=env.get(ENV_PREFIX + "STORE_URL", "http://localhost:3000").rstrip("/"),
            support_email=env.get(ENV_PREFIX + "SUPPORT_EMAIL", "contact@sarajeweler.com"),
            support_phone=env.get(ENV_PREFIX + "SUPPORT_PHONE", "609-855-9100"),
        )
