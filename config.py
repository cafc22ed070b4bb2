"""
Runtime settings for the shop backend.

Values come from the process environment (optionally a local .env file).
"""
import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

load_dotenv()


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return int(raw)


@dataclass(frozen=True)
class Settings:
    database_url: str = field(default_factory=lambda: os.getenv("DATABASE_URL", ""))
    database_name: str = field(default_factory=lambda: os.getenv("DATABASE_NAME", ""))

    jwt_secret: str = field(default_factory=lambda: os.getenv("JWT_SECRET", "devsecret"))
    jwt_algo: str = "HS256"
    jwt_ttl_days: int = field(default_factory=lambda: _int_env("JWT_TTL_DAYS", 7))
    bcrypt_rounds: int = field(default_factory=lambda: _int_env("BCRYPT_ROUNDS", 10))

    otp_length: int = field(default_factory=lambda: _int_env("OTP_LENGTH", 6))
    otp_ttl_minutes: int = field(default_factory=lambda: _int_env("OTP_TTL_MINUTES", 5))
    otp_resend_cooldown_seconds: int = field(
        default_factory=lambda: _int_env("OTP_RESEND_COOLDOWN_SECONDS", 60)
    )

    resend_api_key: str = field(default_factory=lambda: os.getenv("RESEND_API_KEY", ""))
    email_from: str = field(default_factory=lambda: os.getenv("EMAIL_FROM", "no-reply@eyes-perfume.shop"))
    shop_name: str = field(default_factory=lambda: os.getenv("SHOP_NAME", "EYES Perfume"))

    admin_email: str = field(default_factory=lambda: os.getenv("ADMIN_EMAIL", ""))
    admin_password: str = field(default_factory=lambda: os.getenv("ADMIN_PASSWORD", ""))
    admin_session_ttl_hours: int = field(default_factory=lambda: _int_env("ADMIN_SESSION_TTL_HOURS", 24))

    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))
    port: int = field(default_factory=lambda: _int_env("PORT", 8000))


settings = Settings()
