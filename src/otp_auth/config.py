"""OTP Auth — configuration loaded from environment."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application-wide settings, loaded from .env or environment variables."""

    # ── App ───────────────────────────────────────────────
    app_name: str = "OTP Auth"
    environment: str = "development"
    debug: bool = False

    # ── Storage ───────────────────────────────────────────
    # Neither set → in-memory store (single instance only)
    database_url: str | None = None
    redis_url: str | None = None

    # ── Session tokens ────────────────────────────────────
    jwt_secret: str | None = None
    jwt_algorithm: str = "HS256"
    token_ttl_seconds: int = 7 * 24 * 60 * 60

    # ── One-time codes ────────────────────────────────────
    otp_ttl_seconds: int = 10 * 60
    otp_length: int = 6
    otp_hash_rounds: int = 10
    otp_max_attempts: int = 0  # 0 = wrong guesses are not capped
    otp_rollback_on_delivery_failure: bool = True
    otp_sweep_interval_seconds: int = 60
    expose_code_in_response: bool = False

    # ── Rate limiting ─────────────────────────────────────
    rate_limit_window_seconds: int = 15 * 60
    rate_limit_max_requests: int = 5

    backend_timeout_seconds: float = 3.0

    # ── SMTP ──────────────────────────────────────────────
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_username: str = ""
    smtp_password: str = ""
    smtp_start_tls: bool = True
    email_from: str = ""
    support_email: str = ""

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    @property
    def is_production(self) -> bool:
        return self.environment.lower() in ("production", "prod")

    @property
    def echo_codes(self) -> bool:
        """Whether issued codes may be returned in API responses."""
        return self.expose_code_in_response and not self.is_production


# Singleton settings instance
settings = Settings()
