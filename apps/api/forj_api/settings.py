"""Application settings and configuration."""

from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database
    database_url: Optional[str] = None
    postgres_user: str = "forj"
    postgres_password: str = "forj_dev_password"
    postgres_host: str = "localhost"
    postgres_db: str = "forj"
    postgres_port: int = 5432

    # Redis (Celery broker for the expiry sweep)
    redis_url: str = "redis://localhost:6379/0"

    # API
    api_port: int = 8000
    api_host: str = "0.0.0.0"
    secret_key: str = "dev-secret-key-change-in-production"
    environment: str = "development"

    # Logging
    log_level: str = "INFO"

    # Signing key
    signing_key_path: str = "./secrets/forj_signing_key.pem"
    signing_key_id: Optional[str] = None  # For KMS
    signing_key_provider: str = "local"  # local, aws_kms

    # AWS (for KMS)
    aws_region: Optional[str] = None

    # Certificate and license lifecycle
    certificate_validity_days: Optional[int] = None  # None: certificates never expire by time
    auto_issue_certificate: bool = True
    license_requires_active_certificate: bool = True
    sweep_interval_seconds: int = 60

    # CORS
    cors_origins: list[str] = ["*"]
    cors_allow_credentials: bool = True
    cors_allow_methods: list[str] = ["*"]
    cors_allow_headers: list[str] = ["*"]

    @property
    def database_url_computed(self) -> str:
        """Compute database URL if not explicitly set."""
        if self.database_url:
            return self.database_url
        return (
            f"postgresql://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment.lower() == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development."""
        return self.environment.lower() in ("development", "dev", "test")

    def validate_production_settings(self):
        """Validate settings for production environment."""
        if self.is_development:
            return
        if self.secret_key.startswith("dev-"):
            raise ValueError(
                "SECRET_KEY must be set outside development. "
                "API key digests are keyed with it."
            )
        if self.signing_key_provider == "local":
            raise ValueError(
                "SIGNING_KEY_PROVIDER=local is not allowed in production. "
                "Use SIGNING_KEY_PROVIDER=aws_kms."
            )


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
