"""Application settings using pydantic-settings."""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

from wildcert.retry import BackoffPolicy

LETSENCRYPT_DIRECTORY_URL = "https://acme-v02.api.letsencrypt.org/directory"
LETSENCRYPT_STAGING_DIRECTORY_URL = (
    "https://acme-staging-v02.api.letsencrypt.org/directory"
)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Certificate request defaults (overridable per trigger)
    domain_pattern: str = ""
    contact_email: str = ""
    hosted_zone_id: str = ""
    include_apex: bool = True
    renewal_window_days: int = 30

    # ACME
    acme_directory_url: str = LETSENCRYPT_DIRECTORY_URL
    acme_user_agent: str = "wildcert"
    account_key_secret_id: str = ""
    certificate_key_size: int = 2048

    # AWS configuration
    aws_region: str = ""
    artifact_bucket: str = ""
    artifact_prefix: str = "certificates"
    kms_key_id: str = ""
    notification_queue_url: str = ""

    # Retention and locking
    retention_days: int = 30
    order_lock_ttl_seconds: int = 900
    max_consecutive_order_failures: int = 3

    # Retry and polling
    cycle_max_attempts: int = 3
    cycle_retry_delay: float = 30.0
    step_max_attempts: int = 4
    step_retry_delay: float = 2.0
    rate_limit_max_attempts: int = 3
    rate_limit_retry_delay: float = 60.0
    order_poll_attempts: int = 30
    order_poll_delay: float = 2.0
    order_poll_max_delay: float = 15.0

    # DNS
    dns_record_ttl: int = 30
    dns_change_poll_attempts: int = 60
    dns_change_poll_delay: float = 5.0
    dns_propagation_attempts: int = 20
    dns_propagation_delay: float = 5.0
    dns_propagation_max_delay: float = 30.0
    dns_query_timeout: float = 5.0
    public_resolvers: list[str] = []

    # Notification
    notification_max_attempts: int = 3
    notification_retry_delay: float = 1.0

    debug: bool = False

    @property
    def cycle_policy(self) -> BackoffPolicy:
        """Backoff between whole order attempts within a cycle."""
        return BackoffPolicy(
            max_attempts=self.cycle_max_attempts,
            base_delay=self.cycle_retry_delay,
        )

    @property
    def step_policy(self) -> BackoffPolicy:
        """Backoff for a single CA request hitting transient errors."""
        return BackoffPolicy(
            max_attempts=self.step_max_attempts,
            base_delay=self.step_retry_delay,
        )

    @property
    def rate_limit_policy(self) -> BackoffPolicy:
        """Longer backoff for CA rate-limit responses."""
        return BackoffPolicy(
            max_attempts=self.rate_limit_max_attempts,
            base_delay=self.rate_limit_retry_delay,
            max_delay=600.0,
        )

    @property
    def order_poll_policy(self) -> BackoffPolicy:
        """Polling of order and authorization status."""
        return BackoffPolicy(
            max_attempts=self.order_poll_attempts,
            base_delay=self.order_poll_delay,
            max_delay=self.order_poll_max_delay,
            multiplier=1.5,
        )

    @property
    def dns_change_policy(self) -> BackoffPolicy:
        """Polling of Route53 change status."""
        return BackoffPolicy(
            max_attempts=self.dns_change_poll_attempts,
            base_delay=self.dns_change_poll_delay,
            multiplier=1.0,
        )

    @property
    def dns_propagation_policy(self) -> BackoffPolicy:
        """Polling of name servers for the challenge record."""
        return BackoffPolicy(
            max_attempts=self.dns_propagation_attempts,
            base_delay=self.dns_propagation_delay,
            max_delay=self.dns_propagation_max_delay,
            multiplier=1.5,
        )

    @property
    def notification_policy(self) -> BackoffPolicy:
        """Retries for queue delivery."""
        return BackoffPolicy(
            max_attempts=self.notification_max_attempts,
            base_delay=self.notification_retry_delay,
        )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
