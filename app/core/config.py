"""
Application configuration.
All settings are loaded from environment variables.
Use env.example as a reference for required variables.
"""
from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    IMPORTANT: Secrets have no defaults - they MUST be set in .env file.
    """

    # ===========================================
    # APPLICATION
    # ===========================================
    app_env: str = "local"
    # Public origin of this service, used for provider return addresses and
    # for validating visitor-supplied return URLs. Example: https://news.example.com
    public_base_url: str = "http://localhost:8000"
    cors_origins: str = ""

    # ===========================================
    # DATABASE (PostgreSQL)
    # ===========================================
    database_url: str  # Required, no default

    # ===========================================
    # REDIS & CELERY
    # ===========================================
    redis_url: str  # Required, no default
    celery_broker_url: str  # Required, no default
    celery_result_backend: str  # Required, no default

    # ===========================================
    # CLIENT IP / NETWORK CLASSIFICATION
    # ===========================================
    # Header precedence, closest-to-origin first. The transport peer address is the last resort.
    client_ip_headers: str = "cf-connecting-ip,x-forwarded-for,x-real-ip"
    # Trusted proxy IPs (comma-separated). Empty = forwarded headers are always honoured.
    trusted_proxy_ips: str = ""
    # Optional JSON file with carrier ranges merged over the built-in table (by carrier code).
    carrier_ranges_file: str | None = None

    # ===========================================
    # SUBSCRIBER IDENTITY COOKIE
    # ===========================================
    identity_cookie_secret: str  # Required, no default
    identity_cookie_name: str = "subscriber_id"
    identity_cookie_max_age: int = 60 * 60 * 24 * 365  # 1 year
    identity_cookie_secure: bool = True  # Set False only for local HTTP development
    identity_cookie_samesite: str = "lax"
    # Country code prepended to national-format numbers (leading 0)
    default_country_code: str = "49"

    # ===========================================
    # IDENTIFICATION FLOW
    # ===========================================
    identification_session_ttl_seconds: int = 300  # 5 minutes to come back from the provider
    identification_session_retention_hours: int = 24  # purge horizon for finished sessions

    # ===========================================
    # BILLING PROVIDER (DIMOCO-style carrier billing)
    # ===========================================
    provider_name: str = "dimoco"
    provider_mode: str = "live"  # live, mock (mock only outside production)
    provider_api_url: str = "https://sandbox-dcb.dimoco.at/sph/payment"
    provider_merchant_id: str = "8000"
    provider_order_id: str = "8000"
    provider_secret: str  # Required, no default. Signs outbound requests, verifies callbacks.
    provider_timeout: float = 10.0
    # MSISDN returned by the mock provider (sandbox default of the real provider)
    provider_mock_msisdn: str = "436763602302"

    # ===========================================
    # PRICING & LEDGER
    # ===========================================
    article_price_cents: int = 99
    article_currency: str = "EUR"
    unlock_dedup_window_seconds: int = 120  # repeat initiate for the same pair returns the pending tx

    # ===========================================
    # INTERNAL TOOLING
    # ===========================================
    # Shared secret accepted as ?bypass= to force entitlement. Empty = bypass disabled.
    entitlement_bypass_secret: str | None = None
    admin_api_key: str | None = None  # Required for /admin routes; unset = admin routes disabled

    # ===========================================
    # SETTINGS STORE CACHE
    # ===========================================
    settings_cache_ttl: int = 60

    # ===========================================
    # CIRCUIT BREAKER
    # ===========================================
    cb_failure_threshold: int = 5
    cb_open_seconds: int = 30

    # ===========================================
    # LOGGING
    # ===========================================
    log_level: str = "INFO"
    request_id_header: str = "X-Request-Id"
    log_file: str | None = None
    log_max_bytes: int = 10_000_000
    log_backup_count: int = 5

    @field_validator("provider_mode")
    @classmethod
    def validate_provider_mode(cls, v: str) -> str:
        v = v.lower().strip()
        if v not in ("live", "mock"):
            raise ValueError("provider_mode must be 'live' or 'mock'")
        return v

    @field_validator("identity_cookie_secret")
    @classmethod
    def validate_cookie_secret(cls, v: str) -> str:
        """Ensure cookie secret is reasonably secure."""
        if len(v) < 16:
            raise ValueError("identity_cookie_secret must be at least 16 characters")
        if v in ("changeme", "secret", "password", "admin"):
            raise ValueError("identity_cookie_secret is too weak, please change it")
        return v

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"

    @property
    def client_ip_header_list(self) -> list[str]:
        """Configured IP headers in precedence order, lower-cased."""
        return [h.strip().lower() for h in self.client_ip_headers.split(",") if h.strip()]

    @property
    def trusted_proxy_ips_set(self) -> set[str]:
        """Get trusted proxy IPs as a set."""
        return {ip.strip() for ip in self.trusted_proxy_ips.split(",") if ip.strip()}

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"


settings = Settings()
