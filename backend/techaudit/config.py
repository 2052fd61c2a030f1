from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    VERSION: str = "0.1.0"

    # Cache (cache-aside, Redis). Empty URL disables caching.
    REDIS_URL: str = ""
    CACHE_ENABLED: bool = True
    CACHE_KEY_PREFIX: str = "techaudit"

    # Outbound HTTP
    USER_AGENT: str = "TechAuditBot/1.0 (+https://techaudit.dev/bot)"
    HTTP_MAX_CONCURRENCY: int = 10
    MAX_RESPONSE_BYTES: int = 10 * 1024 * 1024

    # Google PageSpeed Insights
    PAGESPEED_API_KEY: str = ""
    PAGESPEED_TIMEOUT: int = 30
    PAGESPEED_CACHE_TTL_MINUTES: int = 60

    # Robots / sitemaps
    SITEMAP_TIMEOUT: int = 20
    SITEMAP_PROBE_TIMEOUT: int = 5
    SITEMAP_CACHE_TTL_MINUTES: int = 120
    SITEMAP_MAX_URLS: int = 1000
    SITEMAP_MAX_BYTES: int = 50 * 1024 * 1024
    SITEMAP_MAX_DECOMPRESSED_BYTES: int = 50 * 1024 * 1024
    ACCESSIBILITY_MAX_TESTS: int = 50
    ACCESSIBILITY_TIMEOUT: int = 10

    # Canonical / redirects
    CANONICAL_TIMEOUT: int = 15
    MAX_REDIRECTS: int = 10

    # Transport security
    SECURITY_TIMEOUT: int = 15
    TLS_TIMEOUT: int = 15
    CERT_EXPIRY_WARNING_DAYS: int = 30

    # Whole-audit wall clock bound (seconds)
    AUDIT_TIMEOUT: int = 120

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
