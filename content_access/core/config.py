"""
Application configuration.
All settings are loaded from environment variables.
Use env.example as a reference for required variables.
"""
from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    IMPORTANT: Credentials have no defaults - they MUST be set in .env file.
    """

    # ===========================================
    # APPLICATION
    # ===========================================
    app_env: str = "local"
    # CORS: через запятую (например http://localhost:5173,https://portal.example.com). Пусто = дефолтный список в коде.
    cors_origins: str = ""
    # Trusted proxy IPs (comma-separated). Used for X-Forwarded-For in production.
    trusted_proxy_ips: str = ""
    # Базовый URL для ссылок скачивания, которые отдаём клиенту
    public_base_url: str = "http://localhost:8000"

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
    # PAYMENT GATEWAY (Razorpay)
    # ===========================================
    razorpay_key_id: str = ""
    # Общий секрет с платёжным шлюзом: им подписывается order_id|payment_id
    razorpay_key_secret: str = ""
    # Отдельный секрет для webhook (настраивается в дашборде Razorpay)
    razorpay_webhook_secret: str = ""
    razorpay_api_base: str = "https://api.razorpay.com/v1"
    payment_gateway_timeout: float = 10.0
    # После валидной подписи дополнительно спрашиваем шлюз о статусе платежа
    payment_confirm_with_gateway: bool = True
    default_currency: str = "INR"

    # ===========================================
    # PURCHASES
    # ===========================================
    purchase_rate_limit: int = 5  # макс новых заказов за окно
    purchase_rate_window_seconds: int = 60
    # 0 = не трогаем зависшие pending; >0: sweep переводит их в failed
    stale_pending_order_hours: int = 0

    # ===========================================
    # DOWNLOAD TOKENS
    # ===========================================
    download_token_ttl_hours: int = 24
    download_token_min_ttl_seconds: int = 60
    download_token_max_ttl_hours: int = 24 * 7
    # Сколько держать истёкшие токены для аудита перед удалением
    download_token_retention_hours: int = 72

    # ===========================================
    # ADMIN API
    # ===========================================
    admin_api_key: str | None = None  # Optional locally, required in production

    # ===========================================
    # CIRCUIT BREAKER
    # ===========================================
    cb_failure_threshold: int = 5
    cb_open_seconds: int = 30

    # ===========================================
    # LOGGING
    # ===========================================
    request_id_header: str = "X-Request-Id"
    log_file: str | None = None
    log_max_bytes: int = 10_000_000
    log_backup_count: int = 5

    # ===========================================
    # STATE MANAGEMENT
    # ===========================================
    idempotency_ttl: int = 86400  # webhook redelivery window

    @field_validator("default_currency")
    @classmethod
    def normalize_currency(cls, v: str) -> str:
        """ISO 4217 code, upper case."""
        v = v.strip().upper()
        if len(v) != 3 or not v.isalpha():
            raise ValueError("default_currency must be a 3-letter ISO 4217 code")
        return v

    @property
    def trusted_proxy_ips_set(self) -> set[str]:
        """Get trusted proxy IPs as a set."""
        return {ip.strip() for ip in self.trusted_proxy_ips.split(",") if ip.strip()}

    @property
    def payment_gateway_configured(self) -> bool:
        return bool(self.razorpay_key_id and self.razorpay_key_secret)

    @model_validator(mode="after")
    def validate_production_secrets(self) -> "Settings":
        """In production the gateway secrets and admin key must be real values."""
        if self.app_env != "production":
            return self
        weak = ("changeme", "secret", "password", "admin")
        for name in ("razorpay_key_secret", "razorpay_webhook_secret", "admin_api_key"):
            value = getattr(self, name) or ""
            if len(value) < 16 or value in weak:
                raise ValueError(f"{name} is missing or too weak for production")
        return self

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"  # Игнорировать неизвестные поля из .env


settings = Settings()
