"""Application configuration: environment & settings.

Centralizes every tunable of the reconciliation service in one pydantic-settings
model, loaded from the environment and an optional ``.env`` file.
"""

from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

BASE_DIR = Path(__file__).resolve().parent.parent.parent


class Settings(BaseSettings):
    """Settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=str(BASE_DIR / ".env"),
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # --- Core ---
    APP_NAME: str = "Payment Reconciliation API"
    ENVIRONMENT: str = "development"

    # --- Payment authority (Mercado Pago) ---
    MERCADO_PAGO_ACCESS_TOKEN: str = ""
    MERCADO_PAGO_WEBHOOK_SECRET: str = ""
    MERCADO_PAGO_BASE_URL: str = "https://api.mercadopago.com"
    AUTHORITY_TIMEOUT_SECONDS: float = 40.0

    # --- Reconciliation rules ---
    DEFAULT_CURRENCY: str = "ARS"
    REFERENCE_SEPARATOR: str = "-"
    ITEM_METADATA_KEYS: list[str] = ["item_id", "itemId", "libro_id", "libroId"]
    SESSION_METADATA_KEYS: list[str] = ["session_id", "sessionId"]

    # --- Persistence ---
    # Empty means the in-memory store is used.
    DATABASE_URL: str = ""

    # --- Item catalog ---
    ITEM_ASSET_URLS: dict[str, str] = {}

    # --- HTTP ---
    CORS_ORIGINS: list[str] = ["*"]

    # --- Caller-side status polling ---
    STATUS_POLL_INTERVAL_SECONDS: float = 1.5
    STATUS_POLL_ATTEMPTS: int = 10

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"


@lru_cache
def get_settings() -> Settings:
    """Cached settings singleton."""
    return Settings()
