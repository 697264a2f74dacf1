from decimal import Decimal
from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .models import PaymentMethod


class LedgerSettings(BaseSettings):
    environment: str = Field("development", description="Environment label")
    log_level: str = Field("INFO", description="Root logging level")
    host: str = Field("0.0.0.0", description="Interface the API binds to")
    port: int = Field(8000, ge=1, le=65535, description="Port the API listens on")
    currency: str = Field("INR", description="Currency every amount is recorded in")
    default_auto_verify: bool = Field(
        False, description="Whether new events trust self-reported payments by default"
    )
    default_auto_verify_methods: list[PaymentMethod] = Field(
        default_factory=lambda: [PaymentMethod.UPI, PaymentMethod.CASH],
        description="Methods eligible for auto-verification when trust mode is on",
    )
    default_confirmation_required_methods: list[PaymentMethod] = Field(
        default_factory=list,
        description="Methods that always wait for an admin even when the member claims payment",
    )
    feed_default_limit: int = Field(50, ge=1)
    feed_max_limit: int = Field(200, ge=1)
    max_amount: Decimal = Field(
        Decimal("1000000000"), gt=0, description="Largest amount accepted on any claim, goal or allocation"
    )
    notification_history_size: int = Field(500, ge=1, description="Recent notifications kept in memory")

    model_config = SettingsConfigDict(
        env_prefix="EVENT_LEDGER_",
        env_file=".env",
        case_sensitive=False,
    )

    @field_validator("log_level")
    @classmethod
    def _normalise_level(cls, value: str) -> str:
        return value.strip().upper()


@lru_cache()
def get_settings() -> LedgerSettings:
    return LedgerSettings()
