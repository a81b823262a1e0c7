from functools import lru_cache
from typing import List, Literal

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # App
    app_name: str = "Avatar.IA Generation API"
    debug: bool = False
    environment: Literal["development", "staging", "production"] = "development"

    # API
    api_v1_prefix: str = "/api/v1"

    # Persistence
    kv_backend: Literal["memory", "redis"] = "memory"
    redis_url: str = "redis://localhost:6379/0"
    kv_prefix: str = "avatar_ia:"

    # Generation webhook
    generation_submit_url: str = Field(
        default="https://hook.eu2.make.com/avatar-ia-submit",
        validation_alias=AliasChoices("GENERATION_SUBMIT_URL", "WEBHOOK_SUBMIT_URL"),
    )
    generation_status_url: str = Field(
        default="https://hook.eu2.make.com/avatar-ia-status",
        validation_alias=AliasChoices("GENERATION_STATUS_URL", "WEBHOOK_STATUS_URL"),
    )
    generation_callback_url: str = ""
    generation_video_category: str = "sora2"
    http_timeout_seconds: float = 60.0

    # Polling (seconds); hard-coded tuning of the remote pipeline
    initial_poll_delay_seconds: float = 180
    poll_interval_seconds: float = 30
    max_generation_seconds: float = 360

    # Credits
    subscription_grant_credits: int = 1000
    weekly_reward_credits: int = 1000
    reward_interval_seconds: float = 7 * 24 * 3600

    # Products
    subscription_product_id: str = "avataria.subscription.weekly"
    pack_small_product_id: str = "avataria.credits.small"
    pack_medium_product_id: str = "avataria.credits.medium"
    pack_large_product_id: str = "avataria.credits.large"
    pack_small_credits: int = 500
    pack_medium_credits: int = 1200
    pack_large_credits: int = 3000

    # Stripe
    stripe_secret_key: str = ""
    stripe_webhook_secret: str = ""
    stripe_success_url: str = "https://avatar-ia.app/purchase/success"
    stripe_cancel_url: str = "https://avatar-ia.app/purchase/cancel"

    # Frontend
    cors_origins: List[str] = ["http://localhost:3000", "http://127.0.0.1:3000"]

    # Fallback email domain for identities signed in without an email
    placeholder_email_domain: str = "privaterelay.avatar.ia"

    @property
    def pack_credits(self) -> dict[str, int]:
        return {
            self.pack_small_product_id: self.pack_small_credits,
            self.pack_medium_product_id: self.pack_medium_credits,
            self.pack_large_product_id: self.pack_large_credits,
        }

    @property
    def product_ids(self) -> list[str]:
        return [self.subscription_product_id, *self.pack_credits.keys()]

    @property
    def stripe_enabled(self) -> bool:
        return bool(self.stripe_secret_key)


@lru_cache
def get_settings() -> Settings:
    return Settings()
