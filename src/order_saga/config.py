"""Runtime settings for the order saga engine.

Every component also takes plain constructor arguments; ``SagaSettings``
is what :func:`order_saga.bootstrap.bootstrap_saga_engine` reads them from.
"""

from __future__ import annotations

from datetime import timedelta

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class SagaSettings(BaseSettings):
    """Environment-driven settings (prefix ``ORDER_SAGA_``)."""

    model_config = SettingsConfigDict(
        env_prefix="ORDER_SAGA_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Stage execution ─────────────────────────────────────────────
    stage_timeout: float = Field(default=10.0, gt=0)

    # ── Dead letters / retries ──────────────────────────────────────
    max_retries: int = Field(default=3, ge=0)
    retry_cooldown: timedelta = timedelta(seconds=60)
    retry_batch_size: int = Field(default=10, gt=0)
    sweep_interval: float = Field(default=60.0, gt=0)

    # ── Idempotency ─────────────────────────────────────────────────
    dedup_retention: timedelta = timedelta(hours=24)

    # ── Diagnostics ─────────────────────────────────────────────────
    stuck_threshold: timedelta = timedelta(seconds=30)

    # ── Persistence ─────────────────────────────────────────────────
    database_url: str = "sqlite+aiosqlite:///:memory:"

    # ── Logging ─────────────────────────────────────────────────────
    log_level: str = "INFO"
    log_json: bool = False

    # ── Simulated workers (demo failure injection) ──────────────────
    inventory_failure_rate: float = Field(default=0.2, ge=0, le=1)
    payment_failure_rate: float = Field(default=0.15, ge=0, le=1)
    shipping_failure_rate: float = Field(default=0.05, ge=0, le=1)
    inventory_delay_ms: tuple[int, int] = (1000, 3000)
    payment_delay_ms: tuple[int, int] = (1500, 4000)
    shipping_delay_ms: tuple[int, int] = (2000, 5000)

    def failure_rates(self) -> dict[str, float]:
        """Per-step failure rates keyed by step name."""
        return {
            "inventory": self.inventory_failure_rate,
            "payment": self.payment_failure_rate,
            "shipping": self.shipping_failure_rate,
        }

    def delay_bounds_ms(self) -> dict[str, tuple[int, int]]:
        return {
            "inventory": self.inventory_delay_ms,
            "payment": self.payment_delay_ms,
            "shipping": self.shipping_delay_ms,
        }


_settings_cache: SagaSettings | None = None


def get_settings() -> SagaSettings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = SagaSettings()
    return _settings_cache
