from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_CUSTOMER_API_KEY = "canteen-customer-dev-key"
DEFAULT_STAFF_API_KEY = "canteen-staff-dev-key"
DEFAULT_SYSTEM_API_KEY = "canteen-system-dev-key"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_prefix="CANTEEN_", extra="ignore")

    app_name: str = "Canteen Order Queue"
    env: str = "dev"
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    log_level: str = "INFO"

    database_url: str = "sqlite+pysqlite:///./canteen.db"

    # Queue numbers restart from 1 whenever the operator switches batch.
    active_batch_id: str = "default"
    avg_prep_minutes: int = Field(default=4, ge=1)
    # uniform | per_item
    eta_strategy: str = "uniform"

    transaction_max_retries: int = Field(default=5, ge=0)
    transaction_retry_backoff_ms: int = Field(default=20, ge=0)
    degraded_allocator_enabled: bool = True

    stale_order_ttl_minutes: int = Field(default=30, ge=1)

    payment_gateway: str = "simulated"
    simulated_payment_approve: bool = True

    # Push delivery backend: log | webhook
    notifier_backend: str = "log"
    push_gateway_url: str = "http://push-gateway:8080/v1/messages"
    push_gateway_api_key: str | None = None
    push_gateway_timeout_seconds: int = 10
    notifier_strict: bool = False

    auth_enabled: bool = True
    customer_api_key: str = DEFAULT_CUSTOMER_API_KEY
    staff_api_key: str = DEFAULT_STAFF_API_KEY
    system_api_key: str = DEFAULT_SYSTEM_API_KEY
    staff_actor_id: str = "staff-001"
    system_actor_id: str = "system-001"

    def model_post_init(self, __context) -> None:
        if self.env.lower() == "dev":
            return

        insecure_items: list[str] = []
        if self.customer_api_key == DEFAULT_CUSTOMER_API_KEY:
            insecure_items.append("CANTEEN_CUSTOMER_API_KEY")
        if self.staff_api_key == DEFAULT_STAFF_API_KEY:
            insecure_items.append("CANTEEN_STAFF_API_KEY")
        if self.system_api_key == DEFAULT_SYSTEM_API_KEY:
            insecure_items.append("CANTEEN_SYSTEM_API_KEY")

        if insecure_items:
            raise ValueError(
                "insecure default api keys are not allowed outside dev mode; set env vars: "
                + ", ".join(sorted(insecure_items))
            )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
