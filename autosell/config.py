"""Application configuration via environment variables."""

from pydantic import field_validator
from pydantic_settings import BaseSettings

from autosell.utils.constants import COMMITMENT_LEVELS


class Settings(BaseSettings):
    database_url: str = "sqlite://"  # in-memory; positions are not kept across restarts
    log_level: str = "INFO"
    store_backend: str = "memory"  # "memory" or "sql"

    # RPC
    rpc_primary_url: str = "https://api.mainnet-beta.solana.com"
    rpc_fallback_urls: list[str] = []
    rpc_commitment: str = "confirmed"
    rpc_timeout_seconds: float = 10.0

    # Optional fast-send endpoint; reads still go to the RPC pool
    sender_url: str = ""
    sender_api_key: str = ""

    wallet_address: str = ""

    # Submission
    simulation_enabled: bool = True
    skip_preflight: bool = False
    confirmation_timeout_ms: int = 60000

    # Retry policy
    retry_max_attempts: int = 3
    retry_initial_delay_ms: int = 500
    retry_max_delay_ms: int = 5000
    retry_backoff_multiplier: float = 2.0

    strategy_file: str = ""

    model_config = {"env_prefix": "AS_", "env_file": ".env"}

    @field_validator("rpc_commitment")
    @classmethod
    def _validate_commitment(cls, value: str) -> str:
        if value not in COMMITMENT_LEVELS:
            allowed = ", ".join(COMMITMENT_LEVELS)
            raise ValueError(f"must be one of: {allowed}")
        return value

    @field_validator("store_backend")
    @classmethod
    def _validate_backend(cls, value: str) -> str:
        if value not in ("memory", "sql"):
            raise ValueError("must be one of: memory, sql")
        return value

    @property
    def rpc_urls(self) -> list[str]:
        return [self.rpc_primary_url, *self.rpc_fallback_urls]

    def retry_policy(self):
        from autosell.services.retry import RetryPolicy

        return RetryPolicy(
            max_attempts=self.retry_max_attempts,
            initial_delay_ms=self.retry_initial_delay_ms,
            max_delay_ms=self.retry_max_delay_ms,
            backoff_multiplier=self.retry_backoff_multiplier,
        )


settings = Settings()
