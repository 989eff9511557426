"""
Configuration module for TransferWatch.
Loads environment variables and provides application settings.
"""
from pathlib import Path
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


def _split_list(raw: Optional[str]) -> List[str]:
    return [item.strip() for item in (raw or "").replace("\n", ",").split(",") if item.strip()]


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Wallet being watched and optional known payer
    watched_address: Optional[str] = None
    counterparty_address: Optional[str] = None

    # Chains to monitor on startup, e.g. "1,137"
    monitor_chains: str = ""
    # Token contracts to watch; empty = discover from recent transfers
    token_allowlist: str = ""
    # Chain overrides: "chainId" or "chainId:rpcUrl", comma or newline separated
    chain_overrides: str = ""

    # Polling policy
    poll_interval_seconds: float = 7.0
    backfill_blocks: int = 5000
    log_poll_interval_seconds: float = 4.0
    rpc_timeout_seconds: float = 15.0

    # WebSocket log subscriptions
    ws_reconnect_delay: int = 1
    ws_max_reconnect_delay: int = 60
    ws_ping_interval: int = 30
    ws_ping_timeout: int = 20

    # Seen transfers remembered for dedup; 0 = unbounded
    seen_capacity: int = 100_000

    # Database Configuration
    database_path: str = "./data/transferwatch.db"

    # Telegram delivery (optional)
    # Format: "chat_id" or "chat_id:thread_id" for topics
    bot_token: Optional[str] = None
    notify_chat_id: Optional[str] = None

    # Webhook delivery (optional), comma separated URLs
    webhook_urls: str = ""

    # Control API
    control_host: str = "0.0.0.0"
    control_port: int = 8080

    # Logging
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @property
    def monitor_chain_ids(self) -> List[int]:
        return [int(c) for c in _split_list(self.monitor_chains) if c.isdigit()]

    @property
    def token_allowlist_addresses(self) -> List[str]:
        return _split_list(self.token_allowlist)

    @property
    def webhook_url_list(self) -> List[str]:
        return _split_list(self.webhook_urls)

    @property
    def seen_capacity_or_none(self) -> Optional[int]:
        return self.seen_capacity if self.seen_capacity > 0 else None


def get_settings() -> Settings:
    """Get application settings."""
    return Settings()


def ensure_data_directory(settings: Optional[Settings] = None):
    """Ensure the data directory exists for the database."""
    settings = settings or get_settings()
    if settings.database_path == ":memory:":
        return
    db_path = Path(settings.database_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)
