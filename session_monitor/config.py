from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Central configuration loaded from environment / .env file."""

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "env_prefix": "SESSION_MONITOR_",
        "extra": "ignore",
    }

    # Claude Code data directory (sessions live under <claude_dir>/projects)
    claude_dir: Path = Path.home() / ".claude"

    # Saved API key config {apiKey, keyType, updatedAt}
    config_path: Path = Path.home() / ".claude-session-monitor" / "config.json"

    # Calendar used to bucket daily / monthly costs
    report_timezone: str = "UTC"

    # Rate limit estimation
    # These are estimated caps; Anthropic doesn't publish exact numbers
    rate_limit_window_hours: int = 5
    estimated_output_token_limit: int = 200_000

    # Manual sync: percent added per assistant message since the sync
    sync_percent_per_message: float = 0.3
    sync_lookback_hours: int = 24

    # Cache refresh cadence
    cost_refresh_seconds: int = 300
    rate_limit_refresh_seconds: int = 30

    # Session status thresholds (minutes since last write)
    active_minutes: int = 5
    recent_minutes: int = 60

    # Vendor API
    vendor_base_url: str = "https://api.anthropic.com"
    vendor_timeout_seconds: float = 15.0
    vendor_ratelimit_ttl_seconds: int = 30
    vendor_usage_ttl_seconds: int = 300

    # API
    api_host: str = "127.0.0.1"
    api_port: int = 3456

    # Logging
    log_level: str = "INFO"


settings = Settings()
