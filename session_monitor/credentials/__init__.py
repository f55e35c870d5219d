from session_monitor.credentials.store import (
    ApiKeyConfig,
    ConfigStore,
    InvalidApiKey,
    KeyType,
    classify_key,
)

__all__ = [
    "ApiKeyConfig",
    "ConfigStore",
    "InvalidApiKey",
    "KeyType",
    "classify_key",
]
