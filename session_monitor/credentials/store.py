"""API key config storage: a single JSON record on disk.

Record shape: ``{apiKey, keyType, updatedAt}``. The key type is derived from
the key's prefix when it is saved and stored alongside it.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

KEY_PREFIX = "sk-ant-"


class KeyType(str, Enum):
    ADMIN = "admin"
    STANDARD = "standard"
    OAUTH = "oauth"
    UNKNOWN = "unknown"


class InvalidApiKey(ValueError):
    """Raised when a key does not look like a vendor key."""


def classify_key(api_key: str) -> KeyType:
    if api_key.startswith("sk-ant-admin"):
        return KeyType.ADMIN
    if api_key.startswith("sk-ant-oat"):
        return KeyType.OAUTH
    if api_key.startswith("sk-ant-api"):
        return KeyType.STANDARD
    return KeyType.UNKNOWN


def mask_key(api_key: str) -> str:
    if len(api_key) <= 16:
        return api_key[:4] + "..."
    return f"{api_key[:12]}...{api_key[-4:]}"


@dataclass(frozen=True)
class ApiKeyConfig:
    api_key: str
    key_type: KeyType
    updated_at: str

    def to_record(self) -> dict[str, Any]:
        return {
            "apiKey": self.api_key,
            "keyType": self.key_type.value,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_record(cls, data: dict[str, Any]) -> ApiKeyConfig | None:
        api_key = data.get("apiKey")
        if not isinstance(api_key, str) or not api_key:
            return None
        try:
            key_type = KeyType(data.get("keyType", "unknown"))
        except ValueError:
            key_type = KeyType.UNKNOWN
        return cls(api_key=api_key, key_type=key_type, updated_at=str(data.get("updatedAt", "")))


class ConfigStore:
    """JSON-file backed storage for the saved API key."""

    def __init__(self, path: Path | str) -> None:
        self._path = Path(path)
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> ApiKeyConfig | None:
        """The saved config, or None when absent or unreadable."""
        try:
            with open(self._path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return None
        except (OSError, json.JSONDecodeError, ValueError) as e:
            logger.warning("Could not read config %s: %s", self._path, e)
            return None
        if not isinstance(data, dict):
            return None
        return ApiKeyConfig.from_record(data)

    def save(self, api_key: str) -> ApiKeyConfig:
        """Validate, classify and persist a key."""
        api_key = (api_key or "").strip()
        if not api_key.startswith(KEY_PREFIX):
            raise InvalidApiKey(f"API key must start with {KEY_PREFIX}")

        config = ApiKeyConfig(
            api_key=api_key,
            key_type=classify_key(api_key),
            updated_at=datetime.now(timezone.utc).isoformat(),
        )
        with self._lock:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self._path.with_suffix(self._path.suffix + ".tmp")
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump(config.to_record(), f, indent=2)
            os.replace(tmp, self._path)
            try:
                os.chmod(self._path, 0o600)
            except OSError as e:
                logger.warning("Could not restrict permissions on %s: %s", self._path, e)
        logger.info("Saved %s API key", config.key_type.value)
        return config

    def delete(self) -> bool:
        with self._lock:
            try:
                self._path.unlink()
            except FileNotFoundError:
                return False
        logger.info("Deleted saved API key")
        return True

    def public_view(self) -> dict[str, Any]:
        """Config as shown to clients, never the raw key."""
        config = self.load()
        if config is None:
            return {"has_api_key": False, "key_type": None, "masked_key": None, "updated_at": None}
        return {
            "has_api_key": True,
            "key_type": config.key_type.value,
            "masked_key": mask_key(config.api_key),
            "updated_at": config.updated_at,
        }
