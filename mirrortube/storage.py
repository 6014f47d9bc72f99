"""
Local key-value state store

String keys map to string values, the same contract as a browser's
localStorage. Values are kept in memory and, when a data directory is
configured, mirrored to a single JSON document that is replaced atomically
on every write.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

from . import config

logger = logging.getLogger(__name__)

# Namespaced keys
AUTH_KEY = "tube_auth"
LANGUAGE_KEY = "tube_language"
HISTORY_KEY = "tube_history"
FAVORITES_KEY = "tube_favorites"
QUALITY_KEY = "tube_quality"
API_PRIORITY_KEY = "tube_api_priority"
THUMBNAIL_SOURCE_KEY = "tube_thumbnail_source"
PROXY_LIST_KEY = "cors_proxies_github"
PROXY_LIST_TS_KEY = "cors_proxies_github_ts"


def working_instances_key(backend: str) -> str:
    return f"{backend}_working_instances"


def working_instances_ts_key(backend: str) -> str:
    return f"{backend}_instance_update"


class StateStore:
    """Synchronous string key-value store with optional file persistence"""

    def __init__(self, data_dir: Optional[Path] = None):
        self.data_dir = data_dir
        self._values: Dict[str, str] = {}
        self._init_storage()

    @property
    def path(self) -> Optional[Path]:
        if self.data_dir is None:
            return None
        return self.data_dir / config.STATE_FILENAME

    def _init_storage(self):
        """Load persisted state; a missing or corrupt file starts empty"""
        if self.path is None:
            logger.info("State store running in memory only")
            return
        self.data_dir.mkdir(parents=True, exist_ok=True)
        if not self.path.exists():
            logger.info(f"State store initialized at {self.path}")
            return
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.error(f"Failed to read state file {self.path}, starting empty: {e}")
            return
        if not isinstance(raw, dict):
            logger.error(f"State file {self.path} is not an object, starting empty")
            return
        self._values = {str(k): str(v) for k, v in raw.items()}
        logger.info(f"State store loaded {len(self._values)} keys from {self.path}")

    def _flush(self):
        if self.path is None:
            return
        tmp_path = self.path.with_suffix(".tmp")
        try:
            tmp_path.write_text(json.dumps(self._values), encoding="utf-8")
            os.replace(tmp_path, self.path)
        except OSError as e:
            logger.error(f"Failed to persist state to {self.path}: {e}")

    def get_item(self, key: str) -> Optional[str]:
        return self._values.get(key)

    def set_item(self, key: str, value: str):
        self._values[key] = value
        self._flush()

    def remove_item(self, key: str):
        if self._values.pop(key, None) is not None:
            self._flush()

    def get_json(self, key: str, default: Any = None) -> Any:
        """Decode a JSON value; missing or malformed values return default"""
        raw = self._values.get(key)
        if raw is None:
            return default
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning(f"⚠️ Ignoring malformed JSON under '{key}'")
            return default

    def set_json(self, key: str, value: Any):
        self.set_item(key, json.dumps(value))

    def get_timestamp(self, key: str) -> float:
        raw = self._values.get(key)
        if not raw:
            return 0.0
        try:
            return float(raw)
        except ValueError:
            return 0.0

    def set_timestamp(self, key: str, value: float):
        self.set_item(key, repr(value))

    def clear(self):
        self._values.clear()
        self._flush()

    def __contains__(self, key: str) -> bool:
        return key in self._values

    def __len__(self) -> int:
        return len(self._values)
