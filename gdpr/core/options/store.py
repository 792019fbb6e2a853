from __future__ import annotations

import copy
import os
import re
import threading
from typing import Any, Dict, Optional, Protocol

from gdpr.core.config.io import atomic_write_json, ensure_dirs, read_json_file
from gdpr.core.errors import TransientIOError


REQUESTS_COLLECTION = "requests_collection"
BREACH_NOTIFICATION_RECORD = "breach_notification_record"
CONSENT_CONFIG = "consent_config"

_KEY_RE = re.compile(r"^[a-z0-9_\-]{1,80}$")


class OptionStore(Protocol):
    """
    Persistent key/value cell per option name. Whole-value reads and writes only.
    """

    def get(self, key: str, default: Any = None) -> Any: ...
    def set(self, key: str, value: Any) -> None: ...
    def delete(self, key: str) -> bool: ...


def _check_key(key: str) -> str:
    k = str(key or "").strip()
    if not _KEY_RE.match(k):
        raise ValueError(f"invalid option key: {key!r}")
    return k


class InMemoryOptionStore:
    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self._lock = threading.Lock()
        self._data: Dict[str, Any] = copy.deepcopy(dict(initial or {}))

    def get(self, key: str, default: Any = None) -> Any:
        k = _check_key(key)
        with self._lock:
            if k not in self._data:
                return default
            return copy.deepcopy(self._data[k])

    def set(self, key: str, value: Any) -> None:
        k = _check_key(key)
        with self._lock:
            self._data[k] = copy.deepcopy(value)

    def delete(self, key: str) -> bool:
        k = _check_key(key)
        with self._lock:
            return self._data.pop(k, None) is not None

    def keys(self) -> list[str]:
        with self._lock:
            return sorted(self._data.keys())


class JsonFileOptionStore:
    """
    One JSON document per option under `root_dir` (<key>.json).
    Writes are atomic (tempfile + os.replace); a per-store lock serializes
    access to each cell within this process.
    """

    def __init__(self, *, root_dir: str, logger=None):
        self.root_dir = str(root_dir)
        self.logger = logger
        self._lock = threading.Lock()
        ensure_dirs(self.root_dir)

    def _path(self, key: str) -> str:
        return os.path.join(self.root_dir, f"{_check_key(key)}.json")

    def get(self, key: str, default: Any = None) -> Any:
        path = self._path(key)
        with self._lock:
            rr = read_json_file(path, require_object=False)
        if rr.ok:
            return rr.data
        if rr.error == "missing":
            return default
        if rr.error and rr.error.startswith("corrupt_json"):
            if self.logger:
                self.logger.warning(f"Option {key} is corrupt; treating as absent.")
            return default
        raise TransientIOError(f"Unable to read option {key}.", key=key, error=rr.error)

    def set(self, key: str, value: Any) -> None:
        path = self._path(key)
        try:
            with self._lock:
                atomic_write_json(path, value, sort_keys=False)
        except (OSError, TypeError, ValueError) as e:
            raise TransientIOError(f"Unable to write option {key}.", key=key, error=str(e)) from e

    def delete(self, key: str) -> bool:
        path = self._path(key)
        with self._lock:
            if not os.path.exists(path):
                return False
            try:
                os.remove(path)
            except OSError as e:
                raise TransientIOError(f"Unable to delete option {key}.", key=key, error=str(e)) from e
        return True
