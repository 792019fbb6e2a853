from __future__ import annotations

import os
from typing import Any, Dict, Optional

from pydantic import ValidationError as PydanticValidationError

from gdpr.core.config.io import (
    atomic_write_json,
    ensure_dirs,
    read_json_file,
    recover_from_corrupt,
    snapshot_last_known_good,
)
from gdpr.core.config.models import GdprConfigFile, default_gdpr_config_dict
from gdpr.core.config.paths import ConfigFsPaths
from gdpr.core.errors import ConfigError


class ConfigManager:
    """
    Loads and validates config/gdpr.json.

    - missing file: defaults are written (unless read_only)
    - corrupt file: moved to backups and restored from last known good
    - every successful load refreshes the last known good snapshot
    """

    def __init__(self, *, fs: Optional[ConfigFsPaths] = None, logger=None, read_only: bool = False, max_backups: int = 10):
        self.fs = fs or ConfigFsPaths(".")
        self.logger = logger
        self.read_only = bool(read_only)
        self.max_backups = int(max_backups)
        self._cfg: Optional[GdprConfigFile] = None

    def load(self) -> GdprConfigFile:
        ensure_dirs(self.fs.config_dir, self.fs.backups_dir, self.fs.last_known_good_dir)
        raw = self.read_raw()
        if not raw:
            raw = default_gdpr_config_dict()
            if not self.read_only:
                atomic_write_json(self.fs.gdpr, raw, self.fs.backups_dir, max_backups=self.max_backups)
                if self.logger:
                    self.logger.info(f"Wrote default config to {self.fs.gdpr}")
        cfg = self._validate(raw)
        self._cfg = cfg
        if not self.read_only:
            snapshot_last_known_good(self.fs.gdpr, self.fs.last_known_good_dir)
        return cfg

    def get(self) -> GdprConfigFile:
        if self._cfg is None:
            raise ConfigError("Config not loaded.")
        return self._cfg

    def read_raw(self) -> Dict[str, Any]:
        rr = read_json_file(self.fs.gdpr)
        if rr.ok:
            return dict(rr.data)
        if rr.error and rr.error.startswith("corrupt_json"):
            if self.logger:
                self.logger.warning(f"Config {self.fs.gdpr} is corrupt; restoring last known good.")
            data, _recovered = recover_from_corrupt(self.fs.gdpr, self.fs.backups_dir, self.fs.last_known_good_dir, max_backups=self.max_backups)
            return data
        return {}

    def save(self, raw: Dict[str, Any]) -> GdprConfigFile:
        """
        Validate first, then atomic write + backup. Invalid input never reaches disk.
        """
        if self.read_only:
            raise ConfigError("Config manager is read-only.")
        if not isinstance(raw, dict):
            raise ConfigError("Config data must be an object.")
        cfg = self._validate(raw)
        atomic_write_json(self.fs.gdpr, cfg.model_dump(), self.fs.backups_dir, max_backups=self.max_backups)
        self._cfg = cfg
        snapshot_last_known_good(self.fs.gdpr, self.fs.last_known_good_dir)
        return cfg

    def resolve_path(self, path: str) -> str:
        if os.path.isabs(path):
            return path
        return os.path.join(self.fs.root, path)

    @staticmethod
    def _validate(raw: Dict[str, Any]) -> GdprConfigFile:
        try:
            return GdprConfigFile.model_validate(raw)
        except PydanticValidationError as e:
            raise ConfigError(f"gdpr.json invalid: {e.error_count()} error(s).", errors=e.errors(include_url=False)) from e
