from __future__ import annotations

import os
from dataclasses import dataclass


@dataclass(frozen=True)
class ConfigFsPaths:
    root: str = "."

    @property
    def config_dir(self) -> str:
        return os.path.join(self.root, "config")

    @property
    def backups_dir(self) -> str:
        return os.path.join(self.config_dir, "backups")

    @property
    def last_known_good_dir(self) -> str:
        return os.path.join(self.backups_dir, "last_known_good")

    @property
    def gdpr(self) -> str:
        return os.path.join(self.config_dir, "gdpr.json")

    @property
    def logs_dir(self) -> str:
        return os.path.join(self.root, "logs")

    @property
    def runtime_dir(self) -> str:
        return os.path.join(self.root, "runtime")
