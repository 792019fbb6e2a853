from __future__ import annotations

import copy
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional

from gdpr.core.events import emit
from gdpr.core.errors import ValidationError
from gdpr.core.options.store import CONSENT_CONFIG, OptionStore
from gdpr.core.privacy.models import ConsentTab
from gdpr.core.privacy.sanitize import consent_tabs_to_option, intval, sanitize_consent_tabs, sanitize_textarea_field
from gdpr.core.trace import resolve_trace_id


@dataclass(frozen=True)
class Setting:
    name: str
    option_key: str
    sanitize: Callable[[Any], Any]
    default: Any


def _sanitize_consent_option(value: Any) -> Dict[str, Dict[str, Any]]:
    tabs = sanitize_consent_tabs(value)
    if not isinstance(tabs, Mapping):
        raise ValidationError("Consent configuration must be an object of tabs.")
    return consent_tabs_to_option(tabs)


SETTINGS: Dict[str, Setting] = {
    s.name: s
    for s in [
        Setting("privacy_policy_page", "privacy_policy_page", intval, 0),
        Setting("cookie_banner_content", "cookie_banner_content", sanitize_textarea_field, ""),
        Setting("cookie_privacy_excerpt", "cookie_privacy_excerpt", sanitize_textarea_field, ""),
        Setting("consent_config", CONSENT_CONFIG, _sanitize_consent_option, {}),
        Setting("email_limit", "email_limit", intval, 0),
    ]
}


class SettingsRegistry:
    """
    Admin-editable options. Every write goes through the option's sanitizer.
    """

    def __init__(self, *, options: OptionStore, event_bus: Any = None, logger=None):
        self.options = options
        self.event_bus = event_bus
        self.logger = logger

    def names(self) -> List[str]:
        return list(SETTINGS.keys())

    def _setting(self, name: str) -> Setting:
        s = SETTINGS.get(str(name or ""))
        if s is None:
            raise ValidationError("Unknown setting.", name=str(name or ""))
        return s

    def load(self, name: str) -> Any:
        s = self._setting(name)
        return self.options.get(s.option_key, copy.deepcopy(s.default))

    def load_all(self) -> Dict[str, Any]:
        return {n: self.load(n) for n in SETTINGS}

    def save(self, name: str, value: Any, *, trace_id: Optional[str] = None) -> Any:
        s = self._setting(name)
        clean = s.sanitize(value)
        self.options.set(s.option_key, clean)
        if self.logger:
            self.logger.info(f"Setting {s.name} saved.")
        if s.option_key == CONSENT_CONFIG:
            emit(
                self.event_bus,
                trace_id=resolve_trace_id(trace_id),
                event_type="consent.saved",
                payload={"tabs": len(clean), "tab_ids": list(clean.keys())[:50]},
            )
        return clean

    def consent_tabs(self) -> Dict[str, ConsentTab]:
        raw = self.load("consent_config")
        if not isinstance(raw, Mapping):
            return {}
        return sanitize_consent_tabs(raw)

    def privacy_policy_page_missing(self) -> bool:
        return intval(self.load("privacy_policy_page")) <= 0
