from __future__ import annotations

import json
import locale
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

LOGGER = logging.getLogger(__name__)

OUTPUT_FORMATS = ("CSV", "Console")

DEFAULT_CONFIG: dict[str, Any] = {
    "wsus": {
        "secure_port": 8531,
        "fallback_port": 8530,
        "powershell": "powershell.exe",
        "command_timeout_sec": None,
    },
    "report": {
        "format": "CSV",
        "architecture": "",
        # Defaults to the package directory when empty.
        "output_path": None,
        # Detected from the system locale when empty.
        "locale": None,
    },
    "runtime": {
        "log_level": "INFO",
        "progress": True,
    },
}


@dataclass(frozen=True, slots=True)
class LocaleProfile:
    name: str
    date_format: str
    state_labels: tuple[str, ...]

    def state_label(self, state: int) -> str:
        if 0 <= state < len(self.state_labels):
            return self.state_labels[state]
        return str(state)


# Indexed by the WSUS UpdateInstallationState code.
LOCALE_PROFILES: dict[str, LocaleProfile] = {
    "en": LocaleProfile(
        name="en",
        date_format="%m%d%Y%H%M%S",
        state_labels=(
            "Unknown",
            "NotApplicable",
            "NotInstalled",
            "Downloaded",
            "Installed",
            "Failed",
            "InstalledPendingReboot",
        ),
    ),
    "ja": LocaleProfile(
        name="ja",
        date_format="%Y%m%d%H%M%S",
        state_labels=(
            "不明",
            "該当なし",
            "未インストール",
            "ダウンロード済み",
            "インストール済み",
            "失敗",
            "インストール済み (再起動待ち)",
        ),
    ),
}

FALLBACK_LOCALE = "en"

# Windows reports locale names such as "Japanese_Japan" or "English_United States".
LANGUAGE_ALIASES: dict[str, str] = {
    "english": "en",
    "japanese": "ja",
}


def _deep_update(base: dict[str, Any], updates: dict[str, Any]) -> dict[str, Any]:
    for key, value in updates.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _deep_update(base[key], value)
        else:
            base[key] = value
    return base


def load_config(config_path: str | Path | None) -> dict[str, Any]:
    cfg = json.loads(json.dumps(DEFAULT_CONFIG))
    if not config_path:
        return cfg
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")
    with path.open("r", encoding="utf-8") as handle:
        payload = yaml.safe_load(handle) or {}
    if not isinstance(payload, dict):
        raise ValueError("Config root must be a mapping")
    _deep_update(cfg, payload)
    return cfg


def apply_cli_overrides(cfg: dict[str, Any], overrides: dict[str, Any]) -> dict[str, Any]:
    def _drop_none(value: Any) -> Any:
        if isinstance(value, dict):
            return {k: _drop_none(v) for k, v in value.items() if v is not None}
        if isinstance(value, list):
            return [_drop_none(v) for v in value if v is not None]
        return value

    cleaned = _drop_none(overrides)
    _deep_update(cfg, cleaned)
    return cfg


def normalize_format(value: str | None) -> str:
    text = (value or "").strip()
    for name in OUTPUT_FORMATS:
        if text.lower() == name.lower():
            return name
    raise ValueError(f"Invalid format {value!r}: expected one of {', '.join(OUTPUT_FORMATS)}")


def _language_of(locale_name: str | None) -> str:
    if not locale_name:
        return ""
    language = locale_name.replace("-", "_").split("_", 1)[0].split(".", 1)[0].lower()
    return LANGUAGE_ALIASES.get(language, language)


def detect_system_locale() -> str | None:
    try:
        name, _encoding = locale.getlocale()
    except ValueError:
        return None
    return name


def resolve_locale_profile(requested: str | None = None, system_locale: str | None = None) -> LocaleProfile:
    """Pick the locale profile used for file timestamps and state labels.

    An explicitly requested locale must be supported. A detected system
    locale that is not supported falls back to English.
    """
    if requested:
        language = _language_of(requested)
        if language not in LOCALE_PROFILES:
            raise ValueError(
                f"Unsupported locale {requested!r}: expected one of {', '.join(sorted(LOCALE_PROFILES))}"
            )
        return LOCALE_PROFILES[language]

    detected = system_locale if system_locale is not None else detect_system_locale()
    language = _language_of(detected)
    if language in LOCALE_PROFILES:
        return LOCALE_PROFILES[language]
    LOGGER.warning("System locale %r is not supported, using %r", detected, FALLBACK_LOCALE)
    return LOCALE_PROFILES[FALLBACK_LOCALE]
