from __future__ import annotations

import json

from payhold.extensions import db
from payhold.models import IntegrationSettings


DEFAULT_FLAGS: dict[str, bool] = {
    "jobs.auto_release_enabled": True,
    "jobs.release_reminders_enabled": True,
    "notifications.email_enabled": True,
}


def _coerce_bool(value, default: bool = False) -> bool:
    if value is None:
        return bool(default)
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return int(value) == 1
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "y", "on")
    return bool(default)


def _settings_json_flags(settings: IntegrationSettings) -> dict[str, bool]:
    raw = getattr(settings, "feature_flags_json", None) or "{}"
    try:
        parsed = json.loads(raw)
    except Exception:
        parsed = {}
    if not isinstance(parsed, dict):
        parsed = {}
    return {str(key): _coerce_bool(val) for key, val in parsed.items()}


def _resolve_settings(settings: IntegrationSettings | None = None) -> IntegrationSettings:
    if settings is not None:
        return settings
    from payhold.utils.settings import get_settings

    return get_settings()


def get_all_flags(settings: IntegrationSettings | None = None) -> dict[str, bool]:
    flags = dict(DEFAULT_FLAGS)
    flags.update(_settings_json_flags(_resolve_settings(settings)))
    return flags


def is_enabled(key: str, *, default: bool = False, settings: IntegrationSettings | None = None) -> bool:
    flags = get_all_flags(settings)
    if key not in flags:
        return bool(default)
    return _coerce_bool(flags.get(key), default)


def update_flags(updates: dict[str, object], *, settings: IntegrationSettings | None = None) -> dict[str, bool]:
    s = _resolve_settings(settings)
    current = get_all_flags(s)
    for key, value in updates.items():
        k = str(key).strip()
        if not k:
            continue
        current[k] = _coerce_bool(value, current.get(k, False))
    s.feature_flags_json = json.dumps(current)
    db.session.add(s)
    db.session.commit()
    return get_all_flags(s)
