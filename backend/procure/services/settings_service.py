# Overview: Service-layer operations for system settings; typed key/value workflow switches.

from __future__ import annotations

from ..extensions import db
from ..models import SystemSetting
from ..time_utils import utcnow
from ..validation import TRUE_VALUES, ValidationError, coerce_bool


AUTO_APPROVAL_ENABLED = "auto_approval.enabled"
AUTO_APPROVAL_MANAGER_THRESHOLD = "auto_approval.manager_threshold_cents"

# key -> (value_type, default, description)
SETTING_DEFINITIONS = {
    AUTO_APPROVAL_ENABLED: (
        "bool",
        False,
        "Skip manager approval for requests at or below the manager threshold",
    ),
    AUTO_APPROVAL_MANAGER_THRESHOLD: (
        "int",
        100_000_000,
        "Largest request total (minor units) eligible for manager auto-approval",
    ),
}


def _decode(value_type: str, raw: str | None):
    if raw is None:
        return None
    if value_type == "bool":
        return raw.strip().lower() in TRUE_VALUES
    if value_type == "int":
        return int(raw)
    return raw


def _encode(key: str, value_type: str, value) -> str:
    if value_type == "bool":
        return "true" if coerce_bool(value, key) else "false"
    if value_type == "int":
        if isinstance(value, bool):
            raise ValidationError(f"{key} must be an integer")
        try:
            number = int(value)
        except (TypeError, ValueError):
            raise ValidationError(f"{key} must be an integer")
        if number < 0:
            raise ValidationError(f"{key} must be >= 0")
        return str(number)
    return str(value)


def get_value(key: str):
    """Return the decoded setting, falling back to its registered default."""
    if key not in SETTING_DEFINITIONS:
        raise ValidationError(f"Unknown setting: {key}")
    value_type, default, _ = SETTING_DEFINITIONS[key]
    row = db.session.query(SystemSetting).filter_by(key=key).first()
    if row is None or row.value is None:
        return default
    return _decode(value_type, row.value)


def set_value(key: str, value, *, updated_by_user_id: int | None = None) -> SystemSetting:
    if key not in SETTING_DEFINITIONS:
        raise ValidationError(f"Unknown setting: {key}")
    value_type, _, description = SETTING_DEFINITIONS[key]
    encoded = _encode(key, value_type, value)

    row = db.session.query(SystemSetting).filter_by(key=key).first()
    if row is None:
        row = SystemSetting(key=key, value_type=value_type, description=description)
        db.session.add(row)
    row.value = encoded
    row.updated_by_user_id = updated_by_user_id
    row.updated_at = utcnow()
    db.session.flush()
    return row


def list_settings() -> list[dict]:
    rows = {row.key: row for row in db.session.query(SystemSetting).all()}
    result = []
    for key, (value_type, default, description) in sorted(SETTING_DEFINITIONS.items()):
        row = rows.get(key)
        result.append({
            "key": key,
            "value_type": value_type,
            "value": _decode(value_type, row.value) if row and row.value is not None else default,
            "default": default,
            "description": description,
            "updated_by_user_id": row.updated_by_user_id if row else None,
        })
    return result
