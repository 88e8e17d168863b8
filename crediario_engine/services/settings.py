"""Business configuration snapshot: environment defaults overridden by system_settings rows"""

import logging
from decimal import Decimal, InvalidOperation
from typing import Dict

from sqlalchemy.orm import Session

from crediario_engine.config import Settings, settings as default_settings
from crediario_engine.domain.exceptions import ValidationError
from crediario_engine.domain.models import ConfigSnapshot
from crediario_engine.infrastructure.database.repositories import SettingsRepository

logger = logging.getLogger(__name__)

# Keys operators may edit; values are percentages
NUMERIC_KEYS = ("interest_rate", "cashback_percentage", "min_entry_percentage")


def _decimal_or_default(raw: Dict[str, str], key: str, default: Decimal) -> Decimal:
    value = raw.get(key)
    if value is None or str(value).strip() == "":
        return default
    try:
        return Decimal(str(value).strip().replace(",", "."))
    except InvalidOperation:
        logger.warning("Ignoring non-numeric system setting", extra={"key": key, "value": value})
        return default


def build_config_snapshot(raw: Dict[str, str], base: Settings = default_settings) -> ConfigSnapshot:
    return ConfigSnapshot(
        interest_rate_pct=_decimal_or_default(raw, "interest_rate", Decimal(str(base.interest_rate_pct))),
        cashback_pct=_decimal_or_default(raw, "cashback_percentage", Decimal(str(base.cashback_pct))),
        min_entry_pct=_decimal_or_default(raw, "min_entry_percentage", Decimal(str(base.min_entry_pct)) * 100) / 100,
        default_due_day=base.default_due_day,
    )


def load_config_snapshot(db: Session) -> ConfigSnapshot:
    """Read the settings table once; the snapshot is passed down explicitly"""
    return build_config_snapshot(SettingsRepository(db).all())


def save_setting(db: Session, key: str, value: str) -> None:
    if key in NUMERIC_KEYS:
        try:
            number = Decimal(str(value).strip().replace(",", "."))
        except InvalidOperation:
            raise ValidationError(f"Setting '{key}' must be numeric")
        if number < 0:
            raise ValidationError(f"Setting '{key}' must be >= 0")
    SettingsRepository(db).upsert(key, str(value))
    db.commit()
