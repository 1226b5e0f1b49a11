"""ConfigStore: the single active automation config and its snapshots."""

from __future__ import annotations

import logging
import uuid

from pydantic import ValidationError
from sqlalchemy import select, update
from sqlalchemy.orm import Session

from sla_cascade.core import constants
from sla_cascade.db.models import AutomationConfig
from sla_cascade.schemas.automation import (
    AutomationConfigCreate,
    AutomationConfigUpdate,
    ConfigSnapshot,
)

logger = logging.getLogger(__name__)

SNAPSHOT_FIELDS = tuple(name for name in ConfigSnapshot.model_fields if name != "config_id")
CONFIG_FIELDS = tuple(AutomationConfigCreate.model_fields)


class ConfigurationError(Exception):
    """Automation config is missing or contradictory."""

    pass


def _values_from_model(config: AutomationConfig) -> dict:
    return {name: getattr(config, name) for name in CONFIG_FIELDS}


def _to_columns(data: AutomationConfigCreate) -> dict:
    values = data.model_dump()
    values["distribution_method"] = data.distribution_method.value
    values["rotation_user_ids"] = [str(user_id) for user_id in data.rotation_user_ids]
    return values


def get_active_config(db: Session) -> AutomationConfig | None:
    """Return the active config row, or None."""
    return db.execute(
        select(AutomationConfig).where(AutomationConfig.active.is_(True))
    ).scalar_one_or_none()


def validate_config(config: AutomationConfig) -> AutomationConfigCreate:
    """Re-validate a stored row. Raises ConfigurationError if contradictory."""
    try:
        return AutomationConfigCreate.model_validate(_values_from_model(config))
    except ValidationError as exc:
        raise ConfigurationError(f"Automation config {config.id} is invalid: {exc}") from exc


def require_active_config(db: Session) -> AutomationConfig:
    """Return the active config, validated. Raises ConfigurationError otherwise."""
    config = get_active_config(db)
    if config is None:
        raise ConfigurationError("No active automation config")
    validate_config(config)
    return config


def create_config(
    db: Session,
    data: AutomationConfigCreate,
    created_by_user_id: uuid.UUID | None = None,
) -> AutomationConfig:
    """Create a config and make it the only active one."""
    db.execute(
        update(AutomationConfig)
        .where(AutomationConfig.active.is_(True))
        .values(active=False)
    )
    db.flush()
    config = AutomationConfig(
        active=True,
        created_by_user_id=created_by_user_id,
        **_to_columns(data),
    )
    db.add(config)
    db.commit()
    db.refresh(config)
    logger.info("Activated automation config %s (%s)", config.id, config.distribution_method)
    return config


def update_config(
    db: Session,
    config_id: uuid.UUID,
    data: AutomationConfigUpdate,
) -> AutomationConfig:
    """
    Apply a partial update and re-validate the merged result.

    The updated config becomes the active one. In-flight assignments keep
    their snapshot.
    """
    config = db.get(AutomationConfig, config_id)
    if config is None:
        raise ConfigurationError(f"Automation config {config_id} not found")

    merged = _values_from_model(config)
    merged.update(data.model_dump(exclude_unset=True, exclude_none=True))
    try:
        validated = AutomationConfigCreate.model_validate(merged)
    except ValidationError as exc:
        raise ConfigurationError(str(exc)) from exc

    if not config.active:
        db.execute(
            update(AutomationConfig)
            .where(AutomationConfig.active.is_(True), AutomationConfig.id != config.id)
            .values(active=False)
        )
        db.flush()
        config.active = True

    for name, value in _to_columns(validated).items():
        setattr(config, name, value)
    db.commit()
    db.refresh(config)
    logger.info("Updated automation config %s", config.id)
    return config


def get_or_create_default_config(db: Session) -> AutomationConfig:
    """Return the active config, bootstrapping the default one when none exists."""
    config = get_active_config(db)
    if config is not None:
        return config
    logger.info("No active automation config; creating default")
    return create_config(
        db,
        AutomationConfigCreate(
            name=constants.DEFAULT_CONFIG_NAME,
            first_contact_sla=constants.DEFAULT_FIRST_CONTACT_SLA_MINUTES,
            warning_percentage=constants.DEFAULT_WARNING_PERCENTAGE,
            critical_percentage=constants.DEFAULT_CRITICAL_PERCENTAGE,
            timezone=constants.DEFAULT_TIMEZONE,
            holiday_country=constants.DEFAULT_HOLIDAY_COUNTRY,
        ),
    )


def build_snapshot(config: AutomationConfig) -> ConfigSnapshot:
    """Freeze the operative values of a config for a new assignment."""
    values = {name: getattr(config, name) for name in SNAPSHOT_FIELDS}
    try:
        return ConfigSnapshot(config_id=config.id, **values)
    except ValidationError as exc:
        raise ConfigurationError(f"Automation config {config.id} is invalid: {exc}") from exc


def load_snapshot(raw: dict) -> ConfigSnapshot:
    """Rehydrate a stored snapshot."""
    return ConfigSnapshot.model_validate(raw)
