"""Pydantic schemas for the automation config."""

from __future__ import annotations

import uuid
from datetime import datetime, time
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from sla_cascade.db.enums import DistributionMethod
from sla_cascade.utils.business_hours import MIDNIGHT, WorkingSchedule, is_supported_holiday_country


def _check_thresholds(warning: int, critical: int) -> None:
    if not 0 < warning < critical < 100:
        raise ValueError(
            "Thresholds must satisfy 0 < warning_percentage < critical_percentage < 100"
        )


def _check_working_hours(start: time, end: time) -> None:
    if end != MIDNIGHT and end <= start:
        raise ValueError("working_hours_end must be after working_hours_start (00:00 = midnight)")


class AutomationConfigBase(BaseModel):
    name: str = Field("Default", min_length=1, max_length=100)

    distribution_method: DistributionMethod = DistributionMethod.VOLUME
    use_specialty: bool = False
    use_availability: bool = False
    use_region: bool = False
    rotation_user_ids: list[uuid.UUID] = Field(default_factory=list)

    working_hours_start: time = time(8, 0)
    working_hours_end: time = time(18, 0)
    working_hours_weekend: bool = False
    timezone: str = "America/Sao_Paulo"
    holiday_country: str = "BR"

    first_contact_sla: int = Field(30, gt=0, le=60 * 24 * 30)
    warning_percentage: int = Field(75, gt=0, lt=100)
    critical_percentage: int = Field(90, gt=0, lt=100)

    notify_visual: bool = True
    notify_system: bool = True
    notify_manager: bool = False
    auto_redistribute: bool = False
    escalate_to_manager: bool = True

    identify_by_email: bool = True
    identify_by_phone: bool = True
    identify_by_document: bool = False

    keep_same_consultant: bool = True
    assign_new_consultant: bool = False
    based_on_time: bool = False
    based_on_outcome: bool = False
    continuity_window_days: int = Field(30, gt=0, le=3650)

    inactivity_period: int = Field(7, ge=0)
    contact_attempts: int = Field(3, ge=0)

    retention_days: int = Field(30, gt=0, le=3650)

    @field_validator("timezone")
    @classmethod
    def _validate_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"Unknown timezone: {value}") from exc
        return value

    @field_validator("holiday_country")
    @classmethod
    def _validate_holiday_country(cls, value: str) -> str:
        value = (value or "").strip().upper()
        if value and not is_supported_holiday_country(value):
            raise ValueError(f"Unsupported holiday country: {value}")
        return value

    @model_validator(mode="after")
    def _validate_consistency(self):
        _check_thresholds(self.warning_percentage, self.critical_percentage)
        _check_working_hours(self.working_hours_start, self.working_hours_end)
        if self.keep_same_consultant and self.assign_new_consultant:
            raise ValueError("keep_same_consultant and assign_new_consultant are mutually exclusive")
        return self


class AutomationConfigCreate(AutomationConfigBase):
    """Request to create (and activate) a config."""


class AutomationConfigUpdate(BaseModel):
    """Partial update; merged onto the stored config and re-validated as a whole."""

    model_config = ConfigDict(extra="forbid")

    name: str | None = None
    distribution_method: DistributionMethod | None = None
    use_specialty: bool | None = None
    use_availability: bool | None = None
    use_region: bool | None = None
    rotation_user_ids: list[uuid.UUID] | None = None
    working_hours_start: time | None = None
    working_hours_end: time | None = None
    working_hours_weekend: bool | None = None
    timezone: str | None = None
    holiday_country: str | None = None
    first_contact_sla: int | None = None
    warning_percentage: int | None = None
    critical_percentage: int | None = None
    notify_visual: bool | None = None
    notify_system: bool | None = None
    notify_manager: bool | None = None
    auto_redistribute: bool | None = None
    escalate_to_manager: bool | None = None
    identify_by_email: bool | None = None
    identify_by_phone: bool | None = None
    identify_by_document: bool | None = None
    keep_same_consultant: bool | None = None
    assign_new_consultant: bool | None = None
    based_on_time: bool | None = None
    based_on_outcome: bool | None = None
    continuity_window_days: int | None = None
    inactivity_period: int | None = None
    contact_attempts: int | None = None
    retention_days: int | None = None


class AutomationConfigRead(AutomationConfigBase):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    active: bool
    created_by_user_id: uuid.UUID | None = None
    created_at: datetime
    updated_at: datetime


class ConfigSnapshot(BaseModel):
    """Operative config values frozen onto each assignment."""

    model_config = ConfigDict(frozen=True)

    config_id: uuid.UUID | None = None
    distribution_method: DistributionMethod = DistributionMethod.VOLUME
    use_specialty: bool = False
    use_availability: bool = False
    use_region: bool = False
    rotation_user_ids: list[uuid.UUID] = Field(default_factory=list)

    working_hours_start: time
    working_hours_end: time
    working_hours_weekend: bool = False
    timezone: str = "UTC"
    holiday_country: str = ""

    first_contact_sla: int
    warning_percentage: int
    critical_percentage: int

    notify_visual: bool = True
    notify_system: bool = True
    notify_manager: bool = False
    auto_redistribute: bool = False
    escalate_to_manager: bool = True

    @model_validator(mode="after")
    def _validate_consistency(self):
        if self.first_contact_sla <= 0:
            raise ValueError("first_contact_sla must be positive")
        _check_thresholds(self.warning_percentage, self.critical_percentage)
        _check_working_hours(self.working_hours_start, self.working_hours_end)
        return self

    @property
    def warning_minutes(self) -> float:
        return self.first_contact_sla * self.warning_percentage / 100

    @property
    def critical_minutes(self) -> float:
        return self.first_contact_sla * self.critical_percentage / 100

    @property
    def schedule(self) -> WorkingSchedule:
        return WorkingSchedule(
            start=self.working_hours_start,
            end=self.working_hours_end,
            include_weekends=self.working_hours_weekend,
            timezone=self.timezone,
            holiday_country=self.holiday_country or None,
        )

    def to_json(self) -> dict:
        return self.model_dump(mode="json")
