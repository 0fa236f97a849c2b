"""Pydantic models describing what the user wants to see on the dashboard."""

from __future__ import annotations

from datetime import date
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from price_insights.core.config import settings

ALL_SENTINEL = "All"

# Filter Model field -> selection attribute, in compilation order.
FILTER_FIELDS: tuple[str, ...] = ("retailers", "settlements", "municipalities", "categories")


class Granularity(str, Enum):
    """Width of a time bucket, finest first."""

    DAY = "day"
    WEEK = "week"
    MONTH = "month"

    @property
    def rank(self) -> int:
        return _GRANULARITY_RANK[self]

    def is_at_least_as_fine_as(self, other: "Granularity") -> bool:
        return self.rank <= other.rank


_GRANULARITY_RANK = {Granularity.DAY: 0, Granularity.WEEK: 1, Granularity.MONTH: 2}


class DatePreset(str, Enum):
    """Relative date windows offered by the date selector."""

    LAST_3_DAYS = "last3days"
    LAST_7_DAYS = "last7days"
    LAST_30_DAYS = "last30days"
    LAST_3_MONTHS = "last3months"

    @property
    def relative_token(self) -> str:
        """The relative range understood by the analytics service."""
        return _PRESET_TOKENS[self]


_PRESET_TOKENS = {
    DatePreset.LAST_3_DAYS: "Last 3 days",
    DatePreset.LAST_7_DAYS: "Last 7 days",
    DatePreset.LAST_30_DAYS: "Last 30 days",
    DatePreset.LAST_3_MONTHS: "Last 3 months",
}


class FilterModel(BaseModel):
    """Normalized user intent: selections, date window and bucket width.

    Selections are sets of labels; an empty set means "no restriction". Blank
    values and the ``"All"`` sentinel sent by dropdowns are dropped on input so
    that an empty list, a missing field and ``None`` all mean the same thing.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    retailers: frozenset[str] = Field(default_factory=frozenset, description="Selected retailer names")
    settlements: frozenset[str] = Field(default_factory=frozenset, description="Selected settlement names")
    municipalities: frozenset[str] = Field(default_factory=frozenset, description="Selected municipality names")
    categories: frozenset[str] = Field(default_factory=frozenset, description="Selected category groups")
    date_range: Optional[tuple[date, date]] = Field(
        default=None, description="Inclusive absolute window; wins over date_preset"
    )
    date_preset: Optional[DatePreset] = Field(default=None, description="Relative window")
    granularity: Granularity = Field(
        default_factory=lambda: Granularity(settings.DEFAULT_GRANULARITY), description="Time bucket width"
    )

    @field_validator("retailers", "settlements", "municipalities", "categories", mode="before")
    @classmethod
    def _normalize_selection(cls, value: Any) -> frozenset[str]:
        if value is None:
            return frozenset()
        if isinstance(value, str):
            value = [value]
        cleaned = (str(item).strip() for item in value if item is not None)
        return frozenset(item for item in cleaned if item and item != ALL_SENTINEL)

    @field_validator("date_range", mode="before")
    @classmethod
    def _normalize_date_range(cls, value: Any) -> Any:
        if value is None or (isinstance(value, (list, tuple)) and len(value) == 0):
            return None
        return value

    @field_validator("granularity", mode="before")
    @classmethod
    def _default_granularity(cls, value: Any) -> Any:
        return Granularity(settings.DEFAULT_GRANULARITY) if value in (None, "") else value

    @model_validator(mode="after")
    def _check_date_range(self) -> "FilterModel":
        if self.date_range is not None:
            start, end = self.date_range
            if start > end:
                raise ValueError(
                    f"date_range start {start.isoformat()} is after end {end.isoformat()}"
                )
        return self

    def selection(self, field: str) -> frozenset[str]:
        return getattr(self, field)

    def active_fields(self) -> tuple[str, ...]:
        return tuple(field for field in FILTER_FIELDS if self.selection(field))

    def dep_keys(self) -> list[str]:
        """Pre-stringified field values, cheap to diff between renders."""

        if self.date_range is not None:
            date_key = "..".join(d.isoformat() for d in self.date_range)
        elif self.date_preset is not None:
            date_key = self.date_preset.value
        else:
            date_key = ""
        keys = [",".join(sorted(self.selection(field))) for field in FILTER_FIELDS]
        keys.append(date_key)
        keys.append(self.granularity.value)
        return keys
