"""Pydantic models for compiled queries and the tabular results they return."""

from __future__ import annotations

from datetime import date
from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from price_insights.schemas.filters import Granularity


class FilterOperator(str, Enum):
    EQUALS = "equals"
    NOT_EQUALS = "notEquals"


class SortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"


class FilterClause(BaseModel):
    """A single member restriction sent to the analytics service."""

    model_config = ConfigDict(frozen=True)

    member: str = Field(description="Fully qualified member, e.g. prices.retailer_name")
    operator: FilterOperator = Field(default=FilterOperator.EQUALS)
    values: tuple[str, ...] = Field(default=(), description="Values matched by the operator")


class TimeDimension(BaseModel):
    """Time bucketing of a query: an absolute ISO pair or a relative token."""

    model_config = ConfigDict(frozen=True)

    dimension: str
    granularity: Optional[Granularity] = Granularity.DAY
    date_range: Union[tuple[str, str], str]

    @field_validator("date_range")
    @classmethod
    def _iso_date_pair(cls, value: Union[tuple[str, str], str]) -> Union[tuple[str, str], str]:
        if isinstance(value, str):
            return value
        try:
            start, end = (date.fromisoformat(part[:10]) for part in value)
        except ValueError:
            raise ValueError(f"dateRange must be a pair of ISO dates, got {list(value)}") from None
        if start > end:
            raise ValueError(f"dateRange start {start.isoformat()} is after end {end.isoformat()}")
        return value

    @property
    def is_relative(self) -> bool:
        return isinstance(self.date_range, str)


class Query(BaseModel):
    """The request shape submitted to the analytics service."""

    model_config = ConfigDict(frozen=True)

    measures: tuple[str, ...] = ()
    dimensions: tuple[str, ...] = ()
    time_dimension: Optional[TimeDimension] = None
    filters: tuple[FilterClause, ...] = ()
    order: tuple[tuple[str, SortDirection], ...] = ()
    limit: Optional[int] = None

    @field_validator("measures", "dimensions")
    @classmethod
    def _unique_members(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        if len(set(value)) != len(value):
            raise ValueError(f"members must be unique, got {list(value)}")
        return value

    @field_validator("limit")
    @classmethod
    def _positive_limit(cls, value: Optional[int]) -> Optional[int]:
        if value is not None and value <= 0:
            raise ValueError("limit must be a positive integer")
        return value

    @property
    def filter_members(self) -> tuple[str, ...]:
        return tuple(clause.member for clause in self.filters)

    def to_payload(self) -> dict[str, Any]:
        """Serialize to the analytics service wire format."""

        payload: dict[str, Any] = {
            "measures": list(self.measures),
            "dimensions": list(self.dimensions),
            "timeDimensions": [],
            "filters": [
                {"member": c.member, "operator": c.operator.value, "values": list(c.values)}
                for c in self.filters
            ],
        }
        if self.time_dimension is not None:
            td = self.time_dimension
            entry: dict[str, Any] = {"dimension": td.dimension}
            if td.granularity is not None:
                entry["granularity"] = td.granularity.value
            entry["dateRange"] = td.date_range if td.is_relative else list(td.date_range)
            payload["timeDimensions"].append(entry)
        if self.order:
            payload["order"] = {member: direction.value for member, direction in self.order}
        if self.limit is not None:
            payload["limit"] = self.limit
        return payload

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "Query":
        """Parse a wire-format query, e.g. one captured from the browser."""

        time_dimensions = payload.get("timeDimensions") or []
        if len(time_dimensions) > 1:
            raise ValueError("only one time dimension per query is supported")
        time_dimension = None
        if time_dimensions:
            td = time_dimensions[0]
            time_dimension = TimeDimension(
                dimension=td["dimension"],
                granularity=td.get("granularity"),
                date_range=td.get("dateRange") or "Last 30 days",
            )
        order = payload.get("order") or {}
        if isinstance(order, dict):
            order = list(order.items())
        return cls(
            measures=tuple(payload.get("measures") or ()),
            dimensions=tuple(payload.get("dimensions") or ()),
            time_dimension=time_dimension,
            filters=tuple(
                FilterClause(
                    member=f["member"],
                    operator=f.get("operator", FilterOperator.EQUALS),
                    values=tuple(str(v) for v in f.get("values") or ()),
                )
                for f in payload.get("filters") or ()
            ),
            order=tuple((member, direction) for member, direction in order),
            limit=payload.get("limit"),
        )


class ResultSet(BaseModel):
    """Row-oriented result with the column annotation declared by the service."""

    model_config = ConfigDict(frozen=True)

    rows: list[dict[str, Any]] = Field(default_factory=list)
    annotation: dict[str, Any] = Field(default_factory=dict)
    query: Optional[dict[str, Any]] = None

    @property
    def is_empty(self) -> bool:
        return not self.rows

    def column_values(self, member: str) -> list[str]:
        """Distinct, sorted, non-empty values of one column."""
        return sorted({str(row[member]) for row in self.rows if row.get(member)})
