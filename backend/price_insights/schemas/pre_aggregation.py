"""Pydantic models for the pre-aggregation catalog and advisor reports."""

from datetime import date
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from price_insights.schemas.filters import Granularity


class MeasureType(str, Enum):
    COUNT = "count"
    SUM = "sum"
    MIN = "min"
    MAX = "max"
    AVG = "avg"
    MEDIAN = "median"
    PERCENTILE = "percentile"
    NUMBER = "number"  # derived expression, e.g. a ratio of two measures

    @property
    def is_additive(self) -> bool:
        return self in (MeasureType.COUNT, MeasureType.SUM, MeasureType.MIN, MeasureType.MAX)


class MeasureDefinition(BaseModel):
    """A measure of the fact cube and, if known, its additive building blocks."""

    model_config = ConfigDict(frozen=True)

    name: str
    type: MeasureType
    additive_parts: tuple[str, ...] = Field(
        default=(), description="Additive measures the value can be recomputed from"
    )


class PreAggregationKind(str, Enum):
    ROLLUP = "rollup"
    ORIGINAL_SQL = "original_sql"


class PreAggregationDefinition(BaseModel):
    """A server-side precomputed aggregate the service may answer from."""

    model_config = ConfigDict(frozen=True)

    name: str
    kind: PreAggregationKind = PreAggregationKind.ROLLUP
    measures: frozenset[str] = Field(default_factory=frozenset)
    dimensions: frozenset[str] = Field(default_factory=frozenset)
    time_dimension: Optional[str] = None
    granularity: Optional[Granularity] = None
    partition_granularity: Optional[Granularity] = None
    refresh_every: Optional[str] = None
    build_range: Optional[tuple[date, date]] = Field(
        default=None, description="Covered dates; None means unbounded"
    )

    @model_validator(mode="after")
    def _check_time_shape(self) -> "PreAggregationDefinition":
        if (self.time_dimension is None) != (self.granularity is None):
            raise ValueError(f"{self.name}: time_dimension and granularity go together")
        if self.partition_granularity is not None and self.time_dimension is None:
            raise ValueError(f"{self.name}: partitioning requires a time dimension")
        return self

    @property
    def has_time_dimension(self) -> bool:
        return self.time_dimension is not None


class SuggestedDefinition(BaseModel):
    """Minimal definition shape that would serve one query."""

    measures: List[str] = Field(default_factory=list)
    dimensions: List[str] = Field(default_factory=list)
    time_dimension: Optional[str] = None
    granularity: Optional[Granularity] = None


class QueryAnalysis(BaseModel):
    """Diagnostic report produced for a compiled query."""

    query_signature: str = ""
    is_additive: bool = True
    has_time_dimension: bool = False
    non_additive_measures: List[str] = Field(default_factory=list)
    suggested_definition: SuggestedDefinition = Field(default_factory=SuggestedDefinition)
    matching_definitions: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    tips: List[str] = Field(default_factory=list)


class DefinitionOverlap(BaseModel):
    """``covered`` can be answered from ``covering`` alone."""

    covered: str
    covering: str
