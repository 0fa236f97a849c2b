"""Compile dashboard filters into analytics queries.

Every chart asks the same question in a different shape: some measures of the
``prices`` fact cube, restricted by the global filters, over a date window.
This module is the single place that turns a :class:`FilterModel` into that
shape.

Shaping rules
-------------
* every active filter becomes one ``equals`` clause over its sorted values,
  and its member is also listed as a dimension; pre-aggregations can only
  answer a filtered query when the filtered member is one of their
  dimensions,
* breakdown dimensions requested by a chart are appended unless already
  present, so "by retailer" with an active retailer filter yields a single
  ``prices.retailer_name`` entry,
* relative presets are sent as the service's own tokens ("Last 7 days") so
  that the refresh cadence of a matching pre-aggregation keeps them current;
  an explicit ``date_range`` wins and is sent as an absolute pair.

Compilation is memoized: equal inputs return the very same :class:`Query`.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Any, Callable, Iterable, Mapping, Optional, Sequence, Union

from loguru import logger
from pydantic import ValidationError

from price_insights.core.config import settings
from price_insights.core.errors import QueryCompilationError
from price_insights.schemas.filters import FILTER_FIELDS, DatePreset, FilterModel
from price_insights.schemas.query import (
    FilterClause,
    FilterOperator,
    Query,
    SortDirection,
    TimeDimension,
)

FilterInput = Union[FilterModel, Mapping[str, Any], None]

# Filter Model field -> attribute of the fact cube it restricts.
FILTER_ATTRIBUTES: dict[str, str] = {
    "retailers": "retailer_name",
    "settlements": "settlement_name",
    "municipalities": "municipality_name",
    "categories": "category_group_name",
}

# Dropdown values come straight from the small dimension cubes, which is far
# cheaper than scanning prices.
FILTER_VALUE_DIMENSIONS: dict[str, str] = {
    "retailers": "stores.retailer_name",
    "settlements": "stores.settlement_name",
    "municipalities": "stores.municipality_name",
    "categories": "category_groups.name",
}

PRICE_MEASURES = ("averageRetailPrice", "averagePromoPrice")


def qualify(member: str, cube: Optional[str] = None) -> str:
    """Prefix a bare member name with the fact cube."""

    member = member.strip()
    if not member:
        raise QueryCompilationError("member names must not be empty")
    if "." in member:
        return member
    return f"{cube or settings.FACT_CUBE}.{member}"


def filter_member(field: str, cube: Optional[str] = None) -> str:
    try:
        return qualify(FILTER_ATTRIBUTES[field], cube)
    except KeyError:
        raise QueryCompilationError(f"unknown filter field: {field}") from None


def coerce_filters(filters: FilterInput) -> FilterModel:
    """Accept a FilterModel or its mapping form; reject anything malformed."""

    if isinstance(filters, FilterModel):
        return filters
    if filters is None:
        return FilterModel()
    try:
        return FilterModel.model_validate(dict(filters))
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'filters'}: {err['msg']}"
            for err in exc.errors()
        )
        raise QueryCompilationError(f"invalid filter model: {problems}") from exc


def _dedupe(members: Iterable[str]) -> tuple[str, ...]:
    return tuple(dict.fromkeys(members))


def build_filters(filters: FilterModel, cube: Optional[str] = None) -> tuple[FilterClause, ...]:
    return tuple(
        FilterClause(
            member=filter_member(field, cube),
            operator=FilterOperator.EQUALS,
            values=tuple(sorted(filters.selection(field))),
        )
        for field in filters.active_fields()
    )


def build_dimensions(
    filters: FilterModel,
    extra_dimensions: Sequence[str] = (),
    cube: Optional[str] = None,
) -> tuple[str, ...]:
    implied = [filter_member(field, cube) for field in filters.active_fields()]
    return _dedupe([*implied, *(qualify(d, cube) for d in extra_dimensions)])


def resolve_date_range(filters: FilterModel, default_preset: Optional[str] = None) -> Union[tuple[str, str], str]:
    if filters.date_range is not None:
        start, end = filters.date_range
        return (start.isoformat(), end.isoformat())
    preset = filters.date_preset or DatePreset(default_preset or settings.DEFAULT_DATE_PRESET)
    return preset.relative_token


def build_time_dimension(
    filters: FilterModel,
    dimension: Optional[str] = None,
    default_preset: Optional[str] = None,
) -> TimeDimension:
    return TimeDimension(
        dimension=dimension or settings.TIME_DIMENSION,
        granularity=filters.granularity,
        date_range=resolve_date_range(filters, default_preset),
    )


@lru_cache(maxsize=512)
def _compile_cached(
    measures: tuple[str, ...],
    filters: FilterModel,
    extra_dimensions: tuple[str, ...],
    limit: Optional[int],
    cube: str,
    time_dimension: str,
    default_preset: str,
) -> Query:
    dimensions = build_dimensions(filters, extra_dimensions, cube)
    if not measures and not dimensions:
        raise QueryCompilationError("a query needs at least one measure or dimension")
    query = Query(
        measures=measures,
        dimensions=dimensions,
        time_dimension=build_time_dimension(filters, time_dimension, default_preset),
        filters=build_filters(filters, cube),
        order=((time_dimension, SortDirection.ASC),),
        limit=limit,
    )
    logger.bind(
        measures=list(query.measures),
        dimensions=list(query.dimensions),
        filters=list(query.filter_members),
        date_range=query.time_dimension.date_range,
    ).debug("query_compiled")
    return query


def compile_query(
    measures: Sequence[str],
    filters: FilterInput = None,
    extra_dimensions: Sequence[str] = (),
    *,
    limit: Optional[int] = None,
) -> Query:
    """Compile measures, filters and breakdown dimensions into a Query.

    Raises :class:`QueryCompilationError` for malformed input, before anything
    reaches the analytics service.
    """

    if isinstance(measures, str) or isinstance(extra_dimensions, str):
        raise QueryCompilationError("measures and extra_dimensions must be sequences of names")
    if limit is not None and limit <= 0:
        raise QueryCompilationError("limit must be a positive integer")
    model = coerce_filters(filters)
    cube = settings.FACT_CUBE
    return _compile_cached(
        _dedupe(qualify(m, cube) for m in measures),
        model,
        _dedupe(qualify(d, cube) for d in extra_dimensions),
        limit,
        cube,
        settings.TIME_DIMENSION,
        settings.DEFAULT_DATE_PRESET,
    )


def build_totals_query(measures: Sequence[str], filters: FilterInput = None) -> Query:
    """Whole-dataset aggregates: filters only, no breakdown, no time bucketing."""

    model = coerce_filters(filters)
    measure_keys = _dedupe(qualify(m) for m in measures)
    if not measure_keys:
        raise QueryCompilationError("a totals query needs at least one measure")
    return Query(measures=measure_keys, filters=build_filters(model))


def build_filter_value_query(field: str) -> Query:
    """Query listing every value a filter dropdown can offer."""

    try:
        dimension = FILTER_VALUE_DIMENSIONS[field]
    except KeyError:
        raise QueryCompilationError(
            f"unknown filter field: {field}; expected one of {', '.join(FILTER_FIELDS)}"
        ) from None
    return Query(dimensions=(dimension,), order=((dimension, SortDirection.ASC),))


def predict_pre_aggregation(filters: FilterInput) -> str:
    """Name of the catalog family a query with these filters should hit."""

    active = coerce_filters(filters).active_fields()
    if not active:
        return "time_only_filtered"
    if len(active) == 1:
        return {
            "retailers": "retailer_only_filtered",
            "settlements": "settlement_only_filtered",
            "municipalities": "municipality_only_filtered",
            "categories": "category_only_filtered",
        }[active[0]]
    return "universal_filtered"


QUERY_PATTERNS: dict[str, Callable[[FilterInput], Query]] = {
    "trend": lambda f: compile_query(PRICE_MEASURES, f),
    "retailer": lambda f: compile_query(PRICE_MEASURES, f, ["retailer_name"]),
    "category": lambda f: compile_query(PRICE_MEASURES, f, ["category_group_name"]),
    "settlement": lambda f: compile_query(PRICE_MEASURES, f, ["settlement_name"]),
    "municipality": lambda f: compile_query(PRICE_MEASURES, f, ["municipality_name"]),
    "category_range": lambda f: compile_query(
        ["averageRetailPrice", "minRetailPrice", "maxRetailPrice"], f, ["category_group_name"]
    ),
    "discount": lambda f: compile_query(["averageDiscountPercentage"], f, ["retailer_name"]),
    "stats_cards": lambda f: build_totals_query(["minRetailPrice", "maxRetailPrice"], f),
}


def build_pattern_query(pattern: str, filters: FilterInput = None) -> Query:
    try:
        builder = QUERY_PATTERNS[pattern]
    except KeyError:
        raise QueryCompilationError(f"unknown query pattern: {pattern}") from None
    return builder(filters)
