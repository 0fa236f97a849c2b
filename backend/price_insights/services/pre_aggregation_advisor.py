"""Diagnostics for pre-aggregation matching.

Nothing here changes a query or blocks its execution. The advisor explains
whether a compiled query can be answered from the catalog and what definition
would serve it if none does. It runs on otherwise valid production queries, so
:func:`analyze_query` never raises.
"""

from __future__ import annotations

import re
from datetime import date
from typing import Callable, Iterable, Optional, TypeVar

from dateutil.relativedelta import relativedelta
from loguru import logger

from price_insights.schemas.filters import Granularity
from price_insights.schemas.pre_aggregation import (
    DefinitionOverlap,
    PreAggregationDefinition,
    PreAggregationKind,
    QueryAnalysis,
    SuggestedDefinition,
)
from price_insights.schemas.query import Query, TimeDimension
from price_insights.services.pre_aggregation_catalog import CATALOG, CATALOG_VERSION, get_measure

NON_ADDITIVE_HINTS = ("average", "avg", "median", "percentile", "percentage", "ratio")

PRE_AGGREGATION_CHECKLIST: dict[str, str] = {
    "1. Additive Measures": "All measures should be additive (sum, count, min, max) for best matching",
    "2. Exact Member Match": "Pre-aggregation must contain ALL dimensions and measures from query",
    "3. Time Dimension": "Query granularity must match pre-aggregation granularity exactly",
    "4. Filter Dimensions": "All filter dimensions must be included as dimensions in pre-aggregation",
    "5. Date Range Alignment": "Date ranges should align with granularity boundaries",
    "6. Order of Definition": "Rollup pre-aggregations are tested before original_sql ones",
}

_RELATIVE_RANGE = re.compile(r"^last\s+(\d+)\s+(day|week|month|year)s?$", re.IGNORECASE)

T = TypeVar("T")


def classify_measure(name: str) -> tuple[bool, bool]:
    """Return ``(is_additive, is_registered)`` for a measure."""

    measure = get_measure(name)
    if measure is not None:
        return measure.type.is_additive, True
    short = name.rsplit(".", 1)[-1].lower()
    return not any(hint in short for hint in NON_ADDITIVE_HINTS), False


def _is_additive(query: Query) -> bool:
    return all(classify_measure(m)[0] for m in query.measures)


def resolve_window(time_dimension: TimeDimension, today: Optional[date] = None) -> Optional[tuple[date, date]]:
    """Concrete dates covered by a time dimension, or None if unknown."""

    if not time_dimension.is_relative:
        start, end = time_dimension.date_range
        return date.fromisoformat(start[:10]), date.fromisoformat(end[:10])
    today = today or date.today()
    token = str(time_dimension.date_range).strip().lower()
    if token == "today":
        return today, today
    if token == "yesterday":
        yesterday = today - relativedelta(days=1)
        return yesterday, yesterday
    match = _RELATIVE_RANGE.match(token)
    if match is None:
        return None
    amount, unit = int(match.group(1)), match.group(2).lower()
    return today - relativedelta(**{f"{unit}s": amount}), today


def definition_serves(
    definition: PreAggregationDefinition,
    query: Query,
    *,
    today: Optional[date] = None,
) -> bool:
    """Whether ``definition`` alone can answer ``query``."""

    if not set(query.measures) <= definition.measures:
        return False
    required = set(query.dimensions) | set(query.filter_members)
    if not required <= definition.dimensions:
        return False
    additive = _is_additive(query)
    # Averages and medians cannot be re-aggregated across dropped members.
    if not additive and required != definition.dimensions:
        return False

    td = query.time_dimension
    if td is None:
        # A bounded rollup cannot answer an all-time aggregate.
        if definition.build_range is not None:
            return False
        return additive or not definition.has_time_dimension
    if definition.time_dimension != td.dimension:
        return False
    if additive:
        if td.granularity is not None and not definition.granularity.is_at_least_as_fine_as(td.granularity):
            return False
    elif definition.granularity != td.granularity:
        return False

    if definition.build_range is not None:
        window = resolve_window(td, today)
        if window is None:
            return False
        built_from, built_to = definition.build_range
        if window[0] < built_from or window[1] > built_to:
            return False
    return True


def find_matching_definitions(
    query: Query,
    catalog: Iterable[PreAggregationDefinition] = CATALOG,
    *,
    today: Optional[date] = None,
) -> list[str]:
    """Names of serving definitions, rollups first, then catalog order."""

    serving = [d for d in catalog if definition_serves(d, query, today=today)]
    serving.sort(key=lambda d: d.kind != PreAggregationKind.ROLLUP)
    return [d.name for d in serving]


def _subsumes(covering: PreAggregationDefinition, covered: PreAggregationDefinition) -> bool:
    if covering.time_dimension != covered.time_dimension or covering.granularity != covered.granularity:
        return False
    if not (covered.measures <= covering.measures and covered.dimensions <= covering.dimensions):
        return False
    if covered.dimensions != covering.dimensions:
        if not all(classify_measure(m)[0] for m in covered.measures):
            return False
    if covering.build_range is not None:
        if covered.build_range is None:
            return False
        if covered.build_range[0] < covering.build_range[0] or covered.build_range[1] > covering.build_range[1]:
            return False
    return True


def find_overlapping_definitions(
    catalog: Iterable[PreAggregationDefinition] = CATALOG,
) -> list[DefinitionOverlap]:
    """Definitions whose every query could be answered by another definition.

    Identically shaped definitions are reported once, the later one as covered.
    """

    definitions = list(catalog)
    overlaps: list[DefinitionOverlap] = []
    for i, covered in enumerate(definitions):
        for j, covering in enumerate(definitions):
            if i == j or not _subsumes(covering, covered):
                continue
            if _subsumes(covered, covering) and i < j:
                continue
            overlaps.append(DefinitionOverlap(covered=covered.name, covering=covering.name))
            break
    return overlaps


def query_signature(query: Query) -> str:
    td = query.time_dimension
    time_part = f"{td.dimension}({td.granularity.value if td.granularity else 'none'})" if td else ""
    filters = ", ".join(f"{c.member} {c.operator.value} {','.join(c.values)}" for c in query.filters)
    return " | ".join(
        [
            f"Measures: {', '.join(query.measures)}",
            f"Dimensions: {', '.join(query.dimensions)}",
            f"TimeDimensions: {time_part}",
            f"Filters: {filters}",
        ]
    )


def suggest_definition(query: Query) -> SuggestedDefinition:
    td = query.time_dimension
    return SuggestedDefinition(
        measures=list(query.measures),
        dimensions=list(dict.fromkeys([*query.dimensions, *query.filter_members])),
        time_dimension=td.dimension if td else None,
        granularity=(td.granularity or Granularity.DAY) if td else None,
    )


def _alignment_warning(td: TimeDimension) -> Optional[str]:
    if td.is_relative or td.granularity in (None, Granularity.DAY):
        return None
    try:
        start, end = resolve_window(td)
    except ValueError as exc:
        return f"Date range cannot be read, alignment not checked: {exc}"
    if td.granularity == Granularity.WEEK and start.weekday() != 0:
        return f"Date range starts on {start.isoformat()}, not on a week boundary (Monday)"
    if td.granularity == Granularity.MONTH and start.day != 1:
        return f"Date range starts on {start.isoformat()}, not on a month boundary"
    return None


def _analyze(query: Query, catalog: Iterable[PreAggregationDefinition], today: Optional[date]) -> QueryAnalysis:
    warnings: list[str] = []
    tips: list[str] = []

    non_additive: list[str] = []
    for measure in query.measures:
        additive, registered = classify_measure(measure)
        if not additive:
            non_additive.append(measure)
        if not registered:
            kind = "additive" if additive else "non-additive"
            warnings.append(f"Measure {measure} is not in the measure registry; treated as {kind} by name")
    if non_additive:
        warnings.append(
            f"Non-additive measures detected: {', '.join(non_additive)}. "
            "These are harder to match with pre-aggregations."
        )
        for measure in non_additive:
            definition = get_measure(measure)
            if definition is not None and definition.additive_parts:
                tips.append(
                    f"{measure} can be recomputed from additive measures: {', '.join(definition.additive_parts)}"
                )

    td = query.time_dimension
    if td is not None:
        granularity = td.granularity.value if td.granularity else "no"
        tips.append(f"Time dimension found: {td.dimension} with {granularity} granularity")
        tips.append(f"Date range: {td.date_range if td.is_relative else ' .. '.join(td.date_range)}")
        misaligned = _alignment_warning(td)
        if misaligned:
            warnings.append(misaligned)
    else:
        tips.append("No time dimensions - query can match non-time pre-aggregations")

    matches = find_matching_definitions(query, catalog, today=today)
    suggestion = suggest_definition(query)
    if not matches:
        warnings.append(
            f"No pre-aggregation in catalog {CATALOG_VERSION} serves this query; it will hit the raw fact table"
        )
        shape = [f"measures: [{', '.join(suggestion.measures)}]", f"dimensions: [{', '.join(suggestion.dimensions)}]"]
        if suggestion.time_dimension:
            shape.append(f"timeDimension: {suggestion.time_dimension}")
            shape.append(f"granularity: '{suggestion.granularity.value}'")
        tips.append(f"Suggested pre-aggregation: {{ {', '.join(shape)} }}")

    return QueryAnalysis(
        query_signature=query_signature(query),
        is_additive=not non_additive,
        has_time_dimension=td is not None,
        non_additive_measures=non_additive,
        suggested_definition=suggestion,
        matching_definitions=matches,
        warnings=warnings,
        tips=tips,
    )


def _salvage(part: str, compute: Callable[[], T], default: T) -> T:
    try:
        return compute()
    except Exception as exc:
        logger.bind(part=part, error=str(exc)).warning("query_analysis_part_failed")
        return default


def _degraded_analysis(query: Query, exc: Exception) -> QueryAnalysis:
    """Whatever can still be said about a query whose full analysis failed."""

    non_additive = _salvage(
        "non_additive_measures",
        lambda: [m for m in query.measures if not classify_measure(m)[0]],
        None,
    )
    return QueryAnalysis(
        query_signature=_salvage("query_signature", lambda: query_signature(query), ""),
        is_additive=non_additive == [],
        has_time_dimension=getattr(query, "time_dimension", None) is not None,
        non_additive_measures=non_additive or [],
        suggested_definition=_salvage(
            "suggested_definition", lambda: suggest_definition(query), SuggestedDefinition()
        ),
        warnings=[f"Query analysis failed: {exc}"],
    )


def analyze_query(
    query: Query,
    catalog: Iterable[PreAggregationDefinition] = CATALOG,
    *,
    today: Optional[date] = None,
) -> QueryAnalysis:
    """Report additivity, time shape, catalog matches and a suggested definition."""

    try:
        return _analyze(query, catalog, today)
    except Exception as exc:  # diagnostics must never break a valid query
        logger.bind(error=str(exc)).exception("query_analysis_failed")
        return _degraded_analysis(query, exc)


def log_query_analysis(query: Query, label: Optional[str] = None) -> QueryAnalysis:
    analysis = analyze_query(query)
    logger.bind(
        label=label or "-",
        signature=analysis.query_signature,
        is_additive=analysis.is_additive,
        has_time_dimension=analysis.has_time_dimension,
        matches=analysis.matching_definitions,
        warnings=analysis.warnings,
        tips=analysis.tips,
    ).info("query_analysis")
    return analysis
