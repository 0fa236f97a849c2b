"""Static catalog of the analytics service's measures and pre-aggregations.

Mirrors the ``prices`` cube configuration deployed with the analytics service.
Bump ``CATALOG_VERSION`` whenever a definition is added, removed or reshaped
there.
"""

from __future__ import annotations

from typing import Iterable, Optional

from price_insights.schemas.filters import Granularity
from price_insights.schemas.pre_aggregation import (
    MeasureDefinition,
    MeasureType,
    PreAggregationDefinition,
    PreAggregationKind,
)

CATALOG_VERSION = "2025.10.1"

PRICE_DATE = "prices.price_date"
RETAILER = "prices.retailer_name"
SETTLEMENT = "prices.settlement_name"
MUNICIPALITY = "prices.municipality_name"
CATEGORY = "prices.category_group_name"
STORE = "prices.store_id"

DAY = Granularity.DAY
WEEK = Granularity.WEEK
MONTH = Granularity.MONTH

MEASURES: dict[str, MeasureDefinition] = {
    m.name: m
    for m in (
        MeasureDefinition(name="prices.count", type=MeasureType.COUNT),
        MeasureDefinition(
            name="prices.averageRetailPrice",
            type=MeasureType.AVG,
            additive_parts=("prices.totalRetailPrice", "prices.retailPriceCount"),
        ),
        MeasureDefinition(
            name="prices.averagePromoPrice",
            type=MeasureType.AVG,
            additive_parts=("prices.totalPromoPrice", "prices.promoPriceCount"),
        ),
        MeasureDefinition(name="prices.totalRetailPrice", type=MeasureType.SUM),
        MeasureDefinition(name="prices.totalPromoPrice", type=MeasureType.SUM),
        MeasureDefinition(name="prices.retailPriceCount", type=MeasureType.SUM),
        MeasureDefinition(name="prices.promoPriceCount", type=MeasureType.SUM),
        MeasureDefinition(name="prices.minRetailPrice", type=MeasureType.MIN),
        MeasureDefinition(name="prices.minPromoPrice", type=MeasureType.MIN),
        MeasureDefinition(name="prices.maxRetailPrice", type=MeasureType.MAX),
        MeasureDefinition(name="prices.maxPromoPrice", type=MeasureType.MAX),
        MeasureDefinition(name="prices.medianRetailPrice", type=MeasureType.MEDIAN),
        MeasureDefinition(name="prices.medianPromoPrice", type=MeasureType.MEDIAN),
        MeasureDefinition(
            name="prices.averageDiscountPercentage",
            type=MeasureType.NUMBER,
            additive_parts=(
                "prices.totalRetailPrice",
                "prices.retailPriceCount",
                "prices.totalPromoPrice",
                "prices.promoPriceCount",
            ),
        ),
    )
}

AVERAGES = ("prices.averageRetailPrice", "prices.averagePromoPrice")
TOTALS = (
    "prices.totalRetailPrice",
    "prices.totalPromoPrice",
    "prices.retailPriceCount",
    "prices.promoPriceCount",
)


def _definition(
    name: str,
    measures: Iterable[str],
    dimensions: Iterable[str] = (),
    *,
    granularity: Optional[Granularity] = None,
    partition_granularity: Optional[Granularity] = None,
    refresh_every: Optional[str] = "4 hours",
    kind: PreAggregationKind = PreAggregationKind.ROLLUP,
) -> PreAggregationDefinition:
    return PreAggregationDefinition(
        name=name,
        kind=kind,
        measures=frozenset(measures),
        dimensions=frozenset(dimensions),
        time_dimension=PRICE_DATE if granularity is not None else None,
        granularity=granularity,
        partition_granularity=partition_granularity,
        refresh_every=refresh_every,
    )


CATALOG: tuple[PreAggregationDefinition, ...] = (
    # Exact matches for the dashboard charts
    _definition("main", AVERAGES, granularity=DAY),
    _definition("retailer_chart_match", ["prices.averageRetailPrice"], [RETAILER], granularity=DAY),
    _definition("category_chart_match", ["prices.averageRetailPrice"], [CATEGORY], granularity=DAY),
    _definition("settlement_chart_match", AVERAGES, [SETTLEMENT], granularity=DAY),
    _definition("municipality_chart_match", AVERAGES, [MUNICIPALITY], granularity=DAY),
    _definition("retailer_price_chart_match", AVERAGES, [RETAILER], granularity=DAY),
    _definition(
        "category_range_chart_match",
        ["prices.averageRetailPrice", "prices.minRetailPrice", "prices.maxRetailPrice"],
        [CATEGORY],
        granularity=DAY,
    ),
    _definition("discount_chart_match", ["prices.averageDiscountPercentage"], [RETAILER], granularity=DAY),
    # Additive alternatives; averages are recomputed as total / count
    _definition("main_fast", TOTALS, granularity=DAY),
    _definition(
        "retailer_additive", ["prices.totalRetailPrice", "prices.retailPriceCount"], [RETAILER], granularity=DAY
    ),
    _definition(
        "category_additive", ["prices.totalRetailPrice", "prices.retailPriceCount"], [CATEGORY], granularity=DAY
    ),
    # Whole-dataset stats, no dimensions and no time
    _definition("stats_cards", ["prices.minRetailPrice", "prices.maxRetailPrice"]),
    _definition("overall_totals", TOTALS),
    _definition("min_max_only", ["prices.minRetailPrice", "prices.maxRetailPrice"]),
    _definition("median_only", ["prices.medianRetailPrice"]),
    _definition("prices_average", AVERAGES),
    # Breakdowns without time
    _definition("settlement_no_time", AVERAGES, [SETTLEMENT]),
    _definition("municipality_no_time", AVERAGES, [MUNICIPALITY]),
    _definition("category_no_time", AVERAGES, [CATEGORY]),
    _definition("retailer_no_time", AVERAGES, [RETAILER]),
    _definition("retailer_discounts_no_time", ["prices.averageDiscountPercentage"], [RETAILER]),
    # Monthly partitioned daily rollups
    _definition("settlement_rollup", AVERAGES, [SETTLEMENT], granularity=DAY, partition_granularity=MONTH),
    _definition("municipality_rollup", AVERAGES, [MUNICIPALITY], granularity=DAY, partition_granularity=MONTH),
    _definition("category_rollup", AVERAGES, [CATEGORY], granularity=DAY, partition_granularity=MONTH),
    _definition("retailer_rollup", AVERAGES, [RETAILER], granularity=DAY, partition_granularity=MONTH),
    # Coarser grains for long windows
    _definition("settlement_weekly", AVERAGES, [SETTLEMENT], granularity=WEEK),
    _definition("municipality_weekly", AVERAGES, [MUNICIPALITY], granularity=WEEK),
    _definition("settlement_monthly", AVERAGES, [SETTLEMENT], granularity=MONTH),
    _definition("municipality_monthly", AVERAGES, [MUNICIPALITY], granularity=MONTH),
    # Single-measure trends
    _definition("settlement_retail_only", ["prices.averageRetailPrice"], [SETTLEMENT], granularity=DAY),
    _definition("municipality_retail_only", ["prices.averageRetailPrice"], [MUNICIPALITY], granularity=DAY),
    _definition("category_totals", TOTALS, [CATEGORY], granularity=DAY),
    _definition("daily_totals", TOTALS, granularity=DAY, partition_granularity=MONTH),
    _definition("price_by_store", ["prices.averageRetailPrice"], [STORE], granularity=DAY, refresh_every=None),
    _definition("price_by_settlement", AVERAGES, [SETTLEMENT], granularity=DAY),
    _definition("price_by_municipality", AVERAGES, [MUNICIPALITY], granularity=DAY),
    _definition(
        "price_by_retailer", [*AVERAGES, "prices.averageDiscountPercentage"], [RETAILER], granularity=DAY
    ),
    _definition(
        "price_by_category",
        [*AVERAGES, "prices.minRetailPrice", "prices.maxRetailPrice"],
        [CATEGORY],
        granularity=DAY,
    ),
    _definition(
        "retailer_trends", ["prices.averageRetailPrice"], [RETAILER],
        granularity=DAY, partition_granularity=MONTH, refresh_every="2 hours",
    ),
    _definition(
        "category_trends", ["prices.averageRetailPrice"], [CATEGORY],
        granularity=DAY, partition_granularity=MONTH, refresh_every="2 hours",
    ),
    _definition(
        "municipality_trends", ["prices.averageRetailPrice"], [MUNICIPALITY],
        granularity=DAY, partition_granularity=MONTH, refresh_every="2 hours",
    ),
    # Families named by predict_pre_aggregation
    _definition("time_only_filtered", TOTALS, granularity=DAY, partition_granularity=MONTH),
    _definition("retailer_only_filtered", [*AVERAGES, *TOTALS], [RETAILER], granularity=DAY),
    _definition("settlement_only_filtered", [*AVERAGES, *TOTALS], [SETTLEMENT], granularity=DAY),
    _definition("municipality_only_filtered", [*AVERAGES, *TOTALS], [MUNICIPALITY], granularity=DAY),
    _definition("category_only_filtered", [*AVERAGES, *TOTALS], [CATEGORY], granularity=DAY),
    _definition(
        "universal_filtered",
        TOTALS,
        [RETAILER, SETTLEMENT, MUNICIPALITY, CATEGORY],
        granularity=DAY,
        partition_granularity=MONTH,
    ),
)


def get_definition(name: str, catalog: Iterable[PreAggregationDefinition] = CATALOG) -> PreAggregationDefinition:
    for definition in catalog:
        if definition.name == name:
            return definition
    raise KeyError(name)


def get_measure(name: str) -> Optional[MeasureDefinition]:
    return MEASURES.get(name)
