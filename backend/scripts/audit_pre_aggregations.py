"""Print pre-aggregation matches for every chart pattern and catalog overlaps."""

import sys
import pathlib

sys.path.append(str(pathlib.Path(__file__).resolve().parents[1]))

from price_insights.schemas.filters import FilterModel
from price_insights.services.pre_aggregation_advisor import (
    analyze_query,
    find_overlapping_definitions,
)
from price_insights.services.pre_aggregation_catalog import CATALOG, CATALOG_VERSION
from price_insights.services.query_builder import QUERY_PATTERNS, predict_pre_aggregation

SCENARIOS = {
    "no filters": FilterModel(),
    "one retailer": FilterModel(retailers=["Kaufland"]),
    "retailer + category": FilterModel(retailers=["Kaufland", "Billa"], categories=["Dairy"]),
    "weekly, last 3 months": FilterModel(date_preset="last3months", granularity="week"),
}


def main() -> None:
    print(f"Catalog {CATALOG_VERSION}: {len(CATALOG)} definitions\n")
    misses = 0
    for scenario, filters in SCENARIOS.items():
        print(f"== {scenario} (expected family: {predict_pre_aggregation(filters)})")
        for name, build in QUERY_PATTERNS.items():
            analysis = analyze_query(build(filters))
            matched = ", ".join(analysis.matching_definitions[:3]) or "NONE"
            if not analysis.matching_definitions:
                misses += 1
            print(f"  {name:<16} additive={analysis.is_additive!s:<5} -> {matched}")
            for warning in analysis.warnings:
                print(f"      ! {warning}")
        print()

    overlaps = find_overlapping_definitions(CATALOG)
    print(f"{len(overlaps)} definitions are covered by another one:")
    for overlap in overlaps:
        print(f"  {overlap.covered:<30} covered by {overlap.covering}")
    print(f"\n{misses} pattern/scenario combinations fall through to the fact table")


if __name__ == "__main__":
    main()
