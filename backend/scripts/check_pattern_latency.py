"""Run every chart pattern against the analytics service and time it.

Queries answered from a pre-aggregation come back in well under a second;
anything slower usually scanned the raw prices table.
"""

import asyncio
import sys
import pathlib
import time

sys.path.append(str(pathlib.Path(__file__).resolve().parents[1]))

from price_insights.core.config import settings
from price_insights.core.errors import PriceInsightsError
from price_insights.services.analytics_client import AnalyticsClient
from price_insights.services.query_builder import QUERY_PATTERNS

TARGET_MS = 200
ACCEPTABLE_MS = 500
PROBLEM_MS = 1000


def _verdict(elapsed_ms: float) -> str:
    if elapsed_ms < TARGET_MS:
        return "excellent"
    if elapsed_ms < ACCEPTABLE_MS:
        return "good"
    if elapsed_ms < PROBLEM_MS:
        return "acceptable"
    return "problem - check pre-aggregation matching"


async def main():
    print(f"Analytics service: {settings.ANALYTICS_API_URL}")
    async with AnalyticsClient() as client:
        for name, build in QUERY_PATTERNS.items():
            query = build(None)
            started = time.perf_counter()
            try:
                result = await client.load(query)
            except PriceInsightsError as exc:
                print(f"  {name:<16} FAILED: {exc}")
                continue
            elapsed_ms = (time.perf_counter() - started) * 1000
            print(f"  {name:<16} {elapsed_ms:8.1f} ms  {len(result.rows):6d} rows  {_verdict(elapsed_ms)}")


if __name__ == "__main__":
    asyncio.run(main())
