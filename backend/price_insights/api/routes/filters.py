"""Filter dropdown values."""

from fastapi import APIRouter, Depends

from price_insights.core.cache import get_cached_value, set_cached_value
from price_insights.core.config import settings
from price_insights.core.errors import PriceInsightsError, raise_http_error
from price_insights.schemas.queries import FilterValuesOut
from price_insights.services.analytics_client import AnalyticsClient, get_analytics_client
from price_insights.services.query_builder import build_filter_value_query

router = APIRouter(prefix="/filters", tags=["filters"])


@router.get("/{field}/values", response_model=FilterValuesOut)
async def filter_values(
    field: str,
    client: AnalyticsClient = Depends(get_analytics_client),
) -> FilterValuesOut:
    cache_key = f"filter_values:{field}"
    cached = get_cached_value(cache_key)
    if cached is not None:
        return FilterValuesOut(**cached)

    try:
        query = build_filter_value_query(field)
        result = await client.load(query)
    except PriceInsightsError as exc:
        raise_http_error(exc)

    dimension = query.dimensions[0]
    out = FilterValuesOut(field=field, dimension=dimension, values=result.column_values(dimension))
    set_cached_value(cache_key, out.model_dump(), settings.FILTER_VALUES_TTL_SEC)
    return out
