"""Query planning endpoints: compile, analyze and load."""

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import ValidationError

from price_insights.core.config import settings
from price_insights.core.errors import PriceInsightsError, raise_http_error
from price_insights.core.rate_limit import limiter
from price_insights.schemas.queries import (
    AnalysisOut,
    AnalyzeRequest,
    CompiledQueryOut,
    CompileRequest,
    LoadOut,
)
from price_insights.schemas.query import Query
from price_insights.services.analytics_client import AnalyticsClient, get_analytics_client
from price_insights.services.pre_aggregation_advisor import log_query_analysis
from price_insights.services.query_builder import (
    build_pattern_query,
    coerce_filters,
    compile_query,
    predict_pre_aggregation,
)

router = APIRouter(prefix="/queries", tags=["queries"])


def _compile(payload: CompileRequest) -> Query:
    if payload.pattern:
        return build_pattern_query(payload.pattern, payload.filters)
    return compile_query(
        payload.measures,
        payload.filters,
        payload.extra_dimensions,
        limit=payload.limit,
    )


@router.post("/compile", response_model=CompiledQueryOut)
async def compile_endpoint(payload: CompileRequest) -> CompiledQueryOut:
    try:
        query = _compile(payload)
        filters = coerce_filters(payload.filters)
    except PriceInsightsError as exc:
        raise_http_error(exc)
    return CompiledQueryOut(
        query=query.to_payload(),
        dep_keys=filters.dep_keys(),
        expected_pre_aggregation=predict_pre_aggregation(filters),
    )


@router.post("/analyze", response_model=AnalysisOut)
async def analyze_endpoint(payload: AnalyzeRequest) -> AnalysisOut:
    if payload.query is not None:
        try:
            query = Query.from_payload(payload.query)
        except (ValidationError, ValueError, KeyError) as exc:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail=f"Malformed query: {exc}",
            ) from exc
    else:
        try:
            query = _compile(payload)
        except PriceInsightsError as exc:
            raise_http_error(exc)
    analysis = log_query_analysis(query, label=payload.pattern)
    return AnalysisOut(query=query.to_payload(), analysis=analysis)


@router.post("/load", response_model=LoadOut)
@limiter.limit(settings.LOAD_RATE)
async def load_endpoint(
    request: Request,
    payload: CompileRequest,
    client: AnalyticsClient = Depends(get_analytics_client),
) -> LoadOut:
    try:
        query = _compile(payload)
        result = await client.load(query)
    except PriceInsightsError as exc:
        raise_http_error(exc)
    return LoadOut(query=query.to_payload(), result=result)
