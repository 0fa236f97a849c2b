"""Read-only views of the pre-aggregation catalog."""

from typing import Dict, List

from fastapi import APIRouter, HTTPException, status

from price_insights.schemas.pre_aggregation import DefinitionOverlap, PreAggregationDefinition
from price_insights.services.pre_aggregation_advisor import (
    PRE_AGGREGATION_CHECKLIST,
    find_overlapping_definitions,
)
from price_insights.services.pre_aggregation_catalog import CATALOG, CATALOG_VERSION, get_definition

router = APIRouter(prefix="/pre-aggregations", tags=["pre-aggregations"])


@router.get("")
async def list_definitions() -> Dict[str, object]:
    return {"version": CATALOG_VERSION, "definitions": list(CATALOG)}


@router.get("/overlaps", response_model=List[DefinitionOverlap])
async def list_overlaps() -> List[DefinitionOverlap]:
    return find_overlapping_definitions(CATALOG)


@router.get("/checklist")
async def checklist() -> Dict[str, str]:
    return PRE_AGGREGATION_CHECKLIST


@router.get("/{name}", response_model=PreAggregationDefinition)
async def get_definition_endpoint(name: str) -> PreAggregationDefinition:
    try:
        return get_definition(name)
    except KeyError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Unknown pre-aggregation: {name}",
        )
