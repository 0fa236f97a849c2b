"""Pydantic models for the query planning endpoints."""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from price_insights.schemas.pre_aggregation import QueryAnalysis
from price_insights.schemas.query import ResultSet


class CompileRequest(BaseModel):
    """Measures, breakdown and filters to compile into a query."""

    measures: List[str] = Field(default_factory=list, description="Measures, bare or cube-qualified")
    filters: Dict[str, Any] = Field(default_factory=dict, description="Filter Model fields")
    extra_dimensions: List[str] = Field(default_factory=list, description="Breakdown dimensions")
    limit: Optional[int] = Field(default=None, description="Row limit")
    pattern: Optional[str] = Field(default=None, description="Named chart pattern; overrides measures")


class AnalyzeRequest(CompileRequest):
    """Either a compile request or a raw wire-format query."""

    query: Optional[Dict[str, Any]] = Field(default=None, description="Wire-format query to analyze as is")


class CompiledQueryOut(BaseModel):
    query: Dict[str, Any] = Field(description="Wire-format query")
    dep_keys: List[str] = Field(default_factory=list, description="Cache dependency keys")
    expected_pre_aggregation: str = Field(description="Catalog family the query should hit")


class AnalysisOut(BaseModel):
    query: Dict[str, Any]
    analysis: QueryAnalysis


class LoadOut(BaseModel):
    query: Dict[str, Any]
    result: ResultSet


class FilterValuesOut(BaseModel):
    field: str
    dimension: str
    values: List[str] = Field(default_factory=list)
