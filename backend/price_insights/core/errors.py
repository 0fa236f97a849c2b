"""Exception types shared by the query planner, the client and the API."""

from __future__ import annotations

from typing import Any, NoReturn

from fastapi import HTTPException, status


class PriceInsightsError(Exception):
    """Base class for errors raised by this package."""


class QueryCompilationError(PriceInsightsError, ValueError):
    """The filter model or the measure request cannot be compiled into a query."""


class AnalyticsServiceError(PriceInsightsError):
    """The analytics service answered, but rejected or failed the query."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        payload: Any = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload


class AnalyticsTransportError(PriceInsightsError):
    """The analytics service could not be reached."""


def raise_http_error(exc: PriceInsightsError) -> NoReturn:
    """Translate planner and transport errors into user-facing HTTP errors."""

    if isinstance(exc, QueryCompilationError):
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(exc),
        ) from exc
    if isinstance(exc, AnalyticsServiceError):
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"Analytics service rejected the query: {exc}",
        ) from exc
    if isinstance(exc, AnalyticsTransportError):
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Analytics service not reachable. Please retry shortly.",
        ) from exc
    raise exc
