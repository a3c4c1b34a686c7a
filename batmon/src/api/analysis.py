"""
GET /v1/analysis endpoint for discharge analytics.

Analyzes a trailing window of history against the most recent snapshot and
adds the 1h/24h/7d windowed discharge rates with their data-sufficiency
verdicts.

CHANGELOG:
- 2026-10-19: Initial creation

TODO:
- None
"""

from typing import Annotated

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel

from batmon.src.api.deps import MonitorDep
from batmon.src.models import AnalysisResult

router = APIRouter(prefix="/v1", tags=["analysis"])


class WindowedRateOut(BaseModel):
    """Average discharge rate over one trailing window."""

    rate: float
    enough_data: bool


class AnalysisResponse(BaseModel):
    """Response model for the analysis endpoint.

    Attributes:
        hours: Trailing window the analysis covers.
        analysis: The computed AnalysisResult.
        recommendation_message: Human-readable recommendation text.
        windowed_rates: Rates keyed by window name (``1h``, ``24h``, ``7d``).
    """

    hours: float
    analysis: AnalysisResult
    recommendation_message: str
    windowed_rates: dict[str, WindowedRateOut]


@router.get("/analysis", response_model=AnalysisResponse)
async def get_analysis(
    monitor: MonitorDep,
    hours: Annotated[
        float,
        Query(gt=0, description="Trailing window in hours."),
    ] = 24.0,
) -> AnalysisResponse:
    """Return analytics over the last ``hours`` of history.

    Raises:
        HTTPException: 404 if no snapshot has been observed yet.
    """
    result = monitor.analyze_recent(hours)
    if result is None:
        raise HTTPException(
            status_code=404,
            detail="No battery snapshot observed yet.",
        )

    return AnalysisResponse(
        hours=hours,
        analysis=result,
        recommendation_message=result.recommendation.message,
        windowed_rates={
            name: WindowedRateOut(rate=rate.rate, enough_data=rate.enough_data)
            for name, rate in monitor.windowed_rates().items()
        },
    )
