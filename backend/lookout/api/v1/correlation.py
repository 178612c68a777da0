"""Correlation sweep API endpoints."""

import logging

from fastapi import APIRouter, Depends

from lookout.schemas.correlation import SweepResult
from lookout.services.correlation_engine import CorrelationEngine, get_correlation_engine

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/sweep", response_model=SweepResult)
async def run_sweep(
    engine: CorrelationEngine = Depends(get_correlation_engine),
) -> SweepResult:
    """Run one correlation sweep over all enabled rules."""
    logger.info("Correlation sweep requested via API")
    return await engine.run_sweep()
