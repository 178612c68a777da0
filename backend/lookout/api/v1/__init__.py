"""API v1 router."""

from fastapi import APIRouter

from lookout.api.v1 import alerts, correlation, engine, rules

router = APIRouter()

router.include_router(rules.router, prefix="/rules", tags=["Rules"])
router.include_router(correlation.router, prefix="/correlation", tags=["Correlation"])
router.include_router(engine.router, prefix="/engine", tags=["Correlation"])
router.include_router(alerts.router, prefix="/alerts", tags=["Alerts"])
