"""Alert API endpoints."""

from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict

from lookout.exceptions import NotFoundError
from lookout.models.alert import AlertStatus
from lookout.schemas.correlation import AlertResponse
from lookout.services.alert_store import AlertStore, get_alert_store

router = APIRouter()


class AlertUpdate(BaseModel):
    """Update alert request. Only status and operator fields are accepted."""

    model_config = ConfigDict(extra="forbid")

    status: AlertStatus | None = None
    assigned_to: str | None = None
    notes: str | None = None
    resolution: str | None = None


@router.get("/{alert_id}", response_model=AlertResponse)
async def get_alert(
    alert_id: UUID,
    store: AlertStore = Depends(get_alert_store),
) -> AlertResponse:
    """Get alert by ID."""
    alert = await store.get(alert_id)
    if alert is None:
        raise NotFoundError("Alert", str(alert_id))
    return AlertResponse.model_validate(alert)


@router.patch("/{alert_id}", response_model=AlertResponse)
async def update_alert(
    alert_id: UUID,
    updates: AlertUpdate,
    store: AlertStore = Depends(get_alert_store),
) -> AlertResponse:
    """Change the status or operator fields of an alert."""
    alert = await store.update_status(
        alert_id,
        updates.status,
        assigned_to=updates.assigned_to,
        notes=updates.notes,
        resolution=updates.resolution,
    )
    return AlertResponse.model_validate(alert)
