"""Persistence access for alerts and their event links.

Alerts are written once by the correlation sweep. Afterwards only the status
and operator fields may change, and ``update_status`` is the only method
that changes them.
"""

import logging
from collections.abc import Iterable
from uuid import UUID

from fastapi import Depends
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from lookout.database import get_db
from lookout.exceptions import NotFoundError, StoreUnavailableError
from lookout.models.alert import Alert, AlertEvent, AlertStatus

logger = logging.getLogger(__name__)


class AlertStore:
    """Creates alerts, links them to events and applies status changes."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def insert(self, alert: Alert) -> Alert:
        """Persist a new alert and return it with its generated id."""
        self.session.add(alert)
        await self.session.flush()
        return alert

    async def insert_links(self, alert_id: UUID, event_ids: Iterable[str]) -> int:
        """Link an alert to the events that produced it.

        Links are written inside a savepoint, so a failure leaves the alert
        itself in place.

        Returns:
            Number of links written
        """
        links = [
            AlertEvent(alert_id=alert_id, event_id=event_id)
            for event_id in dict.fromkeys(event_ids)
        ]
        if not links:
            return 0
        async with self.session.begin_nested():
            self.session.add_all(links)
        return len(links)

    async def get(self, alert_id: UUID) -> Alert | None:
        try:
            return await self.session.get(Alert, alert_id)
        except (OperationalError, InterfaceError, OSError) as e:
            logger.error("Alert lookup failed: %s", str(e))
            raise StoreUnavailableError("alerts") from e

    async def update_status(
        self,
        alert_id: UUID,
        status: AlertStatus | None = None,
        *,
        assigned_to: str | None = None,
        notes: str | None = None,
        resolution: str | None = None,
    ) -> Alert:
        """Change the status and operator fields of an alert.

        Arguments left as None keep their current value. Core alert fields
        cannot be changed.

        Raises:
            NotFoundError: If the alert does not exist
        """
        alert = await self.get(alert_id)
        if alert is None:
            raise NotFoundError("Alert", str(alert_id))

        if status is not None:
            alert.status = AlertStatus(status)
        if assigned_to is not None:
            alert.assigned_to = assigned_to
        if notes is not None:
            alert.notes = notes
        if resolution is not None:
            alert.resolution = resolution

        await self.session.flush()
        logger.info("Alert %s updated: status=%s", alert_id, alert.status.value)
        return alert


async def get_alert_store(db: AsyncSession = Depends(get_db)) -> AlertStore:
    """Dependency providing an alert store bound to the request session."""
    return AlertStore(db)
