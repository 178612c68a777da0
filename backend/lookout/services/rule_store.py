"""Persistence access for detection rules."""

import logging
from datetime import datetime
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from lookout.exceptions import StoreUnavailableError
from lookout.models.rule import DetectionRule

logger = logging.getLogger(__name__)


def parse_rule_id(rule_id: str | UUID) -> UUID | None:
    """Parse a rule identifier, returning None when it is not a UUID."""
    if isinstance(rule_id, UUID):
        return rule_id
    try:
        return UUID(str(rule_id))
    except ValueError:
        return None


class RuleStore:
    """Reads rules and records trigger statistics."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, rule_id: str | UUID) -> DetectionRule | None:
        """Load a rule by id, or None if it does not exist."""
        key = parse_rule_id(rule_id)
        if key is None:
            return None
        try:
            return await self.session.get(DetectionRule, key)
        except (OperationalError, InterfaceError, OSError) as e:
            logger.error("Rule lookup failed: %s", str(e))
            raise StoreUnavailableError("rules") from e

    async def record_trigger(self, rule_id: str | UUID, when: datetime) -> None:
        """Set ``last_triggered`` and increment ``trigger_count`` atomically.

        The increment happens in the UPDATE statement itself so concurrent
        sweeps never lose a count.
        """
        await self.session.execute(
            update(DetectionRule)
            .where(DetectionRule.id == parse_rule_id(rule_id))
            .values(
                trigger_count=DetectionRule.trigger_count + 1,
                last_triggered=when,
            )
            .execution_options(synchronize_session=False)
        )

    async def list(self, enabled: bool | None = None) -> list[DetectionRule]:
        """List rules, optionally filtered by their enabled flag.

        Args:
            enabled: Only return rules with this flag; all rules when None

        Returns:
            Rules ordered by creation time

        Raises:
            StoreUnavailableError: If the database cannot be reached
        """
        query = select(DetectionRule).order_by(DetectionRule.created_at)
        if enabled is not None:
            query = query.where(DetectionRule.enabled == enabled)

        try:
            result = await self.session.execute(query)
        except (OperationalError, InterfaceError, OSError) as e:
            logger.error("Rule listing failed: %s", str(e))
            raise StoreUnavailableError("rules") from e
        return list(result.scalars().all())
