"""Run journal: one row per notable step of a curation run."""

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from moodfeed.storage.json_utils import safe_json_dumps
from moodfeed.storage.models import Event


class EventsRepo:
    """Append-only access to the ``events`` table."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def log_event(
        self,
        event_name: str,
        run_id: str | None = None,
        user_identity: str | None = None,
        payload: dict[str, Any] | None = None,
    ) -> Event:
        """Append a journal entry and commit.

        Args:
            event_name: Step name, e.g. ``ingest_completed``
            run_id: Curation run the step belongs to
            user_identity: User the run was for, if known
            payload: JSON-serialisable details
        """
        entry = Event(
            event_name=event_name,
            run_id=run_id,
            user_identity=user_identity,
            payload_json=safe_json_dumps(payload or {}),
            created_at=datetime.now(timezone.utc),
        )
        self.session.add(entry)
        await self.session.commit()
        await self.session.refresh(entry)
        return entry

    async def list_events(
        self,
        event_name: str | None = None,
        run_id: str | None = None,
        limit: int = 200,
    ) -> list[Event]:
        """Newest entries first, optionally narrowed by name and run."""
        stmt = select(Event)
        if event_name:
            stmt = stmt.where(Event.event_name == event_name)
        if run_id:
            stmt = stmt.where(Event.run_id == run_id)

        result = await self.session.execute(
            stmt.order_by(Event.created_at.desc(), Event.id.desc()).limit(limit)
        )
        return list(result.scalars().all())

    async def count_events(self, event_name: str) -> int:
        result = await self.session.execute(
            select(func.count()).select_from(Event).where(Event.event_name == event_name)
        )
        return result.scalar() or 0
