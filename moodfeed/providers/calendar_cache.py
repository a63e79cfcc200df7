"""Calendar collaborator that reads today's meetings from the local cache."""

from datetime import datetime, timedelta, timezone
from typing import Callable

from moodfeed.core.contracts import CalendarEvent
from moodfeed.storage import CorpusStore


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class CachedCalendarSource:
    """Serves a user's cached meetings for the current UTC day."""

    def __init__(self, store: CorpusStore, now_fn: Callable[[], datetime] = _utc_now) -> None:
        self.store = store
        self._now = now_fn

    async def events_for(self, user_identity: str) -> list[CalendarEvent]:
        now = self._now()
        day_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
        day_end = day_start + timedelta(days=1)

        meetings = await self.store.list_meetings(user_identity, day_start, day_end)
        return [
            CalendarEvent(
                subject=meeting.subject,
                start=meeting.start_time,
                end=meeting.end_time,
                duration_minutes=meeting.duration_minutes,
            )
            for meeting in meetings
        ]
