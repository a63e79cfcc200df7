"""Repository for cached calendar meetings."""

from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from moodfeed.storage.models import CalendarMeeting


@dataclass
class MeetingRecord:
    """One meeting to cache."""

    id: str
    subject: str
    start_time: datetime
    end_time: datetime
    body_preview: str | None = None

    @property
    def duration_minutes(self) -> int:
        delta = self.end_time - self.start_time
        return max(0, round(delta.total_seconds() / 60))


class MeetingsRepo:
    """Repository for a per-user cache of calendar meetings."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def cache_meetings(self, user_identity: str, meetings: list[MeetingRecord]) -> int:
        """Upsert meetings for a user.

        Args:
            user_identity: Owner of the calendar
            meetings: Meetings to cache

        Returns:
            Number of meetings written
        """
        now = datetime.now(timezone.utc)

        for meeting in meetings:
            insert_stmt = sqlite_insert(CalendarMeeting).values(
                id=meeting.id,
                user_identity=user_identity,
                subject=meeting.subject,
                start_time=meeting.start_time,
                end_time=meeting.end_time,
                duration_minutes=meeting.duration_minutes,
                body_preview=meeting.body_preview,
                cached_at=now,
            )
            upsert_stmt = insert_stmt.on_conflict_do_update(
                index_elements=["id"],
                set_={
                    "subject": meeting.subject,
                    "start_time": meeting.start_time,
                    "end_time": meeting.end_time,
                    "duration_minutes": meeting.duration_minutes,
                    "body_preview": meeting.body_preview,
                    "cached_at": now,
                },
            )
            await self.session.execute(upsert_stmt)

        await self.session.commit()
        return len(meetings)

    async def list_meetings(
        self,
        user_identity: str,
        window_start: datetime | None = None,
        window_end: datetime | None = None,
    ) -> list[CalendarMeeting]:
        """List a user's cached meetings ordered by start time.

        Args:
            user_identity: Owner of the calendar
            window_start: Only meetings ending after this instant
            window_end: Only meetings starting before this instant
        """
        stmt = select(CalendarMeeting).where(CalendarMeeting.user_identity == user_identity)

        if window_start is not None:
            stmt = stmt.where(CalendarMeeting.end_time > window_start)

        if window_end is not None:
            stmt = stmt.where(CalendarMeeting.start_time < window_end)

        stmt = stmt.order_by(CalendarMeeting.start_time.asc())
        result = await self.session.execute(stmt)
        return list(result.scalars().all())
