from datetime import date, datetime, time, timedelta, timezone, tzinfo
from enum import Enum
from typing import Dict, Optional, Any, Tuple
from zoneinfo import ZoneInfo
from pydantic import BaseModel


class EventStatus(str, Enum):
    """Google event statuses as delivered by the change feed"""
    CONFIRMED = "confirmed"
    TENTATIVE = "tentative"
    CANCELLED = "cancelled"


def parse_timestamp(value: str) -> datetime:
    """Parse an RFC 3339 timestamp, accepting a trailing Z"""
    return datetime.fromisoformat(value.replace('Z', '+00:00'))


def format_timestamp(value: datetime) -> str:
    """Format a timestamp, writing UTC as Z"""
    formatted = value.isoformat()
    if formatted.endswith('+00:00'):
        formatted = formatted[:-6] + 'Z'
    return formatted


def is_date_only(value: Optional[str]) -> bool:
    """Google all-day values are bare YYYY-MM-DD dates"""
    return bool(value) and len(value) <= 10


def to_schedule_window(start: str, end: str, tz_name: Optional[str] = None) -> Tuple[str, str]:
    """
    Turn an event's start/end into full timestamps for a job schedule.

    Date-only values become start-of-day / end-of-day in the given timezone.
    Google all-day end dates are exclusive, so the end-of-day lands on the
    day before the reported end (never before the start day).
    """
    tz_name = tz_name or "UTC"
    tz: tzinfo = timezone.utc if tz_name.upper() == "UTC" else ZoneInfo(tz_name)

    if is_date_only(start):
        start_day = date.fromisoformat(start)
        start_ts = format_timestamp(datetime.combine(start_day, time.min, tzinfo=tz))
    else:
        start_day = parse_timestamp(start).date()
        start_ts = start

    if is_date_only(end):
        last_day = max(start_day, date.fromisoformat(end) - timedelta(days=1))
        end_ts = format_timestamp(datetime.combine(last_day, time(23, 59, 59), tzinfo=tz))
    else:
        end_ts = end

    return start_ts, end_ts


class RemoteEvent(BaseModel):
    """
    One changed event from the Google change feed.

    Only what reconciliation needs is kept; nothing here is persisted beyond
    the event-to-job mapping it produces.
    """
    id: str
    status: str = EventStatus.CONFIRMED.value
    summary: Optional[str] = None
    description: Optional[str] = None
    start: Optional[str] = None  # dateTime or date, as delivered
    end: Optional[str] = None
    original_data: Optional[Dict[str, Any]] = None

    @classmethod
    def from_google(cls, event: Dict[str, Any]) -> "RemoteEvent":
        """Create a RemoteEvent from a Google Calendar events.list item"""
        start = event.get("start") or {}
        end = event.get("end") or {}

        return cls(
            id=event["id"],
            status=event.get("status") or EventStatus.CONFIRMED.value,
            summary=event.get("summary"),
            description=event.get("description"),
            start=start.get("dateTime") or start.get("date"),
            end=end.get("dateTime") or end.get("date"),
            original_data=event
        )

    @property
    def is_cancelled(self) -> bool:
        return self.status == EventStatus.CANCELLED.value

    @property
    def title(self) -> str:
        return self.summary or "Calendar job"

    def time_range(self, default_duration_minutes: int = 60) -> Optional[Tuple[str, str]]:
        """
        Effective (start, end) for the event, or None when it cannot be scheduled.

        A missing end is synthesized from a timed start plus the default
        duration; an all-day start without an end cannot be scheduled.
        """
        if not self.start:
            return None

        end = self.end
        if not end and not is_date_only(self.start):
            end = format_timestamp(
                parse_timestamp(self.start) + timedelta(minutes=default_duration_minutes)
            )

        if not end:
            return None
        return self.start, end


class JobSpec(BaseModel):
    """What the Housecall Pro client needs to create or reschedule a job"""
    customer_id: Optional[str] = None
    title: str = "Calendar job"
    description: Optional[str] = None
    start: str
    end: str
    assignee_id: Optional[str] = None

    @property
    def job_description(self) -> str:
        parts = [part for part in (self.title, self.description) if part]
        return "\n\n".join(parts) or "Calendar job"

    @classmethod
    def from_event(
        cls,
        event: RemoteEvent,
        time_range: Tuple[str, str],
        customer_id: Optional[str] = None,
        assignee_id: Optional[str] = None,
    ) -> "JobSpec":
        start, end = time_range
        return cls(
            customer_id=customer_id,
            title=event.title,
            description=event.description,
            start=start,
            end=end,
            assignee_id=assignee_id
        )
