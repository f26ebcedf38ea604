"""
Tool: Calendar Provider Base
Purpose: Abstract base class for external calendar providers

Defines the interface the syncers use. Providers raise the exceptions from
calsync.errors: AuthExpiredError on a rejected credential, RateLimitError and
RemoteUnavailableError once their own retries are exhausted.

Usage:
    from calsync.providers.google_calendar import GoogleCalendarProvider

    async with GoogleCalendarProvider(access_token) as provider:
        events = await provider.list_events(time_min, time_max)
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone
from typing import Any


def _parse_event_time(data: dict[str, Any]) -> tuple[datetime, bool]:
    """Parse a {dateTime} or {date} object. Date-only values become UTC midnight."""
    if data.get("dateTime"):
        return datetime.fromisoformat(data["dateTime"].replace("Z", "+00:00")), False
    day = date.fromisoformat(data["date"])
    return datetime.combine(day, time.min, tzinfo=timezone.utc), True


@dataclass
class RemoteEvent:
    """An event as listed by the provider, normalized."""

    event_id: str
    title: str
    start_time: datetime
    end_time: datetime
    all_day: bool = False
    status: str = "confirmed"
    description: str = ""
    location: str = ""
    meet_link: str | None = None
    raw_data: dict[str, Any] = field(default_factory=dict)

    @property
    def cancelled(self) -> bool:
        return self.status == "cancelled"

    @classmethod
    def from_google(cls, data: dict[str, Any]) -> "RemoteEvent":
        """Parse a Google Calendar v3 event resource."""
        start_time, all_day = _parse_event_time(data.get("start") or {})
        end_time, _ = _parse_event_time(data.get("end") or data.get("start") or {})

        meet_link = data.get("hangoutLink")
        if not meet_link:
            for entry in (data.get("conferenceData") or {}).get("entryPoints", []):
                if entry.get("entryPointType") == "video":
                    meet_link = entry.get("uri")
                    break

        return cls(
            event_id=data.get("id", ""),
            title=data.get("summary") or "",
            start_time=start_time,
            end_time=end_time,
            all_day=all_day,
            status=data.get("status", "confirmed"),
            description=data.get("description") or "",
            location=data.get("location") or "",
            meet_link=meet_link,
            raw_data=data,
        )


class CalendarProvider(ABC):
    """
    Abstract base class for external calendar providers.

    Subclasses own their HTTP client; use them as async context managers so
    the client is closed when a sync pass ends.
    """

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the provider name (e.g., 'google')."""
        pass

    @abstractmethod
    async def list_events(
        self,
        time_min: datetime,
        time_max: datetime,
        include_cancelled: bool = False,
    ) -> list[RemoteEvent]:
        """
        List events in [time_min, time_max).

        Args:
            time_min: Window start
            time_max: Window end
            include_cancelled: Keep events whose status is cancelled

        Returns:
            Events across all result pages
        """
        pass

    @abstractmethod
    async def create_event(self, body: dict[str, Any], conference: bool = False) -> dict[str, Any]:
        """
        Create an event.

        Args:
            body: Provider event resource
            conference: The body carries a conference creation request

        Returns:
            The created event resource
        """
        pass

    @abstractmethod
    async def update_event(self, event_id: str, body: dict[str, Any]) -> dict[str, Any]:
        pass

    @abstractmethod
    async def delete_event(self, event_id: str) -> None:
        pass

    async def close(self) -> None:
        """Release network resources."""

    async def __aenter__(self) -> "CalendarProvider":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()


__all__ = ["CalendarProvider", "RemoteEvent"]
