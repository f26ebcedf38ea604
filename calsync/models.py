"""
Tool: Schedule Models
Purpose: Data structures for schedules, recurrence rules and resource bindings

Usage:
    from calsync.models import Schedule, Recurrence, Frequency, ResourceBinding

This module provides the foundation data structures shared by the recurrence
expander, the conflict detector, the store and both syncers.

Weekday numbering for custom recurrence follows the stored data:
0 = Sunday, 1 = Monday ... 6 = Saturday.
"""

import json
import logging
import uuid
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Any

from calsync.errors import IntegrityWarning, ValidationError


logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Aware UTC copy of value; naive datetimes are taken to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def generate_id() -> str:
    """Generate a new schedule ID."""
    return str(uuid.uuid4())


def day_index(value: datetime | date) -> int:
    """Weekday as 0 = Sunday ... 6 = Saturday."""
    return (value.weekday() + 1) % 7


class Frequency(str, Enum):
    """Recurrence frequencies."""

    NONE = "none"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"
    WEEKDAYS = "weekdays"  # Monday to Friday
    CUSTOM = "custom"  # explicit weekday set

    @classmethod
    def parse(cls, value: Any) -> "Frequency":
        """Parse a stored frequency, accepting the legacy 'weekday' spelling."""
        if isinstance(value, cls):
            return value
        raw = str(value or "none").strip().lower()
        if raw == "weekday":
            raw = "weekdays"
        try:
            return cls(raw)
        except ValueError:
            logger.warning("Unrecognized recurrence frequency %r, treating as none", value)
            return cls.NONE


class EndType(str, Enum):
    """How a recurrence series ends."""

    NEVER = "never"
    COUNT = "count"
    DATE = "date"


class Origin(str, Enum):
    """Where a schedule record was authored."""

    LOCAL = "local"
    EXTERNAL = "external"


class ResourceType(str, Enum):
    """Bookable resource kinds. Sample bookings never conflict."""

    ROOM = "room"
    VEHICLE = "vehicle"
    SAMPLE = "sample"


class Visibility(str, Enum):
    PUBLIC = "public"
    PRIVATE = "private"


class MeetingMode(str, Enum):
    IN_PERSON = "in_person"
    ONLINE = "online"


class ChangeType(str, Enum):
    """Change kinds handed to the notification dispatcher."""

    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"
    REMINDER = "reminder"


def _parse_datetime(value: Any) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def _parse_end_date(value: Any) -> datetime | date | None:
    if value is None or isinstance(value, (datetime, date)):
        return value
    text = str(value)
    if len(text) == 10:
        return date.fromisoformat(text)
    return _parse_datetime(text)


@dataclass(frozen=True)
class Recurrence:
    """
    Compact recurrence rule carried by a master schedule.

    end_date may be a date (inclusive of that whole day) or a datetime.
    """

    frequency: Frequency = Frequency.NONE
    interval: int = 1
    end_type: EndType = EndType.NEVER
    count: int | None = None
    end_date: datetime | date | None = None
    weekdays: tuple[int, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "frequency", Frequency.parse(self.frequency))
        object.__setattr__(self, "end_type", EndType(self.end_type))
        object.__setattr__(self, "weekdays", tuple(sorted({int(d) % 7 for d in self.weekdays})))

    @property
    def is_recurring(self) -> bool:
        return self.frequency != Frequency.NONE

    def validate(self) -> None:
        """Raise if the rule cannot produce a well-defined series."""
        if self.interval < 1:
            raise ValidationError(f"Recurrence interval must be >= 1, got {self.interval}", ["interval"])
        if self.end_type == EndType.COUNT and (self.count is None or self.count < 1):
            raise ValidationError("Recurrence ending by count needs a positive count", ["count"])
        if self.end_type == EndType.DATE and self.end_date is None:
            raise ValidationError("Recurrence ending by date needs an end date", ["end_date"])
        if self.frequency == Frequency.CUSTOM and not self.weekdays:
            raise IntegrityWarning("Custom recurrence requires at least one weekday")

    def to_dict(self) -> dict[str, Any]:
        return {
            "frequency": self.frequency.value,
            "interval": self.interval,
            "end_type": self.end_type.value,
            "count": self.count,
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "weekdays": list(self.weekdays),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "Recurrence | None":
        """Create from dict. Returns None for missing or 'none' rules."""
        if not data:
            return None
        rule = cls(
            frequency=Frequency.parse(data.get("frequency")),
            interval=int(data.get("interval") or 1),
            end_type=EndType(data.get("end_type") or "never"),
            count=data.get("count"),
            end_date=_parse_end_date(data.get("end_date")),
            weekdays=tuple(data.get("weekdays") or ()),
        )
        return rule if rule.is_recurring else None


@dataclass(frozen=True)
class ResourceBinding:
    """
    A booked resource. Identity is (resource_id, resource_type);
    the display name is carried along for location strings only.
    """

    resource_id: str
    resource_type: ResourceType
    name: str = field(default="", compare=False)

    def __post_init__(self):
        object.__setattr__(self, "resource_type", ResourceType(self.resource_type))

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.resource_id, "type": self.resource_type.value, "name": self.name}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ResourceBinding":
        return cls(
            resource_id=str(data.get("id") or data.get("resource_id")),
            resource_type=ResourceType(data.get("type") or data.get("resource_type")),
            name=data.get("name") or "",
        )


@dataclass
class Occurrence:
    """One concrete window produced by the recurrence expander."""

    start: datetime
    end: datetime


@dataclass
class Schedule:
    """
    A schedule record.

    A record with a recurring rule is a master; a record with original_id
    is a materialized occurrence of that master.
    """

    title: str
    start_time: datetime
    end_time: datetime
    type: str = "meeting"
    id: str = field(default_factory=generate_id)
    details: str = ""

    # Timing
    all_day: bool = False
    multi_day: bool = False

    # Recurrence
    recurrence: Recurrence | None = None
    original_id: str | None = None

    # Participants and bookings
    participants: list[str] = field(default_factory=list)
    resources: list[ResourceBinding] = field(default_factory=list)

    # Sync
    origin: Origin = Origin.LOCAL
    external_id: str | None = None

    # Meeting
    meeting_mode: MeetingMode = MeetingMode.IN_PERSON
    meet_link: str | None = None
    reminders: list[int] = field(default_factory=list)  # minutes before start

    # Audit
    created_by: str | None = None
    created_at: datetime = field(default_factory=utcnow)
    updated_by: str | None = None
    updated_at: datetime | None = None
    visibility: Visibility = Visibility.PUBLIC

    def __post_init__(self):
        self.origin = Origin(self.origin)
        self.meeting_mode = MeetingMode(self.meeting_mode)
        self.visibility = Visibility(self.visibility)

    @property
    def is_master(self) -> bool:
        return self.recurrence is not None and self.recurrence.is_recurring

    @property
    def is_occurrence(self) -> bool:
        return self.original_id is not None

    @property
    def series_id(self) -> str | None:
        """ID of the series master, or None for standalone records."""
        if self.original_id:
            return self.original_id
        return self.id if self.is_master else None

    @property
    def duration(self) -> timedelta:
        return self.end_time - self.start_time

    def involves(self, user_id: str) -> bool:
        """True when the user participates in or created the schedule."""
        return user_id in self.participants or self.created_by == user_id

    def has_resource_type(self, resource_type: ResourceType) -> bool:
        return any(r.resource_type == resource_type for r in self.resources)

    def validate(self) -> None:
        """
        Check required fields and model invariants.

        Raises:
            ValidationError: missing fields or broken master/occurrence invariant
            IntegrityWarning: custom recurrence without weekdays
        """
        missing = [
            name for name in ("type", "title", "start_time", "end_time")
            if not getattr(self, name)
        ]
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}", missing)

        if self.end_time < self.start_time or (self.end_time == self.start_time and not self.all_day):
            raise ValidationError("end_time must be after start_time", ["end_time"])

        if self.is_master and self.original_id:
            raise ValidationError("A recurring master cannot reference another master", ["original_id"])

        if self.original_id and self.recurrence is not None:
            raise ValidationError("A materialized occurrence cannot carry a recurrence rule", ["recurrence"])

        if self.recurrence is not None:
            self.recurrence.validate()

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable dict."""
        d = asdict(self)
        d["start_time"] = self.start_time.isoformat()
        d["end_time"] = self.end_time.isoformat()
        d["created_at"] = self.created_at.isoformat()
        d["updated_at"] = self.updated_at.isoformat() if self.updated_at else None
        d["recurrence"] = self.recurrence.to_dict() if self.recurrence else None
        d["resources"] = [r.to_dict() for r in self.resources]
        d["origin"] = self.origin.value
        d["meeting_mode"] = self.meeting_mode.value
        d["visibility"] = self.visibility.value
        return d

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Schedule":
        """Create from dict."""
        data = data.copy()
        for time_field in ["start_time", "end_time", "created_at", "updated_at"]:
            data[time_field] = _parse_datetime(data.get(time_field))
        if data.get("created_at") is None:
            data.pop("created_at", None)
        if isinstance(data.get("recurrence"), dict) or data.get("recurrence") is None:
            data["recurrence"] = Recurrence.from_dict(data.get("recurrence"))
        data["resources"] = [
            r if isinstance(r, ResourceBinding) else ResourceBinding.from_dict(r)
            for r in data.get("resources") or []
        ]
        data["participants"] = list(data.get("participants") or [])
        data["reminders"] = list(data.get("reminders") or [])
        return cls(**data)

    def to_json(self) -> str:
        """Serialize to JSON string."""
        return json.dumps(self.to_dict(), default=str)


@dataclass
class SyncResult:
    """Counts and errors from one sync pass in one direction."""

    direction: str = ""
    added: int = 0
    skipped: int = 0
    deleted: int = 0
    failed: int = 0
    updated: int = 0
    collapsed: int = 0  # duplicate imports removed
    errors: list[str] = field(default_factory=list)
    limitations: list[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.added + self.updated + self.deleted + self.collapsed

    def record_failure(self, message: str) -> None:
        self.failed += 1
        self.errors.append(message)

    def summary(self) -> str:
        parts = []
        if self.added:
            parts.append(f"{self.added} added")
        if self.updated:
            parts.append(f"{self.updated} updated")
        if self.deleted:
            parts.append(f"{self.deleted} deleted")
        if self.collapsed:
            parts.append(f"{self.collapsed} collapsed")
        if self.skipped:
            parts.append(f"{self.skipped} skipped")
        if self.failed:
            parts.append(f"{self.failed} failed")
        return ", ".join(parts) if parts else "No changes"

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["summary"] = self.summary()
        return d


VALID_RESOURCE_TYPES = {t.value for t in ResourceType}
VALID_FREQUENCIES = {f.value for f in Frequency}
