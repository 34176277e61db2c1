from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Optional


@dataclass(frozen=True)
class Artist:
    id: str            # External artist ID on the listing source
    name: str


@dataclass(frozen=True)
class Location:
    name: str          # Region label shown in notifications, e.g. "London"
    area_id: Optional[int] = None


@dataclass(frozen=True)
class DateWindow:
    """Inclusive range of event dates considered by a run."""

    start: date
    end: date

    @classmethod
    def around(cls, today: date, past_days: int, ahead_days: int) -> "DateWindow":
        return cls(start=today - timedelta(days=past_days), end=today + timedelta(days=ahead_days))

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end

    def listing_bounds(self) -> tuple[str, str]:
        """Return the window as the (gte, lte) timestamps expected by listing queries."""
        return (
            f"{self.start.isoformat()}T00:00:00.000Z",
            f"{self.end.isoformat()}T23:59:59.999Z",
        )


@dataclass
class EventArtist:
    artist_id: str
    artist_name: str


@dataclass
class Event:
    id: str            # External source ID, primary key in the ledger
    title: str
    date: date
    content_url: str = ""
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    venue_name: Optional[str] = None
    venue_id: Optional[str] = None
    attending: int = 0
    is_ticketed: Optional[bool] = None
    queue_it_enabled: Optional[bool] = None
    new_event_form: Optional[bool] = None
    artists: list[EventArtist] = field(default_factory=list)
    # Populated by DB layer, ignored when comparing events
    created_at: Optional[datetime] = field(default=None, repr=False, compare=False)
    updated_at: Optional[datetime] = field(default=None, repr=False, compare=False)

    @property
    def artist_names(self) -> str:
        return ", ".join(a.artist_name for a in self.artists)


@dataclass
class Notification:
    id: int
    event_id: str
    sent_at: datetime
    message: Optional[str] = None


class RunMode(Enum):
    NORMAL = "normal"  # only events never notified before
    FORCE = "force"    # every event in the window, regardless of history


@dataclass
class RunResult:
    mode: RunMode
    window: DateWindow
    artists: list[Artist] = field(default_factory=list)
    fetched: dict[str, int] = field(default_factory=dict)   # artist id -> records upserted
    failed: dict[str, str] = field(default_factory=dict)    # artist id -> error message
    events: list[Event] = field(default_factory=list)       # events selected for notification
    notified: bool = False
    notifications_disabled: bool = False
    cancelled: bool = False

    @property
    def total_fetched(self) -> int:
        return sum(self.fetched.values())
