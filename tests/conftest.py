from datetime import date, datetime, timedelta

import pytest

import artistwatch.db as db_module
from artistwatch.errors import SourceError, TransportError
from artistwatch.models import Artist, DateWindow, Event, EventArtist
from artistwatch.notifier import Transport
from artistwatch.sources.base import BaseSource

TODAY = date(2026, 10, 1)
WINDOW = DateWindow(start=TODAY, end=TODAY + timedelta(days=30))

ARTIST_A = Artist(id="100", name="Rival Consoles")
ARTIST_B = Artist(id="200", name="Four Tet")


class FakeSource(BaseSource):
    """Serves canned pages per artist and records every fetch_page call."""

    source_key = "fake"

    def __init__(self, pages=None, errors=None):
        super().__init__({})
        self.pages = pages or {}      # artist id -> list of pages (lists of Events)
        self.errors = errors or {}    # artist id -> page number that raises
        self.calls: list[tuple[str, int]] = []

    def fetch_page(self, artist_id, window, page):
        self.calls.append((artist_id, page))
        if self.errors.get(artist_id) == page:
            raise SourceError(f"boom on artist {artist_id} page {page}")
        pages = self.pages.get(artist_id, [])
        if page > len(pages):
            return []
        return list(pages[page - 1])


class FakeTransport(Transport):
    def __init__(self, fail=False, max_message_length=None):
        self.fail = fail
        self.max_message_length = max_message_length
        self.sent: list[tuple[str, str, int]] = []

    def send(self, title, body, priority=0):
        if self.fail:
            raise TransportError("service unavailable")
        self.sent.append((title, body, priority))


@pytest.fixture
def conn(tmp_path):
    c = db_module.connect(tmp_path / "events.db")
    yield c
    c.close()


@pytest.fixture
def make_event():
    def _make(event_id, day_offset=2, title=None, artists=(ARTIST_A,), **kwargs):
        day = TODAY + timedelta(days=day_offset)
        return Event(
            id=event_id,
            title=title or f"Event {event_id}",
            date=day,
            start_time=kwargs.pop("start_time", datetime(day.year, day.month, day.day, 22, 0)),
            content_url=kwargs.pop("content_url", f"/events/{event_id}"),
            venue_name=kwargs.pop("venue_name", "Fabric"),
            venue_id=kwargs.pop("venue_id", "5031"),
            artists=[EventArtist(artist_id=a.id, artist_name=a.name) for a in artists],
            **kwargs,
        )
    return _make
