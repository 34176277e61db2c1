import logging
import sqlite3
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Iterable, Optional

from artistwatch.models import DateWindow, Event, EventArtist, Notification

logger = logging.getLogger(__name__)

_RUN_LEASE_KEY = "run_lease"
# Stay well below SQLITE_MAX_VARIABLE_NUMBER on older builds
_IN_CHUNK = 500


def connect(db_path: Path) -> sqlite3.Connection:
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    _create_schema(conn)
    return conn


def _create_schema(conn: sqlite3.Connection) -> None:
    conn.executescript("""
        CREATE TABLE IF NOT EXISTS events (
            id               TEXT PRIMARY KEY,
            title            TEXT NOT NULL,
            date             TEXT NOT NULL,
            start_time       TEXT,
            end_time         TEXT,
            venue_name       TEXT,
            venue_id         TEXT,
            content_url      TEXT NOT NULL DEFAULT '',
            attending        INTEGER NOT NULL DEFAULT 0,
            is_ticketed      INTEGER,
            queue_it_enabled INTEGER,
            new_event_form   INTEGER,
            created_at       TEXT NOT NULL,
            updated_at       TEXT NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_events_date ON events(date);

        CREATE TABLE IF NOT EXISTS event_artists (
            event_id    TEXT NOT NULL REFERENCES events(id),
            artist_id   TEXT NOT NULL,
            artist_name TEXT NOT NULL,
            PRIMARY KEY (event_id, artist_id)
        );

        CREATE INDEX IF NOT EXISTS idx_event_artists_artist ON event_artists(artist_id);

        CREATE TABLE IF NOT EXISTS notifications (
            id       INTEGER PRIMARY KEY AUTOINCREMENT,
            event_id TEXT NOT NULL REFERENCES events(id),
            sent_at  TEXT NOT NULL,
            message  TEXT
        );

        CREATE INDEX IF NOT EXISTS idx_notifications_event ON notifications(event_id);

        CREATE TABLE IF NOT EXISTS settings (
            key        TEXT PRIMARY KEY,
            value      TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );
    """)
    conn.commit()


def _now() -> datetime:
    return datetime.now(timezone.utc)


# --- Events ---

def upsert_event(conn: sqlite3.Connection, event: Event) -> None:
    """Insert or fully replace an event and its artist associations in one transaction."""
    now = _now().isoformat()
    with conn:
        conn.execute(
            """
            INSERT INTO events (
                id, title, date, start_time, end_time, venue_name, venue_id, content_url,
                attending, is_ticketed, queue_it_enabled, new_event_form, created_at, updated_at
            )
            VALUES (
                :id, :title, :date, :start_time, :end_time, :venue_name, :venue_id, :content_url,
                :attending, :is_ticketed, :queue_it_enabled, :new_event_form, :now, :now
            )
            ON CONFLICT(id) DO UPDATE SET
                title            = excluded.title,
                date             = excluded.date,
                start_time       = excluded.start_time,
                end_time         = excluded.end_time,
                venue_name       = excluded.venue_name,
                venue_id         = excluded.venue_id,
                content_url      = excluded.content_url,
                attending        = excluded.attending,
                is_ticketed      = excluded.is_ticketed,
                queue_it_enabled = excluded.queue_it_enabled,
                new_event_form   = excluded.new_event_form,
                updated_at       = excluded.updated_at
            """,
            {
                "id":               event.id,
                "title":            event.title,
                "date":             event.date.isoformat(),
                "start_time":       event.start_time.isoformat() if event.start_time else None,
                "end_time":         event.end_time.isoformat() if event.end_time else None,
                "venue_name":       event.venue_name,
                "venue_id":         event.venue_id,
                "content_url":      event.content_url or "",
                "attending":        max(int(event.attending or 0), 0),
                "is_ticketed":      _from_bool(event.is_ticketed),
                "queue_it_enabled": _from_bool(event.queue_it_enabled),
                "new_event_form":   _from_bool(event.new_event_form),
                "now":              now,
            },
        )
        # The artist set always mirrors the latest fetch
        conn.execute("DELETE FROM event_artists WHERE event_id = ?", (event.id,))
        conn.executemany(
            "INSERT OR IGNORE INTO event_artists (event_id, artist_id, artist_name) VALUES (?, ?, ?)",
            [(event.id, a.artist_id, a.artist_name) for a in event.artists],
        )


def get_event(conn: sqlite3.Connection, event_id: str) -> Optional[Event]:
    events = _select_events(conn, "WHERE id = ?", (event_id,))
    return events[0] if events else None


def get_events_in_window(conn: sqlite3.Connection, window: DateWindow) -> list[Event]:
    """All events dated within the window, oldest first, with their artists."""
    return _select_events(
        conn,
        "WHERE date BETWEEN ? AND ?",
        (window.start.isoformat(), window.end.isoformat()),
    )


def get_unnotified_for_artists(
    conn: sqlite3.Connection,
    artist_ids: Iterable[str],
    window: DateWindow,
) -> list[Event]:
    """
    Events linked to any of artist_ids, dated within the window, that have no
    notification row yet. This is the query that decides what gets announced.
    """
    artist_ids = list(dict.fromkeys(artist_ids))
    if not artist_ids:
        return []
    placeholders = ",".join("?" * len(artist_ids))
    return _select_events(
        conn,
        f"""
        WHERE date BETWEEN ? AND ?
          AND EXISTS (
              SELECT 1 FROM event_artists ea
              WHERE ea.event_id = events.id AND ea.artist_id IN ({placeholders})
          )
          AND NOT EXISTS (
              SELECT 1 FROM notifications n WHERE n.event_id = events.id
          )
        """,
        (window.start.isoformat(), window.end.isoformat(), *artist_ids),
    )


def _select_events(conn: sqlite3.Connection, where: str, params: tuple) -> list[Event]:
    rows = conn.execute(
        f"""
        SELECT id, title, date, start_time, end_time, venue_name, venue_id, content_url,
               attending, is_ticketed, queue_it_enabled, new_event_form, created_at, updated_at
        FROM events
        {where}
        ORDER BY date, start_time, id
        """,
        params,
    ).fetchall()
    events = [_row_to_event(r) for r in rows]
    _attach_artists(conn, events)
    return events


def _attach_artists(conn: sqlite3.Connection, events: list[Event]) -> None:
    by_id = {e.id: e for e in events}
    ids = list(by_id)
    for i in range(0, len(ids), _IN_CHUNK):
        chunk = ids[i:i + _IN_CHUNK]
        placeholders = ",".join("?" * len(chunk))
        # rowid order == order the source listed the artists in
        rows = conn.execute(
            f"""
            SELECT event_id, artist_id, artist_name
            FROM event_artists
            WHERE event_id IN ({placeholders})
            ORDER BY event_id, rowid
            """,
            chunk,
        ).fetchall()
        for r in rows:
            by_id[r["event_id"]].artists.append(
                EventArtist(artist_id=r["artist_id"], artist_name=r["artist_name"])
            )


# --- Notifications ---

def mark_notified(conn: sqlite3.Connection, event_id: str, message: str) -> None:
    mark_all_notified(conn, [event_id], message)


def mark_all_notified(conn: sqlite3.Connection, event_ids: Iterable[str], message: str) -> None:
    """Append one notification row per event. Existing rows are never touched."""
    now = _now().isoformat()
    with conn:
        conn.executemany(
            "INSERT INTO notifications (event_id, sent_at, message) VALUES (?, ?, ?)",
            [(event_id, now, message) for event_id in event_ids],
        )


def has_been_notified(conn: sqlite3.Connection, event_id: str) -> bool:
    row = conn.execute(
        "SELECT EXISTS(SELECT 1 FROM notifications WHERE event_id = ?) AS notified",
        (event_id,),
    ).fetchone()
    return bool(row["notified"])


def get_notifications(conn: sqlite3.Connection, event_id: str) -> list[Notification]:
    rows = conn.execute(
        "SELECT id, event_id, sent_at, message FROM notifications WHERE event_id = ? ORDER BY id",
        (event_id,),
    ).fetchall()
    return [
        Notification(
            id=r["id"],
            event_id=r["event_id"],
            sent_at=datetime.fromisoformat(r["sent_at"]),
            message=r["message"],
        )
        for r in rows
    ]


# --- Stats ---

def get_stats(conn: sqlite3.Connection, recent_days: int = 7) -> dict[str, int]:
    since = (_now() - timedelta(days=recent_days)).isoformat()
    total_events = conn.execute("SELECT COUNT(*) FROM events").fetchone()[0]
    total_notifications = conn.execute("SELECT COUNT(*) FROM notifications").fetchone()[0]
    recent_events = conn.execute(
        "SELECT COUNT(*) FROM events WHERE created_at > ?", (since,)
    ).fetchone()[0]
    return {
        "total_events": total_events,
        "total_notifications": total_notifications,
        "recent_events": recent_events,
    }


# --- Run lease ---

def acquire_run_lease(conn: sqlite3.Connection, owner: str, timeout: timedelta) -> bool:
    """
    Take the single run slot for this database.

    Returns False if another owner holds a lease younger than `timeout`.
    A lease older than that is treated as abandoned and taken over.
    """
    now = _now()
    with conn:
        cursor = conn.execute(
            """
            INSERT INTO settings (key, value, updated_at)
            VALUES (:key, :owner, :now)
            ON CONFLICT(key) DO UPDATE SET
                value      = excluded.value,
                updated_at = excluded.updated_at
            WHERE settings.updated_at < :stale_before
            """,
            {
                "key": _RUN_LEASE_KEY,
                "owner": owner,
                "now": now.isoformat(),
                "stale_before": (now - timeout).isoformat(),
            },
        )
    acquired = cursor.rowcount == 1
    if not acquired:
        logger.debug("Run lease is held by another owner")
    return acquired


def release_run_lease(conn: sqlite3.Connection, owner: str) -> None:
    with conn:
        conn.execute(
            "DELETE FROM settings WHERE key = ? AND value = ?",
            (_RUN_LEASE_KEY, owner),
        )


def _row_to_event(row: sqlite3.Row) -> Event:
    return Event(
        id=row["id"],
        title=row["title"],
        date=date.fromisoformat(row["date"]),
        start_time=datetime.fromisoformat(row["start_time"]) if row["start_time"] else None,
        end_time=datetime.fromisoformat(row["end_time"]) if row["end_time"] else None,
        venue_name=row["venue_name"],
        venue_id=row["venue_id"],
        content_url=row["content_url"],
        attending=row["attending"],
        is_ticketed=_to_bool(row["is_ticketed"]),
        queue_it_enabled=_to_bool(row["queue_it_enabled"]),
        new_event_form=_to_bool(row["new_event_form"]),
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
    )


def _from_bool(value: Optional[bool]) -> Optional[int]:
    return None if value is None else int(bool(value))


def _to_bool(value: Optional[int]) -> Optional[bool]:
    return None if value is None else bool(value)
