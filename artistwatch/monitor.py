"""
The check loop: fetch listings artist by artist, record them, and announce
whatever has not been announced before in a single notification.

A run walks the selected artists in order. For each one it pulls pages from
the source until an empty page comes back, upserting every record as it
goes, and waits `inter_artist_delay` seconds before moving on to the next
artist. A failure while fetching or storing one artist's listings is logged
and that artist simply contributes nothing to the run.

Events are marked as notified only after the notifier confirms delivery, so a
failed send leaves the whole batch to be retried on the next run.
"""

import logging
import sqlite3
import threading
import uuid
from typing import Callable, Iterator, Optional

import artistwatch.db as db_module
from artistwatch.config import MonitorSettings
from artistwatch.errors import ConfigError, RunInProgressError
from artistwatch.models import Artist, DateWindow, Event, Location, RunMode, RunResult
from artistwatch.notifier import Notifier
from artistwatch.sources.base import BaseSource

logger = logging.getLogger(__name__)

NOTIFICATION_MESSAGES = {
    RunMode.NORMAL: "Batch notification sent",
    RunMode.FORCE: "Manual notification sent",
}


def matches_artist_names(event: Event, artists: list[Artist]) -> bool:
    """
    Name-based match used by forced runs.

    An event matches when one of its artist names, trimmed and lower-cased,
    is contained in the configured name of a selected artist. Overlapping
    names can over- or under-match.
    """
    names = [n.strip().lower() for n in event.artist_names.split(",")]
    return any(
        name and name in artist.name.lower()
        for name in names
        for artist in artists
    )


class Monitor:
    def __init__(
        self,
        conn: sqlite3.Connection,
        source: BaseSource,
        notifier: Optional[Notifier],
        settings: MonitorSettings,
        location: Location,
        sleep: Optional[Callable[[float], object]] = None,
    ):
        self.conn = conn
        self.source = source
        self.notifier = notifier
        self.settings = settings
        self.location = location
        self._cancelled = threading.Event()
        # Waiting on the cancel flag lets cancel() cut a delay short
        self._sleep = sleep or self._cancelled.wait

    def cancel(self) -> None:
        """Ask the current run to stop before its next artist."""
        self._cancelled.set()

    def run_check(
        self,
        artists: list[Artist],
        window: DateWindow,
        mode: RunMode = RunMode.NORMAL,
    ) -> RunResult:
        artists = list(artists)
        if not artists:
            raise ConfigError("no artists selected for this run")
        if window.start > window.end:
            raise ConfigError(f"invalid window: {window.start} is after {window.end}")

        owner = uuid.uuid4().hex
        if not db_module.acquire_run_lease(self.conn, owner, self.settings.run_lock_timeout):
            raise RunInProgressError("another check is already running against this database")

        self._cancelled.clear()
        try:
            return self._run(artists, window, mode)
        finally:
            db_module.release_run_lease(self.conn, owner)

    def _run(self, artists: list[Artist], window: DateWindow, mode: RunMode) -> RunResult:
        result = RunResult(mode=mode, window=window, artists=artists)
        logger.info(
            "Starting %s check for %d artists in %s, %s to %s",
            mode.value, len(artists), self.location.name or "all areas", window.start, window.end,
        )

        collected: dict[str, Event] = {}
        for i, artist in enumerate(artists):
            if self._cancelled.is_set():
                logger.warning("Check cancelled before %s; skipping notification", artist.name)
                result.cancelled = True
                return result

            logger.info("[%d/%d] Checking events for %s (%s)", i + 1, len(artists), artist.name, artist.id)
            try:
                result.fetched[artist.id] = self._ingest_artist(artist, window, mode)
            except Exception as exc:
                logger.error("Error checking events for %s: %s", artist.name, exc)
                result.failed[artist.id] = str(exc)
            else:
                if mode is RunMode.NORMAL:
                    new_events = db_module.get_unnotified_for_artists(self.conn, [artist.id], window)
                    if new_events:
                        logger.info("Found %d new events for %s", len(new_events), artist.name)
                    for event in new_events:
                        collected.setdefault(event.id, event)

            if i < len(artists) - 1 and self.settings.inter_artist_delay > 0:
                logger.debug("Waiting %.1fs before next artist", self.settings.inter_artist_delay)
                self._sleep(self.settings.inter_artist_delay)

        if mode is RunMode.FORCE:
            in_window = db_module.get_events_in_window(self.conn, window)
            collected = {e.id: e for e in in_window if matches_artist_names(e, artists)}

        result.events = list(collected.values())
        self._notify(result)
        return result

    def _iter_pages(self, artist: Artist, window: DateWindow, mode: RunMode) -> Iterator[list[Event]]:
        """Yield non-empty pages until the source runs dry (or the forced-run cap is hit)."""
        limit = self.settings.force_page_limit if mode is RunMode.FORCE else None
        page = 1
        while limit is None or page <= limit:
            if page > 1 and self.settings.page_delay > 0:
                self._sleep(self.settings.page_delay)
            events = self.source.fetch_page(artist.id, window, page)
            if not events:
                return
            yield events
            page += 1

    def _ingest_artist(self, artist: Artist, window: DateWindow, mode: RunMode) -> int:
        count = 0
        for events in self._iter_pages(artist, window, mode):
            for event in events:
                db_module.upsert_event(self.conn, event)
            count += len(events)
        logger.info("Found %d events for %s", count, artist.name)
        return count

    def _notify(self, result: RunResult) -> None:
        events = result.events
        if not events:
            logger.info("No new events found")
            return

        if self.notifier is None:
            logger.warning("Found %d events but notifications are disabled", len(events))
            result.notifications_disabled = True
            return

        logger.info("Sending notification for %d events", len(events))
        if not self.notifier.dispatch(events, self.location.name):
            # Left unmarked; the next run picks the whole batch up again
            return

        db_module.mark_all_notified(
            self.conn,
            [e.id for e in events],
            NOTIFICATION_MESSAGES[result.mode],
        )
        result.notified = True
