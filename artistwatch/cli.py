import argparse
import logging
import sqlite3
import sys
from datetime import date
from pathlib import Path

from artistwatch import __version__
import artistwatch.config as cfg_module
import artistwatch.db as db_module
from artistwatch.errors import ArtistWatchError
from artistwatch.models import DateWindow, RunMode
from artistwatch.monitor import Monitor
from artistwatch.notifier import get_notifier
from artistwatch.sources import get_source


def _check(args, cfg):
    # Resolve everything from config before touching the network
    artists = cfg_module.select_artists(cfg_module.get_artists(cfg), args.artist)
    location = cfg_module.get_location(cfg)
    settings = cfg_module.get_monitor_settings(cfg)
    window = cfg_module.get_window(settings)
    source = get_source(cfg_module.get_source_config(cfg))
    notifier = get_notifier(cfg)
    mode = RunMode.FORCE if args.force else RunMode.NORMAL

    conn = db_module.connect(cfg_module.get_database_path(cfg))
    try:
        print(f"Location: {location.name or '-'}" + (f" (ID: {location.area_id})" if location.area_id else ""))
        print(f"Artists: {', '.join(a.name for a in artists)}")
        print(f"Date range: {window.start} to {window.end}")

        monitor = Monitor(conn, source, notifier, settings, location)
        result = monitor.run_check(artists, window, mode)
    finally:
        conn.close()

    for artist in result.artists:
        if artist.id in result.failed:
            print(f"  {artist.name}: FAILED ({result.failed[artist.id]})")
        elif artist.id in result.fetched:
            print(f"  {artist.name}: {result.fetched[artist.id]} events fetched")

    print(f"Fetched {result.total_fetched} events for {len(result.artists)} artists.")
    if result.cancelled:
        print("Check cancelled.")
    elif not result.events:
        print("No new events found.")
    elif result.notifications_disabled:
        print(f"Found {len(result.events)} events but notifications are disabled.")
    elif result.notified:
        print(f"Notification sent for {len(result.events)} events.")
    else:
        print(f"Notification for {len(result.events)} events FAILED; they will be retried next run.")


def _events(args, cfg):
    settings = cfg_module.get_monitor_settings(cfg)
    default = cfg_module.get_window(settings)
    window = DateWindow(
        start=date.fromisoformat(args.start) if args.start else default.start,
        end=date.fromisoformat(args.end) if args.end else default.end,
    )
    conn = db_module.connect(cfg_module.get_database_path(cfg))
    try:
        events = db_module.get_events_in_window(conn, window)
    finally:
        conn.close()

    if not events:
        print(f"No events between {window.start} and {window.end}.")
        return
    for event in events:
        venue = event.venue_name or "Venue TBA"
        print(f"{event.date}  {event.id:>10}  {event.title} @ {venue}  [{event.artist_names}]")


def _event(args, cfg):
    conn = db_module.connect(cfg_module.get_database_path(cfg))
    try:
        event = db_module.get_event(conn, args.event_id)
        notifications = db_module.get_notifications(conn, args.event_id) if event else []
    finally:
        conn.close()

    if event is None:
        print(f"Error: no event with id '{args.event_id}'.", file=sys.stderr)
        sys.exit(1)

    print(f"{event.title} ({event.id})")
    print(f"  Date:      {event.date}" + (f" {event.start_time:%H:%M}" if event.start_time else ""))
    print(f"  Venue:     {event.venue_name or 'Venue TBA'}")
    print(f"  Artists:   {event.artist_names or '-'}")
    print(f"  Attending: {event.attending}")
    print(f"  URL:       {event.content_url}")
    if notifications:
        for n in notifications:
            print(f"  Notified:  {n.sent_at:%Y-%m-%d %H:%M} ({n.message})")
    else:
        print("  Notified:  never")


def _stats(args, cfg):
    conn = db_module.connect(cfg_module.get_database_path(cfg))
    try:
        stats = db_module.get_stats(conn)
    finally:
        conn.close()

    print(f"Events stored:       {stats['total_events']}")
    print(f"Notifications sent:  {stats['total_notifications']}")
    print(f"New in last 7 days:  {stats['recent_events']}")
    print(f"Monitored artists:   {len(cfg.get('artists') or [])}")
    print(f"Location:            {cfg_module.get_location(cfg).name or '-'}")


def main():
    parser = argparse.ArgumentParser(
        prog="artistwatch",
        description="Watch event listings for your artists and get notified about new ones",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--config", default="config.toml", metavar="PATH",
        help="Path to config.toml (default: config.toml)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    # check
    sp_check = subparsers.add_parser("check", help="Fetch listings and notify about new events")
    sp_check.add_argument(
        "--force", action="store_true",
        help="Notify about every event in the window, even ones already notified",
    )
    sp_check.add_argument(
        "--artist", metavar="ID", action="append",
        help="Only check this artist (by its id in config.toml); may be repeated",
    )

    # events
    sp_events = subparsers.add_parser("events", help="List stored events in a date range")
    sp_events.add_argument("--start", metavar="YYYY-MM-DD", help="First day (default: window start)")
    sp_events.add_argument("--end", metavar="YYYY-MM-DD", help="Last day (default: window end)")

    # event
    sp_event = subparsers.add_parser("event", help="Show one stored event and its notification history")
    sp_event.add_argument("event_id", metavar="ID")

    # stats
    subparsers.add_parser("stats", help="Show database totals")

    args = parser.parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    commands = {
        "check": _check,
        "events": _events,
        "event": _event,
        "stats": _stats,
    }
    try:
        cfg = cfg_module.load(Path(args.config))
        commands[args.command](args, cfg)
    except (ArtistWatchError, sqlite3.Error, ValueError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
