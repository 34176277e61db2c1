"""
Resident Advisor listing source.

Endpoint: https://ra.co/graphql (POST, JSON body)
  - The query itself is not built here. config.toml points at a JSON file
    holding a complete GraphQL request whose `variables.filters` and
    `variables.baseFilters` are lists of {"type": ..., "value": ...} entries.
    We only fill in the ARTIST and DATERANGE values and the page number.
  - Artist listings come back under data.listing.data, area listings under
    data.eventListings.data. Area records wrap the event as {"event": {...}}.

Listing records look like:
  {"id": "1234567", "title": "...", "date": "2026-08-23T00:00:00.000",
   "startTime": "2026-08-23T22:00:00.000", "endTime": "...",
   "contentUrl": "/events/1234567", "attending": 120,
   "venue": {"id": "5031", "name": "Fabric"},
   "artists": [{"id": "44361", "name": "Rival Consoles"}],
   "isTicketed": true, "queueItEnabled": false, "newEventForm": false}

Some listings report attendance as `interestedCount` instead of `attending`.
"""

import copy
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

import requests
from dateutil import parser as dateparser

from artistwatch.errors import ConfigError, SourceError
from artistwatch.models import DateWindow, Event, EventArtist
from artistwatch.sources.base import BaseSource

logger = logging.getLogger(__name__)

_URL = "https://ra.co/graphql"
_HEADERS = {
    "Content-Type": "application/json",
    "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:106.0) Gecko/20100101 Firefox/106.0",
}
_DEFAULT_TEMPLATE = "graphql_query_template_artist.json"


def _load_template(path: Path) -> dict:
    try:
        with open(path) as f:
            template = json.load(f)
    except FileNotFoundError:
        raise ConfigError(f"GraphQL query template not found: {path}") from None
    except json.JSONDecodeError as exc:
        raise ConfigError(f"GraphQL query template {path} is not valid JSON: {exc}") from exc

    filters = template.get("variables", {}).get("filters")
    if not isinstance(filters, list) or not any(f.get("type") == "ARTIST" for f in filters):
        raise ConfigError(f"GraphQL query template {path} has no ARTIST filter")
    return template


def _set_filter(filters: list[dict], filter_type: str, value: str) -> None:
    for f in filters:
        if f.get("type") == filter_type:
            f["value"] = value


def _parse_timestamp(raw: Any) -> Optional[datetime]:
    if not raw:
        return None
    try:
        return dateparser.parse(str(raw))
    except (ValueError, OverflowError):
        return None


def _parse_count(raw: Any) -> int:
    try:
        return max(int(raw), 0)
    except (TypeError, ValueError):
        return 0


def _parse_event(record: dict) -> Event:
    """Turn one listing record into an Event. Raises SourceError if it is unusable."""
    data = record.get("event") or record
    if not isinstance(data, dict):
        raise SourceError(f"listing record is not an object: {record!r}")

    event_id = data.get("id")
    title = data.get("title")
    raw_date = data.get("date")
    if not (event_id and title and raw_date):
        raise SourceError(f"listing record missing id, title or date: {data!r}")

    try:
        event_date = dateparser.parse(str(raw_date)).date()
    except (ValueError, OverflowError) as exc:
        raise SourceError(f"unparseable date {raw_date!r} on event {event_id}") from exc

    venue = data.get("venue") or {}
    attending = data.get("attending") or data.get("interestedCount") or 0

    artists: list[EventArtist] = []
    for a in data.get("artists") or []:
        if a.get("id") is None:
            continue
        artists.append(EventArtist(artist_id=str(a["id"]), artist_name=a.get("name") or ""))

    return Event(
        id=str(event_id),
        title=title,
        date=event_date,
        start_time=_parse_timestamp(data.get("startTime")),
        end_time=_parse_timestamp(data.get("endTime")),
        venue_name=venue.get("name"),
        venue_id=str(venue["id"]) if venue.get("id") is not None else None,
        content_url=data.get("contentUrl") or "",
        attending=_parse_count(attending),
        is_ticketed=data.get("isTicketed"),
        queue_it_enabled=data.get("queueItEnabled"),
        new_event_form=data.get("newEventForm"),
        artists=artists,
    )


def _extract_listing(body: Any) -> list:
    if not isinstance(body, dict):
        raise SourceError("response body is not a JSON object")
    data = body.get("data")
    if not data:
        raise SourceError(f"GraphQL error: {json.dumps(body.get('errors', body))[:500]}")
    for key in ("listing", "eventListings"):
        section = data.get(key)
        if section is not None:
            return section.get("data") or []
    raise SourceError(f"unexpected response shape, keys: {sorted(data)}")


class ResidentAdvisorSource(BaseSource):
    source_key = "residentadvisor"

    def __init__(self, source_cfg: dict):
        super().__init__(source_cfg)
        self.url = source_cfg.get("url", _URL)
        self.timeout = source_cfg.get("timeout", 15)
        self.headers = dict(_HEADERS)
        self.headers["Referer"] = source_cfg.get("referer", "https://ra.co/events")
        self.template = _load_template(Path(source_cfg.get("query_template", _DEFAULT_TEMPLATE)))

    def build_payload(self, artist_id: str, window: DateWindow, page: int) -> dict:
        payload = copy.deepcopy(self.template)
        variables = payload.setdefault("variables", {})
        gte, lte = window.listing_bounds()
        date_value = json.dumps({"gte": gte, "lte": lte}, separators=(",", ":"))
        for key in ("filters", "baseFilters"):
            filters = variables.get(key)
            if isinstance(filters, list):
                _set_filter(filters, "ARTIST", str(artist_id))
                _set_filter(filters, "DATERANGE", date_value)
        variables["page"] = page
        return payload

    def fetch_page(self, artist_id: str, window: DateWindow, page: int) -> list[Event]:
        payload = self.build_payload(artist_id, window, page)
        try:
            r = requests.post(self.url, json=payload, headers=self.headers, timeout=self.timeout)
            r.raise_for_status()
            body = r.json()
        except requests.RequestException as exc:
            raise SourceError(f"artist {artist_id} page {page}: {exc}") from exc
        except ValueError as exc:
            raise SourceError(f"artist {artist_id} page {page}: response is not JSON") from exc

        records = _extract_listing(body)
        events = [_parse_event(record) for record in records]
        logger.debug("Artist %s page %d: %d listings", artist_id, page, len(events))
        return events
