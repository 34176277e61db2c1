import json
from datetime import date, datetime

import pytest
import responses as rsps

from artistwatch.errors import ConfigError, SourceError
from artistwatch.models import EventArtist
from artistwatch.sources import SOURCES, get_source
from artistwatch.sources.residentadvisor import ResidentAdvisorSource

from conftest import WINDOW

URL = "https://ra.co/graphql"

TEMPLATE = {
    "operationName": "GET_DEFAULT_EVENTS_LISTING",
    "variables": {
        "filters": [
            {"type": "ARTIST", "value": ""},
            {"type": "DATERANGE", "value": ""},
        ],
        "baseFilters": [
            {"type": "ARTIST", "value": ""},
            {"type": "DATERANGE", "value": ""},
        ],
        "pageSize": 20,
        "page": 1,
    },
    "query": "query GET_DEFAULT_EVENTS_LISTING { listing { data { id } } }",
}

LISTING = {
    "id": "1234567",
    "title": "Warehouse Night",
    "date": "2026-10-03T00:00:00.000",
    "startTime": "2026-10-03T22:00:00.000",
    "endTime": "2026-10-04T06:00:00.000",
    "contentUrl": "/events/1234567",
    "attending": 120,
    "isTicketed": True,
    "queueItEnabled": False,
    "newEventForm": False,
    "venue": {"id": 5031, "name": "Fabric"},
    "artists": [{"id": "100", "name": "Rival Consoles"}, {"id": 200, "name": "Four Tet"}],
}


@pytest.fixture
def source(tmp_path):
    path = tmp_path / "template.json"
    path.write_text(json.dumps(TEMPLATE))
    return ResidentAdvisorSource({"query_template": str(path), "referer": "https://ra.co/events/uk/london"})


def _listing_response(*records):
    return {"data": {"listing": {"data": list(records), "totalResults": len(records)}}}


def test_source_registry_is_dict():
    assert isinstance(SOURCES, dict)


def test_all_sources_have_source_key():
    for key, cls in SOURCES.items():
        assert cls.source_key == key, (
            f"Source class {cls.__name__} has source_key='{cls.source_key}' "
            f"but is registered under key '{key}'"
        )


def test_get_source_rejects_unknown_type():
    with pytest.raises(ConfigError):
        get_source({"type": "nope"})


def test_missing_template_is_a_config_error(tmp_path):
    with pytest.raises(ConfigError):
        ResidentAdvisorSource({"query_template": str(tmp_path / "missing.json")})


def test_template_without_artist_filter_is_rejected(tmp_path):
    path = tmp_path / "area.json"
    path.write_text(json.dumps({"variables": {"filters": {"areas": {"eq": 13}}}}))
    with pytest.raises(ConfigError):
        ResidentAdvisorSource({"query_template": str(path)})


def test_payload_fills_artist_window_and_page(source):
    payload = source.build_payload("100", WINDOW, 3)

    variables = payload["variables"]
    assert variables["page"] == 3
    for key in ("filters", "baseFilters"):
        by_type = {f["type"]: f["value"] for f in variables[key]}
        assert by_type["ARTIST"] == "100"
        assert json.loads(by_type["DATERANGE"]) == {
            "gte": "2026-10-01T00:00:00.000Z",
            "lte": "2026-10-31T23:59:59.999Z",
        }
    # Template itself stays untouched between calls
    assert source.template["variables"]["filters"][0]["value"] == ""


@rsps.activate
def test_fetch_page_parses_listing(source):
    rsps.add(rsps.POST, URL, json=_listing_response(LISTING))

    [event] = source.fetch_page("100", WINDOW, 1)

    assert event.id == "1234567"
    assert event.title == "Warehouse Night"
    assert event.date == date(2026, 10, 3)
    assert event.start_time == datetime(2026, 10, 3, 22, 0)
    assert event.end_time == datetime(2026, 10, 4, 6, 0)
    assert event.venue_name == "Fabric"
    assert event.venue_id == "5031"
    assert event.attending == 120
    assert event.is_ticketed is True
    assert event.artists == [EventArtist("100", "Rival Consoles"), EventArtist("200", "Four Tet")]

    request = rsps.calls[0].request
    assert request.headers["Referer"] == "https://ra.co/events/uk/london"
    assert json.loads(request.body)["variables"]["page"] == 1


@rsps.activate
def test_fetch_page_normalizes_interested_count_and_wrapped_records(source):
    record = dict(LISTING, id="99", attending=None, interestedCount=42)
    rsps.add(rsps.POST, URL, json={"data": {"eventListings": {"data": [{"event": record}]}}})

    [event] = source.fetch_page("100", WINDOW, 1)

    assert event.id == "99"
    assert event.attending == 42


@rsps.activate
def test_empty_page_signals_end(source):
    rsps.add(rsps.POST, URL, json=_listing_response())
    assert source.fetch_page("100", WINDOW, 4) == []


@rsps.activate
def test_graphql_error_is_not_an_empty_page(source):
    rsps.add(rsps.POST, URL, json={"errors": [{"message": "rate limited"}]})
    with pytest.raises(SourceError, match="rate limited"):
        source.fetch_page("100", WINDOW, 1)


@rsps.activate
def test_http_error_raises(source):
    rsps.add(rsps.POST, URL, status=400, json={"errors": []})
    with pytest.raises(SourceError):
        source.fetch_page("100", WINDOW, 1)


@rsps.activate
def test_non_json_body_raises(source):
    rsps.add(rsps.POST, URL, body="<html>blocked</html>")
    with pytest.raises(SourceError):
        source.fetch_page("100", WINDOW, 1)


@rsps.activate
def test_unusable_record_raises(source):
    rsps.add(rsps.POST, URL, json=_listing_response({"id": "1", "title": "No date"}))
    with pytest.raises(SourceError):
        source.fetch_page("100", WINDOW, 1)
