from datetime import date

import pytest

import artistwatch.config as cfg_module
from artistwatch.errors import ConfigError
from artistwatch.models import Artist, DateWindow

CONFIG = """
[location]
name = "London"
area_id = 13

[[artists]]
id = "44361"
name = "Rival Consoles"

[[artists]]
id = 943
name = "Four Tet"

[monitor]
date_range_days = 14
include_past_day = true
inter_artist_delay = 0

[database]
path = "tmp/events.db"
"""


@pytest.fixture
def cfg_path(tmp_path):
    path = tmp_path / "config.toml"
    path.write_text(CONFIG)
    return path


def test_load_and_getters(cfg_path, tmp_path, monkeypatch):
    monkeypatch.delenv("PUSHOVER_USER_KEY", raising=False)
    monkeypatch.delenv("PUSHOVER_APP_TOKEN", raising=False)
    cfg = cfg_module.load(cfg_path, env_path=tmp_path / "no-secrets")

    assert cfg_module.get_artists(cfg) == [Artist("44361", "Rival Consoles"), Artist("943", "Four Tet")]
    assert cfg_module.get_location(cfg).area_id == 13
    assert str(cfg_module.get_database_path(cfg)) == "tmp/events.db"
    assert cfg_module.get_secrets(cfg) == {}

    settings = cfg_module.get_monitor_settings(cfg)
    assert settings.date_range_days == 14
    assert settings.include_past_days == 1
    assert settings.inter_artist_delay == 0
    assert settings.page_delay == 1.0
    assert settings.force_page_limit == 5


def test_secrets_file_and_shell_precedence(cfg_path, tmp_path, monkeypatch):
    # setenv first so monkeypatch restores the variable's absence afterwards
    monkeypatch.setenv("PUSHOVER_APP_TOKEN", "placeholder")
    monkeypatch.delenv("PUSHOVER_APP_TOKEN")
    monkeypatch.setenv("PUSHOVER_USER_KEY", "from-shell")
    secrets = tmp_path / "secrets"
    secrets.write_text('# pushover\nPUSHOVER_USER_KEY="from-file"\nPUSHOVER_APP_TOKEN=file-token\n')

    cfg = cfg_module.load(cfg_path, env_path=secrets)

    assert cfg["secrets"] == {"pushover_user_key": "from-shell", "pushover_app_token": "file-token"}


def test_missing_config_file(tmp_path):
    with pytest.raises(ConfigError):
        cfg_module.load(tmp_path / "nope.toml")


def test_invalid_toml(tmp_path):
    path = tmp_path / "broken.toml"
    path.write_text("[monitor\n")
    with pytest.raises(ConfigError):
        cfg_module.load(path)


@pytest.mark.parametrize("artists", [None, [], [{"id": "1"}], [{"id": "1", "name": "A"}, {"id": "1", "name": "B"}]])
def test_bad_artist_lists(artists):
    cfg = {} if artists is None else {"artists": artists}
    with pytest.raises(ConfigError):
        cfg_module.get_artists(cfg)


def test_select_artists():
    artists = [Artist("1", "A"), Artist("2", "B"), Artist("3", "C")]

    assert cfg_module.select_artists(artists, None) == artists
    assert cfg_module.select_artists(artists, ["3", "1"]) == [Artist("1", "A"), Artist("3", "C")]
    with pytest.raises(ConfigError):
        cfg_module.select_artists(artists, ["9"])


@pytest.mark.parametrize("section", [
    {"date_range_days": -1},
    {"inter_artist_delay": -0.5},
    {"force_page_limit": 0},
    {"run_lock_timeout_minutes": 0},
    {"page_delay": "fast"},
])
def test_invalid_monitor_settings(section):
    with pytest.raises(ConfigError):
        cfg_module.get_monitor_settings({"monitor": section})


def test_window_from_settings():
    settings = cfg_module.MonitorSettings(date_range_days=30, include_past_days=1)
    window = cfg_module.get_window(settings, today=date(2026, 10, 19))

    assert window == DateWindow(start=date(2026, 10, 18), end=date(2026, 11, 18))
    assert window.contains(date(2026, 10, 18))
    assert not window.contains(date(2026, 11, 19))
    assert window.listing_bounds() == ("2026-10-18T00:00:00.000Z", "2026-11-18T23:59:59.999Z")
