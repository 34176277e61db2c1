import os
import tomllib
from dataclasses import dataclass
from datetime import date, timedelta
from pathlib import Path
from typing import Any, Iterable, Optional

from artistwatch.errors import ConfigError
from artistwatch.models import Artist, DateWindow, Location

_DEFAULT_CONFIG_PATH = Path("config.toml")
_DEFAULT_ENV_PATH = Path("secrets")

_ENV_SECRETS = {
    "PUSHOVER_USER_KEY": "pushover_user_key",
    "PUSHOVER_APP_TOKEN": "pushover_app_token",
}


@dataclass(frozen=True)
class MonitorSettings:
    date_range_days: int = 30
    include_past_days: int = 1
    inter_artist_delay: float = 2.0    # seconds between artists, courtesy to the source
    page_delay: float = 1.0            # seconds between pages of one artist
    force_page_limit: int = 5          # forced runs stop after this many pages per artist
    run_lock_timeout_minutes: int = 60

    @property
    def run_lock_timeout(self) -> timedelta:
        return timedelta(minutes=self.run_lock_timeout_minutes)


def load(path: Path = _DEFAULT_CONFIG_PATH, env_path: Path = _DEFAULT_ENV_PATH) -> dict[str, Any]:
    """Load config from TOML, then overlay any secrets from the env file."""
    try:
        with open(path, "rb") as f:
            cfg = tomllib.load(f)
    except FileNotFoundError:
        raise ConfigError(f"config file not found: {path}") from None
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"invalid TOML in {path}: {exc}") from exc
    _load_env(env_path, cfg)
    return cfg


def _load_env(env_path: Path, cfg: dict) -> None:
    """
    Parse a .env style file and inject values into the config dict.

    Supported variable names:
      PUSHOVER_USER_KEY   -> cfg["secrets"]["pushover_user_key"]
      PUSHOVER_APP_TOKEN  -> cfg["secrets"]["pushover_app_token"]

    Shell environment variables take precedence over file values.
    """
    _apply_env_vars(cfg)

    if not env_path.exists():
        return

    with open(env_path) as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue
            key, _, value = line.partition("=")
            key = key.strip()
            value = value.strip().strip('"').strip("'")
            if key not in os.environ:
                os.environ[key] = value

    _apply_env_vars(cfg)


def _apply_env_vars(cfg: dict) -> None:
    secrets = cfg.setdefault("secrets", {})
    for env_name, key in _ENV_SECRETS.items():
        if v := os.environ.get(env_name):
            secrets[key] = v


def get_secrets(cfg: dict) -> dict:
    return cfg.get("secrets", {})


def get_database_path(cfg: dict) -> Path:
    return Path(cfg.get("database", {}).get("path", "data/events.db"))


def get_source_config(cfg: dict) -> dict:
    return cfg.get("source", {})


def get_notification_config(cfg: dict) -> dict:
    return cfg.get("notifications", {})


def get_location(cfg: dict) -> Location:
    loc = cfg.get("location", {})
    area_id = loc.get("area_id")
    if area_id is not None and not isinstance(area_id, int):
        raise ConfigError(f"location.area_id must be an integer, got {area_id!r}")
    return Location(name=str(loc.get("name", "")), area_id=area_id)


def get_artists(cfg: dict) -> list[Artist]:
    """Return the configured artists; an empty or malformed list is an error."""
    raw = cfg.get("artists")
    if not raw:
        raise ConfigError("no artists configured; add at least one [[artists]] entry")

    artists: list[Artist] = []
    seen: set[str] = set()
    for i, entry in enumerate(raw):
        if not isinstance(entry, dict) or not entry.get("id") or not entry.get("name"):
            raise ConfigError(f"artists[{i}] needs both 'id' and 'name'")
        artist_id = str(entry["id"])
        if artist_id in seen:
            raise ConfigError(f"artist id {artist_id} is configured twice")
        seen.add(artist_id)
        artists.append(Artist(id=artist_id, name=str(entry["name"])))
    return artists


def select_artists(artists: list[Artist], ids: Optional[Iterable[str]]) -> list[Artist]:
    """Narrow the configured artists to `ids`, keeping config order. None means all."""
    if not ids:
        return list(artists)
    wanted = [str(i) for i in ids]
    known = {a.id for a in artists}
    unknown = [i for i in wanted if i not in known]
    if unknown:
        raise ConfigError(f"artist id(s) not in config: {', '.join(unknown)}")
    return [a for a in artists if a.id in wanted]


def get_monitor_settings(cfg: dict) -> MonitorSettings:
    section = cfg.get("monitor", {})
    defaults = MonitorSettings()

    past = section.get("include_past_days")
    if past is None:
        # Older configs use a boolean "include yesterday" switch
        past = int(section["include_past_day"]) if "include_past_day" in section else defaults.include_past_days

    settings = MonitorSettings(
        date_range_days=section.get("date_range_days", defaults.date_range_days),
        include_past_days=past,
        inter_artist_delay=section.get("inter_artist_delay", defaults.inter_artist_delay),
        page_delay=section.get("page_delay", defaults.page_delay),
        force_page_limit=section.get("force_page_limit", defaults.force_page_limit),
        run_lock_timeout_minutes=section.get("run_lock_timeout_minutes", defaults.run_lock_timeout_minutes),
    )
    for name in ("date_range_days", "include_past_days", "force_page_limit", "run_lock_timeout_minutes"):
        value = getattr(settings, name)
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise ConfigError(f"monitor.{name} must be a non-negative integer, got {value!r}")
    for name in ("inter_artist_delay", "page_delay"):
        value = getattr(settings, name)
        if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
            raise ConfigError(f"monitor.{name} must be a non-negative number, got {value!r}")
    if settings.force_page_limit == 0:
        raise ConfigError("monitor.force_page_limit must be at least 1")
    if settings.run_lock_timeout_minutes == 0:
        raise ConfigError("monitor.run_lock_timeout_minutes must be at least 1")
    return settings


def get_window(settings: MonitorSettings, today: Optional[date] = None) -> DateWindow:
    return DateWindow.around(
        today or date.today(),
        past_days=settings.include_past_days,
        ahead_days=settings.date_range_days,
    )
