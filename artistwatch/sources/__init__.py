"""
Listing source registry.

To add a new source:
1. Subclass BaseSource in sources/<source_key>.py and implement fetch_page()
2. Import and register it in the SOURCES dict below
3. Select it with `type = "<source_key>"` in the [source] section of config.toml
"""

from artistwatch.errors import ConfigError
from artistwatch.sources.base import BaseSource
from artistwatch.sources.residentadvisor import ResidentAdvisorSource

SOURCES: dict[str, type[BaseSource]] = {
    "residentadvisor": ResidentAdvisorSource,
}


def get_source(source_cfg: dict) -> BaseSource:
    key = source_cfg.get("type", "residentadvisor")
    if key not in SOURCES:
        raise ConfigError(
            f"unknown source type '{key}'; available: {', '.join(sorted(SOURCES))}"
        )
    return SOURCES[key](source_cfg)
