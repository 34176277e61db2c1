from abc import ABC, abstractmethod

from artistwatch.models import DateWindow, Event


class BaseSource(ABC):
    # Subclasses must set this class attribute
    source_key: str = ""

    def __init__(self, source_cfg: dict):
        """
        Args:
            source_cfg: The [source] section from config.toml as a dict.
        """
        self.source_cfg = source_cfg

    @abstractmethod
    def fetch_page(self, artist_id: str, window: DateWindow, page: int) -> list[Event]:
        """
        Fetch one page (1-based) of listings for an artist within the window.

        An empty list means there are no more pages. Any failure to fetch or
        parse the page raises SourceError instead of returning an empty list.
        """
        ...
