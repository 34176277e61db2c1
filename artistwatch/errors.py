class ArtistWatchError(Exception):
    """Base class for errors raised by artistwatch."""


class ConfigError(ArtistWatchError):
    """Configuration is missing or invalid; raised before any network activity."""


class SourceError(ArtistWatchError):
    """A listing page could not be fetched or parsed."""


class TransportError(ArtistWatchError):
    """A notification could not be delivered."""


class RunInProgressError(ArtistWatchError):
    """Another check currently holds the run lease for this database."""
