"""Exception hierarchy for the real-time layer."""


class PlantVibesError(Exception):
    """Base class for all PlantVibes errors."""


class ChangeFeedError(PlantVibesError):
    """Raised when the change feed subscription cannot be established.

    This is fatal at startup: the server must not run without live updates.
    """


class ConnectionClosedError(PlantVibesError):
    """Raised when sending on a connection that is already closed."""


class ConnectionStateError(PlantVibesError):
    """Raised on an invalid connection state transition (e.g. re-opening)."""
