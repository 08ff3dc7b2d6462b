"""Exception hierarchy for the mesh telemetry aggregator."""


class MeshMonError(Exception):
    """Base exception for all aggregator errors."""


class FeedError(MeshMonError):
    """Fetching an upstream feed failed (connection, timeout or HTTP status)."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class PayloadError(MeshMonError):
    """An upstream payload could not be parsed or did not match its schema."""


class ConfigError(MeshMonError):
    """Configuration file could not be read or holds invalid values."""
