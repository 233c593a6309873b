"""Custom exception hierarchy for the metrics subsystem."""


class MetricsError(Exception):
    """Base exception for all metrics-related errors."""
    pass


class SchemaConflict(MetricsError):
    """Raised when a metric name is registered again with a different kind or help."""
    pass


class UnknownMetric(MetricsError, KeyError):
    """Raised when reading or writing a metric name that was never registered."""

    def __str__(self):
        return str(self.args[0]) if self.args else "unknown metric"


class TypeMismatch(MetricsError, TypeError):
    """Raised when a metric is written with the wrong kind or a non-numeric value."""
    pass


class InvalidLabels(MetricsError, ValueError):
    """Raised when a label set does not match the label names declared for a metric."""
    pass


class PeerUnreachable(MetricsError):
    """Raised when a sibling worker process cannot be reached for its snapshot."""

    def __init__(self, path, reason):
        super().__init__(f"Peer at {path} is unreachable: {reason}")
        self.path = path
        self.reason = reason


class StoreQueryFailure(MetricsError):
    """Raised when the relational store cannot be read for application-wide metrics."""
    pass
