"""Fatal error categories. Any of these aborts a run."""


class ClusterWMSError(Exception):
    """Base class for non-recoverable scheduling errors."""


class ConfigurationError(ClusterWMSError):
    """Malformed clustering spec, bad cluster parameters, or a plimit violation."""


class InvariantViolation(ClusterWMSError):
    """An event arrived with no placeholder job in the expected state."""


class OracleFailure(ClusterWMSError):
    """The wait-time oracle returned a negative or missing estimate."""
