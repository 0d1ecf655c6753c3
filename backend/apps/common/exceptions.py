# apps/common/exceptions.py


class AcquisitionError(Exception):
    """Base class for account acquisition errors."""


class ConfigurationError(AcquisitionError):
    """Missing or invalid run parameters. Raised before a run is created."""


class FetchError(AcquisitionError):
    """Network, blocked or rate-limited response during a single fetch."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ProfileNotFound(AcquisitionError):
    """The account does not exist or has been removed."""


class RunStateError(AcquisitionError):
    """The run is unknown or already in a terminal state."""


class OrchestratorError(AcquisitionError):
    """The orchestrator cannot make any further progress."""
