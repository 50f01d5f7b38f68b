import typing

__all__ = [
    "PacerError",
    "ValidationError",
    "SolverError",
    "SimulationError",
    "TimingError",
    "StepSizeError",
    "RestartError",
    "StorageError",
    "SerializationError",
    "DeserializationError",
]


class PacerError(Exception):
    """Base class for all PACER-related errors."""

    pass


class ValidationError(PacerError, ValueError):
    """Raised when input data fails validation checks."""

    pass


class SolverError(PacerError):
    """Raised when a nonlinear or linear solver cannot produce a solution."""

    pass


class SimulationError(PacerError):
    """Base class for simulation-related errors."""

    pass


class TimingError(SimulationError):
    """Raised when there is an error related to simulation timing."""

    pass


class StepSizeError(SimulationError):
    """
    Raised when a report step cannot be solved, even at the smallest
    allowed sub-step size.
    """

    def __init__(
        self,
        message: str,
        report_step: int,
        step_size: typing.Optional[float] = None,
    ) -> None:
        super().__init__(message)
        self.report_step = report_step
        """Index of the report step that could not be solved."""
        self.step_size = step_size
        """The last sub-step size (in seconds) that was attempted."""


class RestartError(PacerError):
    """Raised when restart data cannot be loaded."""

    pass


class StorageError(PacerError):
    """Raised when a storage backend fails to read or write data."""

    pass


class SerializationError(PacerError):
    """Raised when an object cannot be serialized."""

    pass


class DeserializationError(PacerError):
    """Raised when data cannot be deserialized into an object."""

    pass
