"""
Exceptions raised by the model serialization codec.
"""


class SerializationError(Exception):
    """Base class for all codec errors."""


class MissingModelError(SerializationError):
    """Raised when a handler is asked to load without a serialized model."""

    def __init__(self, message: str | None = None):
        super().__init__(
            message
            or "SerializeIOHandler.load() called without providing a model to load."
        )


class UnknownOptimizerClassError(SerializationError):
    """Raised when an optimizer class name has no registry entry."""

    def __init__(self, class_name: str, available: list[str] | None = None):
        self.class_name = class_name
        self.available = sorted(available or [])

        message = f"No optimizer registered for class name '{class_name}'."
        if self.available:
            message += f" Registered optimizers: {', '.join(self.available)}"
        else:
            message += " No optimizers are registered."
        super().__init__(message)


class MalformedRecordError(SerializationError):
    """Raised when a serialized record or its training info cannot be parsed."""


class UnsupportedEnvironmentError(SerializationError):
    """Raised when the hosting environment cannot be classified."""
