"""Error types raised by storage drivers and controllers."""

from __future__ import annotations


class OperatorError(Exception):
    """Base class for image registry operator errors."""


class StorageNotConfiguredError(OperatorError):
    """No storage backend is configured in the registry config."""

    def __init__(self, message: str = "storage backend not configured") -> None:
        super().__init__(message)


class MultiStoragesError(OperatorError):
    """More than one storage backend is configured."""

    def __init__(self, names: list[str]) -> None:
        self.names = names
        super().__init__(
            f"exactly one storage type should be configured at the same time, "
            f"got {len(names)}: {names}"
        )


class StorageDoesNotExistError(OperatorError):
    """The configured storage account or bucket could not be found."""


class AzureConfigError(OperatorError):
    """The Azure credentials or storage configuration are unusable."""


class ValidationError(OperatorError):
    """The registry config spec is invalid."""


class StorageError(OperatorError):
    """A storage backend rejected a provisioning step.

    Attributes:
        reason: Short machine readable cause, usually the backend error code
    """

    def __init__(self, message: str, reason: str = "") -> None:
        self.reason = reason
        super().__init__(message)
