"""Storage driver interface."""

from __future__ import annotations

from typing import Any, Protocol

from ..envvar import EnvVars


class StorageDriver(Protocol):
    """Protocol defining the lifecycle of a registry storage backend.

    Drivers mutate the registry config they are handed (``cr``) to record
    generated names, conditions and the management state. Callers own the
    persistence of those changes.
    """

    def config_env(self) -> EnvVars:
        """Return the registry environment variables for this backend."""
        ...

    def volumes(self) -> tuple[list[dict[str, Any]], list[dict[str, Any]]]:
        """Return the pod volumes and container volume mounts."""
        ...

    def volume_secrets(self) -> dict[str, str]:
        """Return data for the private configuration secret mounted as files."""
        ...

    def secrets(self) -> dict[str, str]:
        """Return data for the private configuration secret used as env vars."""
        ...

    def storage_exists(self, cr: dict[str, Any]) -> bool:
        """Check that the storage exists and set the StorageExists condition."""
        ...

    def storage_changed(self, cr: dict[str, Any]) -> bool:
        """Check whether the desired storage differs from the provisioned one."""
        ...

    def create_storage(self, cr: dict[str, Any]) -> None:
        """Create the storage if needed and record the result in ``cr``."""
        ...

    def remove_storage(self, cr: dict[str, Any]) -> tuple[bool, Exception | None]:
        """Delete storage this operator created.

        Returns:
            A tuple of whether the failure is worth retrying and the error
        """
        ...

    def id(self) -> str:
        """Return an identifier of the storage, such as the bucket name."""
        ...
