"""Storage drivers and backend selection."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable

from ..clients import Clients, Listers
from ..errors import MultiStoragesError, StorageNotConfiguredError
from ..utils.cache import CredentialCache
from . import util
from .azure import AzureDriver
from .base import StorageDriver
from .emptydir import EmptyDirDriver
from .filesystem import FilesystemDriver
from .ibmcos import IBMCOSDriver
from .oss import OSSDriver
from .pvc import PVCDriver
from .s3 import S3Driver

__all__ = [
    "BACKENDS",
    "DriverDependencies",
    "StorageDriver",
    "configured_backends",
    "get_platform_storage",
    "new_driver",
]


@dataclass
class DriverDependencies:
    """Shared collaborators handed to every driver."""

    listers: Listers
    clients: Clients
    key_cache: CredentialCache


DriverFactory = Callable[[dict[str, Any], DriverDependencies], StorageDriver]


@dataclass(frozen=True)
class Backend:
    display_name: str
    factory: DriverFactory


# Keyed by the field name of the backend in ``spec.storage``.
BACKENDS: dict[str, Backend] = {
    "emptyDir": Backend("EmptyDir", lambda cfg, deps: EmptyDirDriver(cfg)),
    "filesystem": Backend("Filesystem", lambda cfg, deps: FilesystemDriver(cfg)),
    "s3": Backend("S3", lambda cfg, deps: S3Driver(cfg, deps.listers)),
    "ibmcos": Backend("IBMCOS", lambda cfg, deps: IBMCOSDriver(cfg, deps.listers)),
    "oss": Backend("OSS", lambda cfg, deps: OSSDriver(cfg, deps.listers)),
    "pvc": Backend("PVC", lambda cfg, deps: PVCDriver(cfg, deps.listers, deps.clients)),
    "azure": Backend("Azure", lambda cfg, deps: AzureDriver(cfg, deps.listers, deps.key_cache)),
}

CLOUD_BACKENDS = ("s3", "ibmcos", "oss", "azure")

_PLATFORM_STORAGE = {
    "AWS": "s3",
    "Azure": "azure",
    "AlibabaCloud": "oss",
    "IBMCloud": "ibmcos",
    "PowerVS": "ibmcos",
}

# Platforms without a storage default; the registry is bootstrapped as Removed.
_PLATFORMS_WITHOUT_STORAGE = ("BareMetal", "None", "OpenStack", "oVirt", "VSphere")


def configured_backends(storage: dict[str, Any] | None) -> list[str]:
    """Return the backend keys set in a storage union, in registry order."""
    storage = storage or {}
    return [key for key in BACKENDS if storage.get(key) is not None]


def new_driver(storage: dict[str, Any] | None, deps: DriverDependencies) -> StorageDriver:
    """Build the driver for the single backend configured in ``storage``.

    Raises:
        StorageNotConfiguredError: If no backend is configured
        MultiStoragesError: If more than one backend is configured
    """
    keys = configured_backends(storage)
    if not keys:
        raise StorageNotConfiguredError()
    if len(keys) > 1:
        raise MultiStoragesError([BACKENDS[key].display_name for key in keys])

    key = keys[0]
    return BACKENDS[key].factory(storage[key], deps)


def get_platform_storage(listers: Listers) -> tuple[dict[str, Any], int]:
    """Pick the default storage and replica count for the cluster platform.

    Returns:
        The storage union (empty when the platform has no default) and the
        number of registry replicas
    """
    infra = util.get_infrastructure(listers)
    platform = util.platform_status(infra).get("type", "")

    if platform in _PLATFORMS_WITHOUT_STORAGE:
        return {}, 1

    key = _PLATFORM_STORAGE.get(platform, "emptyDir")
    replicas = 2 if key in CLOUD_BACKENDS else 1
    return {key: {}}, replicas
