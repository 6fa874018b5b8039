"""Filesystem storage driver backed by a user supplied volume source."""

from __future__ import annotations

import copy
from typing import Any

from ..constants import COND_STORAGE_EXISTS, CONDITION_TRUE, FILESYSTEM_ROOT_DIRECTORY, STORAGE_VOLUME_NAME
from ..envvar import EnvVar, EnvVars
from ..utils.conditions import set_cr_condition
from . import util


class FilesystemDriver:
    """Serves the registry from ``/registry`` on a pod volume.

    The volume source is taken from the backend config, so the same driver
    serves ``emptyDir`` and ``filesystem`` storage.
    """

    storage_key = "filesystem"

    def __init__(self, config: dict[str, Any]) -> None:
        self.config = copy.deepcopy(config)

    def volume_source(self) -> dict[str, Any]:
        return copy.deepcopy(self.config.get("volumeSource") or {})

    def config_env(self) -> EnvVars:
        return EnvVars([
            EnvVar("REGISTRY_STORAGE", "filesystem"),
            EnvVar("REGISTRY_STORAGE_FILESYSTEM_ROOTDIRECTORY", FILESYSTEM_ROOT_DIRECTORY),
        ])

    def volumes(self) -> tuple[list[dict[str, Any]], list[dict[str, Any]]]:
        volume = {"name": STORAGE_VOLUME_NAME, **self.volume_source()}
        mount = {"name": STORAGE_VOLUME_NAME, "mountPath": FILESYSTEM_ROOT_DIRECTORY}
        return [volume], [mount]

    def volume_secrets(self) -> dict[str, str]:
        return {}

    def secrets(self) -> dict[str, str]:
        return {}

    def storage_exists(self, cr: dict[str, Any]) -> bool:
        set_cr_condition(cr, COND_STORAGE_EXISTS, CONDITION_TRUE, "Filesystem Exists", "")
        return True

    def storage_changed(self, cr: dict[str, Any]) -> bool:
        return util.storage_changed(cr, self.storage_key)

    def create_storage(self, cr: dict[str, Any]) -> None:
        util.persist_storage_config(cr, self.storage_key, self.config)
        set_cr_condition(cr, COND_STORAGE_EXISTS, CONDITION_TRUE, "Filesystem Exists", "")

    def remove_storage(self, cr: dict[str, Any]) -> tuple[bool, Exception | None]:
        return False, None

    def id(self) -> str:
        return ""
