"""PersistentVolumeClaim storage driver."""

from __future__ import annotations

import copy
import logging
from typing import Any

from kubernetes.client.exceptions import ApiException

from ..clients import Clients, Listers
from ..constants import (
    COND_STORAGE_EXISTS,
    CONDITION_FALSE,
    CONDITION_TRUE,
    CONDITION_UNKNOWN,
    FILESYSTEM_ROOT_DIRECTORY,
    PVC_DEFAULT_SIZE,
    PVC_IMAGE_REGISTRY_NAME,
    PVC_OWNER_ANNOTATION,
    ROLLOUT_RECREATE,
    STORAGE_VOLUME_NAME,
)
from ..envvar import EnvVar, EnvVars
from ..errors import StorageError
from ..utils.conditions import set_cr_condition
from ..utils.errors import sanitize_exception
from . import util

logger = logging.getLogger(__name__)

STORAGE_KEY = "pvc"

ACCESS_MODE_RWX = "ReadWriteMany"
ACCESS_MODE_RWO = "ReadWriteOnce"


def is_created_by_operator(claim: dict[str, Any]) -> bool:
    return PVC_OWNER_ANNOTATION in ((claim.get("metadata") or {}).get("annotations") or {})


class PVCDriver:
    """Mounts a PersistentVolumeClaim as the registry filesystem."""

    def __init__(self, config: dict[str, Any], listers: Listers, clients: Clients) -> None:
        self.config = copy.deepcopy(config)
        self.listers = listers
        self.clients = clients

    def config_env(self) -> EnvVars:
        return EnvVars([
            EnvVar("REGISTRY_STORAGE", "filesystem"),
            EnvVar("REGISTRY_STORAGE_FILESYSTEM_ROOTDIRECTORY", FILESYSTEM_ROOT_DIRECTORY),
        ])

    def volumes(self) -> tuple[list[dict[str, Any]], list[dict[str, Any]]]:
        volume = {
            "name": STORAGE_VOLUME_NAME,
            "persistentVolumeClaim": {"claimName": self.config.get("claim", "")},
        }
        mount = {"name": STORAGE_VOLUME_NAME, "mountPath": FILESYSTEM_ROOT_DIRECTORY}
        return [volume], [mount]

    def volume_secrets(self) -> dict[str, str]:
        return {}

    def secrets(self) -> dict[str, str]:
        return {}

    def storage_exists(self, cr: dict[str, Any]) -> bool:
        claim = self.config.get("claim", "")
        if claim:
            try:
                self.listers.get_pvc(claim)
            except ApiException as e:
                if e.status != 404:
                    set_cr_condition(
                        cr, COND_STORAGE_EXISTS, CONDITION_UNKNOWN,
                        f"Unknown error occurred checking for volume claim {claim}", sanitize_exception(e),
                    )
                    raise
            else:
                set_cr_condition(cr, COND_STORAGE_EXISTS, CONDITION_TRUE, "PVC Exists", "")
                return True

        set_cr_condition(cr, COND_STORAGE_EXISTS, CONDITION_FALSE, "PVC does not exist", "")
        return False

    def storage_changed(self, cr: dict[str, Any]) -> bool:
        if not util.storage_changed(cr, STORAGE_KEY):
            return False
        set_cr_condition(
            cr, COND_STORAGE_EXISTS, CONDITION_UNKNOWN, "PVC Configuration Changed", "PVC storage is in an old state"
        )
        return True

    def _check_access_modes(self, cr: dict[str, Any], claim: dict[str, Any]) -> None:
        """Raise StorageError unless the claim can be shared by the registry pods."""
        modes = (claim.get("spec") or {}).get("accessModes") or []
        if ACCESS_MODE_RWX in modes:
            return

        if ACCESS_MODE_RWO in modes:
            spec = cr.get("spec") or {}
            if (spec.get("replicas") or 0) > 1:
                raise StorageError(
                    f"cannot use {ACCESS_MODE_RWO} access mode with more than one replica of the image registry"
                )
            strategy = spec.get("rolloutStrategy", "")
            if strategy != ROLLOUT_RECREATE:
                raise StorageError(f"cannot use {ACCESS_MODE_RWO} access mode with {strategy} rollout strategy")
            return

        raise StorageError(
            f"PVC {self.config.get('claim')} does not contain the necessary access modes: "
            f"{ACCESS_MODE_RWX} or {ACCESS_MODE_RWO}"
        )

    def _create_claim(self) -> dict[str, Any]:
        body = {
            "apiVersion": "v1",
            "kind": "PersistentVolumeClaim",
            "metadata": {
                "name": self.config["claim"],
                "namespace": self.listers.namespace,
                "annotations": {PVC_OWNER_ANNOTATION: "true"},
            },
            "spec": {
                "accessModes": [ACCESS_MODE_RWX],
                "resources": {"requests": {"storage": PVC_DEFAULT_SIZE}},
            },
        }
        logger.info(f"Creating PVC {self.listers.namespace}/{self.config['claim']}")
        self.clients.create_pvc(self.listers.namespace, body)
        return body

    def _default_claim(self, cr: dict[str, Any]) -> dict[str, Any]:
        self.config["claim"] = PVC_IMAGE_REGISTRY_NAME
        try:
            claim = self.listers.get_pvc(PVC_IMAGE_REGISTRY_NAME)
        except ApiException as e:
            if e.status != 404:
                raise
        else:
            if not is_created_by_operator(claim):
                message = "could not create default PVC, it already exists and is not owned by the operator"
                set_cr_condition(cr, COND_STORAGE_EXISTS, CONDITION_FALSE, "PVC Already Exists", message)
                raise StorageError(message, reason="PVC Already Exists")
            return claim

        try:
            claim = self._create_claim()
        except ApiException as e:
            set_cr_condition(cr, COND_STORAGE_EXISTS, CONDITION_FALSE, "Creation Failed", sanitize_exception(e))
            raise
        set_cr_condition(cr, COND_STORAGE_EXISTS, CONDITION_TRUE, "PVC Created", "")
        return claim

    def create_storage(self, cr: dict[str, Any]) -> None:
        claim_name = self.config.get("claim", "")
        storage_managed = not claim_name or claim_name == PVC_IMAGE_REGISTRY_NAME

        try:
            if storage_managed:
                claim = self._default_claim(cr)
            else:
                claim = self.listers.get_pvc(claim_name)
                set_cr_condition(cr, COND_STORAGE_EXISTS, CONDITION_TRUE, "PVC Exists", "")
            self._check_access_modes(cr, claim)
        except StorageError as e:
            if e.reason != "PVC Already Exists":
                set_cr_condition(cr, COND_STORAGE_EXISTS, CONDITION_FALSE, "PVC Issues Found", str(e))
            raise
        except ApiException as e:
            if e.status != 404:
                raise
            set_cr_condition(cr, COND_STORAGE_EXISTS, CONDITION_FALSE, "PVC Issues Found", sanitize_exception(e))
            raise StorageError(f"persistentvolumeclaim {claim_name} not found", reason="PVC Issues Found") from e

        util.set_storage_managed(cr, storage_managed)
        util.persist_storage_config(cr, STORAGE_KEY, self.config)

    def remove_storage(self, cr: dict[str, Any]) -> tuple[bool, Exception | None]:
        if not (cr.get("status") or {}).get("storageManaged") or not self.config.get("claim"):
            return False, None

        try:
            self.clients.delete_pvc(self.listers.namespace, self.config["claim"])
        except ApiException as e:
            if e.status != 404:
                return False, e
        return False, None

    def id(self) -> str:
        return self.config.get("claim", "")
