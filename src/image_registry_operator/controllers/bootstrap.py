"""Initial registry config and image pruner resources."""

from __future__ import annotations

import logging
from secrets import token_hex
from typing import Any

from ..clients import Clients, Listers
from ..constants import (
    API_GROUP_VERSION,
    FINALIZER,
    IMAGE_REGISTRY_RESOURCE_NAME,
    KIND_CONFIG,
    KIND_IMAGE_PRUNER,
    MANAGEMENT_STATE_MANAGED,
    MANAGEMENT_STATE_REMOVED,
    PRUNER_DEFAULT_HISTORY_LIMIT,
    PRUNER_DEFAULT_KEEP_TAG_REVISIONS,
    ROLLOUT_ROLLING_UPDATE,
)
from ..storage import get_platform_storage

logger = logging.getLogger(__name__)


def new_registry_config(storage: dict[str, Any], replicas: int) -> dict[str, Any]:
    """Build the default registry config for the platform storage.

    Platforms without a default storage start in the Removed state.
    """
    state = MANAGEMENT_STATE_MANAGED if storage else MANAGEMENT_STATE_REMOVED
    return {
        "apiVersion": API_GROUP_VERSION,
        "kind": KIND_CONFIG,
        "metadata": {
            "name": IMAGE_REGISTRY_RESOURCE_NAME,
            "finalizers": [FINALIZER],
        },
        "spec": {
            "managementState": state,
            "logLevel": "Normal",
            "storage": storage,
            "replicas": replicas,
            "httpSecret": token_hex(64),
            "rolloutStrategy": ROLLOUT_ROLLING_UPDATE,
        },
    }


def new_image_pruner() -> dict[str, Any]:
    return {
        "apiVersion": API_GROUP_VERSION,
        "kind": KIND_IMAGE_PRUNER,
        "metadata": {"name": IMAGE_REGISTRY_RESOURCE_NAME},
        "spec": {
            "suspend": False,
            "keepTagRevisions": PRUNER_DEFAULT_KEEP_TAG_REVISIONS,
            "successfulJobsHistoryLimit": PRUNER_DEFAULT_HISTORY_LIMIT,
            "failedJobsHistoryLimit": PRUNER_DEFAULT_HISTORY_LIMIT,
            "ignoreInvalidImageReferences": True,
            "schedule": "",
        },
    }


def bootstrap_registry_config(listers: Listers, clients: Clients) -> dict[str, Any]:
    """Create the ``cluster`` registry config with platform defaults."""
    storage, replicas = get_platform_storage(listers)
    cr = new_registry_config(storage, replicas)
    logger.info(
        f"Bootstrapping registry config {IMAGE_REGISTRY_RESOURCE_NAME} "
        f"(storage: {', '.join(storage) or 'none'}, replicas: {replicas})"
    )
    return clients.create_config(cr)


def bootstrap_image_pruner(clients: Clients) -> dict[str, Any]:
    """Create the ``cluster`` image pruner with its defaults."""
    logger.info(f"Bootstrapping image pruner {IMAGE_REGISTRY_RESOURCE_NAME}")
    return clients.create_image_pruner(new_image_pruner())
