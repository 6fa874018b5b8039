"""Helpers shared by the storage drivers."""

from __future__ import annotations

import configparser
import copy
import random
import re
import string
from typing import Any

from kubernetes.client.exceptions import ApiException

from ..clients import Listers
from ..constants import (
    CLOUD_CREDENTIALS_MOUNT_PATH,
    IMAGE_REGISTRY_NAME,
    IMAGE_REGISTRY_PRIVATE_CONFIGURATION,
)
from ..utils.secrets import decode_secret_data

STORAGE_NAME_LENGTH = 62

_MULTI_DASHES = re.compile(r"-{2,}")
# Bucket names use a..y, matching the range older releases generated.
_NAME_LETTERS = string.ascii_lowercase[:25]


def random_letters(length: int, alphabet: str = _NAME_LETTERS) -> str:
    return "".join(random.choice(alphabet) for _ in range(length))


def generate_storage_name(infrastructure_name: str, *additional: str) -> str:
    """Generate a 62 character bucket or container name for the cluster.

    The name starts with ``<infrastructure>-image-registry`` followed by any
    non-empty ``additional`` parts, and is padded with random letters or
    truncated so it is exactly 62 characters long and never ends in a dash.
    """
    parts = [infrastructure_name, IMAGE_REGISTRY_NAME]
    parts.extend(p for p in additional if p)

    name = _MULTI_DASHES.sub("-", "-".join(parts)).lstrip("-").lower()

    if len(name) < STORAGE_NAME_LENGTH - 1:
        padding = STORAGE_NAME_LENGTH - len(name) - 1
        name = f"{name}-{random_letters(padding)}"
    elif len(name) == STORAGE_NAME_LENGTH - 1:
        name += random_letters(1)
    elif len(name) > STORAGE_NAME_LENGTH:
        name = name[:STORAGE_NAME_LENGTH]

    if name.endswith("-"):
        name = name[:-1] + random_letters(1)

    return name


def get_infrastructure(listers: Listers) -> dict[str, Any]:
    """Read the cluster Infrastructure and make sure ``platformStatus`` is set."""
    infra = listers.get_infrastructure()
    status = infra.setdefault("status", {})
    if not status.get("platformStatus"):
        status["platformStatus"] = {"type": status.get("platform", "")}
    return infra


def platform_status(infra: dict[str, Any]) -> dict[str, Any]:
    return infra.get("status", {}).get("platformStatus") or {}


def infrastructure_name(infra: dict[str, Any]) -> str:
    return infra.get("status", {}).get("infrastructureName", "")


def get_secret_data(listers: Listers, name: str) -> dict[str, str] | None:
    """Return the decoded data of a secret, or None if it does not exist."""
    try:
        secret = listers.get_secret(name)
    except ApiException as e:
        if e.status == 404:
            return None
        raise
    return decode_secret_data(secret)


def get_value_from_secret(data: dict[str, str], secret_name: str, key: str) -> str:
    """Return ``data[key]`` or raise a descriptive error when it is missing."""
    if key not in data:
        raise KeyError(f"secret {secret_name!r} does not contain required key {key!r}")
    return data[key]


def get_storage_config(cr: dict[str, Any], key: str, source: str = "spec") -> dict[str, Any] | None:
    """Return ``cr[source].storage[key]``, or None when that backend is not set."""
    storage = (cr.get(source) or {}).get("storage") or {}
    return storage.get(key)


def management_state(cr: dict[str, Any]) -> str:
    """Return the storage management state from the spec."""
    return ((cr.get("spec") or {}).get("storage") or {}).get("managementState", "") or ""


def set_management_state_if_empty(cr: dict[str, Any], state: str) -> None:
    """Record who manages the storage unless the user has already decided."""
    storage = cr.setdefault("spec", {}).setdefault("storage", {})
    if not storage.get("managementState"):
        storage["managementState"] = state


def persist_storage_config(
    cr: dict[str, Any],
    key: str,
    config: dict[str, Any],
    spec: bool = True,
    status: bool = True,
) -> None:
    """Copy the effective backend config into the spec and status storage."""
    if spec:
        cr.setdefault("spec", {}).setdefault("storage", {})[key] = copy.deepcopy(config)
    if status:
        if not cr.get("status"):
            cr["status"] = {}
        previous = cr["status"].get("storage") or {}
        new_storage: dict[str, Any] = {key: copy.deepcopy(config)}
        if "managementState" in previous:
            new_storage["managementState"] = previous["managementState"]
        cr["status"]["storage"] = new_storage


def set_storage_managed(cr: dict[str, Any], managed: bool) -> None:
    if not cr.get("status"):
        cr["status"] = {}
    cr["status"]["storageManaged"] = managed


def storage_changed(cr: dict[str, Any], key: str) -> bool:
    """Check whether the spec config of a backend differs from its status."""
    return get_storage_config(cr, key, "spec") != get_storage_config(cr, key, "status")


def credentials_volume() -> tuple[dict[str, Any], dict[str, Any]]:
    """Volume and mount exposing the private configuration secret as files."""
    volume = {
        "name": IMAGE_REGISTRY_PRIVATE_CONFIGURATION,
        "secret": {
            "secretName": IMAGE_REGISTRY_PRIVATE_CONFIGURATION,
            "optional": False,
        },
    }
    mount = {
        "name": IMAGE_REGISTRY_PRIVATE_CONFIGURATION,
        "mountPath": CLOUD_CREDENTIALS_MOUNT_PATH,
        "readOnly": True,
    }
    return volume, mount


def parse_credentials_file(data: str, section: str = "default") -> dict[str, str]:
    """Parse an ini style shared credentials file and return one section."""
    parser = configparser.ConfigParser()
    parser.read_string(data)
    if not parser.has_section(section):
        return {}
    return dict(parser.items(section))
