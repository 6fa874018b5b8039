"""Utilities for managing Kubernetes secrets."""

from __future__ import annotations

import base64
import binascii
from typing import Any

from kubernetes import client

from ..constants import FIELD_MANAGER


def decode_secret_data(secret: dict[str, Any] | None) -> dict[str, str]:
    """Decode the ``data`` of a secret read from the API server.

    Args:
        secret: Secret object in API (camelCase dict) form

    Returns:
        Dictionary of decoded secret values
    """
    if not secret:
        return {}
    result: dict[str, str] = {}
    for key, value in (secret.get("data") or {}).items():
        try:
            result[key] = base64.b64decode(value).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError):
            result[key] = value
    for key, value in (secret.get("stringData") or {}).items():
        result[key] = value
    return result


def encode_secret_data(data: dict[str, str]) -> dict[str, str]:
    """Base64 encode secret values for the ``data`` field."""
    return {k: base64.b64encode(v.encode("utf-8")).decode("utf-8") for k, v in data.items()}


def apply_secret(
    api: client.CoreV1Api,
    namespace: str,
    secret_name: str,
    data: dict[str, str],
    existing: dict[str, Any] | None,
    annotations: dict[str, str] | None = None,
) -> bool:
    """Create the secret, or replace its data when it differs.

    Args:
        api: Kubernetes API client
        namespace: Namespace for the secret
        secret_name: Name of the secret
        data: Decoded secret data
        existing: The current secret as read from the API, if any
        annotations: Annotations to set on the secret

    Returns:
        True if the secret was created or updated
    """
    encoded = encode_secret_data(data)

    if existing is None:
        secret = client.V1Secret(
            metadata=client.V1ObjectMeta(
                name=secret_name,
                namespace=namespace,
                annotations=annotations or None,
            ),
            type="Opaque",
            data=encoded,
        )
        api.create_namespaced_secret(namespace=namespace, body=secret, field_manager=FIELD_MANAGER)
        return True

    if (existing.get("data") or {}) == encoded:
        return False

    body = {
        "metadata": {
            "name": secret_name,
            "namespace": namespace,
            "resourceVersion": existing.get("metadata", {}).get("resourceVersion"),
            "annotations": annotations or existing.get("metadata", {}).get("annotations"),
        },
        "type": existing.get("type", "Opaque"),
        "data": encoded,
    }
    api.replace_namespaced_secret(
        name=secret_name, namespace=namespace, body=body, field_manager=FIELD_MANAGER
    )
    return True
