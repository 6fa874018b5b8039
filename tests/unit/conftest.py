"""Shared fixtures for unit tests."""

from __future__ import annotations

import base64
import copy
from typing import Any
from unittest.mock import MagicMock

import pytest
from kubernetes.client.exceptions import ApiException


class FakeListers:
    """In-memory stand-in for ``clients.Listers``.

    Getters raise ``ApiException(status=404)`` for missing objects, like the
    real listers.
    """

    def __init__(self, namespace: str = "openshift-image-registry") -> None:
        self.namespace = namespace
        self.secrets: dict[str, dict[str, Any]] = {}
        self.pvcs: dict[str, dict[str, Any]] = {}
        self.deployments: dict[str, dict[str, Any]] = {}
        self.services: dict[str, dict[str, Any]] = {}
        self.routes: dict[str, dict[str, Any]] = {}
        self.cronjobs: dict[str, dict[str, Any]] = {}
        self.jobs: list[dict[str, Any]] = []
        self.registry_config: dict[str, Any] | None = None
        self.image_pruner: dict[str, Any] | None = None
        self.infrastructure: dict[str, Any] = {
            "metadata": {"name": "cluster"},
            "status": {
                "infrastructureName": "test-abc12",
                "platformStatus": {"type": "None"},
            },
        }

    def add_secret(self, name: str, data: dict[str, str]) -> None:
        encoded = {k: base64.b64encode(v.encode("utf-8")).decode("utf-8") for k, v in data.items()}
        self.secrets[name] = {"metadata": {"name": name, "namespace": self.namespace}, "data": encoded}

    def set_platform(self, platform_status: dict[str, Any]) -> None:
        self.infrastructure["status"]["platformStatus"] = platform_status

    @staticmethod
    def _get(store: dict[str, dict[str, Any]], name: str) -> dict[str, Any]:
        if name not in store:
            raise ApiException(status=404, reason="Not Found")
        return copy.deepcopy(store[name])

    def get_secret(self, name: str) -> dict[str, Any]:
        return self._get(self.secrets, name)

    def get_pvc(self, name: str) -> dict[str, Any]:
        return self._get(self.pvcs, name)

    def get_deployment(self, name: str) -> dict[str, Any]:
        return self._get(self.deployments, name)

    def get_service(self, name: str) -> dict[str, Any]:
        return self._get(self.services, name)

    def get_route(self, name: str) -> dict[str, Any]:
        return self._get(self.routes, name)

    def get_cronjob(self, name: str) -> dict[str, Any]:
        return self._get(self.cronjobs, name)

    def list_jobs(self, label_selector: str) -> list[dict[str, Any]]:
        return copy.deepcopy(self.jobs)

    def get_infrastructure(self, name: str = "cluster") -> dict[str, Any]:
        return copy.deepcopy(self.infrastructure)

    def get_registry_config(self, name: str = "cluster") -> dict[str, Any]:
        if self.registry_config is None:
            raise ApiException(status=404, reason="Not Found")
        return copy.deepcopy(self.registry_config)

    def get_image_pruner(self, name: str = "cluster") -> dict[str, Any]:
        if self.image_pruner is None:
            raise ApiException(status=404, reason="Not Found")
        return copy.deepcopy(self.image_pruner)


@pytest.fixture
def listers() -> FakeListers:
    return FakeListers()


@pytest.fixture
def clients() -> MagicMock:
    return MagicMock()


@pytest.fixture
def empty_cr() -> dict[str, Any]:
    return {
        "metadata": {"name": "cluster", "generation": 1, "resourceVersion": "1"},
        "spec": {"managementState": "Managed", "storage": {}},
        "status": {},
    }
