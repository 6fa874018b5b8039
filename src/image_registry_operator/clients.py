"""Kubernetes API access for controllers and storage drivers."""

from __future__ import annotations

import time
from typing import Any, Callable

from kubernetes import client, config

from . import metrics
from .constants import (
    API_GROUP,
    API_VERSION,
    CONFIG_API_GROUP,
    IMAGE_REGISTRY_RESOURCE_NAME,
    INFRASTRUCTURE_NAME,
    NAMESPACE,
    PLURAL_CONFIGS,
    PLURAL_IMAGE_PRUNERS,
    PLURAL_INFRASTRUCTURES,
    PLURAL_ROUTES,
    ROUTE_API_GROUP,
)
from .utils.rate_limit import rate_limit_k8s


def load_kube_config() -> None:
    """Load in-cluster configuration, falling back to the local kubeconfig."""
    try:
        config.load_incluster_config()
    except config.ConfigException:
        config.load_kube_config()


def _call(operation: str, fn: Callable[..., Any], **kwargs: Any) -> Any:
    start_time = time.time()
    try:
        result = rate_limit_k8s(fn)(**kwargs)
        metrics.api_call_total.labels(api_type="k8s", operation=operation, result="success").inc()
        return result
    except client.exceptions.ApiException as e:
        result_label = "not_found" if e.status == 404 else "error"
        metrics.api_call_total.labels(api_type="k8s", operation=operation, result=result_label).inc()
        raise
    finally:
        duration = time.time() - start_time
        metrics.api_call_duration_seconds.labels(api_type="k8s", operation=operation).observe(duration)


class Clients:
    """Typed Kubernetes API clients used to write objects."""

    def __init__(
        self,
        core: client.CoreV1Api,
        apps: client.AppsV1Api,
        batch: client.BatchV1Api,
        custom: client.CustomObjectsApi,
    ) -> None:
        self.core = core
        self.apps = apps
        self.batch = batch
        self.custom = custom

    @classmethod
    def from_config(cls) -> "Clients":
        load_kube_config()
        return cls(
            core=client.CoreV1Api(),
            apps=client.AppsV1Api(),
            batch=client.BatchV1Api(),
            custom=client.CustomObjectsApi(),
        )

    # Registry config

    def create_config(self, body: dict[str, Any]) -> dict[str, Any]:
        return _call(
            "create_config",
            self.custom.create_cluster_custom_object,
            group=API_GROUP, version=API_VERSION, plural=PLURAL_CONFIGS, body=body,
        )

    def update_config(self, body: dict[str, Any]) -> dict[str, Any]:
        return _call(
            "update_config",
            self.custom.replace_cluster_custom_object,
            group=API_GROUP, version=API_VERSION, plural=PLURAL_CONFIGS,
            name=body["metadata"]["name"], body=body,
        )

    def update_config_status(self, body: dict[str, Any]) -> dict[str, Any]:
        return _call(
            "update_config_status",
            self.custom.replace_cluster_custom_object_status,
            group=API_GROUP, version=API_VERSION, plural=PLURAL_CONFIGS,
            name=body["metadata"]["name"], body=body,
        )

    # Storage

    def create_pvc(self, namespace: str, body: dict[str, Any]) -> Any:
        return _call(
            "create_pvc",
            self.core.create_namespaced_persistent_volume_claim,
            namespace=namespace, body=body,
        )

    def delete_pvc(self, namespace: str, name: str) -> Any:
        return _call(
            "delete_pvc",
            self.core.delete_namespaced_persistent_volume_claim,
            name=name, namespace=namespace,
        )

    # Workloads

    def create_deployment(self, namespace: str, body: dict[str, Any]) -> Any:
        return _call(
            "create_deployment",
            self.apps.create_namespaced_deployment,
            namespace=namespace, body=body,
        )

    def replace_deployment(self, namespace: str, body: dict[str, Any]) -> Any:
        return _call(
            "replace_deployment",
            self.apps.replace_namespaced_deployment,
            name=body["metadata"]["name"], namespace=namespace, body=body,
        )

    def delete_deployment(self, namespace: str, name: str) -> Any:
        return _call(
            "delete_deployment",
            self.apps.delete_namespaced_deployment,
            name=name, namespace=namespace,
        )

    def delete_secret(self, namespace: str, name: str) -> Any:
        return _call(
            "delete_secret",
            self.core.delete_namespaced_secret,
            name=name, namespace=namespace,
        )

    # Exposure

    def create_service(self, namespace: str, body: dict[str, Any]) -> Any:
        return _call(
            "create_service",
            self.core.create_namespaced_service,
            namespace=namespace, body=body,
        )

    def replace_service(self, namespace: str, body: dict[str, Any]) -> Any:
        return _call(
            "replace_service",
            self.core.replace_namespaced_service,
            name=body["metadata"]["name"], namespace=namespace, body=body,
        )

    def delete_service(self, namespace: str, name: str) -> Any:
        return _call(
            "delete_service",
            self.core.delete_namespaced_service,
            name=name, namespace=namespace,
        )

    def create_route(self, namespace: str, body: dict[str, Any]) -> dict[str, Any]:
        return _call(
            "create_route",
            self.custom.create_namespaced_custom_object,
            group=ROUTE_API_GROUP, version="v1", namespace=namespace, plural=PLURAL_ROUTES, body=body,
        )

    def replace_route(self, namespace: str, body: dict[str, Any]) -> dict[str, Any]:
        return _call(
            "replace_route",
            self.custom.replace_namespaced_custom_object,
            group=ROUTE_API_GROUP, version="v1", namespace=namespace, plural=PLURAL_ROUTES,
            name=body["metadata"]["name"], body=body,
        )

    def delete_route(self, namespace: str, name: str) -> Any:
        return _call(
            "delete_route",
            self.custom.delete_namespaced_custom_object,
            group=ROUTE_API_GROUP, version="v1", namespace=namespace, plural=PLURAL_ROUTES, name=name,
        )

    # Image pruner

    def create_cronjob(self, namespace: str, body: dict[str, Any]) -> Any:
        return _call(
            "create_cronjob",
            self.batch.create_namespaced_cron_job,
            namespace=namespace, body=body,
        )

    def replace_cronjob(self, namespace: str, body: dict[str, Any]) -> Any:
        return _call(
            "replace_cronjob",
            self.batch.replace_namespaced_cron_job,
            name=body["metadata"]["name"], namespace=namespace, body=body,
        )

    def delete_cronjob(self, namespace: str, name: str) -> Any:
        return _call(
            "delete_cronjob",
            self.batch.delete_namespaced_cron_job,
            name=name, namespace=namespace,
        )

    def create_image_pruner(self, body: dict[str, Any]) -> dict[str, Any]:
        return _call(
            "create_image_pruner",
            self.custom.create_cluster_custom_object,
            group=API_GROUP, version=API_VERSION, plural=PLURAL_IMAGE_PRUNERS, body=body,
        )

    def update_image_pruner_status(self, body: dict[str, Any]) -> dict[str, Any]:
        return _call(
            "update_image_pruner_status",
            self.custom.replace_cluster_custom_object_status,
            group=API_GROUP, version=API_VERSION, plural=PLURAL_IMAGE_PRUNERS,
            name=body["metadata"]["name"], body=body,
        )


class Listers:
    """Point reads of cluster objects, returned as API-form dicts.

    Every getter raises ``ApiException`` (status 404) when the object is
    missing. Returned dicts are fresh copies, callers may mutate them.
    """

    def __init__(self, clients: Clients, namespace: str = NAMESPACE) -> None:
        self.clients = clients
        self.namespace = namespace
        self._api_client = client.ApiClient()

    def _serialize(self, obj: Any) -> dict[str, Any]:
        return self._api_client.sanitize_for_serialization(obj)

    def get_registry_config(self, name: str = IMAGE_REGISTRY_RESOURCE_NAME) -> dict[str, Any]:
        return _call(
            "get_config",
            self.clients.custom.get_cluster_custom_object,
            group=API_GROUP, version=API_VERSION, plural=PLURAL_CONFIGS, name=name,
        )

    def get_image_pruner(self, name: str = IMAGE_REGISTRY_RESOURCE_NAME) -> dict[str, Any]:
        return _call(
            "get_image_pruner",
            self.clients.custom.get_cluster_custom_object,
            group=API_GROUP, version=API_VERSION, plural=PLURAL_IMAGE_PRUNERS, name=name,
        )

    def get_infrastructure(self, name: str = INFRASTRUCTURE_NAME) -> dict[str, Any]:
        return _call(
            "get_infrastructure",
            self.clients.custom.get_cluster_custom_object,
            group=CONFIG_API_GROUP, version="v1", plural=PLURAL_INFRASTRUCTURES, name=name,
        )

    def get_secret(self, name: str) -> dict[str, Any]:
        return self._serialize(_call(
            "get_secret",
            self.clients.core.read_namespaced_secret,
            name=name, namespace=self.namespace,
        ))

    def get_pvc(self, name: str) -> dict[str, Any]:
        return self._serialize(_call(
            "get_pvc",
            self.clients.core.read_namespaced_persistent_volume_claim,
            name=name, namespace=self.namespace,
        ))

    def get_deployment(self, name: str) -> dict[str, Any]:
        return self._serialize(_call(
            "get_deployment",
            self.clients.apps.read_namespaced_deployment,
            name=name, namespace=self.namespace,
        ))

    def get_service(self, name: str) -> dict[str, Any]:
        return self._serialize(_call(
            "get_service",
            self.clients.core.read_namespaced_service,
            name=name, namespace=self.namespace,
        ))

    def get_route(self, name: str) -> dict[str, Any]:
        return _call(
            "get_route",
            self.clients.custom.get_namespaced_custom_object,
            group=ROUTE_API_GROUP, version="v1", namespace=self.namespace,
            plural=PLURAL_ROUTES, name=name,
        )

    def get_cronjob(self, name: str) -> dict[str, Any]:
        return self._serialize(_call(
            "get_cronjob",
            self.clients.batch.read_namespaced_cron_job,
            name=name, namespace=self.namespace,
        ))

    def list_jobs(self, label_selector: str) -> list[dict[str, Any]]:
        result = _call(
            "list_jobs",
            self.clients.batch.list_namespaced_job,
            namespace=self.namespace, label_selector=label_selector,
        )
        return [self._serialize(job) for job in result.items]
