"""Apply the registry storage, private configuration, deployment, service and routes."""

from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import dataclass
from typing import Any, Callable

from kubernetes.client.exceptions import ApiException

from .. import metrics
from ..clients import Clients, Listers
from ..constants import (
    CHECKSUM_ANNOTATION,
    DEFAULT_ROUTE_NAME,
    FINALIZER,
    IMAGE_REGISTRY_NAME,
    IMAGE_REGISTRY_PRIVATE_CONFIGURATION,
    REGISTRY_IMAGE,
    REGISTRY_LABELS,
    REGISTRY_PORT,
    ROLLOUT_ROLLING_UPDATE,
    ROUTE_API_GROUP,
    ROUTE_TLS_TERMINATION,
)
from ..envvar import EnvVar, EnvVars
from ..errors import MultiStoragesError, StorageError, StorageNotConfiguredError, ValidationError
from ..storage import DriverDependencies, StorageDriver, configured_backends, new_driver
from ..utils.cache import CredentialCache
from ..utils.errors import sanitize_exception
from ..utils.rate_limit import is_not_found
from ..utils.secrets import apply_secret, decode_secret_data

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ApplyResult:
    """Outcome of an apply step.

    ``error`` is None on success. A fatal result is reported through the
    conditions only and never requeued with backoff.
    """

    error: Exception | None = None
    fatal: bool = False
    reason: str = ""

    @classmethod
    def ok(cls) -> "ApplyResult":
        return cls()

    @classmethod
    def retryable(cls, error: Exception) -> "ApplyResult":
        return cls(error=error, reason="Error")

    @classmethod
    def permanent(cls, error: Exception, reason: str) -> "ApplyResult":
        return cls(error=error, fatal=True, reason=reason)

    @property
    def message(self) -> str:
        return sanitize_exception(self.error) if self.error is not None else ""


def classify_error(error: Exception) -> ApplyResult:
    """Wrap ``error`` as a fatal or retryable result."""
    if isinstance(error, StorageNotConfiguredError):
        return ApplyResult.permanent(error, "StorageNotConfigured")
    if isinstance(error, MultiStoragesError):
        return ApplyResult.permanent(error, "MultipleStoragesConfigured")
    if isinstance(error, ValidationError):
        return ApplyResult.permanent(error, "ValidationFailed")
    if isinstance(error, StorageError):
        return ApplyResult.permanent(error, error.reason or "StorageError")
    return ApplyResult.retryable(error)


def ensure_finalizer(cr: dict[str, Any]) -> None:
    finalizers = cr.setdefault("metadata", {}).setdefault("finalizers", [])
    if FINALIZER not in finalizers:
        finalizers.append(FINALIZER)


def remove_finalizer(cr: dict[str, Any]) -> None:
    meta = cr.get("metadata") or {}
    finalizers = meta.get("finalizers") or []
    if FINALIZER in finalizers:
        finalizers.remove(FINALIZER)
        meta["finalizers"] = finalizers


def validate(cr: dict[str, Any]) -> None:
    """Reject specs the registry cannot be deployed from.

    Raises:
        ValidationError: If replicas are negative or route names repeat
    """
    spec = cr.get("spec") or {}
    replicas = spec.get("replicas") or 0
    if replicas < 0:
        raise ValidationError(f"replicas must be greater than or equal to 0, got {replicas}")

    seen: set[str] = set()
    for route in spec.get("routes") or []:
        name = route.get("name", "")
        if name in seen:
            raise ValidationError(f"duplication of names has been detected in the additional routes: {name}")
        seen.add(name)


def _checksum(obj: Any) -> str:
    return hashlib.sha256(json.dumps(obj, sort_keys=True).encode("utf-8")).hexdigest()


def _with_checksum(obj: dict[str, Any]) -> dict[str, Any]:
    obj["metadata"].setdefault("annotations", {})[CHECKSUM_ANNOTATION] = _checksum(obj["spec"])
    return obj


def route_specs(spec: dict[str, Any]) -> list[dict[str, Any]]:
    """Return the Routes requested by a config spec, the default route first."""
    routes = [{"name": DEFAULT_ROUTE_NAME}] if spec.get("defaultRoute") else []
    routes.extend(spec.get("routes") or [])
    return routes


class Applier:
    """Creates, updates and removes the objects backing the registry."""

    def __init__(
        self,
        listers: Listers,
        clients: Clients,
        key_cache: CredentialCache,
        driver_factory: Callable[[dict[str, Any] | None, DriverDependencies], StorageDriver] = new_driver,
    ) -> None:
        self.listers = listers
        self.clients = clients
        self.key_cache = key_cache
        self.driver_factory = driver_factory

    @property
    def namespace(self) -> str:
        return self.listers.namespace

    def driver(self, cr: dict[str, Any]) -> StorageDriver:
        storage = (cr.get("spec") or {}).get("storage")
        return self.driver_factory(storage, DriverDependencies(self.listers, self.clients, self.key_cache))

    def create_or_update_resources(self, cr: dict[str, Any]) -> ApplyResult:
        """Bring the storage, private configuration, deployment and exposure up to date.

        Args:
            cr: Registry config, mutated with storage names and conditions

        Returns:
            The apply result, never raises for driver or API errors
        """
        ensure_finalizer(cr)
        try:
            validate(cr)
            driver = self.driver(cr)
            self._apply_storage(cr, driver)
            self._apply_private_configuration(driver)
            self._apply_deployment(cr, driver)
            self._apply_service()
            self._apply_routes(cr)
        except Exception as e:
            logger.warning(f"Unable to apply registry resources: {sanitize_exception(e)}")
            return classify_error(e)
        return ApplyResult.ok()

    def _apply_storage(self, cr: dict[str, Any], driver: StorageDriver) -> None:
        key = configured_backends((cr.get("spec") or {}).get("storage"))[0]
        metrics.report_storage_type(key)

        changed = driver.storage_changed(cr)
        if changed:
            metrics.storage_reconfigured_total.inc()
            logger.info(f"Storage configuration of {key} changed, reconfiguring")

        exists = driver.storage_exists(cr)
        if exists and not changed:
            return

        try:
            driver.create_storage(cr)
        except Exception:
            metrics.storage_operations_total.labels(driver=key, operation="create", result="error").inc()
            raise
        metrics.storage_operations_total.labels(driver=key, operation="create", result="success").inc()

    def _get_secret(self, name: str) -> dict[str, Any] | None:
        try:
            return self.listers.get_secret(name)
        except ApiException as e:
            if is_not_found(e):
                return None
            raise

    def _apply_private_configuration(self, driver: StorageDriver) -> None:
        data = {**driver.volume_secrets(), **driver.secrets()}
        existing = self._get_secret(IMAGE_REGISTRY_PRIVATE_CONFIGURATION)
        if apply_secret(self.clients.core, self.namespace, IMAGE_REGISTRY_PRIVATE_CONFIGURATION, data, existing):
            logger.info(f"Applied secret {IMAGE_REGISTRY_PRIVATE_CONFIGURATION}")

    def build_deployment(self, cr: dict[str, Any], driver: StorageDriver) -> dict[str, Any]:
        """Render the registry deployment for the current spec and driver."""
        spec = cr.get("spec") or {}
        env = EnvVars([
            EnvVar("REGISTRY_HTTP_ADDR", f":{REGISTRY_PORT}"),
            EnvVar("REGISTRY_HTTP_NET", "tcp"),
            EnvVar("REGISTRY_HTTP_SECRET", spec.get("httpSecret", "")),
        ])
        env.extend(driver.config_env())
        volumes, mounts = driver.volumes()

        replicas = spec.get("replicas")
        template_spec: dict[str, Any] = {
            "containers": [{
                "name": "registry",
                "image": REGISTRY_IMAGE,
                "ports": [{"containerPort": REGISTRY_PORT, "protocol": "TCP"}],
                "env": env.build(IMAGE_REGISTRY_PRIVATE_CONFIGURATION),
                "volumeMounts": mounts,
            }],
            "volumes": volumes,
        }
        if spec.get("nodeSelector"):
            template_spec["nodeSelector"] = spec["nodeSelector"]
        if spec.get("tolerations"):
            template_spec["tolerations"] = spec["tolerations"]

        deploy_spec = {
            "replicas": 1 if replicas is None else replicas,
            "selector": {"matchLabels": dict(REGISTRY_LABELS)},
            "strategy": {"type": spec.get("rolloutStrategy") or ROLLOUT_ROLLING_UPDATE},
            "template": {
                "metadata": {"labels": dict(REGISTRY_LABELS)},
                "spec": template_spec,
            },
        }
        return {
            "apiVersion": "apps/v1",
            "kind": "Deployment",
            "metadata": {
                "name": IMAGE_REGISTRY_NAME,
                "namespace": self.namespace,
                "labels": dict(REGISTRY_LABELS),
                "annotations": {CHECKSUM_ANNOTATION: _checksum(deploy_spec)},
            },
            "spec": deploy_spec,
        }

    def build_service(self) -> dict[str, Any]:
        service_spec = {
            "selector": dict(REGISTRY_LABELS),
            "ports": [{
                "name": f"{REGISTRY_PORT}-tcp",
                "port": REGISTRY_PORT,
                "protocol": "TCP",
                "targetPort": REGISTRY_PORT,
            }],
        }
        return _with_checksum({
            "apiVersion": "v1",
            "kind": "Service",
            "metadata": {"name": IMAGE_REGISTRY_NAME, "namespace": self.namespace, "labels": dict(REGISTRY_LABELS)},
            "spec": service_spec,
        })

    def build_route(self, route: dict[str, Any]) -> dict[str, Any]:
        """Render a Route to the registry service.

        Args:
            route: Entry of ``spec.routes``, with ``name`` and optional
                ``hostname`` and ``secretName``

        Raises:
            ApiException: If the referenced TLS secret cannot be read
        """
        tls = {"termination": ROUTE_TLS_TERMINATION}
        if route.get("secretName"):
            data = decode_secret_data(self.listers.get_secret(route["secretName"]))
            for key, field in (("tls.crt", "certificate"), ("tls.key", "key"), ("tls.cacrt", "caCertificate")):
                if key in data:
                    tls[field] = data[key]

        route_spec: dict[str, Any] = {
            "to": {"kind": "Service", "name": IMAGE_REGISTRY_NAME},
            "tls": tls,
        }
        if route.get("hostname"):
            route_spec["host"] = route["hostname"]

        return _with_checksum({
            "apiVersion": f"{ROUTE_API_GROUP}/v1",
            "kind": "Route",
            "metadata": {"name": route["name"], "namespace": self.namespace},
            "spec": route_spec,
        })

    def _apply_object(
        self,
        desired: dict[str, Any],
        get: Callable[[str], dict[str, Any]],
        create: Callable[[str, dict[str, Any]], Any],
        replace: Callable[[str, dict[str, Any]], Any],
        keep_fields: tuple[str, ...] = (),
    ) -> None:
        """Create ``desired`` or replace the live object when its checksum differs.

        ``keep_fields`` name spec fields the API server fills in, copied from
        the live object when the desired spec leaves them unset.
        """
        kind = desired["kind"]
        name = desired["metadata"]["name"]
        try:
            existing = get(name)
        except ApiException as e:
            if not is_not_found(e):
                raise
            create(self.namespace, desired)
            logger.info(f"Created {kind} {name}")
            return

        annotations = (existing.get("metadata") or {}).get("annotations") or {}
        if annotations.get(CHECKSUM_ANNOTATION) == desired["metadata"]["annotations"][CHECKSUM_ANNOTATION]:
            return

        existing_spec = existing.get("spec") or {}
        for field in keep_fields:
            if field not in desired["spec"] and existing_spec.get(field):
                desired["spec"][field] = existing_spec[field]
        desired["metadata"]["resourceVersion"] = existing["metadata"].get("resourceVersion")
        replace(self.namespace, desired)
        logger.info(f"Updated {kind} {name}")

    def _apply_deployment(self, cr: dict[str, Any], driver: StorageDriver) -> None:
        self._apply_object(
            self.build_deployment(cr, driver),
            self.listers.get_deployment,
            self.clients.create_deployment,
            self.clients.replace_deployment,
        )

    def _apply_service(self) -> None:
        self._apply_object(
            self.build_service(),
            self.listers.get_service,
            self.clients.create_service,
            self.clients.replace_service,
            keep_fields=("clusterIP", "clusterIPs"),
        )

    def _apply_routes(self, cr: dict[str, Any]) -> None:
        for route in route_specs(cr.get("spec") or {}):
            self._apply_object(
                self.build_route(route),
                self.listers.get_route,
                self.clients.create_route,
                self.clients.replace_route,
                keep_fields=("host",),
            )

    def remove_resources(self, cr: dict[str, Any]) -> ApplyResult:
        """Delete the routes, service, deployment, private configuration and managed storage."""
        objects = [(route["name"], self.clients.delete_route) for route in route_specs(cr.get("spec") or {})]
        objects.extend([
            (IMAGE_REGISTRY_NAME, self.clients.delete_service),
            (IMAGE_REGISTRY_NAME, self.clients.delete_deployment),
            (IMAGE_REGISTRY_PRIVATE_CONFIGURATION, self.clients.delete_secret),
        ])
        try:
            for name, delete in objects:
                try:
                    delete(self.namespace, name)
                    logger.info(f"Deleted {name}")
                except ApiException as e:
                    if not is_not_found(e):
                        raise
        except ApiException as e:
            return ApplyResult.retryable(e)

        storage = (cr.get("spec") or {}).get("storage")
        if not configured_backends(storage):
            return ApplyResult.ok()

        try:
            driver = self.driver(cr)
        except (StorageNotConfiguredError, MultiStoragesError) as e:
            return classify_error(e)

        key = configured_backends(storage)[0]
        retry, err = driver.remove_storage(cr)
        if err is None:
            metrics.storage_operations_total.labels(driver=key, operation="remove", result="success").inc()
            metrics.report_storage_type("")
            return ApplyResult.ok()

        metrics.storage_operations_total.labels(driver=key, operation="remove", result="error").inc()
        logger.warning(f"Unable to remove {key} storage: {sanitize_exception(err)}")
        if retry:
            return ApplyResult.retryable(err)
        return ApplyResult.permanent(err, "StorageRemovalFailed")
