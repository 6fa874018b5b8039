"""Controller reconciling the registry config singleton."""

from __future__ import annotations

import copy
from typing import Any

from kubernetes.client.exceptions import ApiException

from ..clients import Clients, Listers
from ..constants import (
    IMAGE_REGISTRY_NAME,
    KIND_CONFIG,
    MANAGEMENT_STATE_MANAGED,
    MANAGEMENT_STATE_REMOVED,
    MANAGEMENT_STATE_UNMANAGED,
)
from ..utils.rate_limit import is_not_found, retry_on_conflict
from .applier import Applier, ApplyResult, remove_finalizer, route_specs
from .base import BaseController
from .bootstrap import bootstrap_registry_config
from .status import sync_status
from .workqueue import RateLimitingQueue


class RegistryController(BaseController):
    """Drives the registry storage and deployment towards the config spec."""

    def __init__(
        self,
        listers: Listers,
        clients: Clients,
        applier: Applier,
        queue: RateLimitingQueue | None = None,
    ) -> None:
        super().__init__("registry", KIND_CONFIG, queue or RateLimitingQueue("registry"))
        self.listers = listers
        self.clients = clients
        self.applier = applier

    def _get_deployment(self) -> dict[str, Any] | None:
        try:
            return copy.deepcopy(self.listers.get_deployment(IMAGE_REGISTRY_NAME))
        except ApiException as e:
            if is_not_found(e):
                return None
            raise

    def _get_routes(self, cr: dict[str, Any]) -> list[dict[str, Any]]:
        routes = []
        for route in route_specs(cr.get("spec") or {}):
            try:
                routes.append(copy.deepcopy(self.listers.get_route(route.get("name", ""))))
            except ApiException as e:
                if not is_not_found(e):
                    raise
        return routes

    def _update_config(self, cr: dict[str, Any]) -> dict[str, Any]:
        """Write metadata and spec, re-reading the config after a conflict.

        The management state is taken from the fresh copy so a concurrent
        user edit of it is never reverted.
        """
        attempts = 0

        def attempt() -> dict[str, Any]:
            nonlocal attempts
            body = copy.deepcopy(cr)
            if attempts:
                fresh = self.listers.get_registry_config()
                body["metadata"]["resourceVersion"] = fresh["metadata"].get("resourceVersion")
                body["spec"]["managementState"] = (fresh.get("spec") or {}).get("managementState")
            attempts += 1
            return self.clients.update_config(body)

        return retry_on_conflict(attempt)

    def _apply(self, cr: dict[str, Any]) -> ApplyResult:
        meta = cr.get("metadata")
        state = (cr.get("spec") or {}).get("managementState", "")
        if state == MANAGEMENT_STATE_REMOVED:
            return self.applier.remove_resources(cr)
        if state == MANAGEMENT_STATE_MANAGED:
            return self.applier.create_or_update_resources(cr)
        if state != MANAGEMENT_STATE_UNMANAGED:
            self.log_warning(meta, f"Unknown management state {state!r}", reason="UnknownManagementState")
        return ApplyResult.ok()

    def sync(self) -> None:
        try:
            original = self.listers.get_registry_config()
        except ApiException as e:
            if not is_not_found(e):
                raise
            bootstrap_registry_config(self.listers, self.clients)
            return

        pristine = copy.deepcopy(original)
        cr = copy.deepcopy(original)
        meta = cr.get("metadata") or {}

        if meta.get("deletionTimestamp"):
            self.log_info(meta, "Registry config is being deleted, removing resources", event="delete", reason="Finalizing")
            result = self.applier.remove_resources(cr)
            if result.error is not None and not result.fatal:
                raise result.error
            remove_finalizer(cr)
            if cr["metadata"] != pristine["metadata"]:
                self._update_config(cr)
            return

        result = self._apply(cr)
        deploy = self._get_deployment()
        routes = self._get_routes(cr)
        sync_status(cr, deploy, routes, result)

        if cr["metadata"] != pristine["metadata"] or cr.get("spec") != pristine.get("spec"):
            updated = self._update_config(cr)
            cr["metadata"] = updated["metadata"]
            cr["spec"] = updated.get("spec", cr.get("spec"))
            self.log_info(cr["metadata"], "Updated registry config", event="update", reason="Updated")

        cr["status"]["observedGeneration"] = cr["metadata"].get("generation")
        if cr["status"] != pristine.get("status"):
            self.clients.update_config_status(cr)
            self.log_debug(cr["metadata"], "Updated registry config status", event="status", reason="StatusUpdated")

        if result.error is not None and not result.fatal:
            raise result.error
