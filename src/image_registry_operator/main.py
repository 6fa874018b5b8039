"""Main entry point for the Image Registry Operator."""

from __future__ import annotations

import logging
import os
import threading
from typing import Any

import kopf

from . import health
from . import logging as structured_logging
from .clients import Clients, Listers
from .constants import (
    API_GROUP,
    API_VERSION,
    CONFIG_API_GROUP,
    NAMESPACE,
    PLURAL_CONFIGS,
    PLURAL_IMAGE_PRUNERS,
    PLURAL_INFRASTRUCTURES,
    PLURAL_ROUTES,
    ROUTE_API_GROUP,
    WORKQUEUE_KEY,
)
from .controllers import Applier, EventHandler, PrunerController, RegistryController
from .tracing import initialize_tracing
from .utils.cache import CredentialCache

logger = logging.getLogger(__name__)

RESYNC_INTERVAL_SECONDS = float(os.getenv("RESYNC_INTERVAL_SECONDS", "600"))


class Operator:
    """Controllers, their event handlers and the metrics server of one process."""

    def __init__(self, clients: Clients, listers: Listers) -> None:
        self.key_cache = CredentialCache()
        self.registry = RegistryController(listers, clients, Applier(listers, clients, self.key_cache))
        self.pruner = PrunerController(listers, clients)
        self.registry_events = EventHandler(self.registry.queue, "registry")
        self.pruner_events = EventHandler(self.pruner.queue, "image-pruner")
        self._stop = threading.Event()
        self._started = False
        self._server: Any = None

    def ready(self) -> bool:
        return self._started and not self._stop.is_set()

    def _resync(self) -> None:
        while not self._stop.wait(RESYNC_INTERVAL_SECONDS):
            self.registry.queue.add(WORKQUEUE_KEY)
            self.pruner.queue.add(WORKQUEUE_KEY)

    def start(self, metrics_port: int) -> None:
        self._server = health.start_metrics_server(metrics_port, ready=self.ready)
        self.registry.start()
        self.pruner.start()
        threading.Thread(target=self._resync, name="resync", daemon=True).start()
        self.registry.queue.add(WORKQUEUE_KEY)
        self.pruner.queue.add(WORKQUEUE_KEY)
        self._started = True

    def stop(self) -> None:
        self._stop.set()
        self.registry.stop()
        self.pruner.stop()
        if self._server is not None:
            self._server.shutdown()


_operator: Operator | None = None


def _in_operator_namespace(namespace: str | None, **_: Any) -> bool:
    return namespace == NAMESPACE


@kopf.on.startup()
def configure(settings: kopf.OperatorSettings, **_: Any) -> None:
    """Configure kopf and start the controllers."""
    global _operator

    structured_logging.setup_structured_logging()

    settings.posting.level = logging.WARNING
    settings.networking.request_timeout = 30.0
    settings.execution.max_workers = 4

    # Handlers only enqueue; backoff lives in the controller work queues.
    settings.execution.min_retry_delay = 1.0
    settings.execution.max_retry_delay = 60.0

    initialize_tracing()

    clients = Clients.from_config()
    _operator = Operator(clients, Listers(clients))
    _operator.start(int(os.getenv("METRICS_PORT", "8080")))
    logger.info(f"Image registry operator started, watching namespace {NAMESPACE}")


@kopf.on.cleanup()
def shutdown(**_: Any) -> None:
    if _operator is not None:
        _operator.stop()


def _registry_event(event: dict[str, Any], **_: Any) -> None:
    if _operator is not None:
        _operator.registry_events.handle(event.get("type"), event.get("object") or {})


def _pruner_event(event: dict[str, Any], **_: Any) -> None:
    if _operator is not None:
        _operator.pruner_events.handle(event.get("type"), event.get("object") or {})


kopf.on.event(API_GROUP, API_VERSION, PLURAL_CONFIGS)(_registry_event)
kopf.on.event(CONFIG_API_GROUP, "v1", PLURAL_INFRASTRUCTURES)(_registry_event)
for _plural in ("deployments", "services", "secrets", "configmaps", "persistentvolumeclaims"):
    kopf.on.event(_plural, when=_in_operator_namespace)(_registry_event)
kopf.on.event(ROUTE_API_GROUP, "v1", PLURAL_ROUTES, when=_in_operator_namespace)(_registry_event)

kopf.on.event(API_GROUP, API_VERSION, PLURAL_IMAGE_PRUNERS)(_pruner_event)
kopf.on.event(API_GROUP, API_VERSION, PLURAL_CONFIGS)(_pruner_event)
for _plural in ("cronjobs", "jobs"):
    kopf.on.event(_plural, when=_in_operator_namespace)(_pruner_event)
