"""Base controller class with the worker loop shared by all controllers."""

from __future__ import annotations

import logging
import threading
import time
from typing import Any

from kubernetes.client.exceptions import ApiException

from .. import metrics
from ..logging import log_resource_event
from ..tracing import trace_span
from ..utils.errors import sanitize_exception
from .workqueue import RateLimitingQueue

CONTROLLER_NAME = "image-registry-operator"


class BaseController:
    """Base class for controllers that drain a work queue with one worker."""

    def __init__(self, name: str, kind: str, queue: RateLimitingQueue):
        """Initialize base controller.

        Args:
            name: Controller name used in metrics and logs (e.g., "registry")
            kind: The Kubernetes resource kind reconciled (e.g., "Config")
            queue: Work queue fed by the event handlers
        """
        self.name = name
        self.kind = kind
        self.queue = queue
        self.logger = logging.getLogger(f"{__name__}.{name}")
        self._thread: threading.Thread | None = None

    def _get_resource_context(self, meta: dict[str, Any] | None) -> dict[str, Any]:
        meta = meta or {}
        return {
            "name": meta.get("name", "unknown"),
            "namespace": meta.get("namespace", ""),
            "uid": meta.get("uid", "unknown"),
        }

    def _log(
        self,
        level: int,
        meta: dict[str, Any] | None,
        message: str,
        event: str,
        reason: str,
        **kwargs: Any,
    ) -> None:
        ctx = self._get_resource_context(meta)
        log_resource_event(
            self.logger,
            controller=CONTROLLER_NAME,
            resource_kind=self.kind,
            resource_name=ctx["name"],
            namespace=ctx["namespace"],
            uid=ctx["uid"],
            event=event,
            reason=reason,
            message=message,
            level=level,
            **kwargs,
        )

    def log_info(
        self,
        meta: dict[str, Any] | None,
        message: str,
        event: str = "info",
        reason: str = "Info",
        **kwargs: Any,
    ) -> None:
        """Log an info-level structured log message.

        Args:
            meta: Kubernetes resource metadata
            message: Log message
            event: Event type (default: "info")
            reason: Reason for the event (default: "Info")
            **kwargs: Additional fields to include in the log
        """
        self._log(logging.INFO, meta, message, event, reason, **kwargs)

    def log_debug(
        self,
        meta: dict[str, Any] | None,
        message: str,
        event: str = "debug",
        reason: str = "Debug",
        **kwargs: Any,
    ) -> None:
        self._log(logging.DEBUG, meta, message, event, reason, **kwargs)

    def log_warning(
        self,
        meta: dict[str, Any] | None,
        message: str,
        event: str = "warning",
        reason: str = "Warning",
        **kwargs: Any,
    ) -> None:
        """Log a warning-level structured log message."""
        self._log(logging.WARNING, meta, message, event, reason, **kwargs)

    def log_error(
        self,
        meta: dict[str, Any] | None,
        message: str,
        error: Exception | None = None,
        event: str = "error",
        reason: str = "Error",
        **kwargs: Any,
    ) -> None:
        """Log an error-level structured log message.

        Args:
            meta: Kubernetes resource metadata
            message: Log message
            error: Optional exception to include sanitized error details
            event: Event type (default: "error")
            reason: Reason for the event (default: "Error")
            **kwargs: Additional fields to include in the log
        """
        log_data = kwargs.copy()
        if error is not None:
            log_data["error"] = sanitize_exception(error)
            log_data["error_type"] = type(error).__name__
        self._log(logging.ERROR, meta, message, event, reason, **log_data)

    def sync(self) -> None:
        """Reconcile the watched objects once. Subclasses implement this."""
        raise NotImplementedError

    def reconcile_with_metrics(self) -> None:
        """Run ``sync`` with metrics, tracing and error logging.

        Raises:
            Exception: Whatever ``sync`` raised, so the caller can requeue
        """
        metrics.reconcile_total.labels(controller=self.name, result="started").inc()

        start_time = time.time()
        try:
            with trace_span(f"{self.name}.sync", controller=self.name):
                self.sync()
            metrics.reconcile_total.labels(controller=self.name, result="success").inc()
        except ApiException as e:
            metrics.error_total.labels(controller=self.name, error_type=type(e).__name__).inc()
            metrics.reconcile_total.labels(controller=self.name, result="error").inc()
            if e.status == 409:
                self.log_debug(None, "Unable to sync, object was modified", reason="Conflict")
            else:
                self.log_error(None, "Reconciliation failed", error=e, reason="ReconciliationFailed")
            raise
        except Exception as e:
            metrics.error_total.labels(controller=self.name, error_type=type(e).__name__).inc()
            metrics.reconcile_total.labels(controller=self.name, result="error").inc()
            self.log_error(None, "Reconciliation failed", error=e, reason="ReconciliationFailed")
            raise
        finally:
            duration = time.time() - start_time
            metrics.reconcile_duration_seconds.labels(controller=self.name).observe(duration)

    def process_next_work_item(self) -> bool:
        """Process one queue item.

        Returns:
            False once the queue has been shut down
        """
        item, shutdown = self.queue.get()
        if shutdown:
            return False

        try:
            self.reconcile_with_metrics()
        except Exception:
            self.queue.add_rate_limited(item)
        else:
            self.queue.forget(item)
        finally:
            self.queue.done(item)
        return True

    def run_worker(self) -> None:
        while self.process_next_work_item():
            pass

    def start(self) -> threading.Thread:
        """Start the single worker thread of this controller."""
        self.log_info(None, "Starting controller", event="start", reason="Starting")
        self._thread = threading.Thread(target=self.run_worker, name=f"{self.name}-worker", daemon=True)
        self._thread.start()
        return self._thread

    def stop(self) -> None:
        self.log_info(None, "Shutting down controller", event="stop", reason="Stopping")
        self.queue.shut_down()
