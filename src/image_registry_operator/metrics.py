"""Prometheus metrics for the Image Registry Operator."""

from prometheus_client import Counter, Gauge, Histogram

# Reconciliation metrics
reconcile_total = Counter(
    "image_registry_operator_reconcile_total",
    "Total number of reconciliations",
    ["controller", "result"],
)

reconcile_duration_seconds = Histogram(
    "image_registry_operator_reconcile_duration_seconds",
    "Duration of reconciliations in seconds",
    ["controller"],
    buckets=[0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
)

error_total = Counter(
    "image_registry_operator_error_total",
    "Total number of reconciliation errors",
    ["controller", "error_type"],
)

# Work queue metrics
workqueue_depth = Gauge(
    "image_registry_operator_workqueue_depth",
    "Current number of items waiting in the work queue",
    ["name"],
)

workqueue_retries_total = Counter(
    "image_registry_operator_workqueue_retries_total",
    "Total number of rate limited requeues",
    ["name"],
)

# Storage metrics
storage_reconfigured_total = Counter(
    "image_registry_operator_storage_reconfigured_total",
    "Number of times the registry storage has been reconfigured",
)

storage_type = Gauge(
    "image_registry_storage_type",
    "Storage backend currently configured for the registry",
    ["storage"],
)

storage_operations_total = Counter(
    "image_registry_operator_storage_operations_total",
    "Total number of storage backend operations",
    ["driver", "operation", "result"],
)

# Credential cache metrics
azure_key_cache_requests_total = Counter(
    "image_registry_operator_azure_key_cache_requests_total",
    "Number of Azure storage account key cache lookups",
    ["result"],
)

# Pruner metrics
image_pruner_install_status = Gauge(
    "image_registry_operator_image_pruner_install_status",
    "Image pruner install status: 0 not installed, 1 suspended, 2 enabled",
)

# API call metrics
api_call_total = Counter(
    "image_registry_operator_api_call_total",
    "Total number of API calls",
    ["api_type", "operation", "result"],
)

api_call_duration_seconds = Histogram(
    "image_registry_operator_api_call_duration_seconds",
    "Duration of API calls in seconds",
    ["api_type", "operation"],
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0],
)


def report_storage_type(storage: str) -> None:
    """Mark ``storage`` as the only configured backend."""
    storage_type.clear()
    if storage:
        storage_type.labels(storage=storage).set(1)


def report_pruner_install_status(installed: bool, suspended: bool) -> None:
    """Record whether the pruner CronJob is installed and enabled."""
    if not installed:
        image_pruner_install_status.set(0)
    elif suspended:
        image_pruner_install_status.set(1)
    else:
        image_pruner_install_status.set(2)
