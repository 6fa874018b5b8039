"""Status conditions computed from the registry deployment and apply results."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from ..constants import (
    COND_AVAILABLE,
    COND_DEGRADED,
    COND_PROGRESSING,
    COND_PRUNER_FAILED,
    COND_PRUNER_SCHEDULED,
    COND_REMOVED,
    CONDITION_FALSE,
    CONDITION_TRUE,
    MANAGEMENT_STATE_MANAGED,
    MANAGEMENT_STATE_REMOVED,
    MANAGEMENT_STATE_UNMANAGED,
    UNAVAILABLE_GRACE_PERIOD_SECONDS,
)
from ..metrics import report_pruner_install_status
from ..utils.conditions import find_condition, parse_time, set_cr_condition
from .applier import ApplyResult

UNMANAGED_MESSAGE = "The registry configuration is set to unmanaged mode"


def _deploy_status(deploy: dict[str, Any]) -> dict[str, Any]:
    return deploy.get("status") or {}


def is_deployment_available(deploy: dict[str, Any]) -> bool:
    return (_deploy_status(deploy).get("availableReplicas") or 0) > 0


def is_deployment_complete(deploy: dict[str, Any]) -> bool:
    """Check that every desired replica is updated and available."""
    spec_replicas = (deploy.get("spec") or {}).get("replicas")
    replicas = 1 if spec_replicas is None else spec_replicas
    status = _deploy_status(deploy)
    generation = (deploy.get("metadata") or {}).get("generation") or 0
    return (
        (status.get("updatedReplicas") or 0) == replicas
        and (status.get("replicas") or 0) == replicas
        and (status.get("availableReplicas") or 0) == replicas
        and (status.get("observedGeneration") or 0) >= generation
    )


def progress_deadline_exceeded(deploy: dict[str, Any]) -> dict[str, Any] | None:
    """Return the Progressing condition of the deployment if it timed out."""
    for cond in _deploy_status(deploy).get("conditions") or []:
        if cond.get("type") == "Progressing" and cond.get("reason") == "ProgressDeadlineExceeded":
            return cond
    return None


def first_route_error(routes: list[dict[str, Any]]) -> str | None:
    """Describe the first route with an ingress the router rejected."""
    for route in routes:
        name = (route.get("metadata") or {}).get("name", "")
        for ingress in (route.get("status") or {}).get("ingress") or []:
            for cond in ingress.get("conditions") or []:
                if cond.get("type") != "Admitted" or cond.get("status") != CONDITION_FALSE:
                    continue
                return (
                    f"route {name} (host {ingress.get('host', '')}, router {ingress.get('routerName', '')}) "
                    f"not admitted: {cond.get('message', '')}"
                )
    return None


def _unavailable_for(cr: dict[str, Any], now: datetime) -> float:
    """Seconds the Available condition has been False, or 0."""
    cond = find_condition((cr.get("status") or {}).get("conditions") or [], COND_AVAILABLE)
    if cond is None or cond.get("status") != CONDITION_FALSE:
        return 0.0
    since = parse_time(cond.get("lastTransitionTime"))
    if since is None:
        return 0.0
    return (now - since).total_seconds()


def sync_status(
    cr: dict[str, Any],
    deploy: dict[str, Any] | None,
    routes: list[dict[str, Any]],
    apply_result: ApplyResult,
    now: datetime | None = None,
) -> None:
    """Recompute Available, Progressing, Degraded and Removed on ``cr``.

    Args:
        cr: Registry config, updated in place
        deploy: The registry deployment, or None when it does not exist
        routes: Routes exposing the registry
        apply_result: Result of the last apply step
        now: Current time, defaults to the wall clock
    """
    now = now or datetime.now(timezone.utc)
    state = (cr.get("spec") or {}).get("managementState", "")

    def update(cond_type: str, status: str, reason: str, message: str) -> None:
        set_cr_condition(cr, cond_type, status, reason, message, now=now)

    if state == MANAGEMENT_STATE_REMOVED:
        if deploy is not None:
            update(COND_AVAILABLE, CONDITION_TRUE, "Ready", "The registry is ready")
            update(COND_PROGRESSING, CONDITION_TRUE, "DeletingDeployment", "The deployment is being removed")
            update(COND_DEGRADED, CONDITION_FALSE, "Removed", "The registry is being removed")
            update(COND_REMOVED, CONDITION_FALSE, "DeletingDeployment", "The deployment is being removed")
        else:
            update(COND_AVAILABLE, CONDITION_TRUE, "Removed", "The registry is removed")
            update(COND_PROGRESSING, CONDITION_FALSE, "Removed", "All registry resources are removed")
            update(COND_DEGRADED, CONDITION_FALSE, "Removed", "The registry is removed")
            update(COND_REMOVED, CONDITION_TRUE, "Removed", "The registry is removed")
        _set_ready_replicas(cr, deploy)
        return

    if state == MANAGEMENT_STATE_UNMANAGED:
        update(COND_AVAILABLE, CONDITION_TRUE, "Unmanaged", UNMANAGED_MESSAGE)
        update(COND_PROGRESSING, CONDITION_FALSE, "Unmanaged", UNMANAGED_MESSAGE)
        update(COND_DEGRADED, CONDITION_FALSE, "Unmanaged", UNMANAGED_MESSAGE)
        update(COND_REMOVED, CONDITION_FALSE, "", "")
        _set_ready_replicas(cr, deploy)
        return

    update(COND_REMOVED, CONDITION_FALSE, "", "")
    degraded = False

    if apply_result.error is not None:
        update(COND_PROGRESSING, CONDITION_TRUE, "Error", f"Unable to apply resources: {apply_result.message}")
        if apply_result.fatal:
            update(COND_AVAILABLE, CONDITION_FALSE, apply_result.reason, f"Error: {apply_result.message}")
            update(COND_DEGRADED, CONDITION_TRUE, apply_result.reason, f"Error: {apply_result.message}")
            _set_ready_replicas(cr, deploy)
            return

    if deploy is None:
        update(COND_AVAILABLE, CONDITION_FALSE, "DeploymentNotFound", "The deployment does not exist")
        if apply_result.error is None:
            update(
                COND_PROGRESSING, CONDITION_TRUE, "WaitingForDeployment",
                "All resources are successfully applied, but the deployment does not exist",
            )
    elif (deploy.get("metadata") or {}).get("deletionTimestamp"):
        update(COND_AVAILABLE, CONDITION_FALSE, "DeploymentDeleted", "The deployment is being deleted")
        if apply_result.error is None:
            update(COND_PROGRESSING, CONDITION_TRUE, "FinalizingDeployment", "The deployment is being deleted")
    elif is_deployment_complete(deploy):
        update(COND_AVAILABLE, CONDITION_TRUE, "Ready", "The registry is ready")
        if apply_result.error is None:
            update(COND_PROGRESSING, CONDITION_FALSE, "Ready", "The registry is ready")
    elif is_deployment_available(deploy):
        update(COND_AVAILABLE, CONDITION_TRUE, "MinimumAvailability", "The registry has minimum availability")
        if apply_result.error is None:
            update(
                COND_PROGRESSING, CONDITION_FALSE, "MinimumAvailability", "The deployment has minimum availability"
            )
        timed_out = progress_deadline_exceeded(deploy)
        if timed_out is not None:
            update(
                COND_DEGRADED, CONDITION_TRUE, "ProgressDeadlineExceeded",
                f"Registry deployment has timed out progressing: {timed_out.get('message', '')}",
            )
            degraded = True
    else:
        message = "The deployment does not have available replicas"
        update(COND_AVAILABLE, CONDITION_FALSE, "NoReplicasAvailable", message)
        if apply_result.error is None:
            update(COND_PROGRESSING, CONDITION_TRUE, "DeploymentNotCompleted", "The deployment has not completed")

    if not degraded and _unavailable_for(cr, now) > UNAVAILABLE_GRACE_PERIOD_SECONDS:
        available = find_condition(cr["status"]["conditions"], COND_AVAILABLE) or {}
        update(COND_DEGRADED, CONDITION_TRUE, "Unavailable", available.get("message", ""))
        degraded = True

    if not degraded and state == MANAGEMENT_STATE_MANAGED:
        route_error = first_route_error(routes)
        if route_error is not None:
            update(COND_DEGRADED, CONDITION_TRUE, "RouteDegraded", route_error)
            degraded = True

    if not degraded:
        update(COND_DEGRADED, CONDITION_FALSE, "AsExpected", "")

    _set_ready_replicas(cr, deploy)


def _set_ready_replicas(cr: dict[str, Any], deploy: dict[str, Any] | None) -> None:
    ready = 0 if deploy is None else (_deploy_status(deploy).get("readyReplicas") or 0)
    cr.setdefault("status", {})["readyReplicas"] = ready


def sync_pruner_status(
    cr: dict[str, Any],
    cronjob: dict[str, Any] | None,
    last_job: dict[str, Any] | None,
    error: Exception | None,
    now: datetime | None = None,
) -> None:
    """Recompute the ImagePruner conditions and the install status metric.

    Args:
        cr: ImagePruner resource, updated in place
        cronjob: The pruner CronJob, or None when it does not exist
        last_job: Most recent pruner Job that reported conditions
        error: Error from applying the pruner resources
        now: Current time, defaults to the wall clock
    """
    now = now or datetime.now(timezone.utc)

    def update(cond_type: str, status: str, reason: str, message: str) -> None:
        set_cr_condition(cr, cond_type, status, reason, message, now=now)

    if cronjob is None:
        update(COND_AVAILABLE, CONDITION_FALSE, "Error", "Pruner CronJob does not exist")
    else:
        update(COND_AVAILABLE, CONDITION_TRUE, "AsExpected", "Pruner CronJob has been created")

    failed: dict[str, Any] | None = None
    for cond in ((last_job or {}).get("status") or {}).get("conditions") or []:
        if cond.get("type") == "Failed" and cond.get("status") == CONDITION_TRUE:
            failed = cond
    if failed is not None:
        update(COND_PRUNER_FAILED, CONDITION_TRUE, failed.get("reason", ""), failed.get("message", ""))
    else:
        update(COND_PRUNER_FAILED, CONDITION_FALSE, "Complete", "Pruner completed successfully")

    suspended = bool((cr.get("spec") or {}).get("suspend"))
    if suspended:
        update(COND_PRUNER_SCHEDULED, CONDITION_FALSE, "Suspended", "The pruner job has been suspended")
    else:
        update(COND_PRUNER_SCHEDULED, CONDITION_TRUE, "Scheduled", "The pruner job has been scheduled")
    report_pruner_install_status(installed=cronjob is not None, suspended=suspended)

    if error is not None:
        update(COND_DEGRADED, CONDITION_TRUE, "SyncError", f"Error: {error}")
    elif failed is not None:
        update(COND_DEGRADED, CONDITION_TRUE, "JobFailed", failed.get("message", ""))
    else:
        update(COND_DEGRADED, CONDITION_FALSE, "AsExpected", "")
