"""Utilities for managing Kubernetes conditions."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from ..constants import CONDITION_TRUE


def format_time(moment: datetime) -> str:
    """Render a timestamp the way the API server stores it."""
    return moment.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def parse_time(value: str | None) -> datetime | None:
    """Parse an RFC 3339 timestamp, returning None when it is missing."""
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def find_condition(conditions: list[dict[str, Any]], condition_type: str) -> dict[str, Any] | None:
    """Return the condition of the given type, if present."""
    for cond in conditions:
        if cond.get("type") == condition_type:
            return cond
    return None


def is_condition_true(conditions: list[dict[str, Any]], condition_type: str) -> bool:
    """Check whether the condition of the given type has status True."""
    cond = find_condition(conditions, condition_type)
    return cond is not None and cond.get("status") == CONDITION_TRUE


def update_condition(
    conditions: list[dict[str, Any]],
    condition_type: str,
    status: str,
    reason: str,
    message: str,
    observed_generation: int | None = None,
    now: datetime | None = None,
) -> list[dict[str, Any]]:
    """Update or add a condition to the conditions list.

    Args:
        conditions: List of existing conditions
        condition_type: Type of condition
        status: Status of condition ("True", "False", "Unknown")
        reason: Reason for the condition
        message: Human-readable message
        observed_generation: Generation when condition was observed
        now: Transition time to record, defaults to the current time

    Returns:
        Updated list of conditions
    """
    timestamp = format_time(now or datetime.now(timezone.utc))

    existing_idx = None
    for idx, cond in enumerate(conditions):
        if cond.get("type") == condition_type:
            existing_idx = idx
            break

    new_condition: dict[str, Any] = {
        "type": condition_type,
        "status": status,
        "reason": reason,
        "message": message,
        "lastTransitionTime": timestamp,
    }

    if observed_generation is not None:
        new_condition["observedGeneration"] = observed_generation

    if existing_idx is not None:
        existing = conditions[existing_idx]
        # Only update lastTransitionTime if status changed
        if existing.get("status") == status:
            new_condition["lastTransitionTime"] = existing.get("lastTransitionTime", timestamp)
        conditions[existing_idx] = new_condition
    else:
        conditions.append(new_condition)

    return conditions


def set_cr_condition(
    cr: dict[str, Any],
    condition_type: str,
    status: str,
    reason: str,
    message: str,
    now: datetime | None = None,
) -> None:
    """Upsert a condition directly into ``cr["status"]["conditions"]``."""
    if not cr.get("status"):
        cr["status"] = {}
    if cr["status"].get("conditions") is None:
        cr["status"]["conditions"] = []
    conditions = cr["status"]["conditions"]
    update_condition(conditions, condition_type, status, reason, message, now=now)
