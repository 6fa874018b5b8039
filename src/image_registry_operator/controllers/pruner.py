"""Controller reconciling the image pruner CronJob."""

from __future__ import annotations

import copy
import hashlib
import json
from typing import Any

from kubernetes.client.exceptions import ApiException

from ..clients import Clients, Listers
from ..constants import (
    CHECKSUM_ANNOTATION,
    IMAGE_PRUNER_NAME,
    KIND_IMAGE_PRUNER,
    LABEL_CREATED_BY,
    PRUNER_DEFAULT_HISTORY_LIMIT,
    PRUNER_DEFAULT_KEEP_TAG_REVISIONS,
    PRUNER_DEFAULT_SCHEDULE,
    PRUNER_IMAGE,
)
from ..utils.rate_limit import is_not_found
from .base import BaseController
from .bootstrap import bootstrap_image_pruner
from .status import sync_pruner_status
from .workqueue import RateLimitingQueue

PRUNER_SERVICE_ACCOUNT = "pruner"
PRUNER_LABELS = {LABEL_CREATED_BY: IMAGE_PRUNER_NAME}


def pruner_command(spec: dict[str, Any]) -> list[str]:
    """Arguments of the ``oc adm prune images`` invocation for ``spec``."""
    keep_tag_revisions = spec.get("keepTagRevisions")
    if keep_tag_revisions is None:
        keep_tag_revisions = PRUNER_DEFAULT_KEEP_TAG_REVISIONS
    args = [
        "oc", "adm", "prune", "images",
        "--certificate-authority=/var/run/configmaps/serviceca/service-ca.crt",
        f"--keep-tag-revisions={keep_tag_revisions}",
        f"--ignore-invalid-refs={str(spec.get('ignoreInvalidImageReferences', True)).lower()}",
        "--prune-registry=true",
        "--confirm=true",
    ]
    if spec.get("keepYoungerThanDuration"):
        args.append(f"--keep-younger-than={spec['keepYoungerThanDuration']}")
    else:
        args.append("--keep-younger-than=60m")
    if spec.get("logLevel"):
        args.append(f"--loglevel={spec['logLevel']}")
    return args


def latest_job_with_conditions(jobs: list[dict[str, Any]]) -> dict[str, Any] | None:
    """Return the most recently created job that has reported conditions."""
    candidates = [job for job in jobs if (job.get("status") or {}).get("conditions")]
    if not candidates:
        return None
    return max(candidates, key=lambda job: (job.get("metadata") or {}).get("creationTimestamp") or "")


class PrunerController(BaseController):
    """Keeps the image pruner CronJob in line with the ImagePruner resource."""

    def __init__(self, listers: Listers, clients: Clients, queue: RateLimitingQueue | None = None) -> None:
        super().__init__("image-pruner", KIND_IMAGE_PRUNER, queue or RateLimitingQueue("image-pruner"))
        self.listers = listers
        self.clients = clients

    @property
    def namespace(self) -> str:
        return self.listers.namespace

    def build_cronjob(self, pruner: dict[str, Any]) -> dict[str, Any]:
        spec = pruner.get("spec") or {}
        job_spec: dict[str, Any] = {
            "template": {
                "metadata": {"labels": dict(PRUNER_LABELS)},
                "spec": {
                    "restartPolicy": "OnFailure",
                    "serviceAccountName": PRUNER_SERVICE_ACCOUNT,
                    "containers": [{
                        "name": IMAGE_PRUNER_NAME,
                        "image": PRUNER_IMAGE,
                        "command": pruner_command(spec),
                    }],
                },
            },
        }
        if spec.get("nodeSelector"):
            job_spec["template"]["spec"]["nodeSelector"] = spec["nodeSelector"]
        if spec.get("tolerations"):
            job_spec["template"]["spec"]["tolerations"] = spec["tolerations"]

        cron_spec = {
            "schedule": spec.get("schedule") or PRUNER_DEFAULT_SCHEDULE,
            "suspend": bool(spec.get("suspend")),
            "concurrencyPolicy": "Forbid",
            "successfulJobsHistoryLimit": spec.get("successfulJobsHistoryLimit", PRUNER_DEFAULT_HISTORY_LIMIT),
            "failedJobsHistoryLimit": spec.get("failedJobsHistoryLimit", PRUNER_DEFAULT_HISTORY_LIMIT),
            "jobTemplate": {"metadata": {"labels": dict(PRUNER_LABELS)}, "spec": job_spec},
        }
        checksum = hashlib.sha256(json.dumps(cron_spec, sort_keys=True).encode("utf-8")).hexdigest()
        return {
            "apiVersion": "batch/v1",
            "kind": "CronJob",
            "metadata": {
                "name": IMAGE_PRUNER_NAME,
                "namespace": self.namespace,
                "labels": dict(PRUNER_LABELS),
                "annotations": {CHECKSUM_ANNOTATION: checksum},
            },
            "spec": cron_spec,
        }

    def _get_cronjob(self) -> dict[str, Any] | None:
        try:
            return copy.deepcopy(self.listers.get_cronjob(IMAGE_PRUNER_NAME))
        except ApiException as e:
            if is_not_found(e):
                return None
            raise

    def _apply_cronjob(self, pruner: dict[str, Any]) -> None:
        desired = self.build_cronjob(pruner)
        existing = self._get_cronjob()
        if existing is None:
            self.clients.create_cronjob(self.namespace, desired)
            self.log_info(pruner.get("metadata"), "Created pruner CronJob", event="create", reason="Created")
            return

        annotations = (existing.get("metadata") or {}).get("annotations") or {}
        if annotations.get(CHECKSUM_ANNOTATION) == desired["metadata"]["annotations"][CHECKSUM_ANNOTATION]:
            return
        desired["metadata"]["resourceVersion"] = existing["metadata"].get("resourceVersion")
        self.clients.replace_cronjob(self.namespace, desired)
        self.log_info(pruner.get("metadata"), "Updated pruner CronJob", event="update", reason="Updated")

    def _delete_cronjob(self) -> None:
        try:
            self.clients.delete_cronjob(self.namespace, IMAGE_PRUNER_NAME)
        except ApiException as e:
            if not is_not_found(e):
                raise

    def sync(self) -> None:
        try:
            original = self.listers.get_image_pruner()
        except ApiException as e:
            if not is_not_found(e):
                raise
            self._delete_cronjob()
            bootstrap_image_pruner(self.clients)
            return

        pruner = copy.deepcopy(original)
        error: Exception | None = None
        try:
            self._apply_cronjob(pruner)
        except Exception as e:
            self.log_error(pruner.get("metadata"), "Unable to apply pruner CronJob", error=e, reason="ApplyFailed")
            error = e

        cronjob = self._get_cronjob()
        jobs = self.listers.list_jobs(label_selector=f"{LABEL_CREATED_BY}={IMAGE_PRUNER_NAME}")
        sync_pruner_status(pruner, cronjob, latest_job_with_conditions(jobs), error)

        if pruner.get("status") != original.get("status"):
            self.clients.update_image_pruner_status(pruner)

        if error is not None:
            raise error
