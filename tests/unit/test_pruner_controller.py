"""Tests for the image pruner controller."""

from __future__ import annotations

import copy

import pytest
from kubernetes.client.exceptions import ApiException

from image_registry_operator.controllers.bootstrap import new_image_pruner
from image_registry_operator.controllers.pruner import (
    PrunerController,
    latest_job_with_conditions,
    pruner_command,
)
from image_registry_operator.utils.conditions import find_condition

CHECKSUM = "imageregistry.operator.openshift.io/checksum"


@pytest.fixture
def controller(listers, clients):
    return PrunerController(listers, clients)


@pytest.fixture
def pruner(listers):
    cr = new_image_pruner()
    cr["status"] = {}
    listers.image_pruner = cr
    return cr


class TestPrunerCommand:
    """Test cases for pruner_command."""

    def test_defaults(self):
        args = pruner_command({})

        assert args[:4] == ["oc", "adm", "prune", "images"]
        assert "--keep-tag-revisions=3" in args
        assert "--ignore-invalid-refs=true" in args
        assert "--prune-registry=true" in args
        assert "--confirm=true" in args
        assert "--keep-younger-than=60m" in args

    def test_overrides(self):
        args = pruner_command({
            "keepTagRevisions": 0,
            "ignoreInvalidImageReferences": False,
            "keepYoungerThanDuration": "24h",
            "logLevel": "Debug",
        })

        assert "--keep-tag-revisions=0" in args
        assert "--ignore-invalid-refs=false" in args
        assert "--keep-younger-than=24h" in args
        assert "--loglevel=Debug" in args

    def test_latest_job(self):
        jobs = [
            {"metadata": {"name": "a", "creationTimestamp": "2024-05-01T00:00:00Z"}, "status": {"conditions": [{}]}},
            {"metadata": {"name": "b", "creationTimestamp": "2024-05-02T00:00:00Z"}, "status": {"conditions": [{}]}},
            {"metadata": {"name": "c", "creationTimestamp": "2024-05-03T00:00:00Z"}, "status": {}},
        ]
        assert latest_job_with_conditions(jobs)["metadata"]["name"] == "b"
        assert latest_job_with_conditions([]) is None


class TestPrunerController:
    """Test cases for PrunerController.sync."""

    def test_bootstrap_when_missing(self, controller, clients):
        clients.delete_cronjob.side_effect = ApiException(status=404)

        controller.sync()

        body = clients.create_image_pruner.call_args.args[0]
        assert body["metadata"]["name"] == "cluster"
        assert body["spec"]["keepTagRevisions"] == 3
        assert body["spec"]["suspend"] is False
        clients.delete_cronjob.assert_called_once_with("openshift-image-registry", "image-pruner")

    def test_creates_cronjob(self, controller, clients, pruner):
        """Test the CronJob rendered for a default pruner."""
        controller.sync()

        namespace, cronjob = clients.create_cronjob.call_args.args
        assert namespace == "openshift-image-registry"
        spec = cronjob["spec"]
        assert spec["schedule"] == "0 0 * * *"
        assert spec["suspend"] is False
        assert spec["concurrencyPolicy"] == "Forbid"
        assert spec["successfulJobsHistoryLimit"] == 3
        pod = spec["jobTemplate"]["spec"]["template"]["spec"]
        assert pod["serviceAccountName"] == "pruner"
        assert cronjob["metadata"]["labels"] == {"created-by": "image-pruner"}

        status = clients.update_image_pruner_status.call_args.args[0]["status"]
        available = find_condition(status["conditions"], "Available")
        assert (available["status"], available["reason"]) == ("False", "Error")

    def test_unchanged_cronjob_skipped(self, controller, clients, listers, pruner):
        listers.cronjobs["image-pruner"] = controller.build_cronjob(pruner)

        controller.sync()

        clients.create_cronjob.assert_not_called()
        clients.replace_cronjob.assert_not_called()
        status = clients.update_image_pruner_status.call_args.args[0]["status"]
        assert find_condition(status["conditions"], "Available")["status"] == "True"

    def test_changed_cronjob_replaced(self, controller, clients, listers, pruner):
        existing = controller.build_cronjob(pruner)
        existing["metadata"]["resourceVersion"] = "11"
        listers.cronjobs["image-pruner"] = existing
        listers.image_pruner["spec"]["suspend"] = True

        controller.sync()

        cronjob = clients.replace_cronjob.call_args.args[1]
        assert cronjob["spec"]["suspend"] is True
        assert cronjob["metadata"]["resourceVersion"] == "11"
        assert cronjob["metadata"]["annotations"][CHECKSUM] != existing["metadata"]["annotations"][CHECKSUM]

    def test_status_unchanged_not_written(self, controller, clients, listers, pruner):
        listers.cronjobs["image-pruner"] = controller.build_cronjob(pruner)
        controller.sync()
        listers.image_pruner = copy.deepcopy(clients.update_image_pruner_status.call_args.args[0])
        clients.reset_mock()

        controller.sync()

        clients.update_image_pruner_status.assert_not_called()

    def test_apply_error_reported_and_raised(self, controller, clients, pruner):
        """Test that a failed apply degrades the pruner and requeues."""
        clients.create_cronjob.side_effect = ApiException(status=403, reason="Forbidden")

        with pytest.raises(ApiException):
            controller.sync()

        status = clients.update_image_pruner_status.call_args.args[0]["status"]
        degraded = find_condition(status["conditions"], "Degraded")
        assert (degraded["status"], degraded["reason"]) == ("True", "SyncError")
