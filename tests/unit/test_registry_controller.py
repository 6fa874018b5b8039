"""Tests for the registry config controller."""

from __future__ import annotations

import copy
from unittest.mock import MagicMock, patch

import pytest
from kubernetes.client.exceptions import ApiException

from image_registry_operator.controllers.applier import Applier, ApplyResult
from image_registry_operator.controllers.registry import RegistryController
from image_registry_operator.utils.cache import CredentialCache
from image_registry_operator.utils.conditions import find_condition

FINALIZER = "imageregistry.operator.openshift.io/finalizer"


def echo(body):
    return copy.deepcopy(body)


@pytest.fixture
def controller(listers, clients):
    clients.update_config.side_effect = echo
    return RegistryController(listers, clients, Applier(listers, clients, CredentialCache()))


@pytest.fixture
def registry_config(listers, empty_cr):
    empty_cr["spec"]["storage"] = {"emptyDir": {}}
    listers.registry_config = empty_cr
    return empty_cr


def status_body(clients):
    return clients.update_config_status.call_args.args[0]


class TestBootstrap:
    """Test cases for creating the registry config."""

    def test_missing_config_is_created(self, controller, listers, clients):
        """Test that a missing config is bootstrapped with platform defaults."""
        listers.set_platform({"type": "AWS", "aws": {"region": "us-east-1"}})

        controller.sync()

        body = clients.create_config.call_args.args[0]
        assert body["metadata"]["name"] == "cluster"
        assert body["metadata"]["finalizers"] == [FINALIZER]
        assert body["spec"]["managementState"] == "Managed"
        assert body["spec"]["storage"] == {"s3": {}}
        assert body["spec"]["replicas"] == 2
        assert len(body["spec"]["httpSecret"]) == 128
        clients.update_config.assert_not_called()

    def test_platform_without_storage_removed(self, controller, clients):
        controller.sync()

        body = clients.create_config.call_args.args[0]
        assert body["spec"]["managementState"] == "Removed"
        assert body["spec"]["storage"] == {}
        assert body["spec"]["replicas"] == 1


class TestSync:
    """Test cases for RegistryController.sync."""

    def test_managed_apply_updates_spec_and_status(self, controller, clients, registry_config):
        """Test that the finalizer, storage and conditions are written back."""
        controller.sync()

        clients.create_deployment.assert_called_once()
        updated = clients.update_config.call_args.args[0]
        assert FINALIZER in updated["metadata"]["finalizers"]

        status = status_body(clients)["status"]
        assert status["observedGeneration"] == 1
        assert status["storage"] == {"emptyDir": {}}
        available = find_condition(status["conditions"], "Available")
        assert (available["status"], available["reason"]) == ("False", "DeploymentNotFound")

    def test_no_writes_when_nothing_changed(self, controller, clients, listers, registry_config):
        """Test that a settled config causes no API writes."""
        controller.sync()
        settled = status_body(clients)
        listers.registry_config = settled
        listers.deployments["image-registry"] = copy.deepcopy(clients.create_deployment.call_args.args[1])
        listers.services["image-registry"] = copy.deepcopy(clients.create_service.call_args.args[1])
        clients.reset_mock()
        clients.update_config.side_effect = echo

        controller.sync()
        settled = status_body(clients) if clients.update_config_status.called else settled
        listers.registry_config = settled
        clients.reset_mock()

        controller.sync()

        clients.update_config.assert_not_called()
        clients.update_config_status.assert_not_called()
        clients.replace_deployment.assert_not_called()
        clients.create_service.assert_not_called()
        clients.replace_service.assert_not_called()

    def test_fatal_error_reported_not_raised(self, controller, clients, listers, empty_cr):
        listers.registry_config = empty_cr

        controller.sync()

        degraded = find_condition(status_body(clients)["status"]["conditions"], "Degraded")
        assert (degraded["status"], degraded["reason"]) == ("True", "StorageNotConfigured")

    def test_retryable_error_raised_after_status(self, controller, clients, registry_config):
        """Test that transient failures are surfaced for a requeue."""
        clients.create_deployment.side_effect = ApiException(status=500, reason="Internal Server Error")

        with pytest.raises(ApiException):
            controller.sync()

        progressing = find_condition(status_body(clients)["status"]["conditions"], "Progressing")
        assert (progressing["status"], progressing["reason"]) == ("True", "Error")

    def test_unmanaged_applies_nothing(self, controller, clients, registry_config):
        registry_config["spec"]["managementState"] = "Unmanaged"

        controller.sync()

        clients.create_deployment.assert_not_called()
        available = find_condition(status_body(clients)["status"]["conditions"], "Available")
        assert available["reason"] == "Unmanaged"

    def test_unknown_state_logged(self, listers, clients, registry_config):
        registry_config["spec"]["managementState"] = "Force"
        applier = MagicMock()
        controller = RegistryController(listers, clients, applier)

        with patch.object(controller, "log_warning") as mock_warning:
            controller.sync()

        mock_warning.assert_called_once()
        applier.create_or_update_resources.assert_not_called()

    @patch("image_registry_operator.utils.rate_limit.time.sleep")
    def test_conflict_keeps_fresh_management_state(self, mock_sleep, listers, clients, registry_config):
        """Test that a conflicting edit of managementState is not reverted."""
        fresh = copy.deepcopy(registry_config)
        fresh["metadata"]["resourceVersion"] = "2"
        fresh["spec"]["managementState"] = "Removed"
        calls = []

        def update(body):
            calls.append(copy.deepcopy(body))
            if len(calls) == 1:
                listers.registry_config = fresh
                raise ApiException(status=409, reason="Conflict")
            return copy.deepcopy(body)

        clients.update_config.side_effect = update
        controller = RegistryController(listers, clients, Applier(listers, clients, CredentialCache()))

        controller.sync()

        assert len(calls) == 2
        assert calls[0]["spec"]["managementState"] == "Managed"
        assert calls[1]["metadata"]["resourceVersion"] == "2"
        assert calls[1]["spec"]["managementState"] == "Removed"
        assert FINALIZER in calls[1]["metadata"]["finalizers"]


class TestDeletion:
    """Test cases for a registry config marked for deletion."""

    def test_resources_removed_and_finalizer_dropped(self, controller, clients, registry_config):
        registry_config["metadata"]["deletionTimestamp"] = "2024-05-01T12:00:00Z"
        registry_config["metadata"]["finalizers"] = [FINALIZER]

        controller.sync()

        clients.delete_deployment.assert_called_once_with("openshift-image-registry", "image-registry")
        updated = clients.update_config.call_args.args[0]
        assert updated["metadata"]["finalizers"] == []
        clients.update_config_status.assert_not_called()

    def test_retryable_removal_keeps_finalizer(self, listers, clients, registry_config):
        registry_config["metadata"]["deletionTimestamp"] = "2024-05-01T12:00:00Z"
        registry_config["metadata"]["finalizers"] = [FINALIZER]
        applier = MagicMock()
        applier.remove_resources.return_value = ApplyResult.retryable(ApiException(status=503))
        controller = RegistryController(listers, clients, applier)

        with pytest.raises(ApiException):
            controller.sync()

        clients.update_config.assert_not_called()
