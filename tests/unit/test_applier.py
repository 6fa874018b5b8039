"""Tests for applying and removing registry resources."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from kubernetes.client.exceptions import ApiException

from image_registry_operator.controllers.applier import (
    Applier,
    ApplyResult,
    classify_error,
    ensure_finalizer,
    remove_finalizer,
    validate,
)
from image_registry_operator.envvar import EnvVar, EnvVars
from image_registry_operator.errors import (
    MultiStoragesError,
    StorageError,
    StorageNotConfiguredError,
    ValidationError,
)
from image_registry_operator.utils.cache import CredentialCache

FINALIZER = "imageregistry.operator.openshift.io/finalizer"
CHECKSUM = "imageregistry.operator.openshift.io/checksum"


@pytest.fixture
def applier(listers, clients):
    return Applier(listers, clients, CredentialCache())


@pytest.fixture
def empty_dir_cr(empty_cr):
    empty_cr["spec"]["storage"] = {"emptyDir": {}}
    empty_cr["spec"]["httpSecret"] = "s3cr3t"
    return empty_cr


def env_of(deploy):
    return {e["name"]: e for e in deploy["spec"]["template"]["spec"]["containers"][0]["env"]}


class TestClassifyError:
    """Test cases for classify_error."""

    @pytest.mark.parametrize(
        "error,reason",
        [
            (StorageNotConfiguredError(), "StorageNotConfigured"),
            (MultiStoragesError(["S3", "Azure"]), "MultipleStoragesConfigured"),
            (ValidationError("bad"), "ValidationFailed"),
            (StorageError("taken", reason="Unable to Access Bucket"), "Unable to Access Bucket"),
            (StorageError("other"), "StorageError"),
        ],
    )
    def test_fatal(self, error, reason):
        result = classify_error(error)
        assert result.fatal
        assert result.reason == reason

    def test_retryable(self):
        result = classify_error(ApiException(status=500))
        assert not result.fatal
        assert result.reason == "Error"

    def test_ok_has_no_message(self):
        assert ApplyResult.ok().message == ""


class TestValidation:
    """Test cases for spec validation and the finalizer helpers."""

    def test_negative_replicas(self, empty_cr):
        empty_cr["spec"]["replicas"] = -1
        with pytest.raises(ValidationError):
            validate(empty_cr)

    def test_duplicate_routes(self, empty_cr):
        empty_cr["spec"]["routes"] = [{"name": "a"}, {"name": "b"}, {"name": "a"}]
        with pytest.raises(ValidationError, match="a"):
            validate(empty_cr)

    def test_valid(self, empty_cr):
        empty_cr["spec"]["replicas"] = 2
        empty_cr["spec"]["routes"] = [{"name": "a"}]
        validate(empty_cr)

    def test_finalizer_roundtrip(self, empty_cr):
        ensure_finalizer(empty_cr)
        ensure_finalizer(empty_cr)
        assert empty_cr["metadata"]["finalizers"] == [FINALIZER]

        remove_finalizer(empty_cr)
        assert empty_cr["metadata"]["finalizers"] == []


class TestCreateOrUpdateResources:
    """Test cases for Applier.create_or_update_resources."""

    def test_creates_everything(self, applier, clients, empty_dir_cr):
        """Test a first apply with emptyDir storage."""
        result = applier.create_or_update_resources(empty_dir_cr)

        assert result == ApplyResult.ok()
        assert FINALIZER in empty_dir_cr["metadata"]["finalizers"]
        assert empty_dir_cr["status"]["storage"] == {"emptyDir": {}}
        clients.core.create_namespaced_secret.assert_called_once()

        namespace, deploy = clients.create_deployment.call_args.args
        assert namespace == "openshift-image-registry"
        assert deploy["metadata"]["name"] == "image-registry"
        assert deploy["spec"]["replicas"] == 1
        assert deploy["spec"]["strategy"]["type"] == "RollingUpdate"
        env = env_of(deploy)
        assert env["REGISTRY_HTTP_ADDR"]["value"] == ":5000"
        assert env["REGISTRY_HTTP_SECRET"]["value"] == "s3cr3t"
        assert env["REGISTRY_STORAGE"]["value"] == "filesystem"
        assert deploy["spec"]["template"]["spec"]["volumes"] == [{"name": "registry-storage", "emptyDir": {}}]
        assert CHECKSUM in deploy["metadata"]["annotations"]

    def test_unchanged_deployment_skipped(self, applier, clients, listers, empty_dir_cr):
        """Test that a deployment with the same checksum is not replaced."""
        desired = applier.build_deployment(empty_dir_cr, applier.driver(empty_dir_cr))
        desired["metadata"]["resourceVersion"] = "7"
        listers.deployments["image-registry"] = desired

        applier.create_or_update_resources(empty_dir_cr)

        clients.create_deployment.assert_not_called()
        clients.replace_deployment.assert_not_called()

    def test_changed_deployment_replaced(self, applier, clients, listers, empty_dir_cr):
        existing = applier.build_deployment(empty_dir_cr, applier.driver(empty_dir_cr))
        existing["metadata"]["resourceVersion"] = "7"
        listers.deployments["image-registry"] = existing
        empty_dir_cr["spec"]["replicas"] = 3
        empty_dir_cr["spec"]["nodeSelector"] = {"node-role.kubernetes.io/infra": ""}

        applier.create_or_update_resources(empty_dir_cr)

        namespace, deploy = clients.replace_deployment.call_args.args
        assert deploy["metadata"]["resourceVersion"] == "7"
        assert deploy["spec"]["replicas"] == 3
        assert deploy["spec"]["template"]["spec"]["nodeSelector"] == {"node-role.kubernetes.io/infra": ""}

    def test_secret_values_from_private_configuration(self, listers, clients, empty_cr):
        """Test that secret driver variables are referenced, not inlined."""
        driver = MagicMock()
        driver.storage_changed.return_value = False
        driver.storage_exists.return_value = True
        driver.volumes.return_value = ([], [])
        driver.volume_secrets.return_value = {"credentials": "[default]\n"}
        driver.secrets.return_value = {"REGISTRY_STORAGE_S3_SECRETKEY": "k"}
        driver.config_env.return_value = EnvVars([EnvVar("REGISTRY_STORAGE_S3_SECRETKEY", "k", secret=True)])
        empty_cr["spec"]["storage"] = {"s3": {"bucket": "b"}}
        applier = Applier(listers, clients, CredentialCache(), driver_factory=MagicMock(return_value=driver))

        assert applier.create_or_update_resources(empty_cr) == ApplyResult.ok()

        body = clients.core.create_namespaced_secret.call_args.kwargs["body"]
        assert set(body.data) == {"credentials", "REGISTRY_STORAGE_S3_SECRETKEY"}
        deploy = clients.create_deployment.call_args.args[1]
        ref = env_of(deploy)["REGISTRY_STORAGE_S3_SECRETKEY"]["valueFrom"]["secretKeyRef"]
        assert ref == {"name": "image-registry-private-configuration", "key": "REGISTRY_STORAGE_S3_SECRETKEY"}
        driver.create_storage.assert_not_called()

    def test_no_storage_is_fatal(self, applier, clients, empty_cr):
        result = applier.create_or_update_resources(empty_cr)

        assert result.fatal
        assert result.reason == "StorageNotConfigured"
        clients.create_deployment.assert_not_called()

    def test_api_error_is_retryable(self, applier, clients, empty_dir_cr):
        clients.create_deployment.side_effect = ApiException(status=500, reason="Internal Server Error")

        result = applier.create_or_update_resources(empty_dir_cr)

        assert not result.fatal
        assert isinstance(result.error, ApiException)


class TestExposure:
    """Test cases for the registry service and routes."""

    def test_service_created(self, applier, clients, empty_dir_cr):
        applier.create_or_update_resources(empty_dir_cr)

        namespace, service = clients.create_service.call_args.args
        assert namespace == "openshift-image-registry"
        assert service["metadata"]["name"] == "image-registry"
        assert service["spec"]["selector"] == {"docker-registry": "default"}
        assert service["spec"]["ports"] == [{"name": "5000-tcp", "port": 5000, "protocol": "TCP", "targetPort": 5000}]
        assert CHECKSUM in service["metadata"]["annotations"]
        clients.create_route.assert_not_called()

    def test_unchanged_service_skipped(self, applier, clients, listers, empty_dir_cr):
        listers.services["image-registry"] = applier.build_service()

        applier.create_or_update_resources(empty_dir_cr)

        clients.create_service.assert_not_called()
        clients.replace_service.assert_not_called()

    def test_service_replace_keeps_cluster_ip(self, applier, clients, listers, empty_dir_cr):
        """Test that replacing the service keeps the address the API server allocated."""
        existing = applier.build_service()
        existing["metadata"]["annotations"][CHECKSUM] = "stale"
        existing["metadata"]["resourceVersion"] = "3"
        existing["spec"]["clusterIP"] = "172.30.0.10"
        listers.services["image-registry"] = existing

        applier.create_or_update_resources(empty_dir_cr)

        service = clients.replace_service.call_args.args[1]
        assert service["spec"]["clusterIP"] == "172.30.0.10"
        assert service["metadata"]["resourceVersion"] == "3"
        assert service["metadata"]["annotations"][CHECKSUM] != "stale"

    def test_routes_created(self, applier, clients, listers, empty_dir_cr):
        """Test the default route and a user route with its own certificate."""
        listers.add_secret("public-tls", {"tls.crt": "CERT", "tls.key": "KEY"})
        empty_dir_cr["spec"]["defaultRoute"] = True
        empty_dir_cr["spec"]["routes"] = [
            {"name": "public", "hostname": "registry.example.com", "secretName": "public-tls"},
        ]

        assert applier.create_or_update_resources(empty_dir_cr) == ApplyResult.ok()

        routes = {c.args[1]["metadata"]["name"]: c.args[1] for c in clients.create_route.call_args_list}
        assert set(routes) == {"default-route", "public"}
        assert routes["default-route"]["spec"] == {
            "to": {"kind": "Service", "name": "image-registry"},
            "tls": {"termination": "edge"},
        }
        public = routes["public"]
        assert public["apiVersion"] == "route.openshift.io/v1"
        assert public["spec"]["host"] == "registry.example.com"
        assert public["spec"]["tls"] == {"termination": "edge", "certificate": "CERT", "key": "KEY"}

    def test_route_replace_keeps_assigned_host(self, applier, clients, listers, empty_dir_cr):
        empty_dir_cr["spec"]["defaultRoute"] = True
        existing = applier.build_route({"name": "default-route"})
        existing["metadata"]["annotations"][CHECKSUM] = "stale"
        existing["metadata"]["resourceVersion"] = "9"
        existing["spec"]["host"] = "default-route-openshift-image-registry.apps.example.com"
        listers.routes["default-route"] = existing

        applier.create_or_update_resources(empty_dir_cr)

        route = clients.replace_route.call_args.args[1]
        assert route["spec"]["host"] == "default-route-openshift-image-registry.apps.example.com"
        assert route["metadata"]["resourceVersion"] == "9"

    def test_missing_route_secret_is_retryable(self, applier, clients, empty_dir_cr):
        empty_dir_cr["spec"]["routes"] = [{"name": "public", "secretName": "absent"}]

        result = applier.create_or_update_resources(empty_dir_cr)

        assert not result.fatal
        assert isinstance(result.error, ApiException)
        clients.create_route.assert_not_called()


class TestRemoveResources:
    """Test cases for Applier.remove_resources."""

    def test_removes_deployment_secret_and_storage(self, applier, clients, empty_cr):
        empty_cr["spec"]["storage"] = {"pvc": {"claim": "image-registry-storage"}}
        empty_cr["status"]["storageManaged"] = True

        assert applier.remove_resources(empty_cr) == ApplyResult.ok()

        clients.delete_deployment.assert_called_once_with("openshift-image-registry", "image-registry")
        clients.delete_secret.assert_called_once_with(
            "openshift-image-registry", "image-registry-private-configuration"
        )
        clients.delete_pvc.assert_called_once_with("openshift-image-registry", "image-registry-storage")

    def test_removes_routes_and_service(self, applier, clients, empty_cr):
        empty_cr["spec"]["defaultRoute"] = True
        empty_cr["spec"]["routes"] = [{"name": "public"}]

        assert applier.remove_resources(empty_cr) == ApplyResult.ok()

        deleted = [c.args for c in clients.delete_route.call_args_list]
        assert deleted == [("openshift-image-registry", "default-route"), ("openshift-image-registry", "public")]
        clients.delete_service.assert_called_once_with("openshift-image-registry", "image-registry")

    def test_missing_objects_ignored(self, applier, clients, empty_cr):
        clients.delete_deployment.side_effect = ApiException(status=404)
        clients.delete_secret.side_effect = ApiException(status=404)

        assert applier.remove_resources(empty_cr) == ApplyResult.ok()

    def test_api_failure_retryable(self, applier, clients, empty_cr):
        clients.delete_deployment.side_effect = ApiException(status=503)

        result = applier.remove_resources(empty_cr)

        assert result.error is not None
        assert not result.fatal

    def test_storage_removal_failure(self, listers, clients, empty_cr):
        """Test that a driver refusing to retry makes the removal permanent."""
        driver = MagicMock()
        driver.remove_storage.return_value = (False, RuntimeError("denied"))
        empty_cr["spec"]["storage"] = {"s3": {"bucket": "b"}}
        applier = Applier(listers, clients, CredentialCache(), driver_factory=MagicMock(return_value=driver))

        result = applier.remove_resources(empty_cr)

        assert result.fatal
        assert result.reason == "StorageRemovalFailed"

    def test_storage_removal_retry(self, listers, clients, empty_cr):
        driver = MagicMock()
        driver.remove_storage.return_value = (True, RuntimeError("busy"))
        empty_cr["spec"]["storage"] = {"s3": {"bucket": "b"}}
        applier = Applier(listers, clients, CredentialCache(), driver_factory=MagicMock(return_value=driver))

        result = applier.remove_resources(empty_cr)

        assert not result.fatal
        assert str(result.error) == "busy"
