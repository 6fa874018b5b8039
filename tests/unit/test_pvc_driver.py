"""Tests for the PVC, filesystem and emptyDir storage drivers."""

from __future__ import annotations

import pytest
from kubernetes.client.exceptions import ApiException

from image_registry_operator.errors import StorageError
from image_registry_operator.storage.emptydir import EmptyDirDriver
from image_registry_operator.storage.filesystem import FilesystemDriver
from image_registry_operator.storage.pvc import PVCDriver
from image_registry_operator.utils.conditions import find_condition


def condition(cr, cond_type):
    return find_condition(cr["status"]["conditions"], cond_type)


def claim(name, modes, owned=False):
    annotations = {"imageregistry.openshift.io": "true"} if owned else {}
    return {"metadata": {"name": name, "annotations": annotations}, "spec": {"accessModes": modes}}


class TestPVCDriver:
    """Test cases for PVCDriver."""

    def test_creates_default_claim(self, listers, clients, empty_cr):
        """Test that an empty config creates the operator owned claim."""
        driver = PVCDriver({}, listers, clients)

        driver.create_storage(empty_cr)

        clients.create_pvc.assert_called_once()
        namespace, body = clients.create_pvc.call_args.args
        assert namespace == "openshift-image-registry"
        assert body["metadata"]["name"] == "image-registry-storage"
        assert body["metadata"]["annotations"] == {"imageregistry.openshift.io": "true"}
        assert body["spec"]["accessModes"] == ["ReadWriteMany"]
        assert body["spec"]["resources"]["requests"]["storage"] == "100Gi"
        assert empty_cr["spec"]["storage"]["pvc"] == {"claim": "image-registry-storage"}
        assert empty_cr["status"]["storageManaged"] is True
        assert condition(empty_cr, "StorageExists")["reason"] == "PVC Created"

    def test_reuses_owned_default_claim(self, listers, clients, empty_cr):
        listers.pvcs["image-registry-storage"] = claim("image-registry-storage", ["ReadWriteMany"], owned=True)
        driver = PVCDriver({}, listers, clients)

        driver.create_storage(empty_cr)

        clients.create_pvc.assert_not_called()
        assert empty_cr["status"]["storageManaged"] is True

    def test_default_claim_not_owned(self, listers, clients, empty_cr):
        """Test that a foreign claim with the default name is never adopted."""
        listers.pvcs["image-registry-storage"] = claim("image-registry-storage", ["ReadWriteMany"])
        driver = PVCDriver({}, listers, clients)

        with pytest.raises(StorageError) as exc_info:
            driver.create_storage(empty_cr)

        assert "already exists and is not owned by the operator" in str(exc_info.value)
        cond = condition(empty_cr, "StorageExists")
        assert cond["status"] == "False"
        assert cond["reason"] == "PVC Already Exists"
        assert "managementState" not in empty_cr["spec"]["storage"]
        clients.create_pvc.assert_not_called()

    def test_user_claim(self, listers, clients, empty_cr):
        listers.pvcs["mine"] = claim("mine", ["ReadWriteMany"])
        driver = PVCDriver({"claim": "mine"}, listers, clients)

        driver.create_storage(empty_cr)

        assert empty_cr["status"]["storageManaged"] is False
        assert condition(empty_cr, "StorageExists")["reason"] == "PVC Exists"

    def test_user_claim_missing(self, listers, clients, empty_cr):
        driver = PVCDriver({"claim": "mine"}, listers, clients)

        with pytest.raises(StorageError, match="mine not found"):
            driver.create_storage(empty_cr)
        assert condition(empty_cr, "StorageExists")["reason"] == "PVC Issues Found"

    def test_read_write_once_needs_recreate(self, listers, clients, empty_cr):
        """Test that RWO claims require a single replica and the Recreate strategy."""
        listers.pvcs["mine"] = claim("mine", ["ReadWriteOnce"])
        empty_cr["spec"]["rolloutStrategy"] = "RollingUpdate"
        driver = PVCDriver({"claim": "mine"}, listers, clients)

        with pytest.raises(StorageError, match="RollingUpdate rollout strategy"):
            driver.create_storage(empty_cr)

        empty_cr["spec"]["rolloutStrategy"] = "Recreate"
        empty_cr["spec"]["replicas"] = 2
        with pytest.raises(StorageError, match="more than one replica"):
            driver.create_storage(empty_cr)

        empty_cr["spec"]["replicas"] = 1
        driver.create_storage(empty_cr)
        assert condition(empty_cr, "StorageExists")["status"] == "True"

    def test_unsupported_access_mode(self, listers, clients, empty_cr):
        listers.pvcs["mine"] = claim("mine", ["ReadOnlyMany"])
        driver = PVCDriver({"claim": "mine"}, listers, clients)

        with pytest.raises(StorageError, match="necessary access modes"):
            driver.create_storage(empty_cr)

    def test_storage_exists(self, listers, clients, empty_cr):
        driver = PVCDriver({"claim": "mine"}, listers, clients)
        assert not driver.storage_exists(empty_cr)

        listers.pvcs["mine"] = claim("mine", ["ReadWriteMany"])
        assert driver.storage_exists(empty_cr)

    def test_volumes(self, listers, clients):
        volumes, mounts = PVCDriver({"claim": "mine"}, listers, clients).volumes()

        assert volumes == [{"name": "registry-storage", "persistentVolumeClaim": {"claimName": "mine"}}]
        assert mounts == [{"name": "registry-storage", "mountPath": "/registry"}]

    def test_remove_managed_claim(self, listers, clients, empty_cr):
        empty_cr["status"]["storageManaged"] = True
        driver = PVCDriver({"claim": "image-registry-storage"}, listers, clients)

        assert driver.remove_storage(empty_cr) == (False, None)
        clients.delete_pvc.assert_called_once_with("openshift-image-registry", "image-registry-storage")

    def test_remove_ignores_missing_claim(self, listers, clients, empty_cr):
        empty_cr["status"]["storageManaged"] = True
        clients.delete_pvc.side_effect = ApiException(status=404)
        driver = PVCDriver({"claim": "image-registry-storage"}, listers, clients)

        assert driver.remove_storage(empty_cr) == (False, None)

    def test_remove_user_claim_noop(self, listers, clients, empty_cr):
        """Test that claims the operator did not create are left alone."""
        empty_cr["status"]["storageManaged"] = False
        driver = PVCDriver({"claim": "mine"}, listers, clients)

        assert driver.remove_storage(empty_cr) == (False, None)
        clients.delete_pvc.assert_not_called()


class TestFilesystemDrivers:
    """Test cases for the emptyDir and filesystem drivers."""

    def test_empty_dir(self, empty_cr):
        driver = EmptyDirDriver({})

        driver.create_storage(empty_cr)

        volumes, mounts = driver.volumes()
        assert volumes == [{"name": "registry-storage", "emptyDir": {}}]
        assert mounts[0]["mountPath"] == "/registry"
        assert empty_cr["status"]["storage"] == {"emptyDir": {}}
        assert driver.config_env().get("REGISTRY_STORAGE").value == "filesystem"
        assert driver.storage_exists(empty_cr)
        assert driver.remove_storage(empty_cr) == (False, None)

    def test_volume_source(self):
        source = {"hostPath": {"path": "/data"}}
        volumes, _ = FilesystemDriver({"volumeSource": source}).volumes()

        assert volumes == [{"name": "registry-storage", "hostPath": {"path": "/data"}}]

    def test_secrets_empty(self):
        driver = EmptyDirDriver({})
        assert driver.volume_secrets() == {}
        assert driver.secrets() == {}
