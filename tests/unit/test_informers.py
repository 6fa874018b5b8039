"""Tests for watch event handling."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from image_registry_operator.controllers.informers import DeletedFinalStateUnknown, EventHandler, object_key


def obj(name, version, namespace="openshift-image-registry"):
    return {"metadata": {"name": name, "namespace": namespace, "resourceVersion": version}}


@pytest.fixture
def queue():
    return MagicMock()


@pytest.fixture
def handler(queue):
    return EventHandler(queue, "Deployment")


class TestEventHandler:
    """Test cases for EventHandler."""

    def test_object_key(self):
        assert object_key(obj("a", "1")) == "openshift-image-registry/a"
        assert object_key({"metadata": {"name": "cluster"}}) == "cluster"

    def test_add_enqueues_singleton_key(self, handler, queue):
        handler.handle("ADDED", obj("a", "1"))
        queue.add.assert_called_once_with("changes")

    def test_resync_without_change_dropped(self, handler, queue):
        """Test that the same resourceVersion does not enqueue twice."""
        handler.handle(None, obj("a", "1"))
        handler.handle("MODIFIED", obj("a", "1"))

        assert queue.add.call_count == 1

    def test_update_enqueues(self, handler, queue):
        handler.handle("ADDED", obj("a", "1"))
        handler.handle("MODIFIED", obj("a", "2"))

        assert queue.add.call_count == 2

    def test_delete_forgets_version(self, handler, queue):
        handler.handle("ADDED", obj("a", "1"))
        handler.handle("DELETED", obj("a", "1"))
        handler.handle("ADDED", obj("a", "1"))

        assert queue.add.call_count == 3

    def test_tombstone_unwrapped(self, handler, queue):
        handler.on_delete(DeletedFinalStateUnknown("openshift-image-registry/a", obj("a", "1")))
        queue.add.assert_called_once_with("changes")

    def test_undecodable_delete_ignored(self, handler, queue):
        handler.on_delete(DeletedFinalStateUnknown("x", "not an object"))
        queue.add.assert_not_called()

    def test_custom_key(self, queue):
        EventHandler(queue, "CronJob", key="pruner").on_add(obj("image-pruner", "1"))
        queue.add.assert_called_once_with("pruner")

    def test_kinds_sharing_a_name_tracked_apart(self, queue):
        """Test that a Deployment and a Service with one name keep separate versions."""
        handler = EventHandler(queue, "Registry")
        deployment = dict(obj("image-registry", "1"), kind="Deployment")
        service = dict(obj("image-registry", "7"), kind="Service")

        handler.handle("ADDED", deployment)
        handler.handle("ADDED", service)
        handler.handle(None, deployment)
        handler.handle(None, service)

        assert queue.add.call_count == 2
