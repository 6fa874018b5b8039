"""Translate watch events into work queue items."""

from __future__ import annotations

import logging
import threading
from typing import Any, NamedTuple

from ..constants import WORKQUEUE_KEY
from .workqueue import RateLimitingQueue

logger = logging.getLogger(__name__)


class DeletedFinalStateUnknown(NamedTuple):
    """Placeholder for an object deleted while the watch was disconnected."""

    key: str
    obj: dict[str, Any]


def object_key(obj: dict[str, Any]) -> str:
    meta = obj.get("metadata") or {}
    namespace = meta.get("namespace")
    return f"{namespace}/{meta.get('name', '')}" if namespace else meta.get("name", "")


def _version_key(obj: dict[str, Any]) -> tuple[str, str]:
    # One handler watches several kinds whose objects can share a name.
    return obj.get("kind", ""), object_key(obj)


class EventHandler:
    """Enqueues the singleton key of a controller on relevant watch events.

    Watch streams only deliver the new object, so the last seen
    ``resourceVersion`` of every object is tracked to drop resyncs that
    carry no change.
    """

    def __init__(self, queue: RateLimitingQueue, kind: str, key: str = WORKQUEUE_KEY) -> None:
        self.queue = queue
        self.kind = kind
        self.key = key
        self._versions: dict[tuple[str, str], str] = {}
        self._lock = threading.Lock()

    def on_add(self, obj: dict[str, Any]) -> None:
        logger.debug(f"add event received for {self.kind} {object_key(obj)}")
        with self._lock:
            self._versions[_version_key(obj)] = (obj.get("metadata") or {}).get("resourceVersion", "")
        self.queue.add(self.key)

    def on_update(self, old: dict[str, Any] | None, new: dict[str, Any]) -> None:
        old_version = ((old or {}).get("metadata") or {}).get("resourceVersion")
        new_version = (new.get("metadata") or {}).get("resourceVersion")
        with self._lock:
            self._versions[_version_key(new)] = new_version or ""
        if old_version is not None and old_version == new_version:
            return
        logger.debug(f"update event received for {self.kind} {object_key(new)}")
        self.queue.add(self.key)

    def on_delete(self, obj: dict[str, Any] | DeletedFinalStateUnknown) -> None:
        if isinstance(obj, DeletedFinalStateUnknown):
            obj = obj.obj
        if not isinstance(obj, dict):
            logger.error(f"error decoding deleted {self.kind}: unexpected object type {type(obj).__name__}")
            return
        logger.debug(f"delete event received for {self.kind} {object_key(obj)}")
        with self._lock:
            self._versions.pop(_version_key(obj), None)
        self.queue.add(self.key)

    def handle(self, event_type: str | None, obj: dict[str, Any]) -> None:
        """Dispatch a raw watch event.

        Args:
            event_type: ``ADDED``, ``MODIFIED`` or ``DELETED``; None for objects
                delivered by the initial listing
            obj: The object carried by the event
        """
        if event_type == "DELETED":
            self.on_delete(obj)
            return

        with self._lock:
            previous = self._versions.get(_version_key(obj))
        if previous is None:
            self.on_add(obj)
        else:
            self.on_update({"metadata": {"resourceVersion": previous}}, obj)
