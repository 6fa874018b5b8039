"""EmptyDir storage driver.

Images are lost whenever a registry pod restarts, so this backend is only
meant for clusters without persistent storage.
"""

from __future__ import annotations

from typing import Any

from .filesystem import FilesystemDriver


class EmptyDirDriver(FilesystemDriver):
    """Filesystem driver on an ``emptyDir`` volume."""

    storage_key = "emptyDir"

    def volume_source(self) -> dict[str, Any]:
        return {"emptyDir": {}}
