"""Controllers reconciling the registry config and the image pruner."""

from .applier import Applier, ApplyResult
from .base import BaseController
from .informers import DeletedFinalStateUnknown, EventHandler
from .pruner import PrunerController
from .registry import RegistryController
from .workqueue import ExponentialBackoff, RateLimitingQueue

__all__ = [
    "Applier",
    "ApplyResult",
    "BaseController",
    "DeletedFinalStateUnknown",
    "EventHandler",
    "ExponentialBackoff",
    "PrunerController",
    "RateLimitingQueue",
    "RegistryController",
]
