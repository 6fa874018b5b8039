"""Environment variables handed to the registry deployment."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Iterator

import yaml


def encode_value(value: Any) -> str:
    """Encode ``value`` as a flow-style YAML scalar.

    The registry reads its configuration overrides through a YAML parser, so
    strings that would otherwise parse as numbers or booleans are quoted.
    """
    encoded = yaml.safe_dump(value, default_flow_style=True, width=float("inf"))
    if encoded.endswith("\n...\n"):
        encoded = encoded[: -len("\n...\n")]
    return encoded.rstrip("\n")


@dataclass(frozen=True)
class EnvVar:
    """A single environment variable.

    Secret variables are delivered through the private configuration secret
    instead of being inlined in the pod spec.
    """

    name: str
    value: Any
    secret: bool = False


class EnvVars:
    """Ordered collection of registry environment variables."""

    def __init__(self, items: Iterable[EnvVar] = ()) -> None:
        self._items: list[EnvVar] = list(items)

    def append(self, var: EnvVar) -> None:
        self._items.append(var)

    def extend(self, other: Iterable[EnvVar]) -> None:
        self._items.extend(other)

    def __iter__(self) -> Iterator[EnvVar]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, EnvVars):
            return NotImplemented
        return self._items == other._items

    def __repr__(self) -> str:
        return f"EnvVars({self._items!r})"

    def get(self, name: str) -> EnvVar | None:
        """Return the variable called ``name``, if present."""
        for var in self._items:
            if var.name == name:
                return var
        return None

    def build(self, secret_name: str) -> list[dict[str, Any]]:
        """Render the variables as container ``env`` entries.

        Args:
            secret_name: Secret holding the values of secret variables

        Returns:
            List of env entries in Kubernetes API form
        """
        env: list[dict[str, Any]] = []
        for var in self._items:
            if var.secret:
                env.append({
                    "name": var.name,
                    "valueFrom": {
                        "secretKeyRef": {
                            "name": secret_name,
                            "key": var.name,
                        },
                    },
                })
            else:
                env.append({"name": var.name, "value": encode_value(var.value)})
        return env

    def secret_data(self) -> dict[str, str]:
        """Return the encoded values of secret variables keyed by name."""
        return {var.name: encode_value(var.value) for var in self._items if var.secret}
