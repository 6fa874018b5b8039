"""Run the operator with ``python -m image_registry_operator``."""

import kopf

from . import main as _handlers  # noqa: F401  registers the kopf handlers


def main() -> None:
    kopf.run(clusterwide=True, standalone=True)


if __name__ == "__main__":
    main()
