"""
Entrypoint for the Kyklos operator.
"""

import logging

import kopf

from .config import Config, setup_logging

# Handlers register themselves with kopf on import
from . import controller, health  # noqa: F401

LOG = logging.getLogger(__name__)


def main():
    """Run the operator until it is told to stop"""
    setup_logging()

    if Config.WATCH_NAMESPACES:
        LOG.info(f"Watching namespaces: {', '.join(Config.WATCH_NAMESPACES)}")
    else:
        LOG.info("Watching all namespaces")

    kopf.run(
        standalone=True,
        clusterwide=not Config.WATCH_NAMESPACES,
        namespaces=Config.WATCH_NAMESPACES,
        liveness_endpoint=f"http://0.0.0.0:{Config.LIVENESS_PORT}/healthz",
    )


if __name__ == "__main__":
    main()
