"""
Configuration and logging setup for the Kyklos operator.
"""

import logging
import os
from typing import Dict, List, Optional

# ============================================================================
# Logging Configuration
# ============================================================================

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
NOISY_LOGGERS = ('kubernetes', 'urllib3', 'asyncio')


def setup_logging(level: Optional[str] = None):
    """Configure root logging once and quiet chatty client libraries"""
    for noisy in NOISY_LOGGERS:
        logging.getLogger(noisy).setLevel(logging.WARNING)

    logging.basicConfig(level=(level or Config.LOG_LEVEL).upper(), format=LOG_FORMAT)


def _watch_namespaces() -> List[str]:
    raw = os.getenv('WATCH_NAMESPACE', '')
    return [ns.strip() for ns in raw.split(',') if ns.strip()]

# ============================================================================
# Configuration Constants
# ============================================================================

class Config:
    """Configuration constants for the operator"""

    # Environment variables
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')
    METRICS_PORT = int(os.getenv('METRICS_PORT', '8000'))
    LIVENESS_PORT = int(os.getenv('LIVENESS_PORT', '8080'))
    WATCH_NAMESPACES = _watch_namespaces()

    # Requeue scheduling (seconds)
    REQUEUE_LEAD_SECONDS = int(os.getenv('REQUEUE_LEAD_SECONDS', '10'))
    MIN_REQUEUE_SECONDS = int(os.getenv('MIN_REQUEUE_SECONDS', '30'))
    ERROR_BACKOFF_SECONDS = int(os.getenv('ERROR_BACKOFF_SECONDS', '30'))
    TARGET_FETCH_BACKOFF_SECONDS = int(os.getenv('TARGET_FETCH_BACKOFF_SECONDS', '60'))
    TARGET_MISSING_BACKOFF_SECONDS = int(os.getenv('TARGET_MISSING_BACKOFF_SECONDS', '300'))

    # Kubernetes settings
    CRD_GROUP = 'kyklos.kyklos.io'
    CRD_VERSION = 'v1alpha1'
    CRD_PLURAL = 'timewindowscalers'
    CRD_NAME = f'{CRD_PLURAL}.{CRD_GROUP}'
    FINALIZER = 'kyklos.kyklos.io/finalizer'

    # Resource defaults and bounds
    DEFAULT_GRACE_PERIOD_SECONDS = 300
    MAX_GRACE_PERIOD_SECONDS = 3600
    MAX_WINDOW_NAME_LENGTH = 63
    DEFAULT_TARGET_REPLICAS = 1

    # Worker settings
    CANCELLATION_TIMEOUT = 5.0  # seconds
    CRD_READY_TIMEOUT = 60  # seconds
    API_REQUEST_TIMEOUT = float(os.getenv('API_REQUEST_TIMEOUT', '30'))  # seconds

# ============================================================================
# Health Status (Global State)
# ============================================================================

health_status: Dict[str, bool] = {
    "kubernetes": True,
    "crd_manager": True,
    "reconciler": True,
}
