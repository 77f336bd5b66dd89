"""
Kubernetes event recording for TimeWindowScaler resources.
"""

import logging
from typing import Any, Dict

import kopf

LOG = logging.getLogger(__name__)

EVENT_NORMAL = "Normal"
EVENT_WARNING = "Warning"


class EventRecorder:
    """Receives notification events about a resource"""

    def event(self, body: Dict[str, Any], type: str, reason: str, message: str):
        raise NotImplementedError


class KopfEventRecorder(EventRecorder):
    """Posts events through kopf's event queue"""

    def event(self, body: Dict[str, Any], type: str, reason: str, message: str):
        LOG.debug(f"Event {type}/{reason} for {body['metadata'].get('name')}: {message}")
        kopf.event(body, type=type, reason=reason, message=message)
