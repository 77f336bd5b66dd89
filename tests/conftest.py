"""
Pytest configuration and shared fixtures for Kyklos tests.
"""

import copy
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import pytest
from prometheus_client import CollectorRegistry

from kyklos.config import Config, health_status
from kyklos.engines.clock import FakeClock
from kyklos.exceptions import NotFoundError, ScaleError
from kyklos.metrics import MetricsCollector
from kyklos.operator import TimeWindowScalerReconciler
from kyklos.recorder import EventRecorder

# Monday
MONDAY_10AM = datetime(2025, 3, 10, 10, 0, tzinfo=timezone.utc)


class FakeKubernetesClient:
    """In-memory stand-in for KubernetesClient.

    ``errors`` maps a method name to the exception that method should raise.
    """

    def __init__(self):
        self.scalers: Dict[tuple, Dict[str, Any]] = {}
        self.deployments: Dict[tuple, Dict[str, Any]] = {}
        self.config_maps: Dict[tuple, Dict[str, str]] = {}
        self.errors: Dict[str, Exception] = {}
        self.scale_calls: List[tuple] = []
        self.status_updates: List[Dict[str, Any]] = []
        self.finalizer_updates: List[tuple] = []

    def _raise_if_configured(self, method: str):
        if method in self.errors:
            raise self.errors[method]

    async def get_scaler(self, namespace: str, name: str) -> Dict[str, Any]:
        self._raise_if_configured("get_scaler")
        if (namespace, name) not in self.scalers:
            raise NotFoundError(f"TimeWindowScaler {namespace}/{name} not found")
        return copy.deepcopy(self.scalers[(namespace, name)])

    async def update_scaler_finalizers(self, namespace: str, name: str, finalizers: List[str],
                                       resource_version: Optional[str] = None) -> Dict[str, Any]:
        self._raise_if_configured("update_scaler_finalizers")
        self.finalizer_updates.append((namespace, name, list(finalizers), resource_version))
        body = self.scalers[(namespace, name)]
        body["metadata"]["finalizers"] = list(finalizers)
        return copy.deepcopy(body)

    async def update_scaler_status(self, namespace: str, name: str, status: Dict[str, Any]) -> Dict[str, Any]:
        self._raise_if_configured("update_scaler_status")
        self.status_updates.append(copy.deepcopy(status))
        body = self.scalers[(namespace, name)]
        body["status"] = copy.deepcopy(status)
        return copy.deepcopy(body)

    async def get_deployment(self, namespace: str, name: str) -> Dict[str, Any]:
        self._raise_if_configured("get_deployment")
        if (namespace, name) not in self.deployments:
            raise NotFoundError(f"Deployment {namespace}/{name} not found")
        return dict(self.deployments[(namespace, name)])

    async def scale_deployment(self, namespace: str, name: str, replicas: int):
        if "scale_deployment" in self.errors:
            raise self.errors["scale_deployment"]
        if (namespace, name) not in self.deployments:
            raise ScaleError(f"Deployment {namespace}/{name} cannot be scaled")
        self.scale_calls.append((namespace, name, replicas))
        self.deployments[(namespace, name)]["replicas"] = replicas

    async def get_config_map_data(self, namespace: str, name: str) -> Dict[str, str]:
        self._raise_if_configured("get_config_map_data")
        if (namespace, name) not in self.config_maps:
            raise NotFoundError(f"ConfigMap {namespace}/{name} not found")
        return dict(self.config_maps[(namespace, name)])

    def add_deployment(self, namespace: str, name: str, replicas: Optional[int]):
        self.deployments[(namespace, name)] = {
            "name": name, "namespace": namespace, "replicas": replicas,
        }

    def close(self):
        pass


class RecordingEventRecorder(EventRecorder):
    """Keeps every event in memory"""

    def __init__(self):
        self.events: List[Dict[str, Any]] = []

    def event(self, body: Dict[str, Any], type: str, reason: str, message: str):
        self.events.append({
            "name": body["metadata"].get("name"),
            "type": type,
            "reason": reason,
            "message": message,
        })

    def reasons(self) -> List[str]:
        return [e["reason"] for e in self.events]


def scaler_body(name: str = "web-scaler", namespace: str = "default", *,
                finalizers: Optional[List[str]] = None, status: Optional[Dict[str, Any]] = None,
                generation: int = 1, **spec_overrides) -> Dict[str, Any]:
    """A TimeWindowScaler body as the API server would return it"""
    spec = {
        "targetRef": {"name": "web"},
        "defaultReplicas": 1,
        "timezone": "UTC",
        "windows": [
            {"name": "BusinessHours", "start": "09:00", "end": "17:00", "replicas": 5},
        ],
        "gracePeriodSeconds": 300,
    }
    spec.update(spec_overrides)
    body = {
        "apiVersion": f"{Config.CRD_GROUP}/{Config.CRD_VERSION}",
        "kind": "TimeWindowScaler",
        "metadata": {
            "name": name,
            "namespace": namespace,
            "uid": f"uid-{name}",
            "generation": generation,
            "resourceVersion": "100",
            "finalizers": [Config.FINALIZER] if finalizers is None else finalizers,
        },
        "spec": spec,
    }
    if status is not None:
        body["status"] = status
    return body


@pytest.fixture
def clock():
    """Clock frozen on a Monday morning"""
    return FakeClock(MONDAY_10AM)


@pytest.fixture
def k8s_client():
    """Fake client with one 'web' deployment at one replica"""
    client = FakeKubernetesClient()
    client.add_deployment("default", "web", 1)
    return client


@pytest.fixture
def recorder():
    return RecordingEventRecorder()


@pytest.fixture
def registry():
    """Private registry so tests do not collide on metric names"""
    return CollectorRegistry()


@pytest.fixture
def metrics(registry):
    return MetricsCollector(registry)


@pytest.fixture
def reconciler(k8s_client, recorder, metrics, clock):
    return TimeWindowScalerReconciler(k8s_client, recorder, metrics, clock=clock)


@pytest.fixture
def add_scaler(k8s_client):
    """Store a scaler body in the fake client and return it"""
    def _add(**kwargs):
        body = scaler_body(**kwargs)
        k8s_client.scalers[(body["metadata"]["namespace"], body["metadata"]["name"])] = body
        return body
    return _add


@pytest.fixture(autouse=True)
def reset_health_status():
    """Health status is process-global"""
    saved = dict(health_status)
    yield
    health_status.clear()
    health_status.update(saved)
