"""
Kopf event handlers for the Kyklos operator.

Each TimeWindowScaler gets one long-lived worker (a kopf daemon) that runs
reconciliation cycles back to back and sleeps until the computed requeue
delay elapses or something wakes it: a spec change, a change to the target
Deployment's replicas, or a change to the referenced holiday ConfigMap.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import kopf

from .clients.kubernetes import KubernetesClient
from .config import Config
from .crd_manager import CRDManager
from .health import set_component_health
from .metrics import MetricsCollector, start_metrics_server
from .operator import ReconcileResult, TimeWindowScalerReconciler
from .recorder import KopfEventRecorder

LOG = logging.getLogger(__name__)

InstanceKey = Tuple[str, str]

# ============================================================================
# Dispatcher
# ============================================================================

@dataclass
class _Instance:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    wakeup: asyncio.Event = field(default_factory=asyncio.Event)
    target: Optional[InstanceKey] = None
    holiday_config_map: Optional[InstanceKey] = None
    generation: Optional[int] = None
    target_replicas: Optional[int] = None


class Dispatcher:
    """Serializes cycles per instance and routes wake-ups to the right worker"""

    def __init__(self):
        self._instances: Dict[InstanceKey, _Instance] = {}

    def _get(self, key: InstanceKey) -> _Instance:
        if key not in self._instances:
            self._instances[key] = _Instance()
        return self._instances[key]

    def track(self, key: InstanceKey, spec: Dict, generation: Optional[int] = None) -> bool:
        """Remember which target and holiday ConfigMap ``key`` references.

        Returns True when ``generation`` differs from the one last seen, i.e.
        the spec changed rather than just status or metadata.
        """
        namespace = key[0]
        instance = self._get(key)
        changed = instance.generation != generation
        instance.generation = generation
        target_ref = spec.get("targetRef") or {}
        instance.target = (target_ref.get("namespace") or namespace, target_ref.get("name", ""))
        holiday = spec.get("holidayConfigMap")
        instance.holiday_config_map = (namespace, holiday) if holiday else None
        return changed

    def __len__(self) -> int:
        return len(self._instances)

    def forget(self, key: InstanceKey) -> None:
        self._instances.pop(key, None)

    def lock(self, key: InstanceKey) -> asyncio.Lock:
        return self._get(key).lock

    def wake(self, key: InstanceKey) -> None:
        if key in self._instances:
            self._instances[key].wakeup.set()

    def wake_for_target(self, namespace: str, name: str, replicas: Optional[int]) -> List[InstanceKey]:
        """Wake scalers of a Deployment whose replica count moved since last seen"""
        keys = []
        for key, instance in self._instances.items():
            if instance.target != (namespace, name) or instance.target_replicas == replicas:
                continue
            instance.target_replicas = replicas
            keys.append(key)
        for key in keys:
            self.wake(key)
        return keys

    def wake_for_holiday_config_map(self, namespace: str, name: str) -> List[InstanceKey]:
        keys = [k for k, i in self._instances.items() if i.holiday_config_map == (namespace, name)]
        for key in keys:
            self.wake(key)
        return keys

    async def sleep(self, key: InstanceKey, seconds: float) -> bool:
        """Sleep up to ``seconds``; True when woken early"""
        wakeup = self._get(key).wakeup
        try:
            await asyncio.wait_for(wakeup.wait(), timeout=seconds)
            return True
        except asyncio.TimeoutError:
            return False
        finally:
            wakeup.clear()

    async def run_cycle(self, reconciler: TimeWindowScalerReconciler, key: InstanceKey) -> ReconcileResult:
        async with self.lock(key):
            return await reconciler.reconcile(*key)


def next_sleep(result: ReconcileResult) -> float:
    if result.requeue:
        return 0
    if result.requeue_after is not None:
        return result.requeue_after
    return Config.ERROR_BACKOFF_SECONDS

# ============================================================================
# Kopf Event Handlers
# ============================================================================

@kopf.on.startup()
async def startup(settings: kopf.OperatorSettings, memo: kopf.Memo, **_):
    """Operator startup configuration"""
    settings.posting.level = logging.WARNING

    try:
        client = KubernetesClient.from_environment()
        set_component_health("kubernetes", True)
    except Exception as e:
        LOG.error(f"K8s init failed: {e}")
        set_component_health("kubernetes", False)
        raise

    crd_manager = CRDManager(client.api_client)
    if not await crd_manager.crd_exists(Config.CRD_NAME):
        LOG.warning(f"CRD {Config.CRD_NAME} is not installed yet")
    if not await crd_manager.wait_for_crd_ready(Config.CRD_NAME):
        raise kopf.PermanentError(f"CRD {Config.CRD_NAME} is not ready")

    metrics = MetricsCollector()
    start_metrics_server(Config.METRICS_PORT)

    memo.client = client
    memo.metrics = metrics
    memo.dispatcher = Dispatcher()
    memo.reconciler = TimeWindowScalerReconciler(client, KopfEventRecorder(), metrics)

    LOG.info("Kyklos operator started successfully")
    LOG.info(f"Log level: {Config.LOG_LEVEL}")
    LOG.info(f"Metrics port: {Config.METRICS_PORT}")


@kopf.daemon(Config.CRD_GROUP, Config.CRD_VERSION, Config.CRD_PLURAL,
             cancellation_timeout=Config.CANCELLATION_TIMEOUT)
async def scaler_worker(stopped: kopf.DaemonStopped, name: str, namespace: str, spec: kopf.Spec,
                        meta: kopf.Meta, memo: kopf.Memo, **_):
    """Reconcile one TimeWindowScaler until it goes away"""
    key = (namespace, name)
    dispatcher: Dispatcher = memo.dispatcher
    dispatcher.track(key, dict(spec), meta.get("generation"))
    LOG.info(f"Started worker for TimeWindowScaler '{name}' in '{namespace}'")

    try:
        while not stopped:
            result = await dispatcher.run_cycle(memo.reconciler, key)
            if result.stop:
                break
            delay = next_sleep(result)
            LOG.debug(f"[{namespace}/{name}] {result.state}, next evaluation in {delay:.0f}s")
            if delay:
                await dispatcher.sleep(key, delay)
    finally:
        dispatcher.forget(key)
        LOG.info(f"Stopped worker for TimeWindowScaler '{name}' in '{namespace}'")


@kopf.on.event(Config.CRD_GROUP, Config.CRD_VERSION, Config.CRD_PLURAL)
async def on_scaler_event(type: Optional[str], body: kopf.Body, name: str, namespace: str,
                          memo: kopf.Memo, **_):
    """Wake the worker on changes; run the deletion cycle directly"""
    dispatcher: Dispatcher = memo.dispatcher
    key = (namespace, name)

    if type == "DELETED":
        dispatcher.wake(key)
        return

    if body.get("metadata", {}).get("deletionTimestamp"):
        LOG.info(f"TimeWindowScaler '{name}' in '{namespace}' is being deleted")
        result = await dispatcher.run_cycle(memo.reconciler, key)
        dispatcher.wake(key)
        if result.stop:
            dispatcher.forget(key)
        return

    # Our own status and finalizer writes do not bump the generation
    generation = body.get("metadata", {}).get("generation")
    if dispatcher.track(key, dict(body.get("spec", {})), generation):
        LOG.info(f"TimeWindowScaler '{name}' in '{namespace}' changed ({type or 'listed'}), re-evaluating")
        dispatcher.wake(key)


@kopf.on.event('apps', 'v1', 'deployments')
async def on_target_event(name: str, namespace: str, spec: kopf.Spec, memo: kopf.Memo, **_):
    """Re-evaluate scalers whose target changed, e.g. was resized behind our back"""
    dispatcher: Dispatcher = memo.dispatcher
    replicas = spec.get('replicas')
    for key in dispatcher.wake_for_target(namespace, name, replicas):
        LOG.info(f"Deployment {namespace}/{name} now wants {replicas} replicas, waking {key[0]}/{key[1]}")


@kopf.on.event('', 'v1', 'configmaps')
async def on_config_map_event(name: str, namespace: str, memo: kopf.Memo, **_):
    """Re-evaluate scalers referencing a changed holiday ConfigMap"""
    dispatcher: Dispatcher = memo.dispatcher
    for key in dispatcher.wake_for_holiday_config_map(namespace, name):
        LOG.info(f"ConfigMap {namespace}/{name} changed, triggering reconciliation of {key[0]}/{key[1]}")

# ============================================================================
# Cleanup
# ============================================================================

@kopf.on.cleanup()
async def cleanup(memo: kopf.Memo, **_):
    """Cleanup on operator shutdown"""
    LOG.info("Cleaning up operator resources...")
    client = memo.get('client')
    if client is not None:
        client.close()
