"""
TimeWindowScaler reconciliation.

One ``reconcile()`` call is one complete evaluate-and-apply cycle for a single
TimeWindowScaler. It reads everything it needs, recomputes the decision from
the current time and writes absolute values back, so an abandoned cycle can
always be retried from scratch.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Dict, Optional

from .clients.kubernetes import KubernetesClient
from .config import Config
from .engines.clock import Clock, RealClock
from .engines.decision import DecisionEngine
from .engines.hysteresis import grace_period_expiry
from .engines.schedule import load_timezone, parse_hhmm
from .engines.types import (
    EngineInput, EngineOutput, WindowSpec, HOLIDAY_LABELS, LABEL_GRACE_PERIOD,
)
from .exceptions import (
    ConfigurationError, InternalComputeError, KyklosError, NotFoundError, TransientRemoteError,
)
from .metrics import MetricsCollector
from .models.timewindowscaler_crd import Condition, TimeWindowScaler, TimeWindowScalerStatus
from .recorder import EVENT_NORMAL, EVENT_WARNING, EventRecorder
from .utils import add_finalizer, compute_requeue_delay, has_finalizer, remove_finalizer

LOG = logging.getLogger(__name__)

CONDITION_READY = "Ready"

# Cycle outcomes; the degraded ones double as Ready condition reasons
STATE_GONE = "Gone"
STATE_DELETING = "Deleting"
STATE_INITIALIZING = "Initializing"
STATE_TARGET_NOT_FOUND = "TargetNotFound"
STATE_TARGET_FETCH_FAILED = "TargetFetchFailed"
STATE_INVALID_CONFIGURATION = "InvalidConfiguration"
STATE_COMPUTE_FAILED = "ComputeFailed"
STATE_SCALE_FAILED = "ScaleFailed"
STATE_PAUSED = "Paused"
STATE_RECONCILED = "Reconciled"
STATE_FETCH_FAILED = "FetchFailed"
STATE_STATUS_UPDATE_FAILED = "StatusUpdateFailed"


@dataclass
class ReconcileResult:
    """What the dispatch layer should do after a cycle"""
    state: str
    requeue_after: Optional[float] = None
    requeue: bool = False
    stop: bool = False
    error: Optional[Exception] = None


class TimeWindowScalerReconciler:
    """Drives one TimeWindowScaler's target toward the replica count its schedule dictates"""

    def __init__(self, client: KubernetesClient, recorder: EventRecorder, metrics: MetricsCollector,
                 clock: Optional[Clock] = None, engine: Optional[DecisionEngine] = None):
        self.client = client
        self.recorder = recorder
        self.metrics = metrics
        self.clock = clock or RealClock()
        self.engine = engine or DecisionEngine()

    async def reconcile(self, namespace: str, name: str) -> ReconcileResult:
        """Run one cycle. Per-instance failures are returned, never raised."""
        started = time.monotonic()
        try:
            result = await self._reconcile(namespace, name)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            LOG.error(f"[{namespace}/{name}] Unexpected reconciliation failure: {e}", exc_info=True)
            result = ReconcileResult(state=STATE_COMPUTE_FAILED, requeue_after=Config.ERROR_BACKOFF_SECONDS, error=e)

        # Series of deleted instances were just forgotten and must stay gone
        if not result.stop:
            self.metrics.observe_reconcile(
                namespace, name, "error" if result.error else "success", time.monotonic() - started
            )
        return result

    async def _reconcile(self, namespace: str, name: str) -> ReconcileResult:
        try:
            body = await self.client.get_scaler(namespace, name)
        except NotFoundError:
            LOG.info(f"[{namespace}/{name}] TimeWindowScaler not found, may have been deleted")
            return ReconcileResult(state=STATE_GONE, stop=True)
        except TransientRemoteError as e:
            LOG.error(f"[{namespace}/{name}] Failed to get TimeWindowScaler: {e}")
            return ReconcileResult(state=STATE_FETCH_FAILED, requeue_after=Config.ERROR_BACKOFF_SECONDS, error=e)

        metadata = body.get("metadata") or {}
        if metadata.get("deletionTimestamp"):
            return await self.handle_deletion(body)

        if not has_finalizer(metadata.get("finalizers"), Config.FINALIZER):
            return await self.add_finalizer(body)

        try:
            scaler = TimeWindowScaler.from_dict(body)
        except ConfigurationError as e:
            return await self._fail(self._unparsed(body), STATE_INVALID_CONFIGURATION, str(e),
                                    Config.ERROR_BACKOFF_SECONDS, e)

        try:
            return await self._reconcile_scaler(scaler)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            message = f"Unexpected reconciliation failure: {e}"
            LOG.error(f"[{namespace}/{name}] {message}", exc_info=True)
            return await self._fail(scaler, STATE_COMPUTE_FAILED, message, Config.ERROR_BACKOFF_SECONDS, e)

    async def _reconcile_scaler(self, scaler: TimeWindowScaler) -> ReconcileResult:
        namespace, name = scaler.namespace, scaler.name

        try:
            deployment = await self.client.get_deployment(scaler.target_namespace, scaler.spec.target_ref.name)
        except NotFoundError:
            return await self.handle_missing_target(scaler)
        except TransientRemoteError as e:
            message = f"Failed to get target deployment {scaler.spec.target_ref.name}: {e}"
            LOG.error(f"[{namespace}/{name}] {message}")
            return await self._fail(scaler, STATE_TARGET_FETCH_FAILED, message,
                                    Config.TARGET_FETCH_BACKOFF_SECONDS, e)

        current_replicas = deployment.get("replicas")
        if current_replicas is None:
            current_replicas = Config.DEFAULT_TARGET_REPLICAS

        try:
            engine_input = await self.build_engine_input(scaler, current_replicas)
        except ConfigurationError as e:
            message = f"Failed to build engine input: {e}"
            LOG.error(f"[{namespace}/{name}] {message}")
            return await self._fail(scaler, STATE_INVALID_CONFIGURATION, message, Config.ERROR_BACKOFF_SECONDS, e)

        try:
            output = self.engine.resolve(engine_input)
        except (ConfigurationError, InternalComputeError) as e:
            message = f"Failed to compute effective replicas: {e}"
            LOG.error(f"[{namespace}/{name}] {message}")
            return await self._fail(scaler, STATE_COMPUTE_FAILED, message, Config.ERROR_BACKOFF_SECONDS, e)

        LOG.info(
            f"[{namespace}/{name}] Computed scaling decision: "
            f"nowLocal={engine_input.now.astimezone(load_timezone(scaler.spec.timezone)).isoformat()} "
            f"nextBoundary={output.next_boundary.isoformat()} "
            f"effectiveReplicas={output.effective_replicas} "
            f"currentWindow={output.current_window} reason={output.reason}"
        )

        if scaler.spec.pause:
            return await self.publish_paused(scaler, engine_input, output, current_replicas)
        return await self.apply_decision(scaler, engine_input, output, current_replicas)

    # ========================================================================
    # Lifecycle
    # ========================================================================

    async def handle_deletion(self, body: Dict[str, Any]) -> ReconcileResult:
        """Release per-instance bookkeeping and let the object go"""
        metadata = body["metadata"]
        namespace, name = metadata.get("namespace", ""), metadata["name"]

        if has_finalizer(metadata.get("finalizers"), Config.FINALIZER):
            LOG.info(f"[{namespace}/{name}] Performing cleanup for TimeWindowScaler")
            self.metrics.forget(namespace, name)
            self.recorder.event(body, EVENT_NORMAL, "Deleting",
                                "TimeWindowScaler is being deleted, cleaning up resources")
            try:
                await self.client.update_scaler_finalizers(
                    namespace, name,
                    remove_finalizer(metadata.get("finalizers"), Config.FINALIZER),
                    metadata.get("resourceVersion"),
                )
            except NotFoundError:
                pass
            except TransientRemoteError as e:
                LOG.error(f"[{namespace}/{name}] Failed to remove finalizer: {e}")
                return ReconcileResult(state=STATE_DELETING, requeue_after=Config.ERROR_BACKOFF_SECONDS, error=e)
            LOG.info(f"[{namespace}/{name}] Successfully cleaned up TimeWindowScaler")

        return ReconcileResult(state=STATE_DELETING, stop=True)

    async def add_finalizer(self, body: Dict[str, Any]) -> ReconcileResult:
        """Register the finalizer so cleanup always runs before garbage collection"""
        metadata = body["metadata"]
        namespace, name = metadata.get("namespace", ""), metadata["name"]
        try:
            await self.client.update_scaler_finalizers(
                namespace, name,
                add_finalizer(metadata.get("finalizers"), Config.FINALIZER),
                metadata.get("resourceVersion"),
            )
        except NotFoundError:
            return ReconcileResult(state=STATE_GONE, stop=True)
        except TransientRemoteError as e:
            LOG.error(f"[{namespace}/{name}] Failed to add finalizer: {e}")
            return ReconcileResult(state=STATE_INITIALIZING, requeue_after=Config.ERROR_BACKOFF_SECONDS, error=e)

        LOG.debug(f"[{namespace}/{name}] Added finalizer {Config.FINALIZER}")
        return ReconcileResult(state=STATE_INITIALIZING, requeue=True)

    async def handle_missing_target(self, scaler: TimeWindowScaler) -> ReconcileResult:
        """Degrade without touching replica state and check back much later"""
        target = scaler.spec.target_ref.name
        LOG.info(f"[{scaler.namespace}/{scaler.name}] Target deployment {scaler.target_namespace}/{target} not found")

        status = self._with_ready(scaler, scaler.status, "False", STATE_TARGET_NOT_FOUND,
                                  f"Target deployment {target} not found")
        try:
            await self._write_status(scaler, status)
        except KyklosError as e:
            return ReconcileResult(state=STATE_STATUS_UPDATE_FAILED, requeue_after=Config.ERROR_BACKOFF_SECONDS, error=e)
        return ReconcileResult(state=STATE_TARGET_NOT_FOUND, requeue_after=Config.TARGET_MISSING_BACKOFF_SECONDS)

    # ========================================================================
    # Engine input
    # ========================================================================

    async def build_engine_input(self, scaler: TimeWindowScaler, current_replicas: int) -> EngineInput:
        """Validate the spec and collect everything the engine needs"""
        spec = scaler.spec

        windows = []
        for w in spec.windows:
            try:
                parse_hhmm(w.start)
                parse_hhmm(w.end)
            except ConfigurationError as e:
                self._invalid_window(scaler, f"Window '{w.name}' has invalid time range '{w.start}-{w.end}': {e}")
            if w.replicas < 0:
                self._invalid_window(scaler, f"Window '{w.name}' has invalid replicas {w.replicas}: must be >= 0")
            if len(w.name) > Config.MAX_WINDOW_NAME_LENGTH:
                self._invalid_window(
                    scaler, f"Window name '{w.name}' exceeds {Config.MAX_WINDOW_NAME_LENGTH} characters"
                )
            windows.append(WindowSpec(start=w.start, end=w.end, replicas=w.replicas, name=w.name, days=w.days))

        if spec.default_replicas < 0:
            raise ConfigurationError(f"defaultReplicas {spec.default_replicas} must be >= 0")

        grace_period = spec.effective_grace_period_seconds
        if not 0 <= grace_period <= Config.MAX_GRACE_PERIOD_SECONDS:
            raise ConfigurationError(
                f"gracePeriodSeconds {grace_period} must be between 0 and {Config.MAX_GRACE_PERIOD_SECONDS}"
            )

        now = self.clock.now()
        return EngineInput(
            now=now,
            timezone=spec.timezone,
            windows=tuple(windows),
            default_replicas=spec.default_replicas,
            holiday_mode=spec.holiday_mode,
            is_holiday=await self.check_holiday(scaler, now),
            pause=spec.pause,
            grace_period_seconds=grace_period,
            last_scale_time=scaler.status.last_scale_time,
            current_replicas=current_replicas,
        )

    def _invalid_window(self, scaler: TimeWindowScaler, message: str):
        LOG.error(f"[{scaler.namespace}/{scaler.name}] {message}")
        self.recorder.event(scaler.to_reference(), EVENT_WARNING, "InvalidWindow", message)
        raise ConfigurationError(message)

    async def check_holiday(self, scaler: TimeWindowScaler, now: datetime) -> bool:
        """Whether today, in the scaler's timezone, is listed in its holiday ConfigMap.

        Any failure counts as "not a holiday" so scaling is never blocked.
        """
        config_map = scaler.spec.holiday_config_map
        if not config_map:
            return False

        try:
            tz = load_timezone(scaler.spec.timezone)
        except ConfigurationError:
            # The engine reports the bad timezone itself
            return False
        today = now.astimezone(tz).strftime("%Y-%m-%d")

        try:
            data = await self.client.get_config_map_data(scaler.namespace, config_map)
        except NotFoundError:
            return False
        except TransientRemoteError as e:
            message = f"Failed to check holiday ConfigMap {config_map}: {e}"
            LOG.warning(f"[{scaler.namespace}/{scaler.name}] {message}")
            self.recorder.event(scaler.to_reference(), EVENT_WARNING, "HolidayCheckFailed", message)
            return False

        is_holiday = today in data
        if is_holiday and scaler.status.current_window not in HOLIDAY_LABELS:
            self.recorder.event(scaler.to_reference(), EVENT_NORMAL, "HolidayDetected",
                                f"Today is a holiday (mode: {scaler.spec.holiday_mode.value})")
        return is_holiday

    # ========================================================================
    # Applying decisions
    # ========================================================================

    async def publish_paused(self, scaler: TimeWindowScaler, engine_input: EngineInput,
                             output: EngineOutput, current_replicas: int) -> ReconcileResult:
        """Publish what would happen without touching the target"""
        status = self._decision_status(scaler, engine_input, output, current_replicas, scaler.status.last_scale_time)
        status = self._with_ready(scaler, status, "True", STATE_PAUSED, "TimeWindowScaler is paused")
        self.metrics.set_effective_replicas(scaler.namespace, scaler.name, output.effective_replicas)

        try:
            await self._write_status(scaler, status)
        except KyklosError as e:
            return ReconcileResult(state=STATE_STATUS_UPDATE_FAILED, requeue_after=Config.ERROR_BACKOFF_SECONDS, error=e)
        return ReconcileResult(state=STATE_PAUSED, requeue_after=self._requeue_delay(output))

    async def apply_decision(self, scaler: TimeWindowScaler, engine_input: EngineInput,
                             output: EngineOutput, current_replicas: int) -> ReconcileResult:
        """Scale the target if it disagrees with the decision, then publish status"""
        namespace, name = scaler.namespace, scaler.name
        target = output.effective_replicas
        last_scale_time = scaler.status.last_scale_time

        if current_replicas != target:
            try:
                await self.client.scale_deployment(scaler.target_namespace, scaler.spec.target_ref.name, target)
            except TransientRemoteError as e:
                message = f"Failed to scale deployment from {current_replicas} to {target}: {e}"
                LOG.error(f"[{namespace}/{name}] {message}")
                status = self._decision_status(scaler, engine_input, output, current_replicas, last_scale_time)
                return await self._fail(scaler, STATE_SCALE_FAILED, message, Config.ERROR_BACKOFF_SECONDS, e,
                                        status=status)

            direction, reason = ("up", "ScaledUp") if target > current_replicas else ("down", "ScaledDown")
            LOG.info(f"[{namespace}/{name}] Scaled {direction} from {current_replicas} to {target} "
                     f"(window: {output.current_window})")
            self.recorder.event(scaler.to_reference(), EVENT_NORMAL, reason,
                                f"Scaled from {current_replicas} to {target} replicas "
                                f"(window: {output.current_window})")
            self.metrics.record_scale(namespace, name, direction, output.current_window)
            last_scale_time = self.clock.now()

        self.metrics.set_effective_replicas(namespace, name, target)

        previous_window = scaler.status.current_window
        if previous_window and previous_window != output.current_window:
            self.metrics.record_window_transition(namespace, name, previous_window, output.current_window)

        status = self._decision_status(scaler, engine_input, output, current_replicas, last_scale_time)
        self._announce_grace_period(scaler, status, output)
        status = self._with_ready(scaler, status, "True", STATE_RECONCILED,
                                  f"TimeWindowScaler is ready, window: {output.current_window}")

        try:
            await self._write_status(scaler, status)
        except KyklosError as e:
            return ReconcileResult(state=STATE_STATUS_UPDATE_FAILED, requeue_after=Config.ERROR_BACKOFF_SECONDS, error=e)
        return ReconcileResult(state=STATE_RECONCILED, requeue_after=self._requeue_delay(output))

    def _announce_grace_period(self, scaler: TimeWindowScaler, status: TimeWindowScalerStatus, output: EngineOutput):
        was_holding = scaler.status.grace_period_expiry is not None
        if status.grace_period_expiry is not None and not was_holding:
            self.recorder.event(scaler.to_reference(), EVENT_NORMAL, "GracePeriodActive",
                                f"Grace period active until {status.grace_period_expiry.isoformat()}, "
                                f"maintaining {output.effective_replicas} replicas")
        elif status.grace_period_expiry is None and was_holding:
            self.recorder.event(scaler.to_reference(), EVENT_NORMAL, "GracePeriodEnded",
                                "Grace period has ended, normal scaling resumed")

    # ========================================================================
    # Status
    # ========================================================================

    def _decision_status(self, scaler: TimeWindowScaler, engine_input: EngineInput, output: EngineOutput,
                         observed_replicas: int, last_scale_time: Optional[datetime]) -> TimeWindowScalerStatus:
        expiry = None
        # A paused hold keeps its window label even though the reason says paused
        if output.current_window == LABEL_GRACE_PERIOD:
            expiry = grace_period_expiry(engine_input)

        return replace(
            scaler.status,
            effective_replicas=output.effective_replicas,
            target_observed_replicas=observed_replicas,
            current_window=output.current_window,
            next_boundary=output.next_boundary,
            last_scale_time=last_scale_time,
            grace_period_expiry=expiry,
        )

    def _with_ready(self, scaler: TimeWindowScaler, status: TimeWindowScalerStatus, condition_status: str,
                    reason: str, message: str) -> TimeWindowScalerStatus:
        condition = Condition(
            type=CONDITION_READY,
            status=condition_status,
            reason=reason,
            message=message,
            lastTransitionTime=self.clock.now(),
            observedGeneration=scaler.generation,
        )
        return replace(status.with_condition(condition), observed_generation=scaler.generation)

    async def _write_status(self, scaler: TimeWindowScaler, status: TimeWindowScalerStatus):
        try:
            await self.client.update_scaler_status(scaler.namespace, scaler.name, status.to_dict())
        except KyklosError as e:
            LOG.error(f"[{scaler.namespace}/{scaler.name}] Failed to update status: {e}")
            raise

    async def _fail(self, scaler: TimeWindowScaler, reason: str, message: str, backoff: float,
                    error: Exception, status: Optional[TimeWindowScalerStatus] = None) -> ReconcileResult:
        """Mark the scaler not ready, best effort, and retry after ``backoff``"""
        status = self._with_ready(scaler, status or scaler.status, "False", reason, message)
        try:
            await self._write_status(scaler, status)
        except KyklosError:
            pass
        self.recorder.event(scaler.to_reference(), EVENT_WARNING, reason, message)
        return ReconcileResult(state=reason, requeue_after=backoff, error=error)

    def _unparsed(self, body: Dict[str, Any]) -> TimeWindowScaler:
        """A spec-less stand-in for a resource whose spec cannot be parsed"""
        try:
            status = TimeWindowScalerStatus.from_dict(body.get("status"))
        except (KeyError, TypeError, ValueError):
            status = TimeWindowScalerStatus()
        return TimeWindowScaler(metadata=dict(body.get("metadata") or {}), spec=None, status=status)

    def _requeue_delay(self, output: EngineOutput) -> float:
        return compute_requeue_delay(
            output.next_boundary, self.clock.now(), Config.REQUEUE_LEAD_SECONDS, Config.MIN_REQUEUE_SECONDS
        )
