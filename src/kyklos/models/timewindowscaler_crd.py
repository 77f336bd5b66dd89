from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..config import Config
from ..engines.types import HolidayMode
from ..exceptions import ConfigurationError
from ..utils import format_time, parse_time


@dataclass
class TargetRef:
    """The Deployment a TimeWindowScaler drives"""
    name: str
    namespace: str = ""


@dataclass
class TimeWindow:
    """A scaling window as declared in the resource spec"""
    start: str
    end: str
    replicas: int
    days: List[str] = field(default_factory=list)
    name: str = ""

    def __post_init__(self):
        self.days = list(self.days or [])
        self.name = self.name or ""


@dataclass
class Condition:
    """Status condition for the TimeWindowScaler resource"""
    type: str
    status: str
    reason: str
    message: str
    lastTransitionTime: Optional[datetime] = None
    observedGeneration: int = 0

    def __post_init__(self):
        # Convert string to datetime if needed
        if isinstance(self.lastTransitionTime, str):
            self.lastTransitionTime = parse_time(self.lastTransitionTime)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "status": self.status,
            "reason": self.reason,
            "message": self.message,
            "lastTransitionTime": format_time(self.lastTransitionTime),
            "observedGeneration": self.observedGeneration,
        }


@dataclass
class TimeWindowScalerSpec:
    """Specification for TimeWindowScaler resource"""
    target_ref: TargetRef
    default_replicas: int
    timezone: str
    windows: List[TimeWindow] = field(default_factory=list)
    holiday_mode: HolidayMode = HolidayMode.IGNORE
    holiday_config_map: Optional[str] = None
    grace_period_seconds: Optional[int] = None
    pause: bool = False

    def __post_init__(self):
        # Convert string to enum if needed
        if isinstance(self.holiday_mode, str):
            self.holiday_mode = HolidayMode(self.holiday_mode)

        if isinstance(self.target_ref, dict):
            self.target_ref = TargetRef(**self.target_ref)

        # Convert dict windows to TimeWindow objects if needed
        self.windows = [TimeWindow(**w) if isinstance(w, dict) else w for w in self.windows or []]

    @property
    def effective_grace_period_seconds(self) -> int:
        if self.grace_period_seconds is None:
            return Config.DEFAULT_GRACE_PERIOD_SECONDS
        return self.grace_period_seconds

    @classmethod
    def from_dict(cls, spec: Dict[str, Any]) -> "TimeWindowScalerSpec":
        target = spec["targetRef"]
        return cls(
            target_ref=TargetRef(name=target["name"], namespace=target.get("namespace") or ""),
            default_replicas=int(spec["defaultReplicas"]),
            timezone=spec["timezone"],
            windows=[
                TimeWindow(
                    start=w["start"],
                    end=w["end"],
                    replicas=int(w["replicas"]),
                    days=w.get("days") or [],
                    name=w.get("name") or "",
                )
                for w in spec.get("windows") or []
            ],
            holiday_mode=spec.get("holidayMode") or HolidayMode.IGNORE.value,
            holiday_config_map=spec.get("holidayConfigMap") or None,
            grace_period_seconds=spec.get("gracePeriodSeconds"),
            pause=bool(spec.get("pause", False)),
        )


@dataclass
class TimeWindowScalerStatus:
    """Status for TimeWindowScaler resource"""
    observed_generation: int = 0
    effective_replicas: Optional[int] = None
    target_observed_replicas: Optional[int] = None
    current_window: str = ""
    next_boundary: Optional[datetime] = None
    last_scale_time: Optional[datetime] = None
    grace_period_expiry: Optional[datetime] = None
    conditions: List[Condition] = field(default_factory=list)

    def __post_init__(self):
        # Convert dict conditions to Condition objects if needed
        self.conditions = [Condition(**c) if isinstance(c, dict) else c for c in self.conditions or []]

    def get_condition(self, condition_type: str) -> Optional[Condition]:
        for condition in self.conditions:
            if condition.type == condition_type:
                return condition
        return None

    def with_condition(self, condition: Condition) -> "TimeWindowScalerStatus":
        """Copy of this status with ``condition`` upserted by type.

        lastTransitionTime is carried over unless the condition status flips.
        """
        conditions = []
        found = False
        for existing in self.conditions:
            if existing.type != condition.type:
                conditions.append(existing)
                continue
            found = True
            if existing.status == condition.status and existing.lastTransitionTime is not None:
                conditions.append(replace(condition, lastTransitionTime=existing.lastTransitionTime))
            else:
                conditions.append(condition)
        if not found:
            conditions.append(condition)
        return replace(self, conditions=conditions)

    @classmethod
    def from_dict(cls, status: Optional[Dict[str, Any]]) -> "TimeWindowScalerStatus":
        status = status or {}
        return cls(
            observed_generation=status.get("observedGeneration") or 0,
            effective_replicas=status.get("effectiveReplicas"),
            target_observed_replicas=status.get("targetObservedReplicas"),
            current_window=status.get("currentWindow") or "",
            next_boundary=parse_time(status.get("nextBoundary")),
            last_scale_time=parse_time(status.get("lastScaleTime")),
            grace_period_expiry=parse_time(status.get("gracePeriodExpiry")),
            conditions=[
                Condition(
                    type=c["type"],
                    status=c["status"],
                    reason=c.get("reason", ""),
                    message=c.get("message", ""),
                    lastTransitionTime=c.get("lastTransitionTime"),
                    observedGeneration=c.get("observedGeneration") or 0,
                )
                for c in status.get("conditions") or []
            ],
        )

    def to_dict(self) -> Dict[str, Any]:
        """Full status snapshot; unset fields are written as null so a merge patch clears them"""
        return {
            "observedGeneration": self.observed_generation,
            "effectiveReplicas": self.effective_replicas,
            "targetObservedReplicas": self.target_observed_replicas,
            "currentWindow": self.current_window or None,
            "nextBoundary": format_time(self.next_boundary),
            "lastScaleTime": format_time(self.last_scale_time),
            "gracePeriodExpiry": format_time(self.grace_period_expiry),
            "conditions": [c.to_dict() for c in self.conditions],
        }


@dataclass
class TimeWindowScaler:
    """TimeWindowScaler Custom Resource"""
    apiVersion: str = f"{Config.CRD_GROUP}/{Config.CRD_VERSION}"
    kind: str = "TimeWindowScaler"
    metadata: Dict[str, Any] = field(default_factory=dict)
    spec: Optional[TimeWindowScalerSpec] = None
    status: TimeWindowScalerStatus = field(default_factory=TimeWindowScalerStatus)

    def __post_init__(self):
        # Convert dict spec/status if needed
        if isinstance(self.spec, dict):
            self.spec = TimeWindowScalerSpec(**self.spec)
        if isinstance(self.status, dict):
            self.status = TimeWindowScalerStatus(**self.status)

    @classmethod
    def from_dict(cls, body: Dict[str, Any]) -> "TimeWindowScaler":
        """Parse a resource body as returned by the API server"""
        try:
            return cls(
                apiVersion=body.get("apiVersion", f"{Config.CRD_GROUP}/{Config.CRD_VERSION}"),
                kind=body.get("kind", "TimeWindowScaler"),
                metadata=dict(body.get("metadata") or {}),
                spec=TimeWindowScalerSpec.from_dict(body["spec"]),
                status=TimeWindowScalerStatus.from_dict(body.get("status")),
            )
        except (KeyError, TypeError, ValueError) as e:
            name = (body.get("metadata") or {}).get("name", "<unknown>")
            raise ConfigurationError(f"Failed to parse TimeWindowScaler resource {name}", {"error": repr(e)})

    @property
    def name(self) -> str:
        return self.metadata.get("name", "")

    @property
    def namespace(self) -> str:
        return self.metadata.get("namespace", "")

    @property
    def generation(self) -> int:
        return self.metadata.get("generation") or 0

    @property
    def target_namespace(self) -> str:
        """The target's namespace, defaulting to the scaler's own"""
        return self.spec.target_ref.namespace or self.namespace

    def to_reference(self) -> Dict[str, Any]:
        """Minimal body identifying this object, enough for posting events"""
        return {
            "apiVersion": self.apiVersion,
            "kind": self.kind,
            "metadata": {
                "name": self.name,
                "namespace": self.namespace,
                "uid": self.metadata.get("uid"),
            },
        }
