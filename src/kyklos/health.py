"""
Liveness and readiness probes for the Kyklos operator.

Both are served by kopf on the liveness endpoint configured in main.py.
"""

import kopf

from .config import health_status

# ============================================================================
# Probes
# ============================================================================

@kopf.on.probe(id='health')
def health_check(memo: kopf.Memo, **_):
    """Component health plus the number of scalers with a running worker"""
    metrics = memo.get('metrics')
    if metrics is not None:
        metrics.update_health_metrics()

    dispatcher = memo.get('dispatcher')
    return {
        "status": "healthy" if get_overall_health() else "degraded",
        "components": dict(health_status),
        "scalers": len(dispatcher) if dispatcher is not None else 0,
    }


@kopf.on.probe(id='ready')
def readiness_check(memo: kopf.Memo, **_):
    """Ready once the API is reachable, the CRD is served and the reconciler exists"""
    ready = (
        health_status["kubernetes"]
        and health_status["crd_manager"]
        and memo.get('reconciler') is not None
    )
    return {"status": "ready" if ready else "not_ready"}

# ============================================================================
# Health Status Management
# ============================================================================

def set_component_health(component: str, status: bool):
    health_status[component] = status


def get_overall_health() -> bool:
    return all(health_status.values())
