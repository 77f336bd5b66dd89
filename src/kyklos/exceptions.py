"""
Exception classes for the Kyklos operator.

Every failure a reconciliation cycle can hit is expressed as one of these,
so that the reconciler can pick a condition reason and a backoff without
inspecting client-library exceptions.
"""

from typing import Any, Dict, Optional


class KyklosError(Exception):
    """Base exception class for Kyklos."""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"{self.message} (Context: {context_str})"
        return self.message


class ConfigurationError(KyklosError):
    """Raised when a TimeWindowScaler spec cannot be turned into a decision.

    Only a spec edit resolves it.
    """
    pass


class TransientRemoteError(KyklosError):
    """Raised when a Kubernetes API call fails for a reason other than 404."""
    pass


class NotFoundError(KyklosError):
    """Raised when a referenced Kubernetes object does not exist."""
    pass


class InternalComputeError(KyklosError):
    """Raised when the decision engine produces an output violating its invariants."""
    pass


class ScaleError(TransientRemoteError):
    """Raised when writing the replica count of the target fails."""
    pass
