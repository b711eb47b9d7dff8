"""Error taxonomy shared by every provisioning component."""
from __future__ import annotations

import builtins
from typing import Dict, Optional


class KubecraftError(Exception):
    """Base class for every error surfaced by a provisioning operation."""

    status_code: int = 500
    code: str = "internal"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(KubecraftError):
    """Malformed or reserved tenant/workload name."""

    status_code = 400
    code = "validation"


class NotFoundError(KubecraftError):
    """The targeted tenant, workload or Authorization List does not exist."""

    status_code = 404
    code = "not_found"


class UnauthorizedError(KubecraftError):
    """The cluster rejected the tenant bearer token."""

    status_code = 401
    code = "unauthorized"


class ForbiddenError(KubecraftError):
    """The tenant token is valid but does not grant access to the targeted namespace."""

    status_code = 403
    code = "forbidden"


class ConflictError(KubecraftError):
    """Name, port or namespace already in use, or a concurrent update was detected."""

    status_code = 409
    code = "conflict"


class QuotaExceededError(KubecraftError):
    """Tenant-count ceiling reached."""

    status_code = 503
    code = "quota_exceeded"


class InsufficientCapacityError(KubecraftError):
    """Admission control rejected a new workload."""

    status_code = 503
    code = "insufficient_capacity"


class ExhaustedError(KubecraftError):
    """No free external port is left in the configured range."""

    status_code = 503
    code = "ports_exhausted"


class ReadinessTimeoutError(KubecraftError, builtins.TimeoutError):
    """A workload instance did not report ready within the polling bound."""

    status_code = 504
    code = "timeout"


class SubstrateError(KubecraftError):
    """Failure from the Kubernetes API that fits no other kind."""

    code = "substrate"

    def __init__(
        self,
        message: str,
        *,
        status: Optional[int] = None,
        failures: Optional[Dict[str, KubecraftError]] = None,
    ) -> None:
        super().__init__(message)
        self.status = status
        self.failures: Dict[str, KubecraftError] = failures or {}


__all__ = [
    "KubecraftError",
    "ValidationError",
    "NotFoundError",
    "UnauthorizedError",
    "ForbiddenError",
    "ConflictError",
    "QuotaExceededError",
    "InsufficientCapacityError",
    "ExhaustedError",
    "ReadinessTimeoutError",
    "SubstrateError",
]
