"""Domain models for tenant and workload audit events."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict


class AuditAction(str, Enum):
    """Operations recorded on the audit stream."""

    TENANT_REGISTER = "tenant.register"
    TENANT_DEREGISTER = "tenant.deregister"
    WORKLOAD_CREATE = "workload.create"
    WORKLOAD_START = "workload.start"
    WORKLOAD_STOP = "workload.stop"
    WORKLOAD_DELETE = "workload.delete"


class AuditOutcome(str, Enum):
    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"


@dataclass
class AuditEvent:
    """Audit payload as published on the message bus."""

    tenant: str
    action: AuditAction
    outcome: AuditOutcome
    timestamp: str
    details: Dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "tenant": self.tenant,
            "action": self.action.value,
            "outcome": self.outcome.value,
            "details": self.details,
        }


__all__ = ["AuditAction", "AuditOutcome", "AuditEvent"]
