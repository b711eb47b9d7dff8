"""Name rules shared by tenants and workloads."""
from __future__ import annotations

from ..config import TenantPolicy
from ..errors import ValidationError


def _is_lower_alnum(char: str) -> bool:
    return ("a" <= char <= "z") or ("0" <= char <= "9")


def validate_name(name: str, policy: TenantPolicy, *, kind: str = "name") -> str:
    """Check length, character set and leading character; return the name unchanged."""

    if not isinstance(name, str):
        raise ValidationError(f"{kind} must be a string")
    if len(name) < policy.name_min_length or len(name) > policy.name_max_length:
        raise ValidationError(
            f"{kind} must be {policy.name_min_length}-{policy.name_max_length} characters long"
        )
    if not all(_is_lower_alnum(char) for char in name):
        raise ValidationError(f"{kind} must only contain lowercase letters and numbers")
    if not ("a" <= name[0] <= "z"):
        raise ValidationError(f"{kind} must start with a lowercase letter")
    return name


def validate_tenant_name(name: str, policy: TenantPolicy) -> str:
    validate_name(name, policy, kind="tenant name")
    if name in policy.reserved_names:
        raise ValidationError("tenant name is reserved")
    return name


def validate_workload_name(name: str, policy: TenantPolicy) -> str:
    return validate_name(name, policy, kind="workload name")


__all__ = ["validate_name", "validate_tenant_name", "validate_workload_name"]
