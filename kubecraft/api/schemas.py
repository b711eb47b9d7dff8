"""Request and response bodies for the registration server."""
from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class RegisterRequest(BaseModel):
    """Registration request; ``username`` is accepted for older clients."""

    tenant_name: str = Field(validation_alias=AliasChoices("tenantName", "username"))


class RegisterResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    status: str = "success"
    tenant_name: str = Field(serialization_alias="tenantName")
    token: str


class ErrorResponse(BaseModel):
    status: str = "error"
    message: str


class CreateWorkloadRequest(BaseModel):
    name: str


class WorkloadEndpoint(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    port: Optional[int] = None
    address: Optional[str] = None


class WorkloadSummary(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    status: str
    port: Optional[int] = None
    created_at: Optional[datetime] = Field(None, serialization_alias="createdAt")


class WorkloadList(BaseModel):
    workloads: List[WorkloadSummary]


__all__ = [
    "RegisterRequest",
    "RegisterResponse",
    "ErrorResponse",
    "CreateWorkloadRequest",
    "WorkloadEndpoint",
    "WorkloadSummary",
    "WorkloadList",
]
