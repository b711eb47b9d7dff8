"""FastAPI routes for the registration server."""
from __future__ import annotations

import secrets
from typing import Iterator, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from fastapi.responses import JSONResponse, PlainTextResponse

from ..config import AppConfig
from ..provisioning.tenants import TenantProvisioner
from ..provisioning.validation import validate_tenant_name
from ..provisioning.workloads import WorkloadLifecycleManager
from .schemas import (
    CreateWorkloadRequest,
    RegisterRequest,
    RegisterResponse,
    WorkloadEndpoint,
    WorkloadList,
    WorkloadSummary,
)

router = APIRouter()


def get_settings_dependency(request: Request) -> AppConfig:
    return request.app.state.settings


def get_provisioner(request: Request) -> TenantProvisioner:
    provisioner = getattr(request.app.state, "provisioner", None)
    if provisioner is None:
        raise RuntimeError("TenantProvisioner dependency not configured")
    return provisioner


def require_admin(
    request: Request,
    x_admin_token: Optional[str] = Header(None),
) -> None:
    settings: AppConfig = request.app.state.settings
    if settings.admin_token is None:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Tenant deregistration is disabled")
    expected = settings.admin_token.get_secret_value()
    if not x_admin_token or not secrets.compare_digest(x_admin_token, expected):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid admin token")


def get_workload_manager(
    tenant: str,
    request: Request,
    authorization: Optional[str] = Header(None),
) -> Iterator[WorkloadLifecycleManager]:
    settings: AppConfig = request.app.state.settings
    validate_tenant_name(tenant, settings.tenants)
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing bearer token")
    substrate = request.app.state.tenant_substrate_factory(tenant, token)
    try:
        yield WorkloadLifecycleManager(substrate, settings, audit_publisher=request.app.state.audit_publisher)
    finally:
        substrate.close()


def _address(settings: AppConfig, port: Optional[int]) -> Optional[str]:
    if port is None:
        return None
    return f"{settings.kubernetes.node_address}:{port}"


@router.get("/health", response_class=PlainTextResponse)
def health() -> str:
    return "OK"


@router.post("/register", status_code=status.HTTP_201_CREATED)
def register(
    body: RegisterRequest,
    provisioner: TenantProvisioner = Depends(get_provisioner),
) -> JSONResponse:
    result = provisioner.register(body.tenant_name)
    response = RegisterResponse(tenant_name=result.tenant_name, token=result.token)
    return JSONResponse(status_code=status.HTTP_201_CREATED, content=response.model_dump(by_alias=True))


@router.delete("/tenants/{tenant}", dependencies=[Depends(require_admin)])
def deregister(
    tenant: str,
    provisioner: TenantProvisioner = Depends(get_provisioner),
) -> dict:
    provisioner.deregister(tenant)
    return {"status": "success", "tenantName": tenant}


@router.get("/tenants/{tenant}/workloads")
def list_workloads(
    tenant: str,
    manager: WorkloadLifecycleManager = Depends(get_workload_manager),
) -> JSONResponse:
    listing = WorkloadList(
        workloads=[
            WorkloadSummary(name=item.name, status=item.status, port=item.node_port, created_at=item.created_at)
            for item in manager.list(tenant)
        ]
    )
    return JSONResponse(content=listing.model_dump(mode="json", by_alias=True))


@router.post("/tenants/{tenant}/workloads", status_code=status.HTTP_201_CREATED)
def create_workload(
    tenant: str,
    body: CreateWorkloadRequest,
    manager: WorkloadLifecycleManager = Depends(get_workload_manager),
    settings: AppConfig = Depends(get_settings_dependency),
) -> JSONResponse:
    port = manager.create(tenant, body.name)
    endpoint = WorkloadEndpoint(name=body.name, port=port, address=_address(settings, port))
    return JSONResponse(status_code=status.HTTP_201_CREATED, content=endpoint.model_dump())


@router.post("/tenants/{tenant}/workloads/{name}/start")
def start_workload(
    tenant: str,
    name: str,
    manager: WorkloadLifecycleManager = Depends(get_workload_manager),
    settings: AppConfig = Depends(get_settings_dependency),
) -> dict:
    port = manager.start(tenant, name)
    return WorkloadEndpoint(name=name, port=port, address=_address(settings, port)).model_dump()


@router.post("/tenants/{tenant}/workloads/{name}/stop")
def stop_workload(
    tenant: str,
    name: str,
    manager: WorkloadLifecycleManager = Depends(get_workload_manager),
) -> dict:
    manager.stop(tenant, name)
    return {"status": "success", "name": name}


@router.delete("/tenants/{tenant}/workloads/{name}")
def delete_workload(
    tenant: str,
    name: str,
    manager: WorkloadLifecycleManager = Depends(get_workload_manager),
) -> dict:
    manager.delete(tenant, name)
    return {"status": "success", "name": name}


@router.get("/tenants/{tenant}/capacity")
def capacity(
    tenant: str,
    manager: WorkloadLifecycleManager = Depends(get_workload_manager),
) -> dict:
    return manager.capacity_report().as_dict()


__all__ = ["router"]
