"""Builders for the Kubernetes objects created during onboarding and workload creation."""
from __future__ import annotations

from typing import Dict

from kubernetes import client

from ..config import AppConfig

RBAC_API_GROUP = "rbac.authorization.k8s.io"


def tenant_labels(settings: AppConfig, tenant_name: str) -> Dict[str, str]:
    policy = settings.tenants
    return {policy.common_label_key: policy.common_label_value, policy.tenant_label_key: tenant_name}


def workload_pod_labels(settings: AppConfig, tenant_name: str, workload_name: str) -> Dict[str, str]:
    policy = settings.tenants
    return {
        policy.common_label_key: settings.workload.pod_label_value,
        "server": workload_name,
        policy.tenant_label_key: tenant_name,
    }


def build_namespace(settings: AppConfig, tenant_name: str) -> client.V1Namespace:
    return client.V1Namespace(
        metadata=client.V1ObjectMeta(
            name=settings.tenants.namespace_for(tenant_name),
            labels=tenant_labels(settings, tenant_name),
        )
    )


def build_service_account(settings: AppConfig, tenant_name: str) -> client.V1ServiceAccount:
    return client.V1ServiceAccount(
        metadata=client.V1ObjectMeta(
            name=tenant_name,
            namespace=settings.tenants.namespace_for(tenant_name),
            labels=tenant_labels(settings, tenant_name),
        )
    )


def build_tenant_role(settings: AppConfig, tenant_name: str) -> client.V1Role:
    """Isolation policy: identical for every tenant."""

    policy = settings.tenants
    return client.V1Role(
        metadata=client.V1ObjectMeta(
            name=settings.rbac.tenant_role,
            namespace=policy.namespace_for(tenant_name),
            labels={policy.common_label_key: policy.common_label_value, "component": "rbac"},
        ),
        rules=[
            client.V1PolicyRule(
                api_groups=[""],
                resources=["persistentvolumeclaims", "services"],
                verbs=["get", "list", "create", "update", "delete"],
            ),
            client.V1PolicyRule(api_groups=[""], resources=["pods"], verbs=["get", "list"]),
            client.V1PolicyRule(api_groups=[""], resources=["pods/log"], verbs=["get"]),
            client.V1PolicyRule(
                api_groups=["apps"],
                resources=["statefulsets"],
                verbs=["create", "get", "list", "patch", "update", "delete"],
            ),
        ],
    )


def identity_subject(settings: AppConfig, tenant_name: str) -> client.RbacV1Subject:
    return client.RbacV1Subject(
        kind="ServiceAccount",
        name=tenant_name,
        namespace=settings.tenants.namespace_for(tenant_name),
    )


def build_tenant_role_binding(settings: AppConfig, tenant_name: str) -> client.V1RoleBinding:
    policy = settings.tenants
    return client.V1RoleBinding(
        metadata=client.V1ObjectMeta(
            name=f"{settings.rbac.tenant_binding_prefix}{tenant_name}",
            namespace=policy.namespace_for(tenant_name),
            labels={
                policy.common_label_key: policy.common_label_value,
                "component": "rbac",
                policy.tenant_label_key: tenant_name,
            },
        ),
        subjects=[identity_subject(settings, tenant_name)],
        role_ref=client.V1RoleRef(api_group=RBAC_API_GROUP, kind="Role", name=settings.rbac.tenant_role),
    )


def build_resource_quota(settings: AppConfig, tenant_name: str) -> client.V1ResourceQuota:
    return client.V1ResourceQuota(
        metadata=client.V1ObjectMeta(
            name=settings.quota.name,
            namespace=settings.tenants.namespace_for(tenant_name),
            labels=tenant_labels(settings, tenant_name),
        ),
        spec=client.V1ResourceQuotaSpec(hard=settings.quota.hard()),
    )


def build_service(settings: AppConfig, tenant_name: str, workload_name: str, node_port: int) -> client.V1Service:
    """NodePort endpoint exposing the fixed container port on ``node_port``."""

    policy = settings.tenants
    template = settings.workload
    return client.V1Service(
        metadata=client.V1ObjectMeta(
            name=workload_name,
            namespace=policy.namespace_for(tenant_name),
            labels={policy.common_label_key: policy.common_label_value, policy.tenant_label_key: tenant_name},
        ),
        spec=client.V1ServiceSpec(
            type="NodePort",
            selector=workload_pod_labels(settings, tenant_name, workload_name),
            ports=[
                client.V1ServicePort(
                    name=template.container_name,
                    port=template.container_port,
                    target_port=template.container_port,
                    node_port=node_port,
                    protocol="TCP",
                )
            ],
        ),
    )


def build_stateful_set(settings: AppConfig, tenant_name: str, workload_name: str) -> client.V1StatefulSet:
    template = settings.workload
    labels = workload_pod_labels(settings, tenant_name, workload_name)
    selector = {key: labels[key] for key in (settings.tenants.common_label_key, "server")}
    container = client.V1Container(
        name=template.container_name,
        image=template.image,
        env=[client.V1EnvVar(name=key, value=value) for key, value in template.env.items()],
        ports=[
            client.V1ContainerPort(
                name=template.container_name, container_port=template.container_port, protocol="TCP"
            )
        ],
        resources=client.V1ResourceRequirements(
            requests={"cpu": template.cpu_request, "memory": template.memory_request},
            limits={"cpu": template.cpu_limit, "memory": template.memory_limit},
        ),
        readiness_probe=client.V1Probe(
            tcp_socket=client.V1TCPSocketAction(port=template.container_port),
            initial_delay_seconds=template.readiness_initial_delay_seconds,
            period_seconds=template.readiness_period_seconds,
        ),
        volume_mounts=[client.V1VolumeMount(name=template.claim_template_name, mount_path=template.mount_path)],
    )
    claim = client.V1PersistentVolumeClaim(
        metadata=client.V1ObjectMeta(name=template.claim_template_name),
        spec=client.V1PersistentVolumeClaimSpec(
            access_modes=["ReadWriteOnce"],
            storage_class_name=template.storage_class,
            resources=client.V1VolumeResourceRequirements(requests={"storage": template.storage_size}),
        ),
    )
    return client.V1StatefulSet(
        metadata=client.V1ObjectMeta(
            name=workload_name,
            namespace=settings.tenants.namespace_for(tenant_name),
            labels=labels,
        ),
        spec=client.V1StatefulSetSpec(
            service_name=workload_name,
            replicas=1,
            selector=client.V1LabelSelector(match_labels=selector),
            template=client.V1PodTemplateSpec(
                metadata=client.V1ObjectMeta(labels=labels),
                spec=client.V1PodSpec(containers=[container]),
            ),
            volume_claim_templates=[claim],
        ),
    )


def claim_name(settings: AppConfig, workload_name: str) -> str:
    """Name of the claim the StatefulSet controller creates for the single replica."""

    return f"{settings.workload.claim_template_name}-{workload_name}-0"


def pod_name(workload_name: str) -> str:
    return f"{workload_name}-0"


__all__ = [
    "build_namespace",
    "build_service_account",
    "build_tenant_role",
    "build_tenant_role_binding",
    "build_resource_quota",
    "build_service",
    "build_stateful_set",
    "identity_subject",
    "claim_name",
    "pod_name",
    "tenant_labels",
    "workload_pod_labels",
]
