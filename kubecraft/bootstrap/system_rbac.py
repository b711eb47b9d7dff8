"""Pulumi program installing the cluster-scoped prerequisites of the service."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict

import pulumi
from pulumi_kubernetes.core.v1 import Namespace, ServiceAccount
from pulumi_kubernetes.rbac.v1 import ClusterRole, ClusterRoleBinding

from ..config import AppConfig

RBAC_API_GROUP = "rbac.authorization.k8s.io"


@dataclass
class SystemResources:
    """Handles to the resources created by the bootstrap program."""

    namespace: Namespace
    capacity_role: ClusterRole
    authorization_list: ClusterRoleBinding
    registration_role: ClusterRole
    registration_account: ServiceAccount
    registration_binding: ClusterRoleBinding


def system_labels(settings: AppConfig, component: str) -> Dict[str, str]:
    policy = settings.tenants
    return {policy.common_label_key: policy.common_label_value, "component": component}


def capacity_rules() -> list:
    """Read-only cluster-wide grant used by admission control and port allocation."""

    return [
        {"apiGroups": [""], "resources": ["pods"], "verbs": ["get", "list"]},
        {"apiGroups": [""], "resources": ["services"], "verbs": ["list"]},
    ]


def registration_rules(settings: AppConfig) -> list:
    return [
        {"apiGroups": [""], "resources": ["namespaces"], "verbs": ["create", "get", "list", "delete"]},
        {"apiGroups": [""], "resources": ["serviceaccounts"], "verbs": ["create", "get"]},
        {"apiGroups": [""], "resources": ["serviceaccounts/token"], "verbs": ["create"]},
        {"apiGroups": [""], "resources": ["resourcequotas"], "verbs": ["create"]},
        {"apiGroups": [RBAC_API_GROUP], "resources": ["roles", "rolebindings"], "verbs": ["create", "get"]},
        {"apiGroups": [RBAC_API_GROUP], "resources": ["roles", "clusterroles"], "verbs": ["bind", "escalate"]},
        {
            "apiGroups": [RBAC_API_GROUP],
            "resources": ["clusterrolebindings"],
            "resourceNames": [settings.rbac.authorization_list],
            "verbs": ["get", "update", "patch"],
        },
    ]


def build_system_resources(settings: AppConfig) -> SystemResources:
    """Declare every cluster-scoped object; the Authorization List starts empty."""

    rbac = settings.rbac
    namespace = Namespace(
        resource_name="system-namespace",
        metadata={"name": rbac.system_namespace, "labels": system_labels(settings, "system")},
    )
    capacity_role = ClusterRole(
        resource_name="capacity-checker",
        metadata={"name": rbac.capacity_cluster_role, "labels": system_labels(settings, "rbac")},
        rules=capacity_rules(),
    )
    authorization_list = ClusterRoleBinding(
        resource_name="authorization-list",
        metadata={"name": rbac.authorization_list, "labels": system_labels(settings, "rbac")},
        role_ref={"apiGroup": RBAC_API_GROUP, "kind": "ClusterRole", "name": rbac.capacity_cluster_role},
        subjects=[],
        # Tenant entries are maintained by the registration server, never by this stack.
        opts=pulumi.ResourceOptions(ignore_changes=["subjects"], depends_on=[capacity_role]),
    )
    registration_role = ClusterRole(
        resource_name="registration-admin",
        metadata={"name": rbac.registration_cluster_role, "labels": system_labels(settings, "rbac")},
        rules=registration_rules(settings),
    )
    registration_account = ServiceAccount(
        resource_name="registration-account",
        metadata={
            "name": rbac.registration_service_account,
            "namespace": rbac.system_namespace,
            "labels": system_labels(settings, "registration"),
        },
        opts=pulumi.ResourceOptions(depends_on=[namespace]),
    )
    registration_binding = ClusterRoleBinding(
        resource_name="registration-admin-binding",
        metadata={"name": rbac.registration_cluster_role, "labels": system_labels(settings, "rbac")},
        role_ref={"apiGroup": RBAC_API_GROUP, "kind": "ClusterRole", "name": rbac.registration_cluster_role},
        subjects=[
            {
                "kind": "ServiceAccount",
                "name": rbac.registration_service_account,
                "namespace": rbac.system_namespace,
            }
        ],
        opts=pulumi.ResourceOptions(depends_on=[registration_role, registration_account]),
    )
    return SystemResources(
        namespace=namespace,
        capacity_role=capacity_role,
        authorization_list=authorization_list,
        registration_role=registration_role,
        registration_account=registration_account,
        registration_binding=registration_binding,
    )


__all__ = ["SystemResources", "build_system_resources", "capacity_rules", "registration_rules", "system_labels"]
