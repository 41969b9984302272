#!/usr/bin/env python3
"""
KUBESMITH RBAC BUILDER
----------------------
Service accounts, roles, cluster roles, their bindings and pod security
policies. In chart mode every object is guarded by the cluster auth mode
and cluster-scoped names are prefixed with the release namespace.

Author: KubeSmith Team
Date: 2026-01-16
"""

import logging
from typing import Any, List, Optional

from kubesmith.core.errors import ManifestError
from kubesmith.core.models import AuthRule, Authorization
from kubesmith.core.settings import ExportSettings
from kubesmith.document.tree import ListNode, Mapping, Node, new_node
from kubesmith.kube.templates import sanitize_name
from kubesmith.kube.utils import new_kube_config

logger = logging.getLogger("kubesmith.kube")

RBAC_API_VERSION = "rbac.authorization.k8s.io/v1"
RBAC_API_GROUP = "rbac.authorization.k8s.io"

ROLE_KIND = "Role"
CLUSTER_ROLE_KIND = "ClusterRole"

# The account every pod gets anyway
DEFAULT_ACCOUNT = "default"


def auth_mode_rbac(settings: ExportSettings) -> Optional[str]:
    """The block guarding RBAC objects; None for plain output."""
    if settings.create_chart:
        return 'if eq .Values.kube.auth "rbac"'
    return None


def cluster_role_name(name: str, settings: ExportSettings) -> str:
    if settings.create_chart:
        return sanitize_name(f'(printf "%s-cluster-role-{name}" .Release.Namespace)')
    return name


def psp_name(name: str, settings: ExportSettings) -> str:
    if settings.create_chart:
        return sanitize_name(f'(printf "%s-psp-{name}" .Release.Namespace)')
    return name


def new_rbac_account(account_name: str, authorization: Authorization,
                     settings: ExportSettings) -> List[Node]:
    """
    The objects for one account: the service account itself (not for
    `default`, which always exists), then a binding per role and cluster
    role. Roles used by this account alone are emitted right before their
    binding.

    Raises:
        ManifestError: if the account is not declared.
    """
    account = authorization.accounts.get(account_name)
    if account is None:
        raise ManifestError(f"Account {account_name} not found", field="accounts")
    if not account.used_by:
        logger.debug(f"Account {account_name} is not used by any instance group")
        return []

    block = auth_mode_rbac(settings)
    resources: List[Node] = []

    if account_name != DEFAULT_ACCOUNT:
        users = "\n".join(f"- {name}" for name in sorted(account.used_by))
        comment = f'Service account "{account_name}" is used by the following instance groups:\n{users}'
        resources.append(new_kube_config(settings, "v1", "ServiceAccount", account_name,
                                         comment=comment, block=block))

    for role_name in account.roles:
        users = authorization.role_used_by(role_name)
        if len(users) < 2:
            role = new_rbac_role(role_name, ROLE_KIND, authorization.roles.get(role_name, []), settings)
            role.set_comment(f'Role "{role_name}" only used by account "{account_name}"')
            resources.append(role)

        binding = new_kube_config(
            settings, RBAC_API_VERSION, "RoleBinding", f"{account_name}-{role_name}-binding",
            comment=f'Role binding for service account "{account_name}" and role "{role_name}"',
            block=block)
        binding.add("subjects", ListNode(Mapping([("kind", "ServiceAccount"), ("name", account_name)])))
        binding.add("roleRef", Mapping([
            ("apiGroup", RBAC_API_GROUP),
            ("kind", ROLE_KIND),
            ("name", role_name),
        ]))
        resources.append(binding)

    namespace = "{{ .Release.Namespace }}" if settings.create_chart else None
    for cluster_role in account.cluster_roles:
        users = authorization.cluster_role_used_by(cluster_role)
        if len(users) < 2:
            role = new_rbac_role(cluster_role, CLUSTER_ROLE_KIND,
                                 authorization.cluster_roles.get(cluster_role, []), settings)
            role.set_comment(f'Cluster role "{cluster_role}" only used by account "{account_name}"')
            resources.append(role)

        if settings.create_chart:
            name = sanitize_name(
                f'(printf "%s-{account_name}-{cluster_role}-cluster-binding" .Release.Namespace)')
        else:
            name = f"{account_name}-{cluster_role}-cluster-binding"
        binding = new_kube_config(
            settings, RBAC_API_VERSION, "ClusterRoleBinding", name,
            comment=(f'Cluster role binding for service account "{account_name}" '
                     f'and cluster role "{cluster_role}"'),
            block=block)
        binding.add("subjects", ListNode(Mapping([
            ("kind", "ServiceAccount"),
            ("name", account_name),
            ("namespace", namespace),
        ])))
        binding.add("roleRef", Mapping([
            ("apiGroup", RBAC_API_GROUP),
            ("kind", CLUSTER_ROLE_KIND),
            ("name", cluster_role_name(cluster_role, settings)),
        ]))
        resources.append(binding)

    return resources


def _resource_name(rule: AuthRule, name: str, settings: ExportSettings) -> str:
    if settings.create_chart and rule.is_pod_security_policy_rule():
        # Charts let the user point at an existing policy
        override = f".Values.kube.psp.{name}"
        return (f"{{{{ if {override} }}}}{{{{ {override} }}}}{{{{ else }}}}"
                f"{psp_name(name, settings)}{{{{ end }}}}")
    return name


def new_rbac_role(name: str, kind: str, rules: List[AuthRule], settings: ExportSettings) -> Mapping:
    """A Role or ClusterRole enumerating its rules."""
    rule_list = ListNode()
    for rule in rules:
        entry = Mapping()
        entry.add("apiGroups", list(rule.api_groups))
        entry.add("resources", list(rule.resources))
        entry.add("verbs", list(rule.verbs))
        if rule.resource_names:
            entry.add("resourceNames",
                      [_resource_name(rule, resource, settings) for resource in rule.resource_names])
        rule_list.add(entry.sort())

    object_name = cluster_role_name(name, settings) if kind == CLUSTER_ROLE_KIND else name
    role = new_kube_config(settings, RBAC_API_VERSION, kind, object_name, block=auth_mode_rbac(settings))
    role.add("rules", rule_list)
    return role.sort()


def new_rbac_psp(name: str, definition: Any, settings: ExportSettings) -> Mapping:
    """
    A pod security policy. Chart users may supply their own policy under
    `kube.psp.<name>`, in which case this one is not rendered.
    """
    block = None
    if settings.create_chart:
        block = f'if and (eq .Values.kube.auth "rbac") (not .Values.kube.psp.{name})'
    psp = new_kube_config(settings, "policy/v1beta1", "PodSecurityPolicy", psp_name(name, settings),
                          comment=f'Pod security policy "{name}"', block=block)
    psp.add("spec", new_node(definition if definition is not None else {}))
    return psp
