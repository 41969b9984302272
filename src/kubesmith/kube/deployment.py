#!/usr/bin/env python3
"""
KUBESMITH DEPLOYMENT BUILDER
----------------------------
Deployments for stateless instance groups, plus the replica, affinity and
moved-variable guards shared with stateful sets.

Chart guards are synthetic controller entries such as `_maxReplicas`
whose value is a `fail` action wrapped in an `if` block: they render to
nothing unless the condition holds.

Author: KubeSmith Team
Date: 2026-01-16
"""

import logging
from typing import Optional, Tuple

from kubesmith.core.errors import ManifestError
from kubesmith.core.models import InstanceGroup
from kubesmith.core.settings import ExportSettings
from kubesmith.document.tree import Mapping, Node
from kubesmith.kube.pod import new_pod_template
from kubesmith.kube.service import new_service_list
from kubesmith.kube.utils import make_var_name, new_kube_config, new_selector

logger = logging.getLogger("kubesmith.kube")


def new_deployment(role: InstanceGroup,
                   settings: ExportSettings) -> Tuple[Mapping, Optional[Mapping]]:
    """
    Returns the Deployment and the list of services attached to it (None
    when the group exposes no ports).
    """
    template = new_pod_template(role, settings)
    services = new_service_list(role, False, settings)

    spec = Mapping()
    spec.add("selector", new_selector(role))
    spec.add("template", template)

    deployment = new_kube_config(settings, "apps/v1", "Deployment", role.name,
                                 role=role, comment=role.long_description)
    deployment.add("spec", spec)
    replica_check(role, deployment, services, settings)
    general_check(role, deployment, settings)
    return deployment, services


def get_affinity_block(role: InstanceGroup) -> Mapping:
    """Pod anti-affinity from the manifest plus a node affinity stub filled from values."""
    affinity = Mapping()
    if role.run.affinity is not None and role.run.affinity.pod_anti_affinity is not None:
        affinity.add("podAntiAffinity", role.run.affinity.pod_anti_affinity)

    path = f".Values.sizing.{make_var_name(role.name)}.affinity.nodeAffinity"
    affinity.add("nodeAffinity", f"{{{{ toJson {path} }}}}", block=f"if {path}")
    return affinity


def add_affinity_rules(role: InstanceGroup, spec: Mapping, settings: ExportSettings) -> None:
    """
    Node and pod affinity cannot be set in the manifest. Plain output
    passes pod anti-affinity through; charts add the full affinity block.
    """
    affinity = role.run.affinity
    if affinity is not None:
        if affinity.node_affinity is not None:
            raise ManifestError(f"Node affinity in role manifest not allowed (instance group {role.name})",
                                role=role.name, field="affinity")
        if affinity.pod_affinity is not None:
            raise ManifestError(f"Pod affinity in role manifest not supported (instance group {role.name})",
                                role=role.name, field="affinity")

    pod_spec = spec.get("template", "spec")
    if settings.create_chart:
        pod_spec.add("affinity", get_affinity_block(role))
    elif affinity is not None and affinity.pod_anti_affinity is not None:
        pod_spec.add("affinity", Mapping([("podAntiAffinity", affinity.pod_anti_affinity)]))
    pod_spec.sort()


def general_check(role: InstanceGroup, controller: Mapping, settings: ExportSettings) -> None:
    """
    Guards against the global keys that moved from `sizing` to `config`.
    Chart mode only.

    The template `and` evaluates all of its arguments, so the cpu/memory
    guards test the parent key in the block and the child key inside the
    value.
    """
    if not settings.create_chart:
        return

    fail = '{{ fail "Bad use of moved variable sizing.HA. The new name to use is config.HA" }}'
    controller.add("_moved_sizing_HA", fail, block="if .Values.sizing.HA")

    for key in ("cpu", "memory"):
        for subkey in ("limits", "requests"):
            fail = (f'{{{{ if .Values.sizing.{key}.{subkey} }}}} '
                    f'{{{{ fail "Bad use of moved variable sizing.{key}.{subkey}. '
                    f'The new name to use is config.{key}.{subkey}" }}}} '
                    f'{{{{else}}}} ok {{{{end}}}}')
            controller.add(f"_moved_sizing_{key}_{subkey}", fail, block=f"if .Values.sizing.{key}")
    controller.sort()


def replica_check(role: InstanceGroup, controller: Mapping, service: Optional[Node],
                  settings: ExportSettings) -> None:
    """
    Adds the replica count to the controller spec and, in chart mode, the
    guards validating the configured count against the group's scaling.
    """
    spec = controller["spec"]
    add_affinity_rules(role, spec, settings)

    scaling = role.run.scaling
    if not settings.create_chart:
        spec.add("replicas", scaling.min)
        spec.sort()
        return

    role_var = make_var_name(role.name)
    count = f".Values.sizing.{role_var}.count"
    if scaling.ha != scaling.min:
        # Use the HA count unless the user changed the default
        replicas = (f"{{{{ if and .Values.config.HA (eq (int {count}) {scaling.min}) -}}}} "
                    f"{scaling.ha} {{{{- else -}}}} {{{{ {count} }}}} {{{{- end }}}}")
    else:
        replicas = f"{{{{ {count} }}}}"
    spec.add("replicas", replicas)
    spec.sort()

    if scaling.min == 0:
        block = f"if gt (int {count}) 0"
        controller.set_block(block)
        if service is not None:
            service.set_block(block)
    else:
        controller.add("_minReplicas",
                       f'{{{{ fail "{role_var} must have at least {scaling.min} instances" }}}}',
                       block=f"if lt (int {count}) {scaling.min}")
        if scaling.ha != scaling.min:
            controller.add(
                "_minHAReplicas",
                f'{{{{ fail "{role_var} must have at least {scaling.ha} instances for HA" }}}}',
                block=(f"if and .Values.config.HA "
                       f"(and (ne (int {count}) {scaling.min}) (lt (int {count}) {scaling.ha}))"))

    controller.add("_maxReplicas",
                   f'{{{{ fail "{role_var} cannot have more than {scaling.max} instances" }}}}',
                   block=f"if gt (int {count}) {scaling.max}")
    if scaling.must_be_odd:
        controller.add("_oddReplicas",
                       f'{{{{ fail "{role_var} must have an odd instance count" }}}}',
                       block=f"if eq (mod (int {count}) 2) 0")
    controller.sort()
