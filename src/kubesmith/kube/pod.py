#!/usr/bin/env python3
"""
KUBESMITH POD TEMPLATE BUILDER
------------------------------
Builds the pod template shared by every controller: one container per
instance group (plus its colocated containers) with image, ports,
environment, mounts, resources, security context, probes and lifecycle
hooks, wrapped in the pod spec.

In chart mode most concrete values become references into `.Values`;
guards and ranges are attached as blocks so the template engine decides
what survives.

Author: KubeSmith Team
Date: 2026-01-16
"""

import json
import logging
from typing import List, Optional

from kubesmith.core.errors import ManifestError
from kubesmith.core.models import (
    FLIGHT, MANUAL, POST_FLIGHT, PRE_FLIGHT,
    VOLUME_EMPTY_DIR, VOLUME_HOST, VOLUME_PERSISTENT, VOLUME_SHARED,
    ConfigurationVariable, InstanceGroup,
)
from kubesmith.core.settings import ExportSettings
from kubesmith.document.tree import ListNode, Mapping, new_node
from kubesmith.kube.probes import get_container_liveness_probe, get_container_readiness_probe
from kubesmith.kube.registry_credentials import REGISTRY_CREDENTIALS
from kubesmith.kube.secret import DEPLOYMENT_MANIFEST, secret_name
from kubesmith.kube.utils import (
    convert_name_to_key, get_port_info, make_labels, make_var_name, new_kube_config,
    parse_port_range,
)

logger = logging.getLogger("kubesmith.kube")

PRE_STOP_SCRIPT = "/opt/kubesmith/pre-stop.sh"
CONFIG_MOUNT_PATH = "/opt/kubesmith/config"
TERMINATION_GRACE_PERIOD = 600

_SIZING_PREFIX = "KUBE_SIZING_"
_SIZING_COUNT_SUFFIX = "_COUNT"


def new_pod_template(role: InstanceGroup, settings: ExportSettings) -> Mapping:
    """
    The pod template for an instance group: metadata (name, labels and
    annotations) and the pod spec.

    Raises:
        ManifestError: when a port, probe or variable of the group cannot
            be expressed.
    """
    containers = ListNode(get_container(role, settings))
    if settings.role_manifest is not None:
        for colocated in settings.role_manifest.colocated_groups(role):
            containers.add(get_container(colocated, settings))

    spec = Mapping()
    spec.add("containers", containers)
    spec.add("dnsPolicy", "ClusterFirst")
    spec.add("imagePullSecrets", ListNode(Mapping([("name", REGISTRY_CREDENTIALS)])))
    spec.add("restartPolicy", "Always")
    if role.run.service_account:
        block = 'if eq .Values.kube.auth "rbac"' if settings.create_chart else None
        spec.add("serviceAccountName", role.run.service_account, block=block)
    spec.add("terminationGracePeriodSeconds", TERMINATION_GRACE_PERIOD)
    spec.add("volumes", get_volumes(role))

    meta = Mapping()
    meta.add("name", role.name)
    meta.add("labels", make_labels(settings, role.name))
    if role.run.object_annotations:
        meta.add("annotations", dict(role.run.object_annotations))

    return Mapping([("metadata", meta.sort()), ("spec", spec.sort())])


def new_pod(role: InstanceGroup, settings: ExportSettings) -> Mapping:
    """A bare Pod running a task group once (used instead of a Job when requested)."""
    template = new_pod_template(role, settings)
    set_restart_policy(role, template)

    name = role.name
    if settings.create_chart:
        name += "-{{ .Release.Revision }}"
    pod = new_kube_config(settings, "v1", "Pod", name, role=role, comment=role.long_description)
    pod.add("spec", template.remove("spec"))
    return pod


def set_restart_policy(role: InstanceGroup, template: Mapping) -> None:
    """Tasks must not restart forever: Never for manual groups, OnFailure otherwise."""
    if role.run.flight_stage == MANUAL:
        policy = "Never"
    elif role.run.flight_stage in (FLIGHT, PRE_FLIGHT, POST_FLIGHT):
        policy = "OnFailure"
    else:
        raise ManifestError(
            f"Instance group {role.name} has unexpected flight stage {role.run.flight_stage}",
            role=role.name, field="flight_stage")
    template["spec"]["restartPolicy"].set_value(policy)


def get_container(role: InstanceGroup, settings: ExportSettings) -> Mapping:
    container = Mapping()
    container.add("name", role.name)
    container.add("image", get_container_image_name(role, settings))
    container.add("ports", get_container_ports(role, settings))
    container.add("env", get_env_vars(role, settings))
    container.add("volumeMounts", get_volume_mounts(role))

    resources = get_resources(role, settings)
    if resources is not None:
        container.add("resources", resources)
    container.add("securityContext", get_security_context(role, settings))

    liveness = get_container_liveness_probe(role)
    if liveness is not None:
        container.add("livenessProbe", liveness)
    readiness = get_container_readiness_probe(role)
    if readiness is not None:
        container.add("readinessProbe", readiness)

    pre_stop = Mapping([("exec", Mapping([("command", ListNode(PRE_STOP_SCRIPT))]))])
    container.add("lifecycle", Mapping([("preStop", pre_stop)]))
    return container.sort()


def get_container_image_name(role: InstanceGroup, settings: ExportSettings) -> str:
    """<registry>/<org>/<repository>-<group>:<version>; charts template registry and org."""
    tag = role.dev_version(settings.opinions, settings.tag_extra, settings.version)
    image = f"{settings.repository}-{role.name}:{tag}"
    if settings.create_chart:
        return "{{ .Values.kube.registry.hostname }}/{{ .Values.kube.organization }}/" + image

    parts = [part for part in (settings.registry, settings.organization) if part]
    return "/".join(parts + [image])


def get_container_ports(role: InstanceGroup, settings: ExportSettings) -> ListNode:
    ports = ListNode()
    role_var = make_var_name(role.name)
    for port in role.run.exposed_ports:
        protocol = port.protocol.upper()
        port_var = make_var_name(port.name)

        if settings.create_chart and port.count_configurable:
            count = f".Values.sizing.{role_var}.ports.{port_var}.count"
            min_port, _ = parse_port_range(port.internal, port.name, "internal")
            entry = Mapping([
                ("containerPort", f"{{{{ add {min_port} $i }}}}"),
                ("name", f'{{{{ printf "{get_port_info(port.name, 1, 1)[0].name}-%d" $i }}}}'),
                ("protocol", protocol),
            ], block=f"range $i := until (int {count})")
            ports.add(entry)
            continue

        if settings.create_chart and port.port_configurable:
            info = get_port_info(port.name, 1, 1)[0]
            ports.add(Mapping([
                ("containerPort", f"{{{{ .Values.sizing.{role_var}.ports.{port_var}.port }}}}"),
                ("name", info.name),
                ("protocol", protocol),
            ]))
            continue

        min_port, max_port = parse_port_range(port.internal, port.name, "internal")
        for info in get_port_info(port.name, min_port, max_port):
            ports.add(Mapping([
                ("containerPort", info.port),
                ("name", info.name),
                ("protocol", protocol),
            ]))
    return ports


def get_volume_mounts(role: InstanceGroup) -> ListNode:
    """Mounts in declared order per kind: persistent, shared, host, empty-dir."""
    mounts = ListNode()
    for kind in (VOLUME_PERSISTENT, VOLUME_SHARED, VOLUME_HOST, VOLUME_EMPTY_DIR):
        for volume in role.volumes_of(kind):
            mounts.add(Mapping([
                ("mountPath", volume.path),
                ("name", volume.tag),
                ("readOnly", False),
            ]))
    mounts.add(Mapping([
        ("mountPath", CONFIG_MOUNT_PATH),
        ("name", DEPLOYMENT_MANIFEST),
        ("readOnly", True),
    ]))
    return mounts


def get_volumes(role: InstanceGroup) -> ListNode:
    """Pod level volumes; claims for persistent and shared volumes live on the controller."""
    volumes = ListNode()
    for volume in role.volumes_of(VOLUME_HOST):
        host_path = Mapping([("path", volume.path), ("type", "Directory")])
        volumes.add(Mapping([("hostPath", host_path), ("name", volume.tag)]))
    for volume in role.volumes_of(VOLUME_EMPTY_DIR):
        volumes.add(Mapping([("emptyDir", Mapping()), ("name", volume.tag)]))

    items = ListNode(Mapping([("key", DEPLOYMENT_MANIFEST), ("path", "deployment-manifest.yml")]))
    secret = Mapping([("items", items), ("secretName", DEPLOYMENT_MANIFEST)])
    volumes.add(Mapping([("name", DEPLOYMENT_MANIFEST), ("secret", secret)]))
    return volumes


def _literal(value: str) -> str:
    """Values may carry escapes such as \\n; decode them, keep the text when invalid."""
    try:
        return json.loads(f'"{value}"')
    except ValueError:
        return value


def _sizing_target(name: str, settings: ExportSettings) -> Optional[InstanceGroup]:
    """The group a KUBE_SIZING_<GROUP>_COUNT variable refers to, if the name has that form."""
    if not (name.startswith(_SIZING_PREFIX) and name.endswith(_SIZING_COUNT_SUFFIX)):
        return None
    role_var = name[len(_SIZING_PREFIX):-len(_SIZING_COUNT_SUFFIX)].lower()
    manifest = settings.role_manifest
    if manifest is not None:
        for group in manifest.instance_groups:
            if make_var_name(group.name) == role_var:
                return group
    raise ManifestError(f"Variable {name} refers to an unknown instance group", field=name)


def _variables(role: InstanceGroup, settings: ExportSettings) -> List[ConfigurationVariable]:
    if settings.role_manifest is None:
        return []
    return settings.role_manifest.variables_for(role)


def get_env_vars(role: InstanceGroup, settings: ExportSettings) -> ListNode:
    """
    Environment variables sorted by name. Sizing counts follow the target
    group, secret variables reference the Secret, everything else is a
    value (or a values reference in charts). KUBERNETES_NAMESPACE is last.
    """
    env = ListNode()
    for cv in sorted(_variables(role, settings), key=lambda v: v.name):
        target = _sizing_target(cv.name, settings)
        if target is not None:
            if settings.create_chart:
                value = f"{{{{ .Values.sizing.{make_var_name(target.name)}.count | quote }}}}"
            else:
                value = str(target.run.scaling.min)
            env.add(Mapping([("name", cv.name), ("value", value)]))
            continue

        if cv.secret:
            ref = Mapping([("key", convert_name_to_key(cv.name)), ("name", secret_name(settings))])
            env.add(Mapping([("name", cv.name), ("valueFrom", Mapping([("secretKeyRef", ref)]))]))
            continue

        if settings.create_chart and cv.type != "environment":
            if cv.required:
                value = (f'{{{{ required "{cv.name} configuration missing" '
                         f'.Values.env.{cv.name} | quote }}}}')
            else:
                value = f"{{{{ .Values.env.{cv.name} | quote }}}}"
            env.add(Mapping([("name", cv.name), ("value", value)]))
            continue

        ok, value = cv.value(settings.defaults)
        if not ok:
            continue
        env.add(Mapping([("name", cv.name), ("value", _literal(value))]))

    field_ref = Mapping([("fieldPath", "metadata.namespace")])
    env.add(Mapping([
        ("name", "KUBERNETES_NAMESPACE"),
        ("valueFrom", Mapping([("fieldRef", field_ref)])),
    ]))
    return env


def get_resources(role: InstanceGroup, settings: ExportSettings) -> Optional[Mapping]:
    if settings.create_chart:
        return _chart_resources(role)

    requests, limits = Mapping(), Mapping()
    memory, cpu = role.run.memory, role.run.cpu
    if settings.use_memory_limits:
        if memory.request is not None:
            requests.add("memory", f"{memory.request}Mi")
        if memory.limit is not None:
            limits.add("memory", f"{memory.limit}Mi")
    if settings.use_cpu_limits:
        if cpu.request is not None:
            requests.add("cpu", f"{int(round(cpu.request * 1000))}m")
        if cpu.limit is not None:
            limits.add("cpu", f"{int(round(cpu.limit * 1000))}m")

    resources = Mapping()
    if len(requests):
        resources.add("requests", requests.sort())
    if len(limits):
        resources.add("limits", limits.sort())
    return resources.sort() if len(resources) else None


def _chart_resources(role: InstanceGroup) -> Mapping:
    """Each entry is guarded by the global toggle and the presence of the sizing value."""
    role_var = make_var_name(role.name)
    sections = {"requests": Mapping(), "limits": Mapping()}
    for kind, unit in (("cpu", "m"), ("memory", "Mi")):
        for section, key in (("limits", "limit"), ("requests", "request")):
            path = f".Values.sizing.{role_var}.{kind}.{key}"
            sections[section].add(
                kind, f"{{{{ int {path} }}}}{unit}",
                block=f"if and .Values.config.{kind}.{section} {path}")
    return Mapping([("limits", sections["limits"]), ("requests", sections["requests"])])


def get_security_context(role: InstanceGroup, settings: ExportSettings) -> Mapping:
    """ALL grants a privileged container; anything else is an explicit capability list."""
    if role.is_privileged():
        return Mapping([("privileged", True)])

    context = Mapping([("allowPrivilegeEscalation", False)])
    add = ListNode(*(cap.upper() for cap in role.run.capabilities))
    if settings.create_chart:
        role_var = make_var_name(role.name)
        add.add(new_node("{{ . | upper }}", block=f"range .Values.sizing.{role_var}.capabilities"))
    if len(add):
        context.add("capabilities", Mapping([("add", add)]))
    return context
