#!/usr/bin/env python3
"""
KUBESMITH VALUES BUILDER
------------------------
The chart's values.yaml: every knob the generated templates reference,
with its default and a comment explaining it.

Author: KubeSmith Team
Date: 2026-01-16
"""

from typing import Any, Optional

from kubesmith.core.models import MANUAL, VOLUME_PERSISTENT, VOLUME_SHARED, ConfigurationVariable
from kubesmith.core.settings import ExportSettings
from kubesmith.document.tree import ListNode, Mapping
from kubesmith.kube.secret import variable_comment
from kubesmith.kube.utils import make_var_name

DEFAULT_REGISTRY = "docker.io"

SIZING_COMMENT = (
    "The sizing section contains configuration to change each individual instance group. "
    'Due to limitations on the allowable names, any dashes ("-") in the instance group '
    'names are replaced with underscores ("_").'
)


def _toggle() -> Mapping:
    return Mapping([("limits", False), ("requests", False)])


def make_basic_values() -> Mapping:
    """The sections that do not depend on the role manifest."""
    kube = Mapping()
    kube.add("external_ips", ListNode())
    kube.add("hostpath_available", False,
             comment="Whether HostPath volume mounts are available")
    kube.add("storage_class", Mapping([
        (VOLUME_PERSISTENT, VOLUME_PERSISTENT),
        (VOLUME_SHARED, VOLUME_SHARED),
    ]))

    config = Mapping()
    config.add("HA", False, comment="Flag to activate high-availability mode")
    config.add("cpu", _toggle(),
               comment="Global CPU configuration")
    config.add("memory", _toggle(),
               comment="Global memory configuration")

    values = Mapping()
    values.add("bosh", Mapping([("instance_groups", ListNode())]))
    values.add("config", config)
    values.add("kube", kube)
    values.add("services", Mapping([("loadbalanced", False)]))
    return values


def _raw_value(cv: ConfigurationVariable, settings: ExportSettings) -> Optional[Any]:
    if settings.defaults and cv.name in settings.defaults:
        return settings.defaults[cv.name]
    return cv.default


def _count_comment(group_var: str, scaling) -> str:
    it = f"The {group_var} instance group"
    if scaling.min == scaling.max:
        return f"{it} cannot be scaled."
    comment = f"{it} can scale between {scaling.min} and {scaling.max} instances."
    if scaling.must_be_odd:
        comment += "\nThe instance count must be an odd number (not divisible by 2)."
    if scaling.ha != scaling.min:
        comment += f"\nFor high availability it needs at least {scaling.ha} instances."
    return comment


def _scaled(value: Optional[float], factor: float = 1) -> Optional[Any]:
    if value is None:
        return None
    return value * factor


def make_sizing(settings: ExportSettings) -> Mapping:
    sizing = Mapping(comment=SIZING_COMMENT)
    for group in settings.role_manifest.instance_groups:
        if group.run.flight_stage == MANUAL or group.is_colocated():
            continue
        group_var = make_var_name(group.name)
        entry = Mapping()

        if not group.is_privileged():
            entry.add("capabilities", ListNode(),
                      comment="Additional privileges can be specified here")
        entry.add("count", group.run.scaling.min, comment=_count_comment(group_var, group.run.scaling))

        memory = group.run.memory
        entry.add("memory", Mapping([("limit", memory.limit), ("request", memory.request)]),
                  comment="Unit [MiB]")
        cpu = group.run.cpu
        entry.add("cpu", Mapping([
            ("limit", _scaled(cpu.limit, 1000.)),
            ("request", _scaled(cpu.request, 1000.)),
        ]), comment="Unit [millicore]")

        disk_sizes = Mapping()
        for volume in group.volumes_of(VOLUME_PERSISTENT, VOLUME_SHARED):
            disk_sizes.add(make_var_name(volume.tag), volume.size)
        if len(disk_sizes):
            entry.add("disk_sizes", disk_sizes.sort())

        ports = Mapping()
        for port in group.run.exposed_ports:
            config = Mapping()
            if port.port_configurable:
                config.add("port", int(port.external.split("-")[0]))
            if port.count_configurable:
                config.add("count", port.count)
            if len(config):
                ports.add(make_var_name(port.name), config)
        if len(ports):
            entry.add("ports", ports.sort())

        entry.add("affinity", Mapping(), comment="Node affinity rules can be specified here")
        sizing.add(group_var, entry.sort(), comment=group.long_description)
    return sizing.sort()


def make_values(settings: ExportSettings) -> Mapping:
    """
    The complete values document for a chart. Requires
    `settings.role_manifest`.
    """
    manifest = settings.role_manifest
    values = make_basic_values()

    env, secrets, generated = Mapping(), Mapping(), Mapping()
    for cv in sorted(manifest.variables, key=lambda v: v.name):
        if cv.name.startswith("KUBE_SIZING_") or cv.type == "environment":
            continue
        # Generated immutable secrets ignore any default
        if cv.immutable and cv.generator is not None:
            continue

        comment = variable_comment(cv)
        if not cv.secret:
            env.add(cv.name, _raw_value(cv, settings), comment=comment)
        elif cv.generator is None:
            secrets.add(cv.name, _raw_value(cv, settings), comment=comment)
        else:
            generated.add(cv.name, None, comment=comment)
    secrets.merge(generated)
    values.add("secrets", secrets)
    values.add("env", env)
    values.add("sizing", make_sizing(settings))

    kube = values["kube"]
    kube.add("registry", Mapping([
        ("hostname", settings.registry or DEFAULT_REGISTRY),
        ("username", settings.username),
        ("password", settings.password),
    ]))
    kube.add("organization", settings.organization)
    kube.add("auth", settings.auth_type, comment="Set to \"rbac\" to create the RBAC objects")
    psps = Mapping((name, None) for name in sorted(manifest.authorization.pod_security_policies))
    kube.add("psp", psps)
    nproc = Mapping([("hard", ""), ("soft", "")])
    kube.add("limits", Mapping([("nproc", nproc)]))
    kube.sort()

    ingress = Mapping()
    ingress.add("annotations", Mapping(),
                comment="ingress.annotations allows specifying custom ingress annotations "
                        "that gets merged to the default annotations.")
    ingress.add("enabled", False,
                comment="ingress.enabled enables ingress support - working ingress controller necessary.")
    ingress.add("tls", Mapping(),
                comment="ingress.tls.crt and ingress.tls.key, when specified, are used by the "
                        "TLS secret for the Ingress resource.")
    values.add("ingress", ingress)
    return values.sort()
