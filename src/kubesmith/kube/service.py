#!/usr/bin/env python3
"""
KUBESMITH SERVICE BUILDER
-------------------------
ClusterIP services for the exposed ports of an instance group: the private
service, the public one (public ports only, with external IPs) and, for
stateful sets, the headless service that gives each pod a stable name.

Author: KubeSmith Team
Date: 2026-01-16
"""

from typing import Optional

from kubesmith.core.models import InstanceGroup
from kubesmith.core.settings import ExportSettings
from kubesmith.document.tree import ListNode, Mapping
from kubesmith.kube.utils import (
    ROLE_NAME_LABEL, exposed_port_ranges, get_port_info, make_var_name, new_kube_config,
    new_type_meta,
)


def new_service_list(role: InstanceGroup, headless: bool,
                     settings: ExportSettings) -> Optional[Mapping]:
    """
    A `List` holding the services of a group, or None when the group
    exposes no ports.
    """
    items = ListNode()
    variants = [(False, False), (False, True)]
    if headless:
        variants.insert(0, (True, False))
    for is_headless, is_public in variants:
        svc = new_cluster_ip_service(role, is_headless, is_public, settings)
        if svc is not None:
            items.add(svc)
    if not len(items):
        return None

    service_list = new_type_meta("v1", "List")
    service_list.add("items", items)
    return service_list.sort()


def service_name(role: InstanceGroup, headless: bool, public: bool) -> str:
    if headless:
        return f"{role.name}-set"
    if public:
        return f"{role.name}-public"
    return role.name


def _service_ports(role: InstanceGroup, headless: bool, public: bool,
                   settings: ExportSettings) -> ListNode:
    ports = ListNode()
    role_var = make_var_name(role.name)
    for port in role.run.exposed_ports:
        if public and not port.public:
            continue
        protocol = port.protocol.upper()
        _, (min_port, max_port) = exposed_port_ranges(port)

        if settings.create_chart and port.count_configurable:
            base = get_port_info(port.name, 1, 1)[0].name
            count = f".Values.sizing.{role_var}.ports.{make_var_name(port.name)}.count"
            name = f'{{{{ printf "{base}-%d" $i }}}}'
            entry = Mapping([
                ("name", name),
                ("port", f"{{{{ add {min_port} $i }}}}"),
                ("protocol", protocol),
                ("targetPort", 0 if headless else name),
            ], block=f"range $i := until (int {count})")
            ports.add(entry)
            continue

        for info in get_port_info(port.name, min_port, max_port):
            ports.add(Mapping([
                ("name", info.name),
                ("port", info.port),
                ("protocol", protocol),
                # headless services require a zero target port
                ("targetPort", 0 if headless else info.name),
            ]))
    return ports


def new_cluster_ip_service(role: InstanceGroup, headless: bool, public: bool,
                           settings: ExportSettings) -> Optional[Mapping]:
    """
    A single service. Returns None when no port qualifies, as services
    without ports are rejected by the cluster.
    """
    ports = _service_ports(role, headless, public, settings)
    if not len(ports):
        return None

    spec = Mapping()
    spec.add("selector", Mapping([(ROLE_NAME_LABEL, role.name)]))
    spec.add("type", "ClusterIP")
    if headless:
        spec.add("clusterIP", "None")
    if public:
        if settings.create_chart:
            spec.replace("type", "{{ if .Values.services.loadbalanced }}LoadBalancer"
                                 "{{ else }}ClusterIP{{ end }}")
            spec.add("externalIPs", "{{ .Values.kube.external_ips | toJson }}",
                     block="if not .Values.services.loadbalanced")
        else:
            spec.add("externalIPs", ListNode(*settings.external_ips))
    spec.add("ports", ports)

    service = new_kube_config(settings, "v1", "Service", service_name(role, headless, public), role=role)
    service.add("spec", spec.sort())
    return service
