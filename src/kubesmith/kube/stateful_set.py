#!/usr/bin/env python3
"""
KUBESMITH STATEFUL SET BUILDER
------------------------------
Stateful sets for instance groups with persistent or shared storage, or
that need ordered startup. Every stateful set comes with a headless
service (`<group>-set`) next to the private and public ones.

Author: KubeSmith Team
Date: 2026-01-16
"""

from typing import List, Optional, Tuple

from kubesmith.core.models import (
    TAG_SEQUENTIAL_STARTUP, VOLUME_PERSISTENT, VOLUME_SHARED, InstanceGroup,
)
from kubesmith.core.settings import ExportSettings
from kubesmith.document.tree import ListNode, Mapping
from kubesmith.kube.deployment import general_check, replica_check
from kubesmith.kube.pod import new_pod_template
from kubesmith.kube.service import new_service_list
from kubesmith.kube.utils import make_var_name, min_kube_version, new_kube_config, new_selector

VOLUME_STORAGE_CLASS_ANNOTATION = "volume.beta.kubernetes.io/storage-class"

_ACCESS_MODES = {
    VOLUME_PERSISTENT: "ReadWriteOnce",
    VOLUME_SHARED: "ReadWriteMany",
}


def new_stateful_set(role: InstanceGroup,
                     settings: ExportSettings) -> Tuple[Mapping, Optional[Mapping]]:
    """Returns the StatefulSet and its service list (None without ports)."""
    template = new_pod_template(role, settings)
    services = new_service_list(role, True, settings)
    claims = get_volume_claims(role, settings.create_chart)

    spec = Mapping()
    spec.add("selector", new_selector(role))
    spec.add("serviceName", f"{role.name}-set")
    spec.add("template", template)
    # The default strategy is OnDelete; RollingUpdate needs 1.7
    if settings.create_chart:
        spec.add("updateStrategy", Mapping([("type", "RollingUpdate")]),
                 block="if " + min_kube_version(1, 7))
    if claims:
        spec.add("volumeClaimTemplates", ListNode(*claims))
    policy = "OrderedReady" if role.has_tag(TAG_SEQUENTIAL_STARTUP) else "Parallel"
    spec.add("podManagementPolicy", policy)

    stateful_set = new_kube_config(settings, "apps/v1", "StatefulSet", role.name,
                                   role=role, comment=role.long_description)
    stateful_set.add("spec", spec)
    replica_check(role, stateful_set, services, settings)
    general_check(role, stateful_set, settings)
    return stateful_set, services


def get_volume_claims(role: InstanceGroup, create_chart: bool) -> List[Mapping]:
    """Claim templates for persistent (ReadWriteOnce) and shared (ReadWriteMany) volumes."""
    claims = []
    role_var = make_var_name(role.name)
    for volume in role.run.volumes:
        access_mode = _ACCESS_MODES.get(volume.type)
        if access_mode is None:
            continue

        if create_chart:
            storage_class = f"{{{{ .Values.kube.storage_class.{volume.type} | quote }}}}"
            size = f"{{{{ .Values.sizing.{role_var}.disk_sizes.{make_var_name(volume.tag)} }}}}G"
        else:
            storage_class = volume.type
            size = f"{volume.size}G"

        annotations = Mapping([(VOLUME_STORAGE_CLASS_ANNOTATION, storage_class)])
        for key in sorted(volume.annotations):
            annotations.add(key, volume.annotations[key])

        spec = Mapping()
        spec.add("accessModes", ListNode(access_mode))
        spec.add("resources", Mapping([("requests", Mapping([("storage", size)]))]))

        claims.append(Mapping([
            ("metadata", Mapping([("name", volume.tag), ("annotations", annotations)])),
            ("spec", spec),
        ]))
    return claims
