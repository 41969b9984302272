#!/usr/bin/env python3
"""
KUBESMITH JOB BUILDER
---------------------
Jobs for task instance groups (anything not in the `flight` stage, and
bosh-task groups). Chart jobs carry the release revision in their name so
that each upgrade runs them again.

Author: KubeSmith Team
Date: 2026-01-16
"""

from kubesmith.core.models import InstanceGroup
from kubesmith.core.settings import ExportSettings
from kubesmith.document.tree import Mapping
from kubesmith.kube.pod import new_pod_template, set_restart_policy
from kubesmith.kube.utils import new_kube_config


def new_job(role: InstanceGroup, settings: ExportSettings) -> Mapping:
    template = new_pod_template(role, settings)
    set_restart_policy(role, template)

    name = role.name
    if settings.create_chart:
        name += "-{{ .Release.Revision }}"

    job = new_kube_config(settings, "batch/v1", "Job", name, role=role,
                          comment=role.long_description)
    job.add("spec", Mapping([("template", template)]))
    return job.sort()
