#!/usr/bin/env python3
"""
KUBESMITH REGISTRY CREDENTIALS
------------------------------
The image pull secret referenced by every pod. Its `.dockercfg` entry is
base64 of

    {"<host>": {"username": "...", "password": "...", "auth": "<b64 user:pass>"}}

Author: KubeSmith Team
Date: 2026-01-16
"""

from kubesmith.core.settings import ExportSettings
from kubesmith.document.tree import Mapping
from kubesmith.kube.utils import new_kube_config

REGISTRY_CREDENTIALS = "registry-credentials"

_CHART_DOCKERCFG = (
    '{{ printf "{%q:{%q:%q,%q:%q,%q:%q}}" '
    '.Values.kube.registry.hostname '
    '"username" (default "" .Values.kube.registry.username) '
    '"password" (default "" .Values.kube.registry.password) '
    '"auth" (printf "%s:%s" .Values.kube.registry.username .Values.kube.registry.password | b64enc) '
    '| b64enc }}'
)


def make_registry_credentials(settings: ExportSettings) -> Mapping:
    """
    Plain output carries an empty value. Charts compute it from the
    registry values and skip the secret when no username is configured.
    """
    value = _CHART_DOCKERCFG if settings.create_chart else ""
    block = "if .Values.kube.registry.username" if settings.create_chart else None

    secret = new_kube_config(settings, "v1", "Secret", REGISTRY_CREDENTIALS, block=block)
    secret.add("data", Mapping([(".dockercfg", value)]))
    secret.add("type", "kubernetes.io/dockercfg")
    return secret.sort()
