#!/usr/bin/env python3
"""
KUBESMITH SECRET BUILDER
------------------------
Collects the secret configuration variables into one Secret object, plus
the deployment-manifest secret mounted into every container.

Author: KubeSmith Team
Date: 2026-01-16
"""

import base64
import json
import logging
from typing import List, Optional

from kubesmith.core.models import (
    GENERATOR_CERTIFICATE, GENERATOR_PASSWORD, GENERATOR_SSH, ConfigurationVariable,
)
from kubesmith.core.settings import ExportSettings
from kubesmith.document.tree import Mapping
from kubesmith.kube.utils import convert_name_to_key, new_kube_config

logger = logging.getLogger("kubesmith.kube")

DEPLOYMENT_MANIFEST = "deployment-manifest"


def secret_name(settings: ExportSettings) -> str:
    """The Secret holding the variable values, as referenced by pods."""
    if not settings.use_secrets_generator:
        return "secret"
    if settings.create_chart:
        return "secret-update-{{ .Release.Revision }}"
    return "secret-update"


def formatted_example(example: str) -> str:
    """The 'Example:' suffix appended to variable comments (empty without example)."""
    if not example:
        return ""
    if "\n" in example:
        lines = example.rstrip("\n").split("\n")
        return "\nExample:\n  " + "\n  ".join(lines)
    return f"\nExample: {json.dumps(example, ensure_ascii=False)}"


def variable_comment(cv: ConfigurationVariable) -> str:
    comment = cv.description
    this_value = "This value"
    if cv.generator is not None:
        comment += f"\n{this_value} uses a generated default."
        this_value = "It"
    if cv.immutable:
        comment += f"\n{this_value} is immutable and must not be changed once set."
    return comment + formatted_example(cv.example)


def _is_external(cv: ConfigurationVariable, settings: ExportSettings) -> bool:
    """Generated values the chart cannot produce itself."""
    if cv.generator is None:
        return False
    if settings.use_secrets_generator:
        return True
    return cv.generator.type in (GENERATOR_SSH, GENERATOR_CERTIFICATE)


def _plain_value(cv: ConfigurationVariable, settings: ExportSettings) -> str:
    ok, value = cv.value(settings.defaults)
    if not ok:
        return ""
    return base64.b64encode(value.encode("utf-8")).decode("ascii")


def _chart_value(cv: ConfigurationVariable) -> str:
    if cv.generator is not None and cv.generator.type == GENERATOR_PASSWORD:
        return "{{ randAlphaNum 32 | b64enc | quote }}"
    return (f'{{{{ required "{cv.name} configuration missing" '
            f'.Values.secrets.{cv.name} | b64enc | quote }}}}')


def make_secrets(variables: List[ConfigurationVariable], settings: ExportSettings) -> Mapping:
    """
    One Secret for every secret variable. Keys use the lower case dashed
    form of the variable name; values are base64 encoded (plain) or
    template expressions (chart).
    """
    data = Mapping()
    for cv in sorted(variables, key=lambda v: v.name):
        if not cv.secret:
            continue
        if settings.create_chart:
            if _is_external(cv, settings):
                logger.debug(f"Secret {cv.name} is generated outside the chart")
                continue
            value = _chart_value(cv)
        else:
            value = _plain_value(cv, settings)
        data.add(convert_name_to_key(cv.name), value, comment=variable_comment(cv))

    secret = new_kube_config(settings, "v1", "Secret", secret_name(settings))
    secret.add("data", data.sort())
    secret.add("type", "Opaque")
    return secret


def make_deployment_manifest_secret(settings: ExportSettings,
                                    content: Optional[str] = None) -> Mapping:
    """
    The secret carrying the deployment manifest. Plain output embeds
    `content` (empty when None); charts render `.Values.bosh`.
    """
    if settings.create_chart:
        value = "{{ .Values.bosh | toYaml | b64enc }}"
    else:
        value = base64.b64encode((content or "").encode("utf-8")).decode("ascii")

    secret = new_kube_config(settings, "v1", "Secret", DEPLOYMENT_MANIFEST)
    secret.add("data", Mapping([(DEPLOYMENT_MANIFEST, value)]))
    secret.add("type", "Opaque")
    return secret
