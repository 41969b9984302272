#!/usr/bin/env python3
"""
KUBESMITH KUBE UTILITIES
------------------------
Naming rules and the scaffolding shared by every resource builder:
variable/key conversion, port range parsing, port name generation, object
metadata and label sets.

Author: KubeSmith Team
Date: 2026-01-16
"""

import logging
import re
import zlib
from collections import namedtuple
from typing import List, Optional, Tuple

from kubesmith.core.errors import ManifestError
from kubesmith.core.models import ExposedPort, InstanceGroup
from kubesmith.core.settings import ExportSettings
from kubesmith.document.tree import Mapping

logger = logging.getLogger("kubesmith.kube")

# The label every object of an instance group carries; selectors match on it.
ROLE_NAME_LABEL = "app.kubernetes.io/component"

MAX_PORT_NAME_LENGTH = 15
MAX_PORT = 65535

PortInfo = namedtuple("PortInfo", ["name", "port"])

_INVALID_PORT_CHARS = re.compile(r"[^A-Za-z0-9-]")
_DASH_RUNS = re.compile(r"-{2,}")


def make_var_name(name: str) -> str:
    """Role and volume names become template path components: dashes are not allowed there."""
    return name.replace("-", "_")


def convert_name_to_key(name: str) -> str:
    """Secret keys are lower case and use dashes."""
    return name.lower().replace("_", "-")


def _parse_port(text: str) -> int:
    text = text.strip()
    if not text.isdigit():
        raise ValueError(f"{text!r} is not a number")
    port = int(text)
    if port < 1 or port > MAX_PORT:
        raise ValueError(f"{port} is out of range 1-{MAX_PORT}")
    return port


def parse_port_range(port_range: str, name: str, description: str) -> Tuple[int, int]:
    """
    Parses "N" or "N-M" into an inclusive (min, max) pair.

    Args:
        port_range: the text from the manifest.
        name: the port name, for diagnostics.
        description: which side of the port this is ("internal"/"external").
    """
    port_range = str(port_range)
    if "-" not in port_range:
        try:
            port = _parse_port(port_range)
        except ValueError as e:
            raise ManifestError(f"Port {name} has invalid {description} port {port_range}: {e}",
                                field=name) from e
        return port, port

    start, _, end = port_range.partition("-")
    try:
        min_port = _parse_port(start)
    except ValueError as e:
        raise ManifestError(f"Port {name} has invalid {description} starting port {start}: {e}",
                            field=name) from e
    try:
        max_port = _parse_port(end)
    except ValueError as e:
        raise ManifestError(f"Port {name} has invalid {description} ending port {end}: {e}",
                            field=name) from e
    if min_port > max_port:
        raise ManifestError(f"Port {name} has invalid {description} port range {port_range}",
                            field=name)
    return min_port, max_port


def exposed_port_ranges(port: ExposedPort) -> Tuple[Tuple[int, int], Tuple[int, int]]:
    """Internal and external ranges of a port; both must span the same number of ports."""
    internal = parse_port_range(port.internal, port.name, "internal")
    external = parse_port_range(port.external, port.name, "external")
    if internal[1] - internal[0] != external[1] - external[0]:
        raise ManifestError(
            f"Port {port.name} has mismatched internal ({port.internal}) and external ({port.external}) ranges",
            field=port.name)
    return internal, external


def sanitize_port_name(name: str) -> str:
    """Keeps letters, digits and single dashes; no dash at either end."""
    fixed = _DASH_RUNS.sub("-", _INVALID_PORT_CHARS.sub("", name)).strip("-")
    if not fixed:
        raise ManifestError(f"Port name {name} does not contain any letters or digits", field=name)
    return fixed


def get_port_info(name: str, min_port: int, max_port: int) -> List[PortInfo]:
    """
    Generates the port entries for an inclusive range. A single port keeps
    the sanitized name; a range appends "-<index>". Names that would not fit
    in 15 characters are shortened to a prefix plus a CRC-32 of the name.
    """
    fixed = sanitize_port_name(name)

    range_size = max_port - min_port
    suffix_length = len(f"-{range_size}") if range_size > 0 else 0
    if len(fixed) + suffix_length > MAX_PORT_NAME_LENGTH:
        available = 7 - suffix_length
        shortened = "%s%x" % (fixed[:available], zlib.crc32(fixed.encode("utf-8")) & 0xffffffff)
        logger.debug(f"Port name {fixed} is too long, using {shortened}")
        fixed = shortened

    results = []
    for i in range(range_size + 1):
        single = f"{fixed}-{i}" if suffix_length else fixed
        results.append(PortInfo(single, min_port + i))
    return results


def min_kube_version(major: int, minor: int) -> str:
    """A template condition that holds on clusters of at least major.minor."""
    return ("or (gt (int .Capabilities.KubeVersion.Major) {major}) "
            "(and (eq (int .Capabilities.KubeVersion.Major) {major}) "
            "(ge (.Capabilities.KubeVersion.Minor | trimSuffix \"+\" | int) {minor}))"
            ).format(major=major, minor=minor)


def make_labels(settings: ExportSettings, role_name: Optional[str] = None) -> Mapping:
    """Standard labels; chart mode adds the release and chart identity."""
    labels = Mapping()
    if role_name is not None:
        labels.add(ROLE_NAME_LABEL, role_name)
    if settings.create_chart:
        labels.add("app.kubernetes.io/instance", "{{ .Release.Name | quote }}")
        labels.add("app.kubernetes.io/managed-by", "{{ .Release.Service | quote }}")
        labels.add("app.kubernetes.io/name", "{{ .Chart.Name | quote }}")
        labels.add("app.kubernetes.io/version", "{{ default .Chart.Version .Chart.AppVersion | quote }}")
        labels.add("helm.sh/chart", "{{ printf \"%s-%s\" .Chart.Name .Chart.Version | replace \"+\" \"_\" | quote }}")
    return labels.sort()


def new_type_meta(api_version: str, kind: str, comment: Optional[str] = None,
                  block: Optional[str] = None) -> Mapping:
    return Mapping([("apiVersion", api_version), ("kind", kind)], comment=comment, block=block)


def new_kube_config(settings: ExportSettings, api_version: str, kind: str, name: str,
                    role: Optional[InstanceGroup] = None, comment: Optional[str] = None,
                    block: Optional[str] = None) -> Mapping:
    """
    apiVersion, kind and metadata (name and labels) of a new object. `name`
    may be a template expression in chart mode.
    """
    obj = new_type_meta(api_version, kind, comment, block)
    meta = Mapping([("name", name)])
    labels = make_labels(settings, role.name if role else None)
    if len(labels):
        meta.add("labels", labels)
    obj.add("metadata", meta)
    return obj


def new_selector(role: InstanceGroup) -> Mapping:
    return Mapping([("matchLabels", Mapping([(ROLE_NAME_LABEL, role.name)]))])
