#!/usr/bin/env python3
"""
KUBESMITH PROBE BUILDER
-----------------------
Turns the health check of an instance group into liveness and readiness
probe subtrees. A probe uses exactly one handler, chosen in the order
url > port > command.

Author: KubeSmith Team
Date: 2026-01-16
"""

import base64
import logging
from typing import Optional
from urllib.parse import urlsplit

from kubesmith.core.errors import ManifestError
from kubesmith.core.models import TYPE_BOSH, HealthProbe, InstanceGroup
from kubesmith.document.tree import ListNode, Mapping

logger = logging.getLogger("kubesmith.kube")

# The supervisor inside every image listens here
MONIT_PORT = 2289

DEFAULT_LIVENESS_INITIAL_DELAY = 600


def canonical_header_key(key: str) -> str:
    """x-custom-header -> X-Custom-Header"""
    return "-".join(part[:1].upper() + part[1:].lower() for part in key.split("-"))


def get_container_liveness_probe(role: InstanceGroup) -> Optional[Mapping]:
    """
    The configured liveness probe; otherwise, for managed groups, a check
    of the supervisor port. Other groups do not run the supervisor and get
    None. successThreshold is never emitted (the orchestrator only accepts
    1 for liveness).
    """
    probe = role.run.health_check.liveness if role.run.health_check else None
    if probe is None:
        if role.type != TYPE_BOSH:
            return None
        probe = HealthProbe(port=MONIT_PORT)

    node = _configure_probe(role, probe, "liveness")
    if probe.initial_delay == 0:
        node.replace("initialDelaySeconds", DEFAULT_LIVENESS_INITIAL_DELAY)
    if "successThreshold" in node:
        node.remove("successThreshold")
    return node.sort()


def get_container_readiness_probe(role: InstanceGroup) -> Optional[Mapping]:
    """
    The configured readiness probe; otherwise, for managed groups, a TCP
    check of the first TCP port. Returns None when there is nothing to probe.
    """
    probe = role.run.health_check.readiness if role.run.health_check else None
    if probe is not None:
        return _configure_probe(role, probe, "readiness").sort()

    if role.type != TYPE_BOSH:
        return None
    for port in role.run.exposed_ports:
        if port.protocol.upper() != "TCP":
            continue
        internal = port.internal.split("-")[0]
        logger.debug(f"Readiness probe for {role.name} falls back to TCP port {internal}")
        return Mapping([("tcpSocket", Mapping([("port", int(internal))]))])
    return None


def _configure_probe(role: InstanceGroup, probe: HealthProbe, kind: str) -> Mapping:
    if probe.url:
        node = get_url_probe(role, probe, kind)
    elif probe.port:
        node = Mapping([("tcpSocket", Mapping([("port", probe.port)]))])
    elif probe.command:
        node = Mapping([("exec", Mapping([("command", ListNode(*probe.command))]))])
    else:
        node = Mapping()

    if probe.initial_delay:
        node.add("initialDelaySeconds", probe.initial_delay)
    if probe.timeout:
        node.add("timeoutSeconds", probe.timeout)
    if probe.period:
        node.add("periodSeconds", probe.period)
    if probe.success_threshold:
        node.add("successThreshold", probe.success_threshold)
    if probe.failure_threshold:
        node.add("failureThreshold", probe.failure_threshold)
    return node


def get_url_probe(role: InstanceGroup, probe: HealthProbe, kind: str) -> Mapping:
    """
    An httpGet probe from a URL. Credentials in the URL become an
    Authorization header; the pseudo host `container-ip` means the pod IP.
    """
    try:
        url = urlsplit(probe.url)
    except ValueError as e:
        raise ManifestError(f"Invalid {kind} URL health check for {role.name}: {e}",
                            role=role.name, field="url") from e

    scheme = url.scheme.upper()
    if scheme == "HTTP":
        port = 80
    elif scheme == "HTTPS":
        port = 443
    else:
        raise ManifestError(f'Health check for {role.name} has unsupported URI scheme "{url.scheme}"',
                            role=role.name, field="url")

    user_info, _, authority = url.netloc.rpartition("@")
    try:
        explicit_port = url.port
    except ValueError as e:
        raise ManifestError(
            f'Failed to get URL port for {kind} health check for {role.name}: invalid host "{authority}"',
            role=role.name, field="url") from e
    if explicit_port is not None:
        port = explicit_port
    host = url.hostname or ""
    if host == "container-ip":
        host = ""

    headers = ListNode()
    if user_info:
        # The header value is the bare encoded credential pair, still URL escaped
        credentials = base64.b64encode(user_info.encode("utf-8")).decode("ascii")
        headers.add(Mapping([("name", "Authorization"), ("value", credentials)]))
    for key in sorted(probe.headers):
        headers.add(Mapping([("name", canonical_header_key(key)), ("value", probe.headers[key])]))

    path = url.path
    if url.query:
        path += "?" + url.query
    # The fragment is never sent to the server

    http_get = Mapping()
    if host:
        http_get.add("host", host)
    http_get.add("port", port)
    http_get.add("path", path)
    http_get.add("scheme", scheme)
    if len(headers):
        http_get.add("httpHeaders", headers)
    return Mapping([("httpGet", http_get.sort())])
