#!/usr/bin/env python3
"""
KUBESMITH CORE MODELS
---------------------
The role manifest as the exporter sees it. A manifest is a list of instance
groups (a set of interchangeable replicas running the same jobs), the
configuration variables those jobs consume, and the RBAC accounts and
roles the groups run under.

Author: KubeSmith Team
Date: 2026-01-16
"""

import hashlib
import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

# Flight stages
FLIGHT = "flight"
PRE_FLIGHT = "pre-flight"
POST_FLIGHT = "post-flight"
MANUAL = "manual"

# Instance group types
TYPE_BOSH = "bosh"
TYPE_BOSH_TASK = "bosh-task"
TYPE_COLOCATED = "colocated-container"

# Tags
TAG_STOP_ON_FAILURE = "stop-on-failure"
TAG_SEQUENTIAL_STARTUP = "sequential-startup"
TAG_ACTIVE_PASSIVE = "active-passive"

# Volume types
VOLUME_PERSISTENT = "persistent"
VOLUME_SHARED = "shared"
VOLUME_HOST = "host"
VOLUME_NONE = "none"
VOLUME_EMPTY_DIR = "emptyDir"

# Secret generator types
GENERATOR_PASSWORD = "password"
GENERATOR_SSH = "ssh"
GENERATOR_CERTIFICATE = "certificate"


@dataclass
class Scaling:
    min: int = 1
    max: int = 1
    ha: Optional[int] = None   # defaults to min
    must_be_odd: bool = False

    def __post_init__(self):
        if self.ha is None:
            self.ha = self.min


@dataclass
class Volume:
    """A volume attached to every replica of an instance group."""
    type: str
    path: str
    tag: str
    size: int = 0                  # in G, persistent and shared volumes only
    annotations: Dict[str, str] = field(default_factory=dict)


@dataclass
class ExposedPort:
    """
    A port (or inclusive range written "min-max") a group listens on.
    `external` defaults to `internal`.
    """
    name: str
    internal: str
    protocol: str = "TCP"
    external: str = ""
    public: bool = False
    count_configurable: bool = False
    port_configurable: bool = False
    count: int = 1
    max: int = 0

    def __post_init__(self):
        self.internal = str(self.internal)
        self.external = str(self.external) if self.external != "" else self.internal


@dataclass
class HealthProbe:
    url: str = ""
    headers: Dict[str, str] = field(default_factory=dict)
    command: List[str] = field(default_factory=list)
    port: int = 0
    initial_delay: int = 0
    period: int = 0
    timeout: int = 0
    success_threshold: int = 0
    failure_threshold: int = 0


@dataclass
class HealthCheck:
    liveness: Optional[HealthProbe] = None
    readiness: Optional[HealthProbe] = None


@dataclass
class Affinity:
    pod_anti_affinity: Any = None
    pod_affinity: Any = None
    node_affinity: Any = None


@dataclass
class MemorySpec:
    request: Optional[int] = None   # MiB
    limit: Optional[int] = None


@dataclass
class CPUSpec:
    request: Optional[float] = None  # cores
    limit: Optional[float] = None


@dataclass
class RoleRun:
    """How an instance group behaves at runtime."""
    scaling: Scaling = field(default_factory=Scaling)
    capabilities: List[str] = field(default_factory=list)
    volumes: List[Volume] = field(default_factory=list)
    memory: MemorySpec = field(default_factory=MemorySpec)
    cpu: CPUSpec = field(default_factory=CPUSpec)
    exposed_ports: List[ExposedPort] = field(default_factory=list)
    flight_stage: str = FLIGHT
    health_check: Optional[HealthCheck] = None
    service_account: str = ""
    affinity: Optional[Affinity] = None
    environment: List[str] = field(default_factory=list)
    object_annotations: Dict[str, str] = field(default_factory=dict)


@dataclass
class JobReference:
    """A release job colocated in an instance group."""
    name: str
    release: str = ""
    description: str = ""
    fingerprint: str = ""


@dataclass
class Generator:
    type: str                 # password, ssh or certificate
    id: str = ""
    value_type: str = ""


@dataclass
class ConfigurationVariable:
    name: str
    default: Any = None
    description: str = ""
    example: str = ""
    type: str = "user"        # user or environment
    internal: bool = False
    secret: bool = False
    required: bool = False
    immutable: bool = False
    generator: Optional[Generator] = None

    def value(self, defaults: Optional[Dict[str, Any]] = None) -> Tuple[bool, Optional[str]]:
        """
        Resolves the default (an override in `defaults` wins). Strings come
        back verbatim, anything else JSON-encoded. (False, None) means there
        is no value at all.
        """
        value = self.default
        if defaults and self.name in defaults:
            value = defaults[self.name]
        if value is None:
            return False, None
        if isinstance(value, str):
            return True, value
        return True, json.dumps(value)


@dataclass
class AuthRule:
    api_groups: List[str] = field(default_factory=list)
    resources: List[str] = field(default_factory=list)
    verbs: List[str] = field(default_factory=list)
    resource_names: List[str] = field(default_factory=list)

    def is_pod_security_policy_rule(self) -> bool:
        return ("podsecuritypolicies" in self.resources
                and "use" in self.verbs
                and bool({"extensions", "policy"} & set(self.api_groups)))


@dataclass
class AuthAccount:
    roles: List[str] = field(default_factory=list)
    cluster_roles: List[str] = field(default_factory=list)
    used_by: List[str] = field(default_factory=list)


@dataclass
class Authorization:
    roles: Dict[str, List[AuthRule]] = field(default_factory=dict)
    cluster_roles: Dict[str, List[AuthRule]] = field(default_factory=dict)
    accounts: Dict[str, AuthAccount] = field(default_factory=dict)
    pod_security_policies: Dict[str, Any] = field(default_factory=dict)

    def role_used_by(self, role: str) -> List[str]:
        return sorted(name for name, acct in self.accounts.items() if role in acct.roles)

    def cluster_role_used_by(self, role: str) -> List[str]:
        return sorted(name for name, acct in self.accounts.items() if role in acct.cluster_roles)


@dataclass
class InstanceGroup:
    name: str
    description: str = ""
    type: str = TYPE_BOSH
    jobs: List[JobReference] = field(default_factory=list)
    run: RoleRun = field(default_factory=RoleRun)
    tags: List[str] = field(default_factory=list)
    colocated_containers: List[str] = field(default_factory=list)

    @property
    def long_description(self) -> str:
        """The description followed by a summary of the jobs it runs."""
        desc = self.description
        if desc:
            desc += "\n\n"
        desc += f"The {self.name} instance group contains the following jobs:"
        no_desc = []
        also = ""
        for job in self.jobs:
            if job.description:
                desc += f"\n\n- {job.name}: {job.description}"
                also = "Also: "
            else:
                no_desc.append(job.name)
        if no_desc:
            desc += f"\n\n{also}{', '.join(no_desc)}"
        return desc

    def has_tag(self, tag: str) -> bool:
        return tag in self.tags

    def is_privileged(self) -> bool:
        return any(cap.upper() == "ALL" for cap in self.run.capabilities)

    def is_colocated(self) -> bool:
        return self.type == TYPE_COLOCATED

    def is_task(self) -> bool:
        return self.type == TYPE_BOSH_TASK or self.run.flight_stage != FLIGHT

    def volumes_of(self, *types: str) -> List[Volume]:
        return [volume for volume in self.run.volumes if volume.type in types]

    def dev_version(self, opinions: Any = None, tag_extra: str = "", version: str = "") -> str:
        """A stable image tag derived from the group's jobs and the build inputs."""
        digest = hashlib.sha1()
        digest.update(self.name.encode("utf-8"))
        for job in sorted(self.jobs, key=lambda j: j.name):
            digest.update(f"{job.release}/{job.name}:{job.fingerprint}".encode("utf-8"))
        digest.update(json.dumps(opinions or {}, sort_keys=True, default=str).encode("utf-8"))
        digest.update(tag_extra.encode("utf-8"))
        digest.update(version.encode("utf-8"))
        return digest.hexdigest()


@dataclass
class RoleManifest:
    instance_groups: List[InstanceGroup] = field(default_factory=list)
    variables: List[ConfigurationVariable] = field(default_factory=list)
    authorization: Authorization = field(default_factory=Authorization)

    def lookup_instance_group(self, name: str) -> Optional[InstanceGroup]:
        for group in self.instance_groups:
            if group.name == name:
                return group
        return None

    def variable_map(self) -> Dict[str, ConfigurationVariable]:
        return {cv.name: cv for cv in self.variables}

    def variables_for(self, group: InstanceGroup) -> List[ConfigurationVariable]:
        """Internal variables go to every group, the others only where named."""
        wanted = set(group.run.environment)
        result = [cv for cv in self.variables if cv.internal or cv.name in wanted]
        return sorted(result, key=lambda cv: cv.name)

    def colocated_groups(self, group: InstanceGroup) -> List[InstanceGroup]:
        result = []
        for name in group.colocated_containers:
            colocated = self.lookup_instance_group(name)
            if colocated is not None:
                result.append(colocated)
        return result
