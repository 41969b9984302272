#!/usr/bin/env python3
"""
KUBESMITH MANIFEST LOADER
-------------------------
Reads a role manifest from YAML into the core models. Keys may use dashes
or underscores (`flight-stage` and `flight_stage` are the same key). Only
the shape of the document is checked here; whether the manifest makes
sense is decided by the builders.

    instance_groups:
    - name: api
      jobs: [{name: api-server, release: core}]
      run:
        scaling: {min: 1, max: 3}
        exposed_ports: [{name: http, internal: 8080, public: true}]
    variables:
    - name: API_PASSWORD
      secret: true
    authorization:
      accounts:
        api-account: {roles: [configgin]}

Author: KubeSmith Team
Date: 2026-01-16
"""

import logging
from dataclasses import fields
from pathlib import Path
from typing import Any, Dict, List, Type, TypeVar

from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError

from kubesmith.core.errors import ManifestError
from kubesmith.core.models import (
    Affinity, AuthAccount, AuthRule, Authorization, ConfigurationVariable, CPUSpec,
    ExposedPort, Generator, HealthCheck, HealthProbe, InstanceGroup, JobReference,
    MemorySpec, RoleManifest, RoleRun, Scaling, Volume,
)

logger = logging.getLogger("kubesmith.loader")

T = TypeVar("T")

# Spellings used by orchestrator-style manifests
_ALIASES = {
    "apiGroups": "api_groups",
    "resourceNames": "resource_names",
    "podAntiAffinity": "pod_anti_affinity",
    "podAffinity": "pod_affinity",
    "nodeAffinity": "node_affinity",
    "healthcheck": "health_check",
    "env": "environment",
    "count_is_configurable": "count_configurable",
    "port_is_configurable": "port_configurable",
}


def _normalize(data: Dict[Any, Any]) -> Dict[str, Any]:
    result = {}
    for key, value in data.items():
        key = str(key)
        key = _ALIASES.get(key, key).replace("-", "_")
        result[_ALIASES.get(key, key)] = value
    return result


def _mapping(data: Any, where: str, normalize: bool = True) -> Dict[str, Any]:
    """A mapping section; `normalize=False` for sections keyed by user chosen names."""
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ManifestError(f"{where} must be a mapping, got {type(data).__name__}", field=where)
    if not normalize:
        return {str(key): value for key, value in data.items()}
    return _normalize(data)


def _sequence(data: Any, where: str) -> List[Any]:
    if data is None:
        return []
    if not isinstance(data, list):
        raise ManifestError(f"{where} must be a list, got {type(data).__name__}", field=where)
    return data


def _build(cls: Type[T], data: Dict[str, Any], where: str) -> T:
    """Instantiates a dataclass, rejecting keys it does not know."""
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ManifestError(f"{where} has unknown keys: {', '.join(unknown)}", field=where)
    try:
        return cls(**data)
    except TypeError as e:
        raise ManifestError(f"{where} is incomplete: {e}", field=where) from e


def _resource_spec(cls, data: Any, where: str):
    """Memory and CPU accept a bare number as the request."""
    if isinstance(data, (int, float)) and not isinstance(data, bool):
        return cls(request=data)
    return _build(cls, _mapping(data, where), where)


def _probe(data: Any, where: str) -> HealthProbe:
    probe = _mapping(data, where)
    if "command" in probe:
        probe["command"] = [str(part) for part in _sequence(probe["command"], f"{where}.command")]
    if "headers" in probe:
        headers = _mapping(probe["headers"], f"{where}.headers", False)
        probe["headers"] = {key: str(value) for key, value in headers.items()}
    return _build(HealthProbe, probe, where)


def load_run(data: Any, where: str) -> RoleRun:
    run = _mapping(data, where)
    if "scaling" in run:
        run["scaling"] = _build(Scaling, _mapping(run["scaling"], f"{where}.scaling"), f"{where}.scaling")
    if "volumes" in run:
        run["volumes"] = [_build(Volume, _mapping(v, f"{where}.volumes"), f"{where}.volumes")
                          for v in _sequence(run["volumes"], f"{where}.volumes")]
    if "memory" in run:
        run["memory"] = _resource_spec(MemorySpec, run["memory"], f"{where}.memory")
    if "cpu" in run:
        run["cpu"] = _resource_spec(CPUSpec, run["cpu"], f"{where}.cpu")
    if "exposed_ports" in run:
        run["exposed_ports"] = [
            _build(ExposedPort, _mapping(p, f"{where}.exposed_ports"), f"{where}.exposed_ports")
            for p in _sequence(run["exposed_ports"], f"{where}.exposed_ports")]
    if "health_check" in run:
        check = _mapping(run["health_check"], f"{where}.health_check")
        run["health_check"] = HealthCheck(
            liveness=_probe(check["liveness"], f"{where}.liveness") if check.get("liveness") else None,
            readiness=_probe(check["readiness"], f"{where}.readiness") if check.get("readiness") else None,
        )
    if "affinity" in run:
        run["affinity"] = _build(Affinity, _mapping(run["affinity"], f"{where}.affinity"), f"{where}.affinity")
    if "environment" in run:
        run["environment"] = [str(name) for name in _sequence(run["environment"], f"{where}.environment")]
    return _build(RoleRun, run, where)


def load_instance_group(data: Any) -> InstanceGroup:
    group = _mapping(data, "instance_groups")
    name = group.get("name")
    if not name:
        raise ManifestError("Instance group without a name", field="name")
    where = f"instance group {name}"
    group["jobs"] = [_build(JobReference, _mapping(j, f"{where} jobs"), f"{where} jobs")
                     for j in _sequence(group.get("jobs"), f"{where} jobs")]
    group["run"] = load_run(group.get("run"), f"{where} run")
    return _build(InstanceGroup, group, where)


def load_variable(data: Any) -> ConfigurationVariable:
    cv = _mapping(data, "variables")
    # `options` holds the flags in some manifests
    cv.update(_mapping(cv.pop("options", None), "variables options"))
    if not cv.get("name"):
        raise ManifestError("Variable without a name", field="name")
    where = f"variable {cv['name']}"
    if cv.get("generator") is not None:
        cv["generator"] = _build(Generator, _mapping(cv["generator"], where), f"{where} generator")
    return _build(ConfigurationVariable, cv, where)


def load_authorization(data: Any, groups: List[InstanceGroup]) -> Authorization:
    auth = _mapping(data, "authorization")

    def rules(section: str) -> Dict[str, List[AuthRule]]:
        result = {}
        for name, items in _mapping(auth.get(section), section, False).items():
            result[name] = [_build(AuthRule, _mapping(rule, f"{section} {name}"), f"{section} {name}")
                            for rule in _sequence(items, f"{section} {name}")]
        return result

    accounts = {name: _build(AuthAccount, _mapping(acct, f"account {name}"), f"account {name}")
                for name, acct in _mapping(auth.get("accounts"), "accounts", False).items()}
    for group in groups:
        account = accounts.get(group.run.service_account)
        if account is not None and group.name not in account.used_by:
            account.used_by.append(group.name)

    return Authorization(
        roles=rules("roles"),
        cluster_roles=rules("cluster_roles"),
        accounts=accounts,
        pod_security_policies=_mapping(auth.get("pod_security_policies"), "pod_security_policies", False),
    )


def load_role_manifest_data(data: Any) -> RoleManifest:
    manifest = _mapping(data, "role manifest")
    groups = [load_instance_group(g) for g in _sequence(manifest.get("instance_groups"), "instance_groups")]
    variables = [load_variable(v) for v in _sequence(manifest.get("variables"), "variables")]
    authorization = load_authorization(manifest.get("authorization"), groups)
    logger.debug(f"Loaded {len(groups)} instance groups and {len(variables)} variables")
    return RoleManifest(instance_groups=groups, variables=variables, authorization=authorization)


def load_role_manifest(path: str) -> RoleManifest:
    """
    Loads a role manifest file.

    Raises:
        ManifestError: when the file cannot be read or parsed, or its shape
            does not match the model.
    """
    try:
        with open(path, 'r', encoding='utf-8-sig') as f:
            data = YAML(typ='safe').load(f)
    except (OSError, YAMLError) as e:
        raise ManifestError(f"Cannot read role manifest {Path(path).name}: {e}", field="manifest") from e
    return load_role_manifest_data(data)
