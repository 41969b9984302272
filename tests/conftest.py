import copy

import pytest
from ruamel.yaml import YAML

from kubesmith.core.loader import load_role_manifest_data
from kubesmith.core.models import InstanceGroup, JobReference, RoleManifest, RoleRun
from kubesmith.core.settings import ExportSettings
from kubesmith.document.encoder import render

# A small but complete role manifest: a deployment with a colocated
# sidecar, a stateful set, two tasks and one RBAC account.
MANIFEST_DATA = {
    "instance_groups": [
        {
            "name": "myrole",
            "description": "The web tier",
            "jobs": [
                {"name": "web-server", "release": "core", "description": "Serves HTTP"},
                {"name": "logger", "release": "core"},
            ],
            "colocated-containers": ["sidecar"],
            "run": {
                "scaling": {"min": 1, "max": 3, "ha": 2},
                "memory": {"request": 128, "limit": 256},
                "cpu": {"request": 0.5, "limit": 1},
                "exposed-ports": [
                    {"name": "http", "internal": 8080, "external": 80, "public": True},
                    {"name": "metrics", "internal": 9100},
                ],
                "service-account": "web-account",
                "env": ["WEB_TITLE", "KUBE_SIZING_DATA_STORE_COUNT"],
                "healthcheck": {"readiness": {"url": "http://container-ip:8080/health"}},
            },
        },
        {
            "name": "data-store",
            "tags": ["sequential-startup"],
            "jobs": [{"name": "postgres", "release": "db"}],
            "run": {
                "scaling": {"min": 1, "max": 3, "must-be-odd": True},
                "volumes": [{"type": "persistent", "path": "/var/data", "tag": "data", "size": 20}],
                "exposed-ports": [{"name": "db", "internal": 5432}],
            },
        },
        {"name": "setup", "type": "bosh-task", "run": {"flight-stage": "pre-flight"}},
        {"name": "debug", "type": "bosh-task", "run": {"flight-stage": "manual"}},
        {"name": "sidecar", "type": "colocated-container"},
    ],
    "variables": [
        {"name": "WEB_TITLE", "default": "Hello", "description": "Page title"},
        {"name": "DB_PASSWORD", "description": "Database password",
         "options": {"secret": True, "internal": True}, "generator": {"type": "password"}},
        {"name": "API_KEY", "default": "s3cr3t",
         "options": {"secret": True, "required": True, "internal": True}},
        {"name": "KUBE_SIZING_DATA_STORE_COUNT", "type": "environment"},
    ],
    "authorization": {
        "roles": {
            "configgin": [{"apiGroups": [""], "resources": ["pods"], "verbs": ["get", "list"]}],
        },
        "accounts": {"web-account": {"roles": ["configgin"]}},
    },
}


@pytest.fixture
def manifest_data():
    return copy.deepcopy(MANIFEST_DATA)


@pytest.fixture
def manifest(manifest_data) -> RoleManifest:
    return load_role_manifest_data(manifest_data)


@pytest.fixture
def manifest_file(tmp_path, manifest_data):
    path = tmp_path / "role-manifest.yml"
    with open(path, "w", encoding="utf-8") as f:
        YAML(typ='safe').dump(manifest_data, f)
    return path


@pytest.fixture
def settings() -> ExportSettings:
    return ExportSettings(registry="docker.example.com", organization="org", repository="test")


@pytest.fixture
def chart_settings() -> ExportSettings:
    return ExportSettings(create_chart=True, repository="test")


@pytest.fixture
def make_group():
    """Factory for instance groups; keyword arguments go to RoleRun."""
    def _make(name="myrole", type="bosh", tags=None, **run):
        return InstanceGroup(
            name=name,
            type=type,
            jobs=[JobReference(name="job", release="rel")],
            run=RoleRun(**run),
            tags=tags or [],
        )
    return _make


@pytest.fixture
def parse():
    """Emits a node and reads it back as plain data."""
    def _parse(node):
        return YAML(typ='safe').load(render(node))
    return _parse
