import pytest

from kubesmith.core.errors import ManifestError
from kubesmith.core.loader import load_role_manifest, load_role_manifest_data
from kubesmith.core.models import TYPE_BOSH, TYPE_COLOCATED, FLIGHT, PRE_FLIGHT


def test_dashed_keys_and_aliases(manifest):
    myrole = manifest.lookup_instance_group("myrole")
    assert myrole.type == TYPE_BOSH
    assert myrole.colocated_containers == ["sidecar"]
    assert myrole.run.service_account == "web-account"
    assert myrole.run.environment == ["WEB_TITLE", "KUBE_SIZING_DATA_STORE_COUNT"]
    assert myrole.run.health_check.readiness.url == "http://container-ip:8080/health"
    assert myrole.run.health_check.liveness is None
    assert myrole.run.flight_stage == FLIGHT

    data_store = manifest.lookup_instance_group("data-store")
    assert data_store.run.scaling.must_be_odd is True
    assert data_store.run.volumes[0].size == 20

    assert manifest.lookup_instance_group("setup").run.flight_stage == PRE_FLIGHT
    assert manifest.lookup_instance_group("sidecar").type == TYPE_COLOCATED
    assert manifest.lookup_instance_group("missing") is None


def test_scaling_and_port_defaults(manifest):
    myrole = manifest.lookup_instance_group("myrole")
    assert myrole.run.scaling.ha == 2
    # ha defaults to min
    assert manifest.lookup_instance_group("data-store").run.scaling.ha == 1

    http, metrics = myrole.run.exposed_ports
    assert (http.internal, http.external, http.public) == ("8080", "80", True)
    assert (metrics.internal, metrics.external, metrics.public) == ("9100", "9100", False)
    assert metrics.protocol == "TCP"


def test_resources(manifest, manifest_data):
    myrole = manifest.lookup_instance_group("myrole")
    assert (myrole.run.memory.request, myrole.run.memory.limit) == (128, 256)
    assert (myrole.run.cpu.request, myrole.run.cpu.limit) == (0.5, 1)

    # a bare number is the request
    manifest_data["instance_groups"][0]["run"]["memory"] = 512
    memory = load_role_manifest_data(manifest_data).instance_groups[0].run.memory
    assert (memory.request, memory.limit) == (512, None)


def test_variable_options_are_merged(manifest):
    variables = manifest.variable_map()
    api_key = variables["API_KEY"]
    assert (api_key.secret, api_key.required, api_key.internal) == (True, True, True)
    assert variables["DB_PASSWORD"].generator.type == "password"
    assert variables["WEB_TITLE"].secret is False
    assert variables["KUBE_SIZING_DATA_STORE_COUNT"].type == "environment"


def test_variables_for_group(manifest):
    myrole = manifest.lookup_instance_group("myrole")
    names = [cv.name for cv in manifest.variables_for(myrole)]
    assert names == ["API_KEY", "DB_PASSWORD", "KUBE_SIZING_DATA_STORE_COUNT", "WEB_TITLE"]

    setup = manifest.lookup_instance_group("setup")
    assert [cv.name for cv in manifest.variables_for(setup)] == ["API_KEY", "DB_PASSWORD"]


def test_authorization(manifest):
    auth = manifest.authorization
    # user chosen names keep their dashes
    assert list(auth.accounts) == ["web-account"]
    account = auth.accounts["web-account"]
    assert account.roles == ["configgin"]
    assert account.used_by == ["myrole"]

    rule = auth.roles["configgin"][0]
    assert (rule.api_groups, rule.resources, rule.verbs) == ([""], ["pods"], ["get", "list"])
    assert auth.role_used_by("configgin") == ["web-account"]


def test_unknown_keys_are_rejected(manifest_data):
    manifest_data["instance_groups"][0]["run"]["bogus"] = 1
    with pytest.raises(ManifestError) as err:
        load_role_manifest_data(manifest_data)
    assert str(err.value) == "instance group myrole run has unknown keys: bogus"


@pytest.mark.parametrize("data, message", [
    ([], "role manifest must be a mapping, got list"),
    ({"instance_groups": {"name": "x"}}, "instance_groups must be a list, got dict"),
    ({"instance_groups": [{"jobs": []}]}, "Instance group without a name"),
    ({"variables": [{"default": 1}]}, "Variable without a name"),
])
def test_malformed_manifests(data, message):
    with pytest.raises(ManifestError) as err:
        load_role_manifest_data(data)
    assert str(err.value) == message


def test_load_from_file(manifest_file):
    manifest = load_role_manifest(str(manifest_file))
    assert [g.name for g in manifest.instance_groups] == ["myrole", "data-store", "setup", "debug", "sidecar"]


def test_load_errors(tmp_path):
    with pytest.raises(ManifestError, match="Cannot read role manifest missing.yml"):
        load_role_manifest(str(tmp_path / "missing.yml"))

    broken = tmp_path / "broken.yml"
    broken.write_text("instance_groups: [unclosed\n", encoding="utf-8")
    with pytest.raises(ManifestError, match="Cannot read role manifest broken.yml"):
        load_role_manifest(str(broken))
