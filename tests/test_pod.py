import pytest

from kubesmith.core.errors import ManifestError
from kubesmith.core.models import (
    ConfigurationVariable, CPUSpec, ExposedPort, InstanceGroup, MemorySpec, RoleManifest,
    Scaling, Volume,
)
from kubesmith.kube.pod import (
    CONFIG_MOUNT_PATH, PRE_STOP_SCRIPT, TERMINATION_GRACE_PERIOD, get_container_image_name,
    get_container_ports, get_env_vars, get_resources, get_security_context, get_volume_mounts,
    get_volumes, new_pod, new_pod_template, set_restart_policy,
)
from kubesmith.kube.utils import ROLE_NAME_LABEL


@pytest.fixture
def variables():
    return [
        ConfigurationVariable(name="WEB_TITLE", default="Hello"),
        ConfigurationVariable(name="MAX_CONN", default=5),
        ConfigurationVariable(name="BANNER", default="a\\nb"),
        ConfigurationVariable(name="NO_DEFAULT"),
        ConfigurationVariable(name="MY_SECRET", secret=True, default="hush"),
        ConfigurationVariable(name="REQUIRED_ONE", required=True, default="x"),
        ConfigurationVariable(name="KUBE_SIZING_OTHER_ROLE_COUNT", type="environment"),
        ConfigurationVariable(name="ALWAYS", internal=True, default="on"),
        ConfigurationVariable(name="UNUSED", default="never"),
    ]


@pytest.fixture
def env_role(make_group, variables, settings, chart_settings):
    role = make_group(environment=[cv.name for cv in variables if cv.name not in ("ALWAYS", "UNUSED")])
    other = InstanceGroup(name="other-role")
    other.run.scaling = Scaling(min=3, max=5)
    manifest = RoleManifest(instance_groups=[role, other], variables=variables)
    settings.role_manifest = manifest
    chart_settings.role_manifest = manifest
    return role


def test_pod_template_plain(make_group, settings, parse):
    role = make_group(object_annotations={"team": "web"})
    template = parse(new_pod_template(role, settings))

    assert template["metadata"] == {
        "annotations": {"team": "web"},
        "labels": {ROLE_NAME_LABEL: "myrole"},
        "name": "myrole",
    }
    spec = template["spec"]
    assert spec["dnsPolicy"] == "ClusterFirst"
    assert spec["restartPolicy"] == "Always"
    assert spec["terminationGracePeriodSeconds"] == TERMINATION_GRACE_PERIOD
    assert spec["imagePullSecrets"] == [{"name": "registry-credentials"}]
    assert "serviceAccountName" not in spec

    container = spec["containers"][0]
    assert container["name"] == "myrole"
    assert container["lifecycle"] == {"preStop": {"exec": {"command": [PRE_STOP_SCRIPT]}}}
    assert container["securityContext"] == {"allowPrivilegeEscalation": False}
    assert "resources" not in container
    assert container["env"][-1] == {
        "name": "KUBERNETES_NAMESPACE",
        "valueFrom": {"fieldRef": {"fieldPath": "metadata.namespace"}},
    }


def test_service_account_is_guarded_in_charts(make_group, settings, chart_settings):
    role = make_group(service_account="web-account")
    plain = new_pod_template(role, settings).get("spec", "serviceAccountName")
    assert plain.value == "web-account"
    assert plain.block == ""

    chart = new_pod_template(role, chart_settings).get("spec", "serviceAccountName")
    assert chart.block == 'if eq .Values.kube.auth "rbac"'


def test_colocated_containers(make_group, settings):
    role = make_group()
    role.colocated_containers = ["helper", "missing"]
    helper = make_group(name="helper", type="colocated-container")
    settings.role_manifest = RoleManifest(instance_groups=[role, helper])

    containers = new_pod_template(role, settings).get("spec", "containers")
    assert [c.get("name").value for c in containers] == ["myrole", "helper"]


def test_image_name(make_group, settings, chart_settings):
    role = make_group()
    tag = role.dev_version()
    assert get_container_image_name(role, settings) == f"docker.example.com/org/test-myrole:{tag}"

    settings.registry = ""
    assert get_container_image_name(role, settings) == f"org/test-myrole:{tag}"

    assert get_container_image_name(role, chart_settings) == (
        "{{ .Values.kube.registry.hostname }}/{{ .Values.kube.organization }}/" + f"test-myrole:{tag}")


def test_dev_version_depends_on_inputs(make_group):
    role = make_group()
    assert role.dev_version() == make_group().dev_version()
    assert role.dev_version() != role.dev_version(tag_extra="x")
    assert role.dev_version() != make_group(name="other").dev_version()


def test_container_port_range(make_group, settings, parse):
    role = make_group(exposed_ports=[
        ExposedPort(name="tcp-route", internal="20000-20004"),
        ExposedPort(name="dns", internal="53", protocol="udp"),
    ])
    ports = parse(get_container_ports(role, settings))
    assert ports[:5] == [
        {"containerPort": 20000 + i, "name": f"tcp-route-{i}", "protocol": "TCP"} for i in range(5)
    ]
    assert ports[5] == {"containerPort": 53, "name": "dns", "protocol": "UDP"}


def test_container_ports_in_charts(make_group, chart_settings):
    role = make_group(exposed_ports=[
        ExposedPort(name="route", internal="20000-20009", count_configurable=True, count=3, max=10),
        ExposedPort(name="web-api", internal="8080", port_configurable=True),
    ])
    ranged, configurable = get_container_ports(role, chart_settings).values()

    assert ranged.block == "range $i := until (int .Values.sizing.myrole.ports.route.count)"
    assert ranged.get("containerPort").text == "{{ add 20000 $i }}"
    assert ranged.get("name").text == '{{ printf "route-%d" $i }}'

    assert configurable.block == ""
    assert configurable.get("containerPort").text == "{{ .Values.sizing.myrole.ports.web_api.port }}"
    assert configurable.get("name").value == "web-api"


def test_invalid_port_is_reported(make_group, settings):
    role = make_group(exposed_ports=[ExposedPort(name="bad", internal="99999")])
    with pytest.raises(ManifestError, match="Port bad has invalid internal port 99999"):
        new_pod_template(role, settings)


def test_env_vars_plain(env_role, settings, parse):
    env = parse(get_env_vars(env_role, settings))
    assert env == [
        {"name": "ALWAYS", "value": "on"},
        {"name": "BANNER", "value": "a\nb"},
        {"name": "KUBE_SIZING_OTHER_ROLE_COUNT", "value": "3"},
        {"name": "MAX_CONN", "value": "5"},
        {"name": "MY_SECRET", "valueFrom": {"secretKeyRef": {"key": "my-secret", "name": "secret"}}},
        {"name": "REQUIRED_ONE", "value": "x"},
        {"name": "WEB_TITLE", "value": "Hello"},
        {"name": "KUBERNETES_NAMESPACE", "valueFrom": {"fieldRef": {"fieldPath": "metadata.namespace"}}},
    ]


def test_env_vars_chart(env_role, chart_settings):
    env = {entry.get("name").value: entry for entry in get_env_vars(env_role, chart_settings)}

    assert env["WEB_TITLE"].get("value").text == "{{ .Values.env.WEB_TITLE | quote }}"
    assert env["REQUIRED_ONE"].get("value").text == (
        '{{ required "REQUIRED_ONE configuration missing" .Values.env.REQUIRED_ONE | quote }}')
    assert env["KUBE_SIZING_OTHER_ROLE_COUNT"].get("value").text == (
        "{{ .Values.sizing.other_role.count | quote }}")
    # Variables without a default still get a values reference
    assert "NO_DEFAULT" in env
    assert env["MY_SECRET"].get("valueFrom", "secretKeyRef", "name").value == "secret"


def test_env_secret_name_with_generator(env_role, settings, chart_settings):
    settings.use_secrets_generator = True
    chart_settings.use_secrets_generator = True
    plain = {e.get("name").value: e for e in get_env_vars(env_role, settings)}
    chart = {e.get("name").value: e for e in get_env_vars(env_role, chart_settings)}
    assert plain["MY_SECRET"].get("valueFrom", "secretKeyRef", "name").value == "secret-update"
    assert chart["MY_SECRET"].get("valueFrom", "secretKeyRef", "name").value == (
        "secret-update-{{ .Release.Revision }}")


def test_sizing_variable_for_unknown_group(make_group, settings):
    role = make_group(environment=["KUBE_SIZING_NOPE_COUNT"])
    variables = [ConfigurationVariable(name="KUBE_SIZING_NOPE_COUNT")]
    settings.role_manifest = RoleManifest(instance_groups=[role], variables=variables)
    with pytest.raises(ManifestError, match="KUBE_SIZING_NOPE_COUNT"):
        get_env_vars(role, settings)


def test_volumes_and_mounts(make_group, parse):
    role = make_group(volumes=[
        Volume(type="host", path="/var/vcap/sys/run", tag="run"),
        Volume(type="persistent", path="/var/data", tag="data", size=10),
        Volume(type="emptyDir", path="/tmp/scratch", tag="scratch"),
        Volume(type="shared", path="/var/shared", tag="shared-data", size=5),
    ])
    mounts = parse(get_volume_mounts(role))
    assert [(m["name"], m["readOnly"]) for m in mounts] == [
        ("data", False), ("shared-data", False), ("run", False), ("scratch", False),
        ("deployment-manifest", True),
    ]
    assert mounts[-1]["mountPath"] == CONFIG_MOUNT_PATH

    volumes = parse(get_volumes(role))
    assert volumes == [
        {"hostPath": {"path": "/var/vcap/sys/run", "type": "Directory"}, "name": "run"},
        {"emptyDir": {}, "name": "scratch"},
        {
            "name": "deployment-manifest",
            "secret": {
                "items": [{"key": "deployment-manifest", "path": "deployment-manifest.yml"}],
                "secretName": "deployment-manifest",
            },
        },
    ]


def test_resources_plain(make_group, settings):
    role = make_group(memory=MemorySpec(request=128, limit=256), cpu=CPUSpec(request=0.5, limit=2))
    assert get_resources(role, settings) is None

    settings.use_memory_limits = True
    settings.use_cpu_limits = True
    assert get_resources(role, settings).to_python() == {
        "limits": {"cpu": "2000m", "memory": "256Mi"},
        "requests": {"cpu": "500m", "memory": "128Mi"},
    }

    settings.use_cpu_limits = False
    assert get_resources(role, settings).to_python() == {
        "limits": {"memory": "256Mi"},
        "requests": {"memory": "128Mi"},
    }


def test_resources_chart(make_group, chart_settings):
    resources = get_resources(make_group(name="my-role"), chart_settings)
    memory = resources.get("requests", "memory")
    assert memory.text == '"{{ int .Values.sizing.my_role.memory.request }}Mi"'
    assert memory.block == "if and .Values.config.memory.requests .Values.sizing.my_role.memory.request"
    cpu = resources.get("limits", "cpu")
    assert cpu.block == "if and .Values.config.cpu.limits .Values.sizing.my_role.cpu.limit"


def test_security_context(make_group, settings, chart_settings, parse):
    privileged = make_group(capabilities=["all"])
    assert parse(get_security_context(privileged, settings)) == {"privileged": True}

    role = make_group(capabilities=["net_admin", "SYS_TIME"])
    assert parse(get_security_context(role, settings)) == {
        "allowPrivilegeEscalation": False,
        "capabilities": {"add": ["NET_ADMIN", "SYS_TIME"]},
    }

    chart_caps = get_security_context(make_group(), chart_settings).get("capabilities", "add").values()
    assert len(chart_caps) == 1
    assert chart_caps[0].text == "{{ . | upper }}"
    assert chart_caps[0].block == "range .Values.sizing.myrole.capabilities"


@pytest.mark.parametrize("stage, policy", [
    ("manual", "Never"),
    ("flight", "OnFailure"),
    ("pre-flight", "OnFailure"),
    ("post-flight", "OnFailure"),
])
def test_restart_policy(make_group, settings, stage, policy):
    role = make_group(flight_stage=stage)
    template = new_pod_template(role, settings)
    set_restart_policy(role, template)
    assert template.get("spec", "restartPolicy").value == policy


def test_unknown_flight_stage(make_group, settings):
    role = make_group(flight_stage="mid-flight")
    with pytest.raises(ManifestError, match="Instance group myrole has unexpected flight stage mid-flight"):
        set_restart_policy(role, new_pod_template(role, settings))


def test_bare_pod(make_group, settings, chart_settings, parse):
    role = make_group(type="bosh-task", flight_stage="manual")
    pod = parse(new_pod(role, settings))
    assert pod["apiVersion"] == "v1"
    assert pod["kind"] == "Pod"
    assert pod["metadata"]["name"] == "myrole"
    assert pod["spec"]["restartPolicy"] == "Never"

    chart_pod = new_pod(role, chart_settings)
    assert chart_pod.get("metadata", "name").value == "myrole-{{ .Release.Revision }}"
