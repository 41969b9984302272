import pytest

from kubesmith.core.errors import ManifestError
from kubesmith.core.models import AuthAccount, AuthRule, Authorization
from kubesmith.kube.rbac import (
    RBAC_API_GROUP, RBAC_API_VERSION, new_rbac_account, new_rbac_psp, new_rbac_role,
)

PSP_RULE = AuthRule(api_groups=["policy"], resources=["podsecuritypolicies"],
                    verbs=["use"], resource_names=["restricted"])


def cluster_authorization():
    return Authorization(
        cluster_roles={"admin": [AuthRule(api_groups=["*"], resources=["*"], verbs=["*"])]},
        accounts={"ops": AuthAccount(cluster_roles=["admin"], used_by=["ops-group"])},
    )


def test_unknown_account(manifest, settings):
    with pytest.raises(ManifestError) as err:
        new_rbac_account("nope", manifest.authorization, settings)
    assert str(err.value) == "Account nope not found"


def test_unused_account(settings):
    authorization = Authorization(accounts={"idle": AuthAccount(roles=["reader"])})
    assert new_rbac_account("idle", authorization, settings) == []


def test_plain_account(manifest, settings, parse):
    resources = new_rbac_account("web-account", manifest.authorization, settings)
    docs = [parse(resource) for resource in resources]

    assert [doc["kind"] for doc in docs] == ["ServiceAccount", "Role", "RoleBinding"]
    assert resources[0].comment == (
        'Service account "web-account" is used by the following instance groups:\n- myrole')
    assert docs[0] == {"apiVersion": "v1", "kind": "ServiceAccount", "metadata": {"name": "web-account"}}

    assert resources[1].comment == 'Role "configgin" only used by account "web-account"'
    assert docs[1] == {
        "apiVersion": RBAC_API_VERSION,
        "kind": "Role",
        "metadata": {"name": "configgin"},
        "rules": [{"apiGroups": [""], "resources": ["pods"], "verbs": ["get", "list"]}],
    }
    assert docs[2] == {
        "apiVersion": RBAC_API_VERSION,
        "kind": "RoleBinding",
        "metadata": {"name": "web-account-configgin-binding"},
        "subjects": [{"kind": "ServiceAccount", "name": "web-account"}],
        "roleRef": {"apiGroup": RBAC_API_GROUP, "kind": "Role", "name": "configgin"},
    }


def test_plain_cluster_role_binding(settings, parse):
    docs = [parse(r) for r in new_rbac_account("ops", cluster_authorization(), settings)]
    assert [doc["kind"] for doc in docs] == ["ServiceAccount", "ClusterRole", "ClusterRoleBinding"]

    binding = docs[2]
    assert binding["metadata"]["name"] == "ops-admin-cluster-binding"
    assert binding["subjects"] == [{"kind": "ServiceAccount", "name": "ops", "namespace": None}]
    assert binding["roleRef"] == {"apiGroup": RBAC_API_GROUP, "kind": "ClusterRole", "name": "admin"}


def test_default_account_has_no_service_account(settings):
    authorization = Authorization(
        roles={"reader": [AuthRule(api_groups=[""], resources=["pods"], verbs=["get"])]},
        accounts={"default": AuthAccount(roles=["reader"], used_by=["myrole"])},
    )
    kinds = [r.get("kind").value for r in new_rbac_account("default", authorization, settings)]
    assert kinds == ["Role", "RoleBinding"]


def test_shared_role_is_not_embedded(settings):
    authorization = Authorization(
        roles={"shared": [AuthRule(api_groups=[""], resources=["pods"], verbs=["get"])]},
        accounts={
            "first": AuthAccount(roles=["shared"], used_by=["a"]),
            "second": AuthAccount(roles=["shared"], used_by=["b"]),
        },
    )
    kinds = [r.get("kind").value for r in new_rbac_account("first", authorization, settings)]
    assert kinds == ["ServiceAccount", "RoleBinding"]


def test_chart_account(chart_settings):
    resources = new_rbac_account("ops", cluster_authorization(), chart_settings)
    assert all(r.block == 'if eq .Values.kube.auth "rbac"' for r in resources)

    cluster_role, binding = resources[1], resources[2]
    sanitized = '{{ template "kubesmith.SanitizeName" (printf "%s-cluster-role-admin" .Release.Namespace) }}'
    assert cluster_role.get("metadata", "name").value == sanitized
    assert binding.get("roleRef", "name").value == sanitized
    assert binding.get("metadata", "name").value == (
        '{{ template "kubesmith.SanitizeName" '
        '(printf "%s-ops-admin-cluster-binding" .Release.Namespace) }}')
    assert binding.get("subjects")[0].get("namespace").text == "{{ .Release.Namespace }}"


def test_psp_resource_names(settings, chart_settings, parse):
    plain = parse(new_rbac_role("psp-user", "Role", [PSP_RULE], settings))
    assert plain["rules"][0]["resourceNames"] == ["restricted"]

    chart = new_rbac_role("psp-user", "Role", [PSP_RULE], chart_settings)
    name = chart.get("rules")[0].get("resourceNames")[0]
    assert name.value == (
        "{{ if .Values.kube.psp.restricted }}{{ .Values.kube.psp.restricted }}{{ else }}"
        '{{ template "kubesmith.SanitizeName" (printf "%s-psp-restricted" .Release.Namespace) }}'
        "{{ end }}")


def test_other_rules_keep_resource_names(chart_settings):
    rule = AuthRule(api_groups=[""], resources=["configmaps"], verbs=["get"], resource_names=["cfg"])
    role = new_rbac_role("reader", "Role", [rule], chart_settings)
    assert role.get("rules")[0].get("resourceNames")[0].value == "cfg"


def test_pod_security_policy(settings, chart_settings, parse):
    definition = {"privileged": False, "runAsUser": {"rule": "RunAsAny"}}
    doc = parse(new_rbac_psp("restricted", definition, settings))
    assert doc == {
        "apiVersion": "policy/v1beta1",
        "kind": "PodSecurityPolicy",
        "metadata": {"name": "restricted"},
        "spec": definition,
    }

    chart = new_rbac_psp("restricted", definition, chart_settings)
    assert chart.block == 'if and (eq .Values.kube.auth "rbac") (not .Values.kube.psp.restricted)'
    assert chart.get("metadata", "name").value == (
        '{{ template "kubesmith.SanitizeName" (printf "%s-psp-restricted" .Release.Namespace) }}')
    assert parse(new_rbac_psp("empty", None, settings))["spec"] == {}
