#!/usr/bin/env python3
"""
KUBESMITH ENGINE - The Export Orchestrator
------------------------------------------
The ExportEngine turns a role manifest into orchestrator documents: it
runs every builder, keeps failures local to the resource that caused
them, self-checks plain output and writes one file per resource
atomically.

Author: KubeSmith Team
Date: 2026-01-16
"""

import io
import logging
import os
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError

from kubesmith.core.errors import ManifestError
from kubesmith.core.models import (
    MANUAL, TAG_ACTIVE_PASSIVE, TAG_SEQUENTIAL_STARTUP, VOLUME_PERSISTENT, VOLUME_SHARED,
    InstanceGroup, RoleManifest,
)
from kubesmith.core.settings import ExportSettings
from kubesmith.document.encoder import ChartEncoder
from kubesmith.document.tree import Mapping, Node
from kubesmith.kube.deployment import new_deployment
from kubesmith.kube.job import new_job
from kubesmith.kube.pod import new_pod
from kubesmith.kube.rbac import CLUSTER_ROLE_KIND, ROLE_KIND, new_rbac_account, new_rbac_psp, new_rbac_role
from kubesmith.kube.registry_credentials import make_registry_credentials
from kubesmith.kube.secret import make_deployment_manifest_secret, make_secrets
from kubesmith.kube.stateful_set import new_stateful_set
from kubesmith.kube.templates import template_helpers
from kubesmith.kube.values import make_values
from kubesmith.validator.validator import ManifestValidator

logger = logging.getLogger("kubesmith.engine")


@dataclass
class BuildResult:
    """
    The outcome of building one resource. Either `documents` holds the
    built trees or `diagnostic` explains why the resource was not built.
    """
    name: str
    kind: str
    documents: List[Node] = field(default_factory=list)
    diagnostic: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.diagnostic is None


class ExportEngine:
    """
    Coordinates the builders for one role manifest.

    Args:
        manifest: the loaded role manifest.
        settings: export settings; `settings.role_manifest` is set to `manifest`.
        output_dir: where export() writes files.
    """

    def __init__(self, manifest: RoleManifest, settings: ExportSettings,
                 output_dir: Optional[str] = None, indent: int = 2, wrap: int = 80):
        self.manifest = manifest
        self.settings = settings
        self.settings.role_manifest = manifest
        self.output_dir = Path(output_dir).resolve() if output_dir else None
        self.indent = indent
        self.wrap = wrap
        self.validator = ManifestValidator()

    # ------------------------------------------------------------------
    # Building
    # ------------------------------------------------------------------

    def build(self) -> List[BuildResult]:
        """
        Builds every resource. Validation errors become diagnostics on the
        result of the failing resource; the others are still built.
        """
        results: List[BuildResult] = []
        chart = self.settings.create_chart

        if chart:
            results.append(self._run("helpers", "helpers", template_helpers))
        results.append(self._run("secret", "secret", lambda: [make_secrets(self.manifest.variables, self.settings)]))
        results.append(self._run("registry-credentials", "secret",
                                 lambda: [make_registry_credentials(self.settings)]))
        results.append(self._run("deployment-manifest", "secret",
                                 lambda: [make_deployment_manifest_secret(self.settings)]))
        if chart:
            results.append(self._run("values", "values", lambda: [make_values(self.settings)]))
            results.append(self._run("chart", "chart", lambda: [self._chart_metadata()]))

        if chart or self.settings.auth_type == "rbac":
            results.extend(self._build_rbac())

        for group in self.manifest.instance_groups:
            if group.is_colocated():
                logger.debug(f"Skipping colocated container group {group.name}")
                continue
            if chart and group.run.flight_stage == MANUAL:
                # Charts cannot start a group on demand
                logger.debug(f"Skipping manual group {group.name} in chart")
                continue
            kind = self.controller_kind(group)
            results.append(self._run(group.name, kind, lambda g=group, k=kind: self._build_group(g, k)))

        # Accounts nobody uses produce nothing
        results = [result for result in results if not result.ok or result.documents]
        if not chart:
            for result in results:
                self._self_check(result)
        return results

    def controller_kind(self, group: InstanceGroup) -> str:
        """Which controller runs the group: job/pod for tasks, statefulset when it keeps state."""
        if group.is_task():
            return "pod" if self.settings.use_pods else "job"
        if (group.volumes_of(VOLUME_PERSISTENT, VOLUME_SHARED)
                or group.has_tag(TAG_SEQUENTIAL_STARTUP)
                or group.has_tag(TAG_ACTIVE_PASSIVE)):
            return "statefulset"
        return "deployment"

    def _build_group(self, group: InstanceGroup, kind: str) -> List[Node]:
        if kind == "job":
            return [new_job(group, self.settings)]
        if kind == "pod":
            return [new_pod(group, self.settings)]
        builder = new_stateful_set if kind == "statefulset" else new_deployment
        controller, services = builder(group, self.settings)
        return [doc for doc in (controller, services) if doc is not None]

    def _build_rbac(self) -> List[BuildResult]:
        auth = self.manifest.authorization
        results = []
        for name in sorted(auth.accounts):
            results.append(self._run(name, "rbac", lambda n=name: new_rbac_account(n, auth, self.settings)))

        # Roles bound by several accounts are emitted once, on their own
        for name in sorted(auth.roles):
            if len(auth.role_used_by(name)) > 1:
                results.append(self._run(f"role-{name}", "rbac", lambda n=name: [
                    new_rbac_role(n, ROLE_KIND, auth.roles[n], self.settings)]))
        for name in sorted(auth.cluster_roles):
            if len(auth.cluster_role_used_by(name)) > 1:
                results.append(self._run(f"cluster-role-{name}", "rbac", lambda n=name: [
                    new_rbac_role(n, CLUSTER_ROLE_KIND, auth.cluster_roles[n], self.settings)]))
        for name in sorted(auth.pod_security_policies):
            results.append(self._run(f"psp-{name}", "rbac", lambda n=name: [
                new_rbac_psp(n, auth.pod_security_policies[n], self.settings)]))
        return results

    def _chart_metadata(self) -> Mapping:
        return Mapping([
            ("apiVersion", "v1"),
            ("description", "A Helm chart generated by kubesmith"),
            ("name", self.settings.chart_name),
            ("version", self.settings.chart_version),
        ])

    def _run(self, name: str, kind: str, builder: Callable[[], List[Node]]) -> BuildResult:
        try:
            documents = builder()
        except ManifestError as e:
            logger.error(f"Failed to build {kind} {name}: {e}")
            return BuildResult(name, kind, diagnostic=str(e))
        return BuildResult(name, kind, documents=list(documents))

    def _self_check(self, result: BuildResult) -> None:
        """Re-parses plain output and validates every document."""
        if not result.ok or not result.documents:
            return
        try:
            parsed = list(YAML(typ='safe').load_all(self.render(result)))
        except YAMLError as e:
            result.diagnostic = f"Emitted YAML does not parse: {e}"
            return
        for doc in parsed:
            if doc is None:
                continue
            valid, err = self.validator.validate(doc)
            if not valid:
                result.diagnostic = err
                logger.error(f"Validation failed for {result.kind} {result.name}: {err}")
                return

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------

    def render(self, result: BuildResult) -> str:
        stream = io.StringIO()
        encoder = ChartEncoder(stream, indent=self.indent, wrap=self.wrap)
        for document in result.documents:
            encoder.encode(document)
        return stream.getvalue()

    def relative_path(self, result: BuildResult) -> Path:
        """Where a result is written, relative to the output directory."""
        if result.kind == "values":
            return Path("values.yaml")
        if result.kind == "chart":
            return Path("Chart.yaml")
        if result.kind == "helpers":
            return Path("templates") / "_helpers.tpl"
        path = Path(result.kind) / f"{result.name}.yaml"
        return Path("templates") / path if self.settings.create_chart else path

    def export(self, dry_run: bool = False,
               progress_callback: Optional[Callable[[int, int], None]] = None) -> List[Dict[str, Any]]:
        """
        Builds and writes every resource. Returns one report per resource
        with its status (GENERATED, UNCHANGED, PREVIEW, FAILED or
        ENGINE_ERROR).
        """
        if self.output_dir is None and not dry_run:
            raise ValueError("An output directory is required unless running dry")

        results = self.build()
        reports = []
        for index, result in enumerate(results, start=1):
            reports.append(self._export_result(result, dry_run))
            if progress_callback:
                progress_callback(index, len(results))
        return reports

    def _export_result(self, result: BuildResult, dry_run: bool) -> Dict[str, Any]:
        rel_path = self.relative_path(result)
        if not result.ok:
            return self._file_error(rel_path, result, "FAILED", result.diagnostic)

        content = self.render(result)
        previous = ""
        target = self.output_dir / rel_path if self.output_dir else None
        if target is not None and target.exists():
            previous = target.read_text(encoding='utf-8')
        is_modified = previous != content

        report = {
            "file_path": str(rel_path),
            "name": result.name,
            "kind": result.kind,
            "status": self._derive_status(is_modified, dry_run),
            "success": True,
            "written": False,
            "content": content,
            "previous": previous,
            "timestamp": time.time(),
        }
        if dry_run or not is_modified:
            return report

        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            self._atomic_write(target, content)
        except IOError as e:
            logger.error(f"Error writing {rel_path}: {e}")
            return self._file_error(rel_path, result, "ENGINE_ERROR", str(e))
        logger.info(f"Wrote {rel_path}")
        report["written"] = True
        return report

    def generate_summary(self, reports: List[Dict[str, Any]]) -> Dict[str, Any]:
        if not reports:
            return {"total_resources": 0, "success_rate": 0, "successful": 0,
                    "failed": 0, "written_to_disk": 0, "system_errors": 0}

        total = len(reports)
        successful = sum(1 for r in reports if r.get("success", False))
        return {
            "total_resources": total,
            "success_rate": successful / total,
            "successful": successful,
            "failed": sum(1 for r in reports if r.get("status") == "FAILED"),
            "written_to_disk": sum(1 for r in reports if r.get("written", False)),
            "system_errors": sum(1 for r in reports if r.get("status") == "ENGINE_ERROR"),
            "summary_timestamp": time.strftime("%Y-%m-%d %H:%M:%S"),
        }

    def _derive_status(self, modified: bool, dry: bool) -> str:
        if not modified:
            return "UNCHANGED"
        return "PREVIEW" if dry else "GENERATED"

    def _atomic_write(self, target_path: Path, content: str):
        if not os.access(target_path.parent, os.W_OK):
            raise PermissionError(f"No write access to {target_path.parent}")
        temp_file = target_path.with_suffix(".kubesmith.tmp")
        try:
            temp_file.write_text(content, encoding='utf-8')
            os.replace(temp_file, target_path)
        except OSError as e:
            if temp_file.exists():
                temp_file.unlink()
            raise IOError(f"Atomic write failed: {e}") from e

    def _file_error(self, path: Path, result: BuildResult, status: str, error: str) -> Dict[str, Any]:
        return {
            "file_path": str(path), "name": result.name, "kind": result.kind,
            "status": status, "error": error, "success": False, "written": False,
        }
