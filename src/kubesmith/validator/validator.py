#!/usr/bin/env python3
"""
KUBESMITH VALIDATOR - Plain Output Self Check
---------------------------------------------
The last gate before plain manifests are written. The engine re-parses
every emitted document and hands it here; a document the orchestrator
would reject is reported instead of written.

Chart templates are not checked: they only become YAML objects once the
template engine has rendered them.

Author: KubeSmith Team
Date: 2026-01-16
"""

import logging
from typing import Any, Dict, List, Tuple

logger = logging.getLogger("kubesmith.validator")

MAX_NAME_LENGTH = 253
MAX_PORT_NAME_LENGTH = 15


class ManifestValidator:
    """
    Structural checks on parsed plain-mode documents.
    """

    # Top-level fields every object carries (lists only need items)
    required_fields = ["apiVersion", "kind", "metadata"]

    def validate(self, doc: Any) -> Tuple[bool, str]:
        """
        Checks one parsed document. Returns (ok, message); the message names
        the failing field path.
        """
        if not isinstance(doc, dict):
            return False, "Document is not a mapping."

        if doc.get("kind") == "List":
            items = doc.get("items")
            if not isinstance(items, list) or not items:
                return False, "Field 'items' of a List must be a non-empty sequence."
            for index, item in enumerate(items):
                valid, err = self.validate(item)
                if not valid:
                    return False, f"items[{index}]: {err}"
            return True, "List passes structural check."

        for field in self.required_fields:
            if field not in doc:
                return False, f"Missing required top-level field '{field}'."

        valid, err = self._check_metadata(doc["metadata"])
        if not valid:
            return False, err

        checker = getattr(self, f"_check_{str(doc['kind']).lower()}", None)
        if checker is None:
            return True, f"Kind '{doc['kind']}' passes basic validation."
        return checker(doc)

    def _check_metadata(self, meta: Any) -> Tuple[bool, str]:
        if not isinstance(meta, dict):
            return False, "Field 'metadata' must be a map."
        name = meta.get("name")
        if not isinstance(name, str) or not name:
            return False, "Field 'metadata.name' must be a non-empty string."
        if len(name) > MAX_NAME_LENGTH:
            return False, f"Field 'metadata.name' is longer than {MAX_NAME_LENGTH} characters."
        for key, value in (meta.get("labels") or {}).items():
            if not isinstance(value, str):
                return False, f"Label '{key}' must be a string."
        return True, ""

    def _check_pod_spec(self, spec: Any, path: str) -> Tuple[bool, str]:
        if not isinstance(spec, dict):
            return False, f"Field '{path}' must be a map."
        containers = spec.get("containers")
        if not isinstance(containers, list) or not containers:
            return False, f"Field '{path}.containers' must be a non-empty sequence."
        for index, container in enumerate(containers):
            where = f"{path}.containers[{index}]"
            for port in container.get("ports") or []:
                name = port.get("name", "")
                if len(name) > MAX_PORT_NAME_LENGTH:
                    return False, f"Port name '{name}' in '{where}' is longer than {MAX_PORT_NAME_LENGTH}."
                number = port.get("containerPort")
                if not isinstance(number, int) or not 0 < number <= 65535:
                    return False, f"Port '{name}' in '{where}' has invalid containerPort {number!r}."
            for env in container.get("env") or []:
                if "value" in env and not isinstance(env["value"], str):
                    return False, f"Variable '{env.get('name')}' in '{where}' must have a string value."
        return True, ""

    def _check_controller(self, doc: Dict[str, Any]) -> Tuple[bool, str]:
        spec = doc.get("spec")
        if not isinstance(spec, dict):
            return False, "Field 'spec' must be a map."
        replicas = spec.get("replicas")
        if not isinstance(replicas, int) or replicas < 0:
            return False, f"Field 'spec.replicas' must be a non-negative integer, got {replicas!r}."

        template = spec.get("template") or {}
        selector = ((spec.get("selector") or {}).get("matchLabels")) or {}
        labels = ((template.get("metadata") or {}).get("labels")) or {}
        for key, value in selector.items():
            if labels.get(key) != value:
                return False, f"Selector label '{key}' does not match the pod template labels."
        valid, err = self._check_pod_spec(template.get("spec"), "spec.template.spec")
        if not valid:
            return False, err
        return True, f"{doc['kind']} passes structural check."

    _check_deployment = _check_controller
    _check_statefulset = _check_controller

    def _check_job(self, doc: Dict[str, Any]) -> Tuple[bool, str]:
        template = (doc.get("spec") or {}).get("template") or {}
        pod_spec = template.get("spec") or {}
        if pod_spec.get("restartPolicy") not in ("Never", "OnFailure"):
            return False, "Jobs need restartPolicy Never or OnFailure."
        valid, err = self._check_pod_spec(pod_spec, "spec.template.spec")
        if not valid:
            return False, err
        return True, "Job passes structural check."

    def _check_pod(self, doc: Dict[str, Any]) -> Tuple[bool, str]:
        valid, err = self._check_pod_spec(doc.get("spec"), "spec")
        if not valid:
            return False, err
        return True, "Pod passes structural check."

    def _check_service(self, doc: Dict[str, Any]) -> Tuple[bool, str]:
        ports: List[Any] = (doc.get("spec") or {}).get("ports") or []
        if not ports:
            return False, "Services need at least one port."
        return True, "Service passes structural check."

    def _check_secret(self, doc: Dict[str, Any]) -> Tuple[bool, str]:
        for key, value in (doc.get("data") or {}).items():
            if not isinstance(value, str):
                return False, f"Secret data '{key}' must be a string."
        return True, "Secret passes structural check."
