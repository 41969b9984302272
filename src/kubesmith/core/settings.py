#!/usr/bin/env python3
"""
KUBESMITH EXPORT SETTINGS
-------------------------
The configuration object handed to every builder. `create_chart` switches
between plain orchestrator manifests (concrete values) and chart templates
(value references, guards and conditional blocks).

Author: KubeSmith Team
Date: 2026-01-16
"""

from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError

from kubesmith.core.errors import ManifestError
from kubesmith.core.models import RoleManifest


@dataclass
class ExportSettings:
    create_chart: bool = False
    defaults: Dict[str, Any] = field(default_factory=dict)
    registry: str = ""
    organization: str = ""
    repository: str = "kubesmith"
    username: str = ""
    password: str = ""
    auth_type: str = ""
    use_memory_limits: bool = False
    use_cpu_limits: bool = False
    use_secrets_generator: bool = False
    opinions: Any = None
    tag_extra: str = ""
    version: str = ""
    external_ips: List[str] = field(default_factory=list)
    use_pods: bool = False
    chart_name: str = "kubesmith"
    chart_version: str = "0.1.0"
    role_manifest: Optional[RoleManifest] = None

    @classmethod
    def from_file(cls, path: str, **overrides) -> "ExportSettings":
        """
        Loads settings from a YAML file. Keys use the attribute names
        (dashes are accepted in place of underscores). Keyword overrides
        that are not None win over the file.
        """
        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = YAML(typ='safe').load(f) or {}
        except (OSError, YAMLError) as e:
            raise ManifestError(f"Cannot read settings file {path}: {e}", field="settings") from e
        if not isinstance(data, dict):
            raise ManifestError(f"Settings file {path} must contain a mapping", field="settings")

        known = {f.name for f in fields(cls)} - {"role_manifest"}
        values: Dict[str, Any] = {}
        for key, value in data.items():
            name = str(key).replace("-", "_")
            if name not in known:
                raise ManifestError(f"Unknown setting {key!r} in {Path(path).name}", field=str(key))
            values[name] = value
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)
