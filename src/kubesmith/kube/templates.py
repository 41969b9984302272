#!/usr/bin/env python3
"""
KUBESMITH TEMPLATE HELPERS
--------------------------
Named templates shipped in the chart's _helpers.tpl and referenced from
the generated resources.

Author: KubeSmith Team
Date: 2026-01-16
"""

import re
from typing import List

from kubesmith.document.tree import Node, Scalar

SANITIZE_NAME = "kubesmith.SanitizeName"

_SANITIZE_NAME_HELPER = """
    {{ define "%s" }}
        {{ if lt (len .) 1 }}{{ fail "No name given for node" }}{{ end }}
        {{ if gt (len .) 63 }}
            {{ . | trunc 54 }}-{{ . | sha256sum | trunc 8 }}
        {{ else }}
            {{ . }}
        {{ end }}
    {{ end }}""" % SANITIZE_NAME

# Whitespace between actions (or at either end) is dropped so the helper
# expands to the bare name.
_BETWEEN_ACTIONS = re.compile(r"(^|\}\})\s+(\{\{|$)")


def sanitize_name(expression: str) -> str:
    """Wraps a template expression producing a name in the sanitizer."""
    return '{{ template "%s" %s }}' % (SANITIZE_NAME, expression)


def template_helpers() -> List[Node]:
    """The helper definitions, one node each."""
    helper = _BETWEEN_ACTIONS.sub(r"\1\2", _SANITIZE_NAME_HELPER)
    comment = (f"{SANITIZE_NAME} returns the given parameter, up to 63 characters long.\n"
               f'This should be called as {{{{ template "{SANITIZE_NAME}" "foo" }}}}')
    return [Scalar(helper, comment=comment)]
