#!/usr/bin/env python3
"""
KUBESMITH ERRORS
----------------
Two kinds of failure leave the builders:

* ManifestError: the role manifest asks for something the exporter cannot
  express (bad port range, unsupported probe URL, forbidden affinity...).
  These are expected and are reported per resource by the engine.
* StructureError: a builder misused the document tree (duplicate key,
  node inserted twice). This is a defect and is never swallowed.

Author: KubeSmith Team
Date: 2026-01-16
"""

from typing import Optional


class ManifestError(ValueError):
    """
    A validation diagnostic naming the offending instance group and field.
    str(err) is the full human readable message.
    """

    def __init__(self, message: str, role: Optional[str] = None, field: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.role = role
        self.field = field

    def __str__(self) -> str:
        return self.message


class StructureError(KeyError):
    """Raised when the document tree is mutated in an illegal way."""

    def __str__(self) -> str:
        # KeyError quotes its argument; keep the message readable
        return str(self.args[0]) if self.args else ""
