#!/usr/bin/env python3
"""
KUBESMITH ENCODER - Template-Safe YAML Writer
---------------------------------------------
Serializes a document tree into YAML text that stays valid both before and
after a template engine expands it. Output is a pure function of the tree.

    # A comment
    {{- if .Values.enabled }}
    Answer: 42
    {{- end }}

Block actions use the `{{-` form so that the engine eats the line break in
front of them; a disabled block leaves no trace in the rendered document.

Author: KubeSmith Team
Date: 2026-01-16
"""

import io
import re
from typing import List, Optional, TextIO

from kubesmith.document.tree import ListNode, Mapping, Node, Scalar, quote

# Whitespace runs containing a line break
_LINE_BREAK = re.compile(r"\s*\n\s*")

_PLAIN_KEY = re.compile(r"[A-Za-z_./][A-Za-z0-9_./-]*\Z")
# Plain keys YAML 1.1 would read as something other than a string
_TYPED_KEY = re.compile(
    r"(y|Y|yes|Yes|YES|n|N|no|No|NO|true|True|TRUE|false|False|FALSE"
    r"|on|On|ON|off|Off|OFF|null|Null|NULL"
    r"|\.[0-9_]+([eE][-+]?[0-9]+)?|\.(inf|Inf|INF|nan|NaN|NAN))\Z")


def format_key(name: str) -> str:
    """Mapping keys stay bare unless they would not read back as the same string."""
    if _PLAIN_KEY.match(name) and not _TYPED_KEY.match(name):
        return name
    return quote(name)


def collapse_template_lines(text: str) -> str:
    """
    Folds a template value spanning several lines (the '{{ ... }}' single
    quoted form included) onto one line, joining the pieces with a space.
    Values without template actions are returned unchanged.
    """
    if "{{" not in text:
        return text
    return _LINE_BREAK.sub(" ", text)


class _Prefix:
    """
    The text written in front of the next line. List dashes stack up on one
    line, so a prefix is printed once and then replaced by blanks of the
    same width for every following line.
    """

    def __init__(self, value: str = ""):
        self.value = value

    def use_once(self) -> str:
        result = self.value
        self.value = " " * len(result)
        return result


class ChartEncoder:
    """
    Writes documents to a text stream.

    Args:
        stream: any object with a write(str) method.
        indent: columns per nesting level (minimum 2).
        wrap: maximum comment line length, indentation included.
        empty_lines: surround commented or blocked siblings with blank lines.
    """

    def __init__(self, stream: TextIO, indent: int = 2, wrap: int = 80, empty_lines: bool = True):
        self.stream = stream
        self.indent = max(indent, 2)
        self.wrap = wrap
        self.empty_lines = empty_lines
        self._pending_newline = False

    def encode(self, node: Node) -> None:
        """Writes one document, starting with the `---` marker."""
        self._pending_newline = False
        self._write("---\n")
        self._write_node(node, _Prefix(), "", self.empty_lines)

    def _write(self, text: str) -> None:
        self.stream.write(text)

    def _use_empty_lines(self, prefix: str, nodes: List[Node]) -> bool:
        # A container with a single annotated element stays compact; the
        # document root keeps the setting so its comment stands apart.
        if prefix == "":
            return self.empty_lines
        special = sum(1 for node in nodes if node.comment or node.block)
        return self.empty_lines and special > 1

    def _write_comment(self, prefix: _Prefix, comment: str) -> None:
        for line in comment.rstrip("\n").split("\n"):
            self._write(prefix.use_once() + "#")
            words = line.split()
            if words:
                lead = line[:len(line) - len(line.lstrip())]
                hang = lead + ("  " if line.lstrip().startswith(("* ", "- ")) else "")
                self._write(lead)
                written = len(lead)
                on_line = 0
                for word in words:
                    if on_line and len(prefix.value) + 1 + written + 1 + len(word) > self.wrap:
                        self._write("\n" + prefix.use_once() + "#" + hang)
                        written = len(hang)
                        on_line = 0
                    self._write(" " + word)
                    written += 1 + len(word)
                    on_line += 1
            self._write("\n")

    def _write_node(self, node: Node, prefix: _Prefix, label: str, empty_lines: bool) -> None:
        leading_newline = empty_lines
        if self._pending_newline:
            self._write("\n")
            self._pending_newline = False
            leading_newline = False

        indent = self.indent if label.endswith(":") else 0
        if prefix.value.endswith(":"):
            self._write(prefix.value + "\n")
            prefix.value = " " * (prefix.value.rfind(" ") + 1 + indent)
            leading_newline = False
        elif prefix.value.endswith("-"):
            prefix.value += " "
            leading_newline = False
        elif label == "":
            leading_newline = False

        if leading_newline and (node.comment or node.block):
            self._write("\n")
        if node.comment:
            self._write_comment(prefix, node.comment)
        if node.block:
            self._write(f"{prefix.use_once()}{{{{- {node.block} }}}}\n")

        self._write_value(node, prefix.use_once() + label)

        if node.block:
            self._write(prefix.value + "{{- end }}\n")
        if node.comment or node.block:
            self._pending_newline = empty_lines

    def _write_value(self, node: Node, prefix: str) -> None:
        if isinstance(node, Scalar):
            self._write_scalar(node, prefix)
        elif isinstance(node, ListNode):
            self._write_list(node, prefix)
        elif isinstance(node, Mapping):
            self._write_mapping(node, prefix)
        else:
            raise TypeError(f"Cannot encode {type(node).__name__}")

    def _write_scalar(self, scalar: Scalar, prefix: str) -> None:
        text = scalar.text
        if "{{" in text:
            text = collapse_template_lines(text)
        self._write(prefix + " " + text.replace("\n", "\\n") + "\n")

    def _write_list(self, node: ListNode, prefix: str) -> None:
        items = node.values()
        empty_lines = self._use_empty_lines(prefix, items)
        if not items:
            self._write(prefix + (" " if prefix else "") + "[]\n")
            return
        cursor = _Prefix(prefix)
        label = " " * (self.indent - 2) + "-"
        for item in items:
            self._write_node(item, cursor, label, empty_lines)

    def _write_mapping(self, node: Mapping, prefix: str) -> None:
        entries = node.items()
        empty_lines = self._use_empty_lines(prefix, [child for _, child in entries])
        if not entries:
            self._write(prefix + (" " if prefix else "") + "{}\n")
            return
        cursor = _Prefix(prefix)
        for name, child in entries:
            self._write_node(child, cursor, format_key(name) + ":", empty_lines)


def render(node: Node, indent: int = 2, wrap: int = 80, empty_lines: bool = True) -> str:
    """Encodes a single document into a string."""
    stream = io.StringIO()
    ChartEncoder(stream, indent=indent, wrap=wrap, empty_lines=empty_lines).encode(node)
    return stream.getvalue()


def render_all(nodes: List[Optional[Node]], **options) -> str:
    """Encodes several documents into one multi-document string, skipping None."""
    stream = io.StringIO()
    encoder = ChartEncoder(stream, **options)
    for node in nodes:
        if node is not None:
            encoder.encode(node)
    return stream.getvalue()
