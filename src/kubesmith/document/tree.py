#!/usr/bin/env python3
"""
KUBESMITH DOCUMENT TREE
-----------------------
A small, template-aware YAML document model. Every resource the exporter
produces is built from three node shapes:

    Scalar   - a single value, already rendered as YAML text
    ListNode - an ordered sequence of nodes
    Mapping  - an ordered sequence of (name, node) pairs

Each node may carry a comment (written above it) and a block (a template
action such as `if .Values.enabled` wrapping it). Nodes are owned by exactly
one parent; inserting a node that already lives somewhere else is rejected.

Author: KubeSmith Team
Date: 2026-01-16
"""

import json
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple, Union

from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError

from kubesmith.core.errors import StructureError

_scalar_parser = YAML(typ='safe')


def is_template(text: str) -> bool:
    """True when the whole text is a single template expression."""
    return text.startswith("{{") and text.endswith("}}")


def quote(text: str) -> str:
    """Double-quotes a string using JSON escapes, which YAML accepts verbatim."""
    return json.dumps(text, ensure_ascii=False)


def unquote(text: str) -> str:
    """Reverses quote(); text that is not a quoted string is returned as is."""
    if len(text) >= 2 and text.startswith('"') and text.endswith('"'):
        try:
            return json.loads(text)
        except ValueError:
            return text
    return text


class Node:
    """
    Base of the three node shapes. Holds the shared annotations.
    """

    kind = "node"

    def __init__(self, comment: Optional[str] = None, block: Optional[str] = None):
        self.comment = comment or ""
        self.block = block or ""
        self.parent: Optional["Node"] = None

    def set(self, comment: Optional[str] = None, block: Optional[str] = None) -> "Node":
        """Attaches a comment and/or block action; None leaves a field untouched."""
        if comment is not None:
            self.comment = comment
        if block is not None:
            self.block = block
        return self

    def set_comment(self, comment: str) -> "Node":
        self.comment = comment
        return self

    def set_block(self, block: str) -> "Node":
        self.block = block
        return self

    def to_python(self) -> Any:
        raise NotImplementedError

    def _adopt(self, child: "Node") -> "Node":
        if child is self:
            raise StructureError("A node cannot contain itself")
        if child.parent is not None:
            raise StructureError(f"{child.kind} node is already part of another document")
        child.parent = self
        return child

    def __str__(self) -> str:
        from kubesmith.document.encoder import render
        return render(self)


class Scalar(Node):
    """
    A single YAML value. `text` is emitted verbatim, so strings must already
    be quoted; use new_node() to convert Python values.
    """

    kind = "scalar"

    def __init__(self, text: str, comment: Optional[str] = None, block: Optional[str] = None):
        super().__init__(comment, block)
        self.text = text

    def set_value(self, value: Any) -> "Scalar":
        """Replaces the value in place, keeping comment, block and position."""
        node = new_node(value)
        if not isinstance(node, Scalar):
            raise StructureError("A scalar can only be replaced by another scalar value")
        self.text = node.text
        return self

    @property
    def value(self) -> str:
        """The scalar text without surrounding double quotes."""
        return unquote(self.text)

    def to_python(self) -> Any:
        if "{{" in self.text:
            return self.value
        try:
            return _scalar_parser.load(self.text)
        except YAMLError:
            return self.value

    def __str__(self) -> str:
        return self.value

    def __repr__(self) -> str:
        return f"Scalar({self.text!r})"


class ListNode(Node):
    """An ordered sequence of nodes."""

    kind = "list"

    def __init__(self, *items: Any, comment: Optional[str] = None, block: Optional[str] = None):
        super().__init__(comment, block)
        self._items: List[Node] = []
        self.add(*items)

    def add(self, *items: Any) -> "ListNode":
        for item in items:
            self._items.append(self._adopt(new_node(item)))
        return self

    def values(self) -> List[Node]:
        return list(self._items)

    def to_python(self) -> List[Any]:
        return [item.to_python() for item in self._items]

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[Node]:
        return iter(list(self._items))

    def __getitem__(self, index: int) -> Node:
        return self._items[index]

    def __repr__(self) -> str:
        return f"ListNode({self._items!r})"


class Mapping(Node):
    """
    An ordered mapping. Entries are kept in insertion order until sort() is
    called; names are unique.

    Args:
        entries: a dict or an iterable of (name, value) pairs, kept in the
            given order. Values are converted with new_node().
    """

    kind = "mapping"

    def __init__(self, entries: Union[Dict[str, Any], Iterable[Tuple[str, Any]], None] = None,
                 comment: Optional[str] = None, block: Optional[str] = None):
        super().__init__(comment, block)
        self._entries: List[Tuple[str, Node]] = []
        self._index: Dict[str, Node] = {}
        if entries:
            pairs = entries.items() if isinstance(entries, dict) else entries
            for name, value in pairs:
                self.add(name, value)

    def add(self, name: str, value: Any, comment: Optional[str] = None,
            block: Optional[str] = None) -> "Mapping":
        """
        Appends a named entry. Adding a name that already exists is a
        programmer error; use replace() to overwrite on purpose.
        """
        if name in self._index:
            raise StructureError(f"Mapping already contains an entry named {name!r}")
        node = self._adopt(new_node(value))
        node.set(comment=comment, block=block)
        self._entries.append((name, node))
        self._index[name] = node
        return self

    def replace(self, name: str, value: Any, comment: Optional[str] = None,
                block: Optional[str] = None) -> "Mapping":
        """Replaces an entry in place, or appends it when the name is new."""
        if name not in self._index:
            return self.add(name, value, comment, block)
        node = new_node(value)
        node.set(comment=comment, block=block)
        old = self._index[name]
        self._adopt(node)
        old.parent = None
        self._entries = [(n, node if n == name else v) for n, v in self._entries]
        self._index[name] = node
        return self

    def remove(self, name: str) -> Node:
        if name not in self._index:
            raise StructureError(f"Mapping has no entry named {name!r}")
        node = self._index.pop(name)
        self._entries = [(n, v) for n, v in self._entries if n != name]
        node.parent = None
        return node

    def get(self, *names: str) -> Optional[Node]:
        """
        Walks nested mappings by name. Returns None as soon as a name is
        missing or an intermediate node is not a mapping.
        """
        node: Optional[Node] = self
        for name in names:
            if not isinstance(node, Mapping):
                return None
            node = node._index.get(name)
            if node is None:
                return None
        return node

    def names(self) -> List[str]:
        return [name for name, _ in self._entries]

    def values(self) -> List[Node]:
        return [node for _, node in self._entries]

    def items(self) -> List[Tuple[str, Node]]:
        return list(self._entries)

    def sort(self) -> "Mapping":
        """Orders entries by name. Returns self for chaining."""
        self._entries.sort(key=lambda entry: entry[0])
        return self

    def merge(self, other: "Mapping") -> "Mapping":
        """
        Moves every entry of `other` into this mapping; `other` is consumed
        and left empty. Entries are moved rather than copied because a node
        belongs to a single parent. Colliding names are replaced in place,
        new names are appended. Moved nodes keep their comments and blocks.
        """
        for name, node in other.items():
            other.remove(name)
            self.replace(name, node)
        return self

    def to_python(self) -> Dict[str, Any]:
        return {name: node.to_python() for name, node in self._entries}

    def __contains__(self, name: object) -> bool:
        return name in self._index

    def __getitem__(self, name: str) -> Node:
        try:
            return self._index[name]
        except KeyError:
            raise StructureError(f"Mapping has no entry named {name!r}") from None

    def __iter__(self) -> Iterator[str]:
        return iter(self.names())

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"Mapping({self._entries!r})"


def _format_float(value: float) -> str:
    if value.is_integer() and abs(value) < 1e21:
        return str(int(value))
    return repr(value)


def new_node(value: Any, comment: Optional[str] = None, block: Optional[str] = None) -> Node:
    """
    Converts a Python value into a document node.

    None becomes `~`, booleans `true`/`false`, numbers their decimal text and
    strings are double-quoted unless they are a template expression from
    start to end. Dicts become mappings sorted by key; lists and tuples
    become lists. Existing nodes are passed through.
    """
    if isinstance(value, Node):
        node = value
    elif value is None:
        node = Scalar("~")
    elif isinstance(value, bool):
        node = Scalar("true" if value else "false")
    elif isinstance(value, int):
        node = Scalar(str(value))
    elif isinstance(value, float):
        node = Scalar(_format_float(value))
    elif isinstance(value, str):
        node = Scalar(value if is_template(value) else quote(value))
    elif isinstance(value, dict):
        node = Mapping((str(key), value[key]) for key in value).sort()
    elif isinstance(value, (list, tuple)):
        node = ListNode(*value)
    else:
        raise TypeError(f"Cannot convert {type(value).__name__} into a document node")
    return node.set(comment=comment, block=block)
