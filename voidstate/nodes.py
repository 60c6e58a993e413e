from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Tuple, Union


@dataclass
class Node:
    """Base class for parsed expressions. Positions do not take part in equality."""

    line: int = field(default=0, compare=False, repr=False, kw_only=True)
    column: int = field(default=0, compare=False, repr=False, kw_only=True)


@dataclass
class Literal(Node):
    """String, number or boolean literal."""

    value: Union[str, int, float, bool]


@dataclass
class Symbol(Node):
    name: str


@dataclass
class PathLiteral(Node):
    path: str

    def is_absolute(self) -> bool:
        return self.path.startswith("/")


@dataclass
class MapLiteral(Node):
    entries: List[Tuple[str, Node]] = field(default_factory=list)

    def keys(self) -> List[str]:
        return [key for key, _ in self.entries]


@dataclass
class ListLiteral(Node):
    items: List[Node] = field(default_factory=list)


@dataclass
class FunctionCall(Node):
    name: str
    args: List[Node] = field(default_factory=list)


@dataclass
class MapRef(Node):
    base: Node  # Symbol, MapRef or ListRef
    field: str


@dataclass
class ListRef(Node):
    base: Node
    index: int


@dataclass
class VariableDeclaration(Node):
    target: Node  # Symbol, MapRef or ListRef
    value: Node


@dataclass
class Import(Node):
    path: str


Reference = Union[Symbol, MapRef, ListRef]


def describe(node: Node) -> str:
    """Short human readable form used in error messages."""
    if isinstance(node, Symbol):
        return node.name
    if isinstance(node, MapRef):
        return f"{describe(node.base)}.{node.field}"
    if isinstance(node, ListRef):
        return f"{describe(node.base)}[{node.index}]"
    if isinstance(node, FunctionCall):
        return f"{node.name}(...)"
    if isinstance(node, Literal):
        return repr(node.value)
    if isinstance(node, PathLiteral):
        return node.path
    return type(node).__name__
