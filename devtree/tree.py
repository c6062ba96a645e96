"""The in-memory device tree: nodes, properties and lookups."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterator

from devtree.data import Data, Marker, MarkerType

DTSF_V1 = 0x0001
DTSF_PLUGIN = 0x0002

MAX_PHANDLE = 0xFFFFFFFE
_CELL_SIZE = 4


def phandle_is_valid(phandle: int) -> bool:
    """Phandles 0 and 0xffffffff are reserved and never valid."""
    return phandle != 0 and phandle != 0xFFFFFFFF


@dataclass(eq=False)
class Property:
    """A named property of a node."""

    name: str
    val: Data = field(default_factory=Data)
    labels: list[str] = field(default_factory=list)
    srcpos: str | None = None
    deleted: bool = False

    def cell(self) -> int:
        """The value as a single 32-bit cell."""
        if len(self.val) != _CELL_SIZE:
            raise ValueError(
                f"property {self.name!r} is not a single cell "
                f"({len(self.val)} bytes)"
            )
        return int.from_bytes(self.val.val, "big")

    def cell_n(self, n: int) -> int:
        """The ``n``-th 32-bit cell of the value."""
        if n < 0 or (n + 1) * _CELL_SIZE > len(self.val):
            raise IndexError(f"cell {n} out of range in property {self.name!r}")
        start = n * _CELL_SIZE
        return int.from_bytes(self.val.val[start:start + _CELL_SIZE], "big")


@dataclass(eq=False)
class Node:
    """A device tree node with its properties and children."""

    name: str = ""
    proplist: list[Property] = field(default_factory=list)
    childlist: list[Node] = field(default_factory=list)
    labels: list[str] = field(default_factory=list)
    parent: Node | None = field(default=None, repr=False)
    fullpath: str = "/"
    phandle: int = 0
    addr_cells: int = -1
    size_cells: int = -1
    bus: Any = None
    omit_if_unused: bool = False
    is_referenced: bool = False
    deleted: bool = False
    srcpos: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        children = list(self.childlist)
        self.childlist = []
        self._update_paths()
        for child in children:
            self.add_child(child)

    def _update_paths(self) -> None:
        base = self.parent.fullpath if self.parent is not None else ""
        self.fullpath = base.rstrip("/") + "/" + self.name
        for child in self.childlist:
            child._update_paths()

    @property
    def basenamelen(self) -> int:
        at = self.name.find("@")
        return len(self.name) if at < 0 else at

    @property
    def basename(self) -> str:
        return self.name[:self.basenamelen]

    @property
    def unit_name(self) -> str:
        """The part of the name after '@', or an empty string."""
        at = self.name.find("@")
        return "" if at < 0 else self.name[at + 1:]

    @property
    def properties(self) -> list[Property]:
        return [p for p in self.proplist if not p.deleted]

    @property
    def children(self) -> list[Node]:
        return [c for c in self.childlist if not c.deleted]

    def add_property(self, prop: Property) -> Property:
        self.proplist.append(prop)
        return prop

    def add_child(self, child: Node) -> Node:
        child.parent = self
        child._update_paths()
        self.childlist.append(child)
        return child

    def get_property(self, name: str) -> Property | None:
        return next((p for p in self.properties if p.name == name), None)

    def get_subnode(self, name: str) -> Node | None:
        return next((c for c in self.children if c.name == name), None)

    def walk(self) -> Iterator[Node]:
        """Yield this node and all live descendants, depth first."""
        yield self
        for child in self.children:
            yield from child.walk()

    def delete(self) -> None:
        """Mark this node, its properties and its subtree as deleted."""
        self.deleted = True
        self.labels.clear()
        for prop in self.proplist:
            prop.deleted = True
        for child in self.childlist:
            child.delete()

    def reference(self) -> None:
        self.is_referenced = True


@dataclass
class DtInfo:
    """A parsed tree together with its compile-time settings."""

    dt: Node
    outname: str = "-"
    dtsflags: int = DTSF_V1
    boot_cpuid_phys: int = 0
    reservelist: list[tuple[int, int]] = field(default_factory=list)

    @property
    def is_plugin(self) -> bool:
        return bool(self.dtsflags & DTSF_PLUGIN)


def get_node_by_path(tree: Node, path: str | None) -> Node | None:
    """Find a node by a path relative to ``tree``."""
    if not path:
        return None if tree.deleted else tree
    path = path.lstrip("/")
    head, sep, rest = path.partition("/")
    for child in tree.children:
        if child.name == head:
            return get_node_by_path(child, rest) if sep else child
    return None


def get_node_by_label(tree: Node, label: str) -> Node | None:
    return next((n for n in tree.walk() if label in n.labels), None)


def get_property_by_label(tree: Node, label: str) -> tuple[Node, Property] | None:
    """Find the property carrying ``label`` and the node that holds it."""
    for node in tree.walk():
        for prop in node.properties:
            if label in prop.labels:
                return node, prop
    return None


def get_marker_label(
    tree: Node, label: str
) -> tuple[Node, Property, Marker] | None:
    """Find a label placed inside a property value."""
    for node in tree.walk():
        for prop in node.properties:
            for marker in prop.val.markers_of_type(MarkerType.LABEL):
                if marker.ref == label:
                    return node, prop, marker
    return None


def get_node_by_phandle(tree: Node, phandle: int) -> Node | None:
    if not phandle_is_valid(phandle):
        return None
    return next((n for n in tree.walk() if n.phandle == phandle), None)


def get_node_by_ref(tree: Node, ref: str) -> Node | None:
    """Resolve a reference: '/' is the root, '/...' a path, else a label."""
    if ref == "/":
        return tree
    if ref.startswith("/"):
        return get_node_by_path(tree, ref)
    return get_node_by_label(tree, ref)


def get_node_phandle(root: Node, node: Node) -> int:
    """Return the node's phandle, allocating an unused one if needed."""
    if phandle_is_valid(node.phandle):
        return node.phandle
    phandle = 1
    while get_node_by_phandle(root, phandle) is not None:
        phandle += 1
        if phandle > MAX_PHANDLE:
            raise OverflowError("Device tree has too many phandles")
    node.phandle = phandle
    if node.get_property("phandle") is None:
        value = Data().add_marker(MarkerType.TYPE_UINT32).append_cell(phandle)
        node.add_property(Property("phandle", value))
    return phandle