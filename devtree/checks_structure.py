"""Structural, reference fix-up and basic semantic checks."""

from __future__ import annotations

from devtree.checkbase import (
    Check,
    CheckContext,
    check,
    check_is_cell,
    check_is_string,
    check_is_string_list,
    error,
    is_multiple_of,
    node_addr_cells,
    node_size_cells,
    warning,
)
from devtree.data import Marker, MarkerType
from devtree.tree import (
    Node,
    Property,
    get_marker_label,
    get_node_by_label,
    get_node_by_path,
    get_node_by_phandle,
    get_node_by_ref,
    get_node_phandle,
    get_property_by_label,
    phandle_is_valid,
)

LOWERCASE = "abcdefghijklmnopqrstuvwxyz"
UPPERCASE = "ABCDEFGHIJKLMNOPQRSTUVWXYZ"
DIGITS = "0123456789"
NODECHARS = LOWERCASE + UPPERCASE + DIGITS + ",._+-@"
PROPCHARS = LOWERCASE + UPPERCASE + DIGITS + ",._+*#?-"
PROPNODECHARSSTRICT = LOWERCASE + UPPERCASE + DIGITS + ",-"

_CELL_SIZE = 4


def _span(text: str, allowed: str) -> int:
    """Length of the leading run of ``text`` made only of ``allowed``."""
    for index, char in enumerate(text):
        if char not in allowed:
            return index
    return len(text)


def _cstr(raw: bytes | bytearray) -> str:
    end = raw.find(b"\0")
    if end >= 0:
        raw = raw[:end]
    return bytes(raw).decode("utf-8", errors="replace")


def _always_fail(c: Check, ctx: CheckContext, node: Node) -> None:
    c.fail(ctx, node, "always_fail check")


def _duplicate_node_names(c: Check, ctx: CheckContext, node: Node) -> None:
    children = node.children
    for i, child in enumerate(children):
        for other in children[i + 1:]:
            if child.name == other.name:
                c.fail(ctx, other, "Duplicate node name")


def _duplicate_property_names(c: Check, ctx: CheckContext, node: Node) -> None:
    props = node.properties
    for i, prop in enumerate(props):
        for other in props[i + 1:]:
            if prop.name == other.name:
                c.fail(ctx, node, "Duplicate property name", prop)


def _node_name_chars(c: Check, ctx: CheckContext, node: Node) -> None:
    n = _span(node.name, c.data)
    if n < len(node.name):
        c.fail(ctx, node, f"Bad character '{node.name[n]}' in node name")


def _node_name_chars_strict(c: Check, ctx: CheckContext, node: Node) -> None:
    n = _span(node.name, c.data)
    if n < node.basenamelen:
        c.fail(ctx, node,
               f"Character '{node.name[n]}' not recommended in node name")


def _node_name_format(c: Check, ctx: CheckContext, node: Node) -> None:
    if "@" in node.unit_name:
        c.fail(ctx, node, "multiple '@' characters in node name")


def _node_name_vs_property_name(c: Check, ctx: CheckContext, node: Node) -> None:
    if node.parent is None:
        return
    if node.parent.get_property(node.name) is not None:
        c.fail(ctx, node, "node name and property name conflict")


def _unit_address_vs_reg(c: Check, ctx: CheckContext, node: Node) -> None:
    if node.get_subnode("__overlay__") is not None:
        return
    prop = node.get_property("reg")
    if prop is None:
        prop = node.get_property("ranges")
        if prop is not None and not len(prop.val):
            prop = None
    if prop is not None:
        if not node.unit_name:
            c.fail(ctx, node,
                   "node has a reg or ranges property, but no unit name")
    elif node.unit_name:
        c.fail(ctx, node,
               "node has a unit name, but no reg or ranges property")


def _property_name_chars(c: Check, ctx: CheckContext, node: Node) -> None:
    for prop in node.properties:
        n = _span(prop.name, c.data)
        if n < len(prop.name):
            c.fail(ctx, node,
                   f"Bad character '{prop.name[n]}' in property name", prop)


def _property_name_chars_strict(c: Check, ctx: CheckContext, node: Node) -> None:
    for prop in node.properties:
        name = prop.name
        n = _span(name, c.data)
        if n == len(name):
            continue
        if name == "device_type":
            continue
        # '#' is allowed only at the start of the name, after any vendor prefix.
        if name[n] == "#" and (n == 0 or name[n - 1] == ","):
            name = name[n + 1:]
            n = _span(name, c.data)
        if n < len(name):
            c.fail(ctx, node,
                   f"Character '{name[n]}' not recommended in property name",
                   prop)


def _describe_label(node: Node, prop: Property | None,
                    mark: Marker | None) -> str:
    text = "value of " if mark is not None else ""
    if prop is not None:
        text += f"'{prop.name}' in "
    return text + node.fullpath


def _duplicate_label(c: Check, ctx: CheckContext, label: str, node: Node,
                     prop: Property | None, mark: Marker | None) -> None:
    dt = ctx.dti.dt
    other_node = get_node_by_label(dt, label)
    other_prop: Property | None = None
    other_mark: Marker | None = None
    if other_node is None:
        found = get_property_by_label(dt, label)
        if found is not None:
            other_node, other_prop = found
    if other_node is None:
        found_mark = get_marker_label(dt, label)
        if found_mark is not None:
            other_node, other_prop, other_mark = found_mark
    if other_node is None:
        return
    if other_node is not node or other_prop is not prop or other_mark is not mark:
        c.fail(ctx, node,
               f"Duplicate label '{label}' on "
               f"{_describe_label(node, prop, mark)} and "
               f"{_describe_label(other_node, other_prop, other_mark)}")


def _duplicate_label_node(c: Check, ctx: CheckContext, node: Node) -> None:
    for label in list(node.labels):
        _duplicate_label(c, ctx, label, node, None, None)
    for prop in node.properties:
        for label in list(prop.labels):
            _duplicate_label(c, ctx, label, node, prop, None)
        for mark in list(prop.val.markers_of_type(MarkerType.LABEL)):
            _duplicate_label(c, ctx, mark.ref, node, prop, mark)


def _check_phandle_prop(c: Check, ctx: CheckContext, node: Node,
                        propname: str) -> int:
    root = ctx.dti.dt
    prop = node.get_property(propname)
    if prop is None:
        return 0
    if len(prop.val) != _CELL_SIZE:
        c.fail(ctx, node,
               f"bad length ({len(prop.val)}) {prop.name} property", prop)
        return 0

    for mark in prop.val.markers_of_type(MarkerType.REF_PHANDLE):
        # A reference to the node itself asks for a phandle to be allocated.
        if get_node_by_ref(root, mark.ref) is not node:
            c.fail(ctx, node, f"{prop.name} is a reference to another node")
        return 0

    phandle = prop.cell()
    if not phandle_is_valid(phandle):
        c.fail(ctx, node,
               f"bad value (0x{phandle:x}) in {prop.name} property", prop)
        return 0
    return phandle


def _explicit_phandles(c: Check, ctx: CheckContext, node: Node) -> None:
    root = ctx.dti.dt
    phandle = _check_phandle_prop(c, ctx, node, "phandle")
    linux_phandle = _check_phandle_prop(c, ctx, node, "linux,phandle")
    if not phandle and not linux_phandle:
        return
    if linux_phandle and phandle and phandle != linux_phandle:
        c.fail(ctx, node,
               "mismatching 'phandle' and 'linux,phandle' properties")
    if linux_phandle and not phandle:
        phandle = linux_phandle

    other = get_node_by_phandle(root, phandle)
    if other is not None and other is not node:
        c.fail(ctx, node,
               f"duplicated phandle 0x{phandle:x} "
               f"(seen before at {other.fullpath})")
        return
    node.phandle = phandle


def _name_properties(c: Check, ctx: CheckContext, node: Node) -> None:
    prop = next((p for p in node.proplist if p.name == "name"), None)
    if prop is None:
        return
    base = node.name[:node.basenamelen].encode()
    value = bytes(prop.val.val)
    if len(value) != node.basenamelen + 1 or value[:node.basenamelen] != base:
        c.fail(ctx, node,
               f"\"name\" property is incorrect (\"{_cstr(value)}\" "
               "instead of base node name)")
    else:
        # The property is correct and therefore redundant.
        node.proplist.remove(prop)


def _set_cell(prop: Property, offset: int, value: int) -> None:
    prop.val.val[offset:offset + _CELL_SIZE] = value.to_bytes(_CELL_SIZE, "big")


def _fixup_phandle_references(c: Check, ctx: CheckContext, node: Node) -> None:
    dt = ctx.dti.dt
    for prop in node.properties:
        for mark in list(prop.val.markers_of_type(MarkerType.REF_PHANDLE)):
            refnode = get_node_by_ref(dt, mark.ref)
            if refnode is None:
                if not ctx.dti.is_plugin:
                    c.fail(ctx, node,
                           "Reference to non-existent node or label "
                           f"\"{mark.ref}\"\n")
                else:
                    _set_cell(prop, mark.offset, 0xFFFFFFFF)
                continue
            phandle = get_node_phandle(dt, refnode)
            _set_cell(prop, mark.offset, phandle)
            refnode.reference()


def _fixup_path_references(c: Check, ctx: CheckContext, node: Node) -> None:
    dt = ctx.dti.dt
    for prop in node.properties:
        for mark in list(prop.val.markers_of_type(MarkerType.REF_PATH)):
            refnode = get_node_by_ref(dt, mark.ref)
            if refnode is None:
                c.fail(ctx, node,
                       "Reference to non-existent node or label "
                       f"\"{mark.ref}\"\n")
                continue
            prop.val.insert_at_marker(mark, refnode.fullpath.encode() + b"\0")
            refnode.reference()


def _fixup_omit_unused_nodes(c: Check, ctx: CheckContext, node: Node) -> None:
    if ctx.generate_symbols and node.labels:
        return
    if node.omit_if_unused and not node.is_referenced:
        node.delete()


def _names_is_string_list(c: Check, ctx: CheckContext, node: Node) -> None:
    for prop in node.properties:
        if not prop.name.endswith("-names"):
            continue
        c.data = prop.name
        check_is_string_list(c, ctx, node)


def _alias_paths(c: Check, ctx: CheckContext, node: Node) -> None:
    if node.name != "aliases":
        return
    allowed = LOWERCASE + DIGITS + "-"
    for prop in node.properties:
        if prop.name in ("phandle", "linux,phandle"):
            continue
        if not len(prop.val) or get_node_by_path(
                ctx.dti.dt, _cstr(prop.val.val)) is None:
            shown = _cstr(prop.val.val) if len(prop.val) else "(null)"
            c.fail(ctx, node,
                   f"aliases property is not a valid node ({shown})", prop)
            continue
        if _span(prop.name, allowed) != len(prop.name):
            c.fail(ctx, node,
                   "aliases property name must include only lowercase and '-'")


def _fixup_addr_size_cells(c: Check, ctx: CheckContext, node: Node) -> None:
    node.addr_cells = -1
    node.size_cells = -1
    prop = node.get_property("#address-cells")
    if prop is not None:
        node.addr_cells = prop.cell()
    prop = node.get_property("#size-cells")
    if prop is not None:
        node.size_cells = prop.cell()


def _reg_format(c: Check, ctx: CheckContext, node: Node) -> None:
    prop = node.get_property("reg")
    if prop is None:
        return
    if node.parent is None:
        c.fail(ctx, node, "Root node has a \"reg\" property")
        return
    if len(prop.val) == 0:
        c.fail(ctx, node, "property is empty", prop)
    addr_cells = node_addr_cells(node.parent)
    size_cells = node_size_cells(node.parent)
    entrylen = (addr_cells + size_cells) * _CELL_SIZE
    if not is_multiple_of(len(prop.val), entrylen):
        c.fail(ctx, node,
               f"property has invalid length ({len(prop.val)} bytes) "
               f"(#address-cells == {addr_cells}, "
               f"#size-cells == {size_cells})", prop)


def _ranges_format(c: Check, ctx: CheckContext, node: Node) -> None:
    ranges = c.data
    prop = node.get_property(ranges)
    if prop is None:
        return
    if node.parent is None:
        c.fail(ctx, node, f"Root node has a \"{ranges}\" property", prop)
        return
    p_addr = node_addr_cells(node.parent)
    p_size = node_size_cells(node.parent)
    c_addr = node_addr_cells(node)
    c_size = node_size_cells(node)
    entrylen = (p_addr + c_addr + c_size) * _CELL_SIZE
    length = len(prop.val)

    if length == 0:
        if p_addr != c_addr:
            c.fail(ctx, node,
                   f"empty \"{ranges}\" property but its #address-cells "
                   f"({c_addr}) differs from {node.parent.fullpath} "
                   f"({p_addr})", prop)
        if p_size != c_size:
            c.fail(ctx, node,
                   f"empty \"{ranges}\" property but its #size-cells "
                   f"({c_size}) differs from {node.parent.fullpath} "
                   f"({p_size})", prop)
    elif not is_multiple_of(length, entrylen):
        c.fail(ctx, node,
               f"\"{ranges}\" property has invalid length ({length} bytes) "
               f"(parent #address-cells == {p_addr}, child #address-cells "
               f"== {c_addr}, #size-cells == {c_size})", prop)


def build_structure_checks() -> dict[str, Check]:
    """Create fresh structural and basic semantic checks, keyed by name."""
    always_fail = check("always_fail", _always_fail)

    duplicate_node_names = error("duplicate_node_names", _duplicate_node_names)
    duplicate_property_names = error("duplicate_property_names",
                                     _duplicate_property_names)
    node_name_chars = error("node_name_chars", _node_name_chars, NODECHARS)
    node_name_chars_strict = check("node_name_chars_strict",
                                   _node_name_chars_strict, PROPNODECHARSSTRICT)
    node_name_format = error("node_name_format", _node_name_format, None,
                             node_name_chars)
    node_name_vs_property_name = warning("node_name_vs_property_name",
                                         _node_name_vs_property_name, None,
                                         node_name_chars)
    unit_address_vs_reg = warning("unit_address_vs_reg", _unit_address_vs_reg)
    property_name_chars = error("property_name_chars", _property_name_chars,
                                PROPCHARS)
    property_name_chars_strict = check("property_name_chars_strict",
                                       _property_name_chars_strict,
                                       PROPNODECHARSSTRICT)
    duplicate_label = error("duplicate_label", _duplicate_label_node)
    explicit_phandles = error("explicit_phandles", _explicit_phandles)
    name_is_string = error("name_is_string", check_is_string, "name")
    name_properties = error("name_properties", _name_properties, None,
                            name_is_string)

    phandle_references = error("phandle_references", _fixup_phandle_references,
                               None, duplicate_node_names, explicit_phandles)
    path_references = error("path_references", _fixup_path_references, None,
                            duplicate_node_names)
    omit_unused_nodes = error("omit_unused_nodes", _fixup_omit_unused_nodes,
                              None, phandle_references, path_references)

    address_cells_is_cell = warning("address_cells_is_cell", check_is_cell,
                                    "#address-cells")
    size_cells_is_cell = warning("size_cells_is_cell", check_is_cell,
                                 "#size-cells")
    device_type_is_string = warning("device_type_is_string", check_is_string,
                                    "device_type")
    model_is_string = warning("model_is_string", check_is_string, "model")
    status_is_string = warning("status_is_string", check_is_string, "status")
    label_is_string = warning("label_is_string", check_is_string, "label")
    compatible_is_string_list = warning("compatible_is_string_list",
                                        check_is_string_list, "compatible")
    names_is_string_list = warning("names_is_string_list",
                                   _names_is_string_list)
    alias_paths = warning("alias_paths", _alias_paths)

    addr_size_cells = warning("addr_size_cells", _fixup_addr_size_cells, None,
                              address_cells_is_cell, size_cells_is_cell)
    reg_format = warning("reg_format", _reg_format, None, addr_size_cells)
    ranges_format = warning("ranges_format", _ranges_format, "ranges",
                            addr_size_cells)
    dma_ranges_format = warning("dma_ranges_format", _ranges_format,
                                "dma-ranges", addr_size_cells)

    checks = [
        duplicate_node_names, duplicate_property_names,
        node_name_chars, node_name_format, property_name_chars,
        name_is_string, name_properties, node_name_vs_property_name,
        duplicate_label,
        explicit_phandles,
        phandle_references, path_references,
        omit_unused_nodes,
        address_cells_is_cell, size_cells_is_cell,
        device_type_is_string, model_is_string, status_is_string,
        label_is_string,
        compatible_is_string_list, names_is_string_list,
        property_name_chars_strict,
        node_name_chars_strict,
        addr_size_cells, reg_format, ranges_format, dma_ranges_format,
        unit_address_vs_reg,
        alias_paths,
        always_fail,
    ]
    return {c.name: c for c in checks}