"""Bus, addressing, chosen-node and graph checks."""

from __future__ import annotations

import string
from dataclasses import dataclass

from devtree.checkbase import (
    Check,
    CheckContext,
    check,
    check_is_string,
    node_addr_cells,
    node_size_cells,
    warning,
)
from devtree.tree import Node, Property, get_node_by_path, get_node_by_phandle, phandle_is_valid

_CELL_SIZE = 4
I2C_OWN_SLAVE_ADDRESS = 1 << 30
I2C_TEN_BIT_ADDRESS = 1 << 31


@dataclass(frozen=True, eq=False)
class BusType:
    """Identifies the kind of bus a node bridges to."""

    name: str


PCI_BUS = BusType("PCI")
SIMPLE_BUS = BusType("simple-bus")
I2C_BUS = BusType("i2c-bus")
SPI_BUS = BusType("spi-bus")
GRAPH_PORT_BUS = BusType("graph-port")
GRAPH_PORTS_BUS = BusType("graph-ports")


def _cstr(raw: bytes | bytearray) -> str:
    end = raw.find(b"\0")
    if end >= 0:
        raw = raw[:end]
    return bytes(raw).decode("utf-8", errors="replace")


def _cell(prop: Property, index: int) -> int:
    """The ``index``-th cell of a value, or 0 where the value is too short."""
    start = index * _CELL_SIZE
    raw = prop.val.val
    if start + _CELL_SIZE > len(raw):
        return 0
    return int.from_bytes(raw[start:start + _CELL_SIZE], "big")


def _prefixeq(name: str, n: int, prefix: str) -> bool:
    return n == len(prefix) and name[:n] == prefix


def node_is_compatible(node: Node, compat: str) -> bool:
    """True if ``compat`` is one of the strings of the node's compatible."""
    prop = node.get_property("compatible")
    if prop is None:
        return False
    raw = bytes(prop.val.val)
    if not raw:
        return False
    pieces = raw.split(b"\0")
    if raw.endswith(b"\0"):
        pieces = pieces[:-1]
    target = compat.encode()
    return any(piece == target for piece in pieces)


def node_is_disabled(node: Node) -> bool:
    """True if the node's status property says "disabled"."""
    prop = node.get_property("status")
    if prop is None or not len(prop.val):
        return False
    return _cstr(prop.val.val) == "disabled"


def _pci_bridge(c: Check, ctx: CheckContext, node: Node) -> None:
    prop = node.get_property("device_type")
    if prop is None or not len(prop.val) or _cstr(prop.val.val) != "pci":
        return
    node.bus = PCI_BUS

    if not (_prefixeq(node.name, node.basenamelen, "pci")
            or _prefixeq(node.name, node.basenamelen, "pcie")):
        c.fail(ctx, node, "node name is not \"pci\" or \"pcie\"")

    if node.get_property("ranges") is None:
        c.fail(ctx, node, "missing ranges for PCI bridge (or not a bridge)")

    if node_addr_cells(node) != 3:
        c.fail(ctx, node, "incorrect #address-cells for PCI bridge")
    if node_size_cells(node) != 2:
        c.fail(ctx, node, "incorrect #size-cells for PCI bridge")

    prop = node.get_property("bus-range")
    if prop is None:
        return
    if len(prop.val) != _CELL_SIZE * 2:
        c.fail(ctx, node, "value must be 2 cells", prop)
        return
    if _cell(prop, 0) > _cell(prop, 1):
        c.fail(ctx, node, "1st cell must be less than or equal to 2nd cell", prop)
    if _cell(prop, 1) > 0xFF:
        c.fail(ctx, node, "maximum bus number must be less than 256", prop)


def _pci_device_bus_num(c: Check, ctx: CheckContext, node: Node) -> None:
    if node.parent is None or node.parent.bus is not PCI_BUS:
        return
    prop = node.get_property("reg")
    if prop is None:
        return
    bus_num = (_cell(prop, 0) & 0x00FF0000) >> 16

    range_prop = node.parent.get_property("bus-range")
    if range_prop is None:
        min_bus = max_bus = 0
    else:
        min_bus = _cell(range_prop, 0)
        max_bus = _cell(range_prop, 1)
    if bus_num < min_bus or bus_num > max_bus:
        c.fail(ctx, node,
               f"PCI bus number {bus_num} out of range, expected "
               f"({min_bus} - {max_bus})", range_prop)


def _pci_device_reg(c: Check, ctx: CheckContext, node: Node) -> None:
    if node.parent is None or node.parent.bus is not PCI_BUS:
        return
    prop = node.get_property("reg")
    if prop is None:
        return
    unitname = node.unit_name

    if _cell(prop, 1) or _cell(prop, 2):
        c.fail(ctx, node,
               "PCI reg config space address cells 2 and 3 must be 0", prop)

    reg = _cell(prop, 0)
    dev = (reg & 0xF800) >> 11
    func = (reg & 0x700) >> 8

    if reg & 0xFF000000:
        c.fail(ctx, node, "PCI reg address is not configuration space", prop)
    if reg & 0x000000FF:
        c.fail(ctx, node,
               "PCI reg config space address register number must be 0", prop)

    if func == 0 and unitname == f"{dev:x}":
        return
    unit_addr = f"{dev:x},{func:x}"
    if unitname == unit_addr:
        return
    c.fail(ctx, node, f"PCI unit address format error, expected \"{unit_addr}\"")


def _simple_bus_bridge(c: Check, ctx: CheckContext, node: Node) -> None:
    if node_is_compatible(node, "simple-bus"):
        node.bus = SIMPLE_BUS


def _simple_bus_reg(c: Check, ctx: CheckContext, node: Node) -> None:
    if node.parent is None or node.parent.bus is not SIMPLE_BUS:
        return
    start: int | None = None
    prop = node.get_property("reg")
    if prop is not None:
        if len(prop.val):
            start = 0
    else:
        prop = node.get_property("ranges")
        if prop is not None and len(prop.val):
            # skip the child address
            start = node_addr_cells(node)

    if start is None or prop is None:
        if node.parent.parent is not None and node.bus is not SIMPLE_BUS:
            c.fail(ctx, node, "missing or empty reg/ranges property")
        return

    reg = 0
    for index in range(start, start + node_addr_cells(node.parent)):
        reg = ((reg << 32) | _cell(prop, index)) & 0xFFFFFFFFFFFFFFFF
    unit_addr = f"{reg:x}"
    if node.unit_name != unit_addr:
        c.fail(ctx, node,
               f"simple-bus unit address format error, expected \"{unit_addr}\"")


def _i2c_bus_bridge(c: Check, ctx: CheckContext, node: Node) -> None:
    n = node.basenamelen
    if _prefixeq(node.name, n, "i2c-bus") or _prefixeq(node.name, n, "i2c-arb"):
        node.bus = I2C_BUS
    elif _prefixeq(node.name, n, "i2c"):
        for child in node.children:
            if _prefixeq(child.name, n, "i2c-bus"):
                return
        node.bus = I2C_BUS
    else:
        return

    if not node.children:
        return
    if node_addr_cells(node) != 1:
        c.fail(ctx, node, "incorrect #address-cells for I2C bus")
    if node_size_cells(node) != 0:
        c.fail(ctx, node, "incorrect #size-cells for I2C bus")


def _i2c_bus_reg(c: Check, ctx: CheckContext, node: Node) -> None:
    if node.parent is None or node.parent.bus is not I2C_BUS:
        return
    prop = node.get_property("reg")
    if prop is None or not len(prop.val):
        c.fail(ctx, node, "missing or empty reg property")
        return

    reg = _cell(prop, 0) & ~I2C_OWN_SLAVE_ADDRESS
    unit_addr = f"{reg:x}"
    if node.unit_name != unit_addr:
        c.fail(ctx, node,
               f"I2C bus unit address format error, expected \"{unit_addr}\"")

    count = (len(prop.val) + _CELL_SIZE - 1) // _CELL_SIZE
    for index in range(count):
        reg = _cell(prop, index) & ~I2C_OWN_SLAVE_ADDRESS
        if reg & I2C_TEN_BIT_ADDRESS:
            if (reg & ~I2C_TEN_BIT_ADDRESS) > 0x3FF:
                c.fail(ctx, node,
                       "I2C address must be less than 10-bits, got "
                       f"\"0x{reg:x}\"", prop)
        elif reg > 0x7F:
            c.fail(ctx, node,
                   f"I2C address must be less than 7-bits, got \"0x{reg:x}\". "
                   "Set I2C_TEN_BIT_ADDRESS for 10 bit addresses or fix the "
                   "property", prop)


def _spi_bus_bridge(c: Check, ctx: CheckContext, node: Node) -> None:
    if _prefixeq(node.name, node.basenamelen, "spi"):
        node.bus = SPI_BUS
    else:
        # Try to detect SPI buses which don't have a proper node name.
        if node_addr_cells(node) != 1 or node_size_cells(node) != 0:
            return
        if any(prop.name.startswith("spi-")
               for child in node.children for prop in child.properties):
            node.bus = SPI_BUS
        if node.bus is SPI_BUS and node.get_property("reg") is not None:
            c.fail(ctx, node, "node name for SPI buses should be 'spi'")

    if node.bus is not SPI_BUS or not node.children:
        return
    spi_addr_cells = 0 if node.get_property("spi-slave") is not None else 1
    if node_addr_cells(node) != spi_addr_cells:
        c.fail(ctx, node, "incorrect #address-cells for SPI bus")
    if node_size_cells(node) != 0:
        c.fail(ctx, node, "incorrect #size-cells for SPI bus")


def _spi_bus_reg(c: Check, ctx: CheckContext, node: Node) -> None:
    if node.parent is None or node.parent.bus is not SPI_BUS:
        return
    if node.parent.get_property("spi-slave") is not None:
        return
    prop = node.get_property("reg")
    if prop is None or not len(prop.val):
        c.fail(ctx, node, "missing or empty reg property")
        return
    unit_addr = f"{_cell(prop, 0):x}"
    if node.unit_name != unit_addr:
        c.fail(ctx, node,
               f"SPI bus unit address format error, expected \"{unit_addr}\"")


def _unit_address_format(c: Check, ctx: CheckContext, node: Node) -> None:
    if node.parent is not None and node.parent.bus is not None:
        return
    unitname = node.unit_name
    if not unitname:
        return
    if unitname.startswith("0x"):
        c.fail(ctx, node, "unit name should not have leading \"0x\"")
        unitname = unitname[2:]
    if (len(unitname) > 1 and unitname[0] == "0"
            and unitname[1] in string.hexdigits):
        c.fail(ctx, node, "unit name should not have leading 0s")


def _avoid_default_addr_size(c: Check, ctx: CheckContext, node: Node) -> None:
    if node.parent is None:
        return
    if node.get_property("reg") is None and node.get_property("ranges") is None:
        return
    if node.parent.addr_cells == -1:
        c.fail(ctx, node, "Relying on default #address-cells value")
    if node.parent.size_cells == -1:
        c.fail(ctx, node, "Relying on default #size-cells value")


def _avoid_unnecessary_addr_size(c: Check, ctx: CheckContext, node: Node) -> None:
    if node.parent is None or node.addr_cells < 0 or node.size_cells < 0:
        return
    if (node.get_property("ranges") is not None
            or node.get_property("dma-ranges") is not None
            or not node.children):
        return
    for child in node.children:
        # Children may still have registers on a local bus.
        if (child.get_property("reg") is not None
                or child.get_property("ranges") is not None):
            return
    c.fail(ctx, node,
           "unnecessary #address-cells/#size-cells without \"ranges\", "
           "\"dma-ranges\" or child \"reg\" or \"ranges\" property")


def _unique_unit_address_common(c: Check, ctx: CheckContext, node: Node,
                                disable_check: bool) -> None:
    if node.addr_cells < 0 or node.size_cells < 0:
        return
    children = node.children
    for position, childa in enumerate(children):
        addr_a = childa.unit_name
        if not addr_a:
            continue
        if disable_check and node_is_disabled(childa):
            continue
        for childb in children[:position]:
            if disable_check and node_is_disabled(childb):
                continue
            if childb.unit_name == addr_a:
                c.fail(ctx, childb,
                       "duplicate unit-address (also used in node "
                       f"{childa.fullpath})")


def _unique_unit_address(c: Check, ctx: CheckContext, node: Node) -> None:
    _unique_unit_address_common(c, ctx, node, False)


def _unique_unit_address_if_enabled(c: Check, ctx: CheckContext,
                                    node: Node) -> None:
    _unique_unit_address_common(c, ctx, node, True)


def _obsolete_chosen_interrupt_controller(c: Check, ctx: CheckContext,
                                          node: Node) -> None:
    dt = ctx.dti.dt
    if node is not dt:
        return
    chosen = get_node_by_path(dt, "/chosen")
    if chosen is None:
        return
    prop = chosen.get_property("interrupt-controller")
    if prop is not None:
        c.fail(ctx, node,
               "/chosen has obsolete \"interrupt-controller\" property", prop)


def _chosen_node_is_root(c: Check, ctx: CheckContext, node: Node) -> None:
    if node.name != "chosen":
        return
    if node.parent is not ctx.dti.dt:
        c.fail(ctx, node, "chosen node must be at root node")


def _chosen_node_bootargs(c: Check, ctx: CheckContext, node: Node) -> None:
    if node.name != "chosen":
        return
    prop = node.get_property("bootargs")
    if prop is None:
        return
    c.data = prop.name
    check_is_string(c, ctx, node)


def _chosen_node_stdout_path(c: Check, ctx: CheckContext, node: Node) -> None:
    if node.name != "chosen":
        return
    prop = node.get_property("stdout-path")
    if prop is None:
        prop = node.get_property("linux,stdout-path")
        if prop is None:
            return
        c.fail(ctx, node, "Use 'stdout-path' instead", prop)
    c.data = prop.name
    check_is_string(c, ctx, node)


def _graph_nodes(c: Check, ctx: CheckContext, node: Node) -> None:
    for child in node.children:
        if not (_prefixeq(child.name, child.basenamelen, "endpoint")
                or child.get_property("remote-endpoint") is not None):
            continue
        # The root node cannot be a port.
        if node.parent is None:
            c.fail(ctx, node,
                   f"root node contains endpoint node '{child.name}', "
                   "potentially misplaced remote-endpoint property")
            continue
        node.bus = GRAPH_PORT_BUS
        # The parent of 'port' nodes can be either 'ports' or a device.
        if node.parent.bus is None and (
                node.parent.name == "ports"
                or node.get_property("reg") is not None):
            node.parent.bus = GRAPH_PORTS_BUS
        break


def _graph_reg(c: Check, ctx: CheckContext, node: Node) -> None:
    prop = node.get_property("reg")
    if prop is None:
        return
    if len(prop.val) != _CELL_SIZE:
        c.fail(ctx, node, "graph node malformed 'reg' property")
        return
    unit_addr = f"{_cell(prop, 0):x}"
    if node.unit_name != unit_addr:
        c.fail(ctx, node,
               f"graph node unit address error, expected \"{unit_addr}\"")
    parent = node.parent
    if parent is None:
        return
    if parent.addr_cells != 1:
        c.fail(ctx, node,
               f"graph node '#address-cells' is {parent.addr_cells}, must be 1",
               node.get_property("#address-cells"))
    if parent.size_cells != 0:
        c.fail(ctx, node,
               f"graph node '#size-cells' is {parent.size_cells}, must be 0",
               node.get_property("#size-cells"))


def _graph_port(c: Check, ctx: CheckContext, node: Node) -> None:
    if node.bus is not GRAPH_PORT_BUS:
        return
    _graph_reg(c, ctx, node)
    if ctx.dti.is_plugin:
        return
    if not _prefixeq(node.name, node.basenamelen, "port"):
        c.fail(ctx, node, "graph port node name should be 'port'")


def _remote_endpoint(c: Check, ctx: CheckContext, endpoint: Node) -> Node | None:
    prop = endpoint.get_property("remote-endpoint")
    if prop is None:
        return None
    phandle = _cell(prop, 0)
    # Give up if this is an overlay with external references.
    if not phandle_is_valid(phandle):
        return None
    node = get_node_by_phandle(ctx.dti.dt, phandle)
    if node is None:
        c.fail(ctx, endpoint, "graph phandle is not valid", prop)
    return node


def _graph_endpoint(c: Check, ctx: CheckContext, node: Node) -> None:
    if node.parent is None or node.parent.bus is not GRAPH_PORT_BUS:
        return
    _graph_reg(c, ctx, node)
    if ctx.dti.is_plugin:
        return
    if not _prefixeq(node.name, node.basenamelen, "endpoint"):
        c.fail(ctx, node, "graph endpoint node name should be 'endpoint'")
    remote = _remote_endpoint(c, ctx, node)
    if remote is None:
        return
    if _remote_endpoint(c, ctx, remote) is not node:
        c.fail(ctx, node,
               f"graph connection to node '{remote.fullpath}' is not "
               "bidirectional")


def _graph_child_address(c: Check, ctx: CheckContext, node: Node) -> None:
    if node.bus is not GRAPH_PORTS_BUS and node.bus is not GRAPH_PORT_BUS:
        return
    count = 0
    for child in node.children:
        prop = child.get_property("reg")
        # No error if any unit address is non-zero.
        if prop is not None and _cell(prop, 0) != 0:
            return
        count += 1
    if count == 1 and node.addr_cells != -1:
        c.fail(ctx, node,
               f"graph node has single child node '{node.children[0].name}', "
               "#address-cells/#size-cells are not necessary")


def build_bus_checks(base: dict[str, Check]) -> dict[str, Check]:
    """Create bus, addressing, chosen and graph checks, keyed by name.

    ``base`` supplies the structural checks these depend on.
    """
    addr_size_cells = base["addr_size_cells"]
    reg_format = base["reg_format"]

    pci_bridge = warning("pci_bridge", _pci_bridge, None,
                         base["device_type_is_string"], addr_size_cells)
    pci_device_reg = warning("pci_device_reg", _pci_device_reg, None,
                             reg_format, pci_bridge)
    pci_device_bus_num = warning("pci_device_bus_num", _pci_device_bus_num,
                                 None, reg_format, pci_bridge)
    simple_bus_bridge = warning("simple_bus_bridge", _simple_bus_bridge, None,
                                addr_size_cells,
                                base["compatible_is_string_list"])
    simple_bus_reg = warning("simple_bus_reg", _simple_bus_reg, None,
                             reg_format, simple_bus_bridge)
    i2c_bus_bridge = warning("i2c_bus_bridge", _i2c_bus_bridge, None,
                             addr_size_cells)
    i2c_bus_reg = warning("i2c_bus_reg", _i2c_bus_reg, None,
                          reg_format, i2c_bus_bridge)
    spi_bus_bridge = warning("spi_bus_bridge", _spi_bus_bridge, None,
                             addr_size_cells)
    spi_bus_reg = warning("spi_bus_reg", _spi_bus_reg, None,
                          reg_format, spi_bus_bridge)
    unit_address_format = warning("unit_address_format", _unit_address_format,
                                  None, base["node_name_format"], pci_bridge,
                                  simple_bus_bridge)
    avoid_default_addr_size = warning("avoid_default_addr_size",
                                      _avoid_default_addr_size, None,
                                      addr_size_cells)
    avoid_unnecessary_addr_size = warning("avoid_unnecessary_addr_size",
                                          _avoid_unnecessary_addr_size, None,
                                          avoid_default_addr_size)
    unique_unit_address = warning("unique_unit_address", _unique_unit_address,
                                  None, avoid_default_addr_size)
    unique_unit_address_if_enabled = check("unique_unit_address_if_enabled",
                                           _unique_unit_address_if_enabled,
                                           None, avoid_default_addr_size)
    obsolete_chosen_interrupt_controller = warning(
        "obsolete_chosen_interrupt_controller",
        _obsolete_chosen_interrupt_controller)
    chosen_node_is_root = warning("chosen_node_is_root", _chosen_node_is_root)
    chosen_node_bootargs = warning("chosen_node_bootargs",
                                   _chosen_node_bootargs)
    chosen_node_stdout_path = warning("chosen_node_stdout_path",
                                      _chosen_node_stdout_path)
    graph_nodes = warning("graph_nodes", _graph_nodes)
    graph_port = warning("graph_port", _graph_port, None, graph_nodes)
    graph_endpoint = warning("graph_endpoint", _graph_endpoint, None,
                             graph_nodes)
    graph_child_address = warning("graph_child_address", _graph_child_address,
                                  None, graph_nodes, graph_port,
                                  graph_endpoint)

    checks = [
        unit_address_format,
        pci_bridge, pci_device_reg, pci_device_bus_num,
        simple_bus_bridge, simple_bus_reg,
        i2c_bus_bridge, i2c_bus_reg,
        spi_bus_bridge, spi_bus_reg,
        avoid_default_addr_size, avoid_unnecessary_addr_size,
        unique_unit_address, unique_unit_address_if_enabled,
        obsolete_chosen_interrupt_controller,
        chosen_node_is_root, chosen_node_bootargs, chosen_node_stdout_path,
        graph_nodes, graph_child_address, graph_port, graph_endpoint,
    ]
    return {c.name: c for c in checks}