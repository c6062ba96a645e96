"""Checks for phandle-plus-arguments properties, GPIOs and interrupts."""

from __future__ import annotations

from dataclasses import dataclass

from devtree.checkbase import (
    Check,
    CheckContext,
    check,
    check_is_cell,
    is_multiple_of,
    node_addr_cells,
    warning,
)
from devtree.data import MarkerType
from devtree.tree import Node, Property, get_node_by_phandle, phandle_is_valid

_CELL_SIZE = 4


@dataclass(frozen=True)
class Provider:
    """A property that lists phandles, each followed by argument cells."""

    prop_name: str
    cell_name: str
    optional: bool = False


# (check name prefix, property name, cell-count property name, optional)
PHANDLE_PROVIDERS: tuple[tuple[str, str, str, bool], ...] = (
    ("clocks", "clocks", "#clock-cells", False),
    ("cooling_device", "cooling-device", "#cooling-cells", False),
    ("dmas", "dmas", "#dma-cells", False),
    ("hwlocks", "hwlocks", "#hwlock-cells", False),
    ("interrupts_extended", "interrupts-extended", "#interrupt-cells", False),
    ("io_channels", "io-channels", "#io-channel-cells", False),
    ("iommus", "iommus", "#iommu-cells", False),
    ("mboxes", "mboxes", "#mbox-cells", False),
    ("msi_parent", "msi-parent", "#msi-cells", True),
    ("mux_controls", "mux-controls", "#mux-control-cells", False),
    ("phys", "phys", "#phy-cells", False),
    ("power_domains", "power-domains", "#power-domain-cells", False),
    ("pwms", "pwms", "#pwm-cells", False),
    ("resets", "resets", "#reset-cells", False),
    ("sound_dai", "sound-dai", "#sound-dai-cells", False),
    ("thermal_sensors", "thermal-sensors", "#thermal-sensor-cells", False),
)


def _signed32(value: int) -> int:
    return value - (1 << 32) if value & 0x80000000 else value


def _property_phandle_args(c: Check, ctx: CheckContext, node: Node,
                           prop: Property, provider: Provider) -> None:
    root = ctx.dti.dt
    length = len(prop.val)
    if not is_multiple_of(length, _CELL_SIZE):
        c.fail(ctx, node,
               f"property size ({length}) is invalid, expected multiple of "
               f"{_CELL_SIZE}", prop)
        return

    ncells = length // _CELL_SIZE
    cell = 0
    while cell < ncells:
        phandle = prop.cell_n(cell)
        # A cell value of 0 or -1 may skip over an optional entry.
        if not phandle_is_valid(phandle):
            if ctx.dti.is_plugin:
                break
            cell += 1
            continue

        if prop.val.markers:
            refs = prop.val.markers_of_type(MarkerType.REF_PHANDLE)
            if not any(m.offset == cell * _CELL_SIZE for m in refs):
                c.fail(ctx, node, f"cell {cell} is not a phandle reference",
                       prop)

        provider_node = get_node_by_phandle(root, phandle)
        if provider_node is None:
            c.fail(ctx, node, f"Could not get phandle node for (cell {cell})",
                   prop)
            break

        cellprop = provider_node.get_property(provider.cell_name)
        if cellprop is not None:
            cellsize = cellprop.cell()
        elif provider.optional:
            cellsize = 0
        else:
            c.fail(ctx, node,
                   f"Missing property '{provider.cell_name}' in node "
                   f"{provider_node.fullpath} or bad phandle (referred from "
                   f"{prop.name}[{cell}])")
            break

        expected = (cell + cellsize + 1) * _CELL_SIZE
        if length < expected:
            c.fail(ctx, node,
                   f"property size ({length}) too small for cell size "
                   f"{cellsize}", prop)
            break
        cell += cellsize + 1


def _provider_cells_property(c: Check, ctx: CheckContext, node: Node) -> None:
    provider: Provider = c.data
    prop = node.get_property(provider.prop_name)
    if prop is None:
        return
    _property_phandle_args(c, ctx, node, prop, provider)


def prop_is_gpio(prop: Property) -> bool:
    """True if the property name marks it as a GPIO specifier list."""
    name = prop.name
    # One known property name looks like a GPIO list but is not.
    if name.endswith(",nr-gpios"):
        return False
    return (name.endswith("-gpios") or name == "gpios"
            or name.endswith("-gpio") or name == "gpio")


def _gpios_property(c: Check, ctx: CheckContext, node: Node) -> None:
    # GPIO hog nodes carry a 'gpios' property of a different shape.
    if node.get_property("gpio-hog") is not None:
        return
    for prop in node.properties:
        if not prop_is_gpio(prop):
            continue
        _property_phandle_args(c, ctx, node, prop,
                               Provider(prop.name, "#gpio-cells", False))


def _deprecated_gpio_property(c: Check, ctx: CheckContext, node: Node) -> None:
    for prop in node.properties:
        if not prop_is_gpio(prop) or not prop.name.endswith("gpio"):
            continue
        c.fail(ctx, node, "'[*-]gpio' is deprecated, use '[*-]gpios' instead",
               prop)


def node_is_interrupt_provider(node: Node) -> bool:
    """True if the node is an interrupt controller or has an interrupt map."""
    return (node.get_property("interrupt-controller") is not None
            or node.get_property("interrupt-map") is not None)


def _interrupt_provider(c: Check, ctx: CheckContext, node: Node) -> None:
    irq_provider = node_is_interrupt_provider(node)
    prop = node.get_property("#interrupt-cells")
    if irq_provider and prop is None:
        c.fail(ctx, node, "Missing '#interrupt-cells' in interrupt provider")
        return
    if not irq_provider and prop is not None:
        c.fail(ctx, node,
               "'#interrupt-cells' found, but node is not an interrupt provider")


def _interrupt_map(c: Check, ctx: CheckContext, node: Node) -> None:
    root = ctx.dti.dt
    irq_map_prop = node.get_property("interrupt-map")
    if irq_map_prop is None:
        return
    if node.addr_cells < 0:
        c.fail(ctx, node, "Missing '#address-cells' in interrupt-map provider")
        return
    irq_cells_prop = node.get_property("#interrupt-cells")
    if irq_cells_prop is None:
        # Reported by the interrupt_provider check.
        return
    cellsize = node_addr_cells(node) + irq_cells_prop.cell()

    mask = node.get_property("interrupt-map-mask")
    if mask is not None and len(mask.val) != cellsize * _CELL_SIZE:
        c.fail(ctx, node,
               f"property size ({len(mask.val)}) is invalid, expected "
               f"{cellsize * _CELL_SIZE}", mask)

    length = len(irq_map_prop.val)
    if not is_multiple_of(length, _CELL_SIZE):
        c.fail(ctx, node,
               f"property size ({length}) is invalid, expected multiple of "
               f"{_CELL_SIZE}", irq_map_prop)
        return

    map_cells = length // _CELL_SIZE
    cell = 0
    while cell < map_cells:
        if cell + cellsize >= map_cells:
            c.fail(ctx, node,
                   f"property size ({length}) too small, expected > "
                   f"{(cell + cellsize) * _CELL_SIZE}", irq_map_prop)
            break
        cell += cellsize

        phandle = irq_map_prop.cell_n(cell)
        if not phandle_is_valid(phandle):
            # Give up if this is an overlay with external references.
            if not ctx.dti.is_plugin:
                c.fail(ctx, node,
                       f"Cell {cell} is not a phandle({_signed32(phandle)})",
                       irq_map_prop)
            break

        provider_node = get_node_by_phandle(root, phandle)
        if provider_node is None:
            c.fail(ctx, node,
                   f"Could not get phandle({_signed32(phandle)}) node for "
                   f"(cell {cell})", irq_map_prop)
            break

        cellprop = provider_node.get_property("#interrupt-cells")
        if cellprop is None:
            c.fail(ctx, node,
                   "Missing property '#interrupt-cells' in node "
                   f"{provider_node.fullpath} or bad phandle (referred from "
                   f"interrupt-map[{cell}])")
            break
        parent_cellsize = cellprop.cell()

        cellprop = provider_node.get_property("#address-cells")
        if cellprop is not None:
            parent_cellsize += cellprop.cell()
        else:
            c.fail(ctx, node,
                   "Missing property '#address-cells' in node "
                   f"{provider_node.fullpath}, using 0 as fallback",
                   irq_map_prop)

        cell += 1 + parent_cellsize
        if cell > map_cells:
            c.fail(ctx, node,
                   f"property size ({length}) mismatch, expected "
                   f"{cell * _CELL_SIZE}", irq_map_prop)


def _interrupts_property(c: Check, ctx: CheckContext, node: Node) -> None:
    root = ctx.dti.dt
    irq_prop = node.get_property("interrupts")
    if irq_prop is None:
        return
    if not is_multiple_of(len(irq_prop.val), _CELL_SIZE):
        c.fail(ctx, node,
               f"size ({len(irq_prop.val)}) is invalid, expected multiple of "
               f"{_CELL_SIZE}", irq_prop)

    irq_node: Node | None = None
    parent: Node | None = node
    while parent is not None:
        if parent is not node and node_is_interrupt_provider(parent):
            irq_node = parent
            break
        prop = parent.get_property("interrupt-parent")
        if prop is not None:
            phandle = prop.cell()
            if not phandle_is_valid(phandle):
                # Give up if this is an overlay with external references.
                if ctx.dti.is_plugin:
                    return
                c.fail(ctx, parent, "Invalid phandle", prop)
                break
            irq_node = get_node_by_phandle(root, phandle)
            if irq_node is None:
                c.fail(ctx, parent, "Bad phandle", prop)
                return
            if not node_is_interrupt_provider(irq_node):
                c.fail(ctx, irq_node,
                       "Missing interrupt-controller or interrupt-map property")
            break
        parent = parent.parent

    if irq_node is None:
        c.fail(ctx, node, "Missing interrupt-parent")
        return

    prop = irq_node.get_property("#interrupt-cells")
    if prop is None:
        # Reported by the interrupt_provider check.
        return
    irq_cells = prop.cell()
    if not is_multiple_of(len(irq_prop.val), irq_cells * _CELL_SIZE):
        c.fail(ctx, node,
               f"size is ({len(irq_prop.val)}), expected multiple of "
               f"{irq_cells * _CELL_SIZE}", prop)


def build_provider_checks(base: dict[str, Check]) -> dict[str, Check]:
    """Create phandle-argument, GPIO and interrupt checks, keyed by name.

    ``base`` supplies the checks these depend on.
    """
    phandle_references = base["phandle_references"]
    addr_size_cells = base["addr_size_cells"]

    result: dict[str, Check] = {}
    for prefix, prop_name, cell_name, optional in PHANDLE_PROVIDERS:
        is_cell = warning(f"{prefix}_is_cell", check_is_cell, cell_name)
        prop_check = warning(f"{prefix}_property", _provider_cells_property,
                             Provider(prop_name, cell_name, optional),
                             is_cell, phandle_references)
        result[prop_check.name] = prop_check
        result[is_cell.name] = is_cell

    deprecated_gpio_property = check("deprecated_gpio_property",
                                     _deprecated_gpio_property)
    gpios_property = warning("gpios_property", _gpios_property, None,
                             phandle_references)
    interrupts_property = warning("interrupts_property", _interrupts_property,
                                  phandle_references)
    interrupt_provider = warning("interrupt_provider", _interrupt_provider,
                                 None, result["interrupts_extended_is_cell"])
    interrupt_map = warning("interrupt_map", _interrupt_map, None,
                            phandle_references, addr_size_cells,
                            interrupt_provider)

    for c in (deprecated_gpio_property, gpios_property, interrupts_property,
              interrupt_provider, interrupt_map):
        result[c.name] = c
    return result