import io

import pytest

from devtree.checkbase import CheckContext, CheckStatus
from devtree.checks_bus import build_bus_checks
from devtree.checks_provider import (
    build_provider_checks,
    node_is_interrupt_provider,
    prop_is_gpio,
)
from devtree.checks_structure import build_structure_checks
from devtree.data import Data, MarkerType
from devtree.tree import DTSF_V1, DtInfo, Node, Property


def cells(*values):
    data = Data()
    for value in values:
        data.append_cell(value)
    return data


def all_checks():
    base = build_structure_checks()
    base.update(build_bus_checks(base))
    base.update(build_provider_checks(base))
    return base


def run_check(root, name, dtsflags=DTSF_V1):
    checks = all_checks()
    stream = io.StringIO()
    ctx = CheckContext(DtInfo(root, dtsflags=dtsflags), stream=stream)
    checks["phandle_references"].run(ctx)
    c = checks[name]
    c.run(ctx)
    return c, stream.getvalue()


@pytest.mark.parametrize("name,expected", [
    ("reset-gpios", True),
    ("gpios", True),
    ("enable-gpio", True),
    ("gpio", True),
    ("vendor,nr-gpios", False),
    ("clocks", False),
])
def test_prop_is_gpio(name, expected):
    assert prop_is_gpio(Property(name)) is expected


def test_node_is_interrupt_provider():
    assert node_is_interrupt_provider(
        Node("intc", proplist=[Property("interrupt-controller")]))
    assert node_is_interrupt_provider(
        Node("bridge", proplist=[Property("interrupt-map", cells(1))]))
    assert not node_is_interrupt_provider(Node("dev"))


def test_build_provider_checks_names():
    checks = all_checks()
    provider = build_provider_checks(checks)
    assert "clocks_property" in provider
    assert "thermal_sensors_is_cell" in provider
    assert provider["clocks_property"].prereqs[1] is checks["phandle_references"]


def clock_tree(consumer_value, with_cells=True):
    props = [Property("phandle", cells(1))]
    if with_cells:
        props.append(Property("#clock-cells", cells(1)))
    clk = Node("clk", proplist=props)
    dev = Node("dev", proplist=[Property("clocks", consumer_value)])
    return Node("", childlist=[clk, dev])


def test_clocks_valid():
    c, out = run_check(clock_tree(cells(1, 5)), "clocks_property")
    assert c.status is CheckStatus.PASSED
    assert out == ""


def test_clocks_too_small():
    c, out = run_check(clock_tree(cells(1)), "clocks_property")
    assert c.status is CheckStatus.FAILED
    assert "too small for cell size" in out


def test_clocks_missing_cells_property():
    c, out = run_check(clock_tree(cells(1, 5), with_cells=False),
                       "clocks_property")
    assert c.status is CheckStatus.FAILED
    assert "Missing property '#clock-cells' in node /clk" in out


def test_clocks_unknown_phandle():
    c, out = run_check(clock_tree(cells(7)), "clocks_property")
    assert "Could not get phandle node for (cell 0)" in out


def test_clocks_bad_length():
    c, out = run_check(clock_tree(Data(b"\x00\x00\x01")), "clocks_property")
    assert c.status is CheckStatus.FAILED
    assert "expected multiple of 4" in out


def test_clocks_zero_phandle_skipped():
    c, _ = run_check(clock_tree(cells(0)), "clocks_property")
    assert c.status is CheckStatus.PASSED


def test_clocks_cell_not_reference():
    value = Data().add_marker(MarkerType.TYPE_UINT32).append_cell(1).append_cell(5)
    c, out = run_check(clock_tree(value), "clocks_property")
    assert "cell 0 is not a phandle reference" in out


def test_clocks_reference_resolved():
    clk = Node("clk", labels=["clk0"],
               proplist=[Property("#clock-cells", cells(0))])
    value = Data().add_marker(MarkerType.REF_PHANDLE, "clk0").append_cell(0)
    dev = Node("dev", proplist=[Property("clocks", value)])
    root = Node("", childlist=[clk, dev])
    c, _ = run_check(root, "clocks_property")
    assert c.status is CheckStatus.PASSED
    assert bytes(value) == clk.phandle.to_bytes(4, "big")
    assert clk.is_referenced


def test_msi_parent_optional_cells():
    prov = Node("msi", proplist=[Property("phandle", cells(1))])
    dev = Node("dev", proplist=[Property("msi-parent", cells(1))])
    c, _ = run_check(Node("", childlist=[prov, dev]), "msi_parent_property")
    assert c.status is CheckStatus.PASSED


def test_gpio_hog_skipped():
    hog = Node("hog", proplist=[Property("gpio-hog"),
                                Property("gpios", cells(9))])
    c, _ = run_check(Node("", childlist=[hog]), "gpios_property")
    assert c.status is CheckStatus.PASSED


def test_gpios_missing_cells():
    gpio = Node("gpio", proplist=[Property("phandle", cells(1))])
    dev = Node("dev", proplist=[Property("reset-gpios", cells(1, 0))])
    c, out = run_check(Node("", childlist=[gpio, dev]), "gpios_property")
    assert "Missing property '#gpio-cells'" in out


def test_deprecated_gpio_property():
    dev = Node("dev", proplist=[Property("enable-gpio", cells(0))])
    c, out = run_check(Node("", childlist=[dev]), "deprecated_gpio_property")
    assert c.status is CheckStatus.FAILED
    assert out == ""


def test_interrupt_provider_missing_cells():
    intc = Node("intc", proplist=[Property("interrupt-controller")])
    c, out = run_check(Node("", childlist=[intc]), "interrupt_provider")
    assert "Missing '#interrupt-cells' in interrupt provider" in out


def test_interrupt_cells_without_provider():
    dev = Node("dev", proplist=[Property("#interrupt-cells", cells(1))])
    c, out = run_check(Node("", childlist=[dev]), "interrupt_provider")
    assert "found, but node is not an interrupt provider" in out


def intc_tree(interrupts):
    dev = Node("dev", proplist=[Property("interrupts", interrupts)])
    intc = Node("intc", proplist=[Property("interrupt-controller"),
                                  Property("#interrupt-cells", cells(2))],
                childlist=[dev])
    return Node("", childlist=[intc])


def test_interrupts_property_ok():
    c, _ = run_check(intc_tree(cells(1, 2)), "interrupts_property")
    assert c.status is CheckStatus.PASSED


def test_interrupts_property_wrong_size():
    c, out = run_check(intc_tree(cells(1, 2, 3)), "interrupts_property")
    assert c.status is CheckStatus.FAILED
    assert "expected multiple of" in out


def test_interrupts_missing_parent():
    dev = Node("dev", proplist=[Property("interrupts", cells(1))])
    c, out = run_check(Node("", childlist=[dev]), "interrupts_property")
    assert "Missing interrupt-parent" in out


def test_interrupts_bad_parent_phandle():
    dev = Node("dev", proplist=[Property("interrupts", cells(1)),
                                Property("interrupt-parent", cells(9))])
    c, out = run_check(Node("", childlist=[dev]), "interrupts_property")
    assert "Bad phandle" in out


def map_tree(mapping, bridge_addr_cells=True):
    intc = Node("intc", proplist=[Property("phandle", cells(1)),
                                  Property("interrupt-controller"),
                                  Property("#interrupt-cells", cells(1)),
                                  Property("#address-cells", cells(0))])
    props = [Property("#interrupt-cells", cells(1)),
             Property("interrupt-map", mapping)]
    if bridge_addr_cells:
        props.insert(0, Property("#address-cells", cells(0)))
    bridge = Node("bridge", proplist=props)
    return Node("", childlist=[intc, bridge])


def test_interrupt_map_ok():
    c, out = run_check(map_tree(cells(5, 1, 7)), "interrupt_map")
    assert c.status is CheckStatus.PASSED
    assert out == ""


def test_interrupt_map_mismatch():
    c, out = run_check(map_tree(cells(5, 1)), "interrupt_map")
    assert "mismatch" in out


def test_interrupt_map_missing_address_cells():
    c, out = run_check(map_tree(cells(5, 1, 7), bridge_addr_cells=False),
                       "interrupt_map")
    assert "Missing '#address-cells' in interrupt-map provider" in out