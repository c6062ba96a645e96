import io

from devtree.checkbase import CheckContext, CheckStatus
from devtree.checks_structure import build_structure_checks
from devtree.data import Data, MarkerType
from devtree.tree import DTSF_PLUGIN, DTSF_V1, DtInfo, Node, Property, phandle_is_valid


def cells(*values):
    data = Data()
    for value in values:
        data.append_cell(value)
    return data


def string(text):
    return Data.from_bytes(text.encode() + b"\0")


def run(name, root, dtsflags=DTSF_V1, generate_symbols=False):
    checks = build_structure_checks()
    c = checks[name]
    if not (c.warn or c.error):
        c.enable(True, False)
    out = io.StringIO()
    ctx = CheckContext(DtInfo(root, dtsflags=dtsflags), stream=out,
                       generate_symbols=generate_symbols)
    c.run(ctx)
    return c, out.getvalue()


def test_all_names_present():
    checks = build_structure_checks()
    assert "duplicate_node_names" in checks
    assert "reg_format" in checks
    assert all(name == c.name for name, c in checks.items())


def test_clean_tree_passes():
    root = Node("")
    root.add_child(Node("cpus"))
    for name in build_structure_checks():
        if name == "always_fail":
            continue
        c, out = run(name, root)
        assert c.status is CheckStatus.PASSED, name
        assert out == ""


def test_duplicate_node_names():
    root = Node("")
    root.add_child(Node("a"))
    root.add_child(Node("a"))
    c, out = run("duplicate_node_names", root)
    assert c.status is CheckStatus.FAILED
    assert "/a: Duplicate node name" in out


def test_duplicate_property_names():
    root = Node("")
    root.add_property(Property("p", cells(1)))
    root.add_property(Property("p", cells(2)))
    c, out = run("duplicate_property_names", root)
    assert c.status is CheckStatus.FAILED
    assert "Duplicate property name" in out


def test_node_name_chars():
    root = Node("")
    root.add_child(Node("a$b"))
    c, out = run("node_name_chars", root)
    assert c.status is CheckStatus.FAILED
    assert "Bad character '$' in node name" in out


def test_node_name_format():
    root = Node("")
    root.add_child(Node("a@1@2"))
    c, out = run("node_name_format", root)
    assert c.status is CheckStatus.FAILED
    assert "multiple '@' characters in node name" in out


def test_node_name_vs_property_name():
    root = Node("")
    root.add_property(Property("foo", cells(1)))
    root.add_child(Node("foo"))
    c, out = run("node_name_vs_property_name", root)
    assert c.status is CheckStatus.FAILED
    assert "node name and property name conflict" in out


def test_unit_address_vs_reg():
    root = Node("")
    root.add_child(Node("a@1"))
    c, out = run("unit_address_vs_reg", root)
    assert "node has a unit name, but no reg or ranges property" in out

    root = Node("")
    node = root.add_child(Node("b"))
    node.add_property(Property("reg", cells(1)))
    c, out = run("unit_address_vs_reg", root)
    assert "node has a reg or ranges property, but no unit name" in out

    root = Node("")
    node = root.add_child(Node("c@1"))
    node.add_property(Property("reg", cells(1)))
    c, _ = run("unit_address_vs_reg", root)
    assert c.status is CheckStatus.PASSED


def test_property_name_chars_strict():
    root = Node("")
    root.add_property(Property("#address-cells", cells(1)))
    root.add_property(Property("vendor,#foo", cells(1)))
    root.add_property(Property("device_type", string("cpu")))
    c, _ = run("property_name_chars_strict", root)
    assert c.status is CheckStatus.PASSED

    root = Node("")
    root.add_property(Property("foo_bar", cells(1)))
    c, out = run("property_name_chars_strict", root)
    assert c.status is CheckStatus.FAILED
    assert "Character '_' not recommended in property name" in out


def test_node_name_chars_strict():
    root = Node("")
    root.add_child(Node("my_node"))
    c, out = run("node_name_chars_strict", root)
    assert "Character '_' not recommended in node name" in out


def test_duplicate_label():
    root = Node("")
    root.add_child(Node("a", labels=["x"]))
    root.add_child(Node("b", labels=["x"]))
    c, out = run("duplicate_label", root)
    assert c.status is CheckStatus.FAILED
    assert "Duplicate label 'x' on /b and /a" in out


def test_explicit_phandles():
    root = Node("")
    a = root.add_child(Node("a"))
    a.add_property(Property("phandle", cells(7)))
    c, _ = run("explicit_phandles", root)
    assert c.status is CheckStatus.PASSED
    assert a.phandle == 7

    root = Node("")
    for name in ("a", "b"):
        root.add_child(Node(name)).add_property(Property("phandle", cells(7)))
    c, out = run("explicit_phandles", root)
    assert "duplicated phandle 0x7 (seen before at /a)" in out


def test_explicit_phandle_bad_value():
    root = Node("")
    root.add_child(Node("a")).add_property(Property("phandle", cells(0)))
    c, out = run("explicit_phandles", root)
    assert "bad value (0x0) in phandle property" in out


def test_name_properties():
    root = Node("")
    dev = root.add_child(Node("dev@1"))
    dev.add_property(Property("name", string("dev")))
    c, _ = run("name_properties", root)
    assert c.status is CheckStatus.PASSED
    assert dev.get_property("name") is None

    root = Node("")
    dev = root.add_child(Node("dev"))
    dev.add_property(Property("name", string("other")))
    c, out = run("name_properties", root)
    assert c.status is CheckStatus.FAILED
    assert '"name" property is incorrect ("other" instead of base node name)' in out


def test_phandle_references_resolve():
    root = Node("")
    target = root.add_child(Node("tgt", labels=["tgt"]))
    user = root.add_child(Node("user"))
    ref = Data().add_marker(MarkerType.REF_PHANDLE, "tgt").append_cell(0)
    prop = user.add_property(Property("link", ref))
    c, _ = run("phandle_references", root)
    assert c.status is CheckStatus.PASSED
    assert phandle_is_valid(target.phandle)
    assert prop.cell() == target.phandle
    assert target.is_referenced
    assert target.get_property("phandle").cell() == target.phandle


def test_phandle_references_missing():
    def tree():
        root = Node("")
        user = root.add_child(Node("user"))
        ref = Data().add_marker(MarkerType.REF_PHANDLE, "nope").append_cell(0)
        return root, user.add_property(Property("link", ref))

    root, _ = tree()
    c, out = run("phandle_references", root)
    assert c.status is CheckStatus.FAILED
    assert 'Reference to non-existent node or label "nope"' in out

    root, prop = tree()
    c, _ = run("phandle_references", root, dtsflags=DTSF_V1 | DTSF_PLUGIN)
    assert c.status is CheckStatus.PASSED
    assert prop.cell() == 0xFFFFFFFF


def test_path_references():
    root = Node("")
    target = root.add_child(Node("tgt"))
    user = root.add_child(Node("user"))
    prop = user.add_property(
        Property("path", Data().add_marker(MarkerType.REF_PATH, "/tgt")))
    c, _ = run("path_references", root)
    assert c.status is CheckStatus.PASSED
    assert bytes(prop.val) == target.fullpath.encode() + b"\0"
    assert target.is_referenced


def test_omit_unused_nodes():
    root = Node("")
    unused = root.add_child(Node("x", omit_if_unused=True))
    kept = root.add_child(Node("y", omit_if_unused=True, is_referenced=True))
    run("omit_unused_nodes", root)
    assert unused.deleted
    assert root.children == [kept]


def test_omit_unused_kept_with_symbols():
    root = Node("")
    labelled = root.add_child(Node("x", omit_if_unused=True, labels=["l"]))
    run("omit_unused_nodes", root, generate_symbols=True)
    assert not labelled.deleted


def test_addr_size_cells_fixup():
    root = Node("")
    root.add_property(Property("#address-cells", cells(1)))
    root.add_property(Property("#size-cells", cells(0)))
    child = root.add_child(Node("c"))
    c, _ = run("addr_size_cells", root)
    assert (root.addr_cells, root.size_cells) == (1, 0)
    assert (child.addr_cells, child.size_cells) == (-1, -1)


def test_addr_size_cells_prereq_fails():
    root = Node("")
    root.add_property(Property("#address-cells", Data.from_bytes(bytes(8))))
    c, out = run("addr_size_cells", root)
    assert c.status is CheckStatus.PREREQ
    assert "Failed prerequisite 'address_cells_is_cell'" in out


def test_reg_format():
    root = Node("")
    root.add_property(Property("#address-cells", cells(1)))
    root.add_property(Property("#size-cells", cells(1)))
    dev = root.add_child(Node("dev@0"))
    dev.add_property(Property("reg", cells(0, 1, 2)))
    c, out = run("reg_format", root)
    assert c.status is CheckStatus.FAILED
    assert "property has invalid length (12 bytes)" in out

    root = Node("")
    root.add_property(Property("reg", cells(0)))
    c, out = run("reg_format", root)
    assert 'Root node has a "reg" property' in out


def test_ranges_format():
    root = Node("")
    root.add_property(Property("#address-cells", cells(2)))
    bus = root.add_child(Node("bus"))
    bus.add_property(Property("#address-cells", cells(1)))
    bus.add_property(Property("ranges", Data()))
    c, out = run("ranges_format", root)
    assert c.status is CheckStatus.FAILED
    assert 'empty "ranges" property but its #address-cells' in out

    c, _ = run("dma_ranges_format", root)
    assert c.status is CheckStatus.PASSED


def test_alias_paths():
    root = Node("")
    root.add_child(Node("tgt"))
    aliases = root.add_child(Node("aliases"))
    aliases.add_property(Property("serial0", string("/tgt")))
    c, _ = run("alias_paths", root)
    assert c.status is CheckStatus.PASSED

    aliases.add_property(Property("bad", string("/missing")))
    c, out = run("alias_paths", root)
    assert "aliases property is not a valid node (/missing)" in out

    root = Node("")
    root.add_child(Node("tgt"))
    aliases = root.add_child(Node("aliases"))
    aliases.add_property(Property("Serial", string("/tgt")))
    c, out = run("alias_paths", root)
    assert "aliases property name must include only lowercase and '-'" in out


def test_names_is_string_list():
    root = Node("")
    root.add_property(Property("clock-names", Data.from_bytes(b"a\0b")))
    c, out = run("names_is_string_list", root)
    assert c.status is CheckStatus.FAILED
    assert "/:clock-names: property is not a string list" in out


def test_always_fail():
    c, out = run("always_fail", Node(""))
    assert c.status is CheckStatus.FAILED
    assert "always_fail check" in out