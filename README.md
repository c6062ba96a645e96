# devtree

An in-memory model of a device tree, with the semantic checks that catch
mistakes in it: bad names, duplicate labels and phandles, dangling
references, malformed `reg`/`ranges`, bus addressing errors, bad
phandle-argument lists, interrupt wiring and graph endpoints.

## Modules

- `devtree.data`: `Data`, a byte buffer for a property value that also
  carries an ordered list of `Marker` objects (a `MarkerType` plus an
  offset and an optional reference string). Its `append_*` methods
  (`append_data`, `append_integer`, `append_cell`, `append_addr`,
  `append_byte`, `append_re`, `append_zeroes`, `append_align`) and
  `insert_at_marker`, `insert_data`, `merge` and `add_marker` change the
  value in place and return it, so calls can be chained. Integers are
  written big-endian; `append_integer` accepts widths of 8, 16, 32 and 64
  bits and raises `ValueError` for others. `Data.from_bytes` and
  `Data.from_file` build new values; `is_one_string` and
  `markers_of_type` inspect them.
- `devtree.tree`: `Node`, `Property` and `DtInfo`. Nodes keep their
  `fullpath` up to date as children are added; `Node.delete` marks a
  subtree deleted, and deleted nodes and properties drop out of
  `children`, `properties` and `walk`. Lookup helpers:
  `get_node_by_path`, `get_node_by_label`, `get_property_by_label`,
  `get_marker_label`, `get_node_by_phandle`, `get_node_by_ref` (`/` for
  the root, `/...` for a path, anything else a label), and
  `get_node_phandle`, which allocates the lowest unused phandle and adds
  a `phandle` property when a node has none.
- `devtree.checkbase`: `Check`, `CheckStatus` and `CheckContext`, the
  framework each check is built on, with the helpers `warning`, `error`
  and `check` that create a check at a default level.
- `devtree.checks_structure`, `devtree.checks_bus`,
  `devtree.checks_provider`: the check definitions, grouped by topic.
- `devtree.checks`: `CheckSuite`, the full table of checks in the order
  they run, plus `InputTreeError` and `CheckOptionError`.

## Example

```python
from devtree.data import Data
from devtree.tree import DtInfo, Node, Property
from devtree.checks import CheckSuite, InputTreeError

root = Node("")
cpus = Node("cpus")
root.add_child(cpus)
cpus.add_property(Property("#address-cells", Data().append_cell(1)))
cpus.add_property(Property("#size-cells", Data().append_cell(0)))

cpu = Node("cpu@0")
cpu.add_property(Property("reg", Data().append_cell(0)))
cpus.add_child(cpu)

suite = CheckSuite()
suite.parse_option(True, False, "no-unit_address_vs_reg")

try:
    had_errors = suite.process(DtInfo(root), force=False, quiet=0)
except InputTreeError as exc:
    print("tree has errors:", exc)
```

## Running checks

`CheckSuite.parse_option(warn, error, name)` raises a check to the given
level, and its prerequisites with it. A `no-` or `no_` prefix lowers the
check instead, along with every check that depends on it. An unknown
name raises `CheckOptionError`. `CheckSuite.get(name)` returns a single
check.

`CheckSuite.process(dti, force=False, quiet=0, stream=None)` resets every
check and runs those enabled as warnings or errors. Diagnostics go to
`stream` (standard error by default): `quiet` of 1 or more hides
warnings, 2 or more hides errors. It returns `True` if an error-level
check failed; in that case it raises `InputTreeError` (with
`exit_code = 2`) unless `force` is true, and when forced it writes a
notice unless `quiet` is 3 or more.

Fix-up checks change the tree as they run: `phandle_references` fills in
phandle cells, `path_references` inserts node paths, `explicit_phandles`
records phandles on nodes, `name_properties` removes a redundant `name`
property, and `omit_unused_nodes` deletes unreferenced nodes marked
`omit_if_unused` (labelled nodes are kept when the suite is created with
`generate_symbols=True`).

## What this package does not do

It has no parser for device tree source text and does not read or write
flattened tree blobs; trees are built in Python from `Node`, `Property`
and `Data`. There is no command-line tool.

## Running the tests

```
pip install ".[test]"
pytest
```