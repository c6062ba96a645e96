"""The full table of tree checks and the driver that runs them."""

from __future__ import annotations

from typing import TextIO

from devtree.checkbase import Check, CheckContext, CheckStatus
from devtree.checks_bus import build_bus_checks
from devtree.checks_provider import PHANDLE_PROVIDERS, build_provider_checks
from devtree.checks_structure import build_structure_checks
from devtree.tree import DtInfo


class InputTreeError(Exception):
    """The tree failed error-level checks and output was not forced."""

    exit_code = 2


class CheckOptionError(ValueError):
    """A check option named no known check."""


def _table_order() -> list[str]:
    names = [
        "duplicate_node_names", "duplicate_property_names",
        "node_name_chars", "node_name_format", "property_name_chars",
        "name_is_string", "name_properties", "node_name_vs_property_name",
        "duplicate_label",
        "explicit_phandles",
        "phandle_references", "path_references",
        "omit_unused_nodes",
        "address_cells_is_cell", "size_cells_is_cell",
        "device_type_is_string", "model_is_string", "status_is_string",
        "label_is_string",
        "compatible_is_string_list", "names_is_string_list",
        "property_name_chars_strict",
        "node_name_chars_strict",
        "addr_size_cells", "reg_format", "ranges_format", "dma_ranges_format",
        "unit_address_vs_reg",
        "unit_address_format",
        "pci_bridge", "pci_device_reg", "pci_device_bus_num",
        "simple_bus_bridge", "simple_bus_reg",
        "i2c_bus_bridge", "i2c_bus_reg",
        "spi_bus_bridge", "spi_bus_reg",
        "avoid_default_addr_size", "avoid_unnecessary_addr_size",
        "unique_unit_address", "unique_unit_address_if_enabled",
        "obsolete_chosen_interrupt_controller",
        "chosen_node_is_root", "chosen_node_bootargs",
        "chosen_node_stdout_path",
    ]
    for prefix, _, _, _ in PHANDLE_PROVIDERS:
        names += [f"{prefix}_property", f"{prefix}_is_cell"]
    names += [
        "deprecated_gpio_property", "gpios_property", "interrupts_property",
        "interrupt_provider", "interrupt_map",
        "alias_paths",
        "graph_nodes", "graph_child_address", "graph_port", "graph_endpoint",
        "always_fail",
    ]
    return names


class CheckSuite:
    """A fresh set of all checks, in the order they are run."""

    def __init__(self, generate_symbols: bool = False) -> None:
        self.generate_symbols = generate_symbols
        every = build_structure_checks()
        every.update(build_bus_checks(every))
        every.update(build_provider_checks(every))
        self.checks: list[Check] = [every[name] for name in _table_order()]
        self._by_name = {c.name: c for c in self.checks}

    def __iter__(self):
        return iter(self.checks)

    def get(self, name: str) -> Check:
        """The check with the given name; KeyError if there is none."""
        return self._by_name[name]

    def parse_option(self, warn: bool, error: bool, arg: str) -> None:
        """Enable a check, or disable it with a 'no-'/'no_' prefix."""
        name = arg
        enable = True
        if arg.startswith(("no-", "no_")):
            name = arg[3:]
            enable = False
        c = self._by_name.get(name)
        if c is None:
            raise CheckOptionError(f'Unrecognized check name "{name}"')
        if enable:
            c.enable(warn, error)
        else:
            c.disable(warn, error, self.checks)

    def process(self, dti: DtInfo, force: bool = False, quiet: int = 0,
                stream: TextIO | None = None) -> bool:
        """Run every enabled check; True if any error-level check failed.

        Raises InputTreeError on errors unless ``force`` is set.
        """
        ctx = CheckContext(dti, quiet=quiet, stream=stream,
                           generate_symbols=self.generate_symbols)
        for c in self.checks:
            c.status = CheckStatus.UNCHECKED
            c.inprogress = False

        error = False
        for c in self.checks:
            if c.warn or c.error:
                error = error or c.run(ctx)

        if error:
            if not force:
                raise InputTreeError(
                    "ERROR: Input tree has errors, aborting "
                    "(use -f to force output)")
            if quiet < 3:
                ctx.write("Warning: Input tree has errors, output forced\n")
        return error