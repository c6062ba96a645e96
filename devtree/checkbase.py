"""The check framework: check objects, their state and shared check helpers."""

from __future__ import annotations

import enum
import sys
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, TextIO

from devtree.tree import DtInfo, Node, Property

_CELL_SIZE = 4


class CheckStatus(enum.Enum):
    """Progress of a single check."""

    UNCHECKED = 0
    PREREQ = 1
    PASSED = 2
    FAILED = 3


@dataclass
class CheckContext:
    """What a check run needs besides the checks: the tree and reporting."""

    dti: DtInfo
    quiet: int = 0
    stream: TextIO | None = None
    generate_symbols: bool = False

    def write(self, text: str) -> None:
        (self.stream if self.stream is not None else sys.stderr).write(text)


CheckFn = Callable[["Check", CheckContext, Node], None]


@dataclass(eq=False)
class Check:
    """A named check over every node of a tree, with prerequisites."""

    name: str
    fn: CheckFn | None = None
    data: Any = None
    warn: bool = False
    error: bool = False
    prereqs: list[Check] = field(default_factory=list)
    status: CheckStatus = CheckStatus.UNCHECKED
    inprogress: bool = False

    def _reports(self, ctx: CheckContext) -> bool:
        return (self.warn and ctx.quiet < 1) or (self.error and ctx.quiet < 2)

    def format_message(
        self,
        ctx: CheckContext,
        node: Node | None,
        prop: Property | None,
        message: str,
    ) -> str:
        """Build the diagnostic line(s) for a failure of this check."""
        pos: str | None = None
        if prop is not None and prop.srcpos:
            pos = prop.srcpos
        elif node is not None and node.srcpos:
            pos = node.srcpos[0]

        if pos:
            location = pos
        elif ctx.dti.outname == "-":
            location = "<stdout>"
        else:
            location = ctx.dti.outname

        level = "ERROR" if self.error else "Warning"
        parts = [f"{location}: {level} ({self.name}): "]
        if node is not None:
            if prop is not None:
                parts.append(f"{node.fullpath}:{prop.name}: ")
            else:
                parts.append(f"{node.fullpath}: ")
        parts.append(message)
        parts.append("\n")

        if prop is None and pos and node is not None:
            for extra in node.srcpos[1:]:
                parts.append(f"  also defined at {extra}\n")
        return "".join(parts)

    def _report(
        self,
        ctx: CheckContext,
        node: Node | None,
        prop: Property | None,
        message: str,
    ) -> None:
        if self._reports(ctx):
            ctx.write(self.format_message(ctx, node, prop, message))

    def fail(
        self,
        ctx: CheckContext,
        node: Node | None,
        message: str,
        prop: Property | None = None,
    ) -> None:
        """Mark the check as failed and report the failure."""
        self.status = CheckStatus.FAILED
        self._report(ctx, node, prop, message)

    def _visit(self, ctx: CheckContext, node: Node) -> None:
        if self.fn is not None:
            self.fn(self, ctx, node)
        for child in node.children:
            self._visit(ctx, child)

    def run(self, ctx: CheckContext) -> bool:
        """Run the check (and its prerequisites); True if an error resulted."""
        if self.inprogress:
            raise RuntimeError(f"check {self.name!r} depends on itself")

        error = False
        if self.status is CheckStatus.UNCHECKED:
            self.inprogress = True
            try:
                for prereq in self.prereqs:
                    error = error or prereq.run(ctx)
                    if prereq.status is not CheckStatus.PASSED:
                        self.status = CheckStatus.PREREQ
                        self._report(
                            ctx, None, None,
                            f"Failed prerequisite '{prereq.name}'",
                        )
                if self.status is CheckStatus.UNCHECKED:
                    self._visit(ctx, ctx.dti.dt)
                    if self.status is CheckStatus.UNCHECKED:
                        self.status = CheckStatus.PASSED
            finally:
                self.inprogress = False

        if self.status is not CheckStatus.PASSED and self.error:
            error = True
        return error

    def enable(self, warn: bool, error: bool) -> None:
        """Raise the reporting level, raising it for prerequisites too."""
        if (warn and not self.warn) or (error and not self.error):
            for prereq in self.prereqs:
                prereq.enable(warn, error)
        self.warn = self.warn or warn
        self.error = self.error or error

    def disable(self, warn: bool, error: bool, table: Iterable[Check]) -> None:
        """Lower the reporting level, lowering it for dependent checks too."""
        table = list(table)
        if (warn and self.warn) or (error and self.error):
            for other in table:
                if any(p is self for p in other.prereqs):
                    other.disable(warn, error, table)
        self.warn = self.warn and not warn
        self.error = self.error and not error


def is_multiple_of(multiple: int, divisor: int) -> bool:
    if divisor == 0:
        return multiple == 0
    return multiple % divisor == 0


def node_addr_cells(node: Node) -> int:
    """The node's #address-cells, or the default of 2."""
    return 2 if node.addr_cells == -1 else node.addr_cells


def node_size_cells(node: Node) -> int:
    """The node's #size-cells, or the default of 1."""
    return 1 if node.size_cells == -1 else node.size_cells


def check_is_string(check: Check, ctx: CheckContext, node: Node) -> None:
    """Fail if the property named by ``check.data`` is not one string."""
    prop = node.get_property(check.data)
    if prop is None:
        return
    if not prop.val.is_one_string():
        check.fail(ctx, node, "property is not a string", prop)


def check_is_string_list(check: Check, ctx: CheckContext, node: Node) -> None:
    """Fail if the property named by ``check.data`` is not a string list."""
    prop = node.get_property(check.data)
    if prop is None:
        return
    raw = bytes(prop.val.val)
    while raw:
        end = raw.find(b"\0")
        if end < 0:
            check.fail(ctx, node, "property is not a string list", prop)
            break
        raw = raw[end + 1:]


def check_is_cell(check: Check, ctx: CheckContext, node: Node) -> None:
    """Fail if the property named by ``check.data`` is not one cell."""
    prop = node.get_property(check.data)
    if prop is None:
        return
    if len(prop.val) != _CELL_SIZE:
        check.fail(ctx, node, "property is not a single cell", prop)


def _make(name: str, fn: CheckFn | None, data: Any, warn: bool, error: bool,
          prereqs: tuple[Check, ...]) -> Check:
    return Check(name=name, fn=fn, data=data, warn=warn, error=error,
                 prereqs=list(prereqs))


def warning(name: str, fn: CheckFn | None, data: Any = None, *args: Check) -> Check:
    """A check that reports warnings by default."""
    return _make(name, fn, data, True, False, args)


def error(name: str, fn: CheckFn | None, data: Any = None, *args: Check) -> Check:
    """A check that reports errors by default."""
    return _make(name, fn, data, False, True, args)


def check(name: str, fn: CheckFn | None, data: Any = None, *args: Check) -> Check:
    """A check that is silent unless enabled."""
    return _make(name, fn, data, False, False, args)