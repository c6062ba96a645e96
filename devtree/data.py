"""Property values: byte strings annotated with typed markers."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import BinaryIO, Iterator


class MarkerType(enum.Enum):
    """Kinds of annotation that can be attached to an offset in a value."""

    TYPE_NONE = enum.auto()
    REF_PHANDLE = enum.auto()
    REF_PATH = enum.auto()
    LABEL = enum.auto()
    TYPE_UINT8 = enum.auto()
    TYPE_UINT16 = enum.auto()
    TYPE_UINT32 = enum.auto()
    TYPE_UINT64 = enum.auto()
    TYPE_STRING = enum.auto()


@dataclass
class Marker:
    """An annotation at a byte offset inside a value."""

    offset: int
    type: MarkerType
    ref: str | None = None


_INTEGER_WIDTHS = (8, 16, 32, 64)


@dataclass
class Data:
    """A property value: raw bytes plus an ordered list of markers.

    The ``append_*`` and ``insert_*`` methods modify the value in place
    and return it, so calls can be chained.
    """

    val: bytearray = field(default_factory=bytearray)
    markers: list[Marker] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.val = bytearray(self.val)

    def __len__(self) -> int:
        return len(self.val)

    def __bytes__(self) -> bytes:
        return bytes(self.val)

    @classmethod
    def from_bytes(cls, mem: bytes) -> Data:
        """Create a value holding a copy of ``mem``."""
        return cls(bytearray(mem))

    @classmethod
    def from_file(cls, f: BinaryIO, maxlen: int | None = None) -> Data:
        """Read a binary stream (at most ``maxlen`` bytes) into a new value."""
        data = cls()
        data.add_marker(MarkerType.TYPE_NONE)
        if maxlen is None or maxlen < 0:
            content = f.read()
        else:
            content = f.read(maxlen)
        data.val.extend(content)
        return data

    def _marker_index(self, marker: Marker) -> int:
        for index, candidate in enumerate(self.markers):
            if candidate is marker:
                return index
        raise ValueError("marker does not belong to this value")

    def append_data(self, p: bytes) -> Data:
        self.val.extend(p)
        return self

    def insert_at_marker(self, marker: Marker, p: bytes) -> Data:
        """Insert ``p`` at the marker's offset, shifting later markers."""
        index = self._marker_index(marker)
        offset = marker.offset
        self.val[offset:offset] = p
        for later in self.markers[index + 1:]:
            later.offset += len(p)
        return self

    def merge(self, other: Data) -> Data:
        """Append another value, bytes and markers alike."""
        base = len(self.val)
        self.val.extend(other.val)
        self.markers.extend(
            Marker(m.offset + base, m.type, m.ref) for m in other.markers
        )
        return self

    def append_integer(self, value: int, bits: int) -> Data:
        """Append ``value`` big-endian, truncated to ``bits`` bits."""
        if bits not in _INTEGER_WIDTHS:
            raise ValueError(f"Invalid literal size ({bits})")
        mask = (1 << bits) - 1
        self.val.extend((value & mask).to_bytes(bits // 8, "big"))
        return self

    def append_re(self, address: int, size: int) -> Data:
        """Append a memory reservation entry (two 64-bit words)."""
        return self.append_integer(address, 64).append_integer(size, 64)

    def append_cell(self, word: int) -> Data:
        return self.append_integer(word, 32)

    def append_addr(self, addr: int) -> Data:
        return self.append_integer(addr, 64)

    def append_byte(self, byte: int) -> Data:
        return self.append_integer(byte, 8)

    def append_zeroes(self, length: int) -> Data:
        self.val.extend(bytes(length))
        return self

    def append_align(self, align: int) -> Data:
        """Pad with zeroes up to a multiple of ``align`` (a power of two)."""
        newlen = (len(self.val) + align - 1) & ~(align - 1)
        return self.append_zeroes(newlen - len(self.val))

    def add_marker(self, type: MarkerType, ref: str | None = None) -> Data:
        """Append a marker at the current end of the value."""
        self.markers.append(Marker(len(self.val), type, ref))
        return self

    def is_one_string(self) -> bool:
        """True if the value is exactly one NUL-terminated string."""
        if not self.val:
            return False
        return self.val[-1] == 0 and 0 not in self.val[:-1]

    def insert_data(self, marker: Marker, old: Data) -> Data:
        """Insert another value at a marker, copying its markers after it."""
        index = self._marker_index(marker)
        offset = marker.offset
        self.insert_at_marker(marker, old.val)
        self.markers[index + 1:index + 1] = [
            Marker(m.offset + offset, m.type, m.ref) for m in old.markers
        ]
        return self

    def markers_of_type(self, type: MarkerType) -> Iterator[Marker]:
        """Yield the markers of the given type, in order."""
        return (m for m in self.markers if m.type is type)