"""Fixed-layout binary headers described as ordered field tables.

A table is a sequence of ``Field`` entries laid out back to back with no
implicit padding. Every numeric dtype carries an explicit byte order so the
layout never depends on the host.
"""

from collections.abc import Sequence
from typing import Any, NamedTuple

import numpy as np

from pytractparc.errors import FormatError


class Field(NamedTuple):
    """One entry of a header schema.

    Attributes:
        name: Field name, unique within its table.
        dtype: numpy dtype string with explicit byte order (``"<i4"``) or a
            raw byte string (``"|S80"``).
        shape: Array shape; ``()`` for scalars.
    """

    name: str
    dtype: str
    shape: tuple[int, ...] = ()

    @property
    def count(self) -> int:
        return int(np.prod(self.shape, dtype=np.int64)) if self.shape else 1

    @property
    def nbytes(self) -> int:
        return np.dtype(self.dtype).itemsize * self.count

    @property
    def is_bytes(self) -> bool:
        return np.dtype(self.dtype).kind == "S"


def table_size(table: Sequence[Field]) -> int:
    """Total encoded size of a field table in bytes."""
    return sum(f.nbytes for f in table)


class FieldCursor:
    """Read successive fields from a byte buffer, advancing an offset."""

    def __init__(self, buffer: bytes, offset: int = 0):
        self._buffer = memoryview(buffer)
        self.offset = offset

    @property
    def remaining(self) -> int:
        return len(self._buffer) - self.offset

    def read(self, field: Field) -> Any:
        """Decode ``field`` at the current offset and advance past it.

        Raw byte fields come back as ``bytes`` (trailing NULs preserved),
        scalars as Python numbers and arrays as numpy arrays of the declared
        dtype.
        """
        size = field.nbytes
        if size > self.remaining:
            raise FormatError(
                f"Truncated field '{field.name}': needs {size} bytes at offset "
                f"{self.offset}, only {self.remaining} available")
        start = self.offset
        self.offset += size
        if field.is_bytes:
            return bytes(self._buffer[start:start + size])
        if size == 0:
            return np.zeros(field.shape, dtype=field.dtype)
        arr = np.frombuffer(self._buffer, dtype=field.dtype,
                            count=field.count, offset=start)
        if not field.shape:
            return arr[0].item()
        return arr.reshape(field.shape).copy()

    def read_array(self, dtype: str, count: int) -> np.ndarray:
        """Read ``count`` consecutive values of ``dtype`` and advance."""
        return self.read(Field("array", dtype, (count,)))


class FieldWriter:
    """Accumulate encoded fields into a byte string."""

    def __init__(self):
        self._chunks: list[bytes] = []

    def write(self, field: Field, value: Any) -> None:
        if field.is_bytes:
            raw = bytes(value)
            if len(raw) > field.nbytes:
                raise ValueError(
                    f"Value for '{field.name}' is {len(raw)} bytes, "
                    f"field holds {field.nbytes}")
            self._chunks.append(raw.ljust(field.nbytes, b"\x00"))
            return
        arr = np.asarray(value, dtype=field.dtype)
        if arr.size != field.count:
            raise ValueError(
                f"Value for '{field.name}' has {arr.size} elements, "
                f"expected {field.count}")
        self._chunks.append(arr.tobytes())

    def write_array(self, dtype: str, values: Any) -> None:
        """Append raw values with the given dtype, no shape check."""
        self._chunks.append(np.ascontiguousarray(values, dtype=dtype).tobytes())

    def getvalue(self) -> bytes:
        return b"".join(self._chunks)


def read_table(buffer: bytes, table: Sequence[Field],
               offset: int = 0) -> dict[str, Any]:
    """Decode a whole table starting at ``offset``."""
    cursor = FieldCursor(buffer, offset)
    return {f.name: cursor.read(f) for f in table}


def write_table(values: dict[str, Any], table: Sequence[Field]) -> bytes:
    """Encode ``values`` in table order. Missing fields are zero-filled."""
    writer = FieldWriter()
    for f in table:
        if f.name in values:
            writer.write(f, values[f.name])
        elif f.is_bytes:
            writer.write(f, b"")
        else:
            writer.write(f, np.zeros(f.shape, dtype=f.dtype))
    return writer.getvalue()
