"""Type-tagged parameter store for the C3D parameter directory.

Parameters are addressed as ``GROUP:NAME``. Groups live in an arena indexed
by creation order; the negative wire ids (-1, -2, ...) that C3D uses to tell
groups from parameters are derived only when a record is encoded.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterator

import numpy as np

from c3dwriter.errors import InvalidPathError, LifecycleError, ParameterTypeError
from c3dwriter.storage.format import (
    MAX_DIMENSION,
    TYPE_BYTE,
    TYPE_CHAR,
    TYPE_FLOAT,
    TYPE_INT16,
)

INT16_DTYPE = np.dtype("<i2")
FLOAT_DTYPE = np.dtype("<f4")
BYTE_DTYPE = np.dtype("u1")

STRING_ENCODING = "utf-8"


class ValueKind(Enum):
    """Closed set of value shapes a parameter can hold."""

    INT16 = "int16"
    INT16_ARRAY = "int16[]"
    FLOAT = "float"
    FLOAT_ARRAY = "float[]"
    FLOAT_2D = "float[,]"
    STRING = "string"
    STRING_ARRAY = "string[]"
    BYTE = "byte"
    BYTE_ARRAY = "byte[]"

    @property
    def type_code(self) -> int:
        return _TYPE_CODES[self]

    @property
    def dtype(self) -> np.dtype | None:
        return _DTYPES.get(self)


_TYPE_CODES = {
    ValueKind.INT16: TYPE_INT16,
    ValueKind.INT16_ARRAY: TYPE_INT16,
    ValueKind.FLOAT: TYPE_FLOAT,
    ValueKind.FLOAT_ARRAY: TYPE_FLOAT,
    ValueKind.FLOAT_2D: TYPE_FLOAT,
    ValueKind.STRING: TYPE_CHAR,
    ValueKind.STRING_ARRAY: TYPE_CHAR,
    ValueKind.BYTE: TYPE_BYTE,
    ValueKind.BYTE_ARRAY: TYPE_BYTE,
}

_DTYPES = {
    ValueKind.INT16: INT16_DTYPE,
    ValueKind.INT16_ARRAY: INT16_DTYPE,
    ValueKind.FLOAT: FLOAT_DTYPE,
    ValueKind.FLOAT_ARRAY: FLOAT_DTYPE,
    ValueKind.FLOAT_2D: FLOAT_DTYPE,
    ValueKind.BYTE: BYTE_DTYPE,
    ValueKind.BYTE_ARRAY: BYTE_DTYPE,
}


def _infer_kind(value: Any) -> ValueKind:
    """Pick a ValueKind for a plain Python or numpy value."""
    if isinstance(value, np.generic):
        if value.dtype in (np.int8, np.uint8):
            return ValueKind.BYTE
        if np.issubdtype(value.dtype, np.integer):
            return ValueKind.INT16
        if np.issubdtype(value.dtype, np.floating):
            return ValueKind.FLOAT
        if np.issubdtype(value.dtype, np.str_):
            return ValueKind.STRING
    elif isinstance(value, (bool, int)):
        return ValueKind.INT16
    elif isinstance(value, float):
        return ValueKind.FLOAT
    elif isinstance(value, str):
        return ValueKind.STRING
    elif isinstance(value, (bytes, bytearray)):
        return ValueKind.BYTE_ARRAY
    elif isinstance(value, (list, tuple, np.ndarray)):
        if isinstance(value, np.ndarray):
            arr = value
        else:
            if len(value) == 0:
                raise ParameterTypeError(
                    "Cannot infer the type of an empty sequence; pass kind= explicitly"
                )
            if all(isinstance(v, str) for v in value):
                return ValueKind.STRING_ARRAY
            arr = np.asarray(value)

        if arr.dtype.kind == "U" and arr.ndim == 1:
            return ValueKind.STRING_ARRAY
        if arr.dtype in (np.int8, np.uint8) and arr.ndim == 1:
            return ValueKind.BYTE_ARRAY
        if arr.dtype.kind in ("b", "i", "u") and arr.ndim == 1:
            return ValueKind.INT16_ARRAY
        if arr.dtype.kind == "f" and arr.ndim == 1:
            return ValueKind.FLOAT_ARRAY
        if arr.dtype.kind in ("b", "i", "u", "f") and arr.ndim == 2:
            return ValueKind.FLOAT_2D

    raise ParameterTypeError(f"Unsupported parameter value: {value!r} ({type(value).__name__})")


def _check_dimensions(dims: tuple[int, ...]) -> None:
    for d in dims:
        if d > MAX_DIMENSION:
            raise ParameterTypeError(
                f"Parameter dimension {d} exceeds the C3D limit of {MAX_DIMENSION}"
            )


@dataclass
class ParameterValue:
    """A parameter payload tagged with its kind.

    Scalars are kept as Python ``int``/``float``/``str``, string arrays as
    ``list[str]``, numeric arrays as numpy arrays in their wire dtype.
    """

    kind: ValueKind
    payload: Any

    @classmethod
    def of(cls, value: Any, kind: ValueKind | None = None) -> ParameterValue:
        """Build a tagged value, inferring the kind unless one is given."""
        if isinstance(value, ParameterValue):
            if kind is not None and kind != value.kind:
                raise ParameterTypeError(f"Value is {value.kind.value}, expected {kind.value}")
            return value
        if kind is None:
            kind = _infer_kind(value)
        return cls(kind, _normalize(kind, value))

    @property
    def dimensions(self) -> tuple[int, ...]:
        """Dimensions as stored on disk; the first one varies fastest."""
        kind = self.kind
        if kind in (ValueKind.INT16, ValueKind.FLOAT, ValueKind.BYTE):
            return ()
        if kind == ValueKind.STRING:
            return (len(self.payload.encode(STRING_ENCODING)),)
        if kind == ValueKind.STRING_ARRAY:
            if not self.payload:
                return (0, 0)
            width = max(len(s.encode(STRING_ENCODING)) for s in self.payload)
            return (width, len(self.payload))
        return tuple(int(d) for d in self.payload.shape)

    def data_bytes(self) -> bytes:
        """Encode the payload (without type or dimension bytes)."""
        kind = self.kind
        if kind == ValueKind.STRING:
            return self.payload.encode(STRING_ENCODING)
        if kind == ValueKind.STRING_ARRAY:
            width = self.dimensions[0]
            return b"".join(s.encode(STRING_ENCODING).ljust(width, b" ") for s in self.payload)
        if kind in (ValueKind.INT16, ValueKind.FLOAT, ValueKind.BYTE):
            return np.array(self.payload).astype(kind.dtype).tobytes()
        # column-major so that dims[0] is the fastest-varying index
        return np.asarray(self.payload, dtype=kind.dtype).tobytes(order="F")

    @property
    def size(self) -> int:
        return len(self.data_bytes())

    def same_layout(self, other: ParameterValue) -> bool:
        """True when ``other`` serializes to the same number of bytes as this."""
        return self.kind == other.kind and self.dimensions == other.dimensions

    @classmethod
    def decode(cls, type_code: int, dims: tuple[int, ...], data: bytes) -> ParameterValue:
        """Rebuild a value from a record read back from disk."""
        if type_code == TYPE_CHAR:
            if len(dims) <= 1:
                return cls(ValueKind.STRING, data.decode(STRING_ENCODING).rstrip(" "))
            width, count = dims[0], int(np.prod(dims[1:]))
            items = [
                data[i * width:(i + 1) * width].decode(STRING_ENCODING).rstrip(" ")
                for i in range(count)
            ]
            return cls(ValueKind.STRING_ARRAY, items)

        kinds = {
            TYPE_INT16: (ValueKind.INT16, ValueKind.INT16_ARRAY),
            TYPE_FLOAT: (ValueKind.FLOAT, ValueKind.FLOAT_ARRAY),
            TYPE_BYTE: (ValueKind.BYTE, ValueKind.BYTE_ARRAY),
        }
        if type_code not in kinds:
            raise ParameterTypeError(f"Unknown parameter type code {type_code}")
        scalar_kind, array_kind = kinds[type_code]

        arr = np.frombuffer(data, dtype=scalar_kind.dtype)
        if not dims:
            return cls(scalar_kind, arr[0].item())
        if len(dims) == 1:
            return cls(array_kind, arr.copy())
        if type_code == TYPE_FLOAT and len(dims) == 2:
            return cls(ValueKind.FLOAT_2D, arr.reshape(dims, order="F").copy())
        raise ParameterTypeError(f"Unsupported parameter dimensions {dims}")


def _normalize(kind: ValueKind, value: Any) -> Any:
    """Coerce ``value`` into the canonical payload for ``kind``."""
    try:
        if kind == ValueKind.INT16:
            v = int(value)
            if not -32768 <= v <= 32767:
                raise ParameterTypeError(f"{v} does not fit in int16")
            return v
        if kind == ValueKind.FLOAT:
            return float(value)
        if kind == ValueKind.BYTE:
            v = int(value)
            if not -128 <= v <= 255:
                raise ParameterTypeError(f"{v} does not fit in a byte")
            return v & 0xFF
        if kind == ValueKind.STRING:
            if not isinstance(value, str):
                raise ParameterTypeError(f"Expected str, got {type(value).__name__}")
            _check_dimensions((len(value.encode(STRING_ENCODING)),))
            return value
        if kind == ValueKind.STRING_ARRAY:
            if isinstance(value, str) or not all(isinstance(v, (str, np.str_)) for v in value):
                raise ParameterTypeError("Expected a sequence of strings")
            items = [str(v) for v in value]
            _check_dimensions(ParameterValue(kind, items).dimensions)
            return items

        if isinstance(value, (bytes, bytearray)):
            arr = np.frombuffer(bytes(value), dtype=BYTE_DTYPE)
        else:
            arr = np.asarray(value)
        expected_ndim = 2 if kind == ValueKind.FLOAT_2D else 1
        if arr.size == 0 and arr.ndim != expected_ndim:
            arr = arr.reshape((0,) * expected_ndim)
        if arr.ndim != expected_ndim:
            raise ParameterTypeError(
                f"{kind.value} needs a {expected_ndim}-D array, got shape {arr.shape}"
            )
        if arr.dtype.kind not in ("b", "i", "u", "f"):
            raise ParameterTypeError(f"{kind.value} cannot hold dtype {arr.dtype}")
        arr = arr.astype(kind.dtype)
        _check_dimensions(arr.shape)
        return arr
    except (TypeError, ValueError) as e:
        if isinstance(e, ParameterTypeError):
            raise
        raise ParameterTypeError(f"Cannot store {value!r} as {kind.value}: {e}") from e


# ── Groups and parameters ──────────────────────────────────


def group_wire_id(index: int) -> int:
    """Group ids on disk are negative: -1 for the first group, -2 next..."""
    return -(index + 1)


@dataclass
class Parameter:
    """A named value owned by a group.

    ``offset`` is the absolute position of the record in the open file, or
    None if the parameter has not been written yet.
    """

    name: str
    group_index: int
    value: ParameterValue
    description: str = ""
    offset: int | None = None

    def to_bytes(self) -> bytes:
        name = self.name.encode(STRING_ENCODING)
        desc = self.description.encode(STRING_ENCODING)
        dims = self.value.dimensions
        data = self.value.data_bytes()

        next_offset = 2 + 1 + 1 + len(dims) + len(data) + 1 + len(desc)
        if next_offset > 32767:
            raise ParameterTypeError(f"Parameter {self.name} is too large ({len(data)} bytes)")

        return b"".join([
            struct.pack("<bb", len(name), -group_wire_id(self.group_index)),
            name,
            struct.pack("<hbB", next_offset, self.value.kind.type_code, len(dims)),
            bytes(dims),
            data,
            struct.pack("<B", len(desc)),
            desc,
        ])


@dataclass
class ParameterGroup:
    """A named namespace of parameters."""

    index: int
    name: str
    description: str = ""
    parameters: list[Parameter] = field(default_factory=list)

    @property
    def wire_id(self) -> int:
        return group_wire_id(self.index)

    def get(self, name: str) -> Parameter | None:
        for p in self.parameters:
            if p.name == name:
                return p
        return None

    def to_bytes(self) -> bytes:
        name = self.name.encode(STRING_ENCODING)
        desc = self.description.encode(STRING_ENCODING)
        return b"".join([
            struct.pack("<bb", len(name), self.wire_id),
            name,
            struct.pack("<hB", 2 + 1 + len(desc), len(desc)),
            desc,
        ])


def sentinel_bytes() -> bytes:
    """The id-0, unnamed group that terminates the directory."""
    return struct.pack("<bbhB", 0, 0, 0, 0)


def split_path(path: str) -> tuple[str, str]:
    """Split ``GROUP:NAME`` into its two non-empty parts."""
    parts = path.split(":")
    if len(parts) != 2 or not parts[0] or not parts[1]:
        raise InvalidPathError(f"Wrong parameter path '{path}' (use GROUP:NAME)")
    return parts[0], parts[1]


class ParameterStore:
    """Groups and parameters in creation order, with a name lookup."""

    def __init__(self) -> None:
        self._groups: list[ParameterGroup] = []
        self._by_name: dict[str, int] = {}

    @property
    def groups(self) -> list[ParameterGroup]:
        return list(self._groups)

    def group(self, name: str) -> ParameterGroup | None:
        index = self._by_name.get(name)
        return None if index is None else self._groups[index]

    def add_group(self, name: str, description: str = "") -> ParameterGroup:
        if name in self._by_name:
            raise ValueError(f"Group '{name}' already exists")
        grp = ParameterGroup(index=len(self._groups), name=name, description=description)
        self._groups.append(grp)
        self._by_name[name] = grp.index
        return grp

    def find(self, path: str) -> Parameter | None:
        group_name, name = split_path(path)
        grp = self.group(group_name)
        return None if grp is None else grp.get(name)

    def __contains__(self, path: str) -> bool:
        return self.find(path) is not None

    def __iter__(self) -> Iterator[tuple[str, Parameter]]:
        for grp in self._groups:
            for p in grp.parameters:
                yield f"{grp.name}:{p.name}", p

    def get(self, path: str) -> ParameterValue:
        p = self.find(path)
        if p is None:
            raise KeyError(f"Parameter '{path}' not found")
        return p.value

    def set(
        self,
        path: str,
        value: ParameterValue,
        allow_create: bool = True,
        description: str | None = None,
    ) -> tuple[Parameter, bool]:
        """Create or replace a parameter.

        Returns the parameter and whether it was created. With
        ``allow_create=False`` only existing parameters can change, and the
        new value must keep the serialized layout of the old one.
        """
        group_name, name = split_path(path)

        grp = self.group(group_name)
        if grp is None:
            if not allow_create:
                raise LifecycleError(
                    f"Cannot create parameter group '{group_name}' after the file was opened"
                )
            grp = self.add_group(group_name)

        p = grp.get(name)
        if p is None:
            if not allow_create:
                raise LifecycleError(
                    f"Cannot create parameter '{path}' after the file was opened"
                )
            p = Parameter(name=name, group_index=grp.index, value=value)
            if description is not None:
                p.description = description
            grp.parameters.append(p)
            return p, True

        if not allow_create and not p.value.same_layout(value):
            raise ParameterTypeError(
                f"Parameter '{path}' is {p.value.kind.value}{list(p.value.dimensions)} on disk; "
                f"cannot replace it with {value.kind.value}{list(value.dimensions)}"
            )
        if allow_create and description is not None:
            p.description = description
        p.value = value
        return p, False

    def reset_offsets(self) -> None:
        for _, p in self:
            p.offset = None
