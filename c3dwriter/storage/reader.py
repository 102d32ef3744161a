"""Sequential reader for .c3d files produced by C3DWriter.

Parses the header and parameter directory on open and then serves frames in
file order. Used by the event rewrite to copy staged frames, and by the CLI.
"""

from __future__ import annotations

import logging
import os
import struct
from pathlib import Path
from typing import Any, BinaryIO, Iterator

import numpy as np

from c3dwriter.errors import C3DError, IOFailure
from c3dwriter.storage.format import (
    BLOCK_SIZE,
    C3D_KEY,
    HEADER_SIZE,
    MARKER_BLOCK_COUNT_OFFSET,
    PARAMETER_MARKER,
    POINT_WORDS,
    TYPE_CHAR,
)
from c3dwriter.storage.header import Header
from c3dwriter.storage.parameters import (
    FLOAT_DTYPE,
    INT16_DTYPE,
    STRING_ENCODING,
    ParameterValue,
)
from c3dwriter.utils.schema import Event

logger = logging.getLogger(__name__)


def read_directory(handle: BinaryIO, parameter_block: int) -> dict[str, ParameterValue]:
    """Parse the parameter directory into ``{"GROUP:NAME": value}``."""
    handle.seek((parameter_block - 1) * BLOCK_SIZE)
    marker = handle.read(len(PARAMETER_MARKER))
    if len(marker) != len(PARAMETER_MARKER) or marker[1] != C3D_KEY:
        raise C3DError("Parameter section marker not found")

    blocks = marker[MARKER_BLOCK_COUNT_OFFSET]
    buf = marker + handle.read(blocks * BLOCK_SIZE - len(marker))

    group_names: dict[int, str] = {}
    records: list[tuple[int, str, ParameterValue]] = []

    pos = len(marker)
    while pos + 2 <= len(buf):
        name_len, record_id = struct.unpack_from("<bb", buf, pos)
        if name_len == 0 and record_id == 0:
            break
        name_len = abs(name_len)  # negative length marks a locked record
        name = buf[pos + 2:pos + 2 + name_len].decode(STRING_ENCODING)
        offset_pos = pos + 2 + name_len
        (next_offset,) = struct.unpack_from("<h", buf, offset_pos)
        body = offset_pos + 2

        if record_id < 0:
            group_names[-record_id] = name
        else:
            type_code, ndims = struct.unpack_from("<bB", buf, body)
            dims = tuple(buf[body + 2:body + 2 + ndims])
            element_size = 1 if type_code == TYPE_CHAR else abs(type_code)
            count = int(np.prod(dims)) if dims else 1
            data_pos = body + 2 + ndims
            data = buf[data_pos:data_pos + element_size * count]
            records.append((record_id, name, ParameterValue.decode(type_code, dims, data)))

        if next_offset == 0:
            break
        pos = offset_pos + next_offset

    parameters: dict[str, ParameterValue] = {}
    for group_id, name, value in records:
        group = group_names.get(group_id, str(group_id))
        parameters[f"{group}:{name}"] = value
    return parameters


def _stored_frames(header: Header, data_size: int) -> int:
    """Frame count, recovered from ``data_size`` when the header field wrapped."""
    word = FLOAT_DTYPE.itemsize if header.is_float else INT16_DTYPE.itemsize
    stride = (header.point_count * POINT_WORDS + header.analog_measurements) * word
    if stride <= 0 or data_size <= 0:
        return header.last_frame
    stored = data_size // stride
    if stored > 0xFFFF and stored & 0xFFFF == header.last_frame:
        return stored
    return header.last_frame


class Reader:
    """Reader for .c3d files.

    Frames are read one at a time with ``read_frame()``; the analog block
    that follows each frame's points is available as ``analog_data``.
    """

    def __init__(self, path: str | Path | None = None) -> None:
        self.path = Path(path) if path is not None else None
        if self.path is not None and not self.path.exists():
            raise FileNotFoundError(f"C3D file not found: {self.path}")

        self._file: BinaryIO | None = None
        self._header: Header | None = None
        self._parameters: dict[str, ParameterValue] | None = None
        self._frame_index = 0
        self._frames = 0
        self._analog: np.ndarray | None = None

    def open(self, path: str | Path | None = None) -> bool:
        """Open the file and parse header and parameters.

        Returns:
            False if the file could not be opened, True otherwise.
        """
        if path is not None:
            self.path = Path(path)
        if self.path is None:
            raise ValueError("No path given to open")

        try:
            handle = open(self.path, "rb")
        except OSError as e:
            logger.error(f"Cannot open {self.path}: {e}")
            return False

        try:
            header = Header.from_bytes(handle.read(HEADER_SIZE))
            parameters = read_directory(handle, header.parameter_block)
            data_offset = (header.data_start - 1) * BLOCK_SIZE
            data_size = handle.seek(0, os.SEEK_END) - data_offset
            handle.seek(data_offset)
        except Exception:
            handle.close()
            raise

        self._file = handle
        self._header = header
        self._parameters = parameters
        self._frames = _stored_frames(header, data_size)
        self._frame_index = 0
        self._analog = None
        return True

    def close(self) -> None:
        """Close the file."""
        if self._file is not None:
            self._file.close()
            self._file = None

    def __enter__(self) -> Reader:
        if self._file is None and not self.open():
            raise IOFailure(f"Cannot open {self.path}")
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    @property
    def header(self) -> Header:
        if self._header is None:
            raise RuntimeError("Reader not opened. Call .open() first.")
        return self._header

    @property
    def all_parameters(self) -> dict[str, ParameterValue]:
        if self._parameters is None:
            raise RuntimeError("Reader not opened. Call .open() first.")
        return self._parameters

    def get_parameter(self, path: str) -> Any:
        """Payload of ``GROUP:NAME``."""
        if path not in self.all_parameters:
            raise KeyError(f"Parameter '{path}' not found. Available: {list(self.all_parameters)}")
        return self.all_parameters[path].payload

    @property
    def frames_count(self) -> int:
        """Frames in the data section.

        The header keeps only the low 16 bits of the count, so longer
        recordings are counted from the data section's length.
        """
        if self._header is None:
            raise RuntimeError("Reader not opened. Call .open() first.")
        return self._frames

    @property
    def is_float(self) -> bool:
        return self.header.is_float

    @property
    def is_integer(self) -> bool:
        return not self.header.is_float

    @property
    def labels(self) -> list[str]:
        if "POINT:LABELS" not in self.all_parameters:
            return []
        return list(self.get_parameter("POINT:LABELS"))

    @property
    def analog_data(self) -> np.ndarray:
        """Analog block of the last frame read, shape [samples_per_frame, channels]."""
        if self._analog is None:
            raise RuntimeError("No frame read yet.")
        return self._analog

    def read_frame(self) -> np.ndarray:
        """Read the next frame's points.

        Returns:
            float32 array of shape [points, 4] (x, y, z, residual). Integer
            files are scaled back to real units; the residual is left as is.
        """
        if self._file is None:
            raise RuntimeError("Reader not opened.")
        if self._frame_index >= self.frames_count:
            raise EOFError(f"All {self.frames_count} frames have been read")

        header = self.header
        dtype = FLOAT_DTYPE if header.is_float else INT16_DTYPE

        n_points = header.point_count * POINT_WORDS
        n_analog = header.analog_measurements
        raw = self._file.read((n_points + n_analog) * dtype.itemsize)
        if len(raw) != (n_points + n_analog) * dtype.itemsize:
            raise C3DError(f"Frame {self._frame_index} is truncated in {self.path}")

        values = np.frombuffer(raw, dtype=dtype)
        points = values[:n_points].reshape(header.point_count, POINT_WORDS).astype(np.float32)
        if not header.is_float:
            points[:, :3] *= abs(header.scale_factor)

        self._analog = values[n_points:].reshape(
            header.analog_samples_per_frame, header.analog_channels
        ).copy()
        self._frame_index += 1
        return points

    def read_frames(self) -> Iterator[tuple[np.ndarray, np.ndarray]]:
        """Yield (points, analog) for every remaining frame."""
        while self._frame_index < self.frames_count:
            points = self.read_frame()
            yield points, self.analog_data

    def events(self) -> list[Event]:
        """Events stored in the EVENT group, if any."""
        params = self.all_parameters
        if "EVENT:USED" not in params:
            return []

        def column(name: str, n: int, default: Any) -> list[Any]:
            key = f"EVENT:{name}"
            values = list(params[key].payload) if key in params else []
            return values + [default] * (n - len(values))

        n = int(params["EVENT:USED"].payload)
        labels = column("LABELS", n, "")
        contexts = column("CONTEXTS", n, "")
        descriptions = column("DESCRIPTIONS", n, "")
        subjects = column("SUBJECTS", n, "")
        icon_ids = column("ICON_IDS", n, 0)
        flags = column("GENERIC_FLAGS", n, 0)

        times = params["EVENT:TIMES"].payload if "EVENT:TIMES" in params else np.zeros((2, n))
        rate = self.header.frame_rate

        events = []
        for i in range(n):
            seconds = float(times[0, i]) * 60 + float(times[1, i])
            events.append(Event(
                label=labels[i],
                context=contexts[i],
                description=descriptions[i],
                subject=subjects[i],
                frame=int(round(seconds * rate)),
                icon_id=int(icon_ids[i]),
                generic_flag=int(flags[i]),
            ))
        return events
