"""The 512-byte C3D header block."""

from __future__ import annotations

import struct
from dataclasses import dataclass

from c3dwriter.errors import C3DError
from c3dwriter.storage.format import (
    C3D_KEY,
    DEFAULT_FRAME_RATE,
    DEFAULT_POINT_COUNT,
    DEFAULT_SCALE_FACTOR,
    HEADER_SIZE,
    PARAMETER_BLOCK,
)

# parameter block, key, points, analog measurements per frame, first frame,
# last frame, max gap, scale, data start, analog samples per frame, frame rate
HEADER_FORMAT = "<BBhhHHhfhhf"


@dataclass
class Header:
    """Header fields kept in sync with the POINT/ANALOG parameters.

    ``analog_channels`` is the channel count; the header word on disk holds
    ``analog_channels * analog_samples_per_frame``.
    """

    point_count: int = DEFAULT_POINT_COUNT
    analog_channels: int = 0
    analog_samples_per_frame: int = 0
    first_frame: int = 1
    last_frame: int = 0
    max_gap: int = 0
    scale_factor: float = DEFAULT_SCALE_FACTOR
    data_start: int = PARAMETER_BLOCK
    frame_rate: float = DEFAULT_FRAME_RATE
    parameter_block: int = PARAMETER_BLOCK

    @property
    def analog_measurements(self) -> int:
        """Analog values stored per frame record."""
        return self.analog_channels * self.analog_samples_per_frame

    @property
    def is_float(self) -> bool:
        """Negative scale factor means float32 frame data."""
        return self.scale_factor < 0

    def to_bytes(self) -> bytes:
        raw = struct.pack(
            HEADER_FORMAT,
            self.parameter_block,
            C3D_KEY,
            self.point_count,
            self.analog_measurements,
            self.first_frame & 0xFFFF,
            self.last_frame & 0xFFFF,
            self.max_gap,
            self.scale_factor,
            self.data_start,
            self.analog_samples_per_frame,
            self.frame_rate,
        )
        return raw.ljust(HEADER_SIZE, b"\x00")

    @classmethod
    def from_bytes(cls, data: bytes) -> Header:
        if len(data) < HEADER_SIZE:
            raise C3DError(f"Header truncated: {len(data)} of {HEADER_SIZE} bytes")

        (
            parameter_block,
            key,
            point_count,
            measurements,
            first_frame,
            last_frame,
            max_gap,
            scale_factor,
            data_start,
            samples_per_frame,
            frame_rate,
        ) = struct.unpack_from(HEADER_FORMAT, data)

        if key != C3D_KEY:
            raise C3DError(f"Not a C3D header: key 0x{key:02x} != 0x{C3D_KEY:02x}")

        channels = measurements // samples_per_frame if samples_per_frame > 0 else 0
        return cls(
            point_count=point_count,
            analog_channels=channels,
            analog_samples_per_frame=samples_per_frame,
            first_frame=first_frame,
            last_frame=last_frame,
            max_gap=max_gap,
            scale_factor=scale_factor,
            data_start=data_start,
            frame_rate=frame_rate,
            parameter_block=parameter_block,
        )
