"""Sequential writer for .c3d files.

Writes the header and parameter directory on open, appends frame records
as they arrive, and patches frame count and data start on close. Parameters
that already exist can be changed while the file is open; they are
rewritten in place at the offset recorded when the directory was written.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Any, BinaryIO

import numpy as np

from c3dwriter.errors import (
    ChannelCountMismatchError,
    IOFailure,
    LifecycleError,
    ParameterTypeError,
)
from c3dwriter.storage.format import POINT_WORDS
from c3dwriter.storage.header import Header
from c3dwriter.storage.layout import DATA_START_PATH, patch_parameter, write_directory
from c3dwriter.storage.parameters import (
    FLOAT_DTYPE,
    INT16_DTYPE,
    ParameterStore,
    ParameterValue,
    ValueKind,
)
from c3dwriter.storage.rewrite import EventRewritePipeline
from c3dwriter.utils.schema import Event, EventContext, EventLog, WriterConfig

logger = logging.getLogger(__name__)

LABELS_PATH = "POINT:LABELS"
USED_PATH = "POINT:USED"
FRAMES_PATH = "POINT:FRAMES"


def _as_int16(n: int) -> int:
    """Wrap a counter into the signed 16-bit range C3D stores it in."""
    return ((n + 32768) % 65536) - 32768


def _int16_words(values: np.ndarray, what: str) -> np.ndarray:
    """Cast to int16, refusing values the word cannot hold."""
    limits = np.iinfo(np.int16)
    arr = np.asarray(values)
    if arr.size and (arr.min() < limits.min or arr.max() > limits.max):
        raise ValueError(
            f"{what} out of int16 range [{limits.min}, {limits.max}]: "
            f"min {arr.min()}, max {arr.max()}. Use a larger scale factor "
            f"or float encoding"
        )
    return arr.astype(INT16_DTYPE)


class C3DWriter:
    """Writes motion-capture frames to a .c3d file.

    Configure parameters while the writer is closed, then ``open()``, write
    frames (and analog samples) in wire order, and ``close()``. With
    ``events_enabled`` the session is staged in a scratch file and the final
    file is regenerated on close so the EVENT groups can precede the data.

    Usable as a context manager: leaving the block closes an open file.
    """

    def __init__(self, events_enabled: bool = False) -> None:
        self.header = Header()
        self.parameters = ParameterStore()
        self.events = EventLog()
        self.events_enabled = events_enabled

        self._stream: BinaryIO | None = None
        self._path: Path | None = None
        self._target: Path | None = None
        self._lock = threading.Lock()

        self._set_default_parameters()

    @classmethod
    def from_config(cls, config: WriterConfig) -> C3DWriter:
        """Create a writer with labels, rates and scale taken from ``config``."""
        writer = cls(events_enabled=config.events_enabled)
        writer.scale_factor = config.scale_factor
        writer.frame_rate = config.point_rate
        writer.set_parameter(LABELS_PATH, config.point_labels, kind=ValueKind.STRING_ARRAY)

        channels = len(config.analog_labels)
        writer.analog_channels = channels
        writer.analog_samples_per_frame = config.analog_samples_per_frame
        writer.set_parameter("ANALOG:LABELS", config.analog_labels, kind=ValueKind.STRING_ARRAY)
        writer.set_parameter("ANALOG:RATE", float(config.effective_analog_rate))
        writer.set_parameter("ANALOG:SCALE", np.ones(channels), kind=ValueKind.FLOAT_ARRAY)
        writer.set_parameter("ANALOG:OFFSET", np.zeros(channels), kind=ValueKind.INT16_ARRAY)
        return writer

    def _set_default_parameters(self) -> None:
        self.set_parameter(DATA_START_PATH, self.header.data_start)
        self.set_parameter(USED_PATH, self.header.point_count)
        self.set_parameter(FRAMES_PATH, self.header.last_frame)
        self.set_parameter("POINT:SCALE", float(self.header.scale_factor))
        self.set_parameter("POINT:RATE", float(self.header.frame_rate))
        self.set_parameter("ANALOG:RATE", 0.0)
        self.set_parameter("ANALOG:USED", self.header.analog_channels)
        self.set_parameter("ANALOG:SCALE", [], kind=ValueKind.FLOAT_ARRAY)
        self.set_parameter("ANALOG:GEN_SCALE", 1.0)
        self.set_parameter("ANALOG:OFFSET", [], kind=ValueKind.INT16_ARRAY)

    # --- Parameters ---

    def set_parameter(
        self,
        path: str,
        value: Any,
        kind: ValueKind | None = None,
        description: str | None = None,
    ) -> None:
        """Create or update the parameter at ``GROUP:NAME``.

        New groups and parameters can only be created while the file is
        closed. Updating an existing parameter while open rewrites it in
        place, so the new value must have the same type and dimensions.

        Args:
            path: Parameter key, e.g. "POINT:RATE".
            value: int, float, str, a sequence of those, bytes, or a numpy array.
            kind: Force the stored type instead of inferring it from ``value``.
            description: Optional description stored with a new parameter.
        """
        tagged = ParameterValue.of(value, kind)
        if path == LABELS_PATH and tagged.kind != ValueKind.STRING_ARRAY:
            raise ParameterTypeError(f"{LABELS_PATH} must be a list of strings")

        parameter, _ = self.parameters.set(
            path, tagged, allow_create=not self.is_open, description=description
        )
        if self._stream is not None and parameter.offset is not None:
            self._guarded(patch_parameter, self._stream, parameter)

        if path == LABELS_PATH:
            self.header.point_count = len(tagged.payload)
            self.set_parameter(USED_PATH, self.header.point_count)

    def get_parameter(self, path: str) -> Any:
        """Return the stored payload of ``GROUP:NAME``."""
        return self.parameters.get(path).payload

    def has_parameter(self, path: str) -> bool:
        return path in self.parameters

    def set_group_description(self, name: str, description: str) -> None:
        if self.is_open:
            raise LifecycleError("Cannot change group descriptions after the file was opened")
        grp = self.parameters.group(name) or self.parameters.add_group(name)
        grp.description = description

    # --- Header-backed settings ---

    @property
    def point_count(self) -> int:
        return self.header.point_count

    @point_count.setter
    def point_count(self, value: int) -> None:
        self._require_closed("point count")
        self.header.point_count = value
        self.set_parameter(USED_PATH, value)

    @property
    def analog_channels(self) -> int:
        return self.header.analog_channels

    @analog_channels.setter
    def analog_channels(self, value: int) -> None:
        self._require_closed("analog channel count")
        self.header.analog_channels = value
        self.set_parameter("ANALOG:USED", value)

    @property
    def analog_samples_per_frame(self) -> int:
        return self.header.analog_samples_per_frame

    @analog_samples_per_frame.setter
    def analog_samples_per_frame(self, value: int) -> None:
        self._require_closed("analog samples per frame")
        self.header.analog_samples_per_frame = value

    @property
    def frame_rate(self) -> float:
        return self.header.frame_rate

    @frame_rate.setter
    def frame_rate(self, value: float) -> None:
        self.header.frame_rate = value
        self.set_parameter("POINT:RATE", float(value))

    @property
    def scale_factor(self) -> float:
        return self.header.scale_factor

    @scale_factor.setter
    def scale_factor(self, value: float) -> None:
        self._require_closed("scale factor")
        self.header.scale_factor = value
        self.set_parameter("POINT:SCALE", float(value))

    @property
    def is_float(self) -> bool:
        return self.header.is_float

    @property
    def labels(self) -> list[str]:
        if LABELS_PATH not in self.parameters:
            return []
        return list(self.get_parameter(LABELS_PATH))

    @property
    def frames_count(self) -> int:
        return self.header.last_frame

    @property
    def current_frame(self) -> int:
        """0-based index the next written frame will get."""
        return self.header.last_frame

    @property
    def frame_stride(self) -> int:
        """Bytes taken by one frame record (points plus analog block)."""
        words = POINT_WORDS * self.header.point_count + self.header.analog_measurements
        return words * (FLOAT_DTYPE.itemsize if self.is_float else INT16_DTYPE.itemsize)

    @property
    def is_open(self) -> bool:
        return self._stream is not None

    @property
    def path(self) -> Path | None:
        """Final output path of the current or last session."""
        return self._target

    # --- Session ---

    def open(self, path: str | Path) -> None:
        """Create ``path`` and write the header and parameter directory.

        With events enabled, frames go to a scratch file next to ``path``
        until ``close()`` regenerates the final file.

        Raises:
            IOFailure: The file could not be created or written. The writer
                stays closed and ``open`` can be retried.
        """
        if self.is_open:
            raise LifecycleError(f"Writer already open on {self._path}")

        target = Path(path)
        write_path = EventRewritePipeline.scratch_path_for(target) if self.events_enabled else target
        self._open_stream(write_path)
        self._target = target

    def _open_stream(self, path: Path) -> None:
        """Write header placeholder and directory to a fresh file at ``path``."""
        self.header.last_frame = 0
        if self.header.analog_channels and not self.header.analog_samples_per_frame:
            self.header.analog_samples_per_frame = 1

        stream: BinaryIO | None = None
        try:
            stream = open(path, "w+b")
            stream.write(self.header.to_bytes())
            self.header.data_start = write_directory(stream, self.parameters)
        except Exception as e:
            if stream is not None:
                stream.close()
            self.parameters.reset_offsets()
            if isinstance(e, OSError):
                logger.error(f"Cannot open {path} for writing: {e}")
                raise IOFailure(f"Cannot open {path} for writing: {e}") from e
            raise

        self._stream = stream
        self._path = path
        logger.info(
            f"Opened {path}: {self.header.point_count} points, "
            f"{self.header.analog_channels} analog channels, "
            f"data at block {self.header.data_start}"
        )

    def close(self) -> bool:
        """Finalize the file.

        Writes the frame count, rewrites the header and, with events
        enabled, regenerates the target file with the EVENT parameters and
        empties the event log for the next session.

        Returns:
            False if the writer was not open, True otherwise.
        """
        with self._lock:
            if self._stream is None:
                return False

            scratch = self._path
            self._finalize()

            if self.events_enabled:
                EventRewritePipeline(self).run(scratch, self._target)
                # events belong to the session that just ended
                self.events.clear()
            return True

    def _finalize(self) -> None:
        """Patch frame count and header, then release the file handle."""
        stream = self._stream
        assert stream is not None
        try:
            self.set_parameter(FRAMES_PATH, _as_int16(self.header.last_frame))
            self.header.data_start = self.get_parameter(DATA_START_PATH)

            position = stream.tell()
            stream.seek(0)
            stream.write(self.header.to_bytes())
            stream.seek(position)
        except OSError as e:
            raise IOFailure(f"Cannot finalize {self._path}: {e}") from e
        finally:
            stream.close()
            self._stream = None

        logger.info(f"Closed {self._path}: {self.header.last_frame} frames")

    # --- Frames ---

    def write_frame(self, points: Any) -> None:
        """Append one frame of points using the header's encoding.

        ``points`` is array-like of shape (n, 3) or (n, 4); the 4th column is
        the residual word and defaults to 0.
        """
        if self.is_float:
            self.write_float_frame(points)
        else:
            self.write_int_frame(points)

    def write_float_frame(self, points: Any) -> None:
        stream = self._require_open()
        frame = self._frame_array(points)
        self.header.last_frame += 1
        self._guarded(stream.write, frame.astype(FLOAT_DTYPE).tobytes())

    def write_int_frame(self, points: Any) -> None:
        stream = self._require_open()
        frame = self._frame_array(points)
        scale = abs(self.header.scale_factor)
        frame[:, :3] = np.rint(frame[:, :3] / scale)
        data = _int16_words(frame, "Scaled point coordinates")
        self.header.last_frame += 1
        self._guarded(stream.write, data.tobytes())

    def write_analog_data(self, channels: Any) -> None:
        """Append one analog sample per channel using the header's encoding."""
        if self.is_float:
            self.write_float_analog_data(channels)
        else:
            self.write_int_analog_data(channels)

    def write_float_analog_data(self, channels: Any) -> None:
        stream = self._require_open()
        data = self._analog_array(channels)
        self._guarded(stream.write, data.astype(FLOAT_DTYPE).tobytes())

    def write_int_analog_data(self, channels: Any) -> None:
        stream = self._require_open()
        data = _int16_words(self._analog_array(channels), "Analog samples")
        self._guarded(stream.write, data.tobytes())

    @staticmethod
    def _frame_array(points: Any) -> np.ndarray:
        arr = np.asarray(points, dtype=np.float64)
        if arr.size == 0:
            return np.zeros((0, POINT_WORDS))
        arr = np.atleast_2d(arr)
        if arr.ndim != 2 or arr.shape[1] not in (3, 4):
            raise ValueError(f"Points must have shape (n, 3) or (n, 4), got {arr.shape}")
        if arr.shape[1] == 3:
            arr = np.hstack([arr, np.zeros((arr.shape[0], 1))])
        return arr.copy()

    def _analog_array(self, channels: Any) -> np.ndarray:
        arr = np.asarray(channels).reshape(-1)
        if arr.size != self.header.analog_channels:
            raise ChannelCountMismatchError(
                f"Got {arr.size} analog values, but {self.header.analog_channels} channels "
                f"are declared in the header and parameters"
            )
        return arr

    # --- Events ---

    def add_event(self, event: Event | None = None, **fields: Any) -> Event:
        """Queue an event for the EVENT group written on close.

        Pass an Event or its fields (label=, context=, ...). A missing frame
        is set to the number of frames written so far.
        """
        if not self.events_enabled:
            raise LifecycleError("Events are not enabled for this writer")
        if event is None:
            event = Event(**fields)
        if event.frame is None:
            event = event.model_copy(update={"frame": self.frames_count})
        self.events.add(event)
        return event

    def define_event_context(
        self, label: str, description: str = "", icon_id: int = 0, colour: int = 0
    ) -> None:
        """Describe an event context; used when events with it are finalized."""
        self.events.define_context(
            EventContext(label=label, description=description, icon_id=icon_id, colour=colour)
        )

    # --- Helpers ---

    def _require_open(self) -> BinaryIO:
        if self._stream is None:
            raise LifecycleError("Writer not opened. Call .open() first.")
        return self._stream

    def _require_closed(self, what: str) -> None:
        if self.is_open:
            raise LifecycleError(f"Cannot change the {what} after the file was opened")

    def _guarded(self, fn: Any, *args: Any) -> Any:
        try:
            return fn(*args)
        except OSError as e:
            raise IOFailure(f"Write to {self._path} failed: {e}") from e

    # Context manager support
    def __enter__(self) -> C3DWriter:
        return self

    def __exit__(self, *args: Any) -> None:
        if self.is_open:
            self.close()

    def __repr__(self) -> str:
        status = "open" if self.is_open else "closed"
        return (
            f"C3DWriter(path='{self._target}', points={self.header.point_count}, "
            f"frames={self.frames_count}, status={status})"
        )
