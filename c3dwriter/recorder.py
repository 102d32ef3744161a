"""Recorder: the high-level interface for writing .c3d sessions.

Usage:
    from c3dwriter import Recorder, WriterConfig

    config = WriterConfig(
        point_labels=["HEAD", "HAND_L", "HAND_R"],
        point_rate=100,
        analog_labels=["EMG1", "EMG2"],
        scale_factor=-1,
        events_enabled=True,
    )

    with Recorder("session_01.c3d", config) as rec:
        for frame in capture():
            rec.step(frame.points, analog=frame.emg)
            if frame.foot_strike:
                rec.mark_event("Foot Strike", "Left")
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import numpy as np

from c3dwriter.storage.format import FILE_EXTENSION
from c3dwriter.storage.writer import C3DWriter
from c3dwriter.utils.schema import Event, WriterConfig


class Recorder:
    """Records point frames and analog samples to a .c3d file.

    Each ``step()`` writes one frame record: the points, then
    ``analog_samples_per_frame`` rows of analog samples.

    Args:
        path: Output path. ``.c3d`` is appended when it has no suffix.
        config: Labels, rates and encoding. Defaults to WriterConfig().
        parameters: Extra ``GROUP:NAME`` parameters set before opening.
    """

    def __init__(
        self,
        path: str | Path,
        config: WriterConfig | None = None,
        parameters: dict[str, Any] | None = None,
    ) -> None:
        self._path = Path(path)
        if not self._path.suffix:
            self._path = self._path.with_suffix(FILE_EXTENSION)

        self.config = config or WriterConfig()
        self.writer = C3DWriter.from_config(self.config)
        for key, value in (parameters or {}).items():
            self.writer.set_parameter(key, value)

        self._started = False
        self._saved = False

    def start(self) -> None:
        """Start recording. Opens the output file."""
        if self._started:
            raise RuntimeError("Recording already started.")
        self.writer.open(self._path)
        self._started = True

    def step(self, points: Any, analog: Any = None) -> None:
        """Record one frame.

        Args:
            points: Array-like of shape [points, 3] or [points, 4].
            analog: Array-like of shape [samples_per_frame, channels], or
                [channels] when there is one sample per frame. Zeros are
                written when omitted and the file has analog channels.
        """
        if not self._started:
            self.start()

        self.writer.write_frame(points)

        spf = self.writer.analog_samples_per_frame
        channels = self.writer.analog_channels
        if channels == 0 or spf == 0:
            return
        if analog is None:
            rows = np.zeros((spf, channels))
        else:
            rows = np.asarray(analog, dtype=np.float64).reshape(spf, -1)
        for row in rows:
            self.writer.write_analog_data(row)

    def mark_event(self, label: str, context: str = "", **fields: Any) -> Event:
        """Mark an event at the current frame.

        Example:
            rec.mark_event("Foot Strike", "Left", subject="S01")
        """
        return self.writer.add_event(label=label, context=context, **fields)

    def set_parameter(self, path: str, value: Any) -> None:
        """Set or update a parameter; see C3DWriter.set_parameter."""
        self.writer.set_parameter(path, value)

    def save(self) -> Path:
        """Finalize and save the recording.

        Returns:
            Path to the saved .c3d file.
        """
        if not self._started:
            raise RuntimeError("Nothing to save. Recording was never started.")
        if self._saved:
            raise RuntimeError("Recording already saved.")

        self.writer.close()
        self._saved = True
        return self._path

    @property
    def num_frames(self) -> int:
        """Number of frames recorded so far."""
        return self.writer.frames_count

    @property
    def path(self) -> Path:
        """Output file path."""
        return self._path

    # Context manager support
    def __enter__(self) -> Recorder:
        self.start()
        return self

    def __exit__(self, *args: Any) -> None:
        if self._started and not self._saved:
            self.save()

    def __repr__(self) -> str:
        if self._started and not self._saved:
            status = "recording"
        elif self._saved:
            status = "saved"
        else:
            status = "idle"
        return f"Recorder(path='{self._path}', frames={self.num_frames}, status={status})"
