"""Event rewrite: stage frames in a scratch file, then regenerate the target.

EVENT parameters are only complete when the session ends, but they must sit
in the parameter directory ahead of the frame data. Rather than shifting the
data section, the writer stages the whole session in a scratch file and, on
close, writes the target from scratch with the finalized EVENT groups:

    1. finalize_events   build EVENT_CONTEXT:* and EVENT:* from the event log
    2. regenerate        open the target, copy every staged frame back in
    3. discard_scratch   remove the scratch file
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

import numpy as np

from c3dwriter.errors import IOFailure
from c3dwriter.storage.format import SCRATCH_PREFIX, SCRATCH_SUFFIX
from c3dwriter.storage.parameters import ValueKind
from c3dwriter.storage.reader import Reader

if TYPE_CHECKING:
    from c3dwriter.storage.writer import C3DWriter

logger = logging.getLogger(__name__)


class EventRewritePipeline:
    """Turns a closed scratch session into the final file."""

    def __init__(self, writer: C3DWriter) -> None:
        self.writer = writer

    @staticmethod
    def scratch_path_for(target: str | Path) -> Path:
        """Scratch file in the target's directory: ``dir/.name.c3d.tmp``."""
        target = Path(target)
        return target.with_name(f"{SCRATCH_PREFIX}{target.name}{SCRATCH_SUFFIX}")

    def finalize_events(self) -> None:
        """Write the event log into EVENT_CONTEXT:* and EVENT:* parameters.

        The writer must be closed, since these parameters may not exist yet.
        """
        writer = self.writer
        log = writer.events
        rate = writer.frame_rate

        contexts = log.distinct_contexts()
        writer.set_parameter("EVENT_CONTEXT:USED", len(contexts))
        writer.set_parameter(
            "EVENT_CONTEXT:LABELS", [c.label for c in contexts], kind=ValueKind.STRING_ARRAY
        )
        writer.set_parameter(
            "EVENT_CONTEXT:DESCRIPTIONS",
            [c.description for c in contexts],
            kind=ValueKind.STRING_ARRAY,
        )
        writer.set_parameter(
            "EVENT_CONTEXT:ICON_IDS", [c.icon_id for c in contexts], kind=ValueKind.INT16_ARRAY
        )
        writer.set_parameter(
            "EVENT_CONTEXT:COLOURS", [c.colour for c in contexts], kind=ValueKind.INT16_ARRAY
        )

        events = log.events
        times = np.zeros((2, len(events)), dtype=np.float32)
        for i, event in enumerate(events):
            times[0, i], times[1, i] = event.time(rate)

        writer.set_parameter("EVENT:USED", len(events))
        writer.set_parameter(
            "EVENT:CONTEXTS", [e.context for e in events], kind=ValueKind.STRING_ARRAY
        )
        writer.set_parameter("EVENT:LABELS", [e.label for e in events], kind=ValueKind.STRING_ARRAY)
        writer.set_parameter(
            "EVENT:DESCRIPTIONS", [e.description for e in events], kind=ValueKind.STRING_ARRAY
        )
        writer.set_parameter(
            "EVENT:SUBJECTS", [e.subject for e in events], kind=ValueKind.STRING_ARRAY
        )
        writer.set_parameter("EVENT:TIMES", times, kind=ValueKind.FLOAT_2D)
        writer.set_parameter(
            "EVENT:ICON_IDS", [e.icon_id for e in events], kind=ValueKind.INT16_ARRAY
        )
        writer.set_parameter(
            "EVENT:GENERIC_FLAGS", [e.generic_flag for e in events], kind=ValueKind.BYTE_ARRAY
        )
        logger.debug(f"Finalized {len(events)} events in {len(contexts)} contexts")

    def regenerate(self, scratch: Path, target: Path) -> int:
        """Write ``target`` with the current parameters and the frames staged
        in ``scratch``.

        Returns:
            Number of frames copied.
        """
        writer = self.writer
        writer.parameters.reset_offsets()

        reader = Reader(scratch)
        if not reader.open():
            raise IOFailure(f"Cannot read staged frames from {scratch}")

        enabled = writer.events_enabled
        writer.events_enabled = False
        try:
            writer._open_stream(target)
            try:
                for points, analog in reader.read_frames():
                    if reader.is_float:
                        writer.write_float_frame(points)
                        for row in analog:
                            writer.write_float_analog_data(row)
                    else:
                        writer.write_int_frame(points)
                        for row in analog:
                            writer.write_int_analog_data(row)
            finally:
                writer._finalize()
        finally:
            writer.events_enabled = enabled
            reader.close()

        return writer.frames_count

    @staticmethod
    def discard_scratch(scratch: Path) -> None:
        scratch.unlink(missing_ok=True)

    def run(self, scratch: Path, target: Path) -> None:
        """Finalize events, regenerate ``target`` from ``scratch``, remove ``scratch``."""
        self.finalize_events()
        frames = self.regenerate(scratch, target)
        self.discard_scratch(scratch)
        logger.info(f"Rewrote {target} with {len(self.writer.events)} events ({frames} frames)")
