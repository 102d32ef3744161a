"""c3dwriter: write C3D motion-capture files.

Streams point frames and analog samples into the block-structured C3D
format, with a typed parameter directory that can be patched in place and
event metadata that is finalized when the file is closed.

Quick start:
    from c3dwriter import C3DWriter

    writer = C3DWriter(events_enabled=True)
    writer.set_parameter("POINT:LABELS", ["HEAD", "HAND_L", "HAND_R"])
    writer.set_parameter("INFO:SCORE", 0)
    writer.open("session.c3d")

    for points in frames:                # arrays of shape [3, 3]
        writer.write_frame(points)
    writer.add_event(label="Start", context="Left")

    writer.set_parameter("INFO:SCORE", 42)  # existing parameters can change
    writer.close()

    # Or with the recorder
    from c3dwriter import Recorder, WriterConfig

    with Recorder("session.c3d", WriterConfig(point_labels=["HEAD"])) as rec:
        rec.step([[0.0, 1.0, 2.0]])

    # Read it back
    from c3dwriter import Reader

    with Reader("session.c3d") as r:
        print(r.frames_count, r.labels)
"""

__version__ = "0.1.0"

from c3dwriter.errors import (
    C3DError,
    ChannelCountMismatchError,
    InvalidPathError,
    IOFailure,
    LifecycleError,
    ParameterTypeError,
)
from c3dwriter.recorder import Recorder
from c3dwriter.storage.parameters import ParameterValue, ValueKind
from c3dwriter.storage.reader import Reader
from c3dwriter.storage.writer import C3DWriter
from c3dwriter.utils.schema import Event, EventContext, WriterConfig

__all__ = [
    "C3DWriter",
    "Reader",
    "Recorder",
    "WriterConfig",
    "Event",
    "EventContext",
    "ParameterValue",
    "ValueKind",
    "C3DError",
    "InvalidPathError",
    "LifecycleError",
    "ChannelCountMismatchError",
    "ParameterTypeError",
    "IOFailure",
    "__version__",
]
