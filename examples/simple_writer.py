"""c3dwriter Example: Skeleton Session with Events

Writes three int16 frames of a 60-point skeleton (joint positions, joint
angles and tracking quality), with seven analog channels that hold the
wall-clock time of each frame. Four events are marked along the way and
INFO:SCORE is updated after the file was opened.

Run:
    python examples/simple_writer.py

Output:
    - Creates datafile.c3d
"""

from datetime import datetime

import numpy as np

from c3dwriter import C3DWriter, Reader

JOINTS = [
    "HipCenter", "Spine", "ShoulderCenter", "Head",
    "ShoulderLeft", "ElbowLeft", "WristLeft", "HandLeft",
    "ShoulderRight", "ElbowRight", "WristRight", "HandRight",
    "HipLeft", "KneeLeft", "AnkleLeft", "FootLeft",
    "HipRight", "KneeRight", "AnkleRight", "FootRight",
]

TIME_CHANNELS = ["year", "month", "day", "hour", "minute", "second", "millisecond"]


def clock_sample() -> list[int]:
    now = datetime.now()
    return [
        now.year, now.month, now.day,
        now.hour, now.minute, now.second, now.microsecond // 1000,
    ]


def main():
    writer = C3DWriter(events_enabled=True)

    writer.set_parameter("POINT:DATA_TYPE_LABELS", ["Skeleton", "Accelerometer", "BalanceBoard"])
    writer.set_parameter("SUBJECTS:MARKER_SET", "Using ETRO extended marker set")
    writer.set_parameter("INFO:SYSTEM", "ETRO_APP")
    writer.set_parameter("INFO:EVENT", "test")
    writer.set_parameter("INFO:GAME", "C3D TEST")

    writer.analog_channels = len(TIME_CHANNELS)
    writer.analog_samples_per_frame = 1
    writer.set_parameter("ANALOG:LABELS", TIME_CHANNELS)
    writer.set_parameter("ANALOG:RATE", 30.0)

    angle_labels = [f"{j}Angle" for j in JOINTS]
    quality_labels = [f"{j}Quality" for j in JOINTS]
    writer.set_parameter("POINT:LABELS", JOINTS + angle_labels + quality_labels)
    writer.set_parameter("POINT:DATA_TYPE", 0)
    writer.set_parameter("INFO:SCORE", 0)

    n = len(JOINTS)
    points = np.zeros((writer.point_count, 3))
    points[:n] = [1, 2, 3]
    points[n:2 * n] = [4, 5, 6]
    points[2 * n:] = [7, 8, 9]

    writer.open("datafile.c3d")

    writer.write_int_frame(points)
    writer.write_int_analog_data(clock_sample())
    writer.add_event(label="Start", context="Left")

    writer.write_int_frame(points)
    writer.write_int_analog_data(clock_sample())
    writer.add_event(label="Start", context="Right")

    writer.write_int_frame(points)
    writer.write_int_analog_data(clock_sample())
    writer.add_event(label="End", context="Left")
    writer.add_event(label="End", context="Right")

    # Existing parameters can still change while the file is open
    writer.set_parameter("INFO:SCORE", 42)
    writer.close()

    with Reader("datafile.c3d") as reader:
        print(f"Wrote {reader.frames_count} frames of {reader.header.point_count} points")
        for event in reader.events():
            print(f"  frame {event.frame}: {event.label} ({event.context})")


if __name__ == "__main__":
    main()
