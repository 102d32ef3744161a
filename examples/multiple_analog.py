"""c3dwriter Example: Float Frames with Two EMG Channels

Records one point at 33 Hz alongside two analog channels, using float32
encoding (negative scale factor) and no events.

Run:
    python examples/multiple_analog.py

Output:
    - Creates simulated_emg.c3d and prints its parameters
"""

import numpy as np

from c3dwriter import Reader, Recorder, WriterConfig


def main():
    rng = np.random.default_rng(42)

    config = WriterConfig(
        point_labels=["position"],
        point_rate=33,
        analog_labels=["CH1 Raw", "CH2 Raw"],
        analog_rate=66,
        scale_factor=-1,
    )
    parameters = {
        "POINT:DATA_TYPE_LABELS": ["Skeleton", "Accelerometer", "BalanceBoard", "EMG"],
        "SUBJECTS:MARKER_SET": "Using ETRO extended marker set",
        "INFO:SYSTEM": "ETRO_APP",
        "INFO:GAME": "C3D TEST",
        "POINT:DATA_TYPE": 0,
        "INFO:SCORE": 0,
    }

    with Recorder("simulated_emg.c3d", config, parameters=parameters) as rec:
        for frame in range(20):
            point = [[frame, rng.random() - 0.5, 1.0]]
            # two samples per channel per frame
            emg = [[42.5, 12.1], [42.5, 12.1]]
            rec.step(point, analog=emg)
        rec.set_parameter("INFO:SCORE", 42)

    with Reader(rec.path) as reader:
        print(f"{reader.frames_count} frames, {reader.header.analog_channels} analog channels")
        for key, value in reader.all_parameters.items():
            print(f"  {key} = {value.payload}")


if __name__ == "__main__":
    main()
