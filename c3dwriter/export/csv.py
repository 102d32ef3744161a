"""CSV export for .c3d files.

Exports a file to CSV:
  - {stem}_frames.csv: one row per frame: point coordinates, then analog samples
  - {stem}_events.csv: event table (when the file has events)
  - {stem}_parameters.csv: every GROUP:NAME parameter
"""

from __future__ import annotations

import csv
from pathlib import Path

import numpy as np

from c3dwriter.storage.reader import Reader


def export_csv(
    path: str | Path,
    output_dir: str | Path | None = None,
    include_parameters: bool = True,
    include_events: bool = True,
) -> list[Path]:
    """Export a .c3d file to CSV files.

    Args:
        path: Path to the .c3d file.
        output_dir: Directory for output files. Defaults to same directory as input.
        include_parameters: Whether to write a parameters CSV.
        include_events: Whether to write an events CSV.

    Returns:
        List of paths to created CSV files.
    """
    path = Path(path)

    if output_dir is None:
        out = path.parent
    else:
        out = Path(output_dir)
        out.mkdir(parents=True, exist_ok=True)

    created: list[Path] = []
    with Reader(path) as reader:
        frames_path = out / f"{path.stem}_frames.csv"
        _write_frames_csv(reader, frames_path)
        created.append(frames_path)

        events = reader.events()
        if include_events and events:
            events_path = out / f"{path.stem}_events.csv"
            with open(events_path, "w", newline="") as f:
                writer = csv.writer(f)
                writer.writerow(["frame", "label", "context", "subject", "description"])
                for e in events:
                    writer.writerow([e.frame, e.label, e.context, e.subject, e.description])
            created.append(events_path)

        if include_parameters:
            params_path = out / f"{path.stem}_parameters.csv"
            _write_parameters_csv(reader, params_path)
            created.append(params_path)

    return created


def _build_column_headers(reader: Reader) -> list[str]:
    """Four columns per point, then one per analog channel and sample."""
    labels = reader.labels
    headers = ["frame"]
    for i in range(reader.header.point_count):
        name = labels[i] if i < len(labels) else f"point{i}"
        headers.extend(f"{name}_{axis}" for axis in ("x", "y", "z", "residual"))

    analog_labels: list[str] = []
    if "ANALOG:LABELS" in reader.all_parameters:
        analog_labels = list(reader.get_parameter("ANALOG:LABELS"))
    for sample in range(reader.header.analog_samples_per_frame):
        for ch in range(reader.header.analog_channels):
            name = analog_labels[ch] if ch < len(analog_labels) else f"analog{ch}"
            headers.append(f"{name}_{sample}")
    return headers


def _write_frames_csv(reader: Reader, path: Path) -> None:
    with open(path, "w", newline="") as f:
        writer = csv.writer(f)
        writer.writerow(_build_column_headers(reader))

        for frame, (points, analog) in enumerate(reader.read_frames(), start=1):
            row: list[str] = [str(frame)]
            row.extend(f"{v:.6g}" for v in points.flatten())
            row.extend(f"{v:.6g}" for v in np.asarray(analog, dtype=np.float64).flatten())
            writer.writerow(row)


def _write_parameters_csv(reader: Reader, path: Path) -> None:
    with open(path, "w", newline="") as f:
        writer = csv.writer(f)
        writer.writerow(["parameter", "type", "value"])
        for key, value in reader.all_parameters.items():
            payload = value.payload
            if isinstance(payload, np.ndarray):
                text = " ".join(f"{v:.6g}" for v in payload.flatten())
            elif isinstance(payload, list):
                text = "|".join(payload)
            else:
                text = str(payload)
            writer.writerow([key, value.kind.value, text])
