"""c3dwriter CLI: inspect and export .c3d files.

Commands:
    c3dwriter info <file>      Show header, parameters and events
    c3dwriter export <file>    Export frames, events and parameters to CSV
"""

from __future__ import annotations

import logging
from pathlib import Path

import click
import numpy as np
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from c3dwriter import __version__

console = Console()


@click.group()
@click.version_option(version=__version__, prog_name="c3dwriter")
@click.option("--verbose", "-v", is_flag=True, default=False, help="Enable debug logging")
def cli(verbose: bool) -> None:
    """c3dwriter: write and inspect C3D motion-capture files."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _format_payload(payload: object, limit: int = 8) -> str:
    if isinstance(payload, np.ndarray):
        flat = payload.flatten()
        text = ", ".join(f"{v:g}" for v in flat[:limit])
        return f"[{text}{', ...' if flat.size > limit else ''}]"
    if isinstance(payload, list):
        text = ", ".join(payload[:limit])
        return f"[{text}{', ...' if len(payload) > limit else ''}]"
    return str(payload)


@cli.command()
@click.argument("file", type=click.Path(exists=True, path_type=Path))
def info(file: Path) -> None:
    """Show file summary."""
    from c3dwriter.storage.reader import Reader

    try:
        reader = Reader(file)
        opened = reader.open()
    except Exception as e:
        console.print(f"[red]Error opening {file}: {e}[/red]")
        raise SystemExit(1)
    if not opened:
        console.print(f"[red]Error opening {file}[/red]")
        raise SystemExit(1)

    header = reader.header

    console.print()
    console.print(Panel.fit(f"[bold]{file.name}[/bold]", subtitle=f"{file}"))

    # Header table
    meta_table = Table(show_header=False, box=None, padding=(0, 2))
    meta_table.add_column("Key", style="dim")
    meta_table.add_column("Value")
    meta_table.add_row("Points", str(header.point_count))
    meta_table.add_row("Frames", str(reader.frames_count))
    meta_table.add_row("Frame rate", f"{header.frame_rate:g} Hz")
    meta_table.add_row("Analog channels", str(header.analog_channels))
    meta_table.add_row("Analog samples/frame", str(header.analog_samples_per_frame))
    meta_table.add_row("Encoding", "float32" if reader.is_float else "int16")
    meta_table.add_row("Scale factor", f"{header.scale_factor:g}")
    meta_table.add_row("Data start block", str(header.data_start))
    console.print(meta_table)

    # Parameters
    console.print()
    params_table = Table(title="Parameters")
    params_table.add_column("Parameter")
    params_table.add_column("Type")
    params_table.add_column("Value")
    for key, value in reader.all_parameters.items():
        params_table.add_row(key, value.kind.value, _format_payload(value.payload))
    console.print(params_table)

    # Events
    events = reader.events()
    if events:
        console.print()
        events_table = Table(title="Events")
        events_table.add_column("Frame", justify="right")
        events_table.add_column("Label")
        events_table.add_column("Context")

        for event in events[:10]:
            events_table.add_row(str(event.frame), event.label, event.context)

        if len(events) > 10:
            events_table.add_row("...", f"({len(events) - 10} more)", "")

        console.print(events_table)

    reader.close()
    console.print()


@cli.command()
@click.argument("file", type=click.Path(exists=True, path_type=Path))
@click.option("--output", "-o", type=click.Path(path_type=Path), help="Output directory")
@click.option("--no-parameters", is_flag=True, default=False, help="Skip the parameters CSV")
def export(file: Path, output: Path | None, no_parameters: bool) -> None:
    """Export a .c3d file to CSV."""
    from c3dwriter.export.csv import export_csv

    created = export_csv(file, output_dir=output, include_parameters=not no_parameters)
    for p in created:
        console.print(f"  Created: {p}")
    console.print(f"[green]Exported {len(created)} CSV file(s)[/green]")


if __name__ == "__main__":
    cli()
