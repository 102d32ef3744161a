"""Export modules for .c3d files."""

from c3dwriter.export.csv import export_csv

__all__ = ["export_csv"]
