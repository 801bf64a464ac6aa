"""Reporting package — delimited output generation."""

from .csv_export import CsvExporter, ExportMode, ShapeMismatch, export_csv, load_csv

__all__ = [
    "CsvExporter",
    "ExportMode",
    "ShapeMismatch",
    "export_csv",
    "load_csv",
]
