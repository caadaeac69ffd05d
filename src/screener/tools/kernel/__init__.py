"""Kernel-level Google integrations."""

from .google_sheets import append_sheet_rows, read_sheet_values

__all__ = [
    "append_sheet_rows",
    "read_sheet_values",
]
