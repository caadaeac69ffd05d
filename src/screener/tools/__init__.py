"""External service integrations used by the screening pipeline."""

from .kernel import append_sheet_rows, read_sheet_values

__all__ = [
    "append_sheet_rows",
    "read_sheet_values",
]
