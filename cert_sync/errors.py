"""Exception types raised by the reconciliation and append pipeline."""

from __future__ import annotations


class ParseError(ValueError):
    """The bytes handed in are not a readable spreadsheet container."""


class StructureError(ValueError):
    """The workbook opened, but holds nothing usable (no sheets, no data rows)."""


class WriteConflict(RuntimeError):
    """Another append or extraction batch is already running."""


class ConfirmationRequired(RuntimeError):
    def __init__(self, new_suppliers: list[str]) -> None:
        names = ", ".join(new_suppliers)
        super().__init__(
            f"{len(new_suppliers)} supplier(s) not found in the master file: {names}. "
            "Confirm them as new suppliers before exporting."
        )
        self.new_suppliers = list(new_suppliers)


class ExtractionError(RuntimeError):
    """The classifier call failed or returned something that is not a record."""


class WriteAborted(RuntimeError):
    """A record failed after the workbook had started changing; nothing is saved."""
