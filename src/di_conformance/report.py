"""
Conformance matrix: one column per implementation, one row per normative
statement.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from rich.console import Console
from rich.table import Table


class CellStatus(Enum):
    """Outcome of one rule against one implementation."""

    PASS = "pass"
    FAIL = "fail"
    SKIP = "skip"


class FailureKind(Enum):
    """Who a failure is attributed to."""

    IMPLEMENTATION = "implementation"
    ENVIRONMENT = "environment"


@dataclass
class MatrixCell:
    """A single (column, row) outcome."""

    column_id: str
    row_id: str
    status: CellStatus
    reason: str = ""
    kind: FailureKind | None = None
    link: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "reason": self.reason,
            "kind": self.kind.value if self.kind else None,
            "link": self.link,
        }


@dataclass
class Matrix:
    """Columnar conformance report."""

    title: str
    row_label: str = "Test Name"
    column_label: str = "Implementation"
    columns: list[str] = field(default_factory=list)
    rows: dict[str, str] = field(default_factory=dict)
    cells: dict[tuple[str, str], MatrixCell] = field(default_factory=dict)

    def add_column(self, column_id: str) -> None:
        if column_id not in self.columns:
            self.columns.append(column_id)

    def add_row(self, row_id: str, label: str) -> None:
        self.rows.setdefault(row_id, label)

    def record(self, cell: MatrixCell) -> None:
        """Store a cell, registering its column if needed.

        Rows must be registered first with ``add_row``.
        """
        if cell.row_id not in self.rows:
            raise KeyError(f"Unknown matrix row: {cell.row_id}")
        self.add_column(cell.column_id)
        self.cells[(cell.column_id, cell.row_id)] = cell

    def cell(self, column_id: str, row_id: str) -> MatrixCell | None:
        return self.cells.get((column_id, row_id))

    def column(self, column_id: str) -> list[MatrixCell]:
        """Cells of one implementation, in row order."""
        return [
            self.cells[(column_id, row_id)]
            for row_id in self.rows
            if (column_id, row_id) in self.cells
        ]

    def summary(self) -> dict[str, dict[str, int]]:
        """Count of pass/fail/skip cells per column."""
        counts: dict[str, dict[str, int]] = {}
        for column_id in self.columns:
            column_counts = {status.value: 0 for status in CellStatus}
            for cell in self.column(column_id):
                column_counts[cell.status.value] += 1
            counts[column_id] = column_counts
        return counts

    @property
    def failed(self) -> bool:
        """Whether any cell failed."""
        return any(c.status == CellStatus.FAIL for c in self.cells.values())

    def to_dict(self) -> dict[str, Any]:
        """JSON-serializable form of the matrix."""
        return {
            "title": self.title,
            "rowLabel": self.row_label,
            "columnLabel": self.column_label,
            "columns": list(self.columns),
            "rows": [
                {
                    "id": row_id,
                    "label": label,
                    "cells": {
                        column_id: self.cells[(column_id, row_id)].to_dict()
                        for column_id in self.columns
                        if (column_id, row_id) in self.cells
                    },
                }
                for row_id, label in self.rows.items()
            ],
            "summary": self.summary(),
        }


_STATUS_MARKUP = {
    CellStatus.PASS: "[green]pass[/]",
    CellStatus.FAIL: "[red]fail[/]",
    CellStatus.SKIP: "[dim]skip[/]",
}


def build_table(matrix: Matrix) -> Table:
    """Render the matrix as a rich table."""
    table = Table(title=matrix.title, show_lines=True)
    table.add_column(matrix.row_label, style="bold", overflow="fold")
    for column_id in matrix.columns:
        table.add_column(column_id, justify="center")

    for row_id, label in matrix.rows.items():
        values = []
        for column_id in matrix.columns:
            cell = matrix.cell(column_id, row_id)
            if cell is None:
                values.append("")
                continue
            text = _STATUS_MARKUP[cell.status]
            if cell.kind == FailureKind.ENVIRONMENT:
                text += " [yellow](env)[/]"
            values.append(text)
        table.add_row(label, *values)
    return table


def print_matrix(matrix: Matrix, console: Console | None = None) -> None:
    """Print the matrix and the reason for every failed cell."""
    console = console or Console()
    console.print(build_table(matrix))

    failures = [c for c in matrix.cells.values() if c.status == CellStatus.FAIL]
    if failures:
        console.print("\n[bold red]Failures:[/]")
        for cell in failures:
            kind = f" ({cell.kind.value})" if cell.kind else ""
            console.print(f"  [red]x[/] {cell.column_id}{kind}: {matrix.rows[cell.row_id]}")
            console.print(f"      {cell.reason}")
