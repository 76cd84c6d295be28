"""
Data model shared by the analyzer, the log slicer and the gather surface.

A `Cell` is one executed unit of source text. Slices refer back to cells by
inclusive, 1-based line ranges inside `Cell.text`.
"""
from __future__ import annotations

import copy
import time
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

LineRange = Tuple[int, int]


class Cell:
    def __init__(self, id: str, text: str, execution_count: int,
                 execution_event_id: Optional[str] = None,
                 persistent_id: Optional[str] = None,
                 has_error: bool = False,
                 outputs: Optional[List[Any]] = None):
        self.id = id
        self.text = text or ""
        self.execution_count = execution_count
        self.execution_event_id = execution_event_id or id
        self.persistent_id = persistent_id or id
        self.has_error = has_error
        self.outputs = outputs if outputs is not None else []

    def deep_copy(self) -> "Cell":
        return copy.deepcopy(self)

    @property
    def lines(self) -> List[str]:
        return self.text.split('\n')

    def __repr__(self):
        return (f"Cell(id={self.id!r}, execution_count={self.execution_count!r}, "
                f"execution_event_id={self.execution_event_id!r})")


def normalize_ranges(ranges: Iterable[LineRange]) -> Tuple[LineRange, ...]:
    """Sort ranges and fuse the ones that overlap or touch."""
    merged: List[List[int]] = []
    for start, end in sorted(ranges):
        if merged and start <= merged[-1][1] + 1:
            merged[-1][1] = max(merged[-1][1], end)
        else:
            merged.append([start, end])
    return tuple((s, e) for s, e in merged)


class CellSlice:
    """The lines of one executed cell that belong to a slice."""

    def __init__(self, cell: Cell, line_ranges: Iterable[LineRange],
                 execution_time: Optional[float] = None):
        self.cell = cell
        self.line_ranges = normalize_ranges(line_ranges)
        self.execution_time = execution_time

    @property
    def line_numbers(self) -> List[int]:
        return [n for start, end in self.line_ranges for n in range(start, end + 1)]

    @property
    def text_sliced_lines(self) -> str:
        lines = self.cell.lines
        return "\n".join(lines[n - 1] for n in self.line_numbers if n <= len(lines))

    def __str__(self):
        return self.text_sliced_lines

    def __repr__(self):
        return f"CellSlice(cell={self.cell!r}, line_ranges={self.line_ranges!r})"


class SlicedExecution:
    def __init__(self, execution_time: float, cell_slices: Sequence[CellSlice]):
        self.execution_time = execution_time
        self.cell_slices = sorted(cell_slices, key=lambda s: s.cell.execution_count)

    def merge(self, *others: "SlicedExecution") -> "SlicedExecution":
        return merge_slices([self, *others])

    def to_dict(self) -> Dict[str, Any]:
        return {
            "execution_time": self.execution_time,
            "cells": [
                {
                    "id": s.cell.id,
                    "execution_count": s.cell.execution_count,
                    "execution_event_id": s.cell.execution_event_id,
                    "persistent_id": s.cell.persistent_id,
                    "line_ranges": [list(r) for r in s.line_ranges],
                    "text": s.text_sliced_lines,
                }
                for s in self.cell_slices
            ],
        }

    def __repr__(self):
        return f"SlicedExecution(cells={[s.cell.execution_count for s in self.cell_slices]})"


def merge_slices(sliced_executions: Sequence[SlicedExecution]) -> SlicedExecution:
    """
    Combine several slices into one program.

    Cell slices are grouped per physical execution (`execution_event_id`),
    their line ranges unioned, and the result sorted by `execution_count`.
    The timestamp of the merged result is the merge time.
    """
    if not sliced_executions:
        raise ValueError("merge_slices requires at least one SlicedExecution")

    cells: Dict[str, CellSlice] = {}
    ranges: Dict[str, List[LineRange]] = {}
    for sliced in sliced_executions:
        for cell_slice in sliced.cell_slices:
            event_id = cell_slice.cell.execution_event_id
            cells.setdefault(event_id, cell_slice)
            ranges.setdefault(event_id, []).extend(cell_slice.line_ranges)

    merged = [
        CellSlice(first.cell, ranges[event_id], first.execution_time)
        for event_id, first in cells.items()
    ]
    return SlicedExecution(time.time(), merged)
