"""
Gather surface used by a notebook session.

`GatherExecution.post_execute` is called once a cell has finished running;
`gather_code` turns the slices of a cell into a standalone program.
"""
import logging
from typing import Optional

from .config import DEFAULT_CONFIGURATION, SliceConfiguration
from .dataflow import DataflowAnalyzer
from .log_slicer import ExecutionLogSlicer, LoggedExecution
from .model import Cell, SlicedExecution, merge_slices

logger = logging.getLogger(__name__)

DEFAULT_CELL_MARKER = "# %%"
GATHER_HEADER = "# This file contains only the code required to produce the results of the gathered cell."


def format_program(sliced: SlicedExecution, cell_marker: str = DEFAULT_CELL_MARKER,
                   header: Optional[str] = GATHER_HEADER) -> str:
    parts = [header + "\n"] if header else []
    for cell_slice in sliced.cell_slices:
        parts.append(f"{cell_marker}\n{cell_slice.text_sliced_lines}\n")
    return "\n".join(parts)


class GatherExecution:
    def __init__(self, configuration: SliceConfiguration = DEFAULT_CONFIGURATION,
                 cell_marker: str = DEFAULT_CELL_MARKER, include_header: bool = True):
        self.cell_marker = cell_marker
        self.include_header = include_header
        self._slicer = ExecutionLogSlicer(DataflowAnalyzer(), configuration)

    @property
    def execution_slicer(self) -> ExecutionLogSlicer:
        return self._slicer

    def update_configuration(self, configuration: SliceConfiguration) -> None:
        self._slicer.update_configuration(configuration)

    def pre_execute(self, cell: Cell) -> None:
        pass

    def post_execute(self, cell: Cell) -> Optional[LoggedExecution]:
        """
        Log a finished execution.

        Empty cells and repeats of an unchanged execution are skipped. Reusing
        an execution event id for different text raises ValueError.
        """
        if not cell.text.strip():
            logger.debug("Not logging empty cell %r", cell)
            return None
        previous = self._slicer.find_executions(cell)
        if previous and previous[0].cell.text == cell.text:
            logger.debug("Execution %s of cell %r already logged", cell.execution_event_id, cell.id)
            return None
        return self._slicer.log_execution(cell)

    def gather_slice(self, cell: Cell) -> Optional[SlicedExecution]:
        slices = self._slicer.slice_all_executions(cell)
        if not slices:
            return None
        return merge_slices(slices)

    def gather_code(self, cell: Cell) -> str:
        merged = self.gather_slice(cell)
        if merged is None:
            return ""
        return format_program(merged, self.cell_marker,
                              GATHER_HEADER if self.include_header else None)
