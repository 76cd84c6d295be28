"""CellGather core library.

Key entry points:
- ExecutionLogSlicer (log executions, slice them)
- GatherExecution (session hooks and gather_code)
- merge_slices (combine slices into one program)
- cells_from_notebook (replay a saved notebook's history)

Slicing rules are configured with SliceConfiguration / load_slice_configuration.
"""
from .ast_capture import cells_from_notebook, parse_cell
from .config import (
    ARGUMENTS,
    OBJECT,
    PURE_CALL_RULES,
    OverrideRule,
    SliceConfiguration,
    load_slice_configuration,
    make_rule,
)
from .dataflow import DataflowAnalyzer
from .gather import GatherExecution, format_program
from .log_slicer import ExecutionLogSlicer
from .model import Cell, CellSlice, SlicedExecution, merge_slices
