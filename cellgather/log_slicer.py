"""
Execution log and program slicing.

The `ExecutionLogSlicer` owns an append-only log of executed cells. Each
entry keeps a snapshot of the cell as it was run together with its analysed
statements; dependency edges are computed once, when the entry is logged,
with the configuration current at that time.

The slicer keeps no locks: calls on one instance must not interleave.
"""
import json
import logging
import time
from typing import Dict, List, Optional, Set

import networkx as nx

from .config import DEFAULT_CONFIGURATION, SliceConfiguration
from .dataflow import CellAnalysis, DataflowAnalyzer, StatementFlow
from .flowgraph import DependencyEdge, FlowGraphBuilder, StatementRef
from .model import Cell, CellSlice, LineRange, SlicedExecution

logger = logging.getLogger(__name__)


class LoggedExecution:
    def __init__(self, position: int, cell: Cell, analysis: CellAnalysis,
                 execution_time: float, configuration: SliceConfiguration):
        self.position = position
        self.cell = cell
        self.analysis = analysis
        self.execution_time = execution_time
        self.configuration = configuration

    @property
    def statements(self) -> List[StatementFlow]:
        return self.analysis.statements

    @property
    def diagnostics(self):
        return self.analysis.diagnostics

    def __repr__(self):
        return f"LoggedExecution(position={self.position}, cell={self.cell!r})"


class ExecutionLogSlicer:
    def __init__(self, analyzer: Optional[DataflowAnalyzer] = None,
                 configuration: SliceConfiguration = DEFAULT_CONFIGURATION):
        self._analyzer = analyzer or DataflowAnalyzer()
        self._configuration = configuration
        self._execution_log: List[LoggedExecution] = []
        self._flow_graph = FlowGraphBuilder()

    @property
    def configuration(self) -> SliceConfiguration:
        return self._configuration

    def update_configuration(self, configuration: SliceConfiguration) -> None:
        """Use `configuration` for executions logged from now on."""
        if not isinstance(configuration, SliceConfiguration):
            raise TypeError(f"expected SliceConfiguration, got {type(configuration).__name__}")
        self._configuration = configuration

    @property
    def execution_log(self) -> List[LoggedExecution]:
        return list(self._execution_log)

    def __len__(self):
        return len(self._execution_log)

    @property
    def dependency_edges(self) -> List[DependencyEdge]:
        return self._flow_graph.edges

    def log_execution(self, cell: Cell, execution_time: Optional[float] = None) -> LoggedExecution:
        """
        Analyse `cell`, link it to the history and append it to the log.

        The log stores a deep copy, so later changes to `cell` do not affect
        it. Execution counts must increase strictly across the log. The same
        execution event logged twice yields two entries, but only with the
        same text: slices of one event are merged line by line.
        """
        if not isinstance(cell.execution_count, int):
            raise ValueError(f"cell {cell.id!r} has no integer execution count")
        if self._execution_log:
            last = self._execution_log[-1].cell.execution_count
            if cell.execution_count <= last:
                raise ValueError(
                    f"execution count {cell.execution_count} of cell {cell.id!r} "
                    f"does not follow the last logged count {last}"
                )
        previous = self.find_executions(cell)
        if previous and previous[0].cell.text != cell.text:
            raise ValueError(
                f"execution event {cell.execution_event_id!r} was already logged with different text"
            )

        snapshot = cell.deep_copy()
        configuration = self._configuration
        analysis = self._analyzer.analyze_cell(snapshot.text, configuration)
        position = len(self._execution_log)
        entry = LoggedExecution(position, snapshot, analysis,
                                execution_time if execution_time is not None else time.time(),
                                configuration)
        edges = self._flow_graph.add_execution(position, analysis.statements,
                                               defines=not snapshot.has_error)
        self._execution_log.append(entry)
        logger.debug("Logged %r at position %d (%d statements, %d edges, %d diagnostics)",
                     snapshot, position, len(analysis.statements), len(edges), len(analysis.diagnostics))
        return entry

    def find_executions(self, cell: Cell) -> List[LoggedExecution]:
        """Log entries for `cell`'s execution event, newest first."""
        return [entry for entry in reversed(self._execution_log)
                if entry.cell.execution_event_id == cell.execution_event_id]

    def _statement(self, ref: StatementRef) -> StatementFlow:
        position, index = ref
        return self._execution_log[position].statements[index]

    def _closure(self, entry: LoggedExecution) -> Set[StatementRef]:
        seeds = {(entry.position, flow.index) for flow in entry.statements}
        included = self._flow_graph.dependencies_of(seeds)
        # a block header never stands alone: keep its whole block when none
        # of the block's statements are needed otherwise
        while True:
            missing: Set[StatementRef] = set()
            for ref in included:
                body = self._statement(ref).body
                if body and not any((ref[0], i) in included for i in body):
                    missing.update((ref[0], i) for i in body)
            if not missing:
                return included
            included |= self._flow_graph.dependencies_of(missing)

    def slice_execution(self, entry: LoggedExecution) -> SlicedExecution:
        ranges: Dict[int, List[LineRange]] = {}
        for ref in self._closure(entry):
            ranges.setdefault(ref[0], []).append(self._statement(ref).line_range)
        cell_slices = [
            CellSlice(self._execution_log[position].cell, line_ranges,
                      self._execution_log[position].execution_time)
            for position, line_ranges in ranges.items()
        ]
        return SlicedExecution(entry.execution_time, cell_slices)

    def slice_all_executions(self, cell: Cell, limit: Optional[int] = None) -> List[SlicedExecution]:
        """
        Slice every logged run of `cell`'s execution event, newest first.

        Returns an empty list when the event was never logged or none of its
        runs contributed any code.
        """
        slices = []
        for entry in self.find_executions(cell):
            if limit is not None and len(slices) >= limit:
                break
            sliced = self.slice_execution(entry)
            if sliced.cell_slices:
                slices.append(sliced)
        logger.debug("Sliced %d execution(s) of %r", len(slices), cell)
        return slices

    def slice_latest_execution(self, cell: Cell) -> Optional[SlicedExecution]:
        slices = self.slice_all_executions(cell, limit=1)
        return slices[0] if slices else None

    def export_graph(self) -> nx.DiGraph:
        """Statement dependency graph with string attributes, ready for GraphML."""
        G = nx.DiGraph()
        for entry in self._execution_log:
            for flow in entry.statements:
                G.add_node(f"{entry.position}:{flow.index}",
                           cell=entry.cell.id,
                           execution_count=entry.cell.execution_count,
                           kind=flow.kind,
                           lines=f"{flow.first_line}-{flow.last_line}",
                           reads=json.dumps(sorted(flow.reads)),
                           writes=json.dumps(sorted(flow.writes)))
        for edge in self.dependency_edges:
            G.add_edge(f"{edge.source[0]}:{edge.source[1]}", f"{edge.target[0]}:{edge.target[1]}",
                       type='control' if edge.control and not edge.symbols else 'uses',
                       control=edge.control,
                       label=",".join(sorted(edge.symbols)))
        return G
