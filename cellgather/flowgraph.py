"""
Def/use links between the statements of logged executions.

Nodes of the graph are `(log position, statement index)` pairs. An edge
`u -> v` means `v` depends on `u`: either `u` is the most recent writer of a
name `v` reads (`symbols` holds those names), or `u` is the compound
statement header governing `v` (`control` is set).
"""
import logging
from typing import Dict, FrozenSet, Iterable, List, NamedTuple, Optional, Set, Tuple

import networkx as nx

from .dataflow import StatementFlow

logger = logging.getLogger(__name__)

StatementRef = Tuple[int, int]


class DependencyEdge(NamedTuple):
    source: StatementRef
    target: StatementRef
    symbols: FrozenSet[str]
    control: bool


class FlowGraphBuilder:
    def __init__(self):
        self.graph = nx.DiGraph()
        self._last_writer: Dict[str, StatementRef] = {}

    def _link(self, source: StatementRef, target: StatementRef,
              symbol: Optional[str] = None, control: bool = False) -> None:
        if self.graph.has_edge(source, target):
            data = self.graph.edges[source, target]
        else:
            self.graph.add_edge(source, target, symbols=set(), control=False)
            data = self.graph.edges[source, target]
        if symbol is not None:
            data['symbols'].add(symbol)
        data['control'] = data['control'] or control

    def add_execution(self, position: int, statements: Iterable[StatementFlow],
                      defines: bool = True) -> List[DependencyEdge]:
        """
        Link the statements of the execution at `position` to earlier writes.

        Each read resolves to the single most recent write of that name,
        searching earlier log positions and earlier statements of the same
        execution. Statements of an execution with `defines=False` get their
        dependencies but never become writers.
        """
        refs = []
        for flow in statements:
            ref = (position, flow.index)
            refs.append(ref)
            self.graph.add_node(ref, kind=flow.kind, lines=flow.line_range)
            if flow.parent is not None:
                self._link((position, flow.parent), ref, control=True)
            for name in flow.reads:
                source = self._last_writer.get(name)
                if source is not None and source != ref:
                    self._link(source, ref, symbol=name)
            if not defines:
                continue
            for name in flow.writes:
                self._last_writer[name] = ref
        edges = [edge for ref in refs for edge in self.edges_into(ref)]
        logger.debug("Execution %s: %d statements, %d dependency edges", position, len(refs), len(edges))
        return edges

    def edges_into(self, ref: StatementRef) -> List[DependencyEdge]:
        return [
            DependencyEdge(source, ref, frozenset(data['symbols']), data['control'])
            for source, _, data in self.graph.in_edges(ref, data=True)
        ]

    @property
    def edges(self) -> List[DependencyEdge]:
        return [
            DependencyEdge(u, v, frozenset(data['symbols']), data['control'])
            for u, v, data in self.graph.edges(data=True)
        ]

    def dependencies_of(self, refs: Iterable[StatementRef]) -> Set[StatementRef]:
        """`refs` plus every statement they transitively depend on."""
        closure: Set[StatementRef] = set()
        for ref in refs:
            if ref in closure or ref not in self.graph:
                continue
            closure.add(ref)
            closure |= nx.ancestors(self.graph, ref)
        return closure
