"""
Dataflow analysis of a single cell.

For every statement the analyzer reports the names it reads, the names it
writes and the compound statement (if any) that governs whether it runs.
Compound statements are split into a header statement and their nested
statements so that slices can keep a guard without keeping unrelated
siblings.

Writes include mutations: a method call is assumed to modify its receiver and
its bare-name arguments, and a call to a non-builtin function is assumed to
modify its bare-name arguments. Override rules from the `SliceConfiguration`
suppress those assumptions for calls known to be read-only.
"""
import ast
import builtins
import logging
from typing import List, Optional, Sequence, Set, Tuple

from .ast_capture import ParseDiagnostic, parse_cell
from .config import ARGUMENTS, DEFAULT_CONFIGURATION, OBJECT, SliceConfiguration

logger = logging.getLogger(__name__)

STATEMENT = 'statement'
HEADER = 'header'
CLAUSE = 'clause'

BUILTIN_NAMES = frozenset(dir(builtins))

_FUNCTION_SCOPE = 'function'
_COMPREHENSION_SCOPE = 'comprehension'


class StatementFlow:
    def __init__(self, index: int, kind: str, first_line: int, last_line: int,
                 parent: Optional[int] = None):
        self.index = index
        self.kind = kind
        self.first_line = first_line
        self.last_line = last_line
        self.parent = parent
        self.reads: Set[str] = set()
        self.writes: Set[str] = set()
        self.body: List[int] = []

    @property
    def line_range(self) -> Tuple[int, int]:
        return self.first_line, self.last_line

    def __repr__(self):
        return (f"StatementFlow({self.index}, {self.kind}, lines={self.line_range}, "
                f"reads={sorted(self.reads)}, writes={sorted(self.writes)}, parent={self.parent})")


class CellAnalysis:
    def __init__(self, statements: List[StatementFlow], diagnostics: List[ParseDiagnostic]):
        self.statements = statements
        self.diagnostics = diagnostics


def _base_name(node: ast.AST) -> Optional[str]:
    while isinstance(node, (ast.Attribute, ast.Subscript)):
        node = node.value
    return node.id if isinstance(node, ast.Name) else None


def _alias_names(node) -> Set[str]:
    names = set()
    for alias in node.names:
        if alias.name == '*':
            continue
        names.add(alias.asname or alias.name.split('.')[0])
    return names


def _arg_names(args: ast.arguments) -> Set[str]:
    names = {a.arg for a in args.posonlyargs + args.args + args.kwonlyargs}
    if args.vararg:
        names.add(args.vararg.arg)
    if args.kwarg:
        names.add(args.kwarg.arg)
    return names


_NESTED_SCOPES = (ast.Lambda, ast.ListComp, ast.SetComp, ast.DictComp, ast.GeneratorExp)


def _local_names(body: Sequence[ast.stmt]) -> Set[str]:
    """Names a function or class body binds, minus global/nonlocal declarations."""
    names: Set[str] = set()
    declared: Set[str] = set()
    stack: List[ast.AST] = list(body)
    while stack:
        node = stack.pop()
        if isinstance(node, (ast.Global, ast.Nonlocal)):
            declared.update(node.names)
            continue
        if isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef)):
            names.add(node.name)
            continue
        if isinstance(node, _NESTED_SCOPES):
            continue
        if isinstance(node, ast.Name) and not isinstance(node.ctx, ast.Load):
            names.add(node.id)
        elif isinstance(node, (ast.Import, ast.ImportFrom)):
            names |= _alias_names(node)
        elif isinstance(node, (ast.ExceptHandler, ast.MatchAs, ast.MatchStar)) and node.name:
            names.add(node.name)
        elif isinstance(node, ast.MatchMapping) and node.rest:
            names.add(node.rest)
        stack.extend(ast.iter_child_nodes(node))
    return names - declared


class _NameCollector(ast.NodeVisitor):
    """Accumulates reads and writes of one statement, or of a header's parts."""

    def __init__(self, configuration: SliceConfiguration):
        self.configuration = configuration
        self.reads: Set[str] = set()
        self.writes: Set[str] = set()
        self._scopes: List[Tuple[str, Set[str]]] = []

    def _bound(self, name: str) -> bool:
        return any(name in names for _, names in self._scopes)

    def _deferred(self) -> bool:
        return any(kind == _FUNCTION_SCOPE for kind, _ in self._scopes)

    def _bind(self, name: str) -> None:
        if self._scopes:
            self._scopes[-1][1].add(name)
        else:
            self.writes.add(name)

    def _read(self, name: str) -> None:
        if not self._bound(name):
            self.reads.add(name)

    def _mutate(self, name: Optional[str]) -> None:
        if not name or self._deferred() or self._bound(name):
            return
        self.writes.add(name)

    def _enter(self, kind: str, names: Set[str]) -> None:
        self._scopes.append((kind, set(names)))

    def _leave(self) -> None:
        self._scopes.pop()

    def visit_Name(self, node: ast.Name):
        if isinstance(node.ctx, ast.Load):
            self._read(node.id)
        else:
            self._bind(node.id)

    def _visit_target_container(self, node):
        if isinstance(node.ctx, ast.Load):
            self.generic_visit(node)
            return
        self._mutate(_base_name(node.value))
        self.generic_visit(node)

    visit_Attribute = _visit_target_container
    visit_Subscript = _visit_target_container

    def visit_AugAssign(self, node: ast.AugAssign):
        if isinstance(node.target, ast.Name):
            self._read(node.target.id)
        self.visit(node.value)
        self.visit(node.target)

    def visit_AnnAssign(self, node: ast.AnnAssign):
        self.visit(node.annotation)
        if node.value is None:
            return
        self.visit(node.value)
        self.visit(node.target)

    def visit_NamedExpr(self, node: ast.NamedExpr):
        self.visit(node.value)
        for kind, names in reversed(self._scopes):
            if kind == _FUNCTION_SCOPE:
                names.add(node.target.id)
                return
        self.writes.add(node.target.id)

    def visit_Import(self, node):
        for name in _alias_names(node):
            self._bind(name)

    visit_ImportFrom = visit_Import

    def _visit_arguments(self, args: ast.arguments):
        for default in args.defaults + [d for d in args.kw_defaults if d is not None]:
            self.visit(default)
        for a in args.posonlyargs + args.args + args.kwonlyargs + [args.vararg, args.kwarg]:
            if a is not None and a.annotation is not None:
                self.visit(a.annotation)

    def visit_FunctionDef(self, node):
        for decorator in node.decorator_list:
            self.visit(decorator)
        self._visit_arguments(node.args)
        if node.returns is not None:
            self.visit(node.returns)
        self._bind(node.name)
        self._enter(_FUNCTION_SCOPE, _arg_names(node.args) | _local_names(node.body))
        for stmt in node.body:
            self.visit(stmt)
        self._leave()

    visit_AsyncFunctionDef = visit_FunctionDef

    def visit_ClassDef(self, node: ast.ClassDef):
        for expr in node.decorator_list + node.bases + [k.value for k in node.keywords]:
            self.visit(expr)
        self._bind(node.name)
        self._enter(_FUNCTION_SCOPE, _local_names(node.body))
        for stmt in node.body:
            self.visit(stmt)
        self._leave()

    def visit_Lambda(self, node: ast.Lambda):
        self._visit_arguments(node.args)
        self._enter(_FUNCTION_SCOPE, _arg_names(node.args))
        self.visit(node.body)
        self._leave()

    def _visit_comprehension(self, node, elements):
        generators = node.generators
        self.visit(generators[0].iter)
        self._enter(_COMPREHENSION_SCOPE, set())
        for i, generator in enumerate(generators):
            if i:
                self.visit(generator.iter)
            self.visit(generator.target)
            for condition in generator.ifs:
                self.visit(condition)
        for element in elements:
            self.visit(element)
        self._leave()

    def visit_ListComp(self, node):
        self._visit_comprehension(node, [node.elt])

    visit_SetComp = visit_ListComp
    visit_GeneratorExp = visit_ListComp

    def visit_DictComp(self, node: ast.DictComp):
        self._visit_comprehension(node, [node.key, node.value])

    def visit_MatchAs(self, node):
        self.generic_visit(node)
        if node.name:
            self._bind(node.name)

    visit_MatchStar = visit_MatchAs

    def visit_MatchMapping(self, node: ast.MatchMapping):
        self.generic_visit(node)
        if node.rest:
            self._bind(node.rest)

    def visit_Call(self, node: ast.Call):
        self.generic_visit(node)
        func = node.func
        if isinstance(func, ast.Attribute):
            object_name, function_name, is_method = _base_name(func.value), func.attr, True
        elif isinstance(func, ast.Name):
            object_name, function_name, is_method = None, func.id, False
        else:
            return
        rule = self.configuration.find_rule(object_name, function_name)
        untouched = rule.does_not_modify if rule else frozenset()
        if is_method and OBJECT not in untouched:
            self._mutate(object_name)
        if ARGUMENTS in untouched or (not is_method and function_name in BUILTIN_NAMES):
            return
        for arg in list(node.args) + [k.value for k in node.keywords]:
            if isinstance(arg, ast.Starred):
                arg = arg.value
            if isinstance(arg, ast.Name):
                self._mutate(arg.id)


def _first_line(node: ast.AST) -> int:
    decorators = getattr(node, 'decorator_list', None) or []
    return min([node.lineno] + [d.lineno for d in decorators])


class _CellWalker:
    def __init__(self, configuration: SliceConfiguration, lines: Optional[List[str]]):
        self.configuration = configuration
        self.lines = lines
        self.flows: List[StatementFlow] = []

    def _add(self, kind: str, first: int, last: int, parent: Optional[int],
             parts: Sequence[ast.AST] = ()) -> StatementFlow:
        flow = StatementFlow(len(self.flows), kind, first, max(first, last), parent)
        collector = _NameCollector(self.configuration)
        for part in parts:
            collector.visit(part)
        flow.reads = collector.reads
        flow.writes = collector.writes
        self.flows.append(flow)
        return flow

    def _block(self, statements: Sequence[ast.stmt], owner: StatementFlow) -> None:
        for stmt in statements:
            owner.body.append(self.walk(stmt, owner.index))

    def _clause(self, keyword: str, after_line: int, statements: Sequence[ast.stmt],
                parent: StatementFlow) -> int:
        """Add the `else:`/`finally:` line before `statements`; returns the block's last line."""
        block_first = _first_line(statements[0])
        clause_line = None
        if self.lines is not None:
            for lineno in range(after_line + 1, block_first + 1):
                text = self.lines[lineno - 1].lstrip() if lineno <= len(self.lines) else ''
                if text.startswith(keyword) and text[len(keyword):].lstrip().startswith(':'):
                    clause_line = lineno
                    break
        elif block_first > after_line + 1:
            clause_line = after_line + 1
        if clause_line is None:
            # elif chains have no line of their own and are not part of the if-body
            for stmt in statements:
                self.walk(stmt, parent.index)
        else:
            clause = self._add(CLAUSE, clause_line, block_first - 1, parent.index)
            self._block(statements, clause)
        return statements[-1].end_lineno

    def _header(self, stmt: ast.stmt, body: Sequence[ast.stmt], parent: Optional[int],
                parts: Sequence[ast.AST]) -> StatementFlow:
        return self._add(HEADER, stmt.lineno, _first_line(body[0]) - 1, parent, parts)

    def walk(self, stmt: ast.stmt, parent: Optional[int] = None) -> int:
        if isinstance(stmt, (ast.If, ast.While)):
            header = self._header(stmt, stmt.body, parent, [stmt.test])
            self._block(stmt.body, header)
            if stmt.orelse:
                self._clause('else', stmt.body[-1].end_lineno, stmt.orelse, header)
        elif isinstance(stmt, (ast.For, ast.AsyncFor)):
            header = self._header(stmt, stmt.body, parent, [stmt.iter, stmt.target])
            self._block(stmt.body, header)
            if stmt.orelse:
                self._clause('else', stmt.body[-1].end_lineno, stmt.orelse, header)
        elif isinstance(stmt, (ast.With, ast.AsyncWith)):
            parts = []
            for item in stmt.items:
                parts.append(item.context_expr)
                if item.optional_vars is not None:
                    parts.append(item.optional_vars)
            header = self._header(stmt, stmt.body, parent, parts)
            self._block(stmt.body, header)
        elif isinstance(stmt, (ast.Try, getattr(ast, 'TryStar', ast.Try))):
            header = self._header(stmt, stmt.body, parent, [])
            self._block(stmt.body, header)
            last_line = stmt.body[-1].end_lineno
            for handler in stmt.handlers:
                handler_flow = self._header(handler, handler.body, header.index,
                                            [handler.type] if handler.type else [])
                if handler.name:
                    handler_flow.writes.add(handler.name)
                self._block(handler.body, handler_flow)
                last_line = handler.body[-1].end_lineno
            if stmt.orelse:
                last_line = self._clause('else', last_line, stmt.orelse, header)
            if stmt.finalbody:
                self._clause('finally', last_line, stmt.finalbody, header)
        else:
            return self._add(STATEMENT, _first_line(stmt), stmt.end_lineno, parent, [stmt]).index
        return header.index


class DataflowAnalyzer:
    """
    Computes reads, writes and control parents for the statements of a cell.

    The analyzer holds no configuration of its own: each call receives the
    `SliceConfiguration` to apply, so callers can swap configurations
    without affecting analyses already performed.
    """

    def analyze(self, statements: Sequence[ast.stmt],
                configuration: SliceConfiguration = DEFAULT_CONFIGURATION,
                source: Optional[str] = None) -> List[StatementFlow]:
        walker = _CellWalker(configuration, source.split('\n') if source is not None else None)
        for stmt in statements:
            walker.walk(stmt)
        return walker.flows

    def analyze_cell(self, source: str,
                     configuration: SliceConfiguration = DEFAULT_CONFIGURATION) -> CellAnalysis:
        statements, diagnostics = parse_cell(source)
        for diagnostic in diagnostics:
            logger.warning("Skipping unparseable code at line %s: %s", diagnostic.line, diagnostic.message)
        return CellAnalysis(self.analyze(statements, configuration, source), diagnostics)
