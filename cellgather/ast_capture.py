import ast
import logging
from typing import Dict, List, Optional, Tuple

import nbformat

from .model import Cell

logger = logging.getLogger(__name__)

# Lines at column 0 starting with these keep belonging to the statement above.
_CONTINUATION_KEYWORDS = ('else', 'elif', 'except', 'finally', 'case')
_CLOSING_BRACKETS = (')', ']', '}')


class ParseDiagnostic:
    def __init__(self, line: int, message: str, text: str = ""):
        self.line = line
        self.message = message
        self.text = text

    def __repr__(self):
        return f"ParseDiagnostic(line={self.line}, message={self.message!r})"


def _sanitize_source(source: str) -> str:
    cleaned_lines = []
    for line in source.split('\n'):
        stripped = line.lstrip()
        if stripped.startswith('%') or stripped.startswith('!') or stripped.startswith('?'):
            cleaned_lines.append('')
        else:
            cleaned_lines.append(line)
    return '\n'.join(cleaned_lines)


def _starts_new_chunk(line: str, previous: Optional[str]) -> bool:
    if not line.strip() or line[0] in ' \t#':
        return False
    first_word = line.split(None, 1)[0].rstrip(':')
    if first_word in _CONTINUATION_KEYWORDS or line.startswith(_CLOSING_BRACKETS):
        return False
    if previous is not None:
        prev = previous.rstrip()
        if prev.endswith(('\\', ',', '(', '[', '{')) or prev.lstrip().startswith('@'):
            return False
    return True


def _top_level_chunks(source: str) -> List[Tuple[int, str]]:
    """Split source into (first line number, text) chunks at top-level statement starts."""
    chunks: List[Tuple[int, List[str]]] = []
    previous: Optional[str] = None
    for lineno, line in enumerate(source.split('\n'), start=1):
        if not chunks or _starts_new_chunk(line, previous):
            chunks.append((lineno, []))
        chunks[-1][1].append(line)
        if line.strip() and not line.lstrip().startswith('#'):
            previous = line
    return [(start, '\n'.join(lines)) for start, lines in chunks]


def parse_cell(source: str) -> Tuple[List[ast.stmt], List[ParseDiagnostic]]:
    """
    Parse cell text into top-level statements.

    Magic and shell lines are blanked first. When the whole cell does not
    parse, each top-level chunk is parsed on its own; chunks that still fail
    become diagnostics and the rest are returned with cell-relative line
    numbers.
    """
    cleaned = _sanitize_source(source)
    try:
        return list(ast.parse(cleaned).body), []
    except SyntaxError:
        pass

    statements: List[ast.stmt] = []
    diagnostics: List[ParseDiagnostic] = []
    for start, chunk in _top_level_chunks(cleaned):
        try:
            tree = ast.parse(chunk)
        except SyntaxError as exc:
            line = start + (exc.lineno or 1) - 1
            diagnostics.append(ParseDiagnostic(line, exc.msg, chunk.split('\n')[0] if chunk else ""))
            continue
        ast.increment_lineno(tree, start - 1)
        statements.extend(tree.body)
    return statements, diagnostics


def _cell_id(cell, index: int) -> str:
    cid = getattr(cell, 'id', None) or (cell.get('metadata', {}) or {}).get('id')
    return str(cid) if cid else f"cell-{index}"


def _has_error(cell) -> bool:
    return any(out.get('output_type') == 'error' for out in (cell.get('outputs') or []))


def cells_from_notebook(nb_path: str) -> List[Cell]:
    """
    Build the execution history recorded in a saved notebook.

    Only executed, non-empty code cells are kept, ordered by their
    execution count, which is the closest record of run order a saved
    notebook carries.
    """
    nb = nbformat.read(nb_path, as_version=4)
    cells: List[Cell] = []
    seen_counts: Dict[int, str] = {}
    for i, c in enumerate(nb.cells):
        if c.cell_type != 'code':
            continue
        count = c.get('execution_count')
        text = '\n'.join(line.rstrip() for line in (c.source or '').split('\n')).rstrip()
        if count is None or not text.strip():
            continue
        cid = _cell_id(c, i)
        if count in seen_counts:
            logger.warning("Cells %s and %s share execution count %s; keeping the first",
                           seen_counts[count], cid, count)
            continue
        seen_counts[count] = cid
        cells.append(Cell(
            id=cid,
            text=text,
            execution_count=int(count),
            execution_event_id=f"{cid}:{count}",
            persistent_id=cid,
            has_error=_has_error(c),
            outputs=list(c.get('outputs') or []),
        ))
    cells.sort(key=lambda cell: cell.execution_count)
    return cells
