from __future__ import annotations

import ast
import logging
from collections.abc import Collection, Mapping, Sequence
from importlib.util import decode_source
from pathlib import Path

from flag_exorcist.bindings import DECLARING_ROLES, Key, definition_key, resolve_bindings
from flag_exorcist.models import DECLARATION, USAGE, AnalysisUnit, Occurrence, Position

logger = logging.getLogger(__name__)


def scan_tree(
    tree: ast.AST, path: str, symbols: Collection[str], source: str | None = None
) -> list[Occurrence]:
    """Return occurrences of ``symbols`` in pre-order, depth-first, left to right.

    With ``source`` columns count characters; without it they count UTF-8 bytes.
    """
    if not symbols:
        return []
    lines = source.split("\n") if source is not None else []
    roles = resolve_bindings(tree, lines)
    collector = _OccurrenceCollector(path, frozenset(symbols), roles, lines)
    collector.visit(tree)
    return collector.occurrences


def scan_file(path: Path, symbols: Collection[str]) -> list[Occurrence]:
    try:
        data = path.read_bytes()
        # The parser honours a BOM or coding cookie only when given bytes.
        tree = ast.parse(data, filename=str(path))
        source = decode_source(data)
    except (OSError, SyntaxError, UnicodeDecodeError, ValueError) as exc:
        logger.warning("Skipping %s: %s", path, exc)
        return []
    return scan_tree(tree, path.resolve().as_posix(), symbols, source)


def scan_unit(unit: AnalysisUnit, symbols: Collection[str]) -> list[Occurrence]:
    occurrences: list[Occurrence] = []
    for path in sorted(unit.files, key=lambda p: p.as_posix()):
        occurrences.extend(scan_file(path, symbols))
    logger.debug("Unit %s: %d occurrence(s)", unit.name, len(occurrences))
    return occurrences


class _OccurrenceCollector(ast.NodeVisitor):
    def __init__(
        self,
        path: str,
        symbols: frozenset[str],
        roles: Mapping[Key, str],
        lines: Sequence[str],
    ) -> None:
        self.path = path
        self.symbols = symbols
        self.roles = roles
        self.lines = lines
        self.occurrences: list[Occurrence] = []

    def visit_Name(self, node: ast.Name) -> None:  # noqa: N802
        if node.id in self.symbols:
            key = (node.lineno, node.col_offset)
            kind = DECLARATION if self.roles.get(key) in DECLARING_ROLES else USAGE
            self._add(node.id, kind, key)
        self.generic_visit(node)

    def visit_Attribute(self, node: ast.Attribute) -> None:  # noqa: N802
        if node.attr in self.symbols and node.end_lineno is not None:
            # The attribute name ends the node, e.g. ``flags.FeatureA``.
            key = (node.end_lineno, (node.end_col_offset or 0) - len(node.attr.encode("utf-8")))
            self._add(node.attr, USAGE, key)
        self.generic_visit(node)

    def visit_FunctionDef(self, node: ast.FunctionDef) -> None:  # noqa: N802
        self._visit_definition(node)

    def visit_AsyncFunctionDef(self, node: ast.AsyncFunctionDef) -> None:  # noqa: N802
        self._visit_definition(node)

    def visit_ClassDef(self, node: ast.ClassDef) -> None:  # noqa: N802
        self._visit_definition(node)

    def _visit_definition(
        self, node: ast.FunctionDef | ast.AsyncFunctionDef | ast.ClassDef
    ) -> None:
        if node.name in self.symbols:
            self._add(node.name, DECLARATION, definition_key(node, self.lines))
        self.generic_visit(node)

    def _add(self, symbol: str, kind: str, key: Key) -> None:
        line, col_offset = key
        position = Position(path=self.path, line=line, column=self._column(line, col_offset))
        self.occurrences.append(Occurrence(symbol=symbol, kind=kind, position=position))

    def _column(self, line: int, col_offset: int) -> int:
        if 0 < line <= len(self.lines):
            prefix = self.lines[line - 1].encode("utf-8")[:col_offset]
            return len(prefix.decode("utf-8", errors="replace")) + 1
        return col_offset + 1
