"""Declaration-site classification for names in a Python syntax tree.

The pass runs once per tree and produces a read-only mapping keyed by the
``(lineno, col_offset)`` of each ``ast.Name`` that sits in a binding position.
The scanner only reads it.

Rules:

* In an assignment target list only the first name is a declaration
  (``A, B = f()`` declares ``A``; ``B`` is ``secondary``). Chained targets
  (``A = B = 1``) and nested or starred targets are flattened left to right.
* An annotated name directly in a class body is a ``field``.
* ``def``/``class`` names are ``definition`` sites; they have no ``ast.Name``
  node, so they are keyed by the position of the name itself, found in the
  source line when it is available.

Keys use the parser's column offsets, which count UTF-8 bytes.
"""

from __future__ import annotations

import ast
import re
from collections.abc import Mapping, Sequence
from types import MappingProxyType

ASSIGNMENT = "assignment"
FIELD = "field"
DEFINITION = "definition"
SECONDARY = "secondary"

DECLARING_ROLES = frozenset({ASSIGNMENT, FIELD, DEFINITION})

Key = tuple[int, int]

_DEFINITION_PREFIX = re.compile(rb"(?:async\s+)?(?:def|class)\s+")


def resolve_bindings(tree: ast.AST, lines: Sequence[str] = ()) -> Mapping[Key, str]:
    resolver = _BindingResolver(lines)
    resolver.visit(tree)
    return MappingProxyType(dict(resolver.roles))


def definition_key(
    node: ast.FunctionDef | ast.AsyncFunctionDef | ast.ClassDef, lines: Sequence[str] = ()
) -> Key:
    """Position of the name in a ``def``/``class`` statement.

    Without the source line a single space after the keyword(s) is assumed.
    """
    if 0 < node.lineno <= len(lines):
        encoded = lines[node.lineno - 1].encode("utf-8")
        match = _DEFINITION_PREFIX.match(encoded, node.col_offset)
        if match and encoded.startswith(node.name.encode("utf-8"), match.end()):
            return (node.lineno, match.end())
    if isinstance(node, ast.ClassDef):
        prefix = "class "
    elif isinstance(node, ast.AsyncFunctionDef):
        prefix = "async def "
    else:
        prefix = "def "
    return (node.lineno, node.col_offset + len(prefix))


class _BindingResolver(ast.NodeVisitor):
    def __init__(self, lines: Sequence[str]) -> None:
        self.lines = lines
        self.roles: dict[Key, str] = {}
        self._in_class: list[bool] = [False]

    def visit_Assign(self, node: ast.Assign) -> None:  # noqa: N802
        names: list[ast.Name | None] = []
        for target in node.targets:
            names.extend(_target_names(target))
        self._mark_list(names)
        self.generic_visit(node)

    def visit_AnnAssign(self, node: ast.AnnAssign) -> None:  # noqa: N802
        if isinstance(node.target, ast.Name):
            role = FIELD if self._in_class[-1] else ASSIGNMENT
            self.roles.setdefault(_key(node.target), role)
        self.generic_visit(node)

    def visit_ClassDef(self, node: ast.ClassDef) -> None:  # noqa: N802
        self.roles[definition_key(node, self.lines)] = DEFINITION
        self._in_class.append(True)
        self.generic_visit(node)
        self._in_class.pop()

    def visit_FunctionDef(self, node: ast.FunctionDef) -> None:  # noqa: N802
        self._visit_function(node)

    def visit_AsyncFunctionDef(self, node: ast.AsyncFunctionDef) -> None:  # noqa: N802
        self._visit_function(node)

    def _visit_function(self, node: ast.FunctionDef | ast.AsyncFunctionDef) -> None:
        self.roles[definition_key(node, self.lines)] = DEFINITION
        self._in_class.append(False)
        self.generic_visit(node)
        self._in_class.pop()

    def _mark_list(self, names: list[ast.Name | None]) -> None:
        for index, name in enumerate(names):
            if name is None:
                continue
            role = ASSIGNMENT if index == 0 else SECONDARY
            self.roles.setdefault(_key(name), role)


def _target_names(target: ast.expr) -> list[ast.Name | None]:
    # Attribute and subscript targets hold a slot in the list but bind no name.
    if isinstance(target, ast.Name):
        return [target]
    if isinstance(target, ast.Starred):
        return _target_names(target.value)
    if isinstance(target, (ast.Tuple, ast.List)):
        names: list[ast.Name | None] = []
        for elt in target.elts:
            names.extend(_target_names(elt))
        return names
    return [None]


def _key(node: ast.expr) -> Key:
    return (node.lineno, node.col_offset)
