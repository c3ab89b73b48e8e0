"""Python normalizer built on ``ast`` and ``tokenize``."""

from __future__ import annotations

import ast
import io
import re
import tokenize
from typing import Dict, FrozenSet, List, Optional, Set, Tuple

from secscan.errors import ExtractionError
from secscan.units import ScanUnit, Span, UnitKind

from .base import EMPTY_NAMES, BindingIndex, line_functions, split_lines

ROUTE_DECORATOR_RE = re.compile(
    r"\.(?:route|get|post|put|patch|delete|api_route|websocket)\s*\(|\bapi_view\b|\bview_config\b"
)
NON_INPUT_PARAMS = frozenset({"self", "cls", "request", "req", "response", "res", "db", "session"})
_TERMINATORS = (ast.Return, ast.Raise, ast.Continue, ast.Break)
# Line breaks as the tokenizer counts them.
LINE_BREAK_RE = re.compile(r"\r\n|\r|\n")


def strip_comments(content: str) -> List[str]:
    """Source lines with ``#`` comments blanked out; columns are unchanged."""

    lines = split_lines(content)
    try:
        tokens = list(tokenize.generate_tokens(io.StringIO(content).readline))
    except (tokenize.TokenError, SyntaxError) as exc:
        raise ExtractionError(f"cannot tokenize python source: {exc}") from exc
    for token in tokens:
        if token.type != tokenize.COMMENT:
            continue
        row, column = token.start
        if row - 1 < len(lines):
            line = lines[row - 1]
            lines[row - 1] = line[:column] + " " * (len(line) - column)
    return [line.rstrip() for line in lines]


class _Collector(ast.NodeVisitor):
    """Single pass gathering scopes, dead code, docstrings and assignments."""

    def __init__(self, content: str) -> None:
        self.lines = LINE_BREAK_RE.split(content)
        self._encoded: Dict[int, bytes] = {}
        self.functions: List[Tuple[int, int, str]] = []
        self.route_params: Dict[str, FrozenSet[str]] = {}
        self.dead_lines: Set[int] = set()
        self.doc_lines: Set[int] = set()
        self.docstrings: Set[int] = set()
        self.assignments: List[Tuple[int, str, str]] = []
        self.literals: List[Tuple[ast.Constant, Optional[str]]] = []
        self.calls: List[ast.Call] = []
        self._noted: Set[int] = set()
        self._scope: List[str] = []

    def _line_bytes(self, index: int) -> bytes:
        encoded = self._encoded.get(index)
        if encoded is None:
            encoded = self._encoded[index] = self.lines[index].encode("utf-8")
        return encoded

    def segment(self, node: ast.AST) -> str:
        """Source text of ``node``; positions are UTF-8 byte offsets."""

        end_lineno = getattr(node, "end_lineno", None)
        end_offset = getattr(node, "end_col_offset", None)
        if end_lineno is None or end_offset is None:
            return ""
        first, last = node.lineno - 1, end_lineno - 1
        if first < 0 or last >= len(self.lines):
            return ""
        if first == last:
            return self._line_bytes(first)[node.col_offset:end_offset].decode("utf-8", errors="replace")
        head = self._line_bytes(first)[node.col_offset:].decode("utf-8", errors="replace")
        tail = self._line_bytes(last)[:end_offset].decode("utf-8", errors="replace")
        return "\n".join([head] + self.lines[first + 1:last] + [tail])

    # -- scopes ------------------------------------------------------------
    def visit_FunctionDef(self, node) -> None:
        name = ".".join(self._scope + [node.name])
        self.functions.append((node.lineno, node.end_lineno or node.lineno, name))
        decorators = " ".join(self.segment(decorator) for decorator in node.decorator_list)
        if ROUTE_DECORATOR_RE.search(decorators):
            params = [arg.arg for arg in node.args.posonlyargs + node.args.args + node.args.kwonlyargs]
            self.route_params[name] = frozenset(param for param in params if param not in NON_INPUT_PARAMS)
        self._mark_docstring(node)
        self._scope.append(node.name)
        self._visit_body(node)
        self._scope.pop()

    visit_AsyncFunctionDef = visit_FunctionDef

    def visit_ClassDef(self, node: ast.ClassDef) -> None:
        self._mark_docstring(node)
        self._scope.append(node.name)
        self._visit_body(node)
        self._scope.pop()

    def visit_Module(self, node: ast.Module) -> None:
        self._mark_docstring(node)
        self._visit_body(node)

    def _mark_docstring(self, node) -> None:
        body = getattr(node, "body", None)
        if not body:
            return
        first = body[0]
        if isinstance(first, ast.Expr) and isinstance(first.value, ast.Constant) and isinstance(first.value.value, str):
            self.docstrings.add(id(first.value))
            self.doc_lines.update(range(first.lineno, (first.end_lineno or first.lineno) + 1))

    def _visit_body(self, node) -> None:
        self._mark_after_terminators(node)
        for child in ast.iter_child_nodes(node):
            self.visit(child)

    # -- dead code ---------------------------------------------------------
    def generic_visit(self, node: ast.AST) -> None:
        self._mark_after_terminators(node)
        super().generic_visit(node)

    def _mark_after_terminators(self, node: ast.AST) -> None:
        for field in ("body", "orelse", "finalbody"):
            statements = getattr(node, field, None)
            if not isinstance(statements, list):
                continue
            for index, statement in enumerate(statements):
                if isinstance(statement, _TERMINATORS) and index + 1 < len(statements):
                    self._mark_dead(statements[index + 1:])
                    break

    def _mark_dead(self, statements: List[ast.stmt]) -> None:
        if statements:
            self.dead_lines.update(range(statements[0].lineno, (statements[-1].end_lineno or statements[-1].lineno) + 1))

    def visit_If(self, node: ast.If) -> None:
        if isinstance(node.test, ast.Constant):
            if node.test.value:
                self._mark_dead(node.orelse)
            else:
                self._mark_dead(node.body)
        self.generic_visit(node)

    def visit_While(self, node: ast.While) -> None:
        if isinstance(node.test, ast.Constant) and not node.test.value:
            self._mark_dead(node.body)
        self.generic_visit(node)

    # -- assignments -------------------------------------------------------
    def visit_Assign(self, node: ast.Assign) -> None:
        value = self.segment(node.value)
        for target in node.targets:
            if isinstance(target, ast.Name):
                self.assignments.append((node.lineno, target.id, value))
                self._note_literal(node.value, target.id)
        self.generic_visit(node)

    def visit_AnnAssign(self, node: ast.AnnAssign) -> None:
        if node.value is not None and isinstance(node.target, ast.Name):
            self.assignments.append((node.lineno, node.target.id, self.segment(node.value)))
            self._note_literal(node.value, node.target.id)
        self.generic_visit(node)

    def visit_AugAssign(self, node: ast.AugAssign) -> None:
        if isinstance(node.target, ast.Name):
            operator = "+" if isinstance(node.op, ast.Add) else "%" if isinstance(node.op, ast.Mod) else "?"
            self.assignments.append((node.lineno, node.target.id, f"\0{operator} {self.segment(node.value)}"))
        self.generic_visit(node)

    def visit_For(self, node) -> None:
        if isinstance(node.target, ast.Name):
            self.assignments.append((node.lineno, node.target.id, self.segment(node.iter)))
        self.generic_visit(node)

    visit_AsyncFor = visit_For

    # -- literals and calls ------------------------------------------------
    def visit_keyword(self, node: ast.keyword) -> None:
        if node.arg:
            self._note_literal(node.value, node.arg)
        self.generic_visit(node)

    def visit_Dict(self, node: ast.Dict) -> None:
        for key, value in zip(node.keys, node.values):
            if isinstance(key, ast.Constant) and isinstance(key.value, str):
                self._note_literal(value, key.value)
        self.generic_visit(node)

    def visit_Constant(self, node: ast.Constant) -> None:
        if isinstance(node.value, str) and node.value and id(node) not in self._noted:
            self._noted.add(id(node))
            self.literals.append((node, None))

    def visit_JoinedStr(self, node: ast.JoinedStr) -> None:
        # f-string fragments have no reliable positions; only nested calls matter.
        for value in node.values:
            if isinstance(value, ast.FormattedValue):
                self.visit(value.value)

    def visit_Call(self, node: ast.Call) -> None:
        self.calls.append(node)
        self.generic_visit(node)

    def _note_literal(self, value: ast.AST, name: str) -> None:
        if isinstance(value, ast.Constant) and isinstance(value.value, str) and value.value and id(value) not in self._noted:
            self._noted.add(id(value))
            self.literals.append((value, name))


def _char_column(lines: List[str], lineno: int, byte_offset: int) -> int:
    """Convert an ast UTF-8 byte offset to a 1-based character column."""

    if lineno - 1 >= len(lines):
        return byte_offset + 1
    encoded = lines[lineno - 1].encode("utf-8")
    return len(encoded[:byte_offset].decode("utf-8", errors="ignore")) + 1


def _span(lines: List[str], node: ast.AST) -> Span:
    end_line = getattr(node, "end_lineno", None) or node.lineno
    end_offset = getattr(node, "end_col_offset", None)
    if end_offset is None:
        end_offset = node.col_offset
    return Span(
        node.lineno,
        _char_column(lines, node.lineno, node.col_offset),
        end_line,
        _char_column(lines, end_line, end_offset),
    )


def extract_python(path: str, content: str, file_kind: str = "python") -> List[ScanUnit]:
    try:
        tree = ast.parse(content)
    except (SyntaxError, ValueError) as exc:
        raise ExtractionError(f"cannot parse python source: {exc}", context={"path": path}) from exc
    except (RecursionError, MemoryError) as exc:
        raise ExtractionError(f"python source nested too deeply to parse: {exc}", context={"path": path}) from exc
    stripped = strip_comments(content)
    lines = split_lines(content)

    collector = _Collector(content)
    try:
        collector.visit(tree)
    except RecursionError as exc:
        raise ExtractionError(f"python source nested too deeply to analyse: {exc}", context={"path": path}) from exc
    owner = line_functions(len(lines), collector.functions)

    def function_at(line: int) -> Optional[str]:
        return owner[line - 1] if 0 < line <= len(owner) else None

    bindings = BindingIndex()
    for line, name, value in sorted(collector.assignments, key=lambda item: item[0]):
        function = function_at(line)
        if value.startswith("\0"):
            previous = bindings.latest(function, line, name)
            value = f"{previous or name} {value[1:]}"
        bindings.add(function, line, name, value)

    def context(line: int, text: str):
        function = function_at(line)
        external = collector.route_params.get(function, EMPTY_NAMES) if function else EMPTY_NAMES
        return function, bindings.visible(function, line, text), external

    units: List[ScanUnit] = []
    for number, text in enumerate(stripped, start=1):
        if not text.strip():
            continue
        function, visible, external = context(number, text)
        units.append(
            ScanUnit(
                kind=UnitKind.LINE,
                path=path,
                file_kind=file_kind,
                text=text,
                source=lines[number - 1],
                span=Span.of_line(number, lines[number - 1]),
                function=function,
                bindings=visible,
                external_names=external,
                unreachable=number in collector.dead_lines,
                in_doc_block=number in collector.doc_lines,
            )
        )

    for node, assigned in collector.literals:
        units.append(
            ScanUnit(
                kind=UnitKind.LITERAL,
                path=path,
                file_kind=file_kind,
                text=node.value,
                source=collector.segment(node),
                span=_span(lines, node),
                function=function_at(node.lineno),
                name=assigned,
                unreachable=node.lineno in collector.dead_lines,
                in_doc_block=id(node) in collector.docstrings,
            )
        )

    for node in collector.calls:
        text = collector.segment(node)
        arguments = [collector.segment(arg) for arg in node.args]
        for keyword in node.keywords:
            value = collector.segment(keyword.value)
            arguments.append(f"{keyword.arg}={value}" if keyword.arg else f"**{value}")
        function, visible, external = context(node.lineno, text)
        units.append(
            ScanUnit(
                kind=UnitKind.CALL,
                path=path,
                file_kind=file_kind,
                text=text,
                source=text,
                span=_span(lines, node),
                function=function,
                name=" ".join(collector.segment(node.func).split()),
                arguments=tuple(arguments),
                bindings=visible,
                external_names=external,
                unreachable=node.lineno in collector.dead_lines,
            )
        )
    return units
