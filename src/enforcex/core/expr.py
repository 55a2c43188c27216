"""Matcher expression parser and compiler.

The matcher text is parsed once into a small AST and then compiled into a
tree of closures. Field references are resolved to tuple indices at compile
time, so evaluating a rule is a plain call ``node(request, rule, ctx)``.
"""

from __future__ import annotations

import operator
import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from .errors import CompileError
from .functions import DEFAULT_OPTIONS, FunctionRegistry, MatchOptions

Node = Callable[[Sequence[Any], Sequence[Any], Any], Any]

_TOKEN_RE = re.compile(
    r"""
    (?P<ws>\s+)
    |(?P<num>\d+(?:\.\d+)?)
    |(?P<str>"(?:[^"\\]|\\.)*"|'(?:[^'\\]|\\.)*')
    |(?P<op>&&|\|\||==|!=|<=|>=|=~|[<>!+\-*/%(),.])
    |(?P<name>[A-Za-z_][A-Za-z0-9_]*)
    """,
    re.VERBOSE,
)

_COMPARISONS = ("==", "!=", "<", "<=", ">", ">=", "=~", "in")


@dataclass(frozen=True)
class Token:
    kind: str  # num | str | op | name | end
    value: str
    pos: int


def tokenize(text: str) -> List[Token]:
    tokens: List[Token] = []
    pos = 0
    while pos < len(text):
        m = _TOKEN_RE.match(text, pos)
        if m is None:
            raise CompileError(f"unexpected character {text[pos]!r} at {pos} in {text!r}")
        kind = m.lastgroup or ""
        if kind != "ws":
            tokens.append(Token(kind, m.group(kind), pos))
        pos = m.end()
    tokens.append(Token("end", "", len(text)))
    return tokens


# --- AST ----------------------------------------------------------------------


@dataclass(frozen=True)
class Literal:
    value: Any


@dataclass(frozen=True)
class Ref:
    base: str
    field: str
    attrs: Tuple[str, ...] = ()


@dataclass(frozen=True)
class Call:
    name: str
    args: Tuple[Any, ...]


@dataclass(frozen=True)
class Unary:
    op: str
    operand: Any


@dataclass(frozen=True)
class Binary:
    op: str
    left: Any
    right: Any


@dataclass(frozen=True)
class TupleExpr:
    items: Tuple[Any, ...]


def _unquote(raw: str) -> str:
    return re.sub(r"\\(.)", r"\1", raw[1:-1])


class Parser:
    """Recursive-descent parser. Precedence, loosest first:

    ``||``, ``&&``, comparisons (``== != < <= > >= =~ in``), ``+ -``,
    ``* / %``, prefix ``! -``, primaries.
    """

    def __init__(self, text: str) -> None:
        self.text = text
        self.tokens = tokenize(text)
        self.i = 0

    # token helpers
    def _peek(self) -> Token:
        return self.tokens[self.i]

    def _next(self) -> Token:
        tok = self.tokens[self.i]
        self.i += 1
        return tok

    def _accept(self, value: str) -> bool:
        tok = self._peek()
        if tok.kind in ("op", "name") and tok.value == value:
            self.i += 1
            return True
        return False

    def _expect(self, value: str) -> None:
        if not self._accept(value):
            self._fail(f"expected {value!r}")

    def _fail(self, msg: str) -> None:
        tok = self._peek()
        found = tok.value or "end of expression"
        raise CompileError(f"{msg}, found {found!r} at {tok.pos} in {self.text!r}")

    # grammar
    def parse(self) -> Any:
        if self._peek().kind == "end":
            raise CompileError("empty expression")
        node = self._or()
        if self._peek().kind != "end":
            self._fail("unexpected token")
        return node

    def _or(self) -> Any:
        node = self._and()
        while self._accept("||"):
            node = Binary("||", node, self._and())
        return node

    def _and(self) -> Any:
        node = self._comparison()
        while self._accept("&&"):
            node = Binary("&&", node, self._comparison())
        return node

    def _comparison(self) -> Any:
        node = self._additive()
        tok = self._peek()
        if tok.kind in ("op", "name") and tok.value in _COMPARISONS:
            self.i += 1
            node = Binary(tok.value, node, self._additive())
            nxt = self._peek()
            if nxt.kind in ("op", "name") and nxt.value in _COMPARISONS:
                self._fail("chained comparison")
        return node

    def _additive(self) -> Any:
        node = self._multiplicative()
        while True:
            tok = self._peek()
            if tok.kind == "op" and tok.value in ("+", "-"):
                self.i += 1
                node = Binary(tok.value, node, self._multiplicative())
            else:
                return node

    def _multiplicative(self) -> Any:
        node = self._unary()
        while True:
            tok = self._peek()
            if tok.kind == "op" and tok.value in ("*", "/", "%"):
                self.i += 1
                node = Binary(tok.value, node, self._unary())
            else:
                return node

    def _unary(self) -> Any:
        if self._accept("!"):
            return Unary("!", self._unary())
        if self._accept("-"):
            return Unary("-", self._unary())
        return self._primary()

    def _primary(self) -> Any:
        tok = self._next()
        if tok.kind == "num":
            return Literal(float(tok.value) if "." in tok.value else int(tok.value))
        if tok.kind == "str":
            return Literal(_unquote(tok.value))
        if tok.kind == "op" and tok.value == "(":
            items = [self._or()]
            while self._accept(","):
                items.append(self._or())
            self._expect(")")
            if len(items) == 1:
                return items[0]
            return TupleExpr(tuple(items))
        if tok.kind == "name":
            if tok.value == "true":
                return Literal(True)
            if tok.value == "false":
                return Literal(False)
            if tok.value == "in":
                self.i -= 1
                self._fail("unexpected operator")
            if self._accept("("):
                args: List[Any] = []
                if not self._accept(")"):
                    args.append(self._or())
                    while self._accept(","):
                        args.append(self._or())
                    self._expect(")")
                return Call(tok.value, tuple(args))
            if self._accept("."):
                parts = [self._name()]
                while self._accept("."):
                    parts.append(self._name())
                return Ref(tok.value, parts[0], tuple(parts[1:]))
            raise CompileError(f"unknown identifier {tok.value!r} in {self.text!r}")
        self.i -= 1
        self._fail("unexpected token")
        raise AssertionError("unreachable")  # pragma: no cover

    def _name(self) -> str:
        tok = self._next()
        if tok.kind != "name":
            self.i -= 1
            self._fail("expected a field name")
        return tok.value


def parse(text: str) -> Any:
    return Parser(text).parse()


# --- compilation --------------------------------------------------------------


def _truth(value: Any) -> bool:
    if not isinstance(value, bool):
        raise TypeError(f"logical operand must be a boolean, got {type(value).__name__}")
    return value


def _attr(value: Any, name: str) -> Any:
    if isinstance(value, Mapping):
        return value[name]
    return getattr(value, name)


_ARITH: Dict[str, Callable[[Any, Any], Any]] = {
    "+": operator.add,
    "-": operator.sub,
    "*": operator.mul,
    "/": operator.truediv,
    "%": operator.mod,
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
}


class CompiledExpr:
    """A matcher compiled into closures; call it as ``expr(request, rule, ctx)``."""

    __slots__ = ("source", "uses_policy", "functions", "_fn")

    def __init__(self, source: str, fn: Node, uses_policy: bool, functions: Tuple[str, ...]):
        self.source = source
        self.uses_policy = uses_policy
        self.functions = functions
        self._fn = fn

    def __call__(self, request: Sequence[Any], rule: Sequence[Any], ctx: Any = None) -> Any:
        return self._fn(request, rule, ctx)

    def __repr__(self) -> str:
        return f"CompiledExpr({self.source!r})"


class _Compiler:
    def __init__(
        self,
        fields: Mapping[str, Sequence[str]],
        registry: FunctionRegistry,
        options: MatchOptions,
    ) -> None:
        self.fields = {base: {name: i for i, name in enumerate(names)} for base, names in fields.items()}
        self.registry = registry
        self.options = options
        self.uses_policy = False
        self.called: List[str] = []

    def compile(self, node: Any) -> Node:
        method = getattr(self, "_c_" + type(node).__name__)
        return method(node)

    def _c_Literal(self, node: Literal) -> Node:
        value = node.value
        return lambda r, p, c: value

    def _c_Ref(self, node: Ref) -> Node:
        if node.base not in self.fields:
            raise CompileError(f"unknown reference {node.base}.{node.field}")
        index = self.fields[node.base].get(node.field)
        if index is None:
            raise CompileError(f"undeclared field {node.base}.{node.field}")
        if node.base == "p":
            self.uses_policy = True
            getter: Node = lambda r, p, c: p[index]
        else:
            getter = lambda r, p, c: r[index]
        for attr in node.attrs:
            getter = (lambda g, a: lambda r, p, c: _attr(g(r, p, c), a))(getter, attr)
        return getter

    def _c_Call(self, node: Call) -> Node:
        spec = self.registry.get(node.name)
        if spec is None:
            raise CompileError(f"unknown function {node.name!r}")
        if spec.arity is not None and len(node.args) != spec.arity:
            raise CompileError(
                f"function {node.name!r} takes {spec.arity} arguments, got {len(node.args)}"
            )
        self.called.append(node.name)
        args = [self.compile(a) for a in node.args]
        fn = spec.fn
        if spec.contextual:
            return lambda r, p, c: fn(c, *[a(r, p, c) for a in args])
        return lambda r, p, c: fn(*[a(r, p, c) for a in args])

    def _c_Unary(self, node: Unary) -> Node:
        inner = self.compile(node.operand)
        if node.op == "!":
            return lambda r, p, c: not _truth(inner(r, p, c))
        return lambda r, p, c: -inner(r, p, c)

    def _c_TupleExpr(self, node: TupleExpr) -> Node:
        items = [self.compile(i) for i in node.items]
        return lambda r, p, c: tuple(i(r, p, c) for i in items)

    def _c_Binary(self, node: Binary) -> Node:
        left = self.compile(node.left)
        right = self.compile(node.right)
        op = node.op
        fold = self.options.fold
        if op == "&&":
            return lambda r, p, c: _truth(left(r, p, c)) and _truth(right(r, p, c))
        if op == "||":
            return lambda r, p, c: _truth(left(r, p, c)) or _truth(right(r, p, c))
        if op in ("==", "!="):
            if self.options.case_sensitive:
                eq: Node = lambda r, p, c: left(r, p, c) == right(r, p, c)
            else:
                eq = lambda r, p, c: fold(left(r, p, c)) == fold(right(r, p, c))
            if op == "!=":
                return lambda r, p, c: not eq(r, p, c)
            return eq
        if op == "=~":
            flags = self.options.re_flags

            def _regex(r: Sequence[Any], p: Sequence[Any], c: Any) -> bool:
                value, pattern = left(r, p, c), right(r, p, c)
                if not isinstance(value, str) or not isinstance(pattern, str):
                    raise TypeError("'=~' needs string operands")
                return re.search(pattern, value, flags) is not None

            return _regex
        if op == "in":
            return self._membership(node, left, right)
        return (lambda f: lambda r, p, c: f(left(r, p, c), right(r, p, c)))(_ARITH[op])

    def _membership(self, node: Binary, left: Node, right: Node) -> Node:
        fold = self.options.fold
        items = node.right.items if isinstance(node.right, TupleExpr) else None
        if items is not None and all(isinstance(i, Literal) for i in items):
            constant = frozenset(fold(i.value) for i in items)
            return lambda r, p, c: fold(left(r, p, c)) in constant

        def _in(r: Sequence[Any], p: Sequence[Any], c: Any) -> bool:
            container = right(r, p, c)
            if isinstance(container, str):
                raise TypeError("'in' needs a collection on the right-hand side")
            needle = fold(left(r, p, c))
            return any(needle == fold(v) for v in container)

        return _in


def compile_expr(
    text: str,
    fields: Mapping[str, Sequence[str]],
    registry: Optional[FunctionRegistry] = None,
    options: MatchOptions = DEFAULT_OPTIONS,
) -> CompiledExpr:
    """Parse and compile *text*.

    *fields* maps each reference base (``r``, ``p``) to its declared field
    names. Raises :class:`CompileError` on any syntax or reference problem.
    """
    tree = parse(text)
    compiler = _Compiler(fields, registry or FunctionRegistry(), options)
    fn = compiler.compile(tree)
    return CompiledExpr(text, fn, compiler.uses_policy, tuple(compiler.called))


__all__ = ["CompiledExpr", "compile_expr", "parse", "tokenize"]
