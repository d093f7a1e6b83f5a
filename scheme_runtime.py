"""Embedded Scheme runtime used by the discovery sandbox.

Reads and evaluates a small Scheme dialect over a cons-cell data model:

    numbers  -> int / float (ints are exact and unbounded)
    strings  -> str
    symbols  -> Symbol (interned; ':name' symbols are self-evaluating keywords)
    lists    -> Pair chains terminated by Nil
    #t / #f  -> True / False
    #\\a     -> Char

Evaluation happens against an Environment: a name -> value layer with zero or
more parent layers, searched innermost-first. Special forms are ordinary
bindings (SpecialForm objects), so a namespace that leaves out `if` cannot
use `if`.
"""

from __future__ import annotations

import io
import math
import operator
import re
import sys
from typing import Any, Callable, Iterable, Iterator, NamedTuple


class SchemeError(Exception):
    """Raised for any evaluation failure inside the interpreter."""


class SchemeSyntaxError(SchemeError):
    pass


class UnboundSymbolError(SchemeError):
    pass


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------

class Symbol:
    __slots__ = ("name",)
    _table: dict[str, "Symbol"] = {}

    def __new__(cls, name: str) -> "Symbol":
        sym = cls._table.get(name)
        if sym is None:
            sym = super().__new__(cls)
            sym.name = sys.intern(name)
            cls._table[name] = sym
        return sym

    @property
    def is_keyword(self) -> bool:
        return len(self.name) > 1 and self.name.startswith(":")

    def __repr__(self):
        return f"Symbol({self.name!r})"

    def __str__(self):
        return self.name


class NilType:
    """The empty list. There is exactly one instance, `Nil`."""

    __slots__ = ()
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self):
        return "Nil"

    def __bool__(self):
        return False

    def __iter__(self):
        return iter(())

    def __len__(self):
        return 0


Nil = NilType()


class Pair:
    """Immutable cons cell."""

    __slots__ = ("car", "cdr")

    def __init__(self, car: Any, cdr: Any = Nil):
        object.__setattr__(self, "car", car)
        object.__setattr__(self, "cdr", cdr)

    def __setattr__(self, name, value):
        raise AttributeError("Pair is immutable")

    def __iter__(self) -> Iterator[Any]:
        cur = self
        while isinstance(cur, Pair):
            yield cur.car
            cur = cur.cdr

    def __eq__(self, other):
        if not isinstance(other, Pair):
            return NotImplemented
        a, b = self, other
        while isinstance(a, Pair) and isinstance(b, Pair):
            if a is b:
                return True
            if not is_equal(a.car, b.car):
                return False
            a, b = a.cdr, b.cdr
        return is_equal(a, b)

    __hash__ = None

    def __repr__(self):
        return f"Pair<{to_write(self)}>"


class Values:
    """Multiple values returned by `(values ...)`."""

    __slots__ = ("items",)

    def __init__(self, items: Iterable[Any]):
        self.items = tuple(items)

    def __repr__(self):
        return f"Values{self.items!r}"


class Char:
    __slots__ = ("char",)

    def __init__(self, char: str):
        self.char = char

    def __eq__(self, other):
        return isinstance(other, Char) and self.char == other.char

    def __hash__(self):
        return hash(("char", self.char))

    def __repr__(self):
        return f"Char({self.char!r})"


class Port:
    """String output port."""

    __slots__ = ("kind", "_buffer")

    def __init__(self, kind: str = "output"):
        self.kind = kind
        self._buffer = io.StringIO()

    def write(self, text: str) -> None:
        self._buffer.write(text)

    def getvalue(self) -> str:
        return self._buffer.getvalue()


class SpecialForm:
    """Syntax object: receives its operands unevaluated, plus the environment."""

    __slots__ = ("name", "handler")

    def __init__(self, name: str, handler: Callable[[Any, "Environment"], Any]):
        self.name = name
        self.handler = handler

    def __repr__(self):
        return f"#<syntax {self.name}>"


class TailEval(NamedTuple):
    expr: Any
    env: "Environment"


class Procedure:
    """A closure created by `lambda` or `define`. Callable from Python."""

    def __init__(self, params: list[str], rest: str | None, body: Any,
                 env: "Environment", name: str | None = None):
        if body is Nil:
            raise SchemeSyntaxError("lambda: empty body")
        self.params = params
        self.rest = rest
        self.body = body
        self.env = env
        self.name = name

    @property
    def arity(self) -> int:
        return len(self.params)

    def bind(self, args: list[Any]) -> "Environment":
        n = len(self.params)
        if len(args) < n or (self.rest is None and len(args) > n):
            raise SchemeError(
                f"{self.name or 'lambda'}: expected {n}{'+' if self.rest else ''} "
                f"argument(s), got {len(args)}"
            )
        frame = Environment(dict(zip(self.params, args)), self.env, name=self.name or "lambda")
        if self.rest is not None:
            frame.define(self.rest, make_list(args[n:]))
        return frame

    def __call__(self, *args):
        tail = _body_tail(self.body, self.bind(list(args)))
        return eval_expr(tail.expr, tail.env)

    def __repr__(self):
        return f"#<procedure {self.name or 'lambda'}>"


class Macro:
    """Non-hygienic macro from `define-macro`."""

    def __init__(self, name: str, procedure: Procedure):
        self.name = name
        self.procedure = procedure

    def expand(self, operands: Any) -> Any:
        return self.procedure(*iter_list(operands))

    def __repr__(self):
        return f"#<macro {self.name}>"


def make_list(items: Iterable[Any], tail: Any = Nil) -> Any:
    """Build a pair chain right-to-left so element order is preserved."""
    result = tail
    for item in reversed(list(items)):
        result = Pair(item, result)
    return result


def iter_list(value: Any) -> Iterator[Any]:
    """Iterate a proper list (or a Python sequence handed in by host code)."""
    if isinstance(value, (list, tuple)):
        yield from value
        return
    cur = value
    while isinstance(cur, Pair):
        yield cur.car
        cur = cur.cdr
    if cur is not Nil:
        raise SchemeError(f"expected a proper list, got {to_write(value)}")


def is_list(value: Any) -> bool:
    cur = value
    while isinstance(cur, Pair):
        cur = cur.cdr
    return cur is Nil


def is_true(value: Any) -> bool:
    """Only #f, the empty list and a host None count as false."""
    return value is not False and value is not Nil and value is not None


def is_equal(a: Any, b: Any) -> bool:
    if isinstance(a, bool) or isinstance(b, bool):
        return a is b
    return a == b


def is_eqv(a: Any, b: Any) -> bool:
    if a is b:
        return True
    if isinstance(a, bool) or isinstance(b, bool):
        return False
    return type(a) is type(b) and isinstance(a, (int, float, str, Char)) and a == b


# ---------------------------------------------------------------------------
# Environment
# ---------------------------------------------------------------------------

class Environment:
    """A layer of name -> value bindings with any number of parent layers.

    Lookup checks this layer first, then each parent in order (depth-first).
    A frozen layer rejects both new definitions and assignment.
    """

    __slots__ = ("name", "vars", "parents", "frozen")

    def __init__(self, bindings: dict[str, Any] | None = None, *parents: "Environment | None",
                 name: str = "env"):
        self.name = name
        self.vars: dict[str, Any] = dict(bindings) if bindings else {}
        self.parents: tuple[Environment, ...] = tuple(p for p in parents if p is not None)
        self.frozen = False

    def _find(self, name: str) -> "Environment | None":
        stack: list[Environment] = [self]
        seen: set[int] = set()
        while stack:
            env = stack.pop()
            if id(env) in seen:
                continue
            seen.add(id(env))
            if name in env.vars:
                return env
            stack.extend(reversed(env.parents))
        return None

    def get(self, name: str, default: Any = None) -> Any:
        env = self._find(name)
        return default if env is None else env.vars[name]

    def lookup(self, name: str) -> Any:
        env = self._find(name)
        if env is None:
            raise UnboundSymbolError(f"unbound symbol: {name}")
        return env.vars[name]

    def define(self, name: str, value: Any) -> None:
        if self.frozen:
            raise SchemeError(f"cannot define {name}: environment '{self.name}' is read-only")
        self.vars[name] = value

    set = define

    def assign(self, name: str, value: Any) -> None:
        env = self._find(name)
        if env is None:
            raise UnboundSymbolError(f"set!: unbound symbol: {name}")
        if env.frozen:
            raise SchemeError(f"set!: {name} is read-only in '{env.name}'")
        env.vars[name] = value

    def freeze(self) -> "Environment":
        self.frozen = True
        return self

    def names(self) -> set[str]:
        names: set[str] = set(self.vars)
        for parent in self.parents:
            names |= parent.names()
        return names

    def __contains__(self, name: str) -> bool:
        return self._find(name) is not None

    def __repr__(self):
        return f"<Environment {self.name} ({len(self.vars)} bindings)>"


# ---------------------------------------------------------------------------
# Reader
# ---------------------------------------------------------------------------

TOKEN_RE = re.compile(
    r"""\s*(?:
        (?P<comment>;[^\n]*)
      | (?P<block_comment>\#\|.*?\|\#)
      | (?P<splice>,@)
      | (?P<quote>['`,])
      | (?P<lparen>[(\[])
      | (?P<rparen>[)\]])
      | (?P<string>"(?:\\.|[^\\"])*")
      | (?P<char>\#\\(?:newline|space|tab|return|nul|.))
      | (?P<atom>[^\s()\[\]'`",;]+)
    )""",
    re.VERBOSE | re.DOTALL,
)

INT_RE = re.compile(r"[+-]?\d+")
FLOAT_RE = re.compile(r"[+-]?(?:\d+\.\d*|\.\d+|\d+)(?:[eE][+-]?\d+)?")

QUOTE_FORMS = {
    "'": "quote",
    "`": "quasiquote",
    ",": "unquote",
    ",@": "unquote-splicing",
}

NAMED_CHARS = {
    "newline": "\n",
    "space": " ",
    "tab": "\t",
    "return": "\r",
    "nul": "\0",
}

_STRING_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", "0": "\0", "\\": "\\", '"': '"'}


def tokenize(source: str) -> Iterator[tuple[str, str]]:
    pos, n = 0, len(source)
    while pos < n:
        m = TOKEN_RE.match(source, pos)
        if m is None:
            if not source[pos:].strip():
                return
            if source[pos:].lstrip().startswith('"'):
                raise SchemeSyntaxError("unterminated string literal")
            raise SchemeSyntaxError(f"unexpected character {source[pos]!r} at offset {pos}")
        pos = m.end()
        kind = m.lastgroup
        if kind in ("comment", "block_comment"):
            continue
        yield kind, m.group(kind)


def parse_atom(text: str) -> Any:
    if text in ("#t", "#true"):
        return True
    if text in ("#f", "#false"):
        return False
    if INT_RE.fullmatch(text):
        return int(text)
    if FLOAT_RE.fullmatch(text):
        return float(text)
    return Symbol(text)


def _unescape(body: str) -> str:
    return re.sub(r"\\(.)", lambda m: _STRING_ESCAPES.get(m.group(1), m.group(1)), body,
                  flags=re.DOTALL)


class Reader:
    def __init__(self, source: str):
        self.tokens = list(tokenize(source))
        self.pos = 0

    def _peek(self) -> tuple[str | None, str | None]:
        if self.pos < len(self.tokens):
            return self.tokens[self.pos]
        return None, None

    def _next(self) -> tuple[str, str]:
        if self.pos >= len(self.tokens):
            raise SchemeSyntaxError("unexpected end of input")
        token = self.tokens[self.pos]
        self.pos += 1
        return token

    def read(self) -> Any:
        kind, text = self._next()
        if kind == "lparen":
            return self._read_list()
        if kind == "rparen":
            raise SchemeSyntaxError(f"unexpected '{text}'")
        if kind in ("quote", "splice"):
            return make_list([Symbol(QUOTE_FORMS[text]), self.read()])
        if kind == "string":
            return _unescape(text[1:-1])
        if kind == "char":
            name = text[2:]
            return Char(NAMED_CHARS.get(name, name))
        return parse_atom(text)

    def _read_list(self) -> Any:
        items: list[Any] = []
        while True:
            kind, text = self._peek()
            if kind is None:
                raise SchemeSyntaxError("unbalanced '(': missing ')'")
            if kind == "rparen":
                self.pos += 1
                return make_list(items)
            if kind == "atom" and text == ".":
                self.pos += 1
                if not items:
                    raise SchemeSyntaxError("dotted tail without a head")
                tail = self.read()
                if self._next()[0] != "rparen":
                    raise SchemeSyntaxError("expected ')' after dotted tail")
                return make_list(items, tail)
            items.append(self.read())

    def read_all(self) -> list[Any]:
        forms = []
        while self.pos < len(self.tokens):
            forms.append(self.read())
        return forms


def read_all(source: str) -> list[Any]:
    return Reader(source).read_all()


# ---------------------------------------------------------------------------
# Evaluator
# ---------------------------------------------------------------------------

def eval_expr(expr: Any, env: Environment) -> Any:
    """Evaluate one form. Tail positions loop instead of recursing."""
    while True:
        if isinstance(expr, Symbol):
            return expr if expr.is_keyword else env.lookup(expr.name)
        if not isinstance(expr, Pair):
            return expr

        op = eval_expr(expr.car, env)
        if isinstance(op, SpecialForm):
            result = op.handler(expr.cdr, env)
            if isinstance(result, TailEval):
                expr, env = result
                continue
            return result
        if isinstance(op, Macro):
            expr = op.expand(expr.cdr)
            continue

        args = [eval_expr(arg, env) for arg in iter_list(expr.cdr)]
        if isinstance(op, Procedure):
            expr, env = _body_tail(op.body, op.bind(args))
            continue
        if callable(op):
            return op(*args)
        raise SchemeError(f"not a procedure: {to_write(op)}")


def evaluate(source: str, env: Environment | None = None) -> list[Any]:
    """Read every top-level form in `source` and evaluate them in order."""
    if env is None:
        env = make_global_environment()
    try:
        return [eval_expr(form, env) for form in read_all(source)]
    except RecursionError:
        raise SchemeError("maximum recursion depth exceeded") from None


def _body_tail(body: Any, env: Environment) -> TailEval:
    forms = list(iter_list(body))
    for form in forms[:-1]:
        eval_expr(form, env)
    return TailEval(forms[-1] if forms else Nil, env)


def _operands(args: Any, form: str, minimum: int, maximum: int | None = None) -> list[Any]:
    items = list(iter_list(args))
    if len(items) < minimum or (maximum is not None and len(items) > maximum):
        raise SchemeSyntaxError(f"{form}: bad syntax ({len(items)} operand(s))")
    return items


def _parse_params(spec: Any) -> tuple[list[str], str | None]:
    names = []
    while isinstance(spec, Pair):
        if not isinstance(spec.car, Symbol):
            raise SchemeSyntaxError(f"parameter must be a symbol, got {to_write(spec.car)}")
        names.append(spec.car.name)
        spec = spec.cdr
    if isinstance(spec, Symbol):
        return names, spec.name
    if spec is not Nil:
        raise SchemeSyntaxError(f"bad parameter list tail: {to_write(spec)}")
    return names, None


def _parse_bindings(spec: Any, form: str) -> list[tuple[str, Any]]:
    bindings = []
    for binding in iter_list(spec):
        parts = list(iter_list(binding)) if isinstance(binding, Pair) else []
        if len(parts) != 2 or not isinstance(parts[0], Symbol):
            raise SchemeSyntaxError(f"{form}: malformed binding {to_write(binding)}")
        bindings.append((parts[0].name, parts[1]))
    return bindings


def _quote(args, env):
    return _operands(args, "quote", 1, 1)[0]


_UNQUOTE = Symbol("unquote")
_UNQUOTE_SPLICING = Symbol("unquote-splicing")


def _quasi(template: Any, env: Environment) -> Any:
    if not isinstance(template, Pair):
        return template
    if template.car is _UNQUOTE:
        return eval_expr(_operands(template.cdr, "unquote", 1, 1)[0], env)
    items = []
    cur = template
    while isinstance(cur, Pair):
        if cur.car is _UNQUOTE:
            return make_list(items, eval_expr(_operands(cur.cdr, "unquote", 1, 1)[0], env))
        item = cur.car
        if isinstance(item, Pair) and item.car is _UNQUOTE_SPLICING:
            spliced = eval_expr(_operands(item.cdr, "unquote-splicing", 1, 1)[0], env)
            items.extend(iter_list(spliced))
        else:
            items.append(_quasi(item, env))
        cur = cur.cdr
    return make_list(items, _quasi(cur, env))


def _quasiquote(args, env):
    return _quasi(_operands(args, "quasiquote", 1, 1)[0], env)


def _if(args, env):
    parts = _operands(args, "if", 2, 3)
    if is_true(eval_expr(parts[0], env)):
        return TailEval(parts[1], env)
    return TailEval(parts[2], env) if len(parts) == 3 else Nil


def _define(args, env):
    parts = _operands(args, "define", 1)
    target = parts[0]
    if isinstance(target, Pair):
        if not isinstance(target.car, Symbol):
            raise SchemeSyntaxError("define: procedure name must be a symbol")
        params, rest = _parse_params(target.cdr)
        env.define(target.car.name, Procedure(params, rest, args.cdr, env, name=target.car.name))
        return target.car
    if not isinstance(target, Symbol) or len(parts) > 2:
        raise SchemeSyntaxError("define: expected (define name value)")
    value = eval_expr(parts[1], env) if len(parts) == 2 else Nil
    if isinstance(value, Procedure) and value.name is None:
        value.name = target.name
    env.define(target.name, value)
    return target


def _set(args, env):
    name, expr = _operands(args, "set!", 2, 2)
    if not isinstance(name, Symbol):
        raise SchemeSyntaxError("set!: expected a symbol")
    env.assign(name.name, eval_expr(expr, env))
    return Nil


def _lambda(args, env):
    if not isinstance(args, Pair):
        raise SchemeSyntaxError("lambda: missing parameter list")
    params, rest = _parse_params(args.car)
    return Procedure(params, rest, args.cdr, env)


def _begin(args, env):
    if args is Nil:
        return Nil
    return _body_tail(args, env)


def _let(args, env):
    if not isinstance(args, Pair):
        raise SchemeSyntaxError("let: missing bindings")
    if isinstance(args.car, Symbol):
        name = args.car.name
        rest = args.cdr
        if not isinstance(rest, Pair):
            raise SchemeSyntaxError("let: named let needs bindings")
        bindings = _parse_bindings(rest.car, "let")
        values = [eval_expr(expr, env) for _, expr in bindings]
        loop_env = Environment({}, env, name=name)
        proc = Procedure([n for n, _ in bindings], None, rest.cdr, loop_env, name=name)
        loop_env.define(name, proc)
        return _body_tail(proc.body, proc.bind(values))
    bindings = _parse_bindings(args.car, "let")
    frame = Environment({n: eval_expr(expr, env) for n, expr in bindings}, env, name="let")
    return _body_tail(args.cdr, frame)


def _let_star(args, env):
    if not isinstance(args, Pair):
        raise SchemeSyntaxError("let*: missing bindings")
    frame = Environment({}, env, name="let*")
    for name, expr in _parse_bindings(args.car, "let*"):
        frame.define(name, eval_expr(expr, frame))
    return _body_tail(args.cdr, frame)


_ELSE = Symbol("else")


def _cond(args, env):
    for clause in iter_list(args):
        parts = list(iter_list(clause))
        if not parts:
            raise SchemeSyntaxError("cond: empty clause")
        if parts[0] is _ELSE:
            return _body_tail(clause.cdr, env)
        test = eval_expr(parts[0], env)
        if is_true(test):
            return _body_tail(clause.cdr, env) if len(parts) > 1 else test
    return Nil


def _and(args, env):
    parts = list(iter_list(args))
    if not parts:
        return True
    for expr in parts[:-1]:
        if not is_true(eval_expr(expr, env)):
            return False
    return TailEval(parts[-1], env)


def _or(args, env):
    parts = list(iter_list(args))
    if not parts:
        return False
    for expr in parts[:-1]:
        value = eval_expr(expr, env)
        if is_true(value):
            return value
    return TailEval(parts[-1], env)


def _when(args, env):
    parts = _operands(args, "when", 2)
    return _body_tail(args.cdr, env) if is_true(eval_expr(parts[0], env)) else Nil


def _unless(args, env):
    parts = _operands(args, "unless", 2)
    return Nil if is_true(eval_expr(parts[0], env)) else _body_tail(args.cdr, env)


def _define_macro(args, env):
    parts = _operands(args, "define-macro", 2)
    target = parts[0]
    if not isinstance(target, Pair) or not isinstance(target.car, Symbol):
        raise SchemeSyntaxError("define-macro: expected (define-macro (name . params) body...)")
    params, rest = _parse_params(target.cdr)
    name = target.car.name
    env.define(name, Macro(name, Procedure(params, rest, args.cdr, env, name=name)))
    return target.car


def _load(args, env):
    path = eval_expr(_operands(args, "load", 1, 1)[0], env)
    if not isinstance(path, str):
        raise SchemeError("load: expected a file path")
    with open(path, "r", encoding="utf-8") as f:
        source = f.read()
    result = Nil
    for form in read_all(source):
        result = eval_expr(form, env)
    return result


SPECIAL_FORMS = {
    name: SpecialForm(name, handler)
    for name, handler in {
        "quote": _quote,
        "quasiquote": _quasiquote,
        "if": _if,
        "define": _define,
        "set!": _set,
        "lambda": _lambda,
        "begin": _begin,
        "let": _let,
        "let*": _let_star,
        "letrec": _let_star,
        "cond": _cond,
        "and": _and,
        "or": _or,
        "when": _when,
        "unless": _unless,
        "define-macro": _define_macro,
        "load": _load,
    }.items()
}


# ---------------------------------------------------------------------------
# Printing
# ---------------------------------------------------------------------------

def to_write(value: Any) -> str:
    """External representation used in error messages and `write`-style output."""
    if value is True:
        return "#t"
    if value is False:
        return "#f"
    if value is Nil or value is None:
        return "()"
    if isinstance(value, str):
        return '"' + value.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n") + '"'
    if isinstance(value, Symbol):
        return value.name
    if isinstance(value, Char):
        names = {v: k for k, v in NAMED_CHARS.items()}
        return "#\\" + names.get(value.char, value.char)
    if isinstance(value, Pair):
        parts = []
        cur = value
        while isinstance(cur, Pair):
            parts.append(to_write(cur.car))
            cur = cur.cdr
        if cur is not Nil:
            parts.extend([".", to_write(cur)])
        return "(" + " ".join(parts) + ")"
    if isinstance(value, Values):
        return " ".join(to_write(v) for v in value.items)
    if isinstance(value, Port):
        return f"#<{value.kind}-port>"
    return repr(value) if not isinstance(value, (int, float)) else str(value)


def to_display(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, Char):
        return value.char
    return to_write(value)


# ---------------------------------------------------------------------------
# Builtins
# ---------------------------------------------------------------------------

def _num(x: Any, who: str) -> int | float:
    if isinstance(x, bool) or not isinstance(x, (int, float)):
        raise SchemeError(f"{who}: expected a number, got {to_write(x)}")
    return x


def _int(x: Any, who: str) -> int:
    if isinstance(x, bool) or not isinstance(x, int):
        raise SchemeError(f"{who}: expected an integer, got {to_write(x)}")
    return x


def _str(x: Any, who: str) -> str:
    if not isinstance(x, str):
        raise SchemeError(f"{who}: expected a string, got {to_write(x)}")
    return x


def _pair(x: Any, who: str) -> Pair:
    if not isinstance(x, Pair):
        raise SchemeError(f"{who}: expected a pair, got {to_write(x)}")
    return x


def _add(*args):
    return sum((_num(a, "+") for a in args), 0)


def _sub(*args):
    if not args:
        raise SchemeError("-: expected at least 1 argument")
    first = _num(args[0], "-")
    if len(args) == 1:
        return -first
    for a in args[1:]:
        first -= _num(a, "-")
    return first


def _mul(*args):
    result = 1
    for a in args:
        result *= _num(a, "*")
    return result


def _div(*args):
    if not args:
        raise SchemeError("/: expected at least 1 argument")
    if len(args) == 1:
        args = (1, args[0])
    result = _num(args[0], "/")
    for d in args[1:]:
        if _num(d, "/") == 0:
            raise SchemeError("/: division by zero")
        if isinstance(result, int) and isinstance(d, int) and result % d == 0:
            result //= d
        else:
            result = result / d
    return result


def _quotient(a, b):
    a, b = _int(a, "quotient"), _int(b, "quotient")
    if b == 0:
        raise SchemeError("quotient: division by zero")
    q = abs(a) // abs(b)
    return q if (a >= 0) == (b >= 0) else -q


def _remainder(a, b):
    return _int(a, "remainder") - _int(b, "remainder") * _quotient(a, b)


def _modulo(a, b):
    if _int(b, "modulo") == 0:
        raise SchemeError("modulo: division by zero")
    return _int(a, "modulo") % b


def _comparison(op: Callable[[Any, Any], bool], who: str) -> Callable[..., bool]:
    def compare(*args):
        nums = [_num(a, who) for a in args]
        return all(op(a, b) for a, b in zip(nums, nums[1:]))
    compare.__name__ = who
    return compare


def _sqrt(x):
    x = _num(x, "sqrt")
    if isinstance(x, int) and x >= 0:
        root = math.isqrt(x)
        if root * root == x:
            return root
    if x < 0:
        raise SchemeError("sqrt: negative argument")
    return math.sqrt(x)


def _exact(x):
    x = _num(x, "inexact->exact")
    return int(x) if isinstance(x, float) and x.is_integer() else x


def _car(x):
    return _pair(x, "car").car


def _cdr(x):
    return _pair(x, "cdr").cdr


def _length(x):
    if not is_list(x):
        raise SchemeError(f"length: expected a proper list, got {to_write(x)}")
    return sum(1 for _ in iter_list(x))


def _append(*lists):
    if not lists:
        return Nil
    items: list[Any] = []
    for lst in lists[:-1]:
        items.extend(iter_list(lst))
    return make_list(items, lists[-1])


def _list_tail(lst, k):
    for _ in range(_int(k, "list-tail")):
        lst = _cdr(lst)
    return lst


def _list_ref(lst, k):
    return _car(_list_tail(lst, k))


def _apply(fn, *args):
    if not args:
        return fn()
    return fn(*args[:-1], *iter_list(args[-1]))


def _map(fn, *lists):
    if not lists:
        raise SchemeError("map: expected at least one list")
    return make_list(fn(*xs) for xs in zip(*(list(iter_list(lst)) for lst in lists)))


def _for_each(fn, *lists):
    for xs in zip(*(list(iter_list(lst)) for lst in lists)):
        fn(*xs)
    return Nil


def _filter(pred, lst):
    return make_list(x for x in iter_list(lst) if is_true(pred(x)))


def _member(x, lst):
    cur = lst
    while isinstance(cur, Pair):
        if is_equal(x, cur.car):
            return cur
        cur = cur.cdr
    return False


def _assoc(key, alist):
    for entry in iter_list(alist):
        if isinstance(entry, Pair) and is_equal(key, entry.car):
            return entry
    return False


def _substring(s, start, end=None):
    s = _str(s, "substring")
    return s[_int(start, "substring"):len(s) if end is None else _int(end, "substring")]


def _string_to_number(s):
    value = parse_atom(_str(s, "string->number").strip())
    return value if isinstance(value, (int, float)) and not isinstance(value, bool) else False


def _number_to_string(n):
    return to_write(_num(n, "number->string"))


def _values(*args):
    return args[0] if len(args) == 1 else Values(args)


def _call_with_values(producer, consumer):
    produced = producer()
    if isinstance(produced, Values):
        return consumer(*produced.items)
    return consumer(produced)


def _error(message, *irritants):
    parts = [to_display(message)] + [to_write(i) for i in irritants]
    raise SchemeError(" ".join(parts))


def _display(value, port=None):
    if port is None:
        sys.stdout.write(to_display(value))
    else:
        port.write(to_display(value))
    return Nil


def _newline(port=None):
    return _display("\n", port)


def _write_string(s, port=None):
    return _display(_str(s, "write-string"), port)


def _get_output_string(port):
    if not isinstance(port, Port):
        raise SchemeError("get-output-string: expected a port")
    return port.getvalue()


BUILTINS: dict[str, Callable[..., Any]] = {
    "+": _add,
    "-": _sub,
    "*": _mul,
    "/": _div,
    "quotient": _quotient,
    "remainder": _remainder,
    "modulo": _modulo,
    "abs": lambda x: abs(_num(x, "abs")),
    "min": lambda *xs: min(_num(x, "min") for x in xs),
    "max": lambda *xs: max(_num(x, "max") for x in xs),
    "floor": lambda x: math.floor(_num(x, "floor")),
    "ceiling": lambda x: math.ceil(_num(x, "ceiling")),
    "round": lambda x: round(_num(x, "round")),
    "truncate": lambda x: math.trunc(_num(x, "truncate")),
    "sqrt": _sqrt,
    "expt": lambda a, b: _num(a, "expt") ** _num(b, "expt"),
    "exp": lambda x: math.exp(_num(x, "exp")),
    "log": lambda x: math.log(_num(x, "log")),
    "exact->inexact": lambda x: float(_num(x, "exact->inexact")),
    "inexact->exact": _exact,
    "=": _comparison(operator.eq, "="),
    "<": _comparison(operator.lt, "<"),
    ">": _comparison(operator.gt, ">"),
    "<=": _comparison(operator.le, "<="),
    ">=": _comparison(operator.ge, ">="),
    "zero?": lambda x: _num(x, "zero?") == 0,
    "positive?": lambda x: _num(x, "positive?") > 0,
    "negative?": lambda x: _num(x, "negative?") < 0,
    "even?": lambda x: _int(x, "even?") % 2 == 0,
    "odd?": lambda x: _int(x, "odd?") % 2 == 1,
    "number?": lambda x: isinstance(x, (int, float)) and not isinstance(x, bool),
    "integer?": lambda x: isinstance(x, int) and not isinstance(x, bool),
    "string?": lambda x: isinstance(x, str),
    "symbol?": lambda x: isinstance(x, Symbol),
    "boolean?": lambda x: isinstance(x, bool),
    "char?": lambda x: isinstance(x, Char),
    "procedure?": lambda x: callable(x) and not isinstance(x, (SpecialForm, Macro)),
    "null?": lambda x: x is Nil,
    "pair?": lambda x: isinstance(x, Pair),
    "list?": is_list,
    "not": lambda x: not is_true(x),
    "eq?": is_eqv,
    "eqv?": is_eqv,
    "equal?": is_equal,
    "cons": Pair,
    "car": _car,
    "cdr": _cdr,
    "caar": lambda x: _car(_car(x)),
    "cadr": lambda x: _car(_cdr(x)),
    "cdar": lambda x: _cdr(_car(x)),
    "cddr": lambda x: _cdr(_cdr(x)),
    "list": lambda *xs: make_list(xs),
    "length": _length,
    "append": _append,
    "reverse": lambda lst: make_list(reversed(list(iter_list(lst)))),
    "list-ref": _list_ref,
    "list-tail": _list_tail,
    "member": _member,
    "assoc": _assoc,
    "apply": _apply,
    "map": _map,
    "for-each": _for_each,
    "filter": _filter,
    "string-length": lambda s: len(_str(s, "string-length")),
    "string-append": lambda *ss: "".join(_str(s, "string-append") for s in ss),
    "substring": _substring,
    "string=?": lambda a, b: _str(a, "string=?") == _str(b, "string=?"),
    "string<?": lambda a, b: _str(a, "string<?") < _str(b, "string<?"),
    "string->symbol": lambda s: Symbol(_str(s, "string->symbol")),
    "symbol->string": lambda s: s.name if isinstance(s, Symbol) else _error("symbol->string: expected a symbol"),
    "string->number": _string_to_number,
    "number->string": _number_to_string,
    "string->list": lambda s: make_list(Char(c) for c in _str(s, "string->list")),
    "list->string": lambda lst: "".join(c.char if isinstance(c, Char) else to_display(c) for c in iter_list(lst)),
    "values": _values,
    "call-with-values": _call_with_values,
    "error": _error,
    "display": _display,
    "newline": _newline,
    "write-string": _write_string,
    "open-output-string": Port,
    "get-output-string": _get_output_string,
}


def base_bindings() -> dict[str, Any]:
    """Fresh name -> value table of every special form and builtin."""
    return {**SPECIAL_FORMS, **BUILTINS}


def make_global_environment() -> Environment:
    """Unrestricted environment with the full base namespace."""
    return Environment({**base_bindings(), "nil": Nil}, name="global")
