"""Canonical S-expression serializer.

Turns any value reachable from a discovery query (interpreter values, host
values returned by domain functions, objects that describe themselves) into
readable S-expression text. Conversion is two-step: `to_sexpr` builds a small
node tree (Atom / Form / Record) and `format_sexpr` lays it out.

Rendering at a glance:

    42                  -> 42
    2**60               -> 1152921504606846976n
    "hello world"       -> 'hello world'
    "it's"              -> `it's`
    Symbol("foo")       -> foo
    Nil                 -> ()
    (1 2 . 3)           -> (1 2 . 3)
    [1, 2, 3]           -> (1 2 3)
    {"a": 1}            -> &(:a 1)
    {1: "x"}            -> (map :1 'x')
    {3, 1}              -> (set 1 3)
    None                -> nil
    len                 -> <function>

Objects can choose their own shape by defining ``__sexpr__(ctx)``, which
returns the argument list for a form headed by the object's display name.
"""

from __future__ import annotations

import dataclasses
import datetime
import enum
from collections.abc import Mapping
from typing import Any, Iterable, Union

from scheme_runtime import (
    Char,
    Macro,
    NilType,
    Pair,
    Port,
    Procedure,
    SpecialForm,
    Symbol,
    Values,
)

SAFE_INTEGER_MAX = 2**53 - 1

# Layout thresholds
MAX_INLINE_ARGS = 3
MAX_INLINE_NESTED = 2
MAX_ATOM_WIDTH = 80
MAX_KEYWORD_VALUE_WIDTH = 40
MAX_RECORD_LINE = 60

FUNCTION_PLACEHOLDER = "<function>"


class CircularReferenceError(ValueError):
    """A container refers back to itself somewhere along the current path."""


# ---------------------------------------------------------------------------
# Node tree
# ---------------------------------------------------------------------------

@dataclasses.dataclass(frozen=True)
class Atom:
    text: str


@dataclasses.dataclass(frozen=True)
class Form:
    """A parenthesized sequence. `head` is None only for the empty form."""

    head: Union["Node", None]
    args: tuple["Node", ...] = ()
    tail: Union["Node", None] = None


@dataclasses.dataclass(frozen=True)
class Record:
    """Keyed structure rendered as ``&(:k v ...)`` or ``(map :k v ...)``."""

    pairs: tuple[tuple[str, "Node"], ...]
    opener: str = "&("


Node = Union[Atom, Form, Record]

EMPTY = Form(None)


# ---------------------------------------------------------------------------
# Self-describing values
# ---------------------------------------------------------------------------

@dataclasses.dataclass(frozen=True)
class Tagged:
    """An explicit ``(head arg ...)`` form; arguments are serialized recursively."""

    head: Any
    args: tuple[Any, ...]


@dataclasses.dataclass(frozen=True)
class BareSymbol:
    name: str


def sexpr(head: Any, *args: Any) -> Tagged:
    return Tagged(head, args)


def slist(*items: Any) -> Tagged:
    return Tagged("list", items)


def smap(mapping: Mapping) -> Tagged:
    args: list[Any] = []
    for key, value in mapping.items():
        args.extend([BareSymbol(f":{key}"), value])
    return Tagged("map", tuple(args))


class SerializationContext:
    """Helpers handed to ``__sexpr__`` implementations."""

    def symbol(self, name: str) -> BareSymbol:
        return BareSymbol(name)

    def keyword(self, name: str) -> BareSymbol:
        return BareSymbol(name if name.startswith(":") else f":{name}")

    def quote(self, text: str) -> str:
        return text

    def expr(self, head: Any, *args: Any) -> Tagged:
        return Tagged(head, args)


_CONTEXT = SerializationContext()


def display_name(value: Any) -> str:
    hook = getattr(value, "__sexpr_name__", None)
    if callable(hook):
        return str(hook())
    if isinstance(hook, str):
        return hook
    name = getattr(value, "display_name", None)
    if isinstance(name, str):
        return name
    name = getattr(value, "name", None)
    if isinstance(name, str):
        return name
    return type(value).__name__


# ---------------------------------------------------------------------------
# Value -> node
# ---------------------------------------------------------------------------

def render_string(text: str) -> str:
    if any(c in text for c in "'\"\\\n`"):
        return "`" + text.replace("`", "\\`") + "`"
    return f"'{text}'"


def render_number(n: int | float) -> str:
    if isinstance(n, int) and abs(n) > SAFE_INTEGER_MAX:
        return f"{n}n"
    return repr(n)


def to_sexpr(value: Any) -> Node:
    return _Converter().convert(value)


class _Converter:
    def __init__(self):
        self.path: set[int] = set()

    def enter(self, obj: Any) -> None:
        if id(obj) in self.path:
            raise CircularReferenceError(
                f"circular reference to {type(obj).__name__} while serializing"
            )
        self.path.add(id(obj))

    def leave(self, obj: Any) -> None:
        self.path.discard(id(obj))

    def convert(self, value: Any) -> Node:
        if isinstance(value, BareSymbol):
            return Atom(value.name)
        if isinstance(value, Tagged):
            return self.contained(value, self._tagged)
        if hasattr(type(value), "__sexpr__"):
            return self.contained(value, self._declared)

        if isinstance(value, enum.Enum):
            return Atom(f":{value.name}")

        # Interpreter values
        if value is True or value is False:
            return Atom("true" if value else "false")
        if isinstance(value, (int, float)):
            return Atom(render_number(value))
        if isinstance(value, str):
            return Atom(render_string(value))
        if isinstance(value, Symbol):
            return Atom(value.name)
        if isinstance(value, NilType):
            return EMPTY
        if isinstance(value, Pair):
            return self._pairs(value)
        if isinstance(value, Values):
            return self.contained(value, lambda v: self._form("values", v.items))
        if isinstance(value, Char):
            return Atom("#\\" + value.char)
        if isinstance(value, Port):
            return Atom(f"#<{value.kind}-port>")
        if isinstance(value, Macro):
            return Form(Atom("macro"), (Atom(value.name),))
        if isinstance(value, SpecialForm):
            return Form(Atom("syntax"), (Atom(value.name),))
        if isinstance(value, Procedure):
            return Atom(FUNCTION_PLACEHOLDER)

        # Host values
        if value is None:
            return Atom("nil")
        if isinstance(value, (datetime.datetime, datetime.date)):
            return Atom(render_string(value.isoformat()))
        if isinstance(value, (bytes, bytearray)):
            return Atom(f"#<bytes {len(value)}>")
        if isinstance(value, (list, tuple)):
            return self.contained(value, self._sequence)
        if isinstance(value, Mapping):
            return self.contained(value, self._mapping)
        if isinstance(value, (set, frozenset)):
            return self.contained(value, self._set)
        if callable(value):
            return Atom(FUNCTION_PLACEHOLDER)
        if dataclasses.is_dataclass(value):
            return self.contained(
                value, lambda v: self._record(
                    (f.name, getattr(v, f.name)) for f in dataclasses.fields(v)
                )
            )
        if hasattr(value, "model_dump"):
            return self.contained(value, lambda v: self._record(v.model_dump().items()))
        if hasattr(value, "__dict__"):
            return self.contained(
                value, lambda v: self._record(
                    (k, a) for k, a in vars(v).items()
                    if not k.startswith("_") and not callable(a)
                )
            )
        return Atom(render_string(str(value)))

    def contained(self, value: Any, build) -> Node:
        self.enter(value)
        try:
            return build(value)
        finally:
            self.leave(value)

    def _head(self, head: Any) -> Node:
        if isinstance(head, str):
            return Atom(head)
        return self.convert(head)

    def _form(self, head: Any, args: Iterable[Any]) -> Form:
        return Form(self._head(head), tuple(self.convert(a) for a in args))

    def _tagged(self, value: Tagged) -> Node:
        if value.head == "map":
            args = [self.convert(a) for a in value.args]
            pairs = tuple(
                (args[i].text if isinstance(args[i], Atom) else format_sexpr(args[i]), args[i + 1])
                for i in range(0, len(args) - 1, 2)
            )
            return Record(pairs, opener="(map ")
        return self._form(value.head, value.args)

    def _declared(self, value: Any) -> Node:
        args = value.__sexpr__(_CONTEXT)
        return self._form(display_name(value), args if args is not None else ())

    def _pairs(self, value: Pair) -> Node:
        cells: list[Pair] = []
        cur = value
        try:
            while isinstance(cur, Pair):
                self.enter(cur)
                cells.append(cur)
                cur = cur.cdr
            items = [self.convert(cell.car) for cell in cells]
            tail = None if isinstance(cur, NilType) else self.convert(cur)
        finally:
            for cell in cells:
                self.leave(cell)
        return Form(items[0], tuple(items[1:]), tail)

    def _sequence(self, value) -> Node:
        items = [self.convert(item) for item in value]
        if not items:
            return EMPTY
        return Form(items[0], tuple(items[1:]))

    def _record(self, items: Iterable[tuple[Any, Any]]) -> Record:
        return Record(tuple((f":{k}", self.convert(v)) for k, v in items))

    def _mapping(self, value: Mapping) -> Record:
        if all(isinstance(k, str) for k in value):
            return self._record(value.items())
        return Record(
            tuple((f":{k}", self.convert(v)) for k, v in value.items()),
            opener="(map ",
        )

    def _set(self, value) -> Form:
        items = sorted((self.convert(v) for v in value), key=format_sexpr)
        return Form(Atom("set"), tuple(items))


# ---------------------------------------------------------------------------
# Node -> text
# ---------------------------------------------------------------------------

def format_sexpr(node: Node, indent: int = 0) -> str:
    if isinstance(node, Atom):
        return node.text
    if isinstance(node, Record):
        return _format_record(node, indent)
    return _format_form(node, indent)


def _is_keyword(node: Node) -> bool:
    return isinstance(node, Atom) and node.text.startswith(":") and len(node.text) > 1


def _is_nested(node: Node) -> bool:
    if isinstance(node, Record):
        return bool(node.pairs)
    if isinstance(node, Form):
        size = (node.head is not None) + len(node.args) + (node.tail is not None)
        return size > MAX_INLINE_NESTED
    return False


def _fits_one_line(args: list[Node]) -> bool:
    if all(isinstance(a, Atom) for a in args):
        return all(len(a.text) <= MAX_ATOM_WIDTH for a in args)
    return len(args) <= MAX_INLINE_ARGS and not any(_is_nested(a) for a in args)


def _format_form(form: Form, indent: int) -> str:
    if form.head is None:
        return "()"
    args = list(form.args)
    if form.tail is not None:
        args_for_fit = args + [form.tail]
    else:
        args_for_fit = args
    head = format_sexpr(form.head, indent)

    if _fits_one_line(args_for_fit):
        parts = [head] + [format_sexpr(a, indent) for a in args]
        if form.tail is not None:
            parts += [".", format_sexpr(form.tail, indent)]
        return "(" + " ".join(parts) + ")"

    pad = " " * (indent + 2)
    lines = [f"({head}"]
    i = 0
    while i < len(args):
        arg = args[i]
        if _is_keyword(arg) and i + 1 < len(args):
            value = args[i + 1]
            if isinstance(value, Atom) and len(value.text) < MAX_KEYWORD_VALUE_WIDTH:
                lines.append(f"{pad}{arg.text} {value.text}")
                i += 2
                continue
        lines.append(pad + format_sexpr(arg, indent + 2))
        i += 1
    if form.tail is not None:
        lines.append(f"{pad}. {format_sexpr(form.tail, indent + 2)}")
    return "\n".join(lines) + ")"


def _format_record(record: Record, indent: int) -> str:
    if not record.pairs:
        return record.opener.rstrip() + ")"
    inline = [f"{key} {format_sexpr(value)}" for key, value in record.pairs]
    line = record.opener + " ".join(inline) + ")"
    if all(isinstance(v, Atom) for _, v in record.pairs) and len(line) < MAX_RECORD_LINE:
        return line

    pad = " " * (indent + len(record.opener))
    lines = []
    for key, value in record.pairs:
        text = format_sexpr(value, indent + len(record.opener) + 2)
        if isinstance(value, Atom) or ("\n" not in text and len(text) < MAX_KEYWORD_VALUE_WIDTH):
            lines.append(f"{key} {text}")
        else:
            lines.append(f"{key}\n{pad}  {text}")
    return record.opener + f"\n{pad}".join(lines) + ")"


def to_sexpr_string(value: Any, indent: int = 0) -> str:
    return format_sexpr(to_sexpr(value), indent)


serialize = to_sexpr_string
