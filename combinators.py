"""Sequence protocols and the curated combinator library.

The interpreter's lists are Pair chains; domain functions hand back Python
lists. Combinators stay agnostic of both by resolving a protocol from the
value's structural shape:

    has car/cdr (or is Nil)  -> PAIR_PROTOCOL
    list / tuple             -> LIST_PROTOCOL

Each protocol provides of / iterate / map / filter / fold / chain, and every
sequence combinator returns the same representation it was given. Nothing is
attached to Pair itself; the dispatch table below is the single place that
knows both shapes.

LIBRARY maps Scheme names to auto-curried callables, Ramda style:
((add 1) 2) == (add 1 2).
"""

import dataclasses
import functools
import inspect
import operator
from collections.abc import Mapping
from typing import Any, Callable, Iterable

from pydantic import BaseModel

from scheme_runtime import Nil, NilType, Pair, Procedure, SchemeError, is_true, make_list


# ---------------------------------------------------------------------------
# Structural operations over pair chains
# ---------------------------------------------------------------------------

def pair_elements(chain: Any) -> list[Any]:
    """Walk car/cdr until Nil or a non-pair tail."""
    items = []
    cur = chain
    while _has_pair_shape(cur) and not isinstance(cur, NilType):
        items.append(cur.car)
        cur = cur.cdr
    return items


def pair_of(items: Iterable[Any]) -> Any:
    return make_list(items)


def pair_map(f: Callable, chain: Any) -> Any:
    return make_list([f(x) for x in pair_elements(chain)])


def pair_filter(pred: Callable, chain: Any) -> Any:
    return make_list([x for x in pair_elements(chain) if is_true(pred(x))])


def pair_fold(f: Callable, initial: Any, chain: Any) -> Any:
    acc = initial
    for x in pair_elements(chain):
        acc = f(acc, x)
    return acc


def pair_append(*chains: Any) -> Any:
    items = []
    for chain in chains:
        items.extend(pair_elements(chain))
    return make_list(items)


def pair_chain(f: Callable, chain: Any) -> Any:
    items = []
    for x in pair_elements(chain):
        items.extend(_elements(f(x)))
    return make_list(items)


def _elements(value: Any) -> list[Any]:
    """Items of whatever sequence shape a chain callback returned."""
    if isinstance(value, (Pair, NilType)):
        return pair_elements(value)
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


# ---------------------------------------------------------------------------
# Protocol dispatch
# ---------------------------------------------------------------------------

class SequenceProtocol:
    name = "sequence"

    def of(self, items: Iterable[Any]) -> Any:
        raise NotImplementedError

    def iterate(self, seq: Any) -> list[Any]:
        raise NotImplementedError

    def map(self, f, seq):
        return self.of(f(x) for x in self.iterate(seq))

    def filter(self, pred, seq):
        return self.of(x for x in self.iterate(seq) if is_true(pred(x)))

    def fold(self, f, initial, seq):
        acc = initial
        for x in self.iterate(seq):
            acc = f(acc, x)
        return acc

    def chain(self, f, seq):
        out = []
        for x in self.iterate(seq):
            out.extend(_elements(f(x)))
        return self.of(out)


class PairProtocol(SequenceProtocol):
    name = "pair"

    def of(self, items):
        return pair_of(items)

    def iterate(self, seq):
        return pair_elements(seq)

    def map(self, f, seq):
        return pair_map(f, seq)

    def filter(self, pred, seq):
        return pair_filter(pred, seq)

    def fold(self, f, initial, seq):
        return pair_fold(f, initial, seq)

    def chain(self, f, seq):
        return pair_chain(f, seq)


class ListProtocol(SequenceProtocol):
    name = "list"

    def of(self, items):
        return list(items)

    def iterate(self, seq):
        return list(seq)


PAIR_PROTOCOL = PairProtocol()
LIST_PROTOCOL = ListProtocol()


def _has_pair_shape(value: Any) -> bool:
    return isinstance(value, NilType) or (hasattr(value, "car") and hasattr(value, "cdr"))


def _is_native_sequence(value: Any) -> bool:
    return isinstance(value, (list, tuple))


PROTOCOLS: list[tuple[Callable[[Any], bool], SequenceProtocol]] = [
    (_has_pair_shape, PAIR_PROTOCOL),
    (_is_native_sequence, LIST_PROTOCOL),
]


def protocol_for(value: Any) -> SequenceProtocol:
    for matches, protocol in PROTOCOLS:
        if matches(value):
            return protocol
    raise SchemeError(f"expected a list, got {type(value).__name__}")


# ---------------------------------------------------------------------------
# Currying
# ---------------------------------------------------------------------------

def arity_of(fn: Callable) -> int:
    arity = getattr(fn, "arity", None)
    if isinstance(arity, int):
        return arity
    if isinstance(fn, Procedure):
        return fn.arity
    try:
        params = inspect.signature(fn).parameters.values()
    except (TypeError, ValueError):
        return 1
    return sum(
        1 for p in params
        if p.kind in (p.POSITIONAL_ONLY, p.POSITIONAL_OR_KEYWORD) and p.default is p.empty
    )


def curry_n(arity: int, fn: Callable) -> Callable:
    """Collect arguments across calls until `arity` of them have arrived."""

    @functools.wraps(fn)
    def curried(*args):
        if len(args) >= arity:
            return fn(*args)
        bound = functools.partial(curried, *args)
        bound.arity = arity - len(args)
        return bound

    curried.arity = arity
    return curried


# ---------------------------------------------------------------------------
# Library
# ---------------------------------------------------------------------------

LIBRARY: dict[str, Callable[..., Any]] = {}


def export(name: str, arity: int):
    def decorate(fn):
        LIBRARY[name] = curry_n(arity, fn)
        return fn
    return decorate


def _number(x: Any, who: str):
    if isinstance(x, bool) or not isinstance(x, (int, float)):
        raise SchemeError(f"{who}: expected a number, got {type(x).__name__}")
    return x


@export("map", 2)
def map_(f, seq):
    return protocol_for(seq).map(f, seq)


LIBRARY["fmap"] = LIBRARY["map"]


@export("filter", 2)
def filter_(pred, seq):
    return protocol_for(seq).filter(pred, seq)


@export("reject", 2)
def reject(pred, seq):
    return protocol_for(seq).filter(lambda x: not is_true(pred(x)), seq)


@export("reduce", 3)
def reduce_(f, initial, seq):
    return protocol_for(seq).fold(f, initial, seq)


LIBRARY["fold"] = LIBRARY["reduce"]


@export("chain", 2)
def chain(f, seq):
    return protocol_for(seq).chain(f, seq)


@export("head", 1)
def head(seq):
    items = protocol_for(seq).iterate(seq)
    return items[0] if items else Nil


@export("tail", 1)
def tail(seq):
    proto = protocol_for(seq)
    return proto.of(proto.iterate(seq)[1:])


@export("last", 1)
def last(seq):
    items = protocol_for(seq).iterate(seq)
    return items[-1] if items else Nil


@export("nth", 2)
def nth(n, seq):
    items = protocol_for(seq).iterate(seq)
    try:
        return items[n]
    except IndexError:
        return Nil


@export("take", 2)
def take(n, seq):
    proto = protocol_for(seq)
    return proto.of(proto.iterate(seq)[:max(n, 0)])


@export("drop", 2)
def drop(n, seq):
    proto = protocol_for(seq)
    return proto.of(proto.iterate(seq)[max(n, 0):])


@export("reverse", 1)
def reverse(seq):
    proto = protocol_for(seq)
    return proto.of(reversed(proto.iterate(seq)))


@export("concat", 2)
def concat(a, b):
    if isinstance(a, str) and isinstance(b, str):
        return a + b
    proto = protocol_for(a)
    return proto.of(proto.iterate(a) + protocol_for(b).iterate(b))


@export("uniq", 1)
def uniq(seq):
    proto = protocol_for(seq)
    out: list[Any] = []
    for x in proto.iterate(seq):
        if not any(_same(x, y) for y in out):
            out.append(x)
    return proto.of(out)


def _same(a, b) -> bool:
    if isinstance(a, bool) or isinstance(b, bool):
        return a is b
    return a == b


@export("flatten", 1)
def flatten(seq):
    proto = protocol_for(seq)
    out: list[Any] = []
    stack = [iter(proto.iterate(seq))]
    while stack:
        for x in stack[-1]:
            if isinstance(x, (Pair, list, tuple)):
                stack.append(iter(protocol_for(x).iterate(x)))
                break
            if not isinstance(x, NilType):
                out.append(x)
        else:
            stack.pop()
    return proto.of(out)


@export("zip", 2)
def zip_(a, b):
    proto = protocol_for(a)
    return proto.of(proto.of([x, y]) for x, y in zip(proto.iterate(a), protocol_for(b).iterate(b)))


@export("range", 2)
def range_(start, end):
    return make_list(range(_number(start, "range"), _number(end, "range")))


@export("sum", 1)
def sum_(seq):
    return sum((_number(x, "sum") for x in protocol_for(seq).iterate(seq)), 0)


@export("product", 1)
def product(seq):
    result = 1
    for x in protocol_for(seq).iterate(seq):
        result *= _number(x, "product")
    return result


@export("find", 2)
def find(pred, seq):
    for x in protocol_for(seq).iterate(seq):
        if is_true(pred(x)):
            return x
    return Nil


@export("any?", 2)
def any_(pred, seq):
    return any(is_true(pred(x)) for x in protocol_for(seq).iterate(seq))


@export("all?", 2)
def all_(pred, seq):
    return all(is_true(pred(x)) for x in protocol_for(seq).iterate(seq))


@export("none?", 2)
def none_(pred, seq):
    return not any(is_true(pred(x)) for x in protocol_for(seq).iterate(seq))


@export("count", 2)
def count(pred, seq):
    return sum(1 for x in protocol_for(seq).iterate(seq) if is_true(pred(x)))


@export("is-empty?", 1)
def is_empty(value):
    if isinstance(value, (str, dict)):
        return len(value) == 0
    return len(protocol_for(value).iterate(value)) == 0


def _record_fields(obj) -> tuple[str, ...]:
    """Public declared fields of a dataclass or pydantic record; nothing else is readable."""
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        names = [f.name for f in dataclasses.fields(obj)]
    elif isinstance(obj, BaseModel):
        names = list(type(obj).model_fields)
    else:
        return ()
    return tuple(n for n in names if not n.startswith("_"))


@export("prop", 2)
def prop(key, obj):
    key = getattr(key, "name", key)
    if isinstance(key, str) and key.startswith(":"):
        key = key[1:]
    if isinstance(obj, Mapping):
        return obj.get(key, Nil)
    if isinstance(key, str) and key in _record_fields(obj):
        return getattr(obj, key)
    return Nil


@export("pluck", 2)
def pluck(key, seq):
    return protocol_for(seq).map(lambda obj: prop(key, obj), seq)


def _comparator(compare):
    """Accept either a less-than predicate or a -/0/+ comparison function."""

    def cmp(a, b):
        result = compare(a, b)
        if isinstance(result, bool):
            if result:
                return -1
            return 1 if is_true(compare(b, a)) else 0
        return result

    return cmp


@export("sort", 2)
def sort(compare, seq):
    proto = protocol_for(seq)
    return proto.of(sorted(proto.iterate(seq), key=functools.cmp_to_key(_comparator(compare))))


@export("sort-by", 2)
def sort_by(f, seq):
    proto = protocol_for(seq)
    return proto.of(sorted(proto.iterate(seq), key=f))


@export("group-by", 2)
def group_by(f, seq):
    proto = protocol_for(seq)
    groups: dict[str, list[Any]] = {}
    for x in proto.iterate(seq):
        groups.setdefault(str(f(x)), []).append(x)
    return {k: proto.of(v) for k, v in groups.items()}


def _divide(a, b):
    if _number(b, "divide") == 0:
        raise SchemeError("divide: division by zero")
    return operator.truediv(_number(a, "divide"), b)


def compose(*fns):
    if not fns:
        raise SchemeError("compose: expected at least one function")

    def composed(*args):
        result = fns[-1](*args)
        for f in reversed(fns[:-1]):
            result = f(result)
        return result

    composed.arity = arity_of(fns[-1])
    return composed


def pipe(*fns):
    if not fns:
        raise SchemeError("pipe: expected at least one function")
    return compose(*reversed(fns))


def curry(fn):
    return curry_n(arity_of(fn), fn)


LIBRARY.update({
    "compose": compose,
    "pipe": pipe,
    "curry": curry,
    "identity": curry_n(1, lambda x: x),
    "always": curry_n(1, lambda x: lambda *_: x),
    "inc": curry_n(1, lambda x: _number(x, "inc") + 1),
    "dec": curry_n(1, lambda x: _number(x, "dec") - 1),
    "add": curry_n(2, lambda a, b: _number(a, "add") + _number(b, "add")),
    "subtract": curry_n(2, lambda a, b: _number(a, "subtract") - _number(b, "subtract")),
    "multiply": curry_n(2, lambda a, b: _number(a, "multiply") * _number(b, "multiply")),
    "divide": curry_n(2, lambda a, b: _divide(a, b)),
    "negate": curry_n(1, lambda x: -_number(x, "negate")),
})
