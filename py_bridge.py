"""Python <-> Scheme value bridge for the discovery sandbox.

Domain functions are plain Python. Before one is installed in a query
environment it is wrapped so that:

  interpreter args --to_host--> Python function --to_interpreter--> result

Conversions:
  to_host:        Nil -> [], pair chain -> list (element-wise), list/dict ->
                  element-wise, everything else unchanged
  to_interpreter: None -> Nil, list/tuple -> pair chain (order preserved),
                  dict -> dict with converted values, everything else unchanged
"""

from typing import Any, Callable

from scheme_runtime import Nil, NilType, Pair, make_list


class MarshalError(TypeError):
    """A value outside the supported model reached a converter."""


class HostFunctionError(RuntimeError):
    """A wrapped host function raised; message is tagged with its name."""

    def __init__(self, name: str, cause: BaseException):
        super().__init__(f"{name}: {cause}")
        self.name = name
        self.cause = cause


def to_host(value: Any, _path: frozenset = frozenset()) -> Any:
    """Convert an interpreter value into plain Python data."""
    if isinstance(value, NilType):
        return []
    if isinstance(value, Pair):
        items = []
        cur = value
        while isinstance(cur, Pair):
            items.append(to_host(cur.car, _path))
            cur = cur.cdr
        if not isinstance(cur, NilType):
            # improper tail: keep it as the last element
            items.append(to_host(cur, _path))
        return items
    if isinstance(value, (list, tuple)):
        path = _enter(value, _path)
        return [to_host(v, path) for v in value]
    if isinstance(value, dict):
        path = _enter(value, _path)
        return {k: to_host(v, path) for k, v in value.items()}
    return value


def to_interpreter(value: Any, _path: frozenset = frozenset()) -> Any:
    """Convert Python data into interpreter values."""
    if value is None:
        return Nil
    if isinstance(value, (list, tuple)):
        path = _enter(value, _path)
        return make_list([to_interpreter(v, path) for v in value])
    if isinstance(value, dict):
        path = _enter(value, _path)
        return {k: to_interpreter(v, path) for k, v in value.items()}
    return value


def _enter(container: Any, path: frozenset) -> frozenset:
    if id(container) in path:
        raise MarshalError(f"cannot marshal cyclic {type(container).__name__}")
    return path | {id(container)}


class HostFunction:
    """Interpreter-callable wrapper around a Python function."""

    def __init__(self, name: str, fn: Callable[..., Any],
                 before_call: Callable[[], None] | None = None,
                 arity: int | None = None):
        self.name = name
        self.fn = fn
        self.before_call = before_call
        self.arity = arity

    def __call__(self, *args):
        if self.before_call is not None:
            self.before_call()
        host_args = [to_host(a) for a in args]
        try:
            result = self.fn(*host_args)
        except HostFunctionError:
            raise
        except Exception as e:
            raise HostFunctionError(self.name, e) from e
        return to_interpreter(result)

    def __repr__(self):
        return f"<host function {self.name}>"


def wrap_host_function(name: str, fn: Callable[..., Any],
                       before_call: Callable[[], None] | None = None,
                       arity: int | None = None) -> HostFunction:
    return HostFunction(name, fn, before_call=before_call, arity=arity)
