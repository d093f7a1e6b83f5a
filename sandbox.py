"""Closed-namespace evaluation environment for discovery queries.

The sandbox has no parent environment. It holds exactly:

  - the base-interpreter bindings named in the manifest's "builtins"
  - the combinators named in the manifest's "combinators"
  - nil, tap and trace

The manifest is a versioned JSON file (sandbox_manifest.json next to this
module, or $SANDBOX_MANIFEST). Names are read from it, never from whatever
happens to be bound globally in the interpreter.
"""

import json
import os
import sys
from dataclasses import dataclass
from typing import Any, Callable

from combinators import LIBRARY
from scheme_runtime import Environment, Nil, SchemeError, SpecialForm, base_bindings, evaluate
from sexpr_serializer import to_sexpr_string

MANIFEST_VERSION = 1
DEFAULT_MANIFEST = os.path.join(os.path.dirname(os.path.abspath(__file__)), "sandbox_manifest.json")


class SandboxError(SchemeError):
    pass


@dataclass(frozen=True)
class SandboxManifest:
    version: int
    builtins: tuple[str, ...]
    combinators: tuple[str, ...]


def load_manifest(path: str | None = None) -> SandboxManifest:
    path = path or os.environ.get("SANDBOX_MANIFEST") or DEFAULT_MANIFEST
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise SandboxError(f"cannot read sandbox manifest {path}: {e}") from e

    version = data.get("version")
    if version != MANIFEST_VERSION:
        raise SandboxError(
            f"unsupported sandbox manifest version {version!r} in {path} "
            f"(expected {MANIFEST_VERSION})"
        )
    return SandboxManifest(
        version=version,
        builtins=tuple(data.get("builtins", ())),
        combinators=tuple(data.get("combinators", ())),
    )


def tap(fn: Callable[[Any], Any]) -> Callable[[Any], Any]:
    """(tap f) -> a function that calls f for its side effect and returns its input."""
    def tapped(value):
        fn(value)
        return value
    return tapped


def trace(label: Any) -> Callable[[Any], Any]:
    """(trace "label") -> a passthrough that logs each value to stderr."""
    def traced(value):
        print(f"[trace] {label}: {to_sexpr_string(value)}", file=sys.stderr, flush=True)
        return value
    return traced


def build_sandbox(manifest: SandboxManifest | None = None,
                  base: dict[str, Any] | None = None) -> Environment:
    """Assemble and freeze the sandbox environment."""
    manifest = manifest or load_manifest()
    base = base_bindings() if base is None else base

    env = Environment(name="sandbox")
    for name in manifest.builtins:
        if name not in base:
            print(f"[periphery] sandbox: builtin '{name}' not available, skipping",
                  file=sys.stderr, flush=True)
            continue
        value = base[name]
        if not (callable(value) or isinstance(value, SpecialForm)):
            raise SandboxError(f"sandbox: builtin '{name}' is not a procedure or special form")
        env.define(name, value)

    for name in manifest.combinators:
        if name not in LIBRARY:
            print(f"[periphery] sandbox: combinator '{name}' not available, skipping",
                  file=sys.stderr, flush=True)
            continue
        env.define(name, LIBRARY[name])

    env.define("nil", Nil)
    env.define("tap", tap)
    env.define("trace", trace)
    return env.freeze()


_sandbox: Environment | None = None


def get_sandbox() -> Environment:
    """Process-wide sandbox, built on first use."""
    global _sandbox
    if _sandbox is None:
        _sandbox = build_sandbox()
    return _sandbox


def exec_serialized(source: str, env: Environment | None = None) -> list[str]:
    """Evaluate every top-level form in `source` and serialize each result."""
    if env is None:
        env = Environment({}, get_sandbox(), name="query")
    return [to_sexpr_string(result) for result in evaluate(source, env)]
