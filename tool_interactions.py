"""Tool interaction framework: discovery queries and batched actions.

A ToolInteraction covers one tool's whole lifecycle: describing itself
(name, description, JSON input schema) and executing a call. Executors
return plain Python results (strings, Blobs, dicts, lists); `to_content`
turns those into MCP content items at the server boundary.

DiscoveryToolInteraction
    Subclasses register domain functions in `register_functions(context)`.
    A call evaluates S-expressions in a per-call environment layered over the
    shared sandbox. Every domain function is marshaled through py_bridge and
    checks the call's deadline before running.

ActionToolInteraction
    Subclasses register actions with typed props. A call validates every
    [name, *args] tuple first and runs nothing unless the whole batch is
    valid; handlers then run strictly in order, stopping at the first error.
"""

import base64
import inspect
import json
import os
import sys
import textwrap
import time
import types
import typing
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from mcp.types import AudioContent, ImageContent, TextContent
from pydantic import TypeAdapter, ValidationError
from pydantic.fields import FieldInfo

from py_bridge import wrap_host_function
from sandbox import exec_serialized, get_sandbox
from scheme_runtime import Environment, Nil, NilType, Pair

DEFAULT_TIMEOUT_SECONDS = 5.0


def _log(message: str) -> None:
    print(f"[periphery] {message}", file=sys.stderr, flush=True)


_LOG_ARG_LIMIT = 80


def _short_repr(value: Any) -> str:
    text = repr(value)
    if len(text) > _LOG_ARG_LIMIT:
        return text[:_LOG_ARG_LIMIT - 3] + "..."
    return text


def timeout_seconds() -> float:
    return float(os.environ.get("PERIPHERY_TIMEOUT_SECONDS", DEFAULT_TIMEOUT_SECONDS))


# ---------------------------------------------------------------------------
# Results -> MCP content
# ---------------------------------------------------------------------------

@dataclass
class Blob:
    """Binary tool result with a media type."""

    data: bytes
    mime_type: str = "application/octet-stream"


def to_content(result: Any) -> list:
    """Convert a tool result (or list of results) into MCP content items."""
    items = result if isinstance(result, list) else [result]
    content = []
    for item in items:
        if isinstance(item, str):
            content.append(TextContent(type="text", text=item))
        elif isinstance(item, Blob) and item.mime_type.startswith("image/"):
            content.append(ImageContent(type="image", data=base64.b64encode(item.data).decode("ascii"),
                                        mimeType=item.mime_type))
        elif isinstance(item, Blob) and item.mime_type.startswith("audio/"):
            content.append(AudioContent(type="audio", data=base64.b64encode(item.data).decode("ascii"),
                                        mimeType=item.mime_type))
        elif isinstance(item, Blob):
            content.append(TextContent(type="text", text=json.dumps(
                {"mimeType": item.mime_type, "size": len(item.data)}, indent=2)))
        else:
            content.append(TextContent(type="text", text=json.dumps(item, indent=2, default=str)))
    return content


# ---------------------------------------------------------------------------
# Validators
# ---------------------------------------------------------------------------

_adapters: dict[Any, TypeAdapter] = {}


def adapter_for(tp: Any) -> TypeAdapter:
    try:
        return _adapters[tp]
    except KeyError:
        adapter = _adapters[tp] = TypeAdapter(tp)
        return adapter
    except TypeError:
        # unhashable annotation
        return TypeAdapter(tp)


def accepts_none(tp: Any) -> bool:
    try:
        adapter_for(tp).validate_python(None)
    except ValidationError:
        return False
    return True


def json_schema_for(tp: Any) -> dict:
    schema = adapter_for(tp).json_schema()
    schema.pop("$schema", None)
    return schema


def _unwrap(tp: Any) -> tuple[Any, str | None]:
    """Strip Annotated/Optional wrappers, returning (base type, description)."""
    description = None
    if typing.get_origin(tp) is typing.Annotated:
        tp, *metadata = typing.get_args(tp)
        for meta in metadata:
            if isinstance(meta, FieldInfo) and meta.description:
                description = meta.description
    args = typing.get_args(tp)
    if typing.get_origin(tp) in (typing.Union, types.UnionType):
        non_none = [a for a in args if a is not type(None)]
        if len(non_none) == 1:
            inner, inner_desc = _unwrap(non_none[0])
            return inner, description or inner_desc
        if non_none and all(a in (int, float) for a in non_none):
            return float, description
    return tp, description


def describe_param(tp: Any) -> str:
    """Short human-readable signature fragment for one parameter."""
    base, description = _unwrap(tp)
    postfix = "?" if accepts_none(tp) else ""
    if description:
        postfix += f" ({description})"

    origin = typing.get_origin(base)
    if base is str:
        return f"string{postfix}"
    if base in (int, float):
        return f"number{postfix}"
    if base is bool:
        return f"boolean{postfix}"
    if base in (list, tuple) or origin in (list, tuple):
        return f"list{postfix}"
    if origin is typing.Literal:
        return "|".join(f'"{v}"' for v in typing.get_args(base))
    if base is Any:
        return "any"
    return f"value{postfix}"


def validate_args(validators: list[Any], names: list[str], args: list[Any]) -> list[Any]:
    """Validate positional args; raise ValueError listing every problem."""
    problems = []
    if len(args) > len(validators):
        problems.append(f"expected at most {len(validators)} argument(s), got {len(args)}")
    values = []
    for i, (tp, name) in enumerate(zip(validators, names)):
        raw = args[i] if i < len(args) else None
        if i >= len(args) and not accepts_none(tp):
            problems.append(f"{name}: missing required argument")
            continue
        try:
            values.append(adapter_for(tp).validate_python(raw))
        except ValidationError as e:
            problems.extend(f"{name}: {err['msg']}" for err in e.errors())
    if problems:
        raise ValueError(f"Invalid arguments: {', '.join(problems)}")
    return values


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------

class ToolInteraction:
    name = ""
    description = ""
    # context property name -> validator type
    context_schema: dict[str, Any] = {}

    def get_tool_description(self) -> dict:
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": self.get_tool_schema(),
        }

    def _context_properties(self) -> dict[str, dict]:
        properties = {}
        for key, tp in self.context_schema.items():
            schema = json_schema_for(tp)
            extra = schema.get("description")
            schema["description"] = "Context property" + (f". {extra}" if extra else "")
            properties[key] = schema
        return properties

    def get_tool_schema(self) -> dict:
        raise NotImplementedError

    async def execute_tool(self, args: dict) -> Any:
        raise NotImplementedError


# ---------------------------------------------------------------------------
# Discovery
# ---------------------------------------------------------------------------

@dataclass
class RegisteredFunction:
    description: str
    params: list[Any]
    handler: Callable[..., Any]


@dataclass
class CallContext:
    """Per-call state: caller context plus the wall-clock deadline."""

    context: dict[str, Any]
    timeout: float
    started: float = field(default_factory=time.monotonic)

    @property
    def deadline(self) -> float:
        return self.started + self.timeout

    def expired(self) -> bool:
        return time.monotonic() >= self.deadline


def _length(collection: Any) -> int:
    if isinstance(collection, (Pair, NilType)):
        n = 0
        cur = collection
        while isinstance(cur, Pair):
            n += 1
            cur = cur.cdr
        return n
    if isinstance(collection, (list, tuple, str, dict)):
        return len(collection)
    return 0


class DiscoveryToolInteraction(ToolInteraction):
    """Read-only S-expression query surface over registered domain functions."""

    def __init__(self, timeout: float | None = None):
        self.timeout = timeout_seconds() if timeout is None else timeout
        self.functions: dict[str, RegisteredFunction] = {}

    def register_function(self, name: str, description: str, params: list[Any],
                          handler: Callable[..., Any]) -> None:
        self.functions[name] = RegisteredFunction(description, list(params), handler)

    def register_functions(self, context: dict[str, Any]) -> Callable[[], None] | None:
        """Register this call's domain functions. May return a cleanup callable."""
        raise NotImplementedError

    def get_available_functions(self) -> list[str]:
        lines = []
        for name, fn in self.functions.items():
            signature = " ".join(describe_param(tp) for tp in fn.params)
            lines.append(f"({name}{' ' + signature if signature else ''}) - {fn.description}")
        return lines

    def preview_functions(self) -> None:
        """Run registration with an empty context so descriptions can be listed."""
        try:
            cleanup = self.register_functions({})
            if cleanup is not None:
                cleanup()
        except Exception as e:
            _log(f"{self.name}: function preview failed: {e}")

    def get_tool_schema(self) -> dict:
        self.preview_functions()
        expr_description = textwrap.dedent("""\
            S-expressions to evaluate in a sandboxed Scheme environment.
            Several top-level expressions may be sent at once; each result is returned.

            Combinators work on both Scheme lists and host lists:
            - (map fn list) / (fmap fn list) - map over a list
            - (chain fn list) - map then flatten one level
            - (filter predicate list) - keep matching items
            - (reduce fn initial list) - left fold
            - (compose f g) / (pipe f g) - function composition

            Domain-specific functions available in sandbox:
            """) + "\n".join(self.get_available_functions())
        return {
            "type": "object",
            "properties": {
                "expr": {"type": "string", "description": expr_description},
                **self._context_properties(),
            },
            "required": ["expr"],
        }

    def _install(self, env: Environment, call: CallContext) -> None:
        for name, fn in self.functions.items():
            env.define(name, self._bind(name, fn, call))

    def _bind(self, name: str, fn: RegisteredFunction, call: CallContext):
        def check_deadline():
            if call.expired():
                raise TimeoutError(f"{name}: timed out after {call.timeout:g}s")

        names = [f"arg{i}" for i in range(len(fn.params))]

        def invoke(*args):
            _log(f"{name}({', '.join(_short_repr(a) for a in args)})")
            if not fn.params:
                return fn.handler(*args)
            return fn.handler(*validate_args(fn.params, names, list(args)))

        return wrap_host_function(name, invoke, before_call=check_deadline,
                                  arity=len(fn.params) or None)

    def create_environment(self, call: CallContext) -> tuple[Environment, Callable[[], None] | None]:
        env = Environment({
            "true": True,
            "false": False,
            "null": Nil,
            "length": _length,
        }, get_sandbox(), name="query")
        cleanup = self.register_functions(call.context)
        self._install(env, call)
        return env, cleanup

    async def execute_tool(self, args: dict) -> list[str]:
        args = dict(args)
        expr = args.pop("expr")
        call = CallContext(context=args, timeout=self.timeout)
        env, cleanup = self.create_environment(call)
        try:
            return exec_serialized(expr, env)
        finally:
            if cleanup is not None:
                cleanup()


# ---------------------------------------------------------------------------
# Actions
# ---------------------------------------------------------------------------

@dataclass
class ActionDefinition:
    description: str | Callable[[dict], str]
    required_context: list[str]
    optional_context: list[str]
    arg_names: list[str]
    arg_types: list[Any]
    handler: Callable[[dict, dict], Any | Awaitable[Any]]


ACTIONS_DESCRIPTION = textwrap.dedent("""\
    List of actions to execute within the current tool invocation context.
    Actions are [actionName, ...arguments] tuples, executed sequentially.
    The whole batch is validated first; if any tuple is invalid nothing runs.
    If an action fails while running, earlier results are reported and the
    rest of the batch is skipped.

    All actions in a batch share the same context, so every context field
    must be usable by every action in the batch.""")


class ActionToolInteraction(ToolInteraction):
    """Validate-then-execute batch surface over registered actions."""

    def __init__(self):
        self.actions: dict[str, ActionDefinition] = {}

    def register_action(self, name: str, description: str | Callable[[dict], str],
                        props: dict[str, Any],
                        handler: Callable[[dict, dict], Any]) -> None:
        required, optional, arg_names, arg_types = [], [], [], []
        for key, tp in props.items():
            if key in self.context_schema:
                (optional if accepts_none(tp) else required).append(key)
            else:
                arg_names.append(key)
                arg_types.append(tp)
        self.actions[name] = ActionDefinition(description, required, optional,
                                              arg_names, arg_types, handler)

    def _action_description(self, action: ActionDefinition, context: dict) -> str:
        text = action.description(context) if callable(action.description) else action.description
        if action.required_context or action.optional_context:
            scope = f"Works in {', '.join(action.required_context) or 'any'} context"
            if action.optional_context:
                scope += f" (optionally {', '.join(action.optional_context)})"
            text = f"{text}.\n{scope}"
        return text

    def get_tool_schema(self) -> dict:
        universally_required = [
            key for key in self.context_schema
            if all(key in a.required_context for a in self.actions.values())
        ]
        tuples = []
        for name, action in self.actions.items():
            arg_schemas = [json_schema_for(tp) for tp in action.arg_types]
            length = 1 + len(arg_schemas)
            tuples.append({
                "type": "array",
                "description": self._action_description(action, {}),
                "prefixItems": [{"const": name}, *arg_schemas],
                "minItems": length,
                "maxItems": length,
            })
        return {
            "type": "object",
            "properties": {
                **self._context_properties(),
                "actions": {
                    "type": "array",
                    "description": ACTIONS_DESCRIPTION,
                    "items": {"oneOf": tuples},
                },
            },
            "required": ["actions", *universally_required],
        }

    def validate_batch(self, actions: list, context: dict) -> list[dict]:
        """Check every tuple without running anything; return error records."""
        errors = []
        for i, entry in enumerate(actions):
            if not isinstance(entry, (list, tuple)) or not entry or not isinstance(entry[0], str):
                errors.append({"index": i, "action": None,
                               "error": "Malformed action: expected [actionName, ...arguments]"})
                continue
            name, *args = entry
            action = self.actions.get(name)
            if action is None:
                errors.append({"index": i, "action": name,
                               "error": f'Unknown action "{name}". '
                                        f"Available actions: {', '.join(self.actions)}"})
                continue
            missing = [key for key in action.required_context if context.get(key) is None]
            if missing:
                errors.append({"index": i, "action": name,
                               "error": f"Missing required context: {', '.join(missing)}"})
                continue
            try:
                validate_args(action.arg_types, action.arg_names, args)
            except ValueError as e:
                errors.append({"index": i, "action": name, "error": str(e)})
        return errors

    async def execute_actions(self, actions: list, **context) -> Any:
        errors = self.validate_batch(actions, context)
        if errors:
            return {
                "success": False,
                "validation": "failed",
                "errors": errors,
                "message": f"Validation failed for {len(errors)} action(s). No actions were executed.",
            }

        results = []
        for i, (name, *args) in enumerate(actions):
            action = self.actions[name]
            props = dict(zip(action.arg_names,
                             validate_args(action.arg_types, action.arg_names, args)))
            try:
                result = action.handler(context, props)
                if inspect.isawaitable(result):
                    result = await result
            except Exception as e:
                _log(f"{self.name}: action {i} ({name}) failed: {e}")
                return {
                    "partial": True,
                    "executed": i,
                    "total": len(actions),
                    "results": results,
                    "failedAction": {"index": i, "action": name, "error": str(e)},
                    "message": f"Executed {i} of {len(actions)} actions before runtime failure",
                }
            results.append(result)
        return results

    async def execute_tool(self, args: dict) -> Any:
        args = dict(args)
        actions = args.pop("actions")
        return await self.execute_actions(actions, **args)
