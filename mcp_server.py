"""periphery: MCP server for sandboxed filesystem discovery and batch actions.

Exposes two tools over a project directory, plus a schema helper:

  discover(expr)        evaluate S-expression queries in a closed Scheme sandbox
  act(actions)          validate, then run, a batch of filesystem mutations
  get_tool_schema(tool) structured input schema for either tool

Architecture:
  MCP client --JSON-RPC/stdio--> mcp_server.py --> DiscoverTool --> sandbox + scheme_runtime
                                               \--> ActionTool  --> filesystem
"""

import json
import os
import sys
from typing import Any

from dotenv import load_dotenv
load_dotenv()

from mcp.server.fastmcp import Context, FastMCP
from mcp.types import TextContent

from fs_tools import ActionTool, DiscoverTool
from session_store import SessionStore
from tool_interactions import to_content

_DOCS_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), "docs")
_TOOL_DESC_DIR = os.path.join(_DOCS_DIR, "tool-descriptions")


def _load_tool_desc(tool_name: str) -> str:
    """Load tool description from markdown file."""
    with open(os.path.join(_TOOL_DESC_DIR, f"{tool_name}.md"), "r", encoding="utf-8") as f:
        return f.read()


def _log(message: str) -> None:
    print(f"[periphery] {message}", file=sys.stderr, flush=True)


mcp = FastMCP("periphery")

_TOOL_DESCRIPTIONS = {
    "discover": _load_tool_desc("discover"),
    "act": _load_tool_desc("act"),
    "get_tool_schema": _load_tool_desc("get_tool_schema"),
}


# ---------------------------------------------------------------------------
# Session store: one per process, flushed on shutdown
# ---------------------------------------------------------------------------

_session_store: SessionStore | None = None


def get_session_store() -> SessionStore:
    global _session_store
    if _session_store is None:
        _session_store = SessionStore()
    return _session_store


def _touch_session(ctx: Context | None) -> None:
    client_id = None
    if ctx is not None:
        try:
            client_id = ctx.client_id
        except ValueError:
            # no active request (called outside the server loop)
            client_id = None
    try:
        get_session_store().touch(client_id or "stdio")
    except OSError as e:
        _log(f"Could not record session {client_id or 'stdio'}: {e}")


def _error(e: Exception) -> list:
    _log(f"{type(e).__name__}: {e}")
    return [TextContent(type="text", text=json.dumps({"status": "error", "message": str(e)}))]


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------

@mcp.tool(description="Evaluate S-expression queries against the project filesystem.")
async def discover(expr: str, ctx: Context = None):
    _touch_session(ctx)
    try:
        results = await DiscoverTool().execute_tool({"expr": expr})
    except Exception as e:
        return _error(e)
    return to_content(results)

discover.__doc__ = _TOOL_DESCRIPTIONS["discover"]


@mcp.tool(description="Validate and execute a batch of filesystem actions.")
async def act(actions: list[list[Any]], ctx: Context = None):
    _touch_session(ctx)
    try:
        result = await ActionTool().execute_tool({"actions": actions})
    except Exception as e:
        return _error(e)
    return to_content([result])

act.__doc__ = _TOOL_DESCRIPTIONS["act"]


@mcp.tool(description="Get the structured input schema and description of a tool.")
def get_tool_schema(tool: str) -> str:
    tools = {"discover": DiscoverTool, "act": ActionTool}
    if tool not in tools:
        return json.dumps({"status": "error",
                           "message": f"Unknown tool {tool!r}. Available: {', '.join(tools)}"})
    return json.dumps(tools[tool]().get_tool_description(), indent=2)

get_tool_schema.__doc__ = _TOOL_DESCRIPTIONS["get_tool_schema"]


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def main() -> None:
    transport = os.environ.get("PERIPHERY_TRANSPORT", "stdio")
    _log(f"Starting periphery ({transport}), root: {os.environ.get('FS_ROOT') or os.getcwd()}")
    try:
        mcp.run(transport=transport)
    finally:
        if _session_store is not None:
            _session_store.close()


if __name__ == "__main__":
    main()
