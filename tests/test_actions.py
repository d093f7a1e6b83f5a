"""Tests for ActionToolInteraction.

Verifies that:
- A batch with any invalid tuple runs nothing (all-or-nothing validation)
- Validation reports unknown actions, malformed tuples, arity and type errors,
  and missing context, each with its index
- Valid batches run in order and return every result
- A runtime failure stops the batch and reports the partial outcome
- Async handlers are awaited
- Props split into context keys and positional arguments
- The schema describes each action as a fixed-length tuple
"""

import os
import sys
from typing import Annotated, Optional

import pytest
from pydantic import Field

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))
from tool_interactions import ActionToolInteraction


class NoteActions(ActionToolInteraction):
    name = "notes"
    description = "Edit notes"
    context_schema = {"workspace": str, "note": Optional[str]}

    def __init__(self):
        super().__init__()
        self.log = []
        self.register_action(
            "append", "Append a line",
            {"workspace": str, "text": Annotated[str, Field(description="Line to append")]},
            self._append,
        )
        self.register_action("count", "Repeat a marker", {"workspace": str, "times": int}, self._count)
        self.register_action("fail", "Always fails", {}, self._fail)
        self.register_action("later", "Async handler", {"text": str}, self._later)
        self.register_action(
            "tag", lambda context: "Tag the current note",
            {"workspace": str, "note": Optional[str], "label": str},
            self._tag,
        )

    def _append(self, context, props):
        self.log.append(("append", context["workspace"], props["text"]))
        return {"appended": props["text"]}

    def _count(self, context, props):
        self.log.append(("count", props["times"]))
        return props["times"]

    def _fail(self, context, props):
        raise RuntimeError("disk full")

    async def _later(self, context, props):
        self.log.append(("later", props["text"]))
        return f"later:{props['text']}"

    def _tag(self, context, props):
        self.log.append(("tag", context.get("note"), props["label"]))
        return props


# ============================================================
# Validation
# ============================================================


class TestValidation:
    @pytest.mark.asyncio
    async def test_one_invalid_tuple_blocks_the_batch(self):
        """Five valid tuples and one invalid one: nothing runs."""
        tool = NoteActions()
        batch = [["append", f"line {i}"] for i in range(5)] + [["count", "many"]]
        result = await tool.execute_actions(batch, workspace="w")
        assert result["success"] is False
        assert result["validation"] == "failed"
        assert result["message"] == "Validation failed for 1 action(s). No actions were executed."
        assert [e["index"] for e in result["errors"]] == [5]
        assert tool.log == []

    @pytest.mark.asyncio
    async def test_unknown_action(self):
        tool = NoteActions()
        result = await tool.execute_actions([["explode"]], workspace="w")
        [error] = result["errors"]
        assert error["action"] == "explode"
        assert error["error"] == 'Unknown action "explode". Available actions: append, count, fail, later, tag'

    @pytest.mark.asyncio
    async def test_malformed_tuple(self):
        """Entries that aren't [name, ...args] are rejected."""
        tool = NoteActions()
        result = await tool.execute_actions([[], "append", [42]], workspace="w")
        assert [e["index"] for e in result["errors"]] == [0, 1, 2]
        assert all(e["action"] is None for e in result["errors"])
        assert all(e["error"].startswith("Malformed action") for e in result["errors"])

    @pytest.mark.asyncio
    async def test_too_many_arguments(self):
        tool = NoteActions()
        result = await tool.execute_actions([["append", "a", "b"]], workspace="w")
        assert "expected at most 1 argument(s), got 2" in result["errors"][0]["error"]

    @pytest.mark.asyncio
    async def test_missing_argument(self):
        tool = NoteActions()
        result = await tool.execute_actions([["append"]], workspace="w")
        assert result["errors"][0]["error"] == "Invalid arguments: text: missing required argument"

    @pytest.mark.asyncio
    async def test_wrong_type(self):
        tool = NoteActions()
        result = await tool.execute_actions([["count", "x"]], workspace="w")
        assert result["errors"][0]["error"].startswith("Invalid arguments: times: ")

    @pytest.mark.asyncio
    async def test_missing_context(self):
        """Actions that need workspace are rejected without it."""
        tool = NoteActions()
        result = await tool.execute_actions([["append", "a"], ["later", "b"]])
        assert result["errors"] == [
            {"index": 0, "action": "append", "error": "Missing required context: workspace"},
        ]
        assert tool.log == []

    @pytest.mark.asyncio
    async def test_every_error_is_reported(self):
        tool = NoteActions()
        result = await tool.execute_actions([["nope"], ["append"], ["count", 1]], workspace="w")
        assert [e["index"] for e in result["errors"]] == [0, 1]
        assert result["message"].startswith("Validation failed for 2 action(s)")


# ============================================================
# Execution
# ============================================================


class TestExecution:
    @pytest.mark.asyncio
    async def test_runs_in_order(self):
        tool = NoteActions()
        result = await tool.execute_actions([["append", "a"], ["count", 2], ["later", "z"]],
                                            workspace="w")
        assert result == [{"appended": "a"}, 2, "later:z"]
        assert tool.log == [("append", "w", "a"), ("count", 2), ("later", "z")]

    @pytest.mark.asyncio
    async def test_runtime_failure_stops_the_batch(self):
        """[A, B (fails), C]: A runs, C never does."""
        tool = NoteActions()
        result = await tool.execute_actions([["append", "a"], ["fail"], ["append", "c"]],
                                            workspace="w")
        assert result == {
            "partial": True,
            "executed": 1,
            "total": 3,
            "results": [{"appended": "a"}],
            "failedAction": {"index": 1, "action": "fail", "error": "disk full"},
            "message": "Executed 1 of 3 actions before runtime failure",
        }
        assert tool.log == [("append", "w", "a")]

    @pytest.mark.asyncio
    async def test_arguments_are_coerced(self):
        """Validated values reach the handler."""
        tool = NoteActions()
        assert await tool.execute_actions([["count", "3"]], workspace="w") == [3]

    @pytest.mark.asyncio
    async def test_optional_context(self):
        tool = NoteActions()
        await tool.execute_actions([["tag", "red"]], workspace="w")
        await tool.execute_actions([["tag", "blue"]], workspace="w", note="n1")
        assert tool.log == [("tag", None, "red"), ("tag", "n1", "blue")]

    @pytest.mark.asyncio
    async def test_execute_tool_splits_actions_from_context(self):
        tool = NoteActions()
        result = await tool.execute_tool({"actions": [["append", "x"]], "workspace": "w2"})
        assert result == [{"appended": "x"}]
        assert tool.log == [("append", "w2", "x")]

    @pytest.mark.asyncio
    async def test_empty_batch(self):
        assert await NoteActions().execute_actions([]) == []


# ============================================================
# Schema
# ============================================================


class TestSchema:
    def test_props_split(self):
        """Context keys become required/optional context; the rest are arguments."""
        tool = NoteActions()
        tag = tool.actions["tag"]
        assert tag.required_context == ["workspace"]
        assert tag.optional_context == ["note"]
        assert tag.arg_names == ["label"]
        assert tool.actions["later"].required_context == []

    def test_tuple_schema(self):
        schema = NoteActions().get_tool_schema()
        tuples = {t["prefixItems"][0]["const"]: t for t in schema["properties"]["actions"]["items"]["oneOf"]}
        assert set(tuples) == {"append", "count", "fail", "later", "tag"}
        append = tuples["append"]
        assert append["minItems"] == append["maxItems"] == 2
        assert append["prefixItems"][1]["type"] == "string"
        assert tuples["count"]["prefixItems"][1]["type"] == "integer"
        assert tuples["fail"]["maxItems"] == 1

    def test_description_mentions_context(self):
        schema = NoteActions().get_tool_schema()
        tuples = {t["prefixItems"][0]["const"]: t for t in schema["properties"]["actions"]["items"]["oneOf"]}
        assert tuples["append"]["description"] == "Append a line.\nWorks in workspace context"
        assert tuples["tag"]["description"] == (
            "Tag the current note.\nWorks in workspace context (optionally note)"
        )
        assert tuples["fail"]["description"] == "Always fails"

    def test_required_only_lists_universal_context(self):
        """workspace is not required by every action, so only actions is required."""
        schema = NoteActions().get_tool_schema()
        assert schema["required"] == ["actions"]
        assert schema["properties"]["workspace"]["description"] == "Context property"
