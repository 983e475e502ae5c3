"""
Tests for the step executor and the nine step behaviours.

Tests cover:
- Tree contract: sibling order, child forests, disabled subtrees, failure abort
- ApiCall and Pagination against a fake invoker
- Retry and ForEach driving their children
- Filter, Transform and FieldSelector shaping
- Store steps and cancellation
"""

import asyncio
import json

import pytest

from apiharvest.catalog import FunctionCatalog, FunctionDefinition, FunctionParameter
from apiharvest.catalog import PipelineDefinition
from apiharvest.config import HarvestSettings
from apiharvest.errors import ExecutionCancelledError, InvocationError, StepExecutionError
from apiharvest.execution import (
    ExecutionContext,
    ParameterResolver,
    StepEnvironment,
    StepExecutor,
    StepHandler,
    StepStatus,
    StepTree,
)
from apiharvest.storage import DiskSink, InMemoryDatabaseSink


# =============================================================================
# Helpers
# =============================================================================


class FakeInvoker:
    """Records calls and answers them with a callable."""

    def __init__(self, respond=None):
        self.respond = respond or (lambda call: {"ok": True})
        self.calls = []

    async def invoke(self, call):
        self.calls.append(call)
        answer = self.respond(call)
        if asyncio.iscoroutine(answer):
            answer = await answer
        if isinstance(answer, Exception):
            raise answer
        return answer


class RecordingHandler(StepHandler):
    """Appends the step id to the list flowing through it."""

    def __init__(self, seen=None):
        self.seen = seen if seen is not None else []

    async def run(self, value, run):
        self.seen.append(run.node.id)
        return [*(value or []), run.node.id]


class FailingHandler(StepHandler):
    async def run(self, value, run):
        raise RuntimeError(f"{run.node.id} exploded")


def make_function(**kwargs):
    defaults = dict(
        name="listUsers",
        path="/users",
        parameters=[
            FunctionParameter(name="id", location="query"),
            FunctionParameter(name="limit", type="integer", location="query"),
        ],
    )
    defaults.update(kwargs)
    return FunctionDefinition(**defaults)


def make_env(invoker=None, function=None, sinks=None, settings=None, extra_functions=(), **pipeline):
    function = function or make_function()
    catalog = FunctionCatalog("ds", [function, *extra_functions])
    return StepEnvironment(
        pipeline=PipelineDefinition(function_id=function.id, data_source_id="ds", **pipeline),
        function=function,
        catalog=catalog,
        invoker=invoker or FakeInvoker(),
        resolver=ParameterResolver(),
        settings=settings or HarvestSettings(),
        sinks=sinks or {},
        base_url="https://api.example.com",
    )


async def run_steps(steps, value=None, env=None, ctx=None, handlers=None):
    tree = StepTree.build(steps)
    executor = StepExecutor(tree, env or make_env(), handlers=handlers)
    ctx = ctx or ExecutionContext()
    results = []
    output = await executor.run(value, ctx, results)
    return output, results, ctx


def step(id, type, order=0, config=None, **kwargs):
    return {"id": id, "type": type, "order": order, "config": config or {}, **kwargs}


# =============================================================================
# Tree Contract Tests
# =============================================================================


class TestTreeContract:
    """Tests for the depth-first evaluation contract."""

    @pytest.mark.asyncio
    async def test_children_run_before_next_sibling(self):
        recorder = RecordingHandler()
        steps = [
            step("B", "Transform", order=2),
            step("A", "Transform", order=1, children=[step("A1", "Transform")]),
        ]

        output, results, _ = await run_steps(steps, handlers={"Transform": recorder})

        assert recorder.seen == ["A", "A1", "B"]
        # A's effective output is its subtree's output, which feeds B
        assert output == ["A", "A1", "B"]
        assert [r.step_id for r in results] == ["A", "B"]
        assert results[0].children[0].step_id == "A1"

    @pytest.mark.asyncio
    async def test_disabled_subtree_is_skipped(self):
        recorder = RecordingHandler()
        steps = [
            step("A", "Transform", order=0),
            step("off", "Transform", order=1, enabled=False, children=[step("off1", "Transform")]),
            step("C", "Transform", order=2),
        ]

        output, results, ctx = await run_steps(steps, handlers={"Transform": recorder})

        assert recorder.seen == ["A", "C"]
        assert output == ["A", "C"]
        assert results[1].status is StepStatus.SKIPPED
        assert results[1].children == []
        assert ctx.metrics.steps_skipped == 1

    @pytest.mark.asyncio
    async def test_failure_aborts_remaining_siblings(self):
        recorder = RecordingHandler()
        steps = [
            step("A", "Transform", order=0),
            step("bad", "Filter", order=1),
            step("C", "Transform", order=2),
        ]

        results = []
        tree = StepTree.build(steps)
        executor = StepExecutor(
            tree, make_env(), handlers={"Transform": recorder, "Filter": FailingHandler()}
        )
        with pytest.raises(StepExecutionError) as exc_info:
            await executor.run(None, ExecutionContext(), results)

        assert exc_info.value.step_id == "bad"
        assert exc_info.value.step_type == "Filter"
        assert exc_info.value.reason == "bad exploded"
        assert recorder.seen == ["A"]
        assert [r.status for r in results] == [StepStatus.SUCCEEDED, StepStatus.FAILED]

    @pytest.mark.asyncio
    async def test_child_failure_fails_parent(self):
        steps = [step("P", "Transform", children=[step("child", "Filter")])]
        tree = StepTree.build(steps)
        executor = StepExecutor(tree, make_env(), handlers={"Filter": FailingHandler()})

        results = []
        with pytest.raises(StepExecutionError) as exc_info:
            await executor.run({}, ExecutionContext(), results)

        assert exc_info.value.step_id == "child"
        assert results[0].status is StepStatus.FAILED
        assert results[0].children[0].status is StepStatus.FAILED

    @pytest.mark.asyncio
    async def test_outputs_recorded_in_scope(self):
        _, _, ctx = await run_steps(
            [step("pick", "FieldSelector", config={"fields": ["a"]})], value={"a": 1, "b": 2}
        )
        assert ctx.step_outputs["pick"] == {"a": 1}
        assert "pick" in ctx.step_timings

    @pytest.mark.asyncio
    async def test_cancelled_before_start(self):
        ctx = ExecutionContext()
        ctx.cancel()

        with pytest.raises(ExecutionCancelledError) as exc_info:
            await run_steps([step("A", "Transform")], ctx=ctx)
        assert exc_info.value.step_id == "A"


# =============================================================================
# ApiCall Tests
# =============================================================================


class TestApiCall:
    """Tests for the ApiCall step."""

    @pytest.mark.asyncio
    async def test_parameters_layered_and_mapped(self):
        invoker = FakeInvoker(lambda call: {"data": {"users": [1, 2]}})
        env = make_env(
            invoker,
            static_parameters={"limit": 50},
            parameter_mappings={"id": "$.prev.user_id"},
        )
        steps = [step("call", "ApiCall", config={"parameters": {"limit": 5}, "response_path": "data.users"})]

        output, results, _ = await run_steps(steps, value={"user_id": "u1"}, env=env)

        assert output == [1, 2]
        assert results[0].item_count == 2
        call = invoker.calls[0]
        assert call.parameters.values == {"limit": 5, "id": "u1"}
        assert call.base_url == "https://api.example.com"

    @pytest.mark.asyncio
    async def test_runtime_parameters_override(self):
        invoker = FakeInvoker()
        env = make_env(invoker, static_parameters={"limit": 50})
        ctx = ExecutionContext(runtime_parameters={"limit": 7, "unrelated": "x"})

        await run_steps([step("call", "ApiCall")], env=env, ctx=ctx)

        assert invoker.calls[0].parameters.values == {"limit": 7}

    @pytest.mark.asyncio
    async def test_other_catalog_function(self):
        other = make_function(name="getUser", path="/users/{id}")
        invoker = FakeInvoker()
        env = make_env(invoker, extra_functions=[other])

        await run_steps([step("call", "ApiCall", config={"function_id": other.id})], env=env)

        assert invoker.calls[0].function.name == "getUser"

    @pytest.mark.asyncio
    async def test_missing_response_path_fails(self):
        env = make_env(FakeInvoker(lambda call: {"other": 1}))
        with pytest.raises(StepExecutionError, match="data"):
            await run_steps([step("call", "ApiCall", config={"response_path": "data"})], env=env)

    @pytest.mark.asyncio
    async def test_invocation_error_fails_step(self):
        env = make_env(FakeInvoker(lambda call: InvocationError("API error 500")))
        with pytest.raises(StepExecutionError) as exc_info:
            await run_steps([step("call", "ApiCall")], env=env)
        assert isinstance(exc_info.value.cause, InvocationError)


# =============================================================================
# Pagination Tests
# =============================================================================


class TestPagination:
    """Tests for the Pagination step."""

    @pytest.mark.asyncio
    async def test_offset_until_short_page(self):
        data = list(range(250))

        def respond(call):
            offset = call.parameters.values["offset"]
            limit = call.parameters.values["limit"]
            return {"items": data[offset : offset + limit]}

        invoker = FakeInvoker(respond)
        steps = [step("pages", "Pagination", config={"items_path": "items", "page_size": 100})]

        output, results, _ = await run_steps(steps, env=make_env(invoker))

        assert output == data
        assert len(invoker.calls) == 3
        assert results[0].details == {"function": "listUsers", "pages": 3, "stop_reason": "short_page"}
        # offset is undeclared and still travels as a query parameter
        assert invoker.calls[1].parameters.query == {"limit": 100, "offset": 100}

    @pytest.mark.asyncio
    async def test_page_strategy_until_empty(self):
        pages = {1: [1, 2], 2: [3, 4], 3: []}
        invoker = FakeInvoker(lambda call: pages[call.parameters.values["page"]])
        steps = [
            step("pages", "Pagination", config={"strategy": "page", "page_size": 2, "page_size_param": "limit"})
        ]

        output, results, _ = await run_steps(steps, env=make_env(invoker))

        assert output == [1, 2, 3, 4]
        assert results[0].details["stop_reason"] == "empty_page"

    @pytest.mark.asyncio
    async def test_unsent_page_size_ignores_short_pages(self):
        data = list(range(5))

        def respond(call):
            offset = call.parameters.values["offset"]
            return data[offset : offset + 2]

        invoker = FakeInvoker(respond)
        steps = [step("pages", "Pagination", config={"page_size": 100, "page_size_param": None})]

        output, results, _ = await run_steps(steps, env=make_env(invoker))

        assert output == data
        assert len(invoker.calls) == 4
        assert [c.parameters.values["offset"] for c in invoker.calls] == [0, 2, 4, 5]
        assert results[0].details["stop_reason"] == "empty_page"

    @pytest.mark.asyncio
    async def test_cursor_until_missing(self):
        responses = {
            None: {"data": [1], "next": "c2"},
            "c2": {"data": [2], "next": "c3"},
            "c3": {"data": [3]},
        }
        invoker = FakeInvoker(lambda call: responses[call.parameters.values.get("cursor")])
        steps = [
            step(
                "pages",
                "Pagination",
                config={"strategy": "cursor", "items_path": "data", "cursor_path": "next", "page_size_param": None},
            )
        ]

        output, results, _ = await run_steps(steps, env=make_env(invoker))

        assert output == [1, 2, 3]
        assert results[0].details["stop_reason"] == "no_cursor"
        assert "cursor" not in invoker.calls[0].parameters.values

    @pytest.mark.asyncio
    async def test_repeated_cursor_stops(self):
        invoker = FakeInvoker(lambda call: {"data": [1], "next_cursor": "same"})
        steps = [step("pages", "Pagination", config={"strategy": "cursor", "items_path": "data"})]

        output, results, _ = await run_steps(steps, env=make_env(invoker))

        assert len(invoker.calls) == 2
        assert results[0].details["stop_reason"] == "repeated_cursor"

    @pytest.mark.asyncio
    async def test_max_pages(self):
        invoker = FakeInvoker(lambda call: [1, 2])
        steps = [step("pages", "Pagination", config={"page_size": 2, "max_pages": 3})]

        output, _, _ = await run_steps(steps, env=make_env(invoker))

        assert output == [1, 2] * 3
        assert len(invoker.calls) == 3


# =============================================================================
# Retry Tests
# =============================================================================


class TestRetry:
    """Tests for the Retry step."""

    @pytest.mark.asyncio
    async def test_redrives_children_until_success(self):
        answers = [InvocationError("boom"), InvocationError("boom"), {"ok": 1}]
        invoker = FakeInvoker(lambda call: answers.pop(0))
        steps = [
            step(
                "retry",
                "Retry",
                config={"max_attempts": 3, "backoff": "none"},
                children=[step("call", "ApiCall")],
            )
        ]

        output, results, ctx = await run_steps(steps, env=make_env(invoker))

        assert output == {"ok": 1}
        retry = results[0]
        assert retry.status is StepStatus.SUCCEEDED
        assert retry.attempts == 3
        assert [it[0].status for it in retry.iterations] == [
            StepStatus.FAILED,
            StepStatus.FAILED,
            StepStatus.SUCCEEDED,
        ]
        assert ctx.metrics.retries_total == 2

    @pytest.mark.asyncio
    async def test_exhausted_attempts_propagate_last_error(self):
        invoker = FakeInvoker(lambda call: InvocationError("still down"))
        steps = [
            step("retry", "Retry", config={"max_attempts": 2, "backoff": "none"}, children=[step("call", "ApiCall")]),
            step("after", "Transform", order=1),
        ]

        results = []
        executor = StepExecutor(StepTree.build(steps), make_env(invoker))
        with pytest.raises(StepExecutionError) as exc_info:
            await executor.run(None, ExecutionContext(), results)

        assert exc_info.value.step_id == "call"
        assert len(invoker.calls) == 2
        assert results[0].status is StepStatus.FAILED
        assert len(results) == 1

    @pytest.mark.asyncio
    async def test_each_attempt_gets_the_same_input(self):
        seen = []

        class Mutating(StepHandler):
            async def run(self, value, run):
                seen.append(dict(value))
                value["touched"] = True
                raise RuntimeError("again")

        steps = [step("retry", "Retry", config={"max_attempts": 2, "backoff": "none"}, children=[step("m", "Filter")])]
        with pytest.raises(StepExecutionError):
            await run_steps(steps, value={"n": 1}, handlers={"Filter": Mutating()})

        assert seen == [{"n": 1}, {"n": 1}]

    @pytest.mark.asyncio
    async def test_default_attempts_from_settings(self):
        invoker = FakeInvoker(lambda call: InvocationError("down"))
        env = make_env(invoker, settings=HarvestSettings(retry_default_attempts=4))
        steps = [step("retry", "Retry", config={"backoff": "none"}, children=[step("call", "ApiCall")])]

        with pytest.raises(StepExecutionError):
            await run_steps(steps, env=env)
        assert len(invoker.calls) == 4


# =============================================================================
# ForEach Tests
# =============================================================================


class TestForEach:
    """Tests for the ForEach step."""

    @pytest.mark.asyncio
    async def test_runs_children_per_item_in_order(self):
        async def respond(call):
            user_id = call.parameters.values["id"]
            await asyncio.sleep(0.01 * (3 - user_id))  # later items finish first
            return {"user": user_id}

        invoker = FakeInvoker(respond)
        env = make_env(invoker)
        steps = [
            step(
                "each",
                "ForEach",
                config={"items_path": "users", "concurrency": 3},
                children=[step("call", "ApiCall", config={"parameter_mappings": {"id": "$.item.id"}})],
            )
        ]

        output, results, _ = await run_steps(
            steps, value={"users": [{"id": 1}, {"id": 2}, {"id": 3}]}, env=env
        )

        assert output == [{"user": 1}, {"user": 2}, {"user": 3}]
        assert results[0].item_count == 3
        assert len(results[0].iterations) == 3

    @pytest.mark.asyncio
    async def test_children_transform_each_item(self):
        steps = [
            step(
                "each",
                "ForEach",
                children=[step("t", "Transform", config={"mappings": {"name": "name", "pos": "$"}})],
            )
        ]
        # Transform paths are relative to the item; "$" is the item itself
        output, _, _ = await run_steps(steps, value=[{"name": "a"}, {"name": "b"}])
        assert output == [{"name": "a", "pos": {"name": "a"}}, {"name": "b", "pos": {"name": "b"}}]

    @pytest.mark.asyncio
    async def test_items_are_isolated_copies(self):
        class Mutating(StepHandler):
            async def run(self, value, run):
                value["seen"] = True
                return value

        items = [{"id": 1}, {"id": 2}]
        steps = [step("each", "ForEach", children=[step("m", "Filter")])]
        output, _, _ = await run_steps(steps, value=items, handlers={"Filter": Mutating()})

        assert output == [{"id": 1, "seen": True}, {"id": 2, "seen": True}]
        assert items == [{"id": 1}, {"id": 2}]

    @pytest.mark.asyncio
    async def test_first_failure_fails_step(self):
        invoker = FakeInvoker(
            lambda call: InvocationError("nope") if call.parameters.values["id"] == 2 else {"ok": 1}
        )
        steps = [
            step(
                "each",
                "ForEach",
                children=[step("call", "ApiCall", config={"parameter_mappings": {"id": "$.item.id"}})],
            )
        ]

        with pytest.raises(StepExecutionError):
            await run_steps(steps, value=[{"id": 1}, {"id": 2}, {"id": 3}], env=make_env(invoker))

        # Sequential by default: the third item never runs
        assert len(invoker.calls) == 2

    @pytest.mark.asyncio
    async def test_continue_on_error_drops_failed_items(self):
        invoker = FakeInvoker(
            lambda call: InvocationError("nope") if call.parameters.values["id"] == 2 else {"id": call.parameters.values["id"]}
        )
        steps = [
            step(
                "each",
                "ForEach",
                config={"continue_on_error": True, "concurrency": 2},
                children=[step("call", "ApiCall", config={"parameter_mappings": {"id": "$.item.id"}})],
            )
        ]

        output, results, _ = await run_steps(
            steps, value=[{"id": 1}, {"id": 2}, {"id": 3}], env=make_env(invoker)
        )

        assert output == [{"id": 1}, {"id": 3}]
        assert results[0].status is StepStatus.SUCCEEDED
        assert results[0].details["failed_items"][0]["index"] == 1

    @pytest.mark.asyncio
    async def test_flatten(self):
        invoker = FakeInvoker(lambda call: [call.parameters.values["id"]] * 2)
        steps = [
            step(
                "each",
                "ForEach",
                config={"flatten": True},
                children=[step("call", "ApiCall", config={"parameter_mappings": {"id": "id"}})],
            )
        ]

        output, _, _ = await run_steps(steps, value=[{"id": 1}, {"id": 2}], env=make_env(invoker))
        assert output == [1, 1, 2, 2]

    @pytest.mark.asyncio
    async def test_without_children_returns_items(self):
        output, _, _ = await run_steps([step("each", "ForEach", config={"items_path": "a"})], value={"a": [1, 2]})
        assert output == [1, 2]

    @pytest.mark.asyncio
    async def test_cancellation_stops_remaining_items(self):
        ctx = ExecutionContext()

        class CancelOnFirst(StepHandler):
            async def run(self, value, run):
                run.context.cancel()
                return value

        steps = [step("each", "ForEach", children=[step("c", "Filter")])]
        with pytest.raises(ExecutionCancelledError):
            await run_steps(steps, value=[1, 2, 3], ctx=ctx, handlers={"Filter": CancelOnFirst()})


# =============================================================================
# Shaping Tests
# =============================================================================


class TestFilter:
    """Tests for the Filter step."""

    USERS = [
        {"name": "ann", "age": 31, "active": True, "tags": ["admin"]},
        {"name": "bob", "age": 17, "active": False, "tags": []},
        {"name": "cy", "age": "n/a", "active": True},
    ]

    async def _filter(self, value, **config):
        output, results, _ = await run_steps([step("f", "Filter", config=config)], value=value)
        return output, results[0]

    @pytest.mark.asyncio
    async def test_all_conditions(self):
        output, result = await self._filter(
            self.USERS,
            conditions=[
                {"field": "active", "value": True},
                {"field": "age", "operator": "gte", "value": 18},
            ],
        )
        # "n/a" >= 18 is a type mismatch and does not match
        assert [u["name"] for u in output] == ["ann"]
        assert result.details["dropped"] == 2

    @pytest.mark.asyncio
    async def test_any_condition(self):
        output, _ = await self._filter(
            self.USERS,
            match="any",
            conditions=[
                {"field": "name", "operator": "regex", "value": "^b"},
                {"field": "tags", "operator": "contains", "value": "admin"},
            ],
        )
        assert [u["name"] for u in output] == ["ann", "bob"]

    @pytest.mark.asyncio
    async def test_exists_and_in(self):
        output, _ = await self._filter(
            self.USERS, conditions=[{"field": "tags", "operator": "not_exists"}]
        )
        assert [u["name"] for u in output] == ["cy"]

        output, _ = await self._filter(
            self.USERS, conditions=[{"field": "name", "operator": "not_in", "value": ["ann", "cy"]}]
        )
        assert [u["name"] for u in output] == ["bob"]

    @pytest.mark.asyncio
    async def test_single_mapping(self):
        kept, _ = await self._filter({"a": 1}, conditions=[{"field": "a", "value": 1}])
        dropped, _ = await self._filter({"a": 2}, conditions=[{"field": "a", "value": 1}])

        assert kept == {"a": 1}
        assert dropped is None

    @pytest.mark.asyncio
    async def test_items_path(self):
        output, _ = await self._filter(
            {"data": [{"a": 1}, {"a": 2}]},
            items_path="data",
            conditions=[{"field": "a", "operator": "gt", "value": 1}],
        )
        assert output == [{"a": 2}]


class TestTransform:
    """Tests for the Transform step."""

    @pytest.mark.asyncio
    async def test_mappings_and_literals(self):
        config = {
            "mappings": {
                "id": "user.id",
                "profile.city": "address.city",
                "source": {"value": "crm"},
                "missing": "nope",
            }
        }
        value = [{"user": {"id": 7}, "address": {"city": "Oslo"}}, "scalar"]

        output, _, _ = await run_steps([step("t", "Transform", config=config)], value=value)

        assert output == [
            {"id": 7, "profile": {"city": "Oslo"}, "source": "crm", "missing": None},
            "scalar",
        ]

    @pytest.mark.asyncio
    async def test_include_unmapped(self):
        value = {"a": 1, "nested": {"b": 2}}
        config = {"mappings": {"nested.c": "a"}, "include_unmapped": True}

        output, _, _ = await run_steps([step("t", "Transform", config=config)], value=value)

        assert output == {"a": 1, "nested": {"b": 2, "c": 1}}
        assert value == {"a": 1, "nested": {"b": 2}}


class TestFieldSelector:
    """Tests for the FieldSelector step."""

    @pytest.mark.asyncio
    async def test_nested_projection(self):
        value = [{"id": 1, "profile": {"name": "a", "age": 3}, "x": 0}]
        config = {"fields": ["id", "profile.name", "absent"]}

        output, _, _ = await run_steps([step("s", "FieldSelector", config=config)], value=value)

        assert output == [{"id": 1, "profile": {"name": "a"}}]

    @pytest.mark.asyncio
    async def test_flatten(self):
        value = {"id": 1, "profile": {"name": "a"}}
        config = {"fields": ["id", "profile.name"], "flatten": True}

        output, _, _ = await run_steps([step("s", "FieldSelector", config=config)], value=value)

        assert output == {"id": 1, "profile.name": "a"}


# =============================================================================
# Store Tests
# =============================================================================


class TestStore:
    """Tests for StoreDatabase and StoreDisk."""

    @pytest.mark.asyncio
    async def test_store_database_passes_through(self):
        sink = InMemoryDatabaseSink()
        env = make_env(sinks={"database": sink})
        value = [{"id": 1}, {"id": 2}]

        output, results, _ = await run_steps(
            [step("db", "StoreDatabase", config={"table": "users"})], value=value, env=env
        )

        assert output is value
        assert sink.rows("users") == value
        assert results[0].item_count == 2

    @pytest.mark.asyncio
    async def test_store_disk_jsonl(self, tmp_path):
        env = make_env(sinks={"disk": DiskSink(tmp_path)})
        ctx = ExecutionContext()

        await run_steps(
            [step("disk", "StoreDisk", config={"path": "out/{step_id}.jsonl", "format": "jsonl"})],
            value=[{"id": 1}, {"id": 2}],
            env=env,
            ctx=ctx,
        )

        lines = (tmp_path / "out" / "disk.jsonl").read_text().splitlines()
        assert [json.loads(line) for line in lines] == [{"id": 1}, {"id": 2}]

    @pytest.mark.asyncio
    async def test_unknown_sink(self):
        with pytest.raises(StepExecutionError, match="No sink"):
            await run_steps([step("db", "StoreDatabase", config={"table": "t"})], value=[1])
