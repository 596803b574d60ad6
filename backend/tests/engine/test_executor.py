# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Unit tests for the workflow executor
"""

from unittest.mock import AsyncMock, Mock

import pytest

from flowrunner.core.errors import GraphCycleError, NodeExecutionError, NotFoundError
from flowrunner.engine.executor import WorkflowExecutor, enrich_input
from flowrunner.models import Execution, ExecutionStatus, LogStatus, isoformat, utc_now
from flowrunner.node_types import NodeType
from flowrunner.nodes.logic import if_else, switch
from flowrunner.nodes.registry import NodeRegistry
from flowrunner.nodes.triggers import error_trigger
from tests.factories import USER_ID, WORKFLOW_ID, make_edge, make_node, make_workflow


@pytest.fixture
def calls():
    """Node ids in the order handlers were invoked"""
    return []


@pytest.fixture
def registry(calls):
    """Real branch and error-trigger handlers plus small stub types"""
    reg = NodeRegistry()
    reg.register(NodeType.IF_ELSE)(if_else)
    reg.register(NodeType.SWITCH)(switch)
    reg.register(NodeType.ERROR_TRIGGER)(error_trigger)

    @reg.register("const")
    async def const(node, data, ctx):
        calls.append(node.id)
        return node.config.get("value")

    @reg.register("echo")
    async def echo(node, data, ctx):
        calls.append(node.id)
        return data

    @reg.register("fail")
    async def fail(node, data, ctx):
        calls.append(node.id)
        raise NodeExecutionError(node.config.get("message", "boom"), node_name=node.name)

    return reg


@pytest.fixture
def executor(store, registry, config, http_client):
    return WorkflowExecutor(store, registry=registry, config=config, http_client=http_client, api_keys={})


def _log(response, node_id):
    return next(log for log in response.logs if log.node_id == node_id)


class TestForwardExecution:
    @pytest.mark.asyncio
    async def test_chain_passes_outputs_downstream(self, executor, calls):
        """A → B → C runs in order and each input is the upstream output"""
        workflow = make_workflow(
            [make_node("A", "const", value={"n": 1}), make_node("B", "echo"), make_node("C", "echo")],
            [make_edge("A", "B"), make_edge("B", "C")],
        )

        response = await executor.execute(workflow, {"seed": True})

        assert response.status == ExecutionStatus.SUCCESS
        assert calls == ["A", "B", "C"]
        assert [log.node_id for log in response.logs] == ["A", "B", "C"]
        assert _log(response, "B").input == _log(response, "A").output == {"n": 1}
        assert _log(response, "C").input == _log(response, "B").output
        assert response.output == _log(response, "C").output

    @pytest.mark.asyncio
    async def test_root_nodes_receive_run_input(self, executor):
        """Nodes without incoming edges read the triggering payload"""
        workflow = make_workflow([make_node("A", "echo")])

        response = await executor.execute(workflow, {"message": "hi"})

        assert _log(response, "A").input == {"message": "hi"}
        assert response.output == {"message": "hi", "_user_id": USER_ID, "_workflow_id": WORKFLOW_ID}

    @pytest.mark.asyncio
    async def test_several_sources_are_keyed_by_node_id(self, executor):
        """Multiple valid edges assemble a map of source outputs"""
        workflow = make_workflow(
            [make_node("A", "const", value=1), make_node("B", "const", value=[2]), make_node("J", "echo")],
            [make_edge("A", "J"), make_edge("B", "J")],
        )

        response = await executor.execute(workflow, {})

        assert _log(response, "J").input == {"A": 1, "B": [2]}

    @pytest.mark.asyncio
    async def test_execution_is_persisted(self, executor, store):
        """The stored record ends with the returned logs and output"""
        workflow = make_workflow([make_node("A", "const", value="done")])

        response = await executor.execute(workflow, {"x": 1})
        record = await store.get(response.execution_id)

        assert record.status == ExecutionStatus.SUCCESS
        assert record.workflow_id == WORKFLOW_ID
        assert record.input == {"x": 1}
        assert record.output == "done"
        assert [log.node_id for log in record.logs] == ["A"]
        assert record.finished_at is not None
        assert record.duration_ms == response.duration_ms

    @pytest.mark.asyncio
    async def test_none_input_defaults_to_empty_object(self, executor):
        workflow = make_workflow([make_node("A", "echo")])

        response = await executor.execute(workflow, None)

        assert _log(response, "A").input == {}


class TestBranching:
    @pytest.mark.asyncio
    async def test_if_else_runs_true_branch_and_skips_false(self, executor, calls):
        """The false child is skipped, never dispatched and has no output"""
        workflow = make_workflow(
            [
                make_node("A", "const", value={"value": 10}),
                make_node("IF", "if_else", condition="{{input.value}} > 5"),
                make_node("T", "echo"),
                make_node("F", "echo"),
            ],
            [make_edge("A", "IF"), make_edge("IF", "T", "true"), make_edge("IF", "F", "false")],
        )

        response = await executor.execute(workflow, {})

        assert response.status == ExecutionStatus.SUCCESS
        assert _log(response, "IF").output["condition"] is True
        assert _log(response, "T").status == LogStatus.SUCCESS
        assert _log(response, "T").input["value"] == 10

        skipped = _log(response, "F")
        assert skipped.status == LogStatus.SKIPPED
        assert skipped.input is None and skipped.output is None
        assert skipped.finished_at is not None
        assert "F" not in calls

    @pytest.mark.asyncio
    async def test_false_branch_only_node_is_skipped(self, executor, calls):
        """A node fed only by a dead branch does not run"""
        workflow = make_workflow(
            [
                make_node("IF", "if_else", condition="{{input.value}} > 5"),
                make_node("F", "echo"),
                make_node("after", "echo"),
            ],
            [make_edge("IF", "F", "false"), make_edge("F", "after")],
        )

        response = await executor.execute(workflow, {"value": 10})

        assert _log(response, "F").status == LogStatus.SKIPPED
        assert calls == ["after"]
        # The skipped node left nothing behind for its successor
        assert _log(response, "after").input is None

    @pytest.mark.asyncio
    async def test_if_else_envelope_is_unwrapped_for_single_child(self, executor):
        """The child sees the value the branch routed, not the envelope"""
        workflow = make_workflow(
            [make_node("IF", "if_else", condition="{{input.ok}} == true"), make_node("T", "echo")],
            [make_edge("IF", "T", "true")],
        )

        response = await executor.execute(workflow, {"ok": True})

        assert "condition" not in _log(response, "T").input
        assert _log(response, "T").input["ok"] is True

    @pytest.mark.asyncio
    async def test_broken_condition_routes_false(self, executor):
        """A malformed condition takes the false branch instead of failing the run"""
        workflow = make_workflow(
            [make_node("IF", "if_else", condition="{{input.value}} >>> 5"), make_node("T", "echo"), make_node("F", "echo")],
            [make_edge("IF", "T", "true"), make_edge("IF", "F", "false")],
        )

        response = await executor.execute(workflow, {"value": 10})

        assert response.status == ExecutionStatus.SUCCESS
        assert _log(response, "T").status == LogStatus.SKIPPED
        assert _log(response, "F").status == LogStatus.SUCCESS

    @pytest.mark.asyncio
    async def test_switch_routes_matched_case(self, executor):
        """Only the edge tagged with the matched case is followed"""
        workflow = make_workflow(
            [
                make_node("A", "const", value={"status": "a"}),
                make_node("SW", "switch", expression="{{input.status}}", cases='[{"value": "a"}, {"value": "b"}]'),
                make_node("X", "echo"),
                make_node("Y", "echo"),
            ],
            [make_edge("A", "SW"), make_edge("SW", "X", "a"), make_edge("SW", "Y", "b")],
        )

        response = await executor.execute(workflow, {})

        assert _log(response, "SW").output["matchedCase"] == "a"
        assert _log(response, "X").status == LogStatus.SUCCESS
        assert _log(response, "Y").status == LogStatus.SKIPPED


class TestFailures:
    @pytest.mark.asyncio
    async def test_error_trigger_recovers_failed_run(self, executor, calls):
        """B fails, E runs, the run is failed and E's output is final"""
        workflow = make_workflow(
            [
                make_node("E", "error_trigger"),
                make_node("A", "const", value={"order": 7}),
                make_node("B", "fail", label="Charge card", message="card declined"),
                make_node("C", "echo"),
            ],
            [make_edge("A", "B"), make_edge("B", "C")],
        )

        response = await executor.execute(workflow, {})

        assert response.status == ExecutionStatus.FAILED
        assert response.error == "card declined"
        assert [log.node_id for log in response.logs] == ["A", "B", "E"]
        assert _log(response, "B").status == LogStatus.FAILED
        assert _log(response, "B").error == "card declined"
        assert _log(response, "E").status == LogStatus.SUCCESS
        assert response.output == _log(response, "E").output
        assert "C" not in calls

        error_input = _log(response, "E").input
        assert error_input["failed_node"] == "Charge card"
        assert error_input["error_message"] == "card declined"
        assert "NodeExecutionError" in error_input["stack_trace"]
        assert error_input["order"] == 7
        assert error_input["_user_id"] == USER_ID
        assert error_input["_workflow_id"] == WORKFLOW_ID

    @pytest.mark.asyncio
    async def test_failure_without_error_trigger(self, executor, store, calls):
        """Without recovery the run stops at the failed node"""
        workflow = make_workflow(
            [make_node("A", "const", value={"k": 1}), make_node("B", "fail"), make_node("C", "echo")],
            [make_edge("A", "B"), make_edge("B", "C")],
        )

        response = await executor.execute(workflow, {})
        record = await store.get(response.execution_id)

        assert response.status == ExecutionStatus.FAILED
        assert response.output == {"k": 1}
        assert calls == ["A", "B"]
        assert record.status == ExecutionStatus.FAILED
        assert record.error == "boom"

    @pytest.mark.asyncio
    async def test_failing_error_trigger_does_not_escalate(self, store, config, http_client):
        """An error trigger that fails is logged and the run still finalizes"""
        reg = NodeRegistry()

        @reg.register("fail")
        async def fail(node, data, ctx):
            raise NodeExecutionError("primary failure")

        @reg.register(NodeType.ERROR_TRIGGER)
        async def broken_trigger(node, data, ctx):
            raise RuntimeError("recovery failure")

        executor = WorkflowExecutor(store, registry=reg, config=config, http_client=http_client, api_keys={})
        workflow = make_workflow([make_node("B", "fail"), make_node("E", "error_trigger")])

        response = await executor.execute(workflow, {"x": 1})

        assert response.status == ExecutionStatus.FAILED
        assert response.error == "primary failure"
        assert _log(response, "E").status == LogStatus.FAILED
        assert _log(response, "E").error == "recovery failure"
        assert response.output == {"x": 1}

    @pytest.mark.asyncio
    async def test_unknown_node_type_fails_node(self, executor):
        workflow = make_workflow([make_node("M", "mystery")])

        response = await executor.execute(workflow, {})

        assert response.status == ExecutionStatus.FAILED
        assert response.error == "Unknown node type: mystery"

    @pytest.mark.asyncio
    async def test_unexpected_handler_exception_is_contained(self, store, config, http_client):
        """Any exception from a handler becomes a failed log entry"""
        reg = NodeRegistry()

        @reg.register("crash")
        async def crash(node, data, ctx):
            raise KeyError("missing")

        executor = WorkflowExecutor(store, registry=reg, config=config, http_client=http_client, api_keys={})

        response = await executor.execute(make_workflow([make_node("X", "crash")]), {})

        assert response.status == ExecutionStatus.FAILED
        assert "missing" in response.error


class TestFinalOutput:
    @pytest.mark.asyncio
    async def test_null_last_output_falls_back_to_previous(self, executor):
        """The run output is never null"""
        workflow = make_workflow(
            [make_node("A", "const", value={"k": 1}), make_node("B", "const")],
            [make_edge("A", "B")],
        )

        response = await executor.execute(workflow, {"x": 1})

        assert _log(response, "B").output is None
        assert response.output == {"k": 1}

    @pytest.mark.asyncio
    async def test_all_null_outputs_fall_back_to_input(self, executor):
        workflow = make_workflow([make_node("A", "const")])

        response = await executor.execute(workflow, {"x": 1})

        assert response.output == {"x": 1}

    @pytest.mark.asyncio
    async def test_trigger_without_result_emits_its_input(self, store, config, http_client):
        """Triggers never emit an absent output"""
        reg = NodeRegistry()

        @reg.register(NodeType.MANUAL_TRIGGER)
        async def silent(node, data, ctx):
            return None

        executor = WorkflowExecutor(store, registry=reg, config=config, http_client=http_client, api_keys={})

        response = await executor.execute(make_workflow([make_node("T", "manual_trigger")]), {"a": 1})

        assert _log(response, "T").output == {"a": 1}

    @pytest.mark.asyncio
    async def test_empty_graph(self, executor, store):
        """No executable nodes: success, input echoed, zero duration"""
        response = await executor.execute(make_workflow([]), {"a": 1})
        record = await store.get(response.execution_id)

        assert response.status == ExecutionStatus.SUCCESS
        assert response.output == {"a": 1}
        assert response.logs == []
        assert response.duration_ms == 0
        assert record.status == ExecutionStatus.SUCCESS


class TestExecutionRecord:
    @pytest.mark.asyncio
    async def test_cycle_is_rejected_before_running(self, executor, store, calls):
        workflow = make_workflow(
            [make_node("A", "echo"), make_node("B", "echo")],
            [make_edge("A", "B"), make_edge("B", "A")],
        )

        with pytest.raises(GraphCycleError):
            await executor.execute(workflow, {})

        assert calls == []
        assert await store.list_recent(WORKFLOW_ID) == []

    @pytest.mark.asyncio
    async def test_attaches_to_pre_allocated_execution(self, executor, store):
        """A supplied execution id is reused instead of creating a record"""
        await store.create(Execution(
            id="exec-pre",
            workflow_id=WORKFLOW_ID,
            status=ExecutionStatus.PENDING,
            trigger="webhook",
            started_at=isoformat(utc_now()),
            input={"message": "hi"},
        ))

        response = await executor.execute(
            make_workflow([make_node("A", "echo")]), {"message": "hi"}, execution_id="exec-pre"
        )
        record = await store.get("exec-pre")

        assert response.execution_id == "exec-pre"
        assert record.status == ExecutionStatus.SUCCESS
        assert record.trigger == "webhook"
        assert len(await store.list_recent(WORKFLOW_ID)) == 1

    @pytest.mark.asyncio
    async def test_unknown_execution_id(self, executor):
        with pytest.raises(NotFoundError):
            await executor.execute(make_workflow([make_node("A", "echo")]), {}, execution_id="nope")

    @pytest.mark.asyncio
    async def test_progress_is_persisted_after_every_node(self, executor, store):
        """One incremental update per executed or skipped node"""
        store.update_progress = AsyncMock(wraps=store.update_progress)
        workflow = make_workflow(
            [make_node("A", "const", value=1), make_node("B", "echo"), make_node("C", "echo")],
            [make_edge("A", "B"), make_edge("B", "C")],
        )

        await executor.execute(workflow, {})

        assert store.update_progress.await_count == 3
        last_logs = store.update_progress.await_args_list[-1].args[1]
        assert [log.node_id for log in last_logs] == ["A", "B", "C"]
        assert store.update_progress.await_args_list[0].args[2] == ExecutionStatus.RUNNING

    @pytest.mark.asyncio
    async def test_progress_persistence_failure_does_not_abort(self, executor, store):
        store.update_progress = AsyncMock(side_effect=OSError("disk full"))

        response = await executor.execute(make_workflow([make_node("A", "const", value=1)]), {})

        assert response.status == ExecutionStatus.SUCCESS
        assert response.output == 1

    @pytest.mark.asyncio
    async def test_finalize_crash_reports_failed_run(self, executor, store):
        """A crash outside node dispatch still yields a failed response"""
        store.finalize = AsyncMock(side_effect=[RuntimeError("db down"), None])

        response = await executor.execute(make_workflow([make_node("A", "const", value=1)]), {})

        assert response.status == ExecutionStatus.FAILED
        assert response.error == "db down"
        assert [log.node_id for log in response.logs] == ["A"]
        assert store.finalize.await_count == 2
        assert store.finalize.await_args_list[-1].args[1] == ExecutionStatus.FAILED

    @pytest.mark.asyncio
    async def test_crash_before_any_node_adds_system_log(self, executor):
        executor._api_keys = Mock(side_effect=RuntimeError("secrets unavailable"))

        response = await executor.execute(make_workflow([make_node("A", "echo")]), {})

        assert response.status == ExecutionStatus.FAILED
        assert len(response.logs) == 1
        assert response.logs[0].node_id == "system"
        assert response.logs[0].node_name == "Workflow Execution"
        assert response.logs[0].error == "secrets unavailable"


class TestConversationMemory:
    @pytest.fixture
    def seen_history(self):
        return []

    @pytest.fixture
    def ai_executor(self, store, config, http_client, seen_history):
        reg = NodeRegistry()

        @reg.register(NodeType.OPENAI_GPT)
        async def fake_gpt(node, data, ctx):
            seen_history.append(list(ctx.conversation_history))
            return "reply"

        return WorkflowExecutor(store, registry=reg, config=config, http_client=http_client, api_keys={})

    async def _seed(self, store, execution_id, message, output, session_id="s1"):
        await store.create(Execution(
            id=execution_id,
            workflow_id=WORKFLOW_ID,
            status=ExecutionStatus.SUCCESS,
            trigger="webhook",
            started_at=isoformat(utc_now()),
            input={"message": message, "session_id": session_id},
            output=output,
        ))

    @pytest.mark.asyncio
    async def test_prior_turns_are_replayed(self, ai_executor, store, seen_history):
        """AI nodes see earlier turns of the same session, oldest first"""
        await self._seed(store, "exec-1", "hi", "hello")
        await self._seed(store, "exec-2", "how are you", {"text": "fine"})
        await self._seed(store, "exec-3", "other session", "x", session_id="s2")

        await ai_executor.execute(
            make_workflow([make_node("AI", "openai_gpt")]), {"message": "again", "session_id": "s1"}
        )

        assert seen_history == [[
            {"role": "user", "content": "hi"},
            {"role": "assistant", "content": "hello"},
            {"role": "user", "content": "how are you"},
            {"role": "assistant", "content": "fine"},
        ]]

    @pytest.mark.asyncio
    async def test_memory_limits_turns(self, ai_executor, store, seen_history):
        await self._seed(store, "exec-1", "first", "a")
        await self._seed(store, "exec-2", "second", "b")

        await ai_executor.execute(
            make_workflow([make_node("AI", "openai_gpt", memory=1)]), {"message": "third", "session_id": "s1"}
        )

        assert seen_history == [[
            {"role": "user", "content": "second"},
            {"role": "assistant", "content": "b"},
        ]]

    @pytest.mark.asyncio
    async def test_no_session_no_history(self, ai_executor, store, seen_history):
        await self._seed(store, "exec-1", "hi", "hello")

        await ai_executor.execute(make_workflow([make_node("AI", "openai_gpt")]), {"message": "again"})

        assert seen_history == [[]]

    @pytest.mark.asyncio
    async def test_history_failure_is_tolerated(self, ai_executor, store, seen_history):
        store.list_recent = AsyncMock(side_effect=OSError("unreadable"))

        response = await ai_executor.execute(
            make_workflow([make_node("AI", "openai_gpt")]), {"message": "again", "session_id": "s1"}
        )

        assert response.status == ExecutionStatus.SUCCESS
        assert seen_history == [[]]


class TestEnrichInput:
    def test_objects_get_identity(self):
        assert enrich_input({"a": 1}, "u", "w") == {"a": 1, "_user_id": "u", "_workflow_id": "w"}

    def test_arrays_pass_through(self):
        items = [1, 2]
        assert enrich_input(items, "u", "w") is items

    def test_primitives_are_wrapped(self):
        assert enrich_input("hi", "u", "w") == {"value": "hi", "_user_id": "u", "_workflow_id": "w"}
        assert enrich_input(None, "u", "w") == {"value": None, "_user_id": "u", "_workflow_id": "w"}
