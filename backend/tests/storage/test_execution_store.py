# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Unit tests for execution persistence and conversation memory
"""

import json
from unittest.mock import AsyncMock

import pytest

from flowrunner.core.errors import NotFoundError
from flowrunner.models import Execution, ExecutionLog, ExecutionStatus, LogStatus
from flowrunner.storage.execution_store import (
    ExecutionStore,
    FileExecutionStore,
    InMemoryExecutionStore,
    conversation_history,
    new_execution_id,
)


def make_execution(execution_id, started_at="2025-01-01T12:00:00Z", **fields):
    fields.setdefault("workflow_id", "wf-1")
    return Execution(id=execution_id, started_at=started_at, **fields)


def make_log(node_id="A"):
    return ExecutionLog(
        node_id=node_id,
        node_name=node_id,
        status=LogStatus.SUCCESS,
        started_at="2025-01-01T12:00:00Z",
        output={"ok": True},
    )


def test_new_execution_id_format():
    execution_id = new_execution_id()

    assert execution_id.startswith("exec_")
    assert len(execution_id.split("_")) == 4


def test_partial_store_cannot_be_built():
    """A store missing part of the interface fails at construction"""
    class WriteOnlyStore(ExecutionStore):
        async def create(self, execution):
            return execution

        async def save(self, execution):
            pass

    with pytest.raises(TypeError):
        WriteOnlyStore()


class TestFileExecutionStore:
    @pytest.mark.asyncio
    async def test_record_lives_in_date_directory(self, tmp_path):
        store = FileExecutionStore(str(tmp_path))

        await store.create(make_execution("exec_20250101_120000_ab12cd34", input={"x": 1}))

        path = tmp_path / "2025-01-01" / "exec_20250101_120000_ab12cd34.json"
        assert path.exists()
        stored = json.loads(path.read_text())
        assert stored["workflowId"] == "wf-1"
        assert stored["input"] == {"x": 1}

    @pytest.mark.asyncio
    async def test_fresh_store_finds_existing_record(self, tmp_path):
        await FileExecutionStore(str(tmp_path)).create(make_execution("exec_20250101_120000_ab12cd34"))

        found = await FileExecutionStore(str(tmp_path)).get("exec_20250101_120000_ab12cd34")

        assert found is not None
        assert found.workflow_id == "wf-1"

    @pytest.mark.asyncio
    async def test_foreign_ids_are_searched(self, tmp_path):
        await FileExecutionStore(str(tmp_path)).create(make_execution("external-42"))

        found = await FileExecutionStore(str(tmp_path)).get("external-42")

        assert found.id == "external-42"

    @pytest.mark.asyncio
    async def test_progress_and_finalize(self, tmp_path):
        store = FileExecutionStore(str(tmp_path))
        await store.create(make_execution("exec_1"))

        await store.update_progress("exec_1", [make_log("A")], ExecutionStatus.RUNNING)
        running = await store.get("exec_1")
        final = await store.finalize("exec_1", ExecutionStatus.SUCCESS, {"done": True}, [make_log("A"), make_log("B")], 42)

        assert [log.node_id for log in running.logs] == ["A"]
        assert final.status == ExecutionStatus.SUCCESS
        reloaded = await FileExecutionStore(str(tmp_path)).get("exec_1")
        assert reloaded.output == {"done": True}
        assert reloaded.duration_ms == 42
        assert reloaded.finished_at is not None
        assert len(reloaded.logs) == 2

    @pytest.mark.asyncio
    async def test_list_recent_filters_and_orders(self, tmp_path):
        store = FileExecutionStore(str(tmp_path))
        await store.create(make_execution("exec_a", "2025-01-01T10:00:00Z", trigger="webhook"))
        await store.create(make_execution("exec_b", "2025-01-02T10:00:00Z", trigger="webhook"))
        await store.create(make_execution("exec_c", "2025-01-03T10:00:00Z", trigger="manual"))
        await store.create(make_execution("exec_d", "2025-01-04T10:00:00Z", workflow_id="wf-2", trigger="webhook"))

        recent = await store.list_recent("wf-1", trigger="webhook")
        everything = await store.list_recent("wf-1", limit=2)

        assert [e.id for e in recent] == ["exec_b", "exec_a"]
        assert [e.id for e in everything] == ["exec_c", "exec_b"]

    @pytest.mark.asyncio
    async def test_list_recent_skips_corrupt_files(self, tmp_path):
        store = FileExecutionStore(str(tmp_path))
        await store.create(make_execution("exec_a"))
        (tmp_path / "2025-01-01" / "broken.json").write_text("{not json")

        assert [e.id for e in await store.list_recent("wf-1")] == ["exec_a"]

    @pytest.mark.asyncio
    async def test_unknown_id(self, tmp_path):
        store = FileExecutionStore(str(tmp_path))

        assert await store.get("exec_20250101_000000_missing") is None
        with pytest.raises(NotFoundError):
            await store.require("exec_20250101_000000_missing")

    @pytest.mark.asyncio
    async def test_progress_does_not_reread_the_record(self, tmp_path):
        store = FileExecutionStore(str(tmp_path))
        await store.create(make_execution("exec_1"))
        store.get = AsyncMock(wraps=store.get)

        await store.update_progress("exec_1", [make_log("A")], ExecutionStatus.RUNNING)
        await store.update_progress("exec_1", [make_log("A"), make_log("B")], ExecutionStatus.RUNNING)

        assert store.get.await_count == 0
        stored = json.loads((tmp_path / "2025-01-01" / "exec_1.json").read_text())
        assert [log["nodeId"] for log in stored["logs"]] == ["A", "B"]

    @pytest.mark.asyncio
    async def test_progress_on_record_written_elsewhere(self, tmp_path):
        await FileExecutionStore(str(tmp_path)).create(make_execution("exec_1", input={"x": 1}))
        store = FileExecutionStore(str(tmp_path))

        await store.update_progress("exec_1", [make_log("A")], ExecutionStatus.RUNNING)

        reloaded = await FileExecutionStore(str(tmp_path)).get("exec_1")
        assert reloaded.input == {"x": 1}
        assert [log.node_id for log in reloaded.logs] == ["A"]

    @pytest.mark.asyncio
    async def test_finalize_releases_bookkeeping(self, tmp_path):
        store = FileExecutionStore(str(tmp_path))
        await store.create(make_execution("exec_1"))
        await store.update_progress("exec_1", [make_log("A")], ExecutionStatus.RUNNING)

        await store.finalize("exec_1", ExecutionStatus.SUCCESS, None, [make_log("A")], 5)

        assert store._locks == {}
        assert store._paths == {}
        assert store._open == {}
        assert (await store.get("exec_1")).status == ExecutionStatus.SUCCESS

    @pytest.mark.asyncio
    async def test_list_recent_stops_at_the_newest_days(self, tmp_path):
        store = FileExecutionStore(str(tmp_path))
        for day in ("01", "02", "03"):
            await store.create(make_execution(f"exec_{day}", f"2025-01-{day}T10:00:00Z"))
        store._read = AsyncMock(wraps=store._read)

        recent = await store.list_recent("wf-1", limit=1)

        assert [e.id for e in recent] == ["exec_03"]
        assert store._read.await_count == 1


class TestInMemoryExecutionStore:
    @pytest.mark.asyncio
    async def test_records_are_copied(self, store):
        execution = make_execution("exec_1", input={"x": 1})
        await store.create(execution)

        execution.input["x"] = 2
        loaded = await store.get("exec_1")
        loaded.status = ExecutionStatus.FAILED

        assert (await store.get("exec_1")).input == {"x": 1}
        assert (await store.get("exec_1")).status == ExecutionStatus.RUNNING

    @pytest.mark.asyncio
    async def test_mark_running_keeps_start_time(self, store):
        await store.create(make_execution("exec_1", status=ExecutionStatus.PENDING))

        execution = await store.mark_running("exec_1")

        assert execution.status == ExecutionStatus.RUNNING
        assert execution.started_at == "2025-01-01T12:00:00Z"

    @pytest.mark.asyncio
    async def test_mark_running_unknown(self, store):
        with pytest.raises(NotFoundError, match="Execution not found: nope"):
            await store.mark_running("nope")

    @pytest.mark.asyncio
    async def test_progress_updates_in_place(self, store):
        await store.create(make_execution("exec_1", input={"x": 1}))
        store.get = AsyncMock(wraps=store.get)

        await store.update_progress("exec_1", [make_log("A")], ExecutionStatus.RUNNING)

        assert store.get.await_count == 0
        loaded = await store.get("exec_1")
        assert [log.node_id for log in loaded.logs] == ["A"]
        assert loaded.input == {"x": 1}

    @pytest.mark.asyncio
    async def test_progress_unknown(self, store):
        with pytest.raises(NotFoundError):
            await store.update_progress("nope", [], ExecutionStatus.RUNNING)


class TestConversationHistory:
    async def seed(self, store, execution_id, session, message, output, trigger="webhook"):
        await store.create(make_execution(
            execution_id,
            trigger=trigger,
            input={"message": message, "session_id": session},
            output=output,
        ))

    @pytest.mark.asyncio
    async def test_oldest_first_for_session(self):
        store = InMemoryExecutionStore()
        await self.seed(store, "e1", "s1", "hi", "hello")
        await self.seed(store, "e2", "other", "elsewhere", "x")
        await self.seed(store, "e3", "s1", "how are you", {"content": "fine"})
        await self.seed(store, "e4", "s1", "manual run", "ignored", trigger="manual")

        history = await conversation_history(store, "wf-1", "s1", memory_turns=10)

        assert history == [
            {"role": "user", "content": "hi"},
            {"role": "assistant", "content": "hello"},
            {"role": "user", "content": "how are you"},
            {"role": "assistant", "content": "fine"},
        ]

    @pytest.mark.asyncio
    async def test_keeps_most_recent_turns(self):
        store = InMemoryExecutionStore()
        for i in range(3):
            await self.seed(store, f"e{i}", "s1", f"m{i}", f"r{i}")

        history = await conversation_history(store, "wf-1", "s1", memory_turns=2)

        assert [turn["content"] for turn in history] == ["m1", "r1", "m2", "r2"]

    @pytest.mark.asyncio
    async def test_excludes_current_run(self):
        store = InMemoryExecutionStore()
        await self.seed(store, "e1", "s1", "earlier", "reply")
        await self.seed(store, "current", "s1", "now", None)

        history = await conversation_history(store, "wf-1", "s1", memory_turns=5, exclude_execution_id="current")

        assert [turn["content"] for turn in history] == ["earlier", "reply"]

    @pytest.mark.asyncio
    async def test_zero_turns_disables_memory(self):
        store = InMemoryExecutionStore()
        await self.seed(store, "e1", "s1", "hi", "hello")

        assert await conversation_history(store, "wf-1", "s1", memory_turns=0) == []
