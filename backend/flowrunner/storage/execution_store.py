# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Execution Store - persistent record of every run

The controller writes incrementally: one create (or mark_running for a
pre-allocated record), one update_progress per node, one finalize. Records
are plain JSON so history can be inspected with ``cat`` and ``jq``.

Storage structure (FileExecutionStore):
    executions/
    └── {YYYY-MM-DD}/
        ├── exec_20250101_120000_ab12cd34.json
        └── exec_20250101_120501_ef56ab78.json
"""

import asyncio
import json
import re
import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

import aiofiles
import aiofiles.os

from flowrunner.core.errors import NotFoundError
from flowrunner.core.logging import get_service_logger
from flowrunner.models import (
    Execution,
    ExecutionLog,
    ExecutionStatus,
    isoformat,
    utc_now,
)

logger = get_service_logger("execution-store")

_DATE_DIR = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def new_execution_id() -> str:
    """Generate an execution id of the form exec_YYYYMMDD_HHMMSS_hash."""
    return f"exec_{datetime.now().strftime('%Y%m%d_%H%M%S')}_{uuid.uuid4().hex[:8]}"


class ExecutionStore(ABC):
    """
    Interface of the persistence collaborator.

    Implementations must let ``update_progress`` replace the logs array and
    status without the caller re-reading the record.
    """

    @abstractmethod
    async def create(self, execution: Execution) -> Execution:
        pass

    @abstractmethod
    async def get(self, execution_id: str) -> Optional[Execution]:
        pass

    @abstractmethod
    async def save(self, execution: Execution) -> None:
        pass

    @abstractmethod
    async def update_progress(
        self,
        execution_id: str,
        logs: List[ExecutionLog],
        status: ExecutionStatus
    ) -> None:
        """Replace the logs array and status of a running execution."""

    @abstractmethod
    async def list_recent(
        self,
        workflow_id: str,
        trigger: Optional[str] = None,
        limit: int = 20
    ) -> List[Execution]:
        """Executions of a workflow, newest first."""

    async def require(self, execution_id: str) -> Execution:
        execution = await self.get(execution_id)
        if execution is None:
            raise NotFoundError("Execution", execution_id)
        return execution

    async def mark_running(self, execution_id: str) -> Execution:
        """Attach a run to a pre-allocated record and move it to running."""
        execution = await self.require(execution_id)
        execution.status = ExecutionStatus.RUNNING
        if not execution.started_at:
            execution.started_at = isoformat(utc_now())
        await self.save(execution)
        return execution

    async def finalize(
        self,
        execution_id: str,
        status: ExecutionStatus,
        output: Any,
        logs: List[ExecutionLog],
        duration_ms: int,
        error: Optional[str] = None,
        finished_at: Optional[str] = None
    ) -> Execution:
        execution = await self.require(execution_id)
        execution.status = status
        execution.output = output
        execution.logs = list(logs)
        execution.duration_ms = duration_ms
        execution.error = error
        execution.finished_at = finished_at or isoformat(utc_now())
        await self.save(execution)
        return execution


class InMemoryExecutionStore(ExecutionStore):
    """Dict-backed store for tests and embedding."""

    def __init__(self):
        self._executions: Dict[str, Execution] = {}
        self._order: List[str] = []

    async def create(self, execution: Execution) -> Execution:
        self._executions[execution.id] = execution.model_copy(deep=True)
        self._order.append(execution.id)
        return execution

    async def get(self, execution_id: str) -> Optional[Execution]:
        execution = self._executions.get(execution_id)
        return execution.model_copy(deep=True) if execution else None

    async def save(self, execution: Execution) -> None:
        if execution.id not in self._executions:
            self._order.append(execution.id)
        self._executions[execution.id] = execution.model_copy(deep=True)

    async def update_progress(
        self,
        execution_id: str,
        logs: List[ExecutionLog],
        status: ExecutionStatus
    ) -> None:
        execution = self._executions.get(execution_id)
        if execution is None:
            raise NotFoundError("Execution", execution_id)
        execution.logs = [log.model_copy(deep=True) for log in logs]
        execution.status = status

    async def list_recent(
        self,
        workflow_id: str,
        trigger: Optional[str] = None,
        limit: int = 20
    ) -> List[Execution]:
        matches = []
        for execution_id in reversed(self._order):
            execution = self._executions[execution_id]
            if execution.workflow_id != workflow_id:
                continue
            if trigger and execution.trigger != trigger:
                continue
            matches.append(execution.model_copy(deep=True))
            if len(matches) >= limit:
                break
        return matches


class FileExecutionStore(ExecutionStore):
    """
    JSON file per execution, grouped in date directories.

    Writes go through aiofiles under a per-file asyncio.Lock. The last
    written record of each open execution is kept so progress updates only
    write; the entry is dropped when the execution is finalized.
    """

    def __init__(self, base_dir: str):
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)

        self._locks: Dict[str, asyncio.Lock] = {}
        self._paths: Dict[str, Path] = {}
        self._open: Dict[str, Execution] = {}

    def _get_lock(self, file_path: str) -> asyncio.Lock:
        """Get or create lock for a specific file"""
        if file_path not in self._locks:
            self._locks[file_path] = asyncio.Lock()
        return self._locks[file_path]

    def _path_for(self, execution: Execution) -> Path:
        if execution.id in self._paths:
            return self._paths[execution.id]
        try:
            date = datetime.fromisoformat(execution.started_at.replace("Z", "+00:00")).strftime("%Y-%m-%d")
        except ValueError:
            date = datetime.now().strftime("%Y-%m-%d")
        path = self.base_dir / date / f"{execution.id}.json"
        self._paths[execution.id] = path
        return path

    def _find(self, execution_id: str) -> Optional[Path]:
        if execution_id in self._paths:
            return self._paths[execution_id]

        # Ids we generated carry their date
        try:
            date_str = execution_id.split("_")[1]
            date = datetime.strptime(date_str, "%Y%m%d").strftime("%Y-%m-%d")
            candidate = self.base_dir / date / f"{execution_id}.json"
            if candidate.exists():
                return candidate
        except (IndexError, ValueError):
            pass

        for date_dir in sorted(self.base_dir.glob("*"), reverse=True):
            if not date_dir.is_dir():
                continue
            candidate = date_dir / f"{execution_id}.json"
            if candidate.exists():
                return candidate
        return None

    async def _read(self, path: Path) -> Execution:
        # Only records still being written have a lock
        lock = self._locks.get(str(path))
        if lock is None:
            async with aiofiles.open(path, "r") as f:
                data = json.loads(await f.read())
        else:
            async with lock:
                async with aiofiles.open(path, "r") as f:
                    data = json.loads(await f.read())
        return Execution.model_validate(data)

    async def _write(self, execution: Execution) -> None:
        path = self._path_for(execution)
        await aiofiles.os.makedirs(path.parent, exist_ok=True)

        async with self._get_lock(str(path)):
            async with aiofiles.open(path, "w") as f:
                await f.write(json.dumps(execution.to_wire(), indent=2, default=str))

    async def save(self, execution: Execution) -> None:
        await self._write(execution)
        self._open[execution.id] = execution.model_copy(deep=True)

    async def create(self, execution: Execution) -> Execution:
        await self.save(execution)
        logger.debug("Execution created", extra={"execution_id": execution.id})
        return execution

    async def get(self, execution_id: str) -> Optional[Execution]:
        path = self._find(execution_id)
        if path is None or not path.exists():
            return None
        self._paths[execution_id] = path
        return await self._read(path)

    async def update_progress(
        self,
        execution_id: str,
        logs: List[ExecutionLog],
        status: ExecutionStatus
    ) -> None:
        execution = self._open.get(execution_id)
        if execution is None:
            execution = await self.require(execution_id)
            self._open[execution_id] = execution
        execution.logs = [log.model_copy(deep=True) for log in logs]
        execution.status = status
        await self._write(execution)

    async def finalize(
        self,
        execution_id: str,
        status: ExecutionStatus,
        output: Any,
        logs: List[ExecutionLog],
        duration_ms: int,
        error: Optional[str] = None,
        finished_at: Optional[str] = None
    ) -> Execution:
        execution = self._open.pop(execution_id, None)
        if execution is None:
            execution = await self.require(execution_id)
        execution.status = status
        execution.output = output
        execution.logs = list(logs)
        execution.duration_ms = duration_ms
        execution.error = error
        execution.finished_at = finished_at or isoformat(utc_now())
        await self._write(execution)

        path = self._paths.pop(execution_id, None)
        if path is not None:
            self._locks.pop(str(path), None)
        return execution

    async def _date_dirs(self) -> List[Path]:
        names = await aiofiles.os.listdir(self.base_dir)
        dirs = [self.base_dir / name for name in names if _DATE_DIR.match(name)]
        return sorted(dirs, reverse=True)

    async def list_recent(
        self,
        workflow_id: str,
        trigger: Optional[str] = None,
        limit: int = 20
    ) -> List[Execution]:
        matches: List[Execution] = []
        # Newest day first; stop once a whole day has filled the limit
        for date_dir in await self._date_dirs():
            day = []
            for name in await aiofiles.os.listdir(date_dir):
                if not name.endswith(".json"):
                    continue
                execution_file = date_dir / name
                try:
                    execution = await self._read(execution_file)
                except (OSError, ValueError) as e:
                    logger.warning(f"Failed to load execution {execution_file}: {e}")
                    continue

                if execution.workflow_id != workflow_id:
                    continue
                if trigger and execution.trigger != trigger:
                    continue
                day.append(execution)

            day.sort(key=lambda e: e.started_at or "", reverse=True)
            matches.extend(day)
            if len(matches) >= limit:
                break

        return matches[:limit]


# ============================================================================
# Conversation memory
# ============================================================================

def _reply_text(output: Any) -> str:
    if isinstance(output, str):
        return output
    if isinstance(output, dict):
        for key in ("text", "content", "message"):
            if isinstance(output.get(key), str) and output[key]:
                return output[key]
    return json.dumps(output, default=str)


async def conversation_history(
    store: ExecutionStore,
    workflow_id: str,
    session_id: str,
    memory_turns: int,
    exclude_execution_id: Optional[str] = None
) -> List[Dict[str, str]]:
    """
    Prior turns of a webhook conversation, oldest first.

    Looks at recent webhook-triggered executions of the workflow whose input
    carries the same session id and keeps at most ``memory_turns`` of them.
    The run asking for history is passed as ``exclude_execution_id``.
    """
    if memory_turns <= 0:
        return []

    recent = await store.list_recent(workflow_id, trigger="webhook", limit=memory_turns * 2)

    session_runs = []
    for execution in recent:
        if execution.id == exclude_execution_id:
            continue
        run_input = execution.input if isinstance(execution.input, dict) else {}
        run_session = run_input.get("session_id") or run_input.get("_session_id")
        if isinstance(run_session, str) and run_session == session_id:
            session_runs.append(execution)
    session_runs = session_runs[:memory_turns]

    history: List[Dict[str, str]] = []
    for execution in reversed(session_runs):
        run_input = execution.input if isinstance(execution.input, dict) else {}
        message = run_input.get("message")
        if isinstance(message, str) and message:
            history.append({"role": "user", "content": message})

        if execution.output:
            reply = _reply_text(execution.output)
            if reply:
                history.append({"role": "assistant", "content": reply})

    return history
