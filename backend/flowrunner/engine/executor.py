# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Workflow Executor

Sequential execution controller. Nodes run one at a time in topological
order; branch outcomes gate downstream edges, node failures divert to the
declared error-trigger nodes and every step is persisted incrementally.
"""

import traceback
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx

from flowrunner.core.config import Config, get_ai_gateway_api_key, get_config, get_resend_api_key
from flowrunner.core.errors import NodeExecutionError
from flowrunner.core.logging import get_engine_logger, log_event
from flowrunner.engine.context import ExecutionContext, SharedContext
from flowrunner.engine.graph import WorkflowGraph
from flowrunner.engine.router import route
from flowrunner.models import (
    Execution,
    ExecutionLog,
    ExecutionResponse,
    ExecutionStatus,
    LogStatus,
    Workflow,
    WorkflowEdge,
    WorkflowNode,
    isoformat,
    utc_now,
)
from flowrunner.node_types import AI_TYPES, BRANCH_TYPES, TRIGGER_TYPES, NodeType
from flowrunner.storage.execution_store import ExecutionStore, conversation_history, new_execution_id

logger = get_engine_logger()


def enrich_input(value: Any, user_id: str, workflow_id: str) -> Any:
    """Attach run identity to a node's input. Arrays pass through untouched."""
    if isinstance(value, list):
        return value
    if isinstance(value, dict):
        return {**value, "_user_id": user_id, "_workflow_id": workflow_id}
    return {"value": value, "_user_id": user_id, "_workflow_id": workflow_id}


def error_message(error: Exception) -> str:
    if isinstance(error, NodeExecutionError):
        return error.message
    return str(error) or error.__class__.__name__


def stack_trace(error: Exception) -> str:
    return "".join(traceback.format_exception(type(error), error, error.__traceback__))


def session_id_of(run_input: Any) -> Optional[str]:
    if not isinstance(run_input, dict):
        return None
    session_id = run_input.get("_session_id") or run_input.get("session_id")
    return session_id if isinstance(session_id, str) and session_id else None


class WorkflowExecutor:
    """
    Sequential workflow executor.

    One executor serves many runs; all per-run state lives in an
    ExecutionContext created by ``execute``.
    """

    def __init__(
        self,
        store: ExecutionStore,
        registry=None,
        config: Optional[Config] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        api_keys: Optional[Dict[str, Optional[str]]] = None
    ):
        if registry is None:
            # Importing the package registers every handler
            from flowrunner.nodes import registry
        self.store = store
        self.registry = registry
        self.config = config or get_config()
        self.http_client = http_client
        self.api_keys = api_keys

    def _api_keys(self) -> Dict[str, Optional[str]]:
        if self.api_keys is not None:
            return dict(self.api_keys)
        return {
            "RESEND_API_KEY": get_resend_api_key(),
            "AI_GATEWAY_API_KEY": get_ai_gateway_api_key(),
        }

    async def execute(
        self,
        workflow: Workflow,
        run_input: Any = None,
        execution_id: Optional[str] = None,
        trigger: str = "manual"
    ) -> ExecutionResponse:
        """
        Run a workflow to completion.

        Graph problems (duplicate ids, dangling edges, cycles) and an unknown
        ``execution_id`` raise before anything runs. Everything that goes
        wrong afterwards is reported inside the returned response.

        Raises:
            GraphValidationError: The graph is malformed or cyclic
            NotFoundError: ``execution_id`` does not name a stored execution
        """
        graph = WorkflowGraph.from_workflow(workflow)
        run_input = {} if run_input is None else run_input

        execution = await self._open_execution(workflow, run_input, execution_id, trigger)
        started_at = _parse_timestamp(execution.started_at)
        context = ExecutionContext(execution.id, workflow.id, workflow.user_id, run_input, started_at)

        log_event(
            logger, "Execution started",
            execution_id=context.execution_id,
            workflow_id=workflow.id,
            trigger=trigger,
            execution_order=[node.id for node in graph.execution_order],
        )

        if not graph.execution_order:
            return await self._finish_empty(context)

        try:
            if self.http_client is not None:
                await self._run(graph, context, self.http_client)
            else:
                async with httpx.AsyncClient(timeout=self.config.http_timeout_seconds) as client:
                    await self._run(graph, context, client)
            return await self._finalize(context)
        except Exception as e:
            return await self._crash(context, e)

    async def _open_execution(
        self,
        workflow: Workflow,
        run_input: Any,
        execution_id: Optional[str],
        trigger: str
    ) -> Execution:
        if execution_id:
            return await self.store.mark_running(execution_id)

        execution = Execution(
            id=new_execution_id(),
            workflow_id=workflow.id,
            user_id=workflow.user_id,
            status=ExecutionStatus.RUNNING,
            trigger=trigger,
            started_at=isoformat(utc_now()),
            input=run_input,
        )
        return await self.store.create(execution)

    async def _run(self, graph: WorkflowGraph, context: ExecutionContext, client: httpx.AsyncClient) -> None:
        api_keys = self._api_keys()

        for node in graph.execution_order:
            decision = route(node, graph, context.branches)
            log = context.start_log(node)

            if decision.skip:
                log.status = LogStatus.SKIPPED
                log.finished_at = isoformat(utc_now())
                context.logs.append(log)
                logger.info(
                    f"Skipping node {node.name}: no valid branch",
                    extra={"execution_id": context.execution_id, "node_id": node.id}
                )
                continue

            node_input = self._assemble_input(graph, context, decision.valid)
            log.input = node_input
            shared = SharedContext(
                workflow_id=context.workflow_id,
                user_id=context.user_id,
                execution_id=context.execution_id,
                config=self.config,
                http=client,
                trigger_input=context.run_input,
                conversation_history=await self._history(node, context),
                api_keys=api_keys,
            )

            logger.info(
                f"Executing node {node.name}",
                extra={"execution_id": context.execution_id, "node_id": node.id, "node_type": node.type}
            )

            try:
                output = await self.registry.execute(
                    node, enrich_input(node_input, context.user_id, context.workflow_id), shared
                )
                if output is None and node.type in TRIGGER_TYPES:
                    output = node_input or {}

                context.record_output(node, output)
                log.output = output
                log.status = LogStatus.SUCCESS
                log.finished_at = isoformat(utc_now())
                context.logs.append(log)

                if node.type in BRANCH_TYPES:
                    logger.debug(
                        f"Branch decided at {node.name}",
                        extra={
                            "execution_id": context.execution_id,
                            "node_id": node.id,
                            "if_else": context.branches.if_else.get(node.id),
                            "switch": context.branches.switch.get(node.id),
                        }
                    )
            except Exception as e:
                message = error_message(e)
                log.status = LogStatus.FAILED
                log.error = message
                log.finished_at = isoformat(utc_now())
                context.logs.append(log)
                context.mark_failed(message)

                logger.error(
                    f"Node {node.name} failed: {message}",
                    extra={"execution_id": context.execution_id, "node_id": node.id, "node_type": node.type}
                )
                await self._recover(graph, context, node, e, shared)

            status = ExecutionStatus.FAILED if context.failed else ExecutionStatus.RUNNING
            await self._persist_progress(context, status)

            if context.failed:
                break

    def _assemble_input(
        self,
        graph: WorkflowGraph,
        context: ExecutionContext,
        valid: List[WorkflowEdge]
    ) -> Any:
        """
        Input for a node from its live incoming edges.

        One edge passes the source output through (an if/else envelope is
        unwrapped to the value it routed), several edges are keyed by
        source id, none means the triggering input.
        """
        if not valid:
            return context.run_input

        if len(valid) == 1:
            edge = valid[0]
            output = context.node_outputs.get(edge.source)
            if (
                graph.source_type(edge) == NodeType.IF_ELSE.value
                and isinstance(output, dict)
                and "input" in output
            ):
                return output["input"]
            return output

        return {edge.source: context.node_outputs.get(edge.source) for edge in valid}

    async def _history(self, node: WorkflowNode, context: ExecutionContext) -> List[Dict[str, str]]:
        if node.type not in AI_TYPES:
            return []

        session_id = session_id_of(context.run_input)
        if not session_id:
            return []

        memory = node.config.get("memory")
        if isinstance(memory, bool) or not isinstance(memory, (int, float, str)) or memory == "":
            memory_turns = self.config.default_memory_turns
        else:
            try:
                memory_turns = int(float(memory))
            except ValueError:
                memory_turns = self.config.default_memory_turns

        try:
            history = await conversation_history(
                self.store, context.workflow_id, session_id, memory_turns,
                exclude_execution_id=context.execution_id,
            )
        except Exception as e:
            logger.warning(
                f"Failed to load conversation history for {node.name}: {e}",
                extra={"execution_id": context.execution_id, "node_id": node.id, "session_id": session_id}
            )
            return []

        logger.debug(
            f"Loaded {len(history)} history messages for {node.name}",
            extra={"execution_id": context.execution_id, "node_id": node.id, "session_id": session_id}
        )
        return history

    async def _recover(
        self,
        graph: WorkflowGraph,
        context: ExecutionContext,
        failed_node: WorkflowNode,
        error: Exception,
        shared: SharedContext
    ) -> None:
        """Run every error-trigger node against the failure; their failures stay local."""
        if not graph.error_triggers:
            return

        error_input = {
            "failed_node": failed_node.label or failed_node.id,
            "error_message": error_message(error),
            "stack_trace": stack_trace(error),
        }
        if isinstance(context.final_output, dict):
            error_input.update(context.final_output)
        error_input["_user_id"] = context.user_id
        error_input["_workflow_id"] = context.workflow_id

        for trigger_node in graph.error_triggers:
            log = context.start_log(trigger_node)
            log.input = error_input
            log_event(
                logger, "Dispatching error trigger", level="WARNING",
                execution_id=context.execution_id,
                node_id=trigger_node.id,
                failed_node=failed_node.id,
            )

            try:
                output = await self.registry.execute(trigger_node, error_input, shared)
                context.final_output = output
                log.output = output
                log.status = LogStatus.SUCCESS
            except Exception as e:
                log.status = LogStatus.FAILED
                log.error = error_message(e)
                logger.error(
                    f"Error trigger {trigger_node.name} failed: {log.error}",
                    extra={"execution_id": context.execution_id, "node_id": trigger_node.id}
                )
            log.finished_at = isoformat(utc_now())
            context.logs.append(log)

    async def _persist_progress(self, context: ExecutionContext, status: ExecutionStatus) -> None:
        try:
            await self.store.update_progress(context.execution_id, context.logs, status)
        except Exception as e:
            logger.warning(
                f"Failed to persist progress: {e}",
                extra={"execution_id": context.execution_id, "log_count": len(context.logs)}
            )

    async def _finalize(self, context: ExecutionContext) -> ExecutionResponse:
        output = context.resolved_final_output()
        duration_ms = context.finalize()
        status = ExecutionStatus.FAILED if context.failed else ExecutionStatus.SUCCESS

        await self.store.finalize(
            context.execution_id,
            status,
            output,
            context.logs,
            duration_ms,
            error=context.error_message,
            finished_at=isoformat(context.finished_at),
        )

        log_event(
            logger, "Execution finished",
            level="ERROR" if context.failed else "INFO",
            execution_id=context.execution_id,
            workflow_id=context.workflow_id,
            status=status.value,
            duration_ms=duration_ms,
            node_count=len(context.logs),
        )

        return ExecutionResponse(
            execution_id=context.execution_id,
            status=status,
            output=output,
            logs=context.logs,
            duration_ms=duration_ms,
            error=context.error_message,
        )

    async def _finish_empty(self, context: ExecutionContext) -> ExecutionResponse:
        context.finalize()
        await self.store.finalize(
            context.execution_id,
            ExecutionStatus.SUCCESS,
            context.run_input,
            [],
            0,
            finished_at=isoformat(context.finished_at),
        )
        logger.info("Workflow has no executable nodes", extra={"execution_id": context.execution_id})
        return ExecutionResponse(
            execution_id=context.execution_id,
            status=ExecutionStatus.SUCCESS,
            output=context.run_input,
            logs=[],
            duration_ms=0,
        )

    async def _crash(self, context: ExecutionContext, error: Exception) -> ExecutionResponse:
        """Fail the run after an error outside node dispatch."""
        message = error_message(error)
        logger.error(
            f"Workflow execution crashed: {message}",
            extra={"execution_id": context.execution_id, "workflow_id": context.workflow_id},
            exc_info=True
        )

        now = isoformat(utc_now())
        logs = list(context.logs) or [
            ExecutionLog(
                node_id="system",
                node_name="Workflow Execution",
                status=LogStatus.FAILED,
                started_at=now,
                finished_at=now,
                error=message,
            )
        ]
        duration_ms = context.finalize()

        try:
            await self.store.finalize(
                context.execution_id,
                ExecutionStatus.FAILED,
                context.resolved_final_output(),
                logs,
                duration_ms,
                error=message,
                finished_at=now,
            )
        except Exception as e:
            logger.error(
                f"Failed to record crashed execution: {e}",
                extra={"execution_id": context.execution_id}
            )

        return ExecutionResponse(
            execution_id=context.execution_id,
            status=ExecutionStatus.FAILED,
            output=None,
            logs=logs,
            duration_ms=duration_ms,
            error=message,
        )


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
