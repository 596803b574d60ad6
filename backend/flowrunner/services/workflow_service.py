# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Workflow Service

Runs stored workflows on behalf of the API: direct invocations and the
webhook trigger receiver.
"""

import json
import time
import uuid
from typing import Any, Dict

from flowrunner.core.errors import FlowRunnerError, ForbiddenError, RequestValidationError
from flowrunner.core.logging import get_service_logger
from flowrunner.engine.executor import WorkflowExecutor
from flowrunner.models import (
    Execution,
    ExecutionRequest,
    ExecutionResponse,
    ExecutionStatus,
    LogStatus,
    WebhookResponse,
    isoformat,
    utc_now,
)
from flowrunner.storage.execution_store import ExecutionStore, new_execution_id
from flowrunner.storage.workflow_store import WorkflowStore

logger = get_service_logger("workflow")

NO_REPLY = (
    "I received your message, but couldn't generate a response. "
    "Please check your workflow configuration."
)
FAILED_REPLY = "Sorry, I encountered an error. Please try again."

AI_NAME_HINTS = ("gpt", "gemini", "claude", "ai")


def new_session_id() -> str:
    return f"session_{int(time.time() * 1000)}_{uuid.uuid4().hex[:6]}"


def _text_of(value: Any, keys=("text", "content", "message", "response")) -> str:
    if not value:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, dict):
        for key in keys:
            if value.get(key):
                return value[key] if isinstance(value[key], str) else json.dumps(value[key], default=str)
    return json.dumps(value, default=str)


def extract_reply(response: ExecutionResponse) -> str:
    """
    Reply text for a webhook caller.

    A failed run replies with its error. Otherwise the final output is used,
    then the output of an AI-looking node, then the last successful node.
    """
    if response.status != ExecutionStatus.SUCCESS:
        return response.error or FAILED_REPLY

    reply = _text_of(response.output)
    if reply:
        return reply

    for log in response.logs:
        name = (log.node_name or "").lower()
        if log.output and any(hint in name for hint in AI_NAME_HINTS):
            reply = _text_of(log.output, ("text", "content", "message"))
            if reply:
                return reply

    successful = [log for log in response.logs if log.status == LogStatus.SUCCESS and log.output]
    if successful:
        reply = _text_of(successful[-1].output, ("text", "content", "message"))
        if reply:
            return reply

    logger.warning("No reply found in output or logs", extra={"execution_id": response.execution_id})
    return NO_REPLY


class WorkflowService:
    """
    Entry points behind the HTTP surface.

    Responsibilities:
    - Resolving workflow ids to definitions
    - Running the executor for direct invocations
    - Webhook input shaping, gating and reply extraction
    """

    def __init__(self, workflows: WorkflowStore, executions: ExecutionStore, executor: WorkflowExecutor):
        self.workflows = workflows
        self.executions = executions
        self.executor = executor

    async def run_workflow(self, request: ExecutionRequest) -> ExecutionResponse:
        """
        Run a workflow for an invocation request.

        Raises:
            NotFoundError: Unknown workflow or execution id
            GraphValidationError: The workflow graph is malformed or cyclic
        """
        workflow = await self.workflows.get(request.workflow_id)
        logger.info(
            f"Running workflow {workflow.id}",
            extra={"workflow_id": workflow.id, "execution_id": request.execution_id}
        )
        return await self.executor.execute(
            workflow,
            request.input if request.input is not None else {},
            execution_id=request.execution_id,
            trigger=request.trigger,
        )

    async def get_execution(self, execution_id: str) -> Execution:
        return await self.executions.require(execution_id)

    async def handle_webhook(
        self,
        workflow_id: str,
        method: str,
        query: Dict[str, str],
        body: Any = None
    ) -> WebhookResponse:
        """
        Run a workflow for an inbound webhook call.

        Query parameters and a JSON object body are merged (body wins). A
        session id is taken from either or generated, so follow-up calls can
        continue the conversation.

        Raises:
            NotFoundError: Unknown workflow
            ForbiddenError: Webhooks are disabled for the workflow
            RequestValidationError: The workflow is not active
            GraphValidationError: The workflow graph is malformed or cyclic; the
                pre-allocated execution is finalized as failed
        """
        workflow = await self.workflows.get(workflow_id)
        if not workflow.webhook_enabled:
            raise ForbiddenError("Webhook not enabled for this workflow", resource=workflow_id)
        if not workflow.is_active:
            raise RequestValidationError("Workflow is not active", field="status")

        payload = body if isinstance(body, dict) else {}
        session_id = query.get("session_id") or payload.get("session_id") or new_session_id()
        run_input = {
            **query,
            **payload,
            "_webhook": True,
            "_method": method.upper(),
            "session_id": session_id,
        }

        execution = await self.executions.create(Execution(
            id=new_execution_id(),
            workflow_id=workflow.id,
            user_id=workflow.user_id,
            status=ExecutionStatus.PENDING,
            trigger="webhook",
            started_at=isoformat(utc_now()),
            input=run_input,
        ))
        logger.info(
            f"Created execution {execution.id} for webhook trigger",
            extra={"workflow_id": workflow.id, "execution_id": execution.id, "session_id": session_id}
        )

        try:
            response = await self.executor.execute(
                workflow, run_input, execution_id=execution.id, trigger="webhook"
            )
        except FlowRunnerError as e:
            # The run never started; close the record so it does not stay pending
            await self.executions.finalize(
                execution.id, ExecutionStatus.FAILED, None, [], 0, error=e.message
            )
            logger.warning(
                f"Webhook execution {execution.id} rejected: {e.message}",
                extra={"workflow_id": workflow.id, "execution_id": execution.id}
            )
            raise
        return WebhookResponse(success=True, reply=extract_reply(response), execution_id=execution.id)
