# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Execution Context

Per-run state owned by the execution controller, and the narrower shared
context handed to node handlers.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx

from flowrunner.core.config import Config
from flowrunner.engine.router import BranchResults
from flowrunner.models import ExecutionLog, LogStatus, WorkflowNode, isoformat, utc_now

# Reserved key holding the triggering payload in the output store
TRIGGER_KEY = "trigger"


@dataclass
class SharedContext:
    """
    What a node handler may see of the run.

    The HTTP client is owned by the controller and closed when the run ends;
    handlers must not close it.
    """
    workflow_id: str
    user_id: str
    execution_id: str
    config: Config
    http: httpx.AsyncClient
    trigger_input: Any = None
    conversation_history: List[Dict[str, str]] = field(default_factory=list)
    api_keys: Dict[str, Optional[str]] = field(default_factory=dict)

    def credential(self, node: WorkflowNode, key: str, fallback: Optional[str] = None) -> Optional[str]:
        """Credential from the node's config, else the engine-level secret named ``fallback``."""
        value = node.config.get(key)
        if value:
            return str(value)
        if fallback:
            return self.api_keys.get(fallback)
        return None


class ExecutionContext:
    """
    Execution context for a workflow run.

    Tracks:
    - Node outputs (seeded with the triggering payload)
    - Branch outcomes
    - Log entries in execution order
    - The running final output and failure state
    """

    def __init__(self, execution_id: str, workflow_id: str, user_id: str, run_input: Any,
                 started_at: Optional[datetime] = None):
        self.execution_id = execution_id
        self.workflow_id = workflow_id
        self.user_id = user_id
        self.run_input = run_input
        self.started_at = started_at or utc_now()
        self.finished_at: Optional[datetime] = None

        self.node_outputs: Dict[str, Any] = {TRIGGER_KEY: run_input}
        self.branches = BranchResults()
        self.logs: List[ExecutionLog] = []

        self.final_output: Any = run_input
        self.failed = False
        self.error_message: Optional[str] = None

    def start_log(self, node: WorkflowNode) -> ExecutionLog:
        return ExecutionLog(
            node_id=node.id,
            node_name=node.name,
            status=LogStatus.RUNNING,
            started_at=isoformat(utc_now()),
        )

    def record_output(self, node: WorkflowNode, output: Any) -> None:
        """Store a completed node's output; visible to later nodes only after this."""
        self.node_outputs[node.id] = output
        self.final_output = output
        self.branches.record(node, output)

    def mark_failed(self, message: str) -> None:
        self.failed = True
        self.error_message = message

    def resolved_final_output(self) -> Any:
        """
        Final output of the run, never None.

        Falls back to the last successful non-null log output, then to the
        triggering input.
        """
        if self.final_output is not None:
            return self.final_output
        for log in reversed(self.logs):
            if log.status == LogStatus.SUCCESS and log.output is not None:
                return log.output
        return self.run_input if self.run_input is not None else {}

    def finalize(self) -> int:
        """Mark the run complete and return its duration in milliseconds."""
        self.finished_at = utc_now()
        return max(0, int((self.finished_at - self.started_at).total_seconds() * 1000))
