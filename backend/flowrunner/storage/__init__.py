# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""Persistence collaborators: execution records and workflow definitions."""

from flowrunner.storage.execution_store import (
    ExecutionStore,
    FileExecutionStore,
    InMemoryExecutionStore,
    conversation_history,
    new_execution_id,
)
from flowrunner.storage.workflow_store import WorkflowStore

__all__ = [
    "ExecutionStore",
    "FileExecutionStore",
    "InMemoryExecutionStore",
    "WorkflowStore",
    "conversation_history",
    "new_execution_id",
]
