# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Workflow Store

Read-only access to workflow definitions kept as ``{workflow_id}.json``
files. Authoring and CRUD happen elsewhere; the engine only loads.
"""

import json
from pathlib import Path
from typing import Dict, List, Optional

import aiofiles
from pydantic import ValidationError as PydanticValidationError

from flowrunner.core.errors import NotFoundError, RequestValidationError
from flowrunner.core.logging import get_service_logger
from flowrunner.models import Workflow

logger = get_service_logger("workflow-store")


class WorkflowStore:
    """
    Loads workflow definitions from a directory.

    Definitions registered with ``add`` (tests, embedding) shadow files of
    the same id.
    """

    def __init__(self, workflows_dir: Optional[str] = None):
        self.workflows_dir = Path(workflows_dir) if workflows_dir else None
        self._workflows: Dict[str, Workflow] = {}

    def add(self, workflow: Workflow) -> Workflow:
        self._workflows[workflow.id] = workflow
        return workflow

    def _file_for(self, workflow_id: str) -> Optional[Path]:
        if self.workflows_dir is None:
            return None
        # Ids are file names; refuse anything that could walk out of the directory
        if not workflow_id or "/" in workflow_id or "\\" in workflow_id or ".." in workflow_id:
            return None
        return self.workflows_dir / f"{workflow_id}.json"

    async def get(self, workflow_id: str) -> Workflow:
        """
        Get a workflow definition.

        Raises:
            NotFoundError: If no definition exists for the id
            RequestValidationError: If the stored definition is malformed
        """
        if workflow_id in self._workflows:
            return self._workflows[workflow_id]

        file_path = self._file_for(workflow_id)
        if file_path is None or not file_path.exists():
            raise NotFoundError("Workflow", workflow_id)

        async with aiofiles.open(file_path, "r") as f:
            raw = await f.read()

        try:
            data = json.loads(raw)
            if not isinstance(data, dict):
                raise ValueError("definition must be a JSON object")
            data.setdefault("id", workflow_id)
            return Workflow.model_validate(data)
        except (ValueError, PydanticValidationError) as e:
            raise RequestValidationError(
                f"Workflow definition '{workflow_id}' is invalid: {e}",
                field="workflow"
            )

    async def list(self) -> List[Workflow]:
        workflows = dict(self._workflows)
        if self.workflows_dir is not None and self.workflows_dir.exists():
            for file in sorted(self.workflows_dir.glob("*.json")):
                if file.stem in workflows:
                    continue
                try:
                    workflows[file.stem] = await self.get(file.stem)
                except RequestValidationError as e:
                    logger.warning(f"Skipping invalid workflow file {file.name}: {e.message}")
        return list(workflows.values())
