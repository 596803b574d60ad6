# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
flowrunner API

FastAPI application exposing workflow invocation, execution lookup and the
webhook trigger receiver.
"""

from typing import Dict, Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError as FastAPIRequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from flowrunner import __version__
from flowrunner.api import executions, webhooks
from flowrunner.core.config import Config, get_config
from flowrunner.core.errors import FlowRunnerError
from flowrunner.core.logging import get_api_logger
from flowrunner.engine.executor import WorkflowExecutor
from flowrunner.services.workflow_service import WorkflowService
from flowrunner.storage.execution_store import ExecutionStore, FileExecutionStore
from flowrunner.storage.workflow_store import WorkflowStore

logger = get_api_logger()


def create_app(
    config: Optional[Config] = None,
    execution_store: Optional[ExecutionStore] = None,
    workflow_store: Optional[WorkflowStore] = None,
    http_client: Optional[httpx.AsyncClient] = None,
    api_keys: Optional[Dict[str, Optional[str]]] = None
) -> FastAPI:
    """
    Build the application.

    Collaborators default to file-backed stores under the configured paths;
    tests pass in-memory ones.
    """
    config = config or get_config()
    execution_store = execution_store or FileExecutionStore(config.executions_path)
    workflow_store = workflow_store or WorkflowStore(config.workflows_path)

    executor = WorkflowExecutor(
        execution_store,
        config=config,
        http_client=http_client,
        api_keys=api_keys,
    )

    app = FastAPI(
        title="flowrunner",
        description="Workflow execution engine",
        version=__version__,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(config.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.config = config
    app.state.execution_store = execution_store
    app.state.workflow_store = workflow_store
    app.state.workflow_service = WorkflowService(workflow_store, execution_store, executor)

    @app.exception_handler(FlowRunnerError)
    async def flowrunner_error_handler(request: Request, exc: FlowRunnerError):
        logger.warning(
            f"Request failed: {exc.message}",
            extra={"path": request.url.path, "status_code": exc.status_code}
        )
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.message, "message": exc.message, "details": exc.details},
        )

    @app.exception_handler(FastAPIRequestValidationError)
    async def request_validation_handler(request: Request, exc: FastAPIRequestValidationError):
        return JSONResponse(
            status_code=400,
            content={"error": "Malformed request", "message": "Malformed request", "details": {"errors": exc.errors()}},
        )

    @app.get("/health")
    async def health():
        """Health check"""
        return {"status": "healthy", "service": "flowrunner"}

    app.include_router(executions.router)
    app.include_router(webhooks.router)

    logger.info("flowrunner API initialized", extra={"version": __version__})
    return app
