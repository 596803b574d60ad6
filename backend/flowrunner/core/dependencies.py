# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Dependency injection for the flowrunner API.

Services are built once in ``create_app`` and kept on ``app.state``.
"""

from fastapi import Request


def get_workflow_service(request: Request):
    """Get the WorkflowService instance (initialized at startup)."""
    return request.app.state.workflow_service
