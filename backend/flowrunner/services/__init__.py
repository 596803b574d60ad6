# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""Service layer between the HTTP routers and the engine."""

from flowrunner.services.workflow_service import WorkflowService, extract_reply

__all__ = ["WorkflowService", "extract_reply"]
