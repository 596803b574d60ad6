# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
flowrunner - sequential workflow execution engine.

Runs node graphs built in the workflow editor: topological scheduling,
if/else and switch routing, error-trigger recovery and per-node execution
logs persisted as the run progresses.
"""

__version__ = "1.0.0"
