# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Node handlers.

Importing this package registers every built-in handler on ``registry``.
"""

from flowrunner.nodes.registry import NodeRegistry, registry

# Handler modules register on import
from flowrunner.nodes import ai, data, http, logic, messaging, triggers  # noqa: F401

__all__ = ["NodeRegistry", "registry"]
