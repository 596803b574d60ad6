# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Execution engine.

Scheduling, conditional routing, template and condition evaluation, and the
execution controller that drives one run.
"""
