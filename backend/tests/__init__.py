# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Test Suite for ADCL Backend

Structure:
- unit/: Unit tests for services
- integration/: Integration tests for API endpoints
"""
