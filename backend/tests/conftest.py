# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Shared fixtures.

External services are never contacted: every HTTP client is backed by an
httpx.MockTransport.
"""

import httpx
import pytest

from flowrunner.core.config import Config
from flowrunner.engine.context import SharedContext
from flowrunner.storage.execution_store import InMemoryExecutionStore
from tests.factories import USER_ID, WORKFLOW_ID


def _ok(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, json={})


@pytest.fixture
def config():
    """Engine config with short waits and no retry backoff"""
    return Config(
        wait_max_ms=50,
        schedule_max_wait_ms=0,
        http_retry_backoff_ms=0,
        http_timeout_ms=5000,
    )


@pytest.fixture
def store():
    return InMemoryExecutionStore()


@pytest.fixture
def http_client():
    return httpx.AsyncClient(transport=httpx.MockTransport(_ok))


@pytest.fixture
def make_context(config):
    """Factory for a handler context whose HTTP calls go to ``handler``"""
    def factory(handler=None, **fields):
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler or _ok))
        fields.setdefault("api_keys", {})
        return SharedContext(
            workflow_id=WORKFLOW_ID,
            user_id=USER_ID,
            execution_id="exec-test",
            config=config,
            http=client,
            **fields
        )
    return factory


@pytest.fixture
def ctx(make_context):
    return make_context()
