# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Unit tests for trigger nodes
"""

from datetime import datetime, timezone

import pytest

from flowrunner.core.errors import ValidationError
from flowrunner.nodes.triggers import (
    chat_trigger,
    error_trigger,
    interval_trigger,
    manual_trigger,
    schedule_trigger,
    seconds_until,
    webhook_trigger,
    workflow_trigger,
)
from tests.factories import make_node


@pytest.mark.asyncio
async def test_manual_trigger_envelope(ctx):
    result = await manual_trigger(make_node("t", "manual_trigger"), {"name": "Ann", "_workflow_id": "wf-9"}, ctx)

    assert result["trigger"] == "manual"
    assert result["workflow_id"] == "wf-9"
    assert result["name"] == "Ann"
    assert result["executed_at"].endswith("Z")


@pytest.mark.asyncio
async def test_manual_trigger_falls_back_to_context_workflow(ctx):
    result = await manual_trigger(make_node("t", "manual_trigger"), None, ctx)

    assert result["workflow_id"] == "wf-1"


@pytest.mark.asyncio
async def test_webhook_trigger_envelope(ctx):
    result = await webhook_trigger(make_node("t", "webhook"), {"message": "hi", "_method": "POST"}, ctx)

    assert result["trigger"] == "webhook"
    assert result["message"] == "hi"
    assert result["body"] == {"message": "hi", "_method": "POST"}


class TestSchedule:
    def test_seconds_until_later_today(self):
        now = datetime(2025, 1, 1, 8, 0, 0, tzinfo=timezone.utc)

        assert seconds_until("09:00", "UTC", now) == 3600

    def test_seconds_until_rolls_over(self):
        now = datetime(2025, 1, 1, 8, 0, 30, tzinfo=timezone.utc)

        assert seconds_until("07:00", "UTC", now) == 23 * 3600 - 30

    @pytest.mark.asyncio
    async def test_cron_from_time(self, ctx):
        """Far-away times are not waited for"""
        node = make_node("s", "schedule", time="09:30", timezone="UTC")

        result = await schedule_trigger(node, {"a": 1}, ctx)

        assert result["cron"] == "30 09 * * *"
        assert result["timezone"] == "UTC"
        assert result["a"] == 1

    @pytest.mark.asyncio
    async def test_unknown_timezone_does_not_fail(self, ctx):
        node = make_node("s", "schedule", time="09:30", timezone="Mars/Olympus")

        result = await schedule_trigger(node, {}, ctx)

        assert result["trigger"] == "schedule"

    @pytest.mark.asyncio
    async def test_scheduled_run_skips_wait(self, ctx):
        node = make_node("s", "schedule", cron="*/5 * * * *", time="")

        result = await schedule_trigger(node, {"_scheduled": "true"}, ctx)

        assert result["cron"] == "*/5 * * * *"


class TestChatTrigger:
    @pytest.mark.asyncio
    async def test_requires_message(self, ctx):
        with pytest.raises(ValidationError, match="message is required"):
            await chat_trigger(make_node("c", "chat_trigger"), {"session_id": "s1"}, ctx)

    @pytest.mark.asyncio
    async def test_requires_session(self, ctx):
        with pytest.raises(ValidationError, match="session_id is required"):
            await chat_trigger(make_node("c", "chat_trigger"), {"message": "hi"}, ctx)

    @pytest.mark.asyncio
    async def test_envelope(self, ctx):
        result = await chat_trigger(make_node("c", "chat_trigger"), {"message": "hi", "_session_id": "s1"}, ctx)

        assert result["message"] == "hi"
        assert result["session_id"] == "s1"
        assert result["user_context"] == {}


@pytest.mark.asyncio
async def test_error_trigger_defaults(ctx):
    result = await error_trigger(make_node("e", "error_trigger"), {}, ctx)

    assert result["failed_node"] == "unknown"
    assert result["error_message"] == "Unknown error"


@pytest.mark.asyncio
async def test_interval_trigger(ctx):
    result = await interval_trigger(make_node("i", "interval", interval="1h"), {}, ctx)

    assert result["interval"] == "1h"


@pytest.mark.asyncio
async def test_workflow_trigger_requires_source(ctx):
    with pytest.raises(ValidationError, match="source_workflow_id"):
        await workflow_trigger(make_node("w", "workflow_trigger"), {}, ctx)

    result = await workflow_trigger(make_node("w", "workflow_trigger", source_workflow_id="wf-0"), {"k": 1}, ctx)
    assert result["source_workflow_id"] == "wf-0"
    assert result["payload"] == {"k": 1}
