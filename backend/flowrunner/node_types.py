# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Workflow Node Types - every type the engine can dispatch.

Triggers:
    MANUAL_TRIGGER, WEBHOOK, WEBHOOK_TRIGGER_RESPONSE, SCHEDULE, CHAT_TRIGGER,
    INTERVAL, WORKFLOW_TRIGGER, ERROR_TRIGGER

Control Flow:
    IF_ELSE - Boolean branch, edges tagged "true"/"false"
    SWITCH - Multi-way branch, edges tagged with the case value
    WAIT, NOOP, STOP_AND_ERROR, ERROR_HANDLER

Data:
    SET, SET_VARIABLE, JSON_PARSER, TEXT_FORMATTER, MERGE, FILTER, LOOP,
    SPLIT_IN_BATCHES, AGGREGATE, LIMIT, SORT, ITEM_LISTS, LOG_OUTPUT, MATH,
    DATE_TIME

External:
    HTTP_REQUEST, HTTP_POST, GRAPHQL, RESPOND_TO_WEBHOOK, SLACK_MESSAGE,
    DISCORD_WEBHOOK, EMAIL_RESEND and the AI nodes
"""

from enum import Enum


class NodeType(str, Enum):
    # Triggers
    MANUAL_TRIGGER = "manual_trigger"
    WEBHOOK = "webhook"
    WEBHOOK_TRIGGER_RESPONSE = "webhook_trigger_response"
    SCHEDULE = "schedule"
    CHAT_TRIGGER = "chat_trigger"
    INTERVAL = "interval"
    WORKFLOW_TRIGGER = "workflow_trigger"
    ERROR_TRIGGER = "error_trigger"

    # Control Flow
    IF_ELSE = "if_else"
    SWITCH = "switch"
    WAIT = "wait"
    NOOP = "noop"
    STOP_AND_ERROR = "stop_and_error"
    ERROR_HANDLER = "error_handler"

    # Data
    SET = "set"
    SET_VARIABLE = "set_variable"
    JSON_PARSER = "json_parser"
    TEXT_FORMATTER = "text_formatter"
    MERGE = "merge"
    MERGE_DATA = "merge_data"
    FILTER = "filter"
    LOOP = "loop"
    SPLIT_IN_BATCHES = "split_in_batches"
    AGGREGATE = "aggregate"
    LIMIT = "limit"
    SORT = "sort"
    ITEM_LISTS = "item_lists"
    LOG_OUTPUT = "log_output"
    MATH = "math"
    DATE_TIME = "date_time"

    # External
    HTTP_REQUEST = "http_request"
    HTTP_POST = "http_post"
    GRAPHQL = "graphql"
    RESPOND_TO_WEBHOOK = "respond_to_webhook"
    SLACK_MESSAGE = "slack_message"
    SLACK_WEBHOOK = "slack_webhook"
    DISCORD_WEBHOOK = "discord_webhook"
    EMAIL_RESEND = "email_resend"

    # AI
    OPENAI_GPT = "openai_gpt"
    ANTHROPIC_CLAUDE = "anthropic_claude"
    GOOGLE_GEMINI = "google_gemini"
    TEXT_SUMMARIZER = "text_summarizer"
    SENTIMENT_ANALYZER = "sentiment_analyzer"


# Nodes whose empty result is replaced by their input
TRIGGER_TYPES = frozenset([
    NodeType.MANUAL_TRIGGER.value,
    NodeType.WEBHOOK.value,
    NodeType.WEBHOOK_TRIGGER_RESPONSE.value,
    NodeType.SCHEDULE.value,
    NodeType.CHAT_TRIGGER.value,
    NodeType.INTERVAL.value,
    NodeType.WORKFLOW_TRIGGER.value,
    NodeType.ERROR_TRIGGER.value,
])

# Nodes that record a branch outcome
BRANCH_TYPES = frozenset([NodeType.IF_ELSE.value, NodeType.SWITCH.value])

# Nodes that receive prior conversation turns
AI_TYPES = frozenset([
    NodeType.OPENAI_GPT.value,
    NodeType.ANTHROPIC_CLAUDE.value,
    NodeType.GOOGLE_GEMINI.value,
    NodeType.TEXT_SUMMARIZER.value,
    NodeType.SENTIMENT_ANALYZER.value,
])


def is_error_trigger(node_type: str) -> bool:
    return node_type == NodeType.ERROR_TRIGGER.value
