# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
AI nodes.

OpenAI, Claude, summarizer and sentiment nodes talk to an OpenAI-compatible
chat-completions gateway; the Gemini node calls the Gemini REST API directly.
Prior conversation turns from ``ctx.conversation_history`` are replayed
between the system prompt and the current message.
"""

import json
from typing import Any, Dict, List, Optional

from flowrunner.core.errors import ExternalServiceError, ValidationError
from flowrunner.core.logging import get_service_logger
from flowrunner.engine.context import SharedContext
from flowrunner.models import WorkflowNode
from flowrunner.node_types import NodeType
from flowrunner.nodes.base import get_number, get_str, message_text
from flowrunner.nodes.http import send
from flowrunner.nodes.registry import registry

logger = get_service_logger("ai")

GATEWAY_KEY = "AI_GATEWAY_API_KEY"

DEFAULT_SYSTEM_PROMPT = "You are a helpful assistant."

OPENAI_MODELS = {
    "gpt-4o": "openai/gpt-4o",
    "gpt-4o-mini": "openai/gpt-4o-mini",
    "gpt-4o-mini-2024-07-18": "openai/gpt-4o-mini",
    "gpt-4-turbo": "openai/gpt-4-turbo",
}

CLAUDE_MODELS = {
    "claude-3-5-sonnet": "anthropic/claude-3-5-sonnet",
    "claude-3-5-haiku": "anthropic/claude-3-5-haiku",
    "claude-3-sonnet": "anthropic/claude-3-sonnet",
    "claude-3-opus": "anthropic/claude-3-opus",
    "claude-3-haiku": "anthropic/claude-3-haiku",
}

GEMINI_MODELS = {
    "gemini-2.5-flash": "google/gemini-2.5-flash",
    "gemini-2.5-pro": "google/gemini-2.5-pro",
    "gemini-2.5-flash-lite": "google/gemini-2.5-flash-lite",
}

DISPLAY_NAMES = {
    NodeType.OPENAI_GPT.value: "OpenAI GPT",
    NodeType.ANTHROPIC_CLAUDE.value: "Anthropic Claude",
    NodeType.GOOGLE_GEMINI.value: "Google Gemini",
    NodeType.TEXT_SUMMARIZER.value: "Text Summarizer",
    NodeType.SENTIMENT_ANALYZER.value: "Sentiment Analyzer",
}

SENTIMENT_PROMPT = (
    "Analyze the sentiment of the following text. Return a JSON object with "
    "'sentiment' (positive/negative/neutral), 'confidence' (0-1), and "
    "'emotions' (array of detected emotions)."
)


def gateway_model(node_type: str, configured: str, default: str) -> str:
    """Map a node's model selection to a gateway model id."""
    if node_type == NodeType.OPENAI_GPT.value:
        tables = [OPENAI_MODELS]
    elif node_type == NodeType.ANTHROPIC_CLAUDE.value:
        tables = [CLAUDE_MODELS]
    else:
        # Summarizer and sentiment accept any supported provider
        tables = [OPENAI_MODELS, CLAUDE_MODELS, GEMINI_MODELS]

    for table in tables:
        if configured in table:
            return table[configured]
    return default


def system_prompt(node: WorkflowNode) -> str:
    if node.type == NodeType.TEXT_SUMMARIZER.value:
        max_length = get_number(node.config, "maxLength", 200) or 200
        style = get_str(node.config, "style", "concise") or "concise"
        bullets = " Use bullet points." if style == "bullets" else ""
        return f"Summarize the following text in a {style} manner. Keep it under {max_length} words.{bullets}"
    if node.type == NodeType.SENTIMENT_ANALYZER.value:
        return SENTIMENT_PROMPT
    return get_str(node.config, "prompt") or DEFAULT_SYSTEM_PROMPT


def build_messages(prompt: str, history: List[Dict[str, str]], user_message: str) -> List[Dict[str, str]]:
    messages = [{"role": "system", "content": prompt}]
    messages.extend({"role": turn["role"], "content": turn["content"]} for turn in history)
    messages.append({"role": "user", "content": user_message})
    return messages


def _api_key(node: WorkflowNode, ctx: SharedContext, fallback: Optional[str]) -> str:
    key = ctx.credential(node, "apiKey", fallback)
    if not key or not key.strip():
        raise ValidationError(
            node.label or DISPLAY_NAMES.get(node.type, node.type),
            "API Key",
            "API Key is required. Please add your API key in the node properties."
        )
    return key


def _sentiment(content: str) -> Any:
    try:
        return json.loads(content)
    except ValueError:
        return {"raw": content}


@registry.register(
    NodeType.OPENAI_GPT,
    NodeType.ANTHROPIC_CLAUDE,
    NodeType.TEXT_SUMMARIZER,
    NodeType.SENTIMENT_ANALYZER,
)
async def chat_completion(node: WorkflowNode, data: Any, ctx: SharedContext) -> Any:
    api_key = _api_key(node, ctx, GATEWAY_KEY)
    model = gateway_model(node.type, get_str(node.config, "model"), ctx.config.ai_default_model)
    temperature = get_number(node.config, "temperature", 0.7) or 0.7

    messages = build_messages(system_prompt(node), ctx.conversation_history, message_text(data))
    logger.debug(
        "Calling chat gateway",
        extra={"node_id": node.id, "model": model, "history_turns": len(ctx.conversation_history)}
    )

    response = await send(
        ctx, node, "POST", ctx.config.ai_gateway_url,
        headers={"Authorization": f"Bearer {api_key}"},
        json={"model": model, "messages": messages, "temperature": temperature},
    )
    if response.status_code >= 400:
        raise ExternalServiceError("AI", response.status_code, response.text, node_name=node.name)

    body = response.json()
    choices = body.get("choices") or [{}]
    content = (choices[0].get("message") or {}).get("content") or ""

    if node.type == NodeType.SENTIMENT_ANALYZER.value:
        return _sentiment(content)
    return content


@registry.register(NodeType.GOOGLE_GEMINI)
async def google_gemini(node: WorkflowNode, data: Any, ctx: SharedContext) -> str:
    api_key = _api_key(node, ctx, None)
    model = get_str(node.config, "model", "gemini-2.5-flash") or "gemini-2.5-flash"
    temperature = get_number(node.config, "temperature", 0.7) or 0.7

    parts = [{"text": get_str(node.config, "prompt") or DEFAULT_SYSTEM_PROMPT}]
    if ctx.conversation_history:
        transcript = "\n\n".join(
            f"{'User' if turn['role'] == 'user' else 'Assistant'}: {turn['content']}"
            for turn in ctx.conversation_history
        )
        parts.append({"text": f"Previous conversation:\n{transcript}\n\nCurrent message:"})
    parts.append({"text": message_text(data)})

    response = await send(
        ctx, node, "POST", f"{ctx.config.gemini_api_url}/{model}:generateContent",
        headers={"x-goog-api-key": api_key},
        json={"contents": [{"parts": parts}], "generationConfig": {"temperature": temperature}},
    )
    if response.status_code >= 400:
        raise ExternalServiceError("Google Gemini", response.status_code, response.text, node_name=node.name)

    body = response.json()
    try:
        return body["candidates"][0]["content"]["parts"][0]["text"] or ""
    except (KeyError, IndexError, TypeError):
        return ""
