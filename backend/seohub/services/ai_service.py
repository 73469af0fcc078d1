"""OpenRouter chat completions through the OpenAI SDK, plus the model catalogue."""

from __future__ import annotations

import logging
import math
from typing import Any
from typing import Dict
from typing import Iterator
from typing import List
from typing import Optional

from openai import OpenAI
from openai import OpenAIError

from seohub.config import get_settings
from seohub.constants import DEFAULT_COMPANY_NAME

logger = logging.getLogger(__name__)

TEMPERATURE = 0.7
MAX_TOKENS = 1000

BASIC_SYSTEM_PROMPT = (
    "You are Rylie, an expert SEO assistant for automotive dealerships. Provide helpful, specific "
    "advice for improving search engine rankings and online visibility."
)


class AIServiceError(Exception):
    """The model provider is unconfigured or rejected the request."""


class ModelConfig:
    """One selectable chat model."""

    def __init__(
        self,
        id: str,
        name: str,
        provider: str,
        description: str,
        max_tokens: int,
        cost_per_1k_tokens: float,
    ):
        self.id = id
        self.name = name
        self.provider = provider
        self.description = description
        self.max_tokens = max_tokens
        self.cost_per_1k_tokens = cost_per_1k_tokens

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "provider": self.provider,
            "description": self.description,
            "maxTokens": self.max_tokens,
            "costPer1kTokens": self.cost_per_1k_tokens,
        }


AVAILABLE_MODELS = [
    ModelConfig("openai/gpt-4o", "GPT-4o", "OpenAI", "Fast, capable default model", 128000, 0.005),
    ModelConfig(
        "openai/gpt-4-turbo-preview", "GPT-4 Turbo", "OpenAI", "Most capable model for complex reasoning", 128000, 0.01
    ),
    ModelConfig("openai/gpt-3.5-turbo", "GPT-3.5 Turbo", "OpenAI", "Fast and efficient for most tasks", 16385, 0.0005),
    ModelConfig("anthropic/claude-3-opus", "Claude 3 Opus", "Anthropic", "Excellent for detailed analysis", 200000, 0.015),
    ModelConfig("anthropic/claude-3-sonnet", "Claude 3 Sonnet", "Anthropic", "Balanced performance", 200000, 0.003),
    ModelConfig("anthropic/claude-3-haiku", "Claude 3 Haiku", "Anthropic", "Fast and cost-effective", 200000, 0.00025),
]

MODELS_BY_ID: Dict[str, ModelConfig] = {model.id: model for model in AVAILABLE_MODELS}


def get_model_by_id(model_id: str) -> Optional[ModelConfig]:
    return MODELS_BY_ID.get(model_id)


def calculate_cost(tokens: int, model_id: str) -> float:
    model = get_model_by_id(model_id)
    if model is None:
        return 0.0
    return tokens / 1000 * model.cost_per_1k_tokens


def estimate_tokens(text: str) -> int:
    """Roughly four characters per token."""
    return math.ceil(len(text) / 4)


def get_client() -> OpenAI:
    settings = get_settings()
    if not settings.openrouter_api_key:
        raise AIServiceError("AI service not configured. Please set OPENROUTER_API_KEY environment variable.")
    return OpenAI(
        api_key=settings.openrouter_api_key,
        base_url=settings.openrouter_base_url,
        default_headers={"HTTP-Referer": settings.app_url, "X-Title": DEFAULT_COMPANY_NAME},
    )


def generate_response(messages: List[Dict[str, str]], model: Optional[str] = None) -> Dict[str, Any]:
    model = model or get_settings().default_ai_model
    client = get_client()
    try:
        completion = client.chat.completions.create(
            model=model,
            messages=messages,
            temperature=TEMPERATURE,
            max_tokens=MAX_TOKENS,
        )
    except OpenAIError as exc:
        logger.error("OpenRouter completion with %s failed: %s", model, exc)
        raise AIServiceError("Failed to get AI response") from exc

    content = ""
    if completion.choices:
        content = completion.choices[0].message.content or ""
    usage = completion.usage.model_dump() if completion.usage else None
    tokens = usage.get("total_tokens", 0) if usage else estimate_tokens(content)
    return {
        "content": content or "I apologize, but I was unable to generate a response.",
        "model": completion.model or model,
        "usage": usage,
        "tokens": tokens,
        "cost": calculate_cost(tokens, model),
    }


def stream_response(messages: List[Dict[str, str]], model: Optional[str] = None) -> Iterator[str]:
    """Yield content deltas; the caller totals tokens from the joined text."""

    model = model or get_settings().default_ai_model
    client = get_client()
    try:
        stream = client.chat.completions.create(
            model=model,
            messages=messages,
            temperature=TEMPERATURE,
            max_tokens=MAX_TOKENS,
            stream=True,
        )
        for chunk in stream:
            if not chunk.choices:
                continue
            delta = chunk.choices[0].delta.content
            if delta:
                yield delta
    except OpenAIError as exc:
        logger.error("OpenRouter stream with %s failed: %s", model, exc)
        raise AIServiceError("Failed to stream AI response") from exc
