"""
Municipal Innovation Strategy Platform
LLM Gateway.

Provider-agnostic LLM router with:
    - Multi-provider support (Anthropic Claude, OpenAI, Gemini, local stub)
    - Auto-retry with exponential backoff
    - Token tracking & cost logging to ai_usage_logs

The gateway is an opaque drafting / scoring oracle for the cascade planner:
it drafts entities from a queue item's pre-filled spec, scores drafts, and
summarises coverage gaps. Nothing in the cascade maths depends on it.

Usage:
    from app.ai.gateway import LLMGateway
    gw = LLMGateway()
    result = gw.chat(messages, purpose="entity_generator", strategic_plan_id=3)
"""

import json
import logging
import os
import re
import time
from abc import ABC, abstractmethod

from app.models import db
from app.models.ai import AIUsageLog, calculate_cost

logger = logging.getLogger(__name__)


# ── Provider Abstract Base ────────────────────────────────────────────────────

class LLMProvider(ABC):
    """Abstract interface for LLM providers."""

    @abstractmethod
    def chat(self, messages: list, model: str, **kwargs) -> dict:
        """
        Send a chat completion request.

        Args:
            messages: List of {"role": "...", "content": "..."} dicts.
            model: Model identifier string.
            **kwargs: temperature, max_tokens, etc.

        Returns:
            dict with keys: content, prompt_tokens, completion_tokens, model
        """
        ...


def _split_system(messages: list) -> tuple[str, list]:
    system_parts = []
    chat_messages = []
    for m in messages:
        if m["role"] == "system":
            system_parts.append(m["content"])
        else:
            chat_messages.append(m)
    return "\n\n".join(system_parts), chat_messages


# ── Anthropic Provider ────────────────────────────────────────────────────────

class AnthropicProvider(LLMProvider):
    """Claude API (Anthropic) provider."""

    def __init__(self):
        self.api_key = os.getenv("ANTHROPIC_API_KEY", "")
        self._client = None

    def _get_client(self):
        if self._client is None:
            import anthropic
            self._client = anthropic.Anthropic(api_key=self.api_key)
        return self._client

    def chat(self, messages: list, model: str = "claude-3-5-haiku-20241022", **kwargs) -> dict:
        client = self._get_client()
        system_msg, chat_messages = _split_system(messages)

        params = {
            "model": model,
            "messages": chat_messages,
            "max_tokens": kwargs.get("max_tokens", 2048),
            "temperature": kwargs.get("temperature", 0.3),
        }
        if system_msg:
            params["system"] = system_msg

        response = client.messages.create(**params)
        return {
            "content": response.content[0].text,
            "prompt_tokens": response.usage.input_tokens,
            "completion_tokens": response.usage.output_tokens,
            "model": model,
        }


# ── OpenAI Provider ───────────────────────────────────────────────────────────

class OpenAIProvider(LLMProvider):
    """OpenAI chat completions provider."""

    def __init__(self):
        self.api_key = os.getenv("OPENAI_API_KEY", "")
        self._client = None

    def _get_client(self):
        if self._client is None:
            import openai
            self._client = openai.OpenAI(api_key=self.api_key)
        return self._client

    def chat(self, messages: list, model: str = "gpt-4o-mini", **kwargs) -> dict:
        client = self._get_client()
        response = client.chat.completions.create(
            model=model,
            messages=messages,
            max_tokens=kwargs.get("max_tokens", 2048),
            temperature=kwargs.get("temperature", 0.3),
        )
        choice = response.choices[0]
        return {
            "content": choice.message.content,
            "prompt_tokens": response.usage.prompt_tokens,
            "completion_tokens": response.usage.completion_tokens,
            "model": model,
        }


# ── Google Gemini Provider ───────────────────────────────────────────────────

class GeminiProvider(LLMProvider):
    """
    Google Gemini API provider.

    Environment:
        GEMINI_API_KEY: AI Studio key
    """

    def __init__(self):
        self.api_key = os.getenv("GEMINI_API_KEY", "")
        self._client = None

    def _get_client(self):
        if self._client is None:
            from google import genai
            self._client = genai.Client(api_key=self.api_key)
        return self._client

    def chat(self, messages: list, model: str = "gemini-2.5-flash", **kwargs) -> dict:
        from google.genai import types

        client = self._get_client()
        system_msg, chat_messages = _split_system(messages)
        contents = [
            types.Content(
                role="model" if m["role"] == "assistant" else "user",
                parts=[types.Part(text=m["content"])],
            )
            for m in chat_messages
        ]

        config = types.GenerateContentConfig(
            temperature=kwargs.get("temperature", 0.3),
            max_output_tokens=kwargs.get("max_tokens", 2048),
        )
        if system_msg:
            config.system_instruction = system_msg

        response = client.models.generate_content(model=model, contents=contents, config=config)
        usage = response.usage_metadata
        return {
            "content": response.text or "",
            "prompt_tokens": getattr(usage, "prompt_token_count", 0) or 0,
            "completion_tokens": getattr(usage, "candidates_token_count", 0) or 0,
            "model": model,
        }


# ── Local Stub Provider (for dev/test without API keys) ──────────────────────

class LocalStubProvider(LLMProvider):
    """
    Local stub that returns deterministic responses for dev/testing.
    No API key required.
    """

    def chat(self, messages: list, model: str = "local-stub", **kwargs) -> dict:
        prompt = "\n".join(m["content"] for m in messages)
        content = self._generate_stub_response(prompt)
        return {
            "content": content,
            "prompt_tokens": len(prompt.split()) * 2,
            "completion_tokens": len(content.split()) * 2,
            "model": "local-stub",
        }

    @staticmethod
    def _field(prompt: str, label: str, default: str = "") -> str:
        match = re.search(rf"^{re.escape(label)}:[ \t]*(.*)$", prompt, re.MULTILINE)
        return match.group(1).strip() if match and match.group(1).strip() else default

    @classmethod
    def _generate_stub_response(cls, prompt: str) -> str:
        lower = prompt.lower()

        if "quality reviewer" in lower:
            return json.dumps({
                "quality_score": 78,
                "strengths": ["Clear link to the strategic objective", "Bilingual title provided"],
                "issues": ["Success metrics are not quantified"],
                "recommendation": "accept",
            })

        if "coverage gaps" in lower:
            return json.dumps({
                "summary": "Coverage is uneven across entity kinds; close the largest gaps first.",
                "recommendations": [
                    {"kind": "challenges", "priority": "high",
                     "action": "Run a challenge-definition workshop per objective."},
                    {"kind": "events", "priority": "medium",
                     "action": "Schedule quarterly innovation events for each objective."},
                ],
            })

        title_en = cls._field(prompt, "Working title (EN)", "Municipal innovation initiative")
        title_ar = cls._field(prompt, "Working title (AR)", title_en)
        objective = cls._field(prompt, "Objective", "the strategic objective")
        return json.dumps({
            "title_en": title_en,
            "title_ar": title_ar,
            "description_en": f"Draft prepared to advance {objective}. "
                              "Scope, stakeholders and success measures to be confirmed.",
            "description_ar": f"مسودة لدعم {objective}.",
        }, ensure_ascii=False)


# ── LLM Gateway (Main Interface) ─────────────────────────────────────────────

class LLMGateway:
    """
    Central gateway for all LLM calls.

    Features:
        - Provider routing based on model name
        - Auto-retry with exponential backoff
        - Token/cost tracking (persisted to DB)
        - Local stub fallback when a provider has no API key

    Usage:
        gw = LLMGateway()
        result = gw.chat(
            messages=[{"role": "user", "content": "Draft a challenge..."}],
            purpose="entity_generator",
        )
    """

    # Model → provider mapping
    PROVIDER_MAP = {
        "claude-3-5-haiku-20241022": "anthropic",
        "claude-3-5-sonnet-20241022": "anthropic",
        "gpt-4o-mini": "openai",
        "gpt-4o": "openai",
        "gemini-2.5-flash": "gemini",
        "gemini-2.5-pro": "gemini",
        "local-stub": "local",
    }

    DEFAULT_CHAT_MODEL = os.getenv("LLM_DEFAULT_CHAT_MODEL", "gemini-2.5-flash")

    # Seconds; doubled per attempt, capped at 4
    RETRY_BACKOFF = 1.0

    def __init__(self, app=None, default_model: str | None = None):
        self._providers = {}
        self._app = app
        if default_model:
            self.DEFAULT_CHAT_MODEL = default_model
        elif app is not None and app.config.get("LLM_DEFAULT_CHAT_MODEL"):
            self.DEFAULT_CHAT_MODEL = app.config["LLM_DEFAULT_CHAT_MODEL"]
        self._init_providers()

    def _init_providers(self):
        """Initialize available providers based on environment."""
        self._providers["local"] = LocalStubProvider()

        if os.getenv("GEMINI_API_KEY"):
            self._providers["gemini"] = GeminiProvider()
        if os.getenv("ANTHROPIC_API_KEY"):
            self._providers["anthropic"] = AnthropicProvider()
        if os.getenv("OPENAI_API_KEY"):
            self._providers["openai"] = OpenAIProvider()

    def register_provider(self, name: str, provider: LLMProvider) -> None:
        self._providers[name] = provider

    def _get_provider(self, model: str) -> tuple[LLMProvider, str]:
        """
        Resolve model to provider. Falls back to local stub if real provider unavailable.
        Returns (provider, provider_name).
        """
        provider_name = self.PROVIDER_MAP.get(model, "local")
        if provider_name in self._providers:
            return self._providers[provider_name], provider_name

        logger.warning(
            "Provider '%s' not available (no API key?). Falling back to local stub for model '%s'.",
            provider_name, model,
        )
        return self._providers["local"], "local"

    def chat(
        self,
        messages: list,
        model: str | None = None,
        *,
        purpose: str = "",
        user: str = "system",
        strategic_plan_id: int | None = None,
        max_retries: int = 3,
        **kwargs,
    ) -> dict:
        """
        Send a chat completion request with retry and usage logging.

        Args:
            messages: Chat messages.
            model: Model identifier (defaults to DEFAULT_CHAT_MODEL).
            purpose: What the call is for (e.g. "quality_assessor").
            user: Who triggered the call.
            strategic_plan_id: Plan the call is made for (usage attribution).
            max_retries: Number of attempts before giving up.
            **kwargs: temperature, max_tokens passed to provider.

        Returns:
            dict: {content, prompt_tokens, completion_tokens, model, cost_usd,
                   latency_ms, provider}

        Raises:
            RuntimeError: All attempts failed.
        """
        model = model or self.DEFAULT_CHAT_MODEL
        provider, provider_name = self._get_provider(model)

        last_error = None
        for attempt in range(1, max_retries + 1):
            start_time = time.time()
            try:
                result = provider.chat(messages, model, **kwargs)
            except Exception as e:
                last_error = e
                logger.warning("LLM call attempt %d/%d failed: %s", attempt, max_retries, e)
                if attempt < max_retries and self.RETRY_BACKOFF:
                    time.sleep(min(self.RETRY_BACKOFF * 2 ** (attempt - 1), 4))
                continue

            latency_ms = int((time.time() - start_time) * 1000)
            cost = calculate_cost(model, result["prompt_tokens"], result["completion_tokens"])
            result["cost_usd"] = cost
            result["latency_ms"] = latency_ms
            result["provider"] = provider_name

            self._log_usage(
                provider=provider_name, model=result.get("model", model),
                prompt_tokens=result["prompt_tokens"],
                completion_tokens=result["completion_tokens"],
                cost_usd=cost, latency_ms=latency_ms,
                user=user, purpose=purpose, strategic_plan_id=strategic_plan_id,
                success=True,
            )
            return result

        self._log_usage(
            provider=provider_name, model=model,
            prompt_tokens=0, completion_tokens=0,
            cost_usd=0.0, latency_ms=0,
            user=user, purpose=purpose, strategic_plan_id=strategic_plan_id,
            success=False, error_message=str(last_error),
        )
        raise RuntimeError(f"LLM call failed after {max_retries} retries: {last_error}")

    # ── Internal Logging ──────────────────────────────────────────────────

    @staticmethod
    def _log_usage(*, provider, model, prompt_tokens, completion_tokens,
                   cost_usd, latency_ms, user, purpose, strategic_plan_id,
                   success, error_message=None):
        """Stage a usage row inside a savepoint; the caller's commit persists it."""
        try:
            with db.session.begin_nested():
                db.session.add(AIUsageLog(
                    provider=provider, model=model,
                    prompt_tokens=prompt_tokens,
                    completion_tokens=completion_tokens,
                    total_tokens=prompt_tokens + completion_tokens,
                    cost_usd=cost_usd, latency_ms=latency_ms,
                    user=user, purpose=purpose,
                    strategic_plan_id=strategic_plan_id,
                    success=success, error_message=error_message,
                ))
        except Exception as e:
            logger.error("Failed to log AI usage: %s", e)
