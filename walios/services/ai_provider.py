"""
AI provider router.

Maps logical task names ("document-analysis", "conversation", ...) to a
vendor/model pair, calls that vendor with a normalized message list, retries
on the same vendor and then fails over once to the other vendor.
"""

import json
import os
import re
from dataclasses import asdict, dataclass, field
from typing import Any, Mapping, Optional

import httpx
import structlog
from anthropic import AsyncAnthropic
from openai import AsyncOpenAI
from tenacity import AsyncRetrying, RetryCallState, stop_after_attempt, wait_exponential

from walios.core.config import settings

logger = structlog.get_logger(__name__)

OPENAI = "openai"
ANTHROPIC = "anthropic"
PROVIDERS = (OPENAI, ANTHROPIC)

# Retries are handled by tenacity, not the SDKs
REQUEST_TIMEOUT = httpx.Timeout(60.0, connect=10.0)


@dataclass(frozen=True)
class ProviderConfig:
    """Vendor and model chosen for a task, with the reason it was chosen."""

    provider: str
    model: str
    reason: str


@dataclass
class CompletionResult:
    """Normalized completion returned by either vendor."""

    content: str
    provider: str
    model: str
    usage: dict[str, Any] = field(default_factory=dict)


class AIProviderError(Exception):
    """Raised when every configured vendor failed for a task."""


class AIResponseParseError(ValueError):
    """Raised when a model response cannot be turned into JSON."""


PROVIDER_STRATEGY: dict[str, ProviderConfig] = {
    "document-analysis": ProviderConfig(OPENAI, "gpt-4o", "Complex document understanding needs the strongest model"),
    "smart-form-completion": ProviderConfig(OPENAI, "gpt-4o", "Form completion needs careful reasoning over user data"),
    "enhanced-scoring": ProviderConfig(OPENAI, "gpt-4o-mini", "Structured scoring works well on the smaller model"),
    "basic-scoring": ProviderConfig(OPENAI, "gpt-4o-mini", "Fast, inexpensive scoring checks"),
    "conversation": ProviderConfig(OPENAI, "gpt-4o", "Natural conversational replies"),
    "categorization": ProviderConfig(OPENAI, "gpt-4o-mini", "Simple classification task"),
    "conversation-summary": ProviderConfig(OPENAI, "gpt-4o-mini", "Short summaries of chat transcripts"),
    "intent-classification": ProviderConfig(OPENAI, "gpt-4o-mini", "Single-label classification"),
    "field-analysis": ProviderConfig(OPENAI, "gpt-4o-mini", "Short field definitions and value lookups"),
    "form-assistant": ProviderConfig(OPENAI, "gpt-4o", "Drafting application narrative content"),
    "document-generation": ProviderConfig(OPENAI, "gpt-4o", "Mapping user data onto form fields"),
    "project-analysis": ProviderConfig(OPENAI, "gpt-4o", "Detailed project review"),
    "opportunity-analysis": ProviderConfig(OPENAI, "gpt-4o-mini", "Opportunity summaries"),
    "compliance-extraction": ProviderConfig(ANTHROPIC, "claude-3-5-sonnet-20241022", "Long-document compliance extraction"),
}

DEFAULT_CONFIG = ProviderConfig(OPENAI, "gpt-4o-mini", "Default fallback")

FALLBACK_MODELS = {
    OPENAI: "gpt-4o-mini",
    ANTHROPIC: "claude-3-haiku-20240307",
}

# Tasks whose callers always parse the reply as JSON
JSON_TASKS = frozenset({
    "document-analysis",
    "enhanced-scoring",
    "smart-form-completion",
    "categorization",
})

JSON_INSTRUCTION = (
    "CRITICAL: You MUST respond with valid JSON only. Do not include any "
    "explanatory text, apologies, or markdown formatting outside the JSON object."
)

ENV_OVERRIDE_PREFIX = "AI_PROVIDER_"

CONVERSATIONAL_PREFIXES = ("i'm sorry", "i am sorry", "i can't", "i cannot", "i apologize")

_FENCED_JSON = re.compile(r"```(?:json)?\s*([\s\S]*?)```", re.IGNORECASE)


def env_key_for_task(task_type: str) -> str:
    """AI_PROVIDER_<TASK> with dashes turned into underscores."""
    return ENV_OVERRIDE_PREFIX + task_type.upper().replace("-", "_")


def safe_parse_json(content: Optional[str]) -> Any:
    """
    Parse a model reply as JSON.

    Tries the raw text first, then a fenced ```json block, then the span from
    the first "{" to the last "}". Empty replies and conversational refusals
    are rejected up front.

    Raises:
        AIResponseParseError: If no JSON can be recovered.
    """
    if content is None or not content.strip():
        raise AIResponseParseError("Empty AI response")

    text = content.strip()
    if text.lower().startswith(CONVERSATIONAL_PREFIXES):
        raise AIResponseParseError(f"AI returned a conversational response instead of JSON: {text[:100]}")

    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass

    fenced = _FENCED_JSON.search(text)
    if fenced:
        try:
            return json.loads(fenced.group(1).strip())
        except json.JSONDecodeError:
            pass

    start = text.find("{")
    end = text.rfind("}")
    if start != -1 and end > start:
        try:
            return json.loads(text[start : end + 1])
        except json.JSONDecodeError:
            pass

    raise AIResponseParseError(f"Could not parse AI response as JSON: {text[:100]}")


def _log_retry(retry_state: RetryCallState) -> None:
    logger.warning(
        "ai_provider_attempt_failed",
        attempt=retry_state.attempt_number,
        error=str(retry_state.outcome.exception()) if retry_state.outcome else None,
    )


class AIProviderService:
    """Routes completions to OpenAI or Anthropic based on the task type."""

    def __init__(
        self,
        openai_client: Optional[AsyncOpenAI] = None,
        anthropic_client: Optional[AsyncAnthropic] = None,
        environ: Optional[Mapping[str, str]] = None,
        retry_wait=None,
    ):
        self.openai = openai_client
        if self.openai is None and settings.openai_api_key:
            self.openai = AsyncOpenAI(api_key=settings.openai_api_key, timeout=REQUEST_TIMEOUT, max_retries=0)

        self.anthropic = anthropic_client
        if self.anthropic is None and settings.anthropic_api_key:
            self.anthropic = AsyncAnthropic(api_key=settings.anthropic_api_key, timeout=REQUEST_TIMEOUT, max_retries=0)

        self.retry_wait = retry_wait or wait_exponential(multiplier=1, min=1, max=4)
        self.strategy = self._load_strategy(os.environ if environ is None else environ)

    @staticmethod
    def _load_strategy(environ: Mapping[str, str]) -> dict[str, ProviderConfig]:
        """Copy the static table and apply AI_PROVIDER_<TASK> overrides."""
        strategy = dict(PROVIDER_STRATEGY)
        for task_type in PROVIDER_STRATEGY:
            raw = environ.get(env_key_for_task(task_type))
            if not raw:
                continue
            provider, _, model = raw.partition(":")
            provider = provider.strip().lower()
            model = model.strip()
            if provider not in PROVIDERS or not model:
                logger.warning("invalid_provider_override", task=task_type, value=raw)
                continue
            strategy[task_type] = ProviderConfig(provider, model, "Environment variable override")
        return strategy

    def get_provider_config(self, task_type: str) -> ProviderConfig:
        return self.strategy.get(task_type, DEFAULT_CONFIG)

    async def generate_completion(
        self,
        task_type: str,
        messages: list[dict[str, str]],
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        response_format: Optional[str] = None,
        max_retries: Optional[int] = None,
    ) -> CompletionResult:
        """
        Run a completion for a task with retry and cross-vendor failover.

        The configured vendor gets up to ``max_retries`` attempts; after the
        last failure the other vendor is tried once with its fallback model.

        Raises:
            AIProviderError: If the fallback vendor also fails.
        """
        config = self.get_provider_config(task_type)
        max_tokens = max_tokens or settings.ai_default_max_tokens
        temperature = settings.ai_default_temperature if temperature is None else temperature
        attempts = max(1, max_retries or settings.ai_max_retries)

        logger.info(
            "ai_provider_selected",
            task=task_type,
            provider=config.provider,
            model=config.model,
            reason=config.reason,
        )

        prepared = self._prepare_messages(task_type, messages)
        options = {"max_tokens": max_tokens, "temperature": temperature, "response_format": response_format}

        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(attempts),
                wait=self.retry_wait,
                before_sleep=_log_retry,
                reraise=True,
            ):
                with attempt:
                    return await self._call(config.provider, config.model, prepared, **options)
        except Exception as primary_error:
            fallback_provider = ANTHROPIC if config.provider == OPENAI else OPENAI
            fallback_model = FALLBACK_MODELS[fallback_provider]
            logger.warning(
                "ai_provider_failover",
                task=task_type,
                failed_provider=config.provider,
                error=str(primary_error),
                fallback_provider=fallback_provider,
                fallback_model=fallback_model,
            )
            try:
                return await self._call(fallback_provider, fallback_model, prepared, **options)
            except Exception as fallback_error:
                logger.error(
                    "ai_provider_all_failed",
                    task=task_type,
                    primary_error=str(primary_error),
                    fallback_error=str(fallback_error),
                )
                raise AIProviderError(f"All AI providers failed for task: {task_type}") from fallback_error

    def _prepare_messages(self, task_type: str, messages: list[dict[str, str]]) -> list[dict[str, str]]:
        """Copy messages, adding the JSON-only instruction for JSON tasks."""
        prepared = [dict(m) for m in messages]
        if task_type not in JSON_TASKS:
            return prepared

        for message in prepared:
            if message.get("role") == "system":
                message["content"] = f"{message.get('content', '')}\n\n{JSON_INSTRUCTION}"
                return prepared
        return [{"role": "system", "content": JSON_INSTRUCTION}, *prepared]

    async def _call(
        self,
        provider: str,
        model: str,
        messages: list[dict[str, str]],
        max_tokens: int,
        temperature: float,
        response_format: Optional[str] = None,
    ) -> CompletionResult:
        if provider == OPENAI:
            return await self._call_openai(model, messages, max_tokens, temperature, response_format)
        if provider == ANTHROPIC:
            return await self._call_anthropic(model, messages, max_tokens, temperature)
        raise AIProviderError(f"Unknown provider: {provider}")

    async def _call_openai(
        self,
        model: str,
        messages: list[dict[str, str]],
        max_tokens: int,
        temperature: float,
        response_format: Optional[str],
    ) -> CompletionResult:
        if self.openai is None:
            raise AIProviderError("OpenAI client not configured (missing OPENAI_API_KEY)")

        kwargs: dict[str, Any] = {
            "model": model,
            "messages": messages,
            "max_tokens": max_tokens,
            "temperature": temperature,
        }
        if response_format:
            kwargs["response_format"] = {"type": response_format}

        response = await self.openai.chat.completions.create(**kwargs)
        usage = response.usage
        return CompletionResult(
            content=response.choices[0].message.content or "",
            provider=OPENAI,
            model=model,
            usage={
                "prompt_tokens": getattr(usage, "prompt_tokens", None),
                "completion_tokens": getattr(usage, "completion_tokens", None),
                "total_tokens": getattr(usage, "total_tokens", None),
            },
        )

    async def _call_anthropic(
        self,
        model: str,
        messages: list[dict[str, str]],
        max_tokens: int,
        temperature: float,
    ) -> CompletionResult:
        if self.anthropic is None:
            raise AIProviderError("Anthropic client not configured (missing ANTHROPIC_API_KEY)")

        # Anthropic takes the system prompt as a separate parameter
        system = "\n\n".join(m["content"] for m in messages if m.get("role") == "system")
        conversation = [
            {"role": m["role"], "content": m["content"]} for m in messages if m.get("role") != "system"
        ]

        kwargs: dict[str, Any] = {
            "model": model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": conversation,
        }
        if system:
            kwargs["system"] = system

        response = await self.anthropic.messages.create(**kwargs)
        content = "".join(
            block.text for block in response.content if getattr(block, "type", "text") == "text"
        )
        usage = response.usage
        input_tokens = getattr(usage, "input_tokens", None)
        output_tokens = getattr(usage, "output_tokens", None)
        return CompletionResult(
            content=content,
            provider=ANTHROPIC,
            model=model,
            usage={
                "prompt_tokens": input_tokens,
                "completion_tokens": output_tokens,
                "total_tokens": (input_tokens or 0) + (output_tokens or 0) if usage else None,
            },
        )

    def get_provider_status(self) -> dict[str, Any]:
        """Which vendors are configured and the effective task table."""
        return {
            "providers": {
                OPENAI: {"configured": self.openai is not None},
                ANTHROPIC: {"configured": self.anthropic is not None},
            },
            "strategy": {task: asdict(config) for task, config in self.strategy.items()},
            "default": asdict(DEFAULT_CONFIG),
        }

    async def test_connections(self) -> dict[str, Any]:
        """Send a one-word prompt to each configured vendor."""
        results: dict[str, Any] = {}
        probe = [{"role": "user", "content": "Reply with the single word: ok"}]
        for provider in PROVIDERS:
            client = self.openai if provider == OPENAI else self.anthropic
            if client is None:
                results[provider] = {"ok": False, "error": "not configured"}
                continue
            try:
                result = await self._call(provider, FALLBACK_MODELS[provider], probe, max_tokens=5, temperature=0)
                results[provider] = {"ok": True, "model": result.model}
            except Exception as e:
                logger.error("ai_provider_connection_test_failed", provider=provider, error=str(e))
                results[provider] = {"ok": False, "error": str(e)}
        return results


_ai_provider: Optional[AIProviderService] = None


def get_ai_provider() -> AIProviderService:
    """Get or create the process-wide provider service (FastAPI dependency)."""
    global _ai_provider
    if _ai_provider is None:
        _ai_provider = AIProviderService()
    return _ai_provider
