"""LiteLLM Router wrapper for the summarization model group.

Every deployment whose API key is configured is registered under the
``summary`` model group, in preference order, so the Router falls back from
Claude to GPT-4o on provider errors. The Router's own retries default to
zero: SummaryGenerator owns the single retry of a failed summary.
"""

from __future__ import annotations

import structlog
from litellm import Router

from src.meetbot.config import Settings, get_settings
from src.meetbot.core.monitoring import track_llm_call

logger = structlog.get_logger(__name__)

SUMMARY_MODEL = "summary"

# (settings attribute holding the key, litellm model id), most preferred first
SUMMARY_DEPLOYMENTS = (
    ("ANTHROPIC_API_KEY", "anthropic/claude-sonnet-4-20250514"),
    ("OPENAI_API_KEY", "openai/gpt-4o"),
)


def build_model_list(settings: Settings) -> list[dict]:
    """Router deployments for every provider with a configured key."""
    model_list = []
    for key_name, model in SUMMARY_DEPLOYMENTS:
        api_key = getattr(settings, key_name)
        if api_key:
            model_list.append({
                "model_name": SUMMARY_MODEL,
                "litellm_params": {"model": model, "api_key": api_key},
            })
    return model_list


class LLMService:
    """Completion calls against the ``summary`` model group.

    Without any provider key the service still constructs, and every
    completion raises RuntimeError; summarization passes then fail and are
    counted like any other provider outage.
    """

    def __init__(self, settings: Settings | None = None) -> None:
        settings = settings or get_settings()
        model_list = build_model_list(settings)

        self.router: Router | None = None
        if not model_list:
            logger.warning("llm.no_api_keys", hint="summaries cannot be generated")
            return

        self.router = Router(
            model_list=model_list,
            num_retries=settings.LLM_MAX_RETRIES,
            timeout=settings.LLM_TIMEOUT,
            allowed_fails=3,
            cooldown_time=30,
        )
        logger.info(
            "llm.router_ready",
            deployments=[d["litellm_params"]["model"] for d in model_list],
        )

    async def completion(
        self,
        messages: list[dict],
        model: str = SUMMARY_MODEL,
        max_tokens: int = 2000,
        temperature: float = 0.7,
        metadata: dict | None = None,
    ) -> dict:
        """Run one chat completion.

        Returns:
            Dict with ``content`` (reply text), ``model`` (deployment that
            answered) and ``usage`` (token counts, possibly empty).

        Raises:
            RuntimeError: No provider key is configured.
        """
        if self.router is None:
            raise RuntimeError("No LLM API keys configured")

        async with track_llm_call(model) as usage:
            response = await self.router.acompletion(
                model=model,
                messages=messages,
                max_tokens=max_tokens,
                temperature=temperature,
                metadata=metadata or {},
            )
            if getattr(response, "usage", None):
                usage.update(
                    prompt_tokens=response.usage.prompt_tokens,
                    completion_tokens=response.usage.completion_tokens,
                    total_tokens=response.usage.total_tokens,
                )

        return {
            "content": response.choices[0].message.content,
            "model": response.model,
            "usage": dict(usage),
        }


# ── Singleton ─────────────────────────────────────────────────────────────────

_llm_service: LLMService | None = None


def get_llm_service() -> LLMService:
    """Get or create the LLM service singleton."""
    global _llm_service
    if _llm_service is None:
        _llm_service = LLMService()
    return _llm_service
