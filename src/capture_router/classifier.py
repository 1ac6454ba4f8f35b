"""AI fallback classification for captures no routing rule matched."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Protocol

import openai

from capture_router.models import CaptureItem, InboxSettings, RouteDecision

logger = logging.getLogger(__name__)

CLASSIFIER_SYSTEM_PROMPT = "You are a content classifier. Respond with exactly one word."

MAX_PROMPT_CONTENT = 500


@dataclass
class CallOptions:
    """Per-call generation options passed to the AI caller."""

    use_search: bool = False
    temperature: Optional[float] = None
    thinking_budget: Optional[str] = None


class AICaller(Protocol):
    def call(
        self,
        system_prompt: str,
        user_prompt: str,
        model: str,
        options: CallOptions,
    ) -> str | None:
        ...


class GatewayBackend:
    """AI caller backed by an OpenAI-compatible chat completions endpoint."""

    def __init__(self, api_key: str, base_url: str = "https://api.openai.com/v1"):
        self.client = openai.OpenAI(base_url=base_url, api_key=api_key or "not-needed")

    def call(
        self,
        system_prompt: str,
        user_prompt: str,
        model: str,
        options: CallOptions,
    ) -> str | None:
        """Generate text for a single system/user prompt pair.

        Web search and thinking budgets are provider features the
        chat completions API doesn't expose; they are ignored here.

        Returns:
            Generated text response, or None if the model returned nothing
        """
        kwargs = {}
        if options.temperature is not None:
            kwargs["temperature"] = options.temperature

        response = self.client.chat.completions.create(
            model=model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            **kwargs,
        )
        return response.choices[0].message.content


def build_routing_prompt(item: CaptureItem, template: str) -> str:
    """Fill the routing prompt template with truncated content and meeting flags."""
    meeting = item.meeting_context
    return (
        template.replace("{content}", item.content[:MAX_PROMPT_CONTENT])
        .replace("{length}", str(len(item.content)))
        .replace("{inMeeting}", "YES" if meeting else "NO")
        .replace("{meetingTitle}", (meeting.summary if meeting else "") or "N/A")
    )


def classify_with_ai(
    item: CaptureItem,
    settings: InboxSettings,
    ai_caller: AICaller,
) -> RouteDecision | None:
    """Ask the AI caller for a one-word label and map it to a decision.

    Callers must check credential availability first; this function doesn't.
    Any failure (network, empty reply, unknown label) returns None.
    """
    prompt = build_routing_prompt(item, settings.prompts.inbox_routing)
    model = settings.models.inbox_routing_model or settings.models.briefing_model
    options = CallOptions(
        use_search=False,
        temperature=settings.models.routing_temperature,
    )

    try:
        result = ai_caller.call(CLASSIFIER_SYSTEM_PROMPT, prompt, model, options)
    except Exception as e:
        logger.warning(f"AI routing failed: {e}")
        return None

    if not result:
        return None

    label = result.strip().upper()
    logger.debug(f"AI classification: {label}")

    if label in ("TASK", "MEETING_FOLLOWUP"):
        return RouteDecision(
            destination="meeting_followup" if item.meeting_context else "daily_thoughts",
            format="task",
            add_due_date=True,
        )

    if label in ("THOUGHT", "REFERENCE"):
        return RouteDecision(
            destination="daily_thoughts",
            format="thought",
            add_due_date=False,
        )

    return None
