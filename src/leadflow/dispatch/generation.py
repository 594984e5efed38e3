"""Reply text generation through an OpenAI-compatible chat model."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any

from leadflow.core.config import LLMSettings, OpenAISettings
from leadflow.core.domain import ReplyContent

logger = logging.getLogger(__name__)

MAX_REPLY_CHARS = 1000
_CODE_FENCE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)
_BLANK_LINES = re.compile(r"\n{3,}")

SYSTEM_PROMPT = (
    "You are the first-response assistant of a UAE visa and business setup consultancy. "
    "Reply in the customer's language, in at most three short sentences. Never quote "
    "prices, never promise approvals, never mention that you are automated. When a "
    "question is provided, end your reply with exactly that question and nothing else."
)


@dataclass(slots=True)
class ReplyContext:
    """What the model needs to know to write one reply."""

    channel: str
    inbound_text: str
    action: str
    question_key: str | None = None
    question_prompt: str | None = None
    contact_name: str | None = None
    service_intent: str | None = None
    collected: dict[str, Any] = field(default_factory=dict)


def normalize_outbound_text(text: str) -> str:
    """Unwrap model output into plain customer-facing text.

    Handles ``{"reply": ...}`` JSON wrappers, code fences and stray quotes.
    """

    cleaned = (text or "").strip()
    fenced = _CODE_FENCE.match(cleaned)
    if fenced:
        cleaned = fenced.group(1).strip()
    if cleaned.startswith("{"):
        try:
            parsed = json.loads(cleaned)
        except ValueError:
            parsed = None
        if isinstance(parsed, dict):
            for key in ("reply", "message", "text"):
                if isinstance(parsed.get(key), str):
                    cleaned = parsed[key].strip()
                    break
    if len(cleaned) >= 2 and cleaned[0] == cleaned[-1] and cleaned[0] in "\"'":
        cleaned = cleaned[1:-1].strip()
    cleaned = _BLANK_LINES.sub("\n\n", cleaned)
    return cleaned[:MAX_REPLY_CHARS]


def fallback_reply(context: ReplyContext) -> ReplyContent:
    """Minimal acknowledgement that still carries the pending question."""

    greeting = f"Thanks {context.contact_name}!" if context.contact_name else "Thanks for your message!"
    if context.question_prompt:
        return ReplyContent(
            text=f"{greeting} {context.question_prompt}", question_key=context.question_key
        )
    return ReplyContent(text=f"{greeting} A consultant will get back to you shortly.")


def compose_reply(context: ReplyContext) -> ReplyContent:
    """Deterministic reply used when no model is configured."""

    name = f" {context.contact_name}" if context.contact_name else ""
    if context.action == "complete":
        return ReplyContent(
            text=(
                f"Thank you{name}, we have everything we need. "
                "A consultant will prepare your options and contact you shortly."
            )
        )
    if context.action == "handover":
        return ReplyContent(
            text=f"Thank you{name}. A consultant will take over this conversation shortly."
        )
    if context.question_prompt:
        opener = f"Hi{name}!" if not context.collected else f"Thank you{name}."
        return ReplyContent(
            text=f"{opener} {context.question_prompt}", question_key=context.question_key
        )
    return fallback_reply(context)


class ReplyGenerator:
    """Produce reply text for a flow decision.

    The guard applies the time budget; this class raises on provider errors
    so the guard can fall back.
    """

    def __init__(
        self,
        openai_settings: OpenAISettings,
        llm_settings: LLMSettings,
        *,
        client: Any | None = None,
    ) -> None:
        self._openai = openai_settings
        self._llm = llm_settings
        self._client = client

    @property
    def enabled(self) -> bool:
        return self._client is not None or bool(self._openai.api_key)

    async def generate(self, context: ReplyContext) -> ReplyContent:
        if not self.enabled:
            return compose_reply(context)

        client = self._get_client()
        response = await client.chat.completions.create(
            model=self._openai.model,
            messages=self.build_messages(context),
            temperature=self._llm.temperature,
            max_tokens=self._llm.max_tokens,
        )
        content = response.choices[0].message.content or ""
        text = normalize_outbound_text(content)
        if not text:
            raise ValueError("model returned an empty reply")
        if context.question_prompt and context.question_prompt not in text:
            text = f"{text.rstrip()} {context.question_prompt}"
        return ReplyContent(text=text, question_key=context.question_key)

    def build_messages(self, context: ReplyContext) -> list[dict[str, str]]:
        facts = {key: value for key, value in context.collected.items() if not key.startswith("_")}
        instructions = [
            f"Channel: {context.channel}",
            f"Decision: {context.action}",
            f"Known details: {json.dumps(facts, ensure_ascii=False, default=str)}",
        ]
        if context.question_prompt:
            instructions.append(f"Question to ask: {context.question_prompt}")
        elif context.action == "handover":
            instructions.append("Tell the customer a consultant will continue shortly.")
        elif context.action == "complete":
            instructions.append("Confirm we have what we need and a consultant will follow up.")
        return [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "system", "content": "\n".join(instructions)},
            {"role": "user", "content": context.inbound_text[:2000]},
        ]

    def _get_client(self) -> Any:
        if self._client is not None:
            return self._client
        try:
            from openai import AsyncOpenAI
        except ImportError as exc:  # pragma: no cover - guard for missing dependency
            raise RuntimeError("openai package is required for reply generation") from exc

        self._client = AsyncOpenAI(
            api_key=self._openai.api_key,
            base_url=self._openai.base_url,
            timeout=self._openai.timeout_seconds,
        )
        return self._client
