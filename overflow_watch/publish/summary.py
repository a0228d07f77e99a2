"""Cycle summaries — a short paragraph describing a batch of events.

GeminiSummarizer asks Gemini Flash (through LangChain) for the text and
falls back to the deterministic template whenever the model is unavailable.
"""

from __future__ import annotations

import asyncio
import logging
import os
from abc import ABC, abstractmethod
from typing import Any, Callable

from overflow_watch.domain.event import DischargeEvent
from overflow_watch.foundation.durations import format_duration

logger = logging.getLogger(__name__)


class Summarizer(ABC):
    @abstractmethod
    async def summarize(self, events: list[DischargeEvent]) -> str:
        ...


class TemplateSummarizer(Summarizer):
    """Plain factual summary; never fails."""

    async def summarize(self, events: list[DischargeEvent]) -> str:
        return template_summary(events)


def template_summary(events: list[DischargeEvent]) -> str:
    if not events:
        return "No discharge events in this cycle."
    total = sum(e.duration_minutes or 0 for e in events)
    longest = max(events, key=lambda e: e.duration_minutes or 0)
    companies = sorted({e.source_name or e.source_id for e in events})
    where = longest.watercourse or longest.site_name or longest.site_id
    return (
        f"{len(events)} storm overflow discharge(s) totalling {format_duration(total)} "
        f"were reported by {', '.join(companies)}. "
        f"The longest lasted {format_duration(longest.duration_minutes)} into {where}."
    )


def _history_note(event: DischargeEvent) -> str:
    history = event.history
    if history is None:
        return ""
    note = f"; {history.spill_count_2023} spill(s) at this site in 2023"
    litres = event.estimated_volume_litres()
    if litres is not None:
        note += f", up to an estimated {litres:,} litres this time"
    return note


def _prompt(events: list[DischargeEvent]) -> str:
    lines = [
        f"- {e.source_name or e.source_id}, site {e.site_name or e.site_id}, "
        f"into {e.watercourse or 'an unnamed watercourse'}, "
        f"{format_duration(e.duration_minutes)}{_history_note(e)}"
        for e in events
    ]
    return (
        "Write a factual two-sentence summary, in British English and without "
        "speculation, of these completed storm overflow sewage discharges:\n"
        + "\n".join(lines)
    )


def _default_llm_factory(model: str, temperature: float, max_output_tokens: int) -> Callable[[], Any]:
    def factory():
        from langchain_google_genai import ChatGoogleGenerativeAI

        api_key = os.environ.get("GOOGLE_API_KEY") or os.environ.get("OVERFLOW_GEMINI_API_KEY")
        if not api_key:
            raise RuntimeError(
                "Gemini API key not found. Set GOOGLE_API_KEY or OVERFLOW_GEMINI_API_KEY."
            )
        return ChatGoogleGenerativeAI(
            model=model,
            google_api_key=api_key,
            temperature=temperature,
            max_output_tokens=max_output_tokens,
        )

    return factory


class GeminiSummarizer(Summarizer):
    """LLM-written summary with a template fallback.

    Args:
        llm_factory: Zero-argument callable returning a LangChain chat model
            (tests inject a mock).  Defaults to Gemini configured from the
            environment.
    """

    def __init__(
        self,
        llm_factory: Callable[[], Any] | None = None,
        model: str = "gemini-2.0-flash",
        temperature: float = 0.3,
        max_output_tokens: int = 512,
    ) -> None:
        self._factory = llm_factory or _default_llm_factory(model, temperature, max_output_tokens)
        self._llm: Any = None

    async def summarize(self, events: list[DischargeEvent]) -> str:
        if not events:
            return template_summary(events)
        try:
            if self._llm is None:
                self._llm = self._factory()
            # Blocking client call: keep it off the event loop.
            response = await asyncio.to_thread(self._llm.invoke, _prompt(events))
            text = str(getattr(response, "content", response)).strip()
            if not text:
                raise ValueError("empty completion")
            return text
        except Exception as exc:
            logger.warning("LLM summary failed, using template: %s", exc)
            return template_summary(events)
