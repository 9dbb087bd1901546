"""Condense long thread histories into a persisted narrative summary.

A summary is (re)written only when the estimated history size passes the
trigger threshold and, if a summary already exists, has grown past the
buffer margin over the size recorded at the last summarization.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import List, Optional, Sequence

from parley.utils.logger import logger

from .config.schema import SummarizationConfig
from .errors import ParleyError
from .messages import MessageTurn
from .providers.base import LLMProvider
from .stores import JsonDocumentStore
from .utils import timestamp

SUMMARIZATION_PROMPT = (
    "Summarize the following conversation. Keep names, decisions, open "
    "questions, numbers and any facts the assistant will need to continue the "
    "conversation. Write a compact narrative, not a transcript.\n\n"
)
SUMMARY_SYSTEM_PROMPT = (
    "You are a helpful assistant that summarizes conversations clearly and concisely."
)
CHARS_PER_TOKEN_CHUNK = 2.5


@dataclass
class ThreadSummary:
    summary: str
    original_turn_count: int = 0
    token_estimate: int = 0
    updated: bool = False
    last_updated: str = ""

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> Optional["ThreadSummary"]:
        if not data or not data.get("summary"):
            return None
        return cls(
            summary=str(data["summary"]),
            original_turn_count=int(data.get("original_turn_count", 0)),
            token_estimate=int(data.get("token_estimate", 0)),
            updated=bool(data.get("updated", False)),
            last_updated=str(data.get("last_updated", "")),
        )


class SummaryStore:
    def __init__(self, store: JsonDocumentStore) -> None:
        self._store = store

    def load(self, thread_id: str) -> Optional[ThreadSummary]:
        return ThreadSummary.from_dict(self._store.get(str(thread_id)))

    def save(self, thread_id: str, summary: ThreadSummary) -> None:
        self._store.set(str(thread_id), asdict(summary))

    def delete(self, thread_id: str) -> bool:
        return self._store.delete(str(thread_id))


def render_transcript(history: Sequence[MessageTurn]) -> str:
    lines: List[str] = []
    for turn in history:
        text = turn.text().strip()
        if not text:
            continue
        role = "Assistant" if turn.role == "assistant" else "User"
        lines.append(f"{role}: {text}")
    return "\n\n".join(lines)


class Summarizer:
    def __init__(
        self,
        provider: LLMProvider,
        store: SummaryStore,
        config: Optional[SummarizationConfig] = None,
    ) -> None:
        self._provider = provider
        self._store = store
        self.config = config or SummarizationConfig()

    @property
    def threshold_tokens(self) -> int:
        return int(self.config.max_context_size * self.config.trigger_percent / 100)

    def should_summarize(
        self, estimate: int, existing: Optional[ThreadSummary] = None
    ) -> bool:
        if estimate <= self.threshold_tokens:
            return False
        if existing is None:
            return True
        margin = 1 + self.config.buffer_percent / 100
        return estimate > existing.token_estimate * margin

    async def estimate_tokens(self, history: Sequence[MessageTurn]) -> int:
        transcript = render_transcript(history)
        if not transcript:
            return 0
        try:
            return int(await self._provider.count_tokens(transcript))
        except Exception as exc:
            logger.warning("Token count failed, estimating from length: %s", exc)
            return len(transcript) // 4

    async def summarize_text(self, text: str, instruction: str = "") -> str:
        """Summarize text too large for one request, chunk by chunk."""
        chunk_size = max(1, int(self.config.max_context_size * CHARS_PER_TOKEN_CHUNK))
        chunks = [text[i : i + chunk_size] for i in range(0, len(text), chunk_size)]
        partials: List[str] = []
        for index, chunk in enumerate(chunks, 1):
            result = await self._provider.chat(
                f"Please summarize the following text chunk:\n\n---\n{chunk}\n---",
                system_prompt="You are a summarization assistant.",
            )
            partials.append(result.text)
            logger.info("Summarized chunk %s/%s", index, len(chunks))
        combined = "\n\n---\n\n".join(partials)
        final = await self._provider.chat(
            f"{instruction or SUMMARIZATION_PROMPT}"
            f"Summaries of consecutive parts:\n---\n{combined}\n---",
            system_prompt="You are a helpful assistant that synthesizes information.",
        )
        return final.text

    async def summarize_conversation(self, history: Sequence[MessageTurn]) -> str:
        transcript = render_transcript(history)
        if not transcript:
            raise ParleyError("No conversation history to summarize.")
        if len(transcript) > self.config.max_context_size * CHARS_PER_TOKEN_CHUNK:
            summary = await self.summarize_text(transcript)
        else:
            result = await self._provider.chat(
                SUMMARIZATION_PROMPT + transcript, system_prompt=SUMMARY_SYSTEM_PROMPT
            )
            summary = result.text
        summary = (summary or "").strip()
        if not summary:
            raise ParleyError("Summary could not be generated.")
        return summary

    async def maybe_summarize(
        self, thread_id: str, history: Sequence[MessageTurn]
    ) -> Optional[ThreadSummary]:
        existing = self._store.load(thread_id)
        if not self.config.enabled:
            return existing
        estimate = await self.estimate_tokens(history)
        if not self.should_summarize(estimate, existing):
            return existing
        logger.info(
            "Summarizing thread=%s turns=%s tokens=%s threshold=%s",
            thread_id,
            len(history),
            estimate,
            self.threshold_tokens,
        )
        try:
            text = await self.summarize_conversation(history)
        except Exception as exc:
            logger.warning("Summarization failed for thread=%s: %s", thread_id, exc)
            return existing
        summary = ThreadSummary(
            summary=text,
            original_turn_count=len(history),
            token_estimate=estimate,
            updated=existing is not None,
            last_updated=timestamp(),
        )
        self._store.save(thread_id, summary)
        return summary

    def present(
        self, history: Sequence[MessageTurn], summary: Optional[ThreadSummary]
    ) -> List[MessageTurn]:
        """History to send alongside ``summary``: the recent tail, starting at a user turn."""
        if summary is None:
            return list(history)
        tail = list(history)[-self.config.max_recent_messages :]
        for index, turn in enumerate(tail):
            if turn.role == "user":
                return tail[index:]
        return []


__all__ = [
    "Summarizer",
    "SummaryStore",
    "ThreadSummary",
    "render_transcript",
]
