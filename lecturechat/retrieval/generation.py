"""Claude-powered answer generation with time-range citations."""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import anthropic
from anthropic import Anthropic
from anthropic.types import TextBlock

from lecturechat.errors import (
    GenerationError,
    LectureChatError,
    RateLimitedError,
    TransientServiceError,
    ValidationError,
)
from lecturechat.ingestion.embeddings import Embedder
from lecturechat.ingestion.models import Recording
from lecturechat.ingestion.storage import SupabaseRecordStore
from lecturechat.pipeline_config import RecordingStatus
from lecturechat.retrieval.citations import (
    Citation,
    build_sources,
    extract_citations,
    fallback_citations,
    format_timestamp,
)
from lecturechat.retrieval.search import ContextChunk, retrieve_context
from lecturechat.retry import RetryPolicy
from lecturechat.vectorstore.index import VectorIndex

logger = logging.getLogger(__name__)

NO_INFORMATION_ANSWER = (
    "I couldn't find relevant information in this recording to answer your question. "
    "This might be because the recording hasn't been fully processed yet, or your question "
    "is about content not covered in this recording. Could you try rephrasing your question "
    "or asking about a different topic?"
)

SERVICE_UNAVAILABLE_ANSWER = (
    "I'm having trouble generating an answer right now. "
    "The most relevant parts of the recording are linked below."
)

SEARCH_UNAVAILABLE_ANSWER = (
    "I'm having trouble searching this recording right now. Please try again in a moment."
)


def build_system_prompt(recording: Recording, context: list[ContextChunk]) -> str:
    context_text = "\n\n".join(
        f"[Context {c.index}] ({format_timestamp(c.start)} - {format_timestamp(c.end)}): {c.text}"
        for c in context
    )
    subject = recording.subject or "general"
    return (
        "You are an assistant helping users understand recorded content. You have access "
        f'to transcribed segments from a recording titled "{recording.title}" in the '
        f'subject area of "{subject}".\n\n'
        "Answer the user's question based ONLY on the provided context.\n\n"
        "Rules:\n"
        "- Answer directly and concisely based on the provided context.\n"
        "- ALWAYS reference the time where information appears using the format "
        "[MM:SS] or [HH:MM:SS].\n"
        "- If the context doesn't contain enough information, say so clearly.\n"
        "- Don't make up information that's not in the provided context.\n"
        "- If multiple time ranges are relevant, mention all of them.\n\n"
        'Example: "The concept is introduced at [05:30], and worked examples follow at [12:45]."\n\n'
        f"Context from the recording transcript:\n{context_text}"
    )


def _from_anthropic_error(exc: anthropic.AnthropicError) -> LectureChatError:
    if isinstance(exc, anthropic.RateLimitError):
        return RateLimitedError(f"Claude rate limit: {exc}")
    if isinstance(exc, (anthropic.APIConnectionError, anthropic.InternalServerError)):
        return TransientServiceError(f"Claude unavailable: {exc}")
    if isinstance(exc, anthropic.APIStatusError) and exc.status_code >= 500:
        return TransientServiceError(f"Claude error {exc.status_code}: {exc}")
    return GenerationError(f"Claude API error: {exc}")


class ClaudeAnswerGenerator:
    """Generates answers with Claude from a system prompt and a question."""

    def __init__(
        self,
        client: Anthropic,
        model: str,
        max_tokens: int = 500,
        temperature: float = 0.7,
        retry_policy: RetryPolicy | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.client = client
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.retry_policy = retry_policy or RetryPolicy()
        self.sleep = sleep

    def _request(self, system: str, question: str) -> str:
        try:
            response = self.client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
                system=system,
                messages=[{"role": "user", "content": f"Question: {question}"}],
            )
        except anthropic.AnthropicError as exc:
            raise _from_anthropic_error(exc) from exc

        # We always request plain text, so the first block should be a TextBlock
        block = response.content[0]
        if not isinstance(block, TextBlock):
            raise GenerationError(f"Expected TextBlock from Claude, got {type(block).__name__}")
        return block.text

    def generate(self, system: str, question: str) -> str:
        return self.retry_policy.call(self._request, system, question, sleep=self.sleep)


@dataclass
class Answer:
    answer: str
    citations: list[Citation] = field(default_factory=list)
    sources: list[dict[str, Any]] = field(default_factory=list)
    conversation_id: str = ""
    exchange_id: str | None = None


def new_conversation_id() -> str:
    return f"conv_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


class AnswerEngine:
    """Retrieval-augmented question answering over one processed recording."""

    def __init__(
        self,
        store: SupabaseRecordStore,
        embedder: Embedder,
        index: VectorIndex,
        generator: ClaudeAnswerGenerator,
    ):
        self.store = store
        self.embedder = embedder
        self.index = index
        self.generator = generator

    def ask(self, recording_id: str, question: str, conversation_id: str | None = None) -> Answer:
        """Answer *question* from the content of *recording_id*.

        Service failures do not raise: the user gets a fallback message, with
        citations to the retrieved chunks when there are any.

        Raises:
            ValidationError: Empty question, or the recording is not ready.
            NotFoundError: No such recording.
        """
        question = (question or "").strip()
        if not question:
            raise ValidationError("Question is required")

        recording = self.store.get_recording(recording_id)
        if recording.status != RecordingStatus.READY.value:
            raise ValidationError(
                f"Recording is not ready for questions. Current status: {recording.status}"
            )

        conversation_id = conversation_id or new_conversation_id()
        result = self._answer(recording, question)
        result.conversation_id = conversation_id

        row = self.store.store_exchange(
            recording_id=recording_id,
            conversation_id=conversation_id,
            question=question,
            answer=result.answer,
            citations=[c.to_dict() for c in result.citations],
            sources=result.sources,
        )
        result.exchange_id = str(row["id"]) if row.get("id") is not None else None
        return result

    def _answer(self, recording: Recording, question: str) -> Answer:
        try:
            context = retrieve_context(self.embedder, self.index, recording.id, question)
        except LectureChatError as exc:
            logger.error("Context retrieval failed for %s: %s", recording.id, exc)
            return Answer(answer=SEARCH_UNAVAILABLE_ANSWER)

        if not context:
            logger.info("No relevant context for recording %s", recording.id)
            return Answer(answer=NO_INFORMATION_ANSWER)

        sources = build_sources(context)
        try:
            text = self.generator.generate(build_system_prompt(recording, context), question)
        except LectureChatError as exc:
            logger.error("Answer generation failed for %s: %s", recording.id, exc)
            return Answer(
                answer=SERVICE_UNAVAILABLE_ANSWER,
                citations=fallback_citations(context),
                sources=sources,
            )

        citations = extract_citations(text, context)
        logger.info("Answered question on %s with %d citations", recording.id, len(citations))
        return Answer(answer=text, citations=citations, sources=sources)

    def history(
        self, recording_id: str, conversation_id: str | None = None, limit: int = 50
    ) -> list[dict[str, Any]]:
        self.store.get_recording(recording_id)
        return self.store.list_exchanges(recording_id, conversation_id, limit)

    def delete_conversation(self, conversation_id: str) -> int:
        deleted = self.store.delete_conversation(conversation_id)
        logger.info("Deleted %d exchange(s) of conversation %s", deleted, conversation_id)
        return deleted

    def delete_exchange(self, exchange_id: str) -> None:
        self.store.delete_exchange(exchange_id)
