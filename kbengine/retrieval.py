"""Question answering over stored chunks with adaptive threshold widening."""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING

from .config import config
from .errors import UpstreamError, ValidationError
from .models import Match, RetrievalResult

if TYPE_CHECKING:
    from .answering import AnswerGateway
    from .audit import AuditRecorder
    from .embeddings import EmbeddingGateway
    from .vector_store import VectorStoreGateway

logger = config.get_logger(__name__)

CONTEXT_SEPARATOR = "\n\n"


def build_system_instruction(no_content_answer: str) -> str:
    return (
        "You are a knowledge base assistant. Answer the question using only the "
        "supplied context and do not make anything up. If the answer cannot be "
        f"derived from the context, reply exactly: '{no_content_answer}'"
    )


def build_user_prompt(question: str, context: str) -> str:
    return f"Question: {question}\n\nContext:\n{context}"


def assemble_context(matches: Sequence[Match], max_length: int) -> str:
    """Join match contents, best first, within a character budget.

    Whole chunks are added while they fit. The top match is always present
    and is only cut when it alone exceeds the budget; lower-ranked chunks
    that do not fit are dropped.

    Returns:
        The context string, never longer than ``max_length``.
    """
    parts: list[str] = []
    used = 0
    for match in matches:
        if not match.content:
            continue
        if not parts:
            head = match.content[:max_length]
            parts.append(head)
            used = len(head)
            continue
        needed = len(CONTEXT_SEPARATOR) + len(match.content)
        if used + needed > max_length:
            break
        parts.append(match.content)
        used += needed
    return CONTEXT_SEPARATOR.join(parts)


class RetrievalEngine:
    """Embeds a question, finds similar chunks and composes an answer."""

    def __init__(  # noqa: PLR0913
        self,
        embedder: EmbeddingGateway,
        store: VectorStoreGateway,
        answerer: AnswerGateway,
        audit: AuditRecorder | None = None,
        *,
        default_threshold: float | None = None,
        default_top_k: int | None = None,
        fallback_threshold: float | None = None,
        fallback_top_k_multiplier: int | None = None,
        max_context_length: int | None = None,
        no_content_answer: str | None = None,
    ) -> None:
        self.embedder = embedder
        self.store = store
        self.answerer = answerer
        self.audit = audit
        self.default_threshold = (
            default_threshold
            if default_threshold is not None
            else config.DEFAULT_THRESHOLD
        )
        self.default_top_k = (
            default_top_k if default_top_k is not None else config.DEFAULT_TOP_K
        )
        self.fallback_threshold = (
            fallback_threshold
            if fallback_threshold is not None
            else config.FALLBACK_THRESHOLD
        )
        self.fallback_top_k_multiplier = (
            fallback_top_k_multiplier
            if fallback_top_k_multiplier is not None
            else config.FALLBACK_TOP_K_MULTIPLIER
        )
        self.max_context_length = (
            max_context_length
            if max_context_length is not None
            else config.MAX_CONTEXT_LENGTH
        )
        self.no_content_answer = no_content_answer or config.NO_CONTENT_ANSWER

    async def retrieve(
        self,
        question: str,
        threshold: float | None = None,
        top_k: int | None = None,
    ) -> RetrievalResult:
        """Answer a question from the most similar stored chunks.

        Returns:
            The answer with its matches. When nothing relevant is stored the
            answer is the canned no-content answer and matches are empty.

        Raises:
            ValidationError: If the question is blank.
            UpstreamError: If embedding or answer generation fails.
            StoreError: If the similarity search fails.
        """
        if not question or not question.strip():
            msg = "question must not be empty"
            raise ValidationError(msg)
        question = question.strip()
        threshold = self.default_threshold if threshold is None else threshold
        top_k = self.default_top_k if top_k is None else top_k
        logger.info("Processing query: %s (threshold=%s, top_k=%s)", question, threshold, top_k)

        vector = await self.embedder.embed(question)
        if vector is None or len(vector) == 0:
            msg = "question embedding returned no vector"
            raise UpstreamError(msg)

        matches = await self.store.similarity_search(vector, threshold, top_k)
        searched_threshold, searched_top_k = threshold, top_k
        widened = False
        if not matches:
            searched_threshold = self.fallback_threshold
            searched_top_k = top_k * self.fallback_top_k_multiplier
            logger.info(
                "No matches, widening to threshold=%s top_k=%s",
                searched_threshold,
                searched_top_k,
            )
            matches = await self.store.similarity_search(
                vector, searched_threshold, searched_top_k
            )
            widened = True

        if not matches:
            answer = self.no_content_answer
        else:
            context = assemble_context(matches, self.max_context_length)
            logger.info("Matched %d chunks, generating answer", len(matches))
            generated = await self.answerer.complete(
                build_system_instruction(self.no_content_answer),
                build_user_prompt(question, context),
            )
            answer = generated or self.no_content_answer

        if self.audit is not None:
            await self.audit.record_query(
                question=question,
                matched_count=len(matches),
                threshold=searched_threshold,
                top_k=searched_top_k,
                answer=answer,
            )

        return RetrievalResult(
            question=question,
            answer=answer,
            matches=list(matches),
            threshold=threshold,
            top_k=top_k,
            widened=widened and bool(matches),
        )
