"""The question pipeline: one question in, one answer-shaped payload out.

    Received → Classified → ContextGathered → ModelCalled → Validated → Delivered
                                                          ↘ Rejected → FallbackDelivered

Every failure after classification ends in FallbackDelivered, so callers of
ask_question() always get an answer. Only input and protocol problems (bad
question, unknown session, no access, storage write failure) raise, as
ChatError subclasses carrying a code.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from prtalk_core.broadcast import MESSAGE_NEW, MESSAGE_TYPING, SESSION_UPDATED
from prtalk_core.classifier import QueryClassifier
from prtalk_core.config import resolve_models
from prtalk_core.context import ContextAggregator
from prtalk_core.conversation import ConversationStateTracker, InMemoryConversationStore
from prtalk_core.errors import (
    ArtifactNotFound,
    ChatError,
    InvalidQuestion,
    InvalidResponse,
    MessageFailed,
    ModelRateLimited,
    ModelTimeout,
    ModelUnavailable,
    SessionNotFound,
    Unauthorized,
)
from prtalk_core.fallback import FallbackHandler
from prtalk_core.orchestrator import ModelOrchestrator, get_model_client
from prtalk_core.types import CompletionOptions
from prtalk_core.validator import ResponseValidator
from prtalk_store.models import ContentKind, ScopeKind, SenderKind, Session, SessionScope, Turn, utcnow

if TYPE_CHECKING:
    from prtalk_core.broadcast import SessionBroadcaster
    from prtalk_core.providers.base import BaseModelClient
    from prtalk_core.types import Classification, Evaluation, ModelAnswer
    from prtalk_store.base import BaseStore

logger = logging.getLogger(__name__)


class QuestionState(str, Enum):
    RECEIVED = "received"
    CLASSIFIED = "classified"
    CONTEXT_GATHERED = "context-gathered"
    MODEL_CALLED = "model-called"
    VALIDATED = "validated"
    DELIVERED = "delivered"
    REJECTED = "rejected"
    FALLBACK_DELIVERED = "fallback-delivered"


@dataclass
class ChatResponse:
    """What ask_question returns: the stored answer plus how it was produced."""

    message_id: str
    session_id: str
    answer: ModelAnswer
    classification: Classification
    state: QuestionState
    context_sources: list[str] = field(default_factory=list)
    evaluation: Evaluation | None = None
    states: list[QuestionState] = field(default_factory=list)

    @property
    def is_fallback(self) -> bool:
        return self.answer.origin == "fallback"


@dataclass
class SessionAnalytics:
    query_types: dict[str, int]
    context_usage: dict[str, int]
    avg_confidence: float
    message_count: int
    fallback_count: int = 0


def _new_id() -> str:
    return uuid.uuid4().hex


class ChatAssistant:
    def __init__(
        self,
        store: BaseStore,
        orchestrator: ModelOrchestrator | None = None,
        classifier: QueryClassifier | None = None,
        aggregator: ContextAggregator | None = None,
        tracker: ConversationStateTracker | None = None,
        validator: ResponseValidator | None = None,
        fallback: FallbackHandler | None = None,
        broadcaster: SessionBroadcaster | None = None,
        history_turns: int = 5,
        max_question_chars: int = 4000,
    ):
        self.store = store
        self.orchestrator = orchestrator
        self.classifier = classifier or QueryClassifier()
        self.aggregator = aggregator or ContextAggregator(store)
        if tracker is None:
            tracker = getattr(orchestrator, "tracker", None) or ConversationStateTracker()
        self.tracker = tracker
        # The orchestrator reads the same memory the assistant writes.
        if orchestrator is not None:
            orchestrator.tracker = self.tracker
        self.validator = validator or ResponseValidator()
        self.fallback = fallback or FallbackHandler()
        self.broadcaster = broadcaster
        self.history_turns = history_turns
        self.max_question_chars = max_question_chars

    @classmethod
    def from_config(
        cls,
        store: BaseStore,
        config: dict,
        client: BaseModelClient | None = None,
        broadcaster: SessionBroadcaster | None = None,
    ) -> ChatAssistant:
        """Wire every stage from a load_config() dict."""
        primary, secondary = resolve_models(config)
        tracker = ConversationStateTracker(
            InMemoryConversationStore(memory_turns=config.get("memory_turns", 20)),
            repetition_threshold=config.get("repetition_threshold", 0.7),
        )
        orchestrator = ModelOrchestrator(
            client or get_model_client(config),
            primary_model=primary,
            secondary_model=secondary,
            tracker=tracker,
            options=CompletionOptions(
                temperature=config.get("temperature", 0.7),
                max_tokens=config.get("max_tokens", 2000),
                json_mode=config.get("json_mode", True),
            ),
            max_attempts=config.get("max_attempts", 3),
            backoff_seconds=config.get("backoff_seconds", 1.0),
            history_turns=config.get("history_turns", 5),
            history_chars=config.get("history_chars", 200),
        )
        return cls(
            store,
            orchestrator,
            aggregator=ContextAggregator.from_config(store, config),
            tracker=tracker,
            validator=ResponseValidator(
                hallucination_threshold=config.get("hallucination_threshold", 0.7),
                relevance_threshold=config.get("relevance_threshold", 0.3),
            ),
            broadcaster=broadcaster,
            history_turns=config.get("history_turns", 5),
            max_question_chars=config.get("max_question_chars", 4000),
        )

    # ------------------------------------------------------------------ #
    # Sessions                                                             #
    # ------------------------------------------------------------------ #

    async def create_session(
        self,
        user_id: str,
        repo: str,
        pr_number: int | None = None,
        title: str | None = None,
        granted_user_ids: set[str] | None = None,
    ) -> Session:
        """Open a session on one PR (artifact) or, without pr_number, on the whole repository."""
        if "/" not in repo:
            raise InvalidQuestion(f"Repository must look like 'owner/name', got {repo!r}")

        if pr_number is not None:
            scope = SessionScope(kind=ScopeKind.ARTIFACT, repo=repo, pr_number=pr_number)
            pull = await asyncio.to_thread(self.store.get_artifact_metadata, scope)
            if pull is None:
                raise ArtifactNotFound(f"{repo}#{pr_number} is not loaded. Run `prtalk fetch` first.")
            default_title = f"Chat about PR #{pr_number}: {pull.title[:50]}"
        else:
            scope = SessionScope(kind=ScopeKind.COLLECTION, repo=repo)
            overview = await asyncio.to_thread(self.store.get_repository_overview, repo)
            if overview is None:
                raise ArtifactNotFound(f"No pull requests of {repo} are loaded. Run `prtalk fetch` first.")
            default_title = f"Chat about {repo}"

        session = Session(
            session_id=_new_id(),
            user_id=user_id,
            scope=scope,
            title=title or default_title,
            granted_user_ids=set(granted_user_ids or ()),
        )
        await asyncio.to_thread(self.store.create_session, session)
        logger.info("Created session %s for %s on %s", session.session_id, user_id, scope.artifact_ref or repo)
        return session

    async def delete_session(self, session_id: str, user_id: str) -> None:
        """Soft-close a session. Only its owner may do this."""
        session = await self._load_session(session_id, user_id)
        if session.user_id != user_id:
            raise Unauthorized(f"Only the owner can delete session {session_id}")
        now = utcnow()
        await asyncio.to_thread(self.store.close_session, session_id, now)
        await self.tracker.forget(session_id)
        await self._broadcast(session_id, SESSION_UPDATED, {"session_id": session_id, "closed_at": now.isoformat()})

    async def list_sessions(self, user_id: str) -> list[Session]:
        return await asyncio.to_thread(self.store.list_sessions, user_id)

    async def history(self, session_id: str, user_id: str, limit: int | None = None) -> list[Turn]:
        await self._load_session(session_id, user_id)
        return await asyncio.to_thread(self.store.list_turns, session_id, limit)

    async def session_analytics(self, session_id: str, user_id: str) -> SessionAnalytics:
        await self._load_session(session_id, user_id)
        turns = await asyncio.to_thread(self.store.list_turns, session_id)
        answers = [t for t in turns if t.sender is SenderKind.ASSISTANT]

        query_types: Counter[str] = Counter(t.classification for t in answers if t.classification)
        context_usage: Counter[str] = Counter()
        confidences = []
        fallbacks = 0
        for turn in answers:
            meta = turn.metadata or {}
            context_usage.update(meta.get("context_sources") or [])
            if isinstance(meta.get("confidence"), (int, float)):
                confidences.append(meta["confidence"])
            if meta.get("origin") == "fallback":
                fallbacks += 1
        return SessionAnalytics(
            query_types=dict(query_types),
            context_usage=dict(context_usage),
            avg_confidence=sum(confidences) / len(confidences) if confidences else 0.0,
            message_count=len(answers),
            fallback_count=fallbacks,
        )

    # ------------------------------------------------------------------ #
    # Questions                                                            #
    # ------------------------------------------------------------------ #

    async def ask_question(self, session_id: str, user_id: str, question: str) -> ChatResponse:
        if self.orchestrator is None:
            raise RuntimeError("ChatAssistant was built without a model orchestrator")
        question = self._validate_question(question)
        session = await self._load_session(session_id, user_id)

        history = await asyncio.to_thread(self.store.list_turns, session_id, self.history_turns)
        await self._persist(
            Turn(turn_id=_new_id(), session_id=session_id, sender=SenderKind.ASKER, content=question)
        )

        states = [QuestionState.RECEIVED]
        classification = self.classifier.classify(question, history)
        states.append(QuestionState.CLASSIFIED)
        logger.info(
            "Session %s: %s question (%.2f)", session_id, classification.category.value, classification.confidence
        )

        sources: list[str] = []
        evaluation = None
        typing = False
        try:
            bundle, sources = await self.aggregator.gather(classification, session)
            states.append(QuestionState.CONTEXT_GATHERED)
            if bundle.is_empty:
                answer = self.fallback.for_missing_context(classification.category)
            else:
                typing = await self._typing(session_id, True)
                answer, evaluation = await self._answer(
                    session, question, classification, bundle, sources, history, states
                )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception("Unexpected failure in session %s after %s", session_id, states[-1].value)
            answer = self.fallback.for_unknown(e)

        if states[-1] is not QuestionState.DELIVERED:
            states.extend((QuestionState.REJECTED, QuestionState.FALLBACK_DELIVERED))
        state = states[-1]

        try:
            if not answer.text.strip():
                raise InvalidResponse("The assistant produced an empty answer")
            turn = self._answer_turn(session_id, answer, classification, sources, evaluation, states)
            await self._persist(turn)
            await asyncio.to_thread(self.store.touch_session, session_id, turn.created_at)
            await self._broadcast(session_id, MESSAGE_NEW, _turn_payload(turn))
            await self._broadcast(
                session_id,
                SESSION_UPDATED,
                {"session_id": session_id, "last_activity": turn.created_at.isoformat()},
            )
        finally:
            if typing:
                await self._typing(session_id, False)

        return ChatResponse(
            message_id=turn.turn_id,
            session_id=session_id,
            answer=answer,
            classification=classification,
            state=state,
            context_sources=sources,
            evaluation=evaluation,
            states=states,
        )

    async def submit(self, connection_id: str, session_id: str, question: str) -> ChatResponse | None:
        """Ask on behalf of a broadcast connection; protocol errors go back to it as error events."""
        if self.broadcaster is None:
            raise RuntimeError("submit() needs a broadcaster")
        connection = self.broadcaster.connection(connection_id)
        if connection is None:
            raise KeyError(f"Unknown connection {connection_id!r}")
        try:
            return await self.ask_question(session_id, connection.user_id, question)
        except ChatError as e:
            logger.warning("Question from %s rejected: %s (%s)", connection_id, e, e.code)
            await self.broadcaster.send_error(connection_id, e.code, e.message)
            return None

    # ------------------------------------------------------------------ #
    # Pipeline stages                                                      #
    # ------------------------------------------------------------------ #

    async def _answer(self, session, question, classification, bundle, sources, history, states):
        """Call the models and validate; appends each state reached to `states`."""
        states.append(QuestionState.MODEL_CALLED)
        try:
            answer = await self.orchestrator.answer(
                question, classification, bundle, session_id=session.session_id, history=history
            )
        except ModelUnavailable as e:
            logger.error("Models unavailable for session %s: %s", session.session_id, e.last_error)
            return self._for_model_error(e.last_error), None

        evaluation = self.validator.evaluate(question, answer, bundle)
        if not evaluation.valid:
            logger.warning("Answer rejected in session %s: %s", session.session_id, "; ".join(evaluation.issues))
            return self.fallback.for_invalid_response(answer, question), evaluation

        states.append(QuestionState.VALIDATED)
        await self.tracker.update(session.session_id, question, classification, answer.text, list(sources))
        states.append(QuestionState.DELIVERED)
        return answer, evaluation

    def _for_model_error(self, error: BaseException | None) -> ModelAnswer:
        if isinstance(error, ModelRateLimited):
            return self.fallback.for_rate_limit()
        if isinstance(error, ModelTimeout):
            return self.fallback.for_timeout()
        return self.fallback.for_model_failure()

    def _validate_question(self, question) -> str:
        if not isinstance(question, str) or not question.strip():
            raise InvalidQuestion("Question must be a non-empty string")
        question = question.strip()
        if len(question) > self.max_question_chars:
            raise InvalidQuestion(f"Question is longer than {self.max_question_chars} characters")
        return question

    async def _load_session(self, session_id: str, user_id: str) -> Session:
        session = await asyncio.to_thread(self.store.get_session, session_id)
        if session is None or session.is_closed:
            raise SessionNotFound(f"Session {session_id} not found")
        if not session.can_be_read_by(user_id):
            raise Unauthorized(f"{user_id} has no access to session {session_id}")
        return session

    async def _persist(self, turn: Turn) -> None:
        try:
            await asyncio.to_thread(self.store.append_turn, turn)
        except Exception as e:
            logger.exception("Could not store turn for session %s", turn.session_id)
            raise MessageFailed("Failed to store message") from e

    @staticmethod
    def _answer_turn(session_id, answer, classification, sources, evaluation, states) -> Turn:
        metadata = {
            "followups": list(answer.followups),
            "context_sources": list(sources),
            "context_used": list(answer.context_used),
            "sources": list(answer.sources),
            "confidence": answer.confidence,
            "origin": answer.origin,
            "state": states[-1].value,
            "states": [s.value for s in states],
        }
        if evaluation is not None:
            metadata["hallucination_score"] = evaluation.hallucination_score
            metadata["relevance_score"] = evaluation.relevance_score
            metadata["issues"] = list(evaluation.issues)
        return Turn(
            turn_id=_new_id(),
            session_id=session_id,
            sender=SenderKind.ASSISTANT,
            content=answer.text,
            content_kind=answer.content_kind if isinstance(answer.content_kind, ContentKind) else ContentKind.TEXT,
            classification=classification.category.value,
            metadata=metadata,
        )

    # ------------------------------------------------------------------ #
    # Events                                                               #
    # ------------------------------------------------------------------ #

    async def _broadcast(self, session_id: str, event: str, payload: dict) -> None:
        if self.broadcaster is None:
            return
        try:
            await self.broadcaster.broadcast(session_id, event, payload)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Broadcast of %s failed for session %s", event, session_id)

    async def _typing(self, session_id: str, is_typing: bool) -> bool:
        await self._broadcast(session_id, MESSAGE_TYPING, {"session_id": session_id, "is_typing": is_typing})
        return is_typing


def _turn_payload(turn: Turn) -> dict:
    meta = turn.metadata or {}
    return {
        "message": {
            "message_id": turn.turn_id,
            "sender": turn.sender.value,
            "content_kind": turn.content_kind.value,
            "content": turn.content,
            "classification": turn.classification,
            "created_at": turn.created_at.isoformat(),
        },
        "response_metadata": {
            "context_used": meta.get("context_used", []),
            "followups": meta.get("followups", []),
            "confidence": meta.get("confidence"),
            "origin": meta.get("origin"),
        },
    }
