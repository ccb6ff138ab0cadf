"""Rebuild recent conversation state for a session."""
import asyncio
import logging
from datetime import datetime, timezone
from typing import List, Optional, Sequence

import numpy as np
from pydantic import ValidationError

from talentbrain.config import (
    CONTEXT_ACTION_LIMIT,
    CONTEXT_EMBEDDING_AVERAGE_COUNT,
    CONTEXT_MESSAGE_LIMIT,
    DB_TIMEOUT,
)
from talentbrain.errors import DatabaseError
from talentbrain.models import AuditEntry, ConversationContext, Message
from talentbrain.results import StepResult
from talentbrain.store import WorkforceStore

logger = logging.getLogger(__name__)

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def _sort_time(value: Optional[datetime]) -> datetime:
    if value is None:
        return _EPOCH
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def average_embedding(embeddings: Sequence[Sequence[float]], count: int) -> Optional[List[float]]:
    """Element-wise mean of the first ``count`` usable embeddings."""
    usable = []
    dimension = None
    for embedding in embeddings:
        if not embedding:
            continue
        if dimension is None:
            dimension = len(embedding)
        elif len(embedding) != dimension:
            logger.debug("Skipping embedding with dimension %d (expected %d)", len(embedding), dimension)
            continue
        usable.append(embedding)
        if len(usable) >= count:
            break

    if not usable:
        return None
    return np.mean(np.asarray(usable, dtype=float), axis=0).tolist()


class ConversationContextLoader:
    def __init__(self, store: WorkforceStore, timeout: float = DB_TIMEOUT):
        self.store = store
        self.timeout = timeout

    async def load(
        self,
        session_id: Optional[str],
        message_limit: int = CONTEXT_MESSAGE_LIMIT,
        action_limit: int = CONTEXT_ACTION_LIMIT,
        embedding_average_count: int = CONTEXT_EMBEDDING_AVERAGE_COUNT,
    ) -> StepResult[ConversationContext]:
        """
        Recent non-system messages and audit entries, newest first.

        Never raises: any store failure yields an empty, degraded context.
        """
        if not session_id:
            return StepResult.ok(ConversationContext())

        try:
            message_rows, action_rows, summary = await asyncio.wait_for(
                asyncio.gather(
                    self.store.get_recent_messages(session_id, message_limit),
                    self.store.get_recent_actions(session_id, action_limit),
                    self.store.get_session_summary(session_id),
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(f"⚠️  Context load timed out for session {session_id}")
            return StepResult.fallback(ConversationContext(), reason="context load timed out")
        except DatabaseError as e:
            logger.warning(f"⚠️  Context load failed for session {session_id}: {e}")
            return StepResult.fallback(ConversationContext(), reason=str(e))

        history = self._parse(Message, message_rows)
        history = [m for m in history if m.sender != "system"]
        history.sort(key=lambda m: _sort_time(m.timestamp), reverse=True)
        history = history[:message_limit]

        actions = self._parse(AuditEntry, action_rows)
        actions.sort(key=lambda a: _sort_time(a.timestamp), reverse=True)
        actions = actions[:action_limit]

        timeline = sorted(
            [(m.timestamp, m.embedding) for m in history] + [(a.timestamp, a.embedding) for a in actions],
            key=lambda item: _sort_time(item[0]),
            reverse=True,
        )
        context_embedding = average_embedding([emb for _, emb in timeline], embedding_average_count)

        logger.info(
            f"Context for {session_id}: {len(history)} messages, {len(actions)} actions, "
            f"embedding={'yes' if context_embedding else 'no'}"
        )
        return StepResult.ok(
            ConversationContext(
                history=history,
                agent_actions=actions,
                context_embedding=context_embedding,
                summary=summary or None,
            )
        )

    @staticmethod
    def _parse(model, rows):
        parsed = []
        for row in rows or []:
            try:
                parsed.append(model.model_validate(row))
            except ValidationError as e:
                logger.warning(f"Skipping malformed {model.__name__} row: {e.error_count()} errors")
        return parsed
