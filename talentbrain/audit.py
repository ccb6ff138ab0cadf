"""Append-only agent action trail."""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from talentbrain.config import DB_TIMEOUT
from talentbrain.errors import DatabaseError, InvalidInput
from talentbrain.models import AuditEntry
from talentbrain.store import WorkforceStore

logger = logging.getLogger(__name__)


def create_action_payload(action_type: str, details: Dict[str, Any]) -> Dict[str, Any]:
    """Consistent payload schema across action types."""
    return {"type": action_type, "details": details, "version": "1.0"}


class ActionLogger:
    def __init__(self, store: WorkforceStore, timeout: float = DB_TIMEOUT):
        self.store = store
        self.timeout = timeout

    async def log(
        self,
        entity_type: str,
        entity_id: str,
        payload: Dict[str, Any],
        *,
        session_id: Optional[str] = None,
        semantic_metrics: Optional[Dict[str, Any]] = None,
    ) -> AuditEntry:
        """
        Insert one audit row.

        Raises:
            InvalidInput: blank entity ID or empty payload
            DatabaseError: insert failed or timed out
        """
        if not entity_id or not str(entity_id).strip():
            raise InvalidInput("Entity ID is required")
        if not payload:
            raise InvalidInput("Payload cannot be empty")

        timestamp = datetime.now(timezone.utc)
        entry = AuditEntry(
            entity_type=entity_type,
            entity_id=str(entity_id),
            payload={**payload, "timestamp": timestamp.isoformat()},
            semantic_metrics=semantic_metrics,
            session_id=session_id,
            timestamp=timestamp,
        )

        try:
            entry_id = await asyncio.wait_for(
                self.store.insert_agent_action(entry.model_dump(exclude_none=True)),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            raise DatabaseError("Failed to log agent action: timed out") from e

        return entry.model_copy(update={"id": entry_id})

    async def record(self, entity_type: str, entity_id: str, payload: Dict[str, Any], **kwargs) -> Optional[AuditEntry]:
        """Like ``log`` but never raises; audit failures only reach the operator log."""
        try:
            entry = await self.log(entity_type, entity_id, payload, **kwargs)
        except (InvalidInput, DatabaseError) as e:
            logger.warning(f"⚠️  Audit log skipped ({entity_type}:{entity_id}): {e}")
            return None

        logger.debug("Audit %s:%s %s", entity_type, entity_id, payload.get("type") or payload.get("action"))
        return entry
