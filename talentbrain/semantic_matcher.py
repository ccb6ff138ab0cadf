"""Ranked vector-similarity matches between profiles and roles."""
import asyncio
import logging
from typing import Any, Dict, List, Sequence

from talentbrain.config import VECTOR_TIMEOUT
from talentbrain.errors import DatabaseError
from talentbrain.models import MatchCandidate
from talentbrain.results import StepResult
from talentbrain.store import WorkforceStore

logger = logging.getLogger(__name__)


class SemanticMatcher:
    """
    Wraps the store's vector RPCs.

    Fails soft: a store error or timeout yields an empty, degraded result so
    downstream scoring can carry on without matches.
    """

    def __init__(self, store: WorkforceStore, timeout: float = VECTOR_TIMEOUT):
        self.store = store
        self.timeout = timeout

    async def match(
        self,
        source_id: str,
        source_type: str,
        target_type: str,
        limit: int = 10,
        min_similarity: float = 0.5,
    ) -> StepResult[List[MatchCandidate]]:
        if not source_id or limit <= 0:
            return StepResult.ok([])

        try:
            rows = await asyncio.wait_for(
                self.store.match_embeddings(source_id, source_type, target_type, min_similarity, limit),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(f"⚠️  Semantic match timed out ({source_type}:{source_id} → {target_type})")
            return StepResult.fallback([], reason="vector lookup timed out")
        except DatabaseError as e:
            logger.warning(f"⚠️  Semantic match failed ({source_type}:{source_id} → {target_type}): {e}")
            return StepResult.fallback([], reason=str(e))

        matches = await self._build(rows, target_type, limit, min_similarity)
        logger.info(f"Semantic matches {source_type}:{source_id} → {target_type}: {len(matches)}")
        return StepResult.ok(matches)

    async def match_vector(
        self,
        embedding: Sequence[float],
        target_type: str,
        limit: int = 10,
        min_similarity: float = 0.5,
    ) -> StepResult[List[MatchCandidate]]:
        if not embedding or limit <= 0:
            return StepResult.ok([])

        try:
            rows = await asyncio.wait_for(
                self.store.match_embeddings_by_vector(embedding, target_type, min_similarity, limit),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(f"⚠️  Vector match timed out (→ {target_type})")
            return StepResult.fallback([], reason="vector lookup timed out")
        except DatabaseError as e:
            logger.warning(f"⚠️  Vector match failed (→ {target_type}): {e}")
            return StepResult.fallback([], reason=str(e))

        return StepResult.ok(await self._build(rows, target_type, limit, min_similarity))

    async def _build(
        self, rows: List[Dict[str, Any]], target_type: str, limit: int, min_similarity: float
    ) -> List[MatchCandidate]:
        best: Dict[str, float] = {}
        for row in rows or []:
            entity_id = row.get("id")
            similarity = row.get("similarity")
            if entity_id is None or similarity is None:
                continue
            similarity = min(1.0, max(0.0, float(similarity)))
            if similarity < min_similarity:
                continue
            entity_id = str(entity_id)
            best[entity_id] = max(similarity, best.get(entity_id, 0.0))

        ranked = sorted(best.items(), key=lambda item: item[1], reverse=True)[:limit]
        if not ranked:
            return []

        try:
            details = await self.store.get_entity_details(target_type, [entity_id for entity_id, _ in ranked])
        except DatabaseError as e:
            logger.warning(f"Could not enrich {target_type} matches: {e}")
            details = {}

        matches = []
        for entity_id, similarity in ranked:
            info = details.get(entity_id) or {}
            matches.append(
                MatchCandidate(
                    id=entity_id,
                    type=target_type,
                    similarity=similarity,
                    name=info.get("name") or "Unnamed",
                    summary=info.get("summary"),
                    metadata={k: v for k, v in info.items() if k not in ("id", "name", "summary")},
                )
            )
        return matches
