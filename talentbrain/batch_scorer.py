"""Bounded-concurrency fit scoring over a semantically pre-filtered pool."""
import asyncio
import logging
from typing import Dict, List, Optional, Sequence

from talentbrain.config import (
    BATCH_MAX_CANDIDATES,
    BATCH_MAX_CONCURRENT,
    PREFILTER_SIMILARITY_FLOOR,
)
from talentbrain.errors import InvalidInput, MCPError
from talentbrain.fit_scorer import FitScorer
from talentbrain.models import BatchResult, MatchCandidate
from talentbrain.semantic_matcher import SemanticMatcher

logger = logging.getLogger(__name__)

ANCHOR_TYPES = ("role", "profile")


def chunked(items: Sequence[str], size: int) -> List[List[str]]:
    size = max(1, size)
    return [list(items[i:i + size]) for i in range(0, len(items), size)]


class BatchScorer:
    """
    Two passes:

    1. Pre-filter - up to ``max_candidates`` semantic matches at a low floor,
       restricted to the supplied candidates, padded with the remaining IDs.
    2. Score - chunks of ``max_concurrent`` scored together, each chunk
       awaited before the next starts.
    """

    def __init__(
        self,
        fit_scorer: FitScorer,
        matcher: SemanticMatcher,
        similarity_floor: float = PREFILTER_SIMILARITY_FLOOR,
    ):
        self.fit_scorer = fit_scorer
        self.matcher = matcher
        self.similarity_floor = similarity_floor

    async def batch_score(
        self,
        anchor_id: str,
        candidate_ids: Sequence[str],
        anchor_type: str = "role",
        max_concurrent: int = BATCH_MAX_CONCURRENT,
        max_candidates: int = BATCH_MAX_CANDIDATES,
        continue_on_error: bool = True,
    ) -> List[BatchResult]:
        if not anchor_id:
            raise InvalidInput("Anchor ID is required for batch scoring")
        if anchor_type not in ANCHOR_TYPES:
            raise InvalidInput(f"Unknown anchor type: {anchor_type}")

        # De-duplicate, keep caller order
        candidates = list(dict.fromkeys(c for c in candidate_ids if c))
        if not candidates or max_candidates <= 0:
            return []

        selected, matches = await self._prefilter(anchor_id, anchor_type, candidates, max_candidates)
        logger.info(
            f"🔍 Batch scoring {anchor_type}:{anchor_id} against {len(selected)}/{len(candidates)} candidates "
            f"({len(matches)} semantic, chunk={max_concurrent})"
        )

        results: List[BatchResult] = []
        for chunk in chunked(selected, max_concurrent):
            chunk_results = await asyncio.gather(
                *(
                    self._score_one(anchor_id, anchor_type, candidate_id, matches.get(candidate_id), continue_on_error)
                    for candidate_id in chunk
                )
            )
            results.extend(chunk_results)

        failed = sum(1 for r in results if not r.succeeded)
        if failed:
            logger.warning(f"⚠️  {failed}/{len(results)} candidates failed to score")

        results.sort(key=lambda r: r.score, reverse=True)
        return results[:max_candidates]

    async def _prefilter(
        self, anchor_id: str, anchor_type: str, candidates: List[str], max_candidates: int
    ):
        target_type = "profile" if anchor_type == "role" else "role"
        matched = await self.matcher.match(
            anchor_id, anchor_type, target_type, limit=max_candidates, min_similarity=self.similarity_floor
        )
        if matched.degraded:
            logger.warning(f"Pre-filter degraded ({matched.reason}); padding from candidate list")

        allowed = set(candidates)
        matches: Dict[str, MatchCandidate] = {}
        for match in matched.value:
            if match.id in allowed and match.id not in matches:
                matches[match.id] = match
            if len(matches) >= max_candidates:
                break

        selected = list(matches)
        if len(selected) < max_candidates:
            padding = [c for c in candidates if c not in matches]
            selected.extend(padding[: max_candidates - len(selected)])
        return selected, matches

    async def _score_one(
        self,
        anchor_id: str,
        anchor_type: str,
        candidate_id: str,
        match: Optional[MatchCandidate],
        continue_on_error: bool,
    ) -> BatchResult:
        if anchor_type == "role":
            profile_id, role_id = candidate_id, anchor_id
        else:
            profile_id, role_id = anchor_id, candidate_id

        try:
            fit = await self.fit_scorer.score(profile_id, role_id)
        except MCPError as e:
            if not continue_on_error:
                raise
            logger.warning(f"Scoring failed for {profile_id} → {role_id}: {e}")
            return BatchResult(
                candidate_id=candidate_id, profile_id=profile_id, role_id=role_id, error=str(e), match=match
            )

        return BatchResult(candidate_id=candidate_id, profile_id=profile_id, role_id=role_id, fit=fit, match=match)
