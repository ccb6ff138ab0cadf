"""Combine gap analysis and semantic similarity into a 0-100 fit score."""
import asyncio
import logging
import math
from typing import List, Optional

from talentbrain.config import DEFAULT_SCORING_POLICY, VECTOR_TIMEOUT, ScoringPolicy
from talentbrain.errors import DatabaseError, InvalidInput
from talentbrain.gap_analyzer import GapAnalyzer
from talentbrain.models import FitScore, GapRecord
from talentbrain.store import WorkforceStore

logger = logging.getLogger(__name__)


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def gap_sub_score(gaps: List[GapRecord], policy: ScoringPolicy = DEFAULT_SCORING_POLICY) -> float:
    """100 × (1 − weighted shortfall / total); 100 when the role requires nothing."""
    total = len(gaps)
    if total == 0:
        return 100.0

    missing = sum(1 for g in gaps if g.gap_type == "missing")
    insufficient = sum(1 for g in gaps if g.gap_type == "insufficient")
    shortfall = missing * policy.missing_penalty + insufficient * policy.insufficient_penalty
    return max(0.0, 100.0 * (1 - shortfall / total))


class FitScorer:
    def __init__(
        self,
        store: WorkforceStore,
        gap_analyzer: Optional[GapAnalyzer] = None,
        policy: ScoringPolicy = DEFAULT_SCORING_POLICY,
        timeout: float = VECTOR_TIMEOUT,
    ):
        self.store = store
        self.gap_analyzer = gap_analyzer or GapAnalyzer(store)
        self.policy = policy
        self.timeout = timeout

    async def score(self, profile_id: str, role_id: str) -> FitScore:
        """
        Score how well a profile fits a role.

        Raises:
            InvalidInput: missing IDs (before any I/O)
            DatabaseError: gap analysis failed
        """
        if not profile_id or not role_id:
            raise InvalidInput("Both profileId and roleId are required")

        capability_gaps, skill_gaps, semantic_score = await asyncio.gather(
            self.gap_analyzer.analyze(profile_id, role_id, "capability"),
            self.gap_analyzer.analyze(profile_id, role_id, "skill"),
            self._semantic_score(profile_id, role_id),
        )

        capability_score = gap_sub_score(capability_gaps, self.policy)
        skill_score = gap_sub_score(skill_gaps, self.policy)

        weighted = (
            capability_score * self.policy.capability_weight
            + skill_score * self.policy.skill_weight
            + semantic_score * self.policy.semantic_weight
        )
        score = min(100, max(0, round_half_up(weighted)))

        fit = FitScore(
            profile_id=profile_id,
            role_id=role_id,
            capability_score=capability_score,
            skill_score=skill_score,
            semantic_score=semantic_score,
            score=score,
            summary=self.policy.tier(score),
            missing_capabilities=[g.name for g in capability_gaps if g.gap_type == "missing"],
            missing_skills=[g.name for g in skill_gaps if g.gap_type == "missing"],
        )
        logger.debug(
            "Fit %s → %s: %d (cap=%.1f skill=%.1f sem=%.1f)",
            profile_id, role_id, score, capability_score, skill_score, semantic_score,
        )
        return fit

    async def _semantic_score(self, profile_id: str, role_id: str) -> float:
        try:
            similarity = await asyncio.wait_for(self.store.similarity(profile_id, role_id), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning(f"⚠️  Similarity lookup timed out for {profile_id} → {role_id}, using 0")
            return 0.0
        except DatabaseError as e:
            logger.warning(f"⚠️  Similarity lookup failed for {profile_id} → {role_id}: {e}, using 0")
            return 0.0

        if similarity is None:
            return 0.0
        return min(1.0, max(0.0, float(similarity))) * 100
