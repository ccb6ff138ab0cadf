"""Slow dependencies are cut off and replaced by their fallback values."""
import asyncio

from talentbrain.context_loader import ConversationContextLoader
from talentbrain.fit_scorer import FitScorer
from talentbrain.narrator import APOLOGY_MESSAGE, Narrator
from talentbrain.planner import PlannerRecommender
from talentbrain.semantic_matcher import SemanticMatcher

from .conftest import FakeStore

SHORT = 0.01


class SlowStore(FakeStore):
    """Store whose vector, similarity and history reads never finish in time."""

    async def match_embeddings(self, query_id, source_table, target_table, threshold, limit):
        await asyncio.sleep(1)
        return await super().match_embeddings(query_id, source_table, target_table, threshold, limit)

    async def similarity(self, profile_id, role_id):
        await asyncio.sleep(1)
        return await super().similarity(profile_id, role_id)

    async def get_recent_messages(self, session_id, limit):
        await asyncio.sleep(1)
        return await super().get_recent_messages(session_id, limit)


class SlowChatModel:
    def __init__(self):
        self.calls = 0

    async def complete(self, system_prompt, user_prompt, *, json_mode=False, temperature=0.7, max_tokens=1000):
        self.calls += 1
        await asyncio.sleep(1)
        return "too late"


async def test_matcher_times_out_to_empty():
    store = SlowStore()
    store.matches[("r1", "profile")] = [{"id": "p1", "similarity": 0.9}]

    result = await SemanticMatcher(store, timeout=SHORT).match("r1", "role", "profile")

    assert result.degraded
    assert result.value == []
    assert result.reason == "vector lookup timed out"


async def test_context_times_out_to_empty():
    store = SlowStore()
    store.summary = "never seen"

    result = await ConversationContextLoader(store, timeout=SHORT).load("s1")

    assert result.degraded
    assert result.reason == "context load timed out"
    assert result.value.history == []
    assert result.value.agent_actions == []
    assert result.value.summary is None


async def test_planner_times_out_to_mode_default():
    model = SlowChatModel()

    result = await PlannerRecommender(model, timeout=SHORT).recommend("hiring", {"roleId": "r1"}, "Who fits?")

    assert model.calls == 1
    assert result.degraded
    assert result.reason == "planner timed out"
    assert [r.tool for r in result.value] == ["getMatchingProfiles"]
    assert result.value[0].inputs == {"roleId": "r1"}


async def test_narrator_times_out_to_apology():
    result = await Narrator(SlowChatModel(), timeout=SHORT).narrate("hiring", "p1: 97", "Who fits?")

    assert result.degraded
    assert result.value.message == APOLOGY_MESSAGE


async def test_slow_similarity_scores_zero_semantic():
    store = SlowStore()
    store.similarities[("p1", "r1")] = 0.9

    fit = await FitScorer(store, timeout=SHORT).score("p1", "r1")

    # no requirements: capability and skill are full marks, semantic drops out
    assert fit.semantic_score == 0.0
    assert fit.score == 70
